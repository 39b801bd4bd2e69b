"""
Command Line Interface - Runs one sync job from a configuration file

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/cli.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Entry Point

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  argparse entry point. Fatal errors are caught
                                once, logged as a single error line and
                                turned into a non-zero exit status.
2026-10-19  maintainers MODIFY  Read the configuration before logging starts
                                so a configured logfile receives every line.
-------------------------------------------------------------------------------

License: MIT

EXIT CODES:
    0   run completed (per-record faults are only in the log)
    1   fatal error (configuration, source or destination unavailable)
    2   run completed with faults and --fail-on-faults was given
===============================================================================
"""

from typing import List, Optional
import argparse
import logging
import sys

from . import __version__
from .config import RunConfig, load_config
from .handlers.factory import HandlerFactory
from .logging_setup import DEFAULT_LOG_FILE, configure_logging, log_success
from .sync_engine import SyncEngine, SyncResult

logger = logging.getLogger("crm_datasync.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FAULTS = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="crm-datasync",
        description="Synchronize CRM records between a Web API and a flat file",
    )
    parser.add_argument("config", help="Path to the XML or JSON run configuration")
    parser.add_argument(
        "--log-file",
        default=None,
        help=f"Append-only log file (default: logfile from config, else {DEFAULT_LOG_FILE})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument(
        "--fail-on-faults",
        action="store_true",
        help="Exit with status 2 if any record operation faulted",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def run_job(config: RunConfig) -> SyncResult:
    """Build the handlers for a configuration and run the engine"""
    source = HandlerFactory.create_source(config)
    destination = HandlerFactory.create_destination(config)
    return SyncEngine(source, destination, config).run()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # The configuration may name the log file, so it is read before logging starts
    config: Optional[RunConfig] = None
    config_error: Optional[Exception] = None
    try:
        config = load_config(args.config)
    except Exception as e:
        config_error = e

    log_file = args.log_file or (config.log_file if config else None) or DEFAULT_LOG_FILE
    configure_logging(log_file, verbose=args.verbose)

    logger.info("Start")
    try:
        if config_error is not None:
            raise config_error
        logger.debug(f"Loaded configuration from {args.config}")

        result = run_job(config)
        log_success(logger, "Job completed successfully")

        exit_code = EXIT_OK
        if result.faulted and args.fail_on_faults:
            logger.error(f"{result.faulted} record operation(s) faulted")
            exit_code = EXIT_FAULTS
    except Exception as e:
        logger.debug("Run aborted", exc_info=True)
        logger.error(str(e) or e.__class__.__name__)
        exit_code = EXIT_ERROR
    finally:
        logger.info("End")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
