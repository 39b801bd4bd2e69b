"""
CRM Datasync - Batched record synchronization for CRM entity services

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/__init__.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Package Initialization

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Main package initialization with version
                                and public API exports.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

__version__ = "1.0.0"
__author__ = "CRM Datasync Contributors"
__license__ = "MIT"

from .records import EntityReference, OperationResult, Record, RelationshipDescriptor
from .config import RunConfig, load_config
from .sync_engine import SyncEngine, SyncMode, SyncResult, plan, reconcile
from .handlers.base import DestinationStore, SourceProvider

__all__ = [
    "EntityReference",
    "OperationResult",
    "Record",
    "RelationshipDescriptor",
    "RunConfig",
    "load_config",
    "SyncEngine",
    "SyncMode",
    "SyncResult",
    "plan",
    "reconcile",
    "DestinationStore",
    "SourceProvider",
    "__version__",
]
