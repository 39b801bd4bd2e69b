"""
Run Configuration - Loading and validation of sync job configuration

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/config.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  RunConfig dataclasses with XML and JSON
                                loaders. Validation happens once, before any
                                source or destination I/O.
2026-10-19  maintainers MODIFY  Configuration loading no longer logs; the
                                command line logs it once logging is set up.
-------------------------------------------------------------------------------

License: MIT

FILE FORMAT (XML):
    <mscrmdatasync>
        <source type="server">Url=https://org.example.com;Token=...</source>
        <destination type="file">accounts.json</destination>
        <query><![CDATA[<fetch>...</fetch>]]></query>
        <batchsize>10</batchsize>
        <type>manytomany</type>
        <upsert>auto</upsert>
    </mscrmdatasync>

JSON files use the same keys with "source"/"destination" objects holding
"type", "location" and optionally "password".
===============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import xml.etree.ElementTree as ET

from .errors import InvalidConfiguration

DEFAULT_BATCH_SIZE = 10
ROOT_ELEMENT = "mscrmdatasync"


class EndpointKind(Enum):
    """Where records are read from or written to"""
    SERVER = "server"
    FILE = "file"


class SyncType(Enum):
    """Synchronization mode"""
    DEFAULT = "default"
    MANY_TO_MANY = "manytomany"


class UpsertMode(Enum):
    """Whether to use the destination's native upsert"""
    AUTO = "auto"
    ALWAYS = "true"
    NEVER = "false"


@dataclass
class Endpoint:
    """A source or destination location"""
    kind: EndpointKind
    location: str
    password: Optional[str] = None


@dataclass
class RunConfig:
    """Configuration for one sync run"""
    source: Endpoint
    destination: Endpoint
    query: Optional[str] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    sync_type: SyncType = SyncType.DEFAULT
    upsert: UpsertMode = UpsertMode.AUTO
    log_file: Optional[str] = None

    def validate(self) -> "RunConfig":
        """
        Check the configuration for consistency.

        Raises:
            InvalidConfiguration: If a required value is missing or invalid
        """
        for role, endpoint in (("source", self.source), ("destination", self.destination)):
            if not endpoint.location or not endpoint.location.strip():
                raise InvalidConfiguration(f"{role} location is empty")

        if self.source.kind == EndpointKind.SERVER and not (self.query and self.query.strip()):
            raise InvalidConfiguration("query is required when the source is a server")

        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise InvalidConfiguration(f"batchsize must be an integer, got {self.batch_size!r}")
        if self.batch_size < 1:
            raise InvalidConfiguration(f"batchsize must be >= 1, got {self.batch_size}")

        return self


# =============================================================================
# Value Parsing
# =============================================================================

def _parse_enum(enum_cls, value: Optional[str], field_name: str, default):
    if value is None or str(value).strip() == "":
        return default
    normalized = str(value).strip().lower()
    for member in enum_cls:
        if member.value == normalized:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise InvalidConfiguration(f"Unknown {field_name} '{value}' (expected one of: {allowed})")


def _parse_upsert(value: Any) -> UpsertMode:
    if isinstance(value, bool):
        return UpsertMode.ALWAYS if value else UpsertMode.NEVER
    return _parse_enum(UpsertMode, value, "upsert", UpsertMode.AUTO)


def _parse_batch_size(value: Any) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_BATCH_SIZE
    if isinstance(value, bool):
        raise InvalidConfiguration(f"batchsize must be an integer, got {value!r}")
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidConfiguration(f"batchsize must be an integer, got {value!r}")


def _endpoint(role: str, kind: Optional[str], location: Optional[str],
              password: Optional[str] = None) -> Endpoint:
    if kind is None or not str(kind).strip():
        raise InvalidConfiguration(f"{role} type is missing")
    return Endpoint(
        kind=_parse_enum(EndpointKind, kind, f"{role} type", None),
        location=(location or "").strip(),
        password=password or None,
    )


# =============================================================================
# Loaders
# =============================================================================

def _query_text(node: Optional[ET.Element]) -> Optional[str]:
    """
    Extract the query expression from its element.

    The FetchXML may be escaped text / CDATA, or embedded as a child element.
    """
    if node is None:
        return None
    children = list(node)
    if children:
        return ET.tostring(children[0], encoding="unicode").strip()
    return (node.text or "").strip() or None


def config_from_xml(text: str) -> RunConfig:
    """Parse an XML configuration document"""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise InvalidConfiguration(f"Configuration is not valid XML: {e}")

    if root.tag != ROOT_ELEMENT:
        found = root.find(f".//{ROOT_ELEMENT}")
        if found is None:
            raise InvalidConfiguration(f"Missing <{ROOT_ELEMENT}> element")
        root = found

    nodes = {}
    for name in ("source", "destination"):
        node = root.find(name)
        if node is None:
            raise InvalidConfiguration(f"Missing <{name}> element")
        nodes[name] = _endpoint(name, node.get("type"), node.text, node.get("password"))

    batch_node = root.find("batchsize")
    type_node = root.find("type")
    upsert_node = root.find("upsert")
    log_node = root.find("logfile")

    return RunConfig(
        source=nodes["source"],
        destination=nodes["destination"],
        query=_query_text(root.find("query")),
        batch_size=_parse_batch_size(batch_node.text if batch_node is not None else None),
        sync_type=_parse_enum(SyncType, type_node.text if type_node is not None else None,
                              "sync type", SyncType.DEFAULT),
        upsert=_parse_upsert(upsert_node.text if upsert_node is not None else None),
        log_file=((log_node.text or "").strip() or None) if log_node is not None else None,
    )


def config_from_dict(data: Dict[str, Any]) -> RunConfig:
    """Build a configuration from a plain mapping (parsed JSON)"""
    if not isinstance(data, dict):
        raise InvalidConfiguration("Configuration must be a JSON object")

    endpoints = {}
    for name in ("source", "destination"):
        section = data.get(name)
        if not isinstance(section, dict):
            raise InvalidConfiguration(f"Missing '{name}' section")
        endpoints[name] = _endpoint(name, section.get("type"), section.get("location"),
                                    section.get("password"))

    return RunConfig(
        source=endpoints["source"],
        destination=endpoints["destination"],
        query=data.get("query") or None,
        batch_size=_parse_batch_size(data.get("batchsize", data.get("batch_size"))),
        sync_type=_parse_enum(SyncType, data.get("type", data.get("sync_type")),
                              "sync type", SyncType.DEFAULT),
        upsert=_parse_upsert(data.get("upsert")),
        log_file=data.get("logfile", data.get("log_file")) or None,
    )


def load_config(path: Union[str, Path]) -> RunConfig:
    """
    Load and validate a run configuration file.

    Files ending in ``.json`` are read as JSON, everything else as XML.

    Args:
        path: Path to the configuration file

    Returns:
        Validated RunConfig

    Raises:
        InvalidConfiguration: If the file is missing or invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidConfiguration(f"Cannot read configuration file {path}: {e}")

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidConfiguration(f"Configuration is not valid JSON: {e}")
        config = config_from_dict(data)
    else:
        config = config_from_xml(text)

    return config.validate()
