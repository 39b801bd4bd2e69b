"""
Flat File Store - Self-describing serialized RecordSets on disk

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/handlers/flat_file.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Typed JSON serialization of records with
                                checksum, optional gzip compression and
                                optional password encryption. Files are
                                replaced atomically.
-------------------------------------------------------------------------------

License: MIT

PURPOSE:
Lets a RecordSet be exported from one environment and imported into another
without a direct connection. Every attribute value is stored together with
its type so that reading a file back yields exactly the records written.
===============================================================================
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import base64
import gzip
import hashlib
import json
import logging
import os
import tempfile
import uuid

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import SourceUnavailable
from ..records import EntityReference, Record
from .base import RecordSink, SourceProvider

logger = logging.getLogger(__name__)

FORMAT_NAME = "crm-datasync"
FORMAT_VERSION = 1
KDF_ITERATIONS = 100000


# =============================================================================
# Value Encoding
# =============================================================================

def encode_value(value: Any) -> Dict[str, Any]:
    """
    Encode one attribute value as a ``{"type", "value"}`` pair.

    Raises:
        TypeError: If the value type cannot be stored
    """
    # bool before int, datetime before date: both are subclasses
    if value is None:
        return {"type": "null", "value": None}
    if isinstance(value, bool):
        return {"type": "bool", "value": value}
    if isinstance(value, int):
        return {"type": "int", "value": value}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, Decimal):
        return {"type": "decimal", "value": str(value)}
    if isinstance(value, uuid.UUID):
        return {"type": "uuid", "value": str(value)}
    if isinstance(value, datetime):
        return {"type": "datetime", "value": value.isoformat()}
    if isinstance(value, date):
        return {"type": "date", "value": value.isoformat()}
    if isinstance(value, EntityReference):
        return {
            "type": "reference",
            "value": {
                "logical_name": value.logical_name,
                "id": str(value.id),
                "name": value.name,
            },
        }
    if isinstance(value, str):
        return {"type": "string", "value": value}
    raise TypeError(f"Unsupported attribute value type: {type(value).__name__}")


def decode_value(encoded: Dict[str, Any]) -> Any:
    """
    Decode a ``{"type", "value"}`` pair produced by encode_value.

    Raises:
        ValueError: If the type tag is unknown
    """
    kind = encoded.get("type")
    value = encoded.get("value")

    if kind == "null":
        return None
    if kind in ("string", "bool", "int", "float"):
        return value
    if kind == "decimal":
        return Decimal(value)
    if kind == "uuid":
        return uuid.UUID(value)
    if kind == "datetime":
        return datetime.fromisoformat(value)
    if kind == "date":
        return date.fromisoformat(value)
    if kind == "reference":
        return EntityReference(
            logical_name=value["logical_name"],
            id=uuid.UUID(value["id"]),
            name=value.get("name"),
        )
    raise ValueError(f"Unknown attribute type tag: {kind!r}")


def record_to_dict(record: Record) -> Dict[str, Any]:
    """Convert a record to its serializable form"""
    return {
        "logical_name": record.logical_name,
        "id": str(record.id),
        "attributes": {name: encode_value(value) for name, value in record.attributes.items()},
    }


def record_from_dict(data: Dict[str, Any]) -> Record:
    """Rebuild a record from its serializable form"""
    return Record(
        logical_name=data["logical_name"],
        id=uuid.UUID(data["id"]),
        attributes={name: decode_value(v) for name, v in data.get("attributes", {}).items()},
    )


def compute_checksum(records: List[Dict[str, Any]]) -> str:
    """SHA-256 over the canonical JSON form of serialized records"""
    canonical = json.dumps(records, sort_keys=True, separators=(",", ":"))
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


def serialize_records(records: Sequence[Record], pretty: bool = False) -> str:
    """
    Serialize a RecordSet to the flat-file JSON document.

    Args:
        records: Records to serialize
        pretty: Indent the output

    Returns:
        JSON text
    """
    payload = [record_to_dict(r) for r in records]
    document = {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "checksum": compute_checksum(payload),
        "records": payload,
    }
    if pretty:
        return json.dumps(document, indent=2)
    return json.dumps(document, separators=(",", ":"))


def deserialize_records(text: str) -> List[Record]:
    """
    Parse a flat-file JSON document back into records.

    Raises:
        ValueError: If the document is malformed or its checksum does not match
    """
    document = json.loads(text)
    if not isinstance(document, dict) or document.get("format") != FORMAT_NAME:
        raise ValueError("Not a crm-datasync record file")
    if document.get("version") != FORMAT_VERSION:
        raise ValueError(f"Unsupported file version: {document.get('version')}")

    payload = document.get("records", [])
    expected = document.get("checksum")
    if expected and compute_checksum(payload) != expected:
        raise ValueError("Checksum mismatch: file content is corrupted")

    return [record_from_dict(item) for item in payload]


# =============================================================================
# Encryption
# =============================================================================

def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode()))


def encrypt_text(text: str, password: str) -> str:
    """Wrap serialized text in an encrypted envelope document"""
    salt = os.urandom(16)
    token = Fernet(_derive_key(password, salt)).encrypt(text.encode("utf-8"))
    return json.dumps({
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "encrypted": True,
        "kdf": "pbkdf2-sha256",
        "iterations": KDF_ITERATIONS,
        "salt": salt.hex(),
        "payload": token.decode("ascii"),
    })


def decrypt_text(envelope: Dict[str, Any], password: str) -> str:
    """
    Open an encrypted envelope document.

    Raises:
        ValueError: If the password is wrong or the payload was tampered with
    """
    salt = bytes.fromhex(envelope["salt"])
    try:
        data = Fernet(_derive_key(password, salt)).decrypt(envelope["payload"].encode("ascii"))
    except InvalidToken:
        raise ValueError("Cannot decrypt file: wrong password or corrupted payload")
    return data.decode("utf-8")


# =============================================================================
# Flat File Store
# =============================================================================

@dataclass
class FlatFileConfig:
    """Configuration for a flat-file source or destination"""
    path: str
    password: Optional[str] = None
    pretty_print: bool = False

    @property
    def compressed(self) -> bool:
        return self.path.endswith(".gz")


class FlatFileStore(SourceProvider, RecordSink):
    """
    Reads and writes a whole RecordSet as one file.

    Supports:
    - Typed JSON serialization with a content checksum
    - Gzip compression (paths ending in ``.gz``)
    - Optional password encryption
    - Atomic whole-file replacement
    """

    def __init__(self, config: FlatFileConfig):
        super().__init__(name=config.path)
        self.config = config

    def _encode(self, records: Sequence[Record]) -> bytes:
        text = serialize_records(records, pretty=self.config.pretty_print)
        if self.config.password:
            text = encrypt_text(text, self.config.password)
        data = text.encode("utf-8")
        if self.config.compressed:
            data = gzip.compress(data, compresslevel=6)
        return data

    def _decode(self, data: bytes) -> List[Record]:
        if self.config.compressed:
            data = gzip.decompress(data)
        text = data.decode("utf-8")

        document = json.loads(text)
        if isinstance(document, dict) and document.get("encrypted"):
            if not self.config.password:
                raise ValueError("File is encrypted but no password is configured")
            text = decrypt_text(document, self.config.password)

        return deserialize_records(text)

    def read_records(self) -> List[Record]:
        """
        Read the RecordSet stored in the file.

        Raises:
            SourceUnavailable: If the file is missing, unreadable or corrupted
        """
        path = Path(self.config.path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise SourceUnavailable(f"Cannot read {path}: {e}")

        try:
            records = self._decode(data)
        except (ValueError, KeyError, TypeError, OSError) as e:
            raise SourceUnavailable(f"Cannot parse {path}: {e}")

        logger.info(f"Read {len(records)} records from {path}")
        return records

    def write_records(self, records: Sequence[Record]) -> int:
        """
        Replace the file with the given RecordSet.

        The content is written to a temporary file in the same directory
        and moved into place, so readers never see a partial file.
        """
        path = Path(self.config.path)
        data = self._encode(records)

        directory = path.parent if str(path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(directory))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

        logger.info(f"Wrote {len(records)} records to {path}")
        return len(records)
