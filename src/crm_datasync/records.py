"""
Record Data Model - Typed records, references and operation outcomes

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/records.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Record, EntityReference, Operation and
                                OperationResult types shared by the engine
                                and all handlers.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import uuid


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class EntityReference:
    """Foreign-key reference to another record"""
    logical_name: str
    id: uuid.UUID
    name: Optional[str] = None


@dataclass
class Record:
    """
    One synchronizable entity instance.

    A record is identified by its logical (type) name and its id. The
    attribute set does not need to be complete; a partial record is a valid
    update payload.
    """
    logical_name: str
    id: uuid.UUID
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, uuid.UUID]:
        return (self.logical_name, self.id)

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self.attributes


# =============================================================================
# Relationships
# =============================================================================

@dataclass(frozen=True)
class RelationshipDescriptor:
    """Resolved metadata of a many-to-many relationship"""
    schema_name: str
    entity1_logical_name: str
    entity1_intersect_attribute: str
    entity2_logical_name: str
    entity2_intersect_attribute: str
    intersect_entity_name: str = ""


# =============================================================================
# Operations and Results
# =============================================================================

class OperationKind(Enum):
    """Kinds of destination writes (and the retrieve probe)"""
    RETRIEVE = "retrieve"
    CREATE = "create"
    UPDATE = "update"
    UPSERT = "upsert"
    ASSOCIATE = "associate"


class ResultStatus(Enum):
    """Per-record outcome of a destination operation"""
    CREATED = "created"
    UPDATED = "updated"
    ASSOCIATED = "associated"
    FAULTED = "faulted"


@dataclass
class Operation:
    """
    A single operation submitted to the destination.

    For ASSOCIATE operations ``target`` is the entity1 side, ``related`` the
    entity2 side and ``relationship`` the relationship schema name.
    """
    kind: OperationKind
    record: Record
    target: Optional[EntityReference] = None
    related: Optional[EntityReference] = None
    relationship: Optional[str] = None


@dataclass
class BulkItemResult:
    """
    Raw response for one operation of a bulk request.

    ``created`` is meaningful for UPSERT operations only: True when the
    destination inserted a new record rather than replacing one.
    """
    response: Optional[Any] = None
    fault: Optional[str] = None
    status_code: int = 0
    created: bool = False

    @property
    def is_faulted(self) -> bool:
        return self.fault is not None


@dataclass
class OperationResult:
    """Outcome of one operation, as reported by the bulk executor"""
    status: ResultStatus
    logical_name: str
    record_id: uuid.UUID
    reason: Optional[str] = None

    @property
    def is_faulted(self) -> bool:
        return self.status == ResultStatus.FAULTED


@dataclass
class ExistenceCheck:
    """
    Existence classification of one record.

    ``fetch_error`` is set when the probe failed for a reason other than
    "not found"; such records are still classified as not existing.
    """
    exists: bool
    fetch_error: Optional[str] = None
