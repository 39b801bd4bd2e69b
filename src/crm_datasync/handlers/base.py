"""
Base Store Handlers - Abstract source and destination interfaces

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/handlers/base.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Abstract base classes for record sources,
                                whole-set sinks and entity-service
                                destinations.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import logging
import uuid

from ..records import (
    BulkItemResult,
    EntityReference,
    Operation,
    Record,
    RelationshipDescriptor,
)

logger = logging.getLogger(__name__)


@dataclass
class QueryPage:
    """One page of a server-side query"""
    records: List[Record] = field(default_factory=list)
    more_records: bool = False
    paging_cookie: Optional[str] = None


class BaseStore(ABC):
    """
    Common lifecycle for every store handler.

    Usage:
        store.connect()
        try:
            ...
        finally:
            store.disconnect()
    """

    def __init__(self, name: str = ""):
        self._name = name
        self._connected = False

    @property
    def name(self) -> str:
        """Get handler name"""
        return self._name or self.__class__.__name__

    @property
    def is_connected(self) -> bool:
        """Check if handler is connected"""
        return self._connected

    def connect(self) -> None:
        """Open the store. Raise on failure."""
        self._connected = True
        logger.debug(f"{self.name} connected")

    def disconnect(self) -> None:
        """Release the store"""
        self._connected = False
        logger.debug(f"{self.name} disconnected")


class SourceProvider(BaseStore):
    """A store records can be read from"""

    @abstractmethod
    def read_records(self) -> List[Record]:
        """
        Read the complete RecordSet.

        Returns:
            Records in source order

        Raises:
            SourceUnavailable: If the source cannot be read
        """


class RecordSink(BaseStore):
    """A store that is written as a whole (e.g. a flat file)"""

    @abstractmethod
    def write_records(self, records: Sequence[Record]) -> int:
        """
        Replace the stored RecordSet.

        Returns:
            Number of records written
        """


class DestinationStore(BaseStore):
    """
    An entity service records are reconciled against.

    Single-record methods raise RecordOperationFault for per-record errors
    and DestinationUnavailable for transport failures. ``execute_bulk``
    returns one BulkItemResult per submitted operation, in order.
    """

    @property
    def supports_upsert(self) -> bool:
        """Whether ``upsert`` is a native, atomic operation"""
        return False

    @abstractmethod
    def retrieve(self, logical_name: str, record_id: uuid.UUID,
                 columns: Sequence[str] = ()) -> Optional[Record]:
        """Fetch a record, or None if it does not exist"""

    @abstractmethod
    def create(self, record: Record) -> uuid.UUID:
        """Insert a record and return its id"""

    @abstractmethod
    def update(self, record: Record) -> None:
        """Overwrite the given attributes of an existing record"""

    def upsert(self, record: Record) -> Tuple[uuid.UUID, bool]:
        """
        Insert or replace a record atomically.

        Returns:
            Tuple of (id, was_created)
        """
        raise NotImplementedError(f"{self.name} does not support upsert")

    @abstractmethod
    def execute_bulk(self, operations: Sequence[Operation],
                     continue_on_error: bool = True) -> List[BulkItemResult]:
        """Submit several independent operations in one request"""

    @abstractmethod
    def associate(self, logical_name: str, record_id: uuid.UUID,
                  relationship: str, related: Sequence[EntityReference]) -> None:
        """Link a record to related records through a many-to-many relationship"""

    @abstractmethod
    def get_relationship_metadata(self, name: str) -> RelationshipDescriptor:
        """
        Look up many-to-many relationship metadata.

        Raises:
            RelationshipNotFound: If no many-to-many relationship has that name
        """
