"""
Error Taxonomy - Fatal and per-operation failures

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/errors.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Exception hierarchy separating fatal run
                                errors from per-record operation faults.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

from typing import Optional
import uuid


class DataSyncError(Exception):
    """Base class for all datasync errors"""


class InvalidConfiguration(DataSyncError):
    """Run configuration is missing or malformed. Raised before any I/O."""


class RelationshipNotFound(InvalidConfiguration):
    """The destination has no many-to-many relationship with the given name"""

    def __init__(self, name: str, detail: str = ""):
        message = f"No many-to-many relationship found for '{name}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.name = name


class SourceUnavailable(DataSyncError):
    """The source store could not be read"""


class DestinationUnavailable(DataSyncError):
    """The destination store could not be reached or rejected a whole request"""


class RecordOperationFault(DataSyncError):
    """
    A single operation failed at the destination.

    Non-fatal: the engine records the fault against its record and moves on.
    """

    def __init__(self, message: str, logical_name: Optional[str] = None,
                 record_id: Optional[uuid.UUID] = None, status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.logical_name = logical_name
        self.record_id = record_id
        self.status_code = status_code


class MissingAttribute(RecordOperationFault):
    """A record lacks a foreign-key attribute required to build an association"""

    def __init__(self, attribute: str, logical_name: Optional[str] = None,
                 record_id: Optional[uuid.UUID] = None):
        super().__init__(
            f"Record {record_id} is missing attribute '{attribute}'",
            logical_name=logical_name,
            record_id=record_id,
        )
        self.attribute = attribute
