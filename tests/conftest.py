"""
pytest configuration and fixtures for unit, integration and BDD tests

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: tests/conftest.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Test Configuration

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  In-memory destination and source handlers,
                                record fixtures and pytest-bdd context.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from crm_datasync.config import Endpoint, EndpointKind, RunConfig, SyncType, UpsertMode
from crm_datasync.errors import RecordOperationFault, RelationshipNotFound
from crm_datasync.handlers.base import DestinationStore, SourceProvider
from crm_datasync.records import (
    BulkItemResult,
    EntityReference,
    OperationKind,
    Record,
    RelationshipDescriptor,
)
from tests.generators.record_fixtures import RecordGenerator


# =============================================================================
# In-Memory Handlers
# =============================================================================

class StaticSource(SourceProvider):
    """Source handler returning a fixed RecordSet"""

    def __init__(self, records: Sequence[Record], name: str = "static"):
        super().__init__(name=name)
        self.records = list(records)

    def read_records(self) -> List[Record]:
        return list(self.records)


class InMemoryDestination(DestinationStore):
    """
    In-memory entity service for testing.

    Implements the same interface as WebApiStore. Faults can be injected per
    record key for writes (``write_faults``) and for existence probes
    (``retrieve_faults``). Every call is recorded in ``calls``.
    """

    def __init__(self, upsert: bool = False, name: str = "memory"):
        super().__init__(name=name)
        self.tables: Dict[Tuple[str, uuid.UUID], Record] = {}
        self.relationships: Dict[str, RelationshipDescriptor] = {}
        self.associations: Set[Tuple[str, uuid.UUID, uuid.UUID]] = set()
        self.write_faults: Dict[Tuple[str, uuid.UUID], str] = {}
        self.retrieve_faults: Dict[Tuple[str, uuid.UUID], str] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.metadata_lookups = 0
        self._upsert = upsert

    # -- helpers ------------------------------------------------------------

    def seed(self, records: Sequence[Record]) -> None:
        for record in records:
            self.tables[record.key] = copy.deepcopy(record)

    def bulk_sizes(self, kind: Optional[OperationKind] = None) -> List[int]:
        return [
            len(kinds) for name, kinds in self.calls
            if name == "execute_bulk" and (kind is None or all(k == kind for k in kinds))
        ]

    def single_calls(self) -> List[Tuple[str, Any]]:
        return [c for c in self.calls if c[0] != "execute_bulk"]

    def _check_write_fault(self, record: Record) -> None:
        if record.key in self.write_faults:
            raise RecordOperationFault(
                self.write_faults[record.key],
                logical_name=record.logical_name,
                record_id=record.id,
                status_code=400,
            )

    # -- DestinationStore ---------------------------------------------------

    @property
    def supports_upsert(self) -> bool:
        return self._upsert

    def retrieve(self, logical_name, record_id, columns=()):
        self.calls.append(("retrieve", record_id))
        return self._retrieve((logical_name, record_id))

    def _retrieve(self, key):
        if key in self.retrieve_faults:
            raise RecordOperationFault(self.retrieve_faults[key], key[0], key[1], status_code=500)
        found = self.tables.get(key)
        if found is None:
            return None
        return Record(found.logical_name, found.id, {})

    def create(self, record):
        self.calls.append(("create", record.id))
        return self._create(record)

    def _create(self, record):
        self._check_write_fault(record)
        if record.key in self.tables:
            raise RecordOperationFault(
                f"A record with id {record.id} already exists",
                record.logical_name, record.id, status_code=412,
            )
        self.tables[record.key] = copy.deepcopy(record)
        return record.id

    def update(self, record):
        self.calls.append(("update", record.id))
        self._update(record)

    def _update(self, record):
        self._check_write_fault(record)
        existing = self.tables.get(record.key)
        if existing is None:
            raise RecordOperationFault(
                f"{record.logical_name} with id {record.id} does not exist",
                record.logical_name, record.id, status_code=404,
            )
        existing.attributes.update(copy.deepcopy(record.attributes))

    def upsert(self, record):
        self.calls.append(("upsert", record.id))
        return self._upsert_record(record)

    def _upsert_record(self, record):
        self._check_write_fault(record)
        created = record.key not in self.tables
        if created:
            self.tables[record.key] = copy.deepcopy(record)
        else:
            self.tables[record.key].attributes.update(copy.deepcopy(record.attributes))
        return record.id, created

    def associate(self, logical_name, record_id, relationship, related):
        self.calls.append(("associate", record_id))
        for reference in related:
            self._associate(relationship, record_id, reference.id)

    def _associate(self, relationship, record_id, related_id):
        link = (relationship, record_id, related_id)
        if link in self.associations:
            raise RecordOperationFault(
                f"Cannot insert duplicate key for {relationship}", status_code=412,
            )
        self.associations.add(link)

    def execute_bulk(self, operations, continue_on_error=True):
        self.calls.append(("execute_bulk", [op.kind for op in operations]))
        results = []
        for operation in operations:
            record = operation.record
            try:
                if operation.kind == OperationKind.RETRIEVE:
                    found = self._retrieve(record.key)
                    if found is None:
                        results.append(BulkItemResult(fault="Does Not Exist", status_code=404))
                        continue
                    results.append(BulkItemResult(response=found, status_code=200))
                elif operation.kind == OperationKind.CREATE:
                    results.append(BulkItemResult(response=self._create(record), status_code=204,
                                                  created=True))
                elif operation.kind == OperationKind.UPDATE:
                    self._update(record)
                    results.append(BulkItemResult(response={}, status_code=204))
                elif operation.kind == OperationKind.UPSERT:
                    _, created = self._upsert_record(record)
                    results.append(BulkItemResult(response={}, status_code=201 if created else 200,
                                                  created=created))
                else:
                    self._check_write_fault(record)
                    self._associate(operation.relationship, operation.target.id, operation.related.id)
                    results.append(BulkItemResult(response={}, status_code=204))
            except RecordOperationFault as e:
                results.append(BulkItemResult(fault=e.message, status_code=e.status_code))
        return results

    def get_relationship_metadata(self, name):
        self.metadata_lookups += 1
        if name not in self.relationships:
            raise RelationshipNotFound(name)
        return self.relationships[name]


# =============================================================================
# Test Data Fixtures
# =============================================================================

@pytest.fixture
def record_generator() -> RecordGenerator:
    """Seeded generator for reproducible records"""
    return RecordGenerator(seed=1234)


@pytest.fixture
def sample_records() -> List[Record]:
    """Sample contact records covering every attribute type"""
    parent = EntityReference("account", uuid.UUID("6f1c2f8e-1d0b-4a53-9d35-0a9a4f1a0001"), "Contoso")
    return [
        Record("contact", uuid.UUID("11111111-0000-4000-8000-000000000001"), {
            "firstname": "Alice",
            "numberofchildren": 2,
            "creditlimit": Decimal("1500.25"),
            "annualincome": 72000.5,
            "donotemail": False,
            "birthdate": date(1985, 4, 12),
            "lastusedincampaign": datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
            "parentcustomerid": parent,
            "externalid": uuid.UUID("aaaaaaaa-0000-4000-8000-000000000001"),
            "description": None,
        }),
        Record("contact", uuid.UUID("11111111-0000-4000-8000-000000000002"), {
            "firstname": "Bob",
            "parentcustomerid": parent,
        }),
        Record("contact", uuid.UUID("11111111-0000-4000-8000-000000000003"), {
            "firstname": "Charlie",
            "donotemail": True,
        }),
    ]


@pytest.fixture
def contact_records(record_generator) -> List[Record]:
    """25 generated contact records"""
    return record_generator.generate_records(25, "contact")


@pytest.fixture
def relationship() -> RelationshipDescriptor:
    """Many-to-many relationship between accounts and leads"""
    return RelationshipDescriptor(
        schema_name="accountleads_association",
        entity1_logical_name="account",
        entity1_intersect_attribute="accountid",
        entity2_logical_name="lead",
        entity2_intersect_attribute="leadid",
        intersect_entity_name="accountleads",
    )


@pytest.fixture
def destination() -> InMemoryDestination:
    """Empty in-memory destination without native upsert"""
    return InMemoryDestination()


@pytest.fixture
def upsert_destination() -> InMemoryDestination:
    """Empty in-memory destination with native upsert"""
    return InMemoryDestination(upsert=True)


@pytest.fixture
def make_config():
    """Factory for run configurations pointing at placeholder endpoints"""
    def _make(batch_size: int = 10, sync_type: SyncType = SyncType.DEFAULT,
              upsert: UpsertMode = UpsertMode.AUTO) -> RunConfig:
        return RunConfig(
            source=Endpoint(EndpointKind.FILE, "source.json"),
            destination=Endpoint(EndpointKind.SERVER, "Url=https://crm.example.com"),
            batch_size=batch_size,
            sync_type=sync_type,
            upsert=upsert,
        )
    return _make


# =============================================================================
# BDD Context Fixtures
# =============================================================================

@dataclass
class BDDContext:
    """Shared context for BDD step definitions"""
    records: List[Record] = field(default_factory=list)
    destination: Optional[InMemoryDestination] = None
    batch_size: int = 10
    sync_type: SyncType = SyncType.DEFAULT
    upsert: UpsertMode = UpsertMode.NEVER
    last_result: Optional[Any] = None
    last_error: Optional[Exception] = None


@pytest.fixture
def bdd_context() -> BDDContext:
    """Fresh BDD context for each scenario"""
    return BDDContext(destination=InMemoryDestination())


# =============================================================================
# pytest-bdd Hooks
# =============================================================================

def pytest_bdd_step_error(request, feature, scenario, step, step_func, step_func_args, exception):
    """Log step errors for debugging"""
    print(f"\nStep failed: {step}")
    print(f"Exception: {exception}")
