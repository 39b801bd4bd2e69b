"""
Core Sync Engine - Reconciles and batches records into the destination

===============================================================================
PROVENANCE TRACKING
===============================================================================
File: src/crm_datasync/sync_engine.py
Created: 2026-10-19
Author: CRM Datasync Contributors
Type: Core Implementation

Change History:
-------------------------------------------------------------------------------
Date        Author      Type    Description
-------------------------------------------------------------------------------
2026-10-19  maintainers CREATE  Batch planner, existence resolver,
                                reconciler, bulk executor, relationship
                                resolver and the run orchestrator.
2026-10-19  maintainers MODIFY  Existence probes go direct only at batch
                                size 1, not for a short last chunk.
-------------------------------------------------------------------------------

License: MIT
===============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union,
)
import logging
import math
import uuid

from .config import RunConfig, SyncType, UpsertMode
from .errors import (
    DestinationUnavailable,
    InvalidConfiguration,
    MissingAttribute,
    RecordOperationFault,
)
from .handlers.base import DestinationStore, RecordSink, SourceProvider
from .records import (
    BulkItemResult,
    EntityReference,
    ExistenceCheck,
    Operation,
    OperationKind,
    OperationResult,
    Record,
    RelationshipDescriptor,
    ResultStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RecordKey = Tuple[str, uuid.UUID]


# =============================================================================
# Enums and Data Classes
# =============================================================================

class SyncMode(Enum):
    """How records reach the destination"""
    FILE_EXPORT = "file_export"
    CHECK_THEN_ACT = "check_then_act"
    UPSERT = "upsert"
    MANY_TO_MANY = "many_to_many"


@dataclass
class PlanProgress:
    """Progress of a batch plan iteration"""
    total_batches: int = 0
    total_items: int = 0
    batches_done: int = 0
    items_done: int = 0

    @property
    def complete(self) -> bool:
        return self.items_done >= self.total_items


@dataclass
class SyncResult:
    """Result of a sync run"""
    mode: SyncMode
    success: bool = False
    records_read: int = 0
    records_written: int = 0
    created: int = 0
    updated: int = 0
    associated: int = 0
    faulted: int = 0
    batches_processed: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    faults: List[OperationResult] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [f.reason or "unknown fault" for f in self.faults]

    def add(self, results: Sequence[OperationResult]) -> None:
        """Fold operation results into the counters"""
        for outcome in results:
            if outcome.status == ResultStatus.CREATED:
                self.created += 1
            elif outcome.status == ResultStatus.UPDATED:
                self.updated += 1
            elif outcome.status == ResultStatus.ASSOCIATED:
                self.associated += 1
            else:
                self.faulted += 1
                self.faults.append(outcome)


# =============================================================================
# Batch Planner
# =============================================================================

class BatchPlan(Generic[T]):
    """
    Restartable lazy sequence of contiguous chunks.

    Each iteration starts from the first chunk again and resets
    ``progress``. All chunks but the last have exactly ``size`` items.
    """

    def __init__(self, items: Sequence[T], size: int):
        if isinstance(size, bool) or not isinstance(size, int) or size < 1:
            raise InvalidConfiguration(f"Batch size must be an integer >= 1, got {size!r}")
        self._items = items
        self.size = size
        self.progress = PlanProgress(total_batches=len(self), total_items=len(items))

    def __len__(self) -> int:
        return math.ceil(len(self._items) / self.size)

    def __iter__(self) -> Iterator[List[T]]:
        self.progress = PlanProgress(total_batches=len(self), total_items=len(self._items))
        for start in range(0, len(self._items), self.size):
            chunk = list(self._items[start:start + self.size])
            logger.debug(
                f"Batch {self.progress.batches_done + 1}/{self.progress.total_batches} "
                f"({len(chunk)} items)"
            )
            yield chunk
            self.progress.batches_done += 1
            self.progress.items_done += len(chunk)


def plan(items: Sequence[T], size: int) -> BatchPlan[T]:
    """
    Split items into chunks of at most ``size``.

    Raises:
        InvalidConfiguration: If size < 1
    """
    return BatchPlan(items, size)


# =============================================================================
# Existence Resolver
# =============================================================================

class ExistenceResolver:
    """
    Classifies records as existing or new at the destination.

    With a batch size above 1 every chunk, including a short last one, is
    probed with one bulk request of empty-projection retrieves. With a
    batch size of 1 records are probed directly.
    Classification is best effort: any failure counts as "does not exist".
    """

    def __init__(self, destination: DestinationStore, batch_size: int):
        self.destination = destination
        self.batch_size = batch_size

    def resolve(self, chunk: Sequence[Record]) -> Dict[RecordKey, ExistenceCheck]:
        if self.batch_size == 1:
            checks = {record.key: self._probe(record) for record in chunk}
        else:
            operations = [Operation(OperationKind.RETRIEVE, record) for record in chunk]
            responses = self.destination.execute_bulk(operations, continue_on_error=True)
            _check_response_count(operations, responses)
            checks = {
                record.key: self._classify(item)
                for record, item in zip(chunk, responses)
            }

        for key, check in checks.items():
            if check.fetch_error:
                logger.warning(
                    f"Existence check for {key[0]} {key[1]} failed, treating as new: "
                    f"{check.fetch_error}"
                )
        return checks

    def _probe(self, record: Record) -> ExistenceCheck:
        try:
            found = self.destination.retrieve(record.logical_name, record.id, ())
        except RecordOperationFault as e:
            if e.status_code == 404:
                return ExistenceCheck(exists=False)
            return ExistenceCheck(exists=False, fetch_error=e.message)
        return ExistenceCheck(exists=found is not None)

    @staticmethod
    def _classify(item: BulkItemResult) -> ExistenceCheck:
        if item.is_faulted:
            if item.status_code == 404:
                return ExistenceCheck(exists=False)
            return ExistenceCheck(exists=False, fetch_error=item.fault)
        return ExistenceCheck(exists=item.response is not None)


# =============================================================================
# Reconciler
# =============================================================================

def reconcile(records: Sequence[Record],
              existence: Dict[RecordKey, ExistenceCheck]) -> Tuple[List[Record], List[Record]]:
    """
    Partition records into a create bucket and an update bucket.

    Records classified as existing go to ``update``; everything else,
    including records missing from ``existence``, goes to ``create``.
    Input order is kept within each bucket.

    Returns:
        Tuple of (create, update)
    """
    create: List[Record] = []
    update: List[Record] = []
    for record in records:
        check = existence.get(record.key)
        if check is not None and check.exists:
            update.append(record)
        else:
            create.append(record)
    return create, update


def upsert_bucket(records: Sequence[Record]) -> List[Operation]:
    """Degenerate reconciliation: every record becomes one upsert"""
    return [Operation(OperationKind.UPSERT, record) for record in records]


# =============================================================================
# Bulk Executor
# =============================================================================

def _check_response_count(operations: Sequence[Operation],
                          responses: Sequence[BulkItemResult]) -> None:
    if len(responses) != len(operations):
        raise DestinationUnavailable(
            f"Bulk request returned {len(responses)} results for {len(operations)} operations"
        )


class BulkExecutor:
    """
    Submits operations batch by batch with continue-on-error semantics.

    With a batch size of 1 every operation goes through the destination's
    single-record methods instead of a bulk request.
    """

    def __init__(self, destination: DestinationStore, batch_size: int):
        if batch_size < 1:
            raise InvalidConfiguration(f"Batch size must be >= 1, got {batch_size}")
        self.destination = destination
        self.batch_size = batch_size
        self.batches_processed = 0

    def execute(self, operations: Sequence[Operation]) -> List[OperationResult]:
        results: List[OperationResult] = []

        if self.batch_size == 1:
            for operation in operations:
                results.append(self._execute_single(operation))
                self.batches_processed += 1
        else:
            batches = plan(operations, self.batch_size)
            for batch in batches:
                responses = self.destination.execute_bulk(batch, continue_on_error=True)
                _check_response_count(batch, responses)
                results.extend(
                    self._to_result(operation, item)
                    for operation, item in zip(batch, responses)
                )
                self.batches_processed += 1

        for outcome in results:
            if outcome.is_faulted:
                logger.error(
                    f"{outcome.logical_name} {outcome.record_id}: {outcome.reason}"
                )
        return results

    def _execute_single(self, operation: Operation) -> OperationResult:
        record = operation.record
        try:
            if operation.kind == OperationKind.CREATE:
                self.destination.create(record)
                status = ResultStatus.CREATED
            elif operation.kind == OperationKind.UPDATE:
                self.destination.update(record)
                status = ResultStatus.UPDATED
            elif operation.kind == OperationKind.UPSERT:
                _, created = self.destination.upsert(record)
                status = ResultStatus.CREATED if created else ResultStatus.UPDATED
            elif operation.kind == OperationKind.ASSOCIATE:
                self.destination.associate(
                    operation.target.logical_name,
                    operation.target.id,
                    operation.relationship,
                    [operation.related],
                )
                status = ResultStatus.ASSOCIATED
            else:
                raise ValueError(f"Cannot execute {operation.kind} as a write")
        except RecordOperationFault as e:
            return OperationResult(ResultStatus.FAULTED, record.logical_name, record.id, e.message)

        return OperationResult(status, record.logical_name, record.id)

    @staticmethod
    def _to_result(operation: Operation, item: BulkItemResult) -> OperationResult:
        record = operation.record
        if item.is_faulted:
            return OperationResult(ResultStatus.FAULTED, record.logical_name, record.id, item.fault)

        if operation.kind == OperationKind.CREATE:
            status = ResultStatus.CREATED
        elif operation.kind == OperationKind.UPDATE:
            status = ResultStatus.UPDATED
        elif operation.kind == OperationKind.UPSERT:
            status = ResultStatus.CREATED if item.created else ResultStatus.UPDATED
        else:
            status = ResultStatus.ASSOCIATED
        return OperationResult(status, record.logical_name, record.id)


# =============================================================================
# Relationship Resolver
# =============================================================================

class RelationshipResolver:
    """
    Many-to-many relationship metadata for one run.

    The descriptor is fetched from the destination on first use and
    reused for every record of the run.
    """

    def __init__(self, destination: DestinationStore, type_name: str):
        self.destination = destination
        self.type_name = type_name
        self._descriptor: Optional[RelationshipDescriptor] = None

    @property
    def descriptor(self) -> RelationshipDescriptor:
        if self._descriptor is None:
            logger.info(f"Resolving relationship metadata for {self.type_name}")
            self._descriptor = self.destination.get_relationship_metadata(self.type_name)
        return self._descriptor

    @staticmethod
    def _foreign_key(record: Record, attribute: str) -> uuid.UUID:
        value = record.get(attribute)
        if value is None:
            raise MissingAttribute(attribute, record.logical_name, record.id)
        if isinstance(value, EntityReference):
            return value.id
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError:
            raise RecordOperationFault(
                f"Attribute '{attribute}' of record {record.id} is not an identifier: {value!r}",
                logical_name=record.logical_name,
                record_id=record.id,
            )

    def build_operation(self, record: Record) -> Operation:
        """
        Turn an intersect record into an association operation.

        Raises:
            MissingAttribute: If either foreign-key attribute is absent
        """
        relationship = self.descriptor
        entity1_id = self._foreign_key(record, relationship.entity1_intersect_attribute)
        entity2_id = self._foreign_key(record, relationship.entity2_intersect_attribute)
        return Operation(
            kind=OperationKind.ASSOCIATE,
            record=record,
            target=EntityReference(relationship.entity1_logical_name, entity1_id),
            related=EntityReference(relationship.entity2_logical_name, entity2_id),
            relationship=relationship.schema_name,
        )


# =============================================================================
# Sync Engine Class
# =============================================================================

class SyncEngine:
    """
    Orchestrates one sync run from a source to a destination.

    Fatal errors (configuration, unavailable stores) propagate to the
    caller. Per-record faults are collected on the SyncResult.
    """

    def __init__(self, source: SourceProvider,
                 destination: Union[DestinationStore, RecordSink],
                 config: RunConfig):
        """
        Initialize sync engine.

        Args:
            source: Provider of the RecordSet
            destination: Entity service or whole-file sink
            config: Run configuration (batch size, sync type, upsert mode)
        """
        self.source = source
        self.destination = destination
        self.config = config

    def select_mode(self) -> SyncMode:
        """Decide how records reach the destination"""
        if isinstance(self.destination, RecordSink):
            return SyncMode.FILE_EXPORT
        if self.config.sync_type == SyncType.MANY_TO_MANY:
            return SyncMode.MANY_TO_MANY
        if self.config.upsert == UpsertMode.ALWAYS:
            if not self.destination.supports_upsert:
                raise InvalidConfiguration(f"{self.destination.name} does not support upsert")
            return SyncMode.UPSERT
        if self.config.upsert == UpsertMode.AUTO and self.destination.supports_upsert:
            return SyncMode.UPSERT
        return SyncMode.CHECK_THEN_ACT

    def run(self) -> SyncResult:
        """
        Execute the sync run.

        Returns:
            SyncResult with per-status counters and collected faults
        """
        self.config.validate()
        mode = self.select_mode()

        result = SyncResult(mode=mode, started_at=datetime.now())
        logger.info(f"Sync mode: {mode.value}, batch size: {self.config.batch_size}")

        self.source.connect()
        try:
            records = self.source.read_records()
        finally:
            self.source.disconnect()
        result.records_read = len(records)
        logger.info(f"Read {len(records)} records from {self.source.name}")

        self.destination.connect()
        try:
            if mode == SyncMode.FILE_EXPORT:
                result.records_written = self.destination.write_records(records)
            elif mode == SyncMode.MANY_TO_MANY:
                self._sync_many_to_many(records, result)
            elif mode == SyncMode.UPSERT:
                self._sync_upsert(records, result)
            else:
                self._sync_check_then_act(records, result)
        finally:
            self.destination.disconnect()

        result.success = True
        result.completed_at = datetime.now()
        logger.info(
            f"Created {result.created}, updated {result.updated}, "
            f"associated {result.associated}, faulted {result.faulted}"
        )
        return result

    def _sync_check_then_act(self, records: List[Record], result: SyncResult) -> None:
        """Probe existence per chunk, then drain the create and update buckets"""
        resolver = ExistenceResolver(self.destination, self.config.batch_size)
        existence: Dict[RecordKey, ExistenceCheck] = {}
        for chunk in plan(records, self.config.batch_size):
            existence.update(resolver.resolve(chunk))

        create, update = reconcile(records, existence)
        logger.info(f"{len(create)} records to create, {len(update)} records to update")

        executor = BulkExecutor(self.destination, self.config.batch_size)
        result.add(executor.execute([Operation(OperationKind.CREATE, r) for r in create]))
        result.add(executor.execute([Operation(OperationKind.UPDATE, r) for r in update]))
        result.batches_processed += executor.batches_processed

    def _sync_upsert(self, records: List[Record], result: SyncResult) -> None:
        executor = BulkExecutor(self.destination, self.config.batch_size)
        result.add(executor.execute(upsert_bucket(records)))
        result.batches_processed += executor.batches_processed

    def _sync_many_to_many(self, records: List[Record], result: SyncResult) -> None:
        """Associate the two sides of every intersect record"""
        if not records:
            logger.info("No records to associate")
            return

        resolver = RelationshipResolver(self.destination, records[0].logical_name)
        relationship = resolver.descriptor
        logger.info(
            f"Associating {relationship.entity1_logical_name} with "
            f"{relationship.entity2_logical_name} via {relationship.schema_name}"
        )

        operations: List[Operation] = []
        for record in records:
            try:
                operations.append(resolver.build_operation(record))
            except RecordOperationFault as e:
                logger.error(f"{record.logical_name} {record.id}: {e.message}")
                result.add([OperationResult(
                    ResultStatus.FAULTED, record.logical_name, record.id, e.message,
                )])

        executor = BulkExecutor(self.destination, self.config.batch_size)
        result.add(executor.execute(operations))
        result.batches_processed += executor.batches_processed
