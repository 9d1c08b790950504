"""
Batch Allocation Service
========================
Business logic around the allocation engine:
- Run orchestration (validate, allocate, summarize)
- Commit of the flattened allocation records to a record store
- Write-time re-validation of the inventory snapshot

The engine itself is pure; mutual exclusion between runs is enforced here,
at commit time: the record store re-reads every consumed pallet inside the
write transaction and rejects the whole run if the snapshot went stale.
"""
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..config import config
from ..db import get_db_engine
from .batch_allocator import BatchAllocator, flatten_records
from .batch_data import BatchAllocationData
from .batch_formatters import format_summary_message
from .batch_models import (
    AllocationRecord,
    AllocationResult,
    AllocationSummary,
    DemandLine,
    InventoryUnit,
    ItemConfig,
)
from .batch_validator import BatchAllocationError, BatchAllocationValidator, QTY_EPSILON

logger = logging.getLogger(__name__)

# Stores that track allocations separately leave available_quantity NULL
AVAILABLE_EXPR = "COALESCE(available_quantity, on_hand_quantity - COALESCE(allocated_quantity, 0))"


# ==================== CUSTOM EXCEPTIONS ====================

class PersistenceError(BatchAllocationError):
    """Raised when allocation records could not be persisted"""
    pass


class StaleSnapshotError(PersistenceError):
    """Raised when a consumed pallet changed since the snapshot was read"""
    def __init__(self, changes: List[str]):
        self.changes = list(changes)
        super().__init__(
            "Inventory changed since the allocation snapshot was read: " + "; ".join(self.changes)
        )


# ==================== RESULT TYPES ====================

@dataclass
class AllocationRun:
    """Output of one engine run"""
    results: List[AllocationResult]
    summary: AllocationSummary
    inventory: List[InventoryUnit] = field(default_factory=list)

    @property
    def records(self) -> List[AllocationRecord]:
        return flatten_records(self.results)


@dataclass
class CommitResult:
    """Outcome of persisting a run"""
    success: bool
    message: str
    records_saved: int = 0
    errors: List[str] = field(default_factory=list)


def _pallet_ref(record_or_unit: Any) -> Tuple[str, Any]:
    """Identify a pallet in the store: by inventory row id, else by pallet id"""
    if record_or_unit.inventory_id is not None:
        return ('id', record_or_unit.inventory_id)
    return ('pallet_id', record_or_unit.pallet_id)


# ==================== RECORD STORES ====================

class AllocationRecordStore(ABC):
    """Persistence collaborator: accepts the flat record list of one run"""

    @abstractmethod
    def save(self, records: Sequence[AllocationRecord], snapshot: Sequence[InventoryUnit],
             so_header_id: Any = None) -> int:
        """
        Persist all records atomically

        Returns:
            Number of records saved

        Raises:
            PersistenceError: nothing was persisted
        """
        pass


class SqlAllocationStore(AllocationRecordStore):
    """Writes allocation records to so_inventory and decrements inventory in one transaction"""

    def __init__(self, engine: Optional[Engine] = None, check_snapshot: Optional[bool] = None):
        self.engine = engine or get_db_engine()
        if check_snapshot is None:
            check_snapshot = config.is_feature_enabled('SNAPSHOT_CHECK')
        self.check_snapshot = check_snapshot

    @contextmanager
    def db_transaction(self):
        """Context manager for one database transaction"""
        conn = self.engine.connect()
        trans = conn.begin()
        try:
            yield conn
            trans.commit()
            logger.debug("Transaction committed successfully")
        except Exception as e:
            trans.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise
        finally:
            conn.close()

    def save(self, records: Sequence[AllocationRecord], snapshot: Sequence[InventoryUnit],
             so_header_id: Any = None) -> int:
        if not records:
            return 0

        consumed: "OrderedDict[Tuple[str, Any], float]" = OrderedDict()
        for record in records:
            ref = _pallet_ref(record)
            if ref[1] is None:
                raise PersistenceError(
                    f"Record for line {record.line_id} has neither inventory id nor pallet id"
                )
            consumed[ref] = consumed.get(ref, 0.0) + record.allocated_quantity

        snapshot_available: Dict[Tuple[str, Any], float] = {}
        for unit in snapshot:
            ref = _pallet_ref(unit)
            snapshot_available[ref] = snapshot_available.get(ref, 0.0) + unit.available_quantity

        try:
            with self.db_transaction() as conn:
                if self.check_snapshot:
                    self._verify_snapshot(conn, consumed, snapshot_available)

                now = datetime.now()
                conn.execute(text("""
                    INSERT INTO so_inventory (
                        so_header_id, so_line_id, item_id, inventory_id, batch_number,
                        location_id, pallet_id, allocated_quantity, expiry_date,
                        strategy, status, allocation_date, remarks
                    ) VALUES (
                        :so_header_id, :so_line_id, :item_id, :inventory_id, :batch_number,
                        :location_id, :pallet_id, :allocated_quantity, :expiry_date,
                        :strategy, 'Allocated', :allocation_date, :remarks
                    )
                """), [
                    {
                        'so_header_id': so_header_id,
                        'so_line_id': r.line_id,
                        'item_id': r.item_id,
                        'inventory_id': r.inventory_id,
                        'batch_number': r.batch_number,
                        'location_id': r.location_id,
                        'pallet_id': r.pallet_id,
                        'allocated_quantity': r.allocated_quantity,
                        'expiry_date': r.expiry_date,
                        'strategy': r.strategy.value,
                        'allocation_date': now,
                        'remarks': f"Allocated via {r.strategy.value} strategy",
                    }
                    for r in records
                ])

                for (column, value), quantity in consumed.items():
                    conn.execute(text(f"""
                        UPDATE inventory
                        SET available_quantity = {AVAILABLE_EXPR} - :quantity,
                            allocated_quantity = COALESCE(allocated_quantity, 0) + :quantity
                        WHERE {column} = :value
                    """), {'quantity': quantity, 'value': value})

        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save allocation: {e}") from e

        logger.info(f"💾 Saved {len(records)} allocation record(s) for SO {so_header_id}")
        return len(records)

    def _verify_snapshot(self, conn, consumed: Mapping[Tuple[str, Any], float],
                         snapshot_available: Mapping[Tuple[str, Any], float]):
        """Re-read consumed pallets; any drift from the snapshot aborts the transaction"""
        changes = []
        for (column, value) in consumed:
            row = conn.execute(
                text(f"SELECT SUM({AVAILABLE_EXPR}) AS available FROM inventory WHERE {column} = :value"),
                {'value': value}
            ).fetchone()
            current = row[0] if row is not None else None
            expected = snapshot_available.get((column, value))

            if current is None:
                changes.append(f"pallet {value} no longer exists")
            elif expected is None or abs(float(current) - expected) > QTY_EPSILON:
                changes.append(f"pallet {value} available {float(current):g}, snapshot had {expected}")

        if changes:
            raise StaleSnapshotError(changes)


# ==================== SERVICE ====================

class BatchAllocationService:
    """Service for running and committing batch allocations"""

    def __init__(self, store: Optional[AllocationRecordStore] = None,
                 data: Optional[BatchAllocationData] = None,
                 allocator: Optional[BatchAllocator] = None,
                 validator: Optional[BatchAllocationValidator] = None):
        self.store = store
        self.data = data
        self.validator = validator or BatchAllocationValidator()
        self.allocator = allocator or BatchAllocator(validator=self.validator)

    def run(self, demand_lines: Sequence[DemandLine], inventory: Sequence[InventoryUnit],
            item_configs: Optional[Mapping[Any, ItemConfig]] = None,
            today: Optional[date] = None) -> AllocationRun:
        """Run the engine on a snapshot and summarize the outcome"""
        results = self.allocator.allocate(demand_lines, inventory, item_configs, today)
        summary = self.validator.summarize(results)
        logger.info(format_summary_message(summary))
        return AllocationRun(results=results, summary=summary, inventory=list(inventory))

    def run_for_order(self, so_header_id: Any, warehouse_id: Optional[Any] = None,
                      today: Optional[date] = None) -> AllocationRun:
        """Load lines, snapshot and configs for a sales order, then run"""
        if self.data is None:
            self.data = BatchAllocationData()

        demand_lines = self.data.get_demand_lines(so_header_id)
        item_ids = [line.item_id for line in demand_lines]
        inventory = self.data.get_inventory(item_ids, warehouse_id)
        item_configs = self.data.get_item_configs(item_ids)

        return self.run(demand_lines, inventory, item_configs, today)

    def commit(self, run: AllocationRun, so_header_id: Any = None) -> CommitResult:
        """
        Persist a run's records; the run is committed entirely or not at all

        Returns:
            CommitResult (failures are reported, not raised)
        """
        violations = self.validator.check_conservation(run.results, run.inventory)
        if violations:
            logger.error(f"❌ Refusing to commit inconsistent run: {violations}")
            return CommitResult(False, "❌ Allocation run failed consistency checks", errors=violations)

        records = run.records
        if not records:
            return CommitResult(True, "ℹ️ Nothing to save: no inventory was allocated")

        if self.store is None:
            self.store = SqlAllocationStore()

        try:
            saved = self.store.save(records, run.inventory, so_header_id)
        except StaleSnapshotError as e:
            logger.warning(f"⚠️ {e}")
            return CommitResult(False, "⚠️ Inventory changed during allocation, please re-run", errors=e.changes)
        except PersistenceError as e:
            logger.error(f"❌ {e}")
            return CommitResult(False, "❌ Error saving allocation", errors=[str(e)])

        return CommitResult(True, f"✅ Allocated {saved} batch record(s) to SO", records_saved=saved)
