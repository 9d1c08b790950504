"""Data loading, run orchestration and commit tests against SQLite."""

from datetime import date

import pytest
from sqlalchemy import text

from conftest import TODAY, make_line, make_unit
from wms_allocation.batch_allocation import (
    AllocationRecordStore,
    AllocationResult,
    AllocationRun,
    BatchAllocationData,
    BatchAllocationService,
    BatchAllocationValidator,
    InventoryUnit,
    PersistenceError,
    SqlAllocationStore,
    StrategyType,
)
from wms_allocation.batch_allocation.batch_service import _pallet_ref


def fetch(engine, sql):
    with engine.connect() as conn:
        return conn.execute(text(sql)).fetchall()


class InMemoryStore(AllocationRecordStore):
    def __init__(self, fail=False):
        self.saved = []
        self.fail = fail

    def save(self, records, snapshot, so_header_id=None):
        if self.fail:
            raise PersistenceError("disk full")
        self.saved.extend(records)
        return len(records)


# ==================== Data Loading ====================

class TestBatchAllocationData:

    def test_demand_lines(self, seeded_engine):
        lines = BatchAllocationData(seeded_engine).get_demand_lines(500)

        assert [l.line_id for l in lines] == [1, 2]
        assert lines[0].requested_batch is None
        assert lines[1].requested_batch == "LOT-B"
        assert lines[1].ordered_quantity == 3.0
        assert lines[0].order_id == 500

    def test_unknown_order_has_no_lines(self, seeded_engine):
        assert BatchAllocationData(seeded_engine).get_demand_lines(999) == []

    def test_inventory_snapshot(self, seeded_engine):
        units = BatchAllocationData(seeded_engine).get_inventory([1, 2], warehouse_id=1)
        by_id = {u.inventory_id: u for u in units}

        assert sorted(by_id) == [11, 12, 21, 22]
        assert by_id[12].expiry_date == date(2025, 1, 10)
        assert by_id[12].pallet_id == "P-12"
        assert by_id[22].available_quantity == 2.0  # on hand 4 - allocated 2
        assert by_id[21].expiry_date is None

    def test_inventory_filters_by_item_and_warehouse(self, seeded_engine):
        data = BatchAllocationData(seeded_engine)

        assert {u.item_id for u in data.get_inventory([2])} == {2}
        assert data.get_inventory([1], warehouse_id=9) == []
        assert data.get_inventory([]) == []

    def test_null_inventory_id_falls_back_to_pallet_id(self):
        row = {'inventory_id': float('nan'), 'item_id': 1, 'location_id': 10,
               'available_quantity': 2, 'pallet_id': 'P-9'}
        unit = InventoryUnit.from_dict(row)

        assert unit.inventory_id is None
        assert _pallet_ref(unit) == ('pallet_id', 'P-9')
        assert InventoryUnit.from_dict({**row, 'id': 42}).inventory_id == 42

    def test_item_configs(self, seeded_engine):
        configs = BatchAllocationData(seeded_engine).get_item_configs([1, 2, 3])

        assert set(configs) == {1, 2}
        assert not configs[1].batch_tracking
        assert configs[1].pallet_capacity == 100.0
        assert configs[2].batch_tracking
        assert configs[2].pallet_capacity is None


# ==================== Run ====================

class TestRunForOrder:

    def test_plan_for_order(self, seeded_engine):
        service = BatchAllocationService(data=BatchAllocationData(seeded_engine))
        run = service.run_for_order(500, warehouse_id=1, today=TODAY)

        first, second = run.results
        assert first.strategy == StrategyType.FEFO
        assert [(r.pallet_id, r.allocated_quantity) for r in first.records] == [("P-12", 5.0), ("P-11", 3.0)]
        assert second.strategy == StrategyType.BATCH
        assert [(r.pallet_id, r.allocated_quantity) for r in second.records] == [("P-22", 2.0), ("P-21", 1.0)]
        assert run.summary.all_satisfied
        assert len(run.records) == 4

    def test_run_keeps_snapshot(self):
        inventory = [make_unit("P1", 5)]
        run = BatchAllocationService().run([make_line(1, 2)], inventory, today=TODAY)

        assert run.inventory == inventory
        assert run.summary.total_allocated == 2


# ==================== Commit ====================

class TestCommit:

    def run_order(self, engine):
        service = BatchAllocationService(
            store=SqlAllocationStore(engine, check_snapshot=True),
            data=BatchAllocationData(engine),
        )
        return service, service.run_for_order(500, today=TODAY)

    def test_commit_writes_records_and_decrements_inventory(self, seeded_engine):
        service, run = self.run_order(seeded_engine)
        outcome = service.commit(run, so_header_id=500)

        assert outcome.success
        assert outcome.records_saved == 4
        assert outcome.message == "✅ Allocated 4 batch record(s) to SO"

        rows = fetch(seeded_engine, "SELECT so_line_id, pallet_id, allocated_quantity, strategy, status, remarks "
                                    "FROM so_inventory ORDER BY id")
        assert [(r[0], r[1], r[2]) for r in rows] == [(1, "P-12", 5), (1, "P-11", 3), (2, "P-22", 2), (2, "P-21", 1)]
        assert tuple(rows[0][3:]) == ("FEFO", "Allocated", "Allocated via FEFO strategy")

        stock = dict(fetch(seeded_engine, "SELECT id, available_quantity FROM inventory"))
        assert stock == {11: 2, 12: 0, 21: 9, 22: 0}
        allocated = dict(fetch(seeded_engine, "SELECT id, allocated_quantity FROM inventory"))
        assert allocated[22] == 4

    def test_stale_snapshot_rolls_back(self, seeded_engine):
        service, run = self.run_order(seeded_engine)
        with seeded_engine.begin() as conn:
            conn.execute(text("UPDATE inventory SET available_quantity = 1 WHERE id = 12"))

        outcome = service.commit(run, so_header_id=500)

        assert not outcome.success
        assert outcome.message == "⚠️ Inventory changed during allocation, please re-run"
        assert any("12" in change for change in outcome.errors)
        assert fetch(seeded_engine, "SELECT COUNT(*) FROM so_inventory")[0][0] == 0
        assert fetch(seeded_engine, "SELECT available_quantity FROM inventory WHERE id = 11")[0][0] == 5

    def test_unchecked_store_ignores_drift(self, seeded_engine):
        service, run = self.run_order(seeded_engine)
        service.store = SqlAllocationStore(seeded_engine, check_snapshot=False)
        with seeded_engine.begin() as conn:
            conn.execute(text("UPDATE inventory SET available_quantity = 6 WHERE id = 12"))

        assert service.commit(run).success

    def test_nothing_to_save(self):
        store = InMemoryStore()
        service = BatchAllocationService(store=store)
        run = service.run([make_line(1, 2)], [], today=TODAY)

        outcome = service.commit(run)

        assert outcome.success
        assert outcome.records_saved == 0
        assert outcome.message.startswith("ℹ️ Nothing to save")
        assert store.saved == []

    def test_store_receives_flat_records(self):
        store = InMemoryStore()
        service = BatchAllocationService(store=store)
        run = service.run([make_line(1, 2), make_line(2, 4)], [make_unit("P1", 3), make_unit("P2", 3)], today=TODAY)

        outcome = service.commit(run, so_header_id=100)

        assert outcome.records_saved == 3
        assert [(r.line_id, r.pallet_id) for r in store.saved] == [(1, "P1"), (2, "P1"), (2, "P2")]

    def test_store_failure_is_reported(self):
        service = BatchAllocationService(store=InMemoryStore(fail=True))
        run = service.run([make_line(1, 2)], [make_unit("P1", 3)], today=TODAY)

        outcome = service.commit(run)

        assert not outcome.success
        assert outcome.message == "❌ Error saving allocation"
        assert outcome.errors == ["disk full"]

    def test_inconsistent_run_is_refused(self):
        store = InMemoryStore()
        service = BatchAllocationService(store=store)
        run = service.run([make_line(1, 2)], [make_unit("P1", 3)], today=TODAY)
        broken = AllocationResult(line_id=1, item_id=1, ordered_quantity=2, total_allocated=5,
                                  shortfall=0, is_fully_allocated=True, records=run.results[0].records)
        bad_run = AllocationRun(results=[broken], summary=run.summary, inventory=run.inventory)

        outcome = service.commit(bad_run)

        assert not outcome.success
        assert outcome.errors
        assert store.saved == []


def test_record_without_pallet_reference_is_rejected(sqlite_engine):
    validator = BatchAllocationValidator()
    service = BatchAllocationService(store=SqlAllocationStore(sqlite_engine, check_snapshot=False),
                                     validator=validator)
    run = service.run([make_line(1, 2)], [make_unit(None, 3)], today=TODAY)

    with pytest.raises(PersistenceError):
        service.store.save(run.records, run.inventory)
