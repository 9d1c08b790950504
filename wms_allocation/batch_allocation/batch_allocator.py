"""
Batch Allocator
===============
Allocates demand lines to pallet inventory, line by line in input order:

STEP 1: specific batch match (requested batch number, case-insensitive)
STEP 2: primary strategy pass (BATCH / FEFO / FIFO from StrategySelector)
STEP 3: FIFO last resort when the primary strategy was not FIFO

Draw-down is tracked per consolidated batch and per pallet in a RunState
owned by a single allocate() call, so earlier lines see what later lines
cannot take and no pallet quantity is allocated twice within a run.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..config import config
from .batch_models import (
    AllocationRecord,
    AllocationResult,
    ConsolidatedBatch,
    DemandLine,
    InventoryUnit,
    ItemConfig,
    PoolKey,
    StrategyType,
)
from .batch_validator import QTY_EPSILON, BatchAllocationValidator
from .pallet_pool import PalletPool, consolidate_pallets, pallet_key
from .strategy_engine import BatchSorter, StrategySelector

logger = logging.getLogger(__name__)


@dataclass
class RunState:
    """Cumulative draw-down of one allocation run"""
    batch_allocated: Dict[PoolKey, float] = field(default_factory=dict)
    pallet_allocated: Dict[str, float] = field(default_factory=dict)

    def batch_available(self, batch: ConsolidatedBatch) -> float:
        """Available quantity minus what this run already took"""
        return batch.available_quantity - self.batch_allocated.get(batch.key, 0.0)

    def pallet_available(self, unit: InventoryUnit, key: str) -> float:
        return unit.available_quantity - self.pallet_allocated.get(key, 0.0)

    def record_draw(self, batch_key: PoolKey, pallet_tracker_key: str, quantity: float):
        self.batch_allocated[batch_key] = self.batch_allocated.get(batch_key, 0.0) + quantity
        self.pallet_allocated[pallet_tracker_key] = self.pallet_allocated.get(pallet_tracker_key, 0.0) + quantity


def _same_batch(batch_number: Optional[str], requested: str) -> bool:
    return batch_number is not None and batch_number.upper() == requested.upper()


class BatchAllocator:
    """
    Main engine for batch-aware allocation.

    allocate() is a pure function of its inputs: it builds fresh pools and a
    fresh RunState on every call and never mutates the snapshot.
    """

    def __init__(self, selector: Optional[StrategySelector] = None,
                 sorter: Optional[BatchSorter] = None,
                 validator: Optional[BatchAllocationValidator] = None):
        self.selector = selector or StrategySelector()
        self.sorter = sorter or BatchSorter()
        self.validator = validator or BatchAllocationValidator()

    def allocate(self, demand_lines: Sequence[DemandLine],
                 inventory: Sequence[InventoryUnit],
                 item_configs: Optional[Mapping[Any, ItemConfig]] = None,
                 today: Optional[date] = None) -> List[AllocationResult]:
        """
        Allocate demand lines against an inventory snapshot

        Args:
            demand_lines: Lines in priority (input) order
            inventory: Pallet snapshot, read fresh before the run
            item_configs: item_id -> ItemConfig (missing entries are inferred)
            today: Reference date for expiry checks (defaults to configured today)

        Returns:
            One AllocationResult per demand line, in input order

        Raises:
            InputValidationError: malformed lines or snapshot rows
        """
        self.validator.validate_run_input(demand_lines, inventory)

        if today is None:
            today = config.today()

        item_configs = item_configs or {}
        pool = consolidate_pallets(inventory)
        state = RunState()

        results = [
            self._allocate_line(line, pool, state, item_configs.get(line.item_id), today)
            for line in demand_lines
        ]

        logger.info(
            f"📋 Allocation run: {len(demand_lines)} line(s), {pool.pallet_count} pallet(s) "
            f"in {len(pool)} batch(es), {sum(len(r.records) for r in results)} draw(s)"
        )
        return results

    # ==================== PER-LINE ALLOCATION ====================

    def _item_batches(self, line: DemandLine, pool: PalletPool) -> List[ConsolidatedBatch]:
        """Batches of the line's item, ignoring rows whose item code contradicts the line"""
        batches = []
        for batch in pool.batches_for_item(line.item_id):
            if line.item_code and batch.item_code and batch.item_code.upper() != line.item_code.upper():
                logger.warning(
                    f"⚠️ Skipping batch {batch.batch_number} at location {batch.location_id}: "
                    f"item code {batch.item_code} does not match line item {line.item_code}"
                )
                continue
            batches.append(batch)
        return batches

    def _allocate_line(self, line: DemandLine, pool: PalletPool, state: RunState,
                       item_config: Optional[ItemConfig], today: date) -> AllocationResult:
        result = AllocationResult(
            line_id=line.line_id,
            order_id=line.order_id,
            item_id=line.item_id,
            item_code=line.item_code,
            ordered_quantity=line.ordered_quantity,
        )

        item_batches = self._item_batches(line, pool)
        candidates = [b for b in item_batches if state.batch_available(b) > QTY_EPSILON]
        logger.debug(f"📋 Item {line.item_code} (ID: {line.item_id}): {len(candidates)} available batch(es)")

        selected = self.selector.select(line, item_config, candidates, today)
        strategy = selected
        remaining = line.ordered_quantity

        # STEP 1: requested batch first
        if line.requested_batch:
            targets = [b for b in item_batches if _same_batch(b.batch_number, line.requested_batch)]
            if not targets:
                logger.warning(
                    f"⚠️ Requested batch {line.requested_batch} not found for item {line.item_code}. "
                    f"Falling back to {selected.value}"
                )
            drawn_specific = 0.0
            for batch in targets:
                if remaining <= QTY_EPSILON:
                    break
                if state.batch_available(batch) <= QTY_EPSILON:
                    continue
                drawn = self._draw_from_batch(line, batch, pool, state, remaining, StrategyType.BATCH, result)
                drawn_specific += drawn
                remaining -= drawn
            if drawn_specific > 0:
                strategy = StrategyType.BATCH

        # STEP 2: primary strategy
        if remaining > QTY_EPSILON:
            ordered = self.sorter.sort([b for b in item_batches if b.available_quantity > QTY_EPSILON], selected, today)
            for batch in ordered:
                if remaining <= QTY_EPSILON:
                    break
                if line.requested_batch and _same_batch(batch.batch_number, line.requested_batch):
                    continue
                if state.batch_available(batch) <= QTY_EPSILON:
                    continue
                remaining -= self._draw_from_batch(line, batch, pool, state, remaining, selected, result)

        # STEP 3: FIFO last resort
        if remaining > QTY_EPSILON and selected != StrategyType.FIFO:
            used: Set[str] = {r.pallet_id for r in result.records if r.pallet_id}
            ordered = self.sorter.sort([b for b in item_batches if b.available_quantity > QTY_EPSILON],
                                       StrategyType.FIFO, today)
            for batch in ordered:
                if remaining <= QTY_EPSILON:
                    break
                if state.batch_available(batch) <= QTY_EPSILON:
                    continue
                remaining -= self._draw_from_batch(line, batch, pool, state, remaining,
                                                   StrategyType.FIFO, result, skip_pallets=used)

        result.strategy = strategy
        # Float residue below QTY_EPSILON counts as fully allocated
        result.is_fully_allocated = remaining <= QTY_EPSILON
        result.shortfall = 0.0 if result.is_fully_allocated else remaining

        if remaining > QTY_EPSILON:
            logger.warning(
                f"❌ Insufficient inventory: item {line.item_code} has shortfall of {remaining:g} units. "
                f"Allocated: {result.total_allocated:g}/{line.ordered_quantity:g}"
            )
        return result

    def _draw_from_batch(self, line: DemandLine, batch: ConsolidatedBatch, pool: PalletPool,
                         state: RunState, remaining: float, strategy: StrategyType,
                         result: AllocationResult,
                         skip_pallets: Optional[Iterable[str]] = None) -> float:
        """
        Draw up to `remaining` from the batch's pallets in stored order.

        Returns:
            Quantity drawn (appends one AllocationRecord per pallet touched)
        """
        skip = set(skip_pallets or ())
        drawn = 0.0

        for position, pallet in enumerate(pool.pallets(batch.key)):
            if remaining - drawn <= QTY_EPSILON:
                break
            if pallet.pallet_id and pallet.pallet_id in skip:
                continue

            key = pallet_key(pallet, position)
            pallet_available = state.pallet_available(pallet, key)
            if pallet_available <= QTY_EPSILON:
                continue

            quantity = min(remaining - drawn, pallet_available)
            result.records.append(AllocationRecord(
                line_id=line.line_id,
                item_id=pallet.item_id,
                item_code=pallet.item_code or line.item_code,
                batch_number=pallet.batch_number,
                expiry_date=pallet.expiry_date,
                manufacturing_date=pallet.manufacturing_date,
                location_id=pallet.location_id,
                location_code=pallet.location_code,
                pallet_id=pallet.pallet_id,
                inventory_id=pallet.inventory_id,
                allocated_quantity=quantity,
                strategy=strategy,
            ))
            state.record_draw(batch.key, key, quantity)
            result.total_allocated += quantity
            drawn += quantity

            logger.debug(
                f"   ✅ {strategy.value}: {pallet.batch_number} from pallet {pallet.pallet_id} "
                f"(expiry: {pallet.expiry_date or 'N/A'}) - allocating {quantity:g}/{pallet_available:g}"
            )

        return drawn


def flatten_records(results: Iterable[AllocationResult]) -> List[AllocationRecord]:
    """All draws of a run, in result order then draw order"""
    return [record for result in results for record in result.records]


def allocate(demand_lines: Sequence[DemandLine], inventory: Sequence[InventoryUnit],
             item_configs: Optional[Mapping[Any, ItemConfig]] = None,
             today: Optional[date] = None) -> List[AllocationResult]:
    """Convenience wrapper around BatchAllocator().allocate()"""
    return BatchAllocator().allocate(demand_lines, inventory, item_configs, today)
