"""
Batch Allocation Validator
==========================
Validation rules for batch allocation runs:
- Input validation before a run (malformed lines and snapshot rows)
- Result aggregation (fully / partially / un-allocated)
- Conservation checks of a finished run against its snapshot

Shortfall is data, not an error: nothing here raises for it.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .batch_models import (
    AllocationResult,
    AllocationSummary,
    DemandLine,
    InventoryUnit,
)
from .pallet_pool import pallet_key

logger = logging.getLogger(__name__)

# Float tolerance for quantity comparisons
QTY_EPSILON = 1e-9


# ==================== CUSTOM EXCEPTIONS ====================

class BatchAllocationError(Exception):
    """Base exception for batch allocation errors"""
    pass


class InputValidationError(BatchAllocationError):
    """Raised when run input is malformed; nothing has been processed"""
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid allocation input: " + "; ".join(self.errors))


# ==================== VALIDATOR ====================

class BatchAllocationValidator:
    """Validator for batch allocation runs"""

    LINE_SUCCESS = 'success'
    LINE_WARNING = 'warning'
    LINE_FAILURE = 'failure'

    # ==================== Input Validation ====================

    def validate_demand_lines(self, demand_lines: Sequence[DemandLine]) -> List[str]:
        """
        Validate demand lines

        Returns:
            List of error messages (empty if valid)
        """
        errors = []
        seen_ids = set()

        for idx, line in enumerate(demand_lines):
            label = f"Line {idx + 1}"
            if line.line_id is None or line.line_id == "":
                errors.append(f"{label}: demand line id is required")
            elif line.line_id in seen_ids:
                errors.append(f"{label}: duplicate demand line id {line.line_id}")
            else:
                seen_ids.add(line.line_id)

            if line.item_id is None or line.item_id == "":
                errors.append(f"{label}: item id is required")

            if line.ordered_quantity is None or line.ordered_quantity <= 0:
                errors.append(f"{label}: ordered quantity must be positive (got {line.ordered_quantity})")

        return errors

    def validate_inventory(self, inventory: Sequence[InventoryUnit]) -> List[str]:
        """Validate snapshot rows; negative quantities are malformed input"""
        errors = []

        for idx, unit in enumerate(inventory):
            label = f"Pallet {unit.pallet_id or idx + 1}"
            if unit.item_id is None or unit.item_id == "":
                errors.append(f"{label}: item id is required")
            if unit.available_quantity < 0:
                errors.append(f"{label}: available quantity cannot be negative ({unit.available_quantity})")
            if unit.on_hand_quantity < 0:
                errors.append(f"{label}: on-hand quantity cannot be negative ({unit.on_hand_quantity})")

        return errors

    def validate_run_input(self, demand_lines: Sequence[DemandLine],
                           inventory: Sequence[InventoryUnit]) -> None:
        """Raise InputValidationError before any processing if input is malformed"""
        errors = self.validate_demand_lines(demand_lines) + self.validate_inventory(inventory)
        if errors:
            for error in errors:
                logger.error(f"❌ {error}")
            raise InputValidationError(errors)

    # ==================== Result Aggregation ====================

    def summarize(self, results: Sequence[AllocationResult]) -> AllocationSummary:
        """Aggregate per-line results into counts and a status line"""
        item_count = len(results)
        fully_allocated = sum(1 for r in results if r.is_fully_allocated)
        partially_allocated = sum(1 for r in results if not r.is_fully_allocated and r.total_allocated > 0)
        unallocated = sum(1 for r in results if r.total_allocated <= 0)
        total_batches_used = sum(len(r.records) for r in results)

        if fully_allocated == item_count:
            summary = f"✅ All items fully allocated using {total_batches_used} batch(es)"
        else:
            summary = (
                f"⚠️ Partial allocation: {fully_allocated} items full, "
                f"{partially_allocated} partial, {unallocated} unallocated"
            )

        return AllocationSummary(
            item_count=item_count,
            fully_allocated=fully_allocated,
            partially_allocated=partially_allocated,
            unallocated=unallocated,
            total_batches_used=total_batches_used,
            total_ordered=sum(r.ordered_quantity for r in results),
            total_allocated=sum(r.total_allocated for r in results),
            summary=summary,
        )

    def validate_allocation(self, results: Sequence[AllocationResult]) -> Tuple[bool, List[str]]:
        """
        Check that all lines can be fully allocated

        Returns:
            Tuple of (valid, list of error messages)
        """
        errors = []
        for result in results:
            if not result.is_fully_allocated:
                errors.append(
                    f"Item {result.item_code}: Insufficient inventory. "
                    f"Need {result.ordered_quantity:g}, can allocate {result.total_allocated:g}. "
                    f"Shortfall: {result.shortfall:g}"
                )
        return len(errors) == 0, errors

    def line_status(self, result: AllocationResult) -> str:
        """success: full; warning: partial; failure: nothing allocated"""
        if result.is_fully_allocated:
            return self.LINE_SUCCESS
        if result.total_allocated > 0:
            return self.LINE_WARNING
        return self.LINE_FAILURE

    # ==================== Conservation Checks ====================

    def check_conservation(self, results: Sequence[AllocationResult],
                           inventory: Sequence[InventoryUnit]) -> List[str]:
        """
        Verify a run never allocated more than the snapshot held,
        per consolidated batch and per pallet, and that each line's
        totals add up.

        Returns:
            List of violations (empty if the run is consistent)
        """
        violations = []

        batch_available: Dict[Any, float] = defaultdict(float)
        pallet_available: Dict[str, float] = defaultdict(float)
        positions: Dict[Any, int] = defaultdict(int)
        for unit in inventory:
            batch_available[unit.pool_key] += unit.available_quantity
            pallet_available[pallet_key(unit, positions[unit.pool_key])] += unit.available_quantity
            positions[unit.pool_key] += 1

        batch_used: Dict[Any, float] = defaultdict(float)
        pallet_used: Dict[str, float] = defaultdict(float)

        for result in results:
            line_total = 0.0
            for record in result.records:
                if record.allocated_quantity <= 0:
                    violations.append(f"Line {result.line_id}: non-positive draw {record.allocated_quantity}")
                line_total += record.allocated_quantity
                batch_used[(record.item_id, record.batch_number, record.location_id)] += record.allocated_quantity
                if record.pallet_id:
                    pallet_used[record.pallet_id] += record.allocated_quantity

            if abs(line_total - result.total_allocated) > QTY_EPSILON:
                violations.append(
                    f"Line {result.line_id}: total {result.total_allocated:g} != sum of draws {line_total:g}"
                )
            if result.shortfall < 0 or abs(result.total_allocated + result.shortfall - result.ordered_quantity) > QTY_EPSILON:
                violations.append(
                    f"Line {result.line_id}: allocated {result.total_allocated:g} + shortfall "
                    f"{result.shortfall:g} != ordered {result.ordered_quantity:g}"
                )

        for key, used in batch_used.items():
            if used > batch_available.get(key, 0.0) + QTY_EPSILON:
                violations.append(f"Batch {key}: allocated {used:g} exceeds available {batch_available.get(key, 0.0):g}")

        for pid, used in pallet_used.items():
            if used > pallet_available.get(pid, 0.0) + QTY_EPSILON:
                violations.append(f"Pallet {pid}: allocated {used:g} exceeds available {pallet_available.get(pid, 0.0):g}")

        return violations

    def validate_pallet_capacity(self, pallet_capacity: Optional[float],
                                 weight_per_unit: Optional[float]) -> List[str]:
        """Capacity and weight per unit must both be positive"""
        errors = []
        if pallet_capacity is None or pallet_capacity <= 0:
            errors.append(f"Pallet capacity must be positive (got {pallet_capacity})")
        if weight_per_unit is None or weight_per_unit <= 0:
            errors.append(f"Weight per unit must be positive (got {weight_per_unit})")
        return errors
