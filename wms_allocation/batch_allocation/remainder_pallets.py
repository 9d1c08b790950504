"""
Remainder Pallet Calculator
===========================
Splits a quantity into full pallets plus one partial "remainder" pallet.

- Outbound: allocated quantity at a given pallet capacity
  (weight per unit x units per pallet); full pallets carry the capacity,
  the remainder pallet's config is ceil(remainder / weight per unit).
- Inbound: received quantity split the same way, full pallets keep the
  item's units-per-pallet config.
"""
import math
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from .batch_models import PalletAllocation
from .batch_validator import BatchAllocationValidator, InputValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundPalletPlan:
    """Pallet tags for a received quantity"""
    pallets: List[PalletAllocation] = field(default_factory=list)
    remainder: float = 0.0

    @property
    def pallet_count(self) -> int:
        return len(self.pallets)

    @property
    def has_remainder(self) -> bool:
        return self.remainder > 0


def _split(quantity: float, capacity: float) -> Tuple[int, float]:
    """Number of full pallets and the leftover quantity"""
    full_pallets = int(math.floor(quantity / capacity))
    remainder = quantity - full_pallets * capacity
    return full_pallets, remainder


def _check_capacity(pallet_capacity: float, weight_per_unit: float):
    errors = BatchAllocationValidator().validate_pallet_capacity(pallet_capacity, weight_per_unit)
    if errors:
        raise InputValidationError(errors)


def calculate_remainder_pallets(allocated_quantity: float, pallet_capacity: float,
                                weight_per_unit: float, base_pallet_id: str) -> List[PalletAllocation]:
    """
    Outbound pallet breakdown for an allocated quantity

    Args:
        allocated_quantity: Total quantity allocated for the line
        pallet_capacity: Standard capacity per pallet
        weight_per_unit: Weight per unit, used to recompute the remainder config
        base_pallet_id: Prefix for generated pallet ids

    Returns:
        Full pallets ({base}-P1..Pn) followed by an optional {base}-REM pallet

    Raises:
        InputValidationError: capacity or weight per unit not positive
    """
    _check_capacity(pallet_capacity, weight_per_unit)

    if allocated_quantity <= 0:
        return []

    full_pallets, remainder = _split(allocated_quantity, pallet_capacity)

    allocations = [
        PalletAllocation(
            pallet_id=f"{base_pallet_id}-P{i + 1}",
            quantity=pallet_capacity,
            pallet_config=pallet_capacity,
            is_remainder=False,
        )
        for i in range(full_pallets)
    ]

    if remainder > 0:
        allocations.append(PalletAllocation(
            pallet_id=f"{base_pallet_id}-REM",
            quantity=remainder,
            pallet_config=int(math.ceil(remainder / weight_per_unit)),
            is_remainder=True,
        ))

    logger.info(
        f"📦 Remainder pallet calculation: {allocated_quantity:g} units @ {pallet_capacity:g} capacity = "
        f"{full_pallets} full + "
        f"{'1 remainder (config: %d)' % allocations[-1].pallet_config if remainder > 0 else 'no remainder'}"
    )
    return allocations


def plan_inbound_pallets(quantity: float, weight_per_unit: float, units_per_pallet: float,
                         base_pallet_id: str = "PLT") -> InboundPalletPlan:
    """
    Inbound pallet plan: quantity / (weight per unit x units per pallet)

    The last pallet carries any remainder with an adjusted config; the
    remainder is reported on the plan so the caller can warn before
    generating tags.
    """
    if units_per_pallet is None or units_per_pallet <= 0:
        raise InputValidationError([f"Units per pallet must be positive (got {units_per_pallet})"])
    capacity = (weight_per_unit or 0) * units_per_pallet
    _check_capacity(capacity, weight_per_unit)

    if quantity <= 0:
        return InboundPalletPlan()

    full_pallets, remainder = _split(quantity, capacity)

    pallets = [
        PalletAllocation(
            pallet_id=f"{base_pallet_id}-{i + 1:03d}",
            quantity=capacity,
            pallet_config=units_per_pallet,
        )
        for i in range(full_pallets)
    ]
    if remainder > 0:
        pallets.append(PalletAllocation(
            pallet_id=f"{base_pallet_id}-{full_pallets + 1:03d}",
            quantity=remainder,
            pallet_config=int(math.ceil(remainder / weight_per_unit)),
            is_remainder=True,
        ))
        logger.warning(
            f"⚠️ Inbound quantity {quantity:g} is not a multiple of pallet capacity {capacity:g}: "
            f"remainder {remainder:g} on pallet {pallets[-1].pallet_id}"
        )

    return InboundPalletPlan(pallets=pallets, remainder=remainder)
