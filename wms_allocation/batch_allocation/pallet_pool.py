"""
Pallet Pool Consolidator
========================
Groups raw pallet records into (item, batch, location) clusters.

The consolidated view is used for quantity checks and strategy ordering;
the pallet groups keep the source pallets, in input order, so that
allocation can still draw down and report exact per-pallet usage.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .batch_models import ConsolidatedBatch, InventoryUnit, PoolKey

logger = logging.getLogger(__name__)


@dataclass
class PalletPool:
    """Lookup pools built once per run"""
    batches: Dict[PoolKey, ConsolidatedBatch] = field(default_factory=dict)
    pallet_groups: Dict[PoolKey, List[InventoryUnit]] = field(default_factory=dict)
    _item_index: Dict[Any, List[PoolKey]] = field(default_factory=dict, repr=False)

    def batches_for_item(self, item_id: Any) -> List[ConsolidatedBatch]:
        """Consolidated batches of an item, in discovery order"""
        return [self.batches[key] for key in self._item_index.get(item_id, [])]

    def pallets(self, key: PoolKey) -> List[InventoryUnit]:
        return self.pallet_groups.get(key, [])

    @property
    def pallet_count(self) -> int:
        return sum(len(group) for group in self.pallet_groups.values())

    def __len__(self) -> int:
        return len(self.batches)


def pallet_key(unit: InventoryUnit, position: int) -> str:
    """
    Key used by the per-pallet tracker.

    The pallet id when present; otherwise the consolidation key plus the
    inventory id (or the pallet's position inside its group).
    """
    if unit.pallet_id:
        return unit.pallet_id
    suffix = unit.inventory_id if unit.inventory_id is not None else f"#{position}"
    return f"{unit.item_id}|{unit.batch_number}|{unit.location_id}|{suffix}"


def consolidate_pallets(units: Iterable[InventoryUnit]) -> PalletPool:
    """
    Build the consolidated batch map and the pallet groups.

    Args:
        units: Inventory snapshot, one entry per pallet

    Returns:
        PalletPool keyed by (item_id, batch_number, location_id)
    """
    pool = PalletPool()

    for unit in units:
        key = unit.pool_key

        group = pool.pallet_groups.get(key)
        if group is None:
            pool.pallet_groups[key] = [unit]
            pool.batches[key] = ConsolidatedBatch.from_unit(unit)
            pool._item_index.setdefault(unit.item_id, []).append(key)
            continue

        group.append(unit)
        batch = pool.batches[key]
        batch.on_hand_quantity += unit.on_hand_quantity
        batch.available_quantity += unit.available_quantity
        batch.pallet_count += 1
        logger.debug(
            f"📦 Aggregating {unit.item_code} ({unit.batch_number}): pallet {unit.pallet_id} "
            f"added to group (total: {batch.available_quantity} units)"
        )

    logger.debug(f"✅ Inventory consolidation: {pool.pallet_count} pallets → {len(pool)} unique batches")
    return pool
