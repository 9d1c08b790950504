"""
Batch Allocation Models
=======================
Data model for one allocation run:
- InventoryUnit: one pallet from the inventory snapshot (immutable input)
- ConsolidatedBatch: run-scoped (item, batch, location) aggregate
- DemandLine / ItemConfig: sales-order line and item master flags
- AllocationRecord / AllocationResult: per-draw rows and per-line rollup
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

logger = logging.getLogger(__name__)

# (item_id, batch_number, location_id)
PoolKey = Tuple[Any, Optional[str], Any]


class StrategyType(Enum):
    """Allocation strategies"""
    BATCH = "BATCH"
    FEFO = "FEFO"
    FIFO = "FIFO"


# ==================== TYPE CONVERSION HELPERS ====================

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_date(value: Any) -> Optional[date]:
    """Convert str/datetime/Timestamp to a plain date (None when absent or unparseable)"""
    if _is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        logger.warning(f"Could not parse date value: {value!r}")
        return None
    return ts.date()


def to_datetime(value: Any) -> Optional[datetime]:
    """Convert to a naive datetime (UTC wall time for tz-aware input)"""
    if _is_missing(value):
        return None
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        logger.warning(f"Could not parse timestamp value: {value!r}")
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert('UTC').tz_localize(None)
    return ts.to_pydatetime()


def to_float(value: Any) -> float:
    """Safely convert any numeric-ish value to float (missing -> 0.0)"""
    if _is_missing(value):
        return 0.0
    if hasattr(value, 'item'):  # numpy scalar
        value = value.item()
    return float(value)


def to_optional_str(value: Any) -> Optional[str]:
    if _is_missing(value):
        return None
    return str(value).strip()


def _plain(value: Any) -> Any:
    """Unwrap numpy scalars so ids compare equal to python ints"""
    if hasattr(value, 'item') and not isinstance(value, (str, bytes)):
        try:
            return value.item()
        except (ValueError, TypeError):
            return value
    return value


# ==================== INPUT ENTITIES ====================

@dataclass(frozen=True)
class InventoryUnit:
    """One pallet-level fact from the inventory snapshot"""
    item_id: Any
    location_id: Any
    available_quantity: float
    on_hand_quantity: float = 0.0
    item_code: Optional[str] = None
    batch_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    pallet_id: Optional[str] = None
    received_at: Optional[datetime] = None
    inventory_id: Optional[Any] = None
    location_code: Optional[str] = None
    item_name: Optional[str] = None

    @property
    def pool_key(self) -> PoolKey:
        return (self.item_id, self.batch_number, self.location_id)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> 'InventoryUnit':
        """Build from a snapshot row (API payload or DataFrame record)"""
        available = row.get('available_quantity')
        on_hand = row.get('on_hand_quantity')
        if _is_missing(available) and not _is_missing(on_hand):
            available = to_float(on_hand) - to_float(row.get('allocated_quantity'))

        received = row.get('received_date')
        if _is_missing(received):
            received = row.get('received_at')
        if _is_missing(received):
            received = row.get('created_at')

        inventory_id = row.get('inventory_id')
        if _is_missing(inventory_id):
            inventory_id = row.get('id')

        return cls(
            item_id=_plain(row.get('item_id')),
            location_id=_plain(row.get('location_id')),
            available_quantity=to_float(available),
            on_hand_quantity=to_float(on_hand),
            item_code=to_optional_str(row.get('item_code')),
            batch_number=to_optional_str(row.get('batch_number')),
            manufacturing_date=to_date(row.get('manufacturing_date')),
            expiry_date=to_date(row.get('expiry_date')),
            pallet_id=to_optional_str(row.get('pallet_id')),
            received_at=to_datetime(received),
            inventory_id=None if _is_missing(inventory_id) else _plain(inventory_id),
            location_code=to_optional_str(row.get('location_code')),
            item_name=to_optional_str(row.get('item_name')),
        )


@dataclass
class ConsolidatedBatch:
    """
    Run-scoped aggregate of all pallets sharing (item, batch, location).

    Descriptive fields (dates, codes) come from the first pallet of the group;
    quantities are summed across the group.
    """
    item_id: Any
    batch_number: Optional[str]
    location_id: Any
    on_hand_quantity: float
    available_quantity: float
    item_code: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    received_at: Optional[datetime] = None
    location_code: Optional[str] = None
    inventory_id: Optional[Any] = None
    pallet_count: int = 1

    @property
    def key(self) -> PoolKey:
        return (self.item_id, self.batch_number, self.location_id)

    @classmethod
    def from_unit(cls, unit: InventoryUnit) -> 'ConsolidatedBatch':
        return cls(
            item_id=unit.item_id,
            batch_number=unit.batch_number,
            location_id=unit.location_id,
            on_hand_quantity=unit.on_hand_quantity,
            available_quantity=unit.available_quantity,
            item_code=unit.item_code,
            manufacturing_date=unit.manufacturing_date,
            expiry_date=unit.expiry_date,
            received_at=unit.received_at,
            location_code=unit.location_code,
            inventory_id=unit.inventory_id,
        )


@dataclass(frozen=True)
class DemandLine:
    """One sales-order line requesting a quantity of an item"""
    line_id: Any
    item_id: Any
    ordered_quantity: float
    order_id: Optional[Any] = None
    item_code: Optional[str] = None
    item_name: Optional[str] = None
    uom: Optional[str] = None
    requested_batch: Optional[str] = None

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> 'DemandLine':
        requested = row.get('requested_batch')
        if _is_missing(requested):
            requested = row.get('batch_number')
        return cls(
            line_id=_plain(row.get('line_id', row.get('id'))),
            item_id=_plain(row.get('item_id')),
            ordered_quantity=to_float(row.get('ordered_quantity')),
            order_id=_plain(row.get('order_id', row.get('so_header_id'))),
            item_code=to_optional_str(row.get('item_code')),
            item_name=to_optional_str(row.get('item_name')),
            uom=to_optional_str(row.get('uom')),
            requested_batch=to_optional_str(requested),
        )


@dataclass(frozen=True)
class ItemConfig:
    """Item master flags relevant to allocation"""
    item_id: Any
    batch_tracking: bool = False
    weight_per_unit: Optional[float] = None
    units_per_pallet: Optional[float] = None

    @property
    def pallet_capacity(self) -> Optional[float]:
        if not self.weight_per_unit or not self.units_per_pallet:
            return None
        return self.weight_per_unit * self.units_per_pallet


# ==================== OUTPUT ENTITIES ====================

@dataclass(frozen=True)
class AllocationRecord:
    """One draw of a quantity from one pallet for one demand line"""
    line_id: Any
    item_id: Any
    location_id: Any
    allocated_quantity: float
    strategy: StrategyType
    item_code: Optional[str] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    manufacturing_date: Optional[date] = None
    location_code: Optional[str] = None
    pallet_id: Optional[str] = None
    inventory_id: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['strategy'] = self.strategy.value
        return data


@dataclass
class AllocationResult:
    """Per-demand-line rollup of an allocation run"""
    line_id: Any
    item_id: Any
    ordered_quantity: float
    order_id: Optional[Any] = None
    item_code: Optional[str] = None
    strategy: Optional[StrategyType] = None
    records: List[AllocationRecord] = field(default_factory=list)
    total_allocated: float = 0.0
    shortfall: float = 0.0
    is_fully_allocated: bool = False

    @property
    def batches_used(self) -> int:
        return len({(r.batch_number, r.location_id) for r in self.records})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line_id': self.line_id,
            'order_id': self.order_id,
            'item_id': self.item_id,
            'item_code': self.item_code,
            'ordered_quantity': self.ordered_quantity,
            'strategy': self.strategy.value if self.strategy else None,
            'records': [r.to_dict() for r in self.records],
            'total_allocated': self.total_allocated,
            'shortfall': self.shortfall,
            'is_fully_allocated': self.is_fully_allocated,
        }


@dataclass(frozen=True)
class PalletAllocation:
    """One outbound (or inbound) pallet tag in a pallet plan"""
    pallet_id: str
    quantity: float
    pallet_config: Union[int, float]
    is_remainder: bool = False


@dataclass(frozen=True)
class AllocationSummary:
    """Aggregated counts over a run's results"""
    item_count: int
    fully_allocated: int
    partially_allocated: int
    unallocated: int
    total_batches_used: int
    total_ordered: float
    total_allocated: float
    summary: str

    @property
    def all_satisfied(self) -> bool:
        return self.fully_allocated == self.item_count

    @property
    def fill_rate(self) -> float:
        if self.total_ordered <= 0:
            return 0.0
        return self.total_allocated / self.total_ordered * 100

