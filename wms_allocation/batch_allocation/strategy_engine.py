"""
Strategy Engine for Batch Allocation
====================================
Implements strategy selection and batch ordering:
- BATCH: item has batch tracking enabled (batch number ordering)
- FEFO (First Expiry First Out): valid expiry ascending, then expired/undated by FIFO
- FIFO (First In First Out): manufacturing date, then received date ascending

Selection happens once per demand line; the allocator never alternates
strategies mid-line except for its explicit FIFO last-resort pass.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date
from functools import cmp_to_key
from typing import Any, Dict, List, Optional, Sequence

from .batch_models import ConsolidatedBatch, DemandLine, ItemConfig, StrategyType

logger = logging.getLogger(__name__)


def has_valid_expiry(batch: ConsolidatedBatch, today: date) -> bool:
    """Expiry present and strictly after today (date-only comparison)"""
    return batch.expiry_date is not None and batch.expiry_date > today


def _fifo_compare(a: ConsolidatedBatch, b: ConsolidatedBatch) -> int:
    """
    Manufacturing date when both sides have one and they differ,
    otherwise received/created timestamp. Anything else compares equal.
    """
    if a.manufacturing_date and b.manufacturing_date and a.manufacturing_date != b.manufacturing_date:
        return -1 if a.manufacturing_date < b.manufacturing_date else 1

    if a.received_at is None or b.received_at is None or a.received_at == b.received_at:
        return 0
    return -1 if a.received_at < b.received_at else 1


# ==================== SORT STRATEGIES ====================

class BatchSortStrategy(ABC):
    """Abstract base class for batch ordering"""

    @abstractmethod
    def sort(self, batches: Sequence[ConsolidatedBatch], today: date) -> List[ConsolidatedBatch]:
        """
        Order candidate batches for draw-down

        Args:
            batches: Consolidated batches of one item
            today: Reference date of the run

        Returns:
            New list in allocation order (input is not modified)
        """
        pass


class FIFOSort(BatchSortStrategy):
    """Oldest manufactured/received first; stable on ties"""

    def sort(self, batches: Sequence[ConsolidatedBatch], today: date) -> List[ConsolidatedBatch]:
        return sorted(batches, key=cmp_to_key(_fifo_compare))


class FEFOSort(BatchSortStrategy):
    """Valid expiry ascending, then expired/undated batches in FIFO order"""

    def __init__(self):
        self.fifo = FIFOSort()

    def sort(self, batches: Sequence[ConsolidatedBatch], today: date) -> List[ConsolidatedBatch]:
        valid_expiry = [b for b in batches if has_valid_expiry(b, today)]
        expired_or_null = [b for b in batches if not has_valid_expiry(b, today)]

        valid_expiry.sort(key=lambda b: b.expiry_date)

        return valid_expiry + self.fifo.sort(expired_or_null, today)


class BatchNumberSort(BatchSortStrategy):
    """Lexicographic batch number; batches without a number go last"""

    def sort(self, batches: Sequence[ConsolidatedBatch], today: date) -> List[ConsolidatedBatch]:
        return sorted(batches, key=lambda b: (b.batch_number is None, b.batch_number or ""))


class BatchSorter:
    """Orders candidate batches according to a StrategyType"""

    def __init__(self):
        self.strategies: Dict[StrategyType, BatchSortStrategy] = {
            StrategyType.BATCH: BatchNumberSort(),
            StrategyType.FEFO: FEFOSort(),
            StrategyType.FIFO: FIFOSort(),
        }

    def sort(self, batches: Sequence[ConsolidatedBatch], strategy: StrategyType,
             today: date) -> List[ConsolidatedBatch]:
        return self.strategies[strategy].sort(batches, today)


# ==================== STRATEGY SELECTION ====================

class StrategySelector:
    """
    Picks BATCH / FEFO / FIFO for a demand line.

    1. batch_tracking enabled -> BATCH
    2. any candidate batch with a valid expiry -> FEFO
    3. otherwise -> FIFO
    Without an item config, rules 2-3 are used as an inference fallback.
    """

    STRATEGY_INFO = {
        StrategyType.BATCH: {
            'name': 'Batch',
            'description': 'Batch-tracked item, allocate by batch number',
            'icon': '🏷️',
        },
        StrategyType.FEFO: {
            'name': 'First Expiry First Out',
            'description': 'Allocate the batch expiring soonest first',
            'icon': '⏳',
        },
        StrategyType.FIFO: {
            'name': 'First In First Out',
            'description': 'Allocate the oldest manufactured/received batch first',
            'icon': '📅',
        },
    }

    def select(self, line: DemandLine, item_config: Optional[ItemConfig],
               candidates: Sequence[ConsolidatedBatch], today: date) -> StrategyType:
        if item_config is not None:
            if item_config.batch_tracking:
                logger.debug(f"Item {line.item_code} (ID: {line.item_id}): batch tracking enabled → BATCH")
                return StrategyType.BATCH
            strategy = self._infer_from_expiry(candidates, today)
            logger.debug(f"Item {line.item_code} (ID: {line.item_id}): batch tracking off → {strategy.value}")
            return strategy

        strategy = self._infer_from_expiry(candidates, today)
        logger.warning(
            f"⚠️ Item {line.item_code} (ID: {line.item_id}): no item config, "
            f"inferred {strategy.value} from batch expiry dates"
        )
        return strategy

    def _infer_from_expiry(self, candidates: Sequence[ConsolidatedBatch], today: date) -> StrategyType:
        valid_count = sum(1 for b in candidates if has_valid_expiry(b, today))
        logger.debug(f"   {valid_count}/{len(candidates)} batches have valid expiry dates (today: {today})")
        return StrategyType.FEFO if valid_count > 0 else StrategyType.FIFO

    def get_strategy_info(self, strategy: StrategyType) -> Dict[str, Any]:
        """Get information about a strategy"""
        return self.STRATEGY_INFO.get(strategy, {})
