"""
Batch Allocation Module
=======================
Batch-aware allocation of sales-order lines to pallet inventory.

Components:
- batch_models: Data model (pallets, consolidated batches, lines, results)
- pallet_pool: Consolidation of pallets into (item, batch, location) pools
- strategy_engine: Strategy selection (BATCH / FEFO / FIFO) and batch ordering
- batch_allocator: Core allocation algorithm with per-run draw-down state
- remainder_pallets: Full/remainder pallet breakdown
- batch_validator: Input validation, summary and conservation checks
- batch_formatters: Display and DataFrame export helpers
- batch_data: Snapshot repository (demand, inventory, item config)
- batch_service: Run orchestration and transactional commit
"""

from .batch_models import (
    AllocationRecord,
    AllocationResult,
    AllocationSummary,
    ConsolidatedBatch,
    DemandLine,
    InventoryUnit,
    ItemConfig,
    PalletAllocation,
    StrategyType,
)
from .pallet_pool import PalletPool, consolidate_pallets
from .strategy_engine import BatchSorter, StrategySelector, has_valid_expiry
from .batch_allocator import BatchAllocator, RunState, allocate, flatten_records
from .remainder_pallets import InboundPalletPlan, calculate_remainder_pallets, plan_inbound_pallets
from .batch_validator import BatchAllocationError, BatchAllocationValidator, InputValidationError
from .batch_formatters import (
    format_batch_info,
    format_line_status,
    format_summary_message,
    get_batch_status,
    results_to_dataframe,
)
from .batch_data import BatchAllocationData
from .batch_service import (
    AllocationRecordStore,
    AllocationRun,
    BatchAllocationService,
    CommitResult,
    PersistenceError,
    SqlAllocationStore,
    StaleSnapshotError,
)

__all__ = [
    # Models
    'AllocationRecord',
    'AllocationResult',
    'AllocationSummary',
    'ConsolidatedBatch',
    'DemandLine',
    'InventoryUnit',
    'ItemConfig',
    'PalletAllocation',
    'StrategyType',

    # Engine
    'PalletPool',
    'consolidate_pallets',
    'BatchSorter',
    'StrategySelector',
    'has_valid_expiry',
    'BatchAllocator',
    'RunState',
    'allocate',
    'flatten_records',

    # Pallets
    'InboundPalletPlan',
    'calculate_remainder_pallets',
    'plan_inbound_pallets',

    # Validation
    'BatchAllocationError',
    'BatchAllocationValidator',
    'InputValidationError',

    # Formatters
    'format_batch_info',
    'format_line_status',
    'format_summary_message',
    'get_batch_status',
    'results_to_dataframe',

    # Data / Service
    'BatchAllocationData',
    'AllocationRecordStore',
    'AllocationRun',
    'BatchAllocationService',
    'CommitResult',
    'PersistenceError',
    'SqlAllocationStore',
    'StaleSnapshotError',
]
