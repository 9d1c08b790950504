"""
Batch Allocation Formatters
===========================
Formatting utilities for displaying allocation plans and exporting them.
"""
import pandas as pd
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from ..config import config
from .batch_models import AllocationResult, AllocationSummary, InventoryUnit, StrategyType, to_date
from .strategy_engine import StrategySelector


RECORD_COLUMNS = [
    'line_id', 'order_id', 'item_id', 'item_code', 'ordered_quantity', 'strategy',
    'batch_number', 'pallet_id', 'location_id', 'location_code', 'expiry_date',
    'manufacturing_date', 'allocated_quantity', 'record_strategy', 'total_allocated',
    'shortfall', 'is_fully_allocated',
]


# ==================== Number / Date Formatting ====================

def format_number(value: Any, decimal_places: int = 0, prefix: str = '', suffix: str = '') -> str:
    """
    Format number with thousand separators.

    Returns:
        Formatted string like "1,234,567" or "1,234.56 kg"
    """
    if value is None:
        return '-'

    try:
        num = float(value)
        if decimal_places == 0:
            formatted = f"{num:,.0f}"
        else:
            formatted = f"{num:,.{decimal_places}f}"
        return f"{prefix}{formatted}{suffix}"
    except (ValueError, TypeError):
        return str(value)


def format_percentage(value: Any, decimal_places: int = 1) -> str:
    """Format number (already a percentage) like "85.5%" """
    if value is None:
        return '-'

    try:
        return f"{float(value):.{decimal_places}f}%"
    except (ValueError, TypeError):
        return str(value)


def format_date(value: Any, format_str: str = "%d/%m/%Y") -> str:
    """Format date consistently ('-' when absent)"""
    parsed = to_date(value) if not isinstance(value, (date, datetime)) else value
    if parsed is None:
        return '-'
    return parsed.strftime(format_str)


# ==================== Batch Display ====================

def get_batch_status(expiry_date: Any, today: Optional[date] = None,
                     expiring_soon_days: Optional[int] = None) -> str:
    """
    Expiry status of a batch

    Returns:
        'expired' (before today), 'expiring-soon' (within the window) or 'ok'
    """
    expiry = to_date(expiry_date)
    if expiry is None:
        return 'ok'

    today = today or config.today()
    if expiring_soon_days is None:
        expiring_soon_days = config.get_app_setting('EXPIRING_SOON_DAYS', 30)

    days_until_expiry = (expiry - today).days
    if days_until_expiry < 0:
        return 'expired'
    if days_until_expiry <= expiring_soon_days:
        return 'expiring-soon'
    return 'ok'


STATUS_BADGES = {
    'expired': '⛔',
    'expiring-soon': '⚠️',
    'ok': '✓',
}


def format_batch_info(unit: InventoryUnit, today: Optional[date] = None) -> str:
    """One-line description of a pallet, e.g. 'Batch: B1 | Pallet: P1 | ✓ Exp: 01/03/2025'"""
    parts = []

    if unit.batch_number:
        parts.append(f"Batch: {unit.batch_number}")
    if unit.pallet_id:
        parts.append(f"Pallet: {unit.pallet_id}")
    if unit.manufacturing_date:
        parts.append(f"Mfg: {format_date(unit.manufacturing_date)}")
    if unit.expiry_date:
        badge = STATUS_BADGES[get_batch_status(unit.expiry_date, today)]
        parts.append(f"{badge} Exp: {format_date(unit.expiry_date)}")
    if unit.location_code:
        parts.append(f"Loc: {unit.location_code}")

    return " | ".join(parts)


def format_strategy(strategy: Optional[StrategyType]) -> str:
    if strategy is None:
        return '-'
    info = StrategySelector.STRATEGY_INFO.get(strategy, {})
    return f"{info.get('icon', '')} {info.get('name', strategy.value)}".strip()


def format_line_status(result: AllocationResult, uom: str = '') -> str:
    """User-facing status for one line: success, warning with exact shortfall, or failure"""
    suffix = f" {uom}" if uom else ''
    if result.is_fully_allocated:
        return f"✅ {result.item_code}: fully allocated ({format_number(result.total_allocated, 2)}{suffix})"
    if result.total_allocated > 0:
        return (f"⚠️ {result.item_code}: partially allocated "
                f"{format_number(result.total_allocated, 2)}/{format_number(result.ordered_quantity, 2)}{suffix}, "
                f"shortfall {format_number(result.shortfall, 2)}{suffix}")
    return (f"❌ {result.item_code}: no inventory allocated "
            f"(need {format_number(result.ordered_quantity, 2)}{suffix}); replenishment required")


def format_summary_message(summary: AllocationSummary) -> str:
    """
    Format a run summary for display.

    Returns:
        Status line followed by the totals, e.g.
        "✅ All items fully allocated using 3 batch(es) | 12.00/12.00 allocated (100.0%)"
    """
    parts = [summary.summary]
    if summary.item_count:
        parts.append(
            f"{format_number(summary.total_allocated, 2)}/{format_number(summary.total_ordered, 2)} "
            f"allocated ({format_percentage(summary.fill_rate)})"
        )
    return " | ".join(parts)


# ==================== DataFrame Export ====================

def results_to_dataframe(results: Sequence[AllocationResult]) -> pd.DataFrame:
    """
    Flatten results into one row per draw.

    Lines without any draw keep one row with zero allocated quantity so
    that the shortfall stays visible.
    """
    rows = []
    for result in results:
        base = {
            'line_id': result.line_id,
            'order_id': result.order_id,
            'item_id': result.item_id,
            'item_code': result.item_code,
            'ordered_quantity': result.ordered_quantity,
            'strategy': result.strategy.value if result.strategy else None,
            'total_allocated': result.total_allocated,
            'shortfall': result.shortfall,
            'is_fully_allocated': result.is_fully_allocated,
        }
        if not result.records:
            rows.append({**base, 'allocated_quantity': 0.0})
            continue
        for record in result.records:
            rows.append({
                **base,
                'batch_number': record.batch_number,
                'pallet_id': record.pallet_id,
                'location_id': record.location_id,
                'location_code': record.location_code,
                'expiry_date': record.expiry_date,
                'manufacturing_date': record.manufacturing_date,
                'allocated_quantity': record.allocated_quantity,
                'record_strategy': record.strategy.value,
            })

    return pd.DataFrame(rows, columns=RECORD_COLUMNS)


def batch_usage_dataframe(results: Iterable[AllocationResult]) -> pd.DataFrame:
    """Allocated quantity per (item, batch, location) across a run"""
    df = results_to_dataframe(list(results))
    df = df[df['allocated_quantity'] > 0]
    if df.empty:
        return pd.DataFrame(columns=['item_id', 'batch_number', 'location_id', 'allocated_quantity', 'pallets'])
    return (
        df.groupby(['item_id', 'batch_number', 'location_id'], dropna=False, sort=False)
        .agg(allocated_quantity=('allocated_quantity', 'sum'), pallets=('pallet_id', 'nunique'))
        .reset_index()
    )
