"""
Batch Allocation Data Repository
================================
Reads the inputs of an allocation run:
- Demand lines of a sales order (so_lines)
- Inventory snapshot of the ordered items (inventory)
- Item configuration (items.batch_tracking, weight/pallet config)

Rows are read with pandas and converted to the engine's dataclasses.
The snapshot must be read immediately before the run it feeds.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine

from ..db import get_db_engine
from .batch_models import DemandLine, InventoryUnit, ItemConfig, to_float

logger = logging.getLogger(__name__)


class BatchAllocationData:
    """Repository for allocation input data"""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or get_db_engine()

    # ==================== DEMAND ====================

    def get_demand_lines_df(self, so_header_id: Any) -> pd.DataFrame:
        """Open lines of a sales order, in line order"""
        query = """
            SELECT
                id AS line_id,
                so_header_id AS order_id,
                item_id,
                item_code,
                item_name,
                ordered_quantity,
                uom,
                batch_number AS requested_batch
            FROM so_lines
            WHERE so_header_id = :so_header_id
            ORDER BY id ASC
        """
        try:
            with self.engine.connect() as conn:
                return pd.read_sql(text(query), conn, params={'so_header_id': so_header_id})
        except Exception as e:
            logger.error(f"Error loading demand lines for SO {so_header_id}: {e}")
            raise

    def get_demand_lines(self, so_header_id: Any) -> List[DemandLine]:
        return demand_lines_from_df(self.get_demand_lines_df(so_header_id))

    # ==================== INVENTORY ====================

    def get_inventory_df(self, item_ids: Iterable[Any], warehouse_id: Optional[Any] = None) -> pd.DataFrame:
        """
        Pallet snapshot for the given items.

        available_quantity falls back to on_hand - allocated when the store
        keeps allocations separately.
        """
        item_ids = list(dict.fromkeys(item_ids))
        if not item_ids:
            return pd.DataFrame()

        query = """
            SELECT
                id AS inventory_id,
                item_id,
                item_code,
                batch_number,
                manufacturing_date,
                expiry_date,
                location_id,
                location_code,
                on_hand_quantity,
                COALESCE(available_quantity,
                         on_hand_quantity - COALESCE(allocated_quantity, 0)) AS available_quantity,
                pallet_id,
                COALESCE(received_date, created_at) AS received_date
            FROM inventory
            WHERE item_id IN :item_ids
        """
        params: Dict[str, Any] = {'item_ids': item_ids}
        if warehouse_id is not None:
            query += " AND warehouse_id = :warehouse_id"
            params['warehouse_id'] = warehouse_id
        query += " ORDER BY id ASC"

        stmt = text(query).bindparams(bindparam('item_ids', expanding=True))
        try:
            with self.engine.connect() as conn:
                df = pd.read_sql(stmt, conn, params=params)
            logger.debug(f"Loaded {len(df)} pallet(s) for {len(item_ids)} item(s)")
            return df
        except Exception as e:
            logger.error(f"Error loading inventory snapshot: {e}")
            raise

    def get_inventory(self, item_ids: Iterable[Any], warehouse_id: Optional[Any] = None) -> List[InventoryUnit]:
        return inventory_from_df(self.get_inventory_df(item_ids, warehouse_id))

    # ==================== ITEM CONFIG ====================

    def get_item_configs(self, item_ids: Iterable[Any]) -> Dict[Any, ItemConfig]:
        """item_id -> ItemConfig; items missing from the master are simply absent"""
        item_ids = list(dict.fromkeys(item_ids))
        if not item_ids:
            return {}

        stmt = text("""
            SELECT id AS item_id, batch_tracking, weight_uom_kg, pallet_config
            FROM items
            WHERE id IN :item_ids
        """).bindparams(bindparam('item_ids', expanding=True))

        try:
            with self.engine.connect() as conn:
                df = pd.read_sql(stmt, conn, params={'item_ids': item_ids})
        except Exception as e:
            logger.error(f"Error loading item configs: {e}")
            raise

        configs = {}
        for row in df.to_dict('records'):
            weight = to_float(row.get('weight_uom_kg')) or None
            units = to_float(row.get('pallet_config')) or None
            item_id = row['item_id'].item() if hasattr(row['item_id'], 'item') else row['item_id']
            configs[item_id] = ItemConfig(
                item_id=item_id,
                batch_tracking=bool(row.get('batch_tracking') or False),
                weight_per_unit=weight,
                units_per_pallet=units,
            )

        missing = set(item_ids) - set(configs)
        if missing:
            logger.warning(f"⚠️ No item config for item(s) {sorted(missing, key=str)}; strategy will be inferred")
        return configs


# ==================== CONVERTERS ====================

def demand_lines_from_df(df: pd.DataFrame) -> List[DemandLine]:
    if df is None or df.empty:
        return []
    return [DemandLine.from_dict(row) for row in df.to_dict('records')]


def inventory_from_df(df: pd.DataFrame) -> List[InventoryUnit]:
    if df is None or df.empty:
        return []
    return [InventoryUnit.from_dict(row) for row in df.to_dict('records')]
