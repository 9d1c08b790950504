"""Pytest configuration and fixtures for allocation tests.

Provides factories for pallets and demand lines, a fixed reference date,
and an in-memory SQLite database with the tables the record store uses.
"""

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from wms_allocation.batch_allocation import (
    BatchAllocator,
    DemandLine,
    InventoryUnit,
    ItemConfig,
)


TODAY = date(2024, 12, 1)


# ── Factories ────────────────────────────────────────────────────

def make_unit(pallet_id, qty, item_id=1, batch="B1", location_id=10, expiry=None,
              mfg=None, received=None, inventory_id=None, item_code="ITEM-1", **extra):
    """Build an InventoryUnit with on-hand equal to available."""
    return InventoryUnit(
        item_id=item_id,
        item_code=item_code,
        batch_number=batch,
        location_id=location_id,
        on_hand_quantity=qty,
        available_quantity=qty,
        expiry_date=expiry,
        manufacturing_date=mfg,
        received_at=received,
        pallet_id=pallet_id,
        inventory_id=inventory_id,
        **extra,
    )


def make_line(line_id, qty, item_id=1, requested_batch=None, item_code="ITEM-1", order_id=100):
    return DemandLine(
        line_id=line_id,
        order_id=order_id,
        item_id=item_id,
        item_code=item_code,
        item_name="Test Item",
        ordered_quantity=qty,
        uom="PCS",
        requested_batch=requested_batch,
    )


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def allocator():
    return BatchAllocator()


@pytest.fixture
def untracked():
    """Item config with batch tracking disabled."""
    return {1: ItemConfig(item_id=1, batch_tracking=False)}


@pytest.fixture
def tracked():
    return {1: ItemConfig(item_id=1, batch_tracking=True)}


# ── Database ─────────────────────────────────────────────────────

@pytest.fixture
def sqlite_engine():
    """In-memory SQLite engine shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        conn.execute(text("""
            CREATE TABLE items (
                id INTEGER PRIMARY KEY,
                item_code VARCHAR(50),
                batch_tracking BOOLEAN DEFAULT 0,
                weight_uom_kg FLOAT,
                pallet_config FLOAT
            )
        """))
        conn.execute(text("""
            CREATE TABLE so_lines (
                id INTEGER PRIMARY KEY,
                so_header_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                item_code VARCHAR(50),
                item_name VARCHAR(255),
                ordered_quantity FLOAT NOT NULL,
                uom VARCHAR(20),
                batch_number VARCHAR(50)
            )
        """))
        conn.execute(text("""
            CREATE TABLE inventory (
                id INTEGER PRIMARY KEY,
                item_id INTEGER NOT NULL,
                item_code VARCHAR(50),
                warehouse_id INTEGER,
                batch_number VARCHAR(50),
                manufacturing_date DATE,
                expiry_date DATE,
                location_id INTEGER,
                location_code VARCHAR(50),
                on_hand_quantity FLOAT NOT NULL,
                allocated_quantity FLOAT DEFAULT 0,
                available_quantity FLOAT,
                pallet_id VARCHAR(50),
                received_date TIMESTAMP,
                created_at TIMESTAMP
            )
        """))
        conn.execute(text("""
            CREATE TABLE so_inventory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                so_header_id INTEGER,
                so_line_id INTEGER,
                item_id INTEGER,
                inventory_id INTEGER,
                batch_number VARCHAR(50),
                location_id INTEGER,
                pallet_id VARCHAR(50),
                allocated_quantity FLOAT,
                expiry_date DATE,
                strategy VARCHAR(10),
                status VARCHAR(20),
                allocation_date TIMESTAMP,
                remarks VARCHAR(255)
            )
        """))
    yield engine
    engine.dispose()


@pytest.fixture
def seeded_engine(sqlite_engine):
    """One sales order with two lines and three pallets."""
    with sqlite_engine.begin() as conn:
        conn.execute(text("""
            INSERT INTO items (id, item_code, batch_tracking, weight_uom_kg, pallet_config)
            VALUES (1, 'ITEM-1', 0, 10, 10), (2, 'ITEM-2', 1, NULL, NULL)
        """))
        conn.execute(text("""
            INSERT INTO so_lines (id, so_header_id, item_id, item_code, item_name, ordered_quantity, uom, batch_number)
            VALUES
                (1, 500, 1, 'ITEM-1', 'Apples', 8, 'PCS', NULL),
                (2, 500, 2, 'ITEM-2', 'Pears', 3, 'PCS', 'LOT-B')
        """))
        conn.execute(text("""
            INSERT INTO inventory (id, item_id, item_code, warehouse_id, batch_number, manufacturing_date,
                                   expiry_date, location_id, location_code, on_hand_quantity,
                                   allocated_quantity, available_quantity, pallet_id, received_date)
            VALUES
                (11, 1, 'ITEM-1', 1, 'A-LATE', '2024-06-01', '2025-03-01', 10, 'L-10', 5, 0, 5, 'P-11', '2024-06-02 08:00:00'),
                (12, 1, 'ITEM-1', 1, 'A-SOON', '2024-07-01', '2025-01-10', 10, 'L-10', 5, 0, 5, 'P-12', '2024-07-02 08:00:00'),
                (21, 2, 'ITEM-2', 1, 'LOT-A', '2024-01-01', NULL, 20, 'L-20', 10, 0, NULL, 'P-21', '2024-01-02 08:00:00'),
                (22, 2, 'ITEM-2', 1, 'LOT-B', '2024-02-01', NULL, 20, 'L-20', 4, 2, NULL, 'P-22', '2024-02-02 08:00:00')
        """))
    return sqlite_engine


@pytest.fixture
def received():
    """Factory for received timestamps."""
    def _received(day):
        return datetime(2024, 1, day, 8, 0, 0)
    return _received
