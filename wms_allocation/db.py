# wms_allocation/db.py

import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .config import config

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def get_db_engine() -> Engine:
    """Get (and lazily create) the shared SQLAlchemy engine"""
    global _engine

    if _engine is not None:
        return _engine

    url = config.get_db_url()
    if not url:
        raise ValueError("Missing required database configuration. Please check .env file.")

    if url.startswith("sqlite"):
        _engine = create_engine(url, future=True)
    else:
        _engine = create_engine(
            url,
            pool_size=config.get_app_setting('DB_POOL_SIZE', 5),
            pool_recycle=config.get_app_setting('DB_POOL_RECYCLE', 3600),
            pool_pre_ping=True,
            future=True
        )
    logger.info(f"🔌 Database engine created ({url.split('://')[0]})")
    return _engine


def reset_db_engine():
    """Dispose the shared engine (tests and config reloads)"""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
