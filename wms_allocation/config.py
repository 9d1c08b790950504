# wms_allocation/config.py

import os
import logging
from datetime import date
from dotenv import load_dotenv
from typing import Dict, Any, Optional

import pandas as pd

# Load .env before reading LOG_LEVEL
load_dotenv()

# Initialize logger
logger = logging.getLogger(__name__)
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())


class Config:
    """Centralized configuration management for the allocation engine"""

    def __init__(self):
        self._load_config()

    def _load_config(self):
        """Load configuration from environment"""
        self._load_db_config()
        self._load_app_config()
        self._log_config_status()

    def _load_db_config(self):
        """Load database configuration from local environment"""
        # A full URL wins over the individual parts (used for SQLite in tests)
        self.db_url = os.getenv("DB_URL")

        self.db_config = {
            "host": os.getenv("DB_HOST"),
            "port": int(os.getenv("DB_PORT", "3306")),
            "user": os.getenv("DB_USER"),
            "password": os.getenv("DB_PASSWORD"),
            "database": os.getenv("DB_NAME", os.getenv("DB_DATABASE", "wms"))
        }

    def _load_app_config(self):
        """Load application-specific configuration"""
        self.app_config = {
            # Business logic
            "EXPIRING_SOON_DAYS": int(os.getenv("EXPIRING_SOON_DAYS", "30")),

            # Performance
            "DB_POOL_SIZE": int(os.getenv("DB_POOL_SIZE", "5")),
            "DB_POOL_RECYCLE": int(os.getenv("DB_POOL_RECYCLE", "3600")),

            # Localization
            "TIMEZONE": os.getenv("TIMEZONE", "Asia/Ho_Chi_Minh"),

            # Features
            "ENABLE_SNAPSHOT_CHECK": os.getenv("ENABLE_SNAPSHOT_CHECK", "true").lower() == "true",
        }

    def _log_config_status(self):
        """Log configuration status for debugging"""
        logger.debug("─" * 55)
        logger.debug("📊 DATABASE CONFIGURATION")

        if self.db_url:
            logger.debug(f"   ✅ URL: {self.db_url.split('://')[0]}://***")
        elif self.has_db_config():
            logger.debug(f"   ✅ Host: {self.db_config['host']}:{self.db_config['port']}")
            logger.debug(f"   ✅ Database: {self.db_config['database']}")
            logger.debug(f"   ✅ User: {self.db_config['user']}")
        else:
            missing = [k for k in ('host', 'user', 'password') if not self.db_config.get(k)]
            logger.debug(f"   ℹ️  Database not configured (missing: {', '.join(missing)}); "
                         f"record store and snapshot repository unavailable")

        logger.debug("─" * 55)
        logger.debug(f"⚙️  Timezone: {self.app_config['TIMEZONE']}, "
                     f"expiring-soon window: {self.app_config['EXPIRING_SOON_DAYS']} days, "
                     f"snapshot check: {'on' if self.app_config['ENABLE_SNAPSHOT_CHECK'] else 'off'}")

    def has_db_config(self) -> bool:
        """Check whether enough settings exist to build a database engine"""
        if self.db_url:
            return True
        return all([self.db_config["host"], self.db_config["user"], self.db_config["password"]])

    def get_db_config(self) -> Dict[str, Any]:
        """Get database configuration"""
        return self.db_config.copy()

    def get_db_url(self) -> Optional[str]:
        """Get SQLAlchemy URL, built from parts when DB_URL is not set"""
        if self.db_url:
            return self.db_url
        if not self.has_db_config():
            return None
        db = self.db_config
        return (f"mysql+pymysql://{db['user']}:{db['password']}"
                f"@{db['host']}:{db['port']}/{db['database']}")

    def get_app_setting(self, key: str, default: Any = None) -> Any:
        """Get application setting"""
        return self.app_config.get(key, default)

    def is_feature_enabled(self, feature: str) -> bool:
        """Check if a feature is enabled"""
        return self.app_config.get(f"ENABLE_{feature.upper()}", True)

    def today(self) -> date:
        """Reference 'today' for expiry checks, in the configured timezone"""
        return pd.Timestamp.now(tz=self.app_config["TIMEZONE"]).date()


# Create singleton instance
config = Config()

APP_CONFIG = config.app_config


# Export all
__all__ = [
    'config',
    'Config',
    'APP_CONFIG',
]
