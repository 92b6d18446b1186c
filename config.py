"""Configuration management for the SafeSwap escrow core"""

import os
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower().strip() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    PLATFORM_NAME = os.getenv("PLATFORM_NAME", "SafeSwap")
    WEBAPP_URL = os.getenv("WEBAPP_URL", "http://localhost:3000")

    # Database configuration
    DATABASE_URL = os.getenv("DATABASE_URL")
    if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
        # SQLAlchemy only accepts the postgresql:// scheme
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

    if not DATABASE_URL:
        DATABASE_SOURCE = "NOT CONFIGURED"
    elif DATABASE_URL.startswith("sqlite"):
        DATABASE_SOURCE = "SQLite (local)"
    else:
        DATABASE_SOURCE = "PostgreSQL"

    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "7"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "15"))
    DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))
    SQLITE_BUSY_TIMEOUT = int(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

    # Escrow lifecycle limits
    ESCROW_CAS_MAX_RETRIES = int(os.getenv("ESCROW_CAS_MAX_RETRIES", "3"))
    DESCRIPTION_MAX_LENGTH = int(os.getenv("DESCRIPTION_MAX_LENGTH", "2000"))
    TERMS_MAX_LENGTH = int(os.getenv("TERMS_MAX_LENGTH", "10000"))
    MESSAGE_MAX_LENGTH = int(os.getenv("MESSAGE_MAX_LENGTH", "4000"))
    ASSET_ID_MAX_LENGTH = int(os.getenv("ASSET_ID_MAX_LENGTH", "100"))
    ASSET_SYMBOL_MAX_LENGTH = int(os.getenv("ASSET_SYMBOL_MAX_LENGTH", "20"))
    # Matches the String(100) settlement_reference column
    SETTLEMENT_REFERENCE_MAX_LENGTH = 100
    # Numeric(38, 18) column: 20 integer digits, 18 fractional digits
    AMOUNT_MAX_DECIMAL_PLACES = 18
    AMOUNT_MAX_VALUE = Decimal("99999999999999999999")
    DEFAULT_DISPUTE_REASON = "Dispute raised by user"

    # Balance gate (advisory ERC-20 balance lookups over JSON-RPC)
    BALANCE_RPC_URL = os.getenv("BALANCE_RPC_URL", os.getenv("RPC_URL", ""))
    BALANCE_RPC_TIMEOUT = int(os.getenv("BALANCE_RPC_TIMEOUT", "10"))

    # Email notifications (Brevo)
    BREVO_API_KEY = os.getenv("BREVO_API_KEY")
    FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@safeswap.app")
    FROM_NAME = os.getenv("FROM_NAME", PLATFORM_NAME)
    ESCROW_NOTIFICATIONS_ENABLED = _env_bool("ESCROW_NOTIFICATIONS_ENABLED", "true")

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 SafeSwap Environment Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Is Production: {Config.IS_PRODUCTION}")

        if Config.DATABASE_SOURCE == "NOT CONFIGURED":
            logger.error(f"   ❌ Database: {Config.DATABASE_SOURCE} - set DATABASE_URL")
        else:
            logger.info(f"   Database: {Config.DATABASE_SOURCE}")

        if Config.BALANCE_RPC_URL:
            logger.info("   Balance RPC: configured")
        else:
            logger.warning("   ⚠️ Balance RPC: BALANCE_RPC_URL not set - balance checks unavailable")

        if Config.BREVO_API_KEY:
            logger.info(f"   Email: Brevo (from {Config.FROM_EMAIL})")
        else:
            logger.warning("   ⚠️ Email: BREVO_API_KEY not set - notifications will be skipped")

        logger.info(f"   Escrow notifications enabled: {Config.ESCROW_NOTIFICATIONS_ENABLED}")
