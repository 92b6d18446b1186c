"""
Database Configuration and Session Management
============================================

This module provides the main database engine, session factory, and table creation
functionality for the SafeSwap escrow core.
"""

import logging
from contextlib import contextmanager
from typing import Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine tuned for the configured backend"""
    if database_url.startswith("sqlite"):
        # SQLite serializes writers; the busy timeout lets concurrent writers queue up
        return create_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": Config.SQLITE_BUSY_TIMEOUT,
            },
            echo=False,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=Config.DB_POOL_SIZE,
        max_overflow=Config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=Config.DB_POOL_RECYCLE,
        pool_timeout=Config.DB_POOL_TIMEOUT,
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "safeswap_escrow_core",
        }
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    # expire_on_commit=False so escrows returned to callers stay readable after commit
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind
    )


if not Config.DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

engine = build_engine(Config.DATABASE_URL)

# Session factory
SessionLocal = build_session_factory(engine)


def create_tables(bind: Optional[Engine] = None) -> bool:
    """Create all database tables if they don't exist"""
    target = bind or engine
    logger.info("🏗️ Creating database tables (if they don't exist)...")
    logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")
    Base.metadata.create_all(bind=target, checkfirst=True)
    logger.info(f"✅ Database schema verified: {', '.join(sorted(Base.metadata.tables))}")
    return True


@contextmanager
def managed_session(session_factory: Optional[sessionmaker] = None):
    """Sync context manager for database sessions"""
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    except Exception as e:
        # Business-rule rejections roll back quietly; callers log them
        session.rollback()
        logger.debug(f"Session rolled back: {type(e).__name__}: {e}")
        raise
    finally:
        session.close()


def test_connection(bind: Optional[Engine] = None) -> bool:
    """Test database connection"""
    try:
        with (bind or engine).connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
