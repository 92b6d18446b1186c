"""
Shared fixtures for the SafeSwap escrow core test suite.

Each test gets its own SQLite database file so lifecycle tests (including the
threaded concurrency ones) never share state. External services are replaced
with unittest.mock doubles.
"""

import os

# database.py builds its module-level engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ESCROW_NOTIFICATIONS_ENABLED", "true")

import logging
from unittest.mock import MagicMock

import pytest

from database import build_engine, build_session_factory, create_tables
from services.escrow_conversation import ConversationLog
from services.escrow_lifecycle import EscrowLifecycleEngine
from services.escrow_notifications import EscrowNotificationService
from services.escrow_stats_service import EscrowStatsService
from services.escrow_store import EscrowStore
from services.identity_resolver import IdentityResolver

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

CREATOR_WALLET = "0x1111111111111111111111111111111111111111"
RECIPIENT_WALLET = "0x2222222222222222222222222222222222222222"
TOKEN_CONTRACT = "0xdAC17F958D2ee523a2206206994597C13D831ec7"


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'safeswap_test.db'}")
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def store(session_factory):
    return EscrowStore(session_factory)


@pytest.fixture
def identity(store):
    return IdentityResolver(store)


@pytest.fixture
def notifications():
    return MagicMock(spec=EscrowNotificationService)


@pytest.fixture
def settlement_executor():
    return MagicMock(return_value=None)


@pytest.fixture
def engine(store, identity, notifications, settlement_executor):
    return EscrowLifecycleEngine(
        store=store,
        identity=identity,
        notifications=notifications,
        stats=EscrowStatsService(store),
        settlement_executor=settlement_executor,
    )


@pytest.fixture
def conversation(store):
    return ConversationLog(store)


@pytest.fixture
def alice(identity):
    return identity.find_or_create_by_email("alice@example.com", display_name="Alice")


@pytest.fixture
def bob(identity):
    return identity.find_or_create_by_email("bob@example.com", display_name="Bob")


@pytest.fixture
def carol(identity):
    return identity.find_or_create_by_email("carol@example.com")


@pytest.fixture
def make_escrow(engine, alice):
    """Create a PENDING escrow from alice to bob@example.com with overridable fields"""
    def _make(**overrides):
        fields = {
            "creator_id": alice,
            "recipient_email": "bob@example.com",
            "asset_id": TOKEN_CONTRACT,
            "asset_symbol": "USDT",
            "amount": "100",
            "description": "Logo design",
            "terms": None,
            "creator_wallet": None,
        }
        fields.update(overrides)
        return engine.create_escrow(**fields)
    return _make


@pytest.fixture
def linked_escrow(engine, make_escrow, bob):
    """Escrow linked to bob with both settlement addresses set"""
    escrow = make_escrow(creator_wallet=CREATOR_WALLET)
    engine.link_recipient(escrow.id, bob, "bob@example.com")
    return engine.set_settlement_address(escrow.id, bob, RECIPIENT_WALLET)
