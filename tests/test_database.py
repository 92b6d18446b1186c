"""
Database infrastructure tests: session management, connectivity and config logging
"""

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from config import Config
from database import managed_session, test_connection as check_connection
from models import Account
from services.escrow_errors import NotFoundError


class TestManagedSession:

    def test_commits_on_success(self, session_factory):
        with managed_session(session_factory) as session:
            session.add(Account(email="x@example.com", email_normalized="x@example.com"))

        with managed_session(session_factory) as session:
            assert session.execute(select(Account)).scalar_one().email == "x@example.com"

    def test_rolls_back_on_business_error(self, session_factory):
        with pytest.raises(NotFoundError):
            with managed_session(session_factory) as session:
                session.add(Account(email="y@example.com", email_normalized="y@example.com"))
                session.flush()
                raise NotFoundError("nothing here")

        with managed_session(session_factory) as session:
            assert session.execute(select(Account)).first() is None

    def test_unique_email_enforced(self, session_factory, caplog):
        with managed_session(session_factory) as session:
            session.add(Account(email="z@example.com", email_normalized="z@example.com"))

        with caplog.at_level(logging.ERROR):
            with pytest.raises(IntegrityError):
                with managed_session(session_factory) as session:
                    session.add(Account(email="Z@example.com", email_normalized="z@example.com"))

        assert any("Database session error" in r.message for r in caplog.records)


class TestInfrastructure:

    def test_connection_check(self, db_engine):
        assert check_connection(db_engine) is True

    def test_environment_config_logged_without_secrets(self, caplog, monkeypatch):
        monkeypatch.setattr(Config, "BREVO_API_KEY", "secret-brevo-key")
        with caplog.at_level(logging.INFO):
            Config.log_environment_config()

        output = " ".join(r.message for r in caplog.records)
        assert "Environment" in output
        assert "secret-brevo-key" not in output
