"""
Escrow Store
============

Persistence boundary for accounts, escrows and escrow messages.

Every escrow mutation goes through ``compare_and_set``: a conditional
``UPDATE ... WHERE <expected state>`` that also bumps ``version``. Zero
affected rows means another writer changed the record first, so callers
re-read and re-evaluate instead of overwriting. Reads taken inside a mutation
use ``SELECT ... FOR UPDATE`` so PostgreSQL serializes writers on the row;
SQLite serializes writers on the database file instead.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select, update, or_, and_
from sqlalchemy.orm import Session, sessionmaker

from database import SessionLocal, managed_session
from models import Account, Escrow, EscrowMessage, normalize_email, utcnow
from services.escrow_errors import NotFoundError

logger = logging.getLogger(__name__)


class EscrowStore:
    """Atomic get/update-by-id for escrows and accounts, append-only messages"""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """One unit of work: commits on success, rolls back on any exception"""
        with managed_session(self.session_factory) as session:
            yield session

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, session: Session, account_id: str) -> Optional[Account]:
        return session.get(Account, account_id)

    def get_account_by_email(self, session: Session, email: str) -> Optional[Account]:
        stmt = select(Account).where(Account.email_normalized == normalize_email(email))
        return session.execute(stmt).scalar_one_or_none()

    def add_account(self, session: Session, account: Account) -> Account:
        session.add(account)
        session.flush()
        return account

    # ------------------------------------------------------------------
    # Escrows
    # ------------------------------------------------------------------

    def add_escrow(self, session: Session, escrow: Escrow) -> Escrow:
        session.add(escrow)
        session.flush()
        return escrow

    def get_escrow(self, session: Session, escrow_id: str, for_update: bool = False) -> Optional[Escrow]:
        stmt = select(Escrow).where(Escrow.id == escrow_id)
        if for_update:
            stmt = stmt.with_for_update()
        # populate_existing so a re-read after compare_and_set sees the new row
        stmt = stmt.execution_options(populate_existing=True)
        return session.execute(stmt).scalar_one_or_none()

    def require_escrow(self, session: Session, escrow_id: str, for_update: bool = False) -> Escrow:
        escrow = self.get_escrow(session, escrow_id, for_update=for_update)
        if escrow is None:
            raise NotFoundError(f"Escrow {escrow_id} not found")
        return escrow

    def compare_and_set(
        self,
        session: Session,
        escrow_id: str,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> bool:
        """
        Apply ``values`` only if every column in ``expected`` still holds its value.

        Args:
            session: Active session; the update joins its transaction
            escrow_id: Escrow primary key
            expected: Column name -> value the row must currently hold (None means IS NULL)
            values: Column name -> new value

        Returns:
            True if the row was updated, False on a state conflict
        """
        conditions = [Escrow.id == escrow_id]
        for column_name, expected_value in expected.items():
            column = getattr(Escrow, column_name)
            if expected_value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == expected_value)

        stmt = (
            update(Escrow)
            .where(*conditions)
            .values(**values, version=Escrow.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)

        if result.rowcount != 1:
            logger.debug(
                f"🔒 ESCROW_CAS_CONFLICT: escrow={escrow_id} expected={expected} "
                f"columns={sorted(values)}"
            )
            return False

        logger.debug(f"✅ ESCROW_CAS_APPLIED: escrow={escrow_id} columns={sorted(values)}")
        return True

    def escrows_for_account(
        self,
        session: Session,
        account_id: str,
        email: Optional[str] = None,
    ) -> List[Escrow]:
        """
        Escrows the account is bound to, newest first.

        With ``email`` given, escrows still addressed to that e-mail without a
        linked recipient are included too.
        """
        party_filter = or_(Escrow.creator_id == account_id, Escrow.recipient_id == account_id)
        if email:
            party_filter = or_(
                party_filter,
                and_(
                    Escrow.recipient_id.is_(None),
                    Escrow.recipient_email_normalized == normalize_email(email),
                ),
            )
        stmt = select(Escrow).where(party_filter).order_by(Escrow.created_at.desc(), Escrow.id)
        return list(session.execute(stmt).scalars().all())

    def unlinked_escrow_ids_for_email(self, session: Session, email: str) -> List[str]:
        stmt = (
            select(Escrow.id)
            .where(
                Escrow.recipient_id.is_(None),
                Escrow.recipient_email_normalized == normalize_email(email),
            )
            .order_by(Escrow.created_at)
        )
        return list(session.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, session: Session, message: EscrowMessage) -> EscrowMessage:
        session.add(message)
        session.flush()
        return message

    def messages_for_escrow(self, session: Session, escrow_id: str) -> List[EscrowMessage]:
        stmt = (
            select(EscrowMessage)
            .where(EscrowMessage.escrow_id == escrow_id)
            .order_by(EscrowMessage.created_at, EscrowMessage.id)
        )
        return list(session.execute(stmt).scalars().all())
