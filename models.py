"""
SafeSwap Escrow Platform - Database Schema
==========================================

Schema for the escrow lifecycle core:
- Accounts created on first authentication (e-mail passcode or wallet signature)
- Two-party escrows with recipients invited by e-mail
- Per-escrow conversation threads

Stored escrow status is a small closed enum. The "active" label shown to users
is derived from a pending escrow whose recipient has been linked.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Boolean, Text,
    ForeignKey, Index, CheckConstraint, TypeDecorator
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def generate_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: Optional[str]) -> str:
    """Canonical form used for every case-insensitive e-mail comparison"""
    return (email or "").strip().lower()


class ExactDecimal(TypeDecorator):
    """
    Numeric(38, 18) on PostgreSQL. SQLite's NUMERIC affinity stores a binary
    float, so there the value is kept as its exact decimal text instead.
    """
    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(40))
        return super().load_dialect_impl(dialect)

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return Decimal(value)


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class EscrowStatus(Enum):
    """Stored escrow lifecycle states"""
    PENDING = "pending"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class EscrowDisplayStatus(Enum):
    """Presentation labels derived from status and recipient linkage"""
    PENDING = "pending"      # Recipient has not signed in yet
    ACTIVE = "active"        # Both parties bound, awaiting confirmations
    COMPLETED = "completed"
    DISPUTED = "disputed"


class PartyRole(Enum):
    """Which side of an escrow an account is bound to"""
    CREATOR = "creator"
    RECIPIENT = "recipient"


# ============================================================================
# CORE ENTITIES
# ============================================================================

class Account(Base):
    """Platform account, created on first successful authentication"""
    __tablename__ = 'accounts'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    email_normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Default settlement address from the profile, owned by the account holder
    settlement_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_accounts_email_normalized', 'email_normalized', unique=True),
    )

    def __repr__(self):
        return f"<Account(id={self.id}, email={self.email})>"


class Escrow(Base):
    """Two-party escrow held until both sides confirm the trade"""
    __tablename__ = 'escrows'

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_id)

    # Participants
    creator_id: Mapped[str] = mapped_column(String(32), ForeignKey('accounts.id'), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_email_normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_id: Mapped[Optional[str]] = mapped_column(String(32), ForeignKey('accounts.id'), nullable=True)

    # Asset descriptor and amount (immutable after creation)
    asset_id: Mapped[str] = mapped_column(String(100), nullable=False)
    asset_symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(ExactDecimal(38, 18), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Settlement addresses, each set once by its own party
    creator_wallet: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    recipient_wallet: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)

    # Monotonic flags
    creator_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recipient_confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disputed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispute_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=EscrowStatus.PENDING.value, nullable=False)

    # Bumped by every mutation; readers use it to detect changes
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    disputed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    settlement_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    creator: Mapped["Account"] = relationship("Account", foreign_keys=[creator_id])
    recipient: Mapped[Optional["Account"]] = relationship("Account", foreign_keys=[recipient_id])

    @property
    def is_recipient_linked(self) -> bool:
        return self.recipient_id is not None

    @property
    def display_status(self) -> EscrowDisplayStatus:
        """Derive the presentation label without persisting a second status field"""
        if self.status == EscrowStatus.PENDING.value and self.is_recipient_linked:
            return EscrowDisplayStatus.ACTIVE
        return EscrowDisplayStatus(self.status)

    def party_role(self, account_id: Optional[str]) -> Optional[PartyRole]:
        """Role of a bound party, or None for anyone else (including an unlinked recipient)"""
        if account_id is None:
            return None
        if account_id == self.creator_id:
            return PartyRole.CREATOR
        if self.recipient_id is not None and account_id == self.recipient_id:
            return PartyRole.RECIPIENT
        return None

    __table_args__ = (
        CheckConstraint(
            f"status IN ('{EscrowStatus.PENDING.value}', '{EscrowStatus.COMPLETED.value}', "
            f"'{EscrowStatus.DISPUTED.value}')",
            name='ck_escrow_status_valid'
        ),
        CheckConstraint('amount > 0', name='ck_escrow_amount_positive'),
        CheckConstraint('recipient_id IS NULL OR recipient_id <> creator_id', name='ck_escrow_distinct_parties'),
        # Completion requires both confirmations
        CheckConstraint(
            f"status <> '{EscrowStatus.COMPLETED.value}' OR (creator_confirmed AND recipient_confirmed)",
            name='ck_escrow_completed_confirmed'
        ),
        CheckConstraint(
            f"disputed = false OR status = '{EscrowStatus.DISPUTED.value}'",
            name='ck_escrow_disputed_status'
        ),
        Index('ix_escrows_creator_status', 'creator_id', 'status'),
        Index('ix_escrows_recipient_status', 'recipient_id', 'status'),
        Index('ix_escrows_recipient_email', 'recipient_email_normalized'),
        Index('ix_escrows_created', 'created_at'),
    )

    def __repr__(self):
        return f"<Escrow(id={self.id}, status={self.status}, amount={self.amount} {self.asset_symbol})>"


class EscrowMessage(Base):
    """Append-only messages exchanged between the two parties of an escrow"""
    __tablename__ = "escrow_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_id: Mapped[str] = mapped_column(String(32), ForeignKey("escrows.id"), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(32), ForeignKey("accounts.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    escrow = relationship("Escrow", foreign_keys=[escrow_id])
    sender = relationship("Account", foreign_keys=[sender_id])

    __table_args__ = (
        Index('ix_escrow_messages_escrow_created', 'escrow_id', 'created_at'),
        Index('ix_escrow_messages_sender', 'sender_id'),
    )

    def __repr__(self):
        return f"<EscrowMessage(escrow_id={self.escrow_id}, sender_id={self.sender_id})>"
