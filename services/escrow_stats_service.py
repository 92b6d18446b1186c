"""
Escrow Stats Service - per-account summary counters for dashboards
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, or_
from sqlalchemy.orm import sessionmaker

from models import Escrow, EscrowDisplayStatus, EscrowStatus
from services.escrow_store import EscrowStore

logger = logging.getLogger(__name__)


@dataclass
class EscrowStats:
    """Summary of the escrows an account is bound to"""
    open: int = 0          # pending, recipient not linked yet
    active: int = 0        # pending with both parties bound
    completed: int = 0
    disputed: int = 0
    total: int = 0
    # Naive sum across assets; amounts in different assets are not converted
    total_value: Decimal = Decimal("0")
    by_status: Dict[str, int] = field(default_factory=dict)


class EscrowStatsService:
    """Read-only aggregation over the escrow store"""

    def __init__(self, store: Optional[EscrowStore] = None, session_factory: Optional[sessionmaker] = None):
        self.store = store or EscrowStore(session_factory)

    def summarize(self, account_id: str) -> EscrowStats:
        """
        Count escrows where the account is creator or linked recipient.

        Escrows merely addressed to the account's e-mail are not counted until
        the account is linked to them.
        """
        stmt = select(Escrow.status, Escrow.recipient_id, Escrow.amount).where(
            or_(Escrow.creator_id == account_id, Escrow.recipient_id == account_id)
        )

        stats = EscrowStats(by_status={status.value: 0 for status in EscrowStatus})
        with self.store.transaction() as session:
            rows = session.execute(stmt).all()

        for status, recipient_id, amount in rows:
            stats.total += 1
            stats.by_status[status] = stats.by_status.get(status, 0) + 1
            # Amounts summed as Decimal; SQL SUM over Numeric degrades to float on SQLite
            stats.total_value += Decimal(amount)

            if status == EscrowStatus.PENDING.value:
                label = EscrowDisplayStatus.ACTIVE if recipient_id is not None else EscrowDisplayStatus.PENDING
            else:
                label = EscrowDisplayStatus(status)

            if label is EscrowDisplayStatus.PENDING:
                stats.open += 1
            elif label is EscrowDisplayStatus.ACTIVE:
                stats.active += 1
            elif label is EscrowDisplayStatus.COMPLETED:
                stats.completed += 1
            elif label is EscrowDisplayStatus.DISPUTED:
                stats.disputed += 1

        logger.debug(
            f"📊 ESCROW_STATS: account={account_id} total={stats.total} open={stats.open} "
            f"active={stats.active} completed={stats.completed} disputed={stats.disputed}"
        )
        return stats
