"""
Escrow Notification Service
Outbound e-mails for escrow lifecycle events. Delivery failures are logged and
reported through the return value; they never fail the lifecycle operation
that triggered them.
"""

import logging
from decimal import Decimal
from typing import Optional

from config import Config
from models import Escrow, PartyRole
from services.email import EmailService

logger = logging.getLogger(__name__)


def _format_amount(escrow: Escrow) -> str:
    # "f" keeps normalize() from rendering 500 as 5E+2
    return f"{Decimal(escrow.amount).normalize():f} {escrow.asset_symbol}"


def _escrow_link(escrow: Escrow) -> str:
    return f"{Config.WEBAPP_URL.rstrip('/')}/escrow/{escrow.id}"


class EscrowNotificationService:
    """Builds and sends the e-mails each lifecycle transition produces"""

    def __init__(self, email_service: Optional[EmailService] = None, enabled: Optional[bool] = None):
        self.email_service = email_service or EmailService()
        self.enabled = Config.ESCROW_NOTIFICATIONS_ENABLED if enabled is None else enabled

    def _send(self, event: str, escrow: Escrow, to_email: Optional[str], subject: str, body: str) -> bool:
        if not self.enabled:
            logger.debug(f"ESCROW_NOTIFY_SKIPPED: {event} escrow={escrow.id} (notifications disabled)")
            return False
        if not to_email:
            logger.warning(f"⚠️ ESCROW_NOTIFY_SKIP: {event} escrow={escrow.id} has no recipient address")
            return False

        try:
            sent = self.email_service.send_email(
                to_email=to_email,
                subject=subject,
                text_content=body,
                tags=["escrow", event],
            )
        except Exception as e:
            logger.error(f"❌ ESCROW_NOTIFY_ERROR: {event} escrow={escrow.id}: {e}")
            return False

        if sent:
            logger.info(f"📧 ESCROW_NOTIFIED: {event} escrow={escrow.id}")
        else:
            logger.warning(f"⚠️ ESCROW_NOTIFY_FAILED: {event} escrow={escrow.id}")
        return sent

    def escrow_created(self, escrow: Escrow, creator_email: str) -> bool:
        body = (
            f"Your escrow for {_format_amount(escrow)} has been created.\n\n"
            f"Recipient: {escrow.recipient_email}\n"
            f"Description: {escrow.description}\n\n"
            f"We have invited the recipient. You can follow progress at {_escrow_link(escrow)}"
        )
        return self._send(
            "created", escrow, creator_email,
            f"{Config.PLATFORM_NAME}: escrow created for {_format_amount(escrow)}", body
        )

    def escrow_received(self, escrow: Escrow, creator_email: str) -> bool:
        body = (
            f"{creator_email} has opened an escrow with you for {_format_amount(escrow)}.\n\n"
            f"Description: {escrow.description}\n"
            + (f"Terms: {escrow.terms}\n" if escrow.terms else "")
            + f"\nSign in with this e-mail address to review it: {_escrow_link(escrow)}"
        )
        return self._send(
            "received", escrow, escrow.recipient_email,
            f"{Config.PLATFORM_NAME}: you have a new escrow for {_format_amount(escrow)}", body
        )

    def confirmation_recorded(self, escrow: Escrow, confirmer_role: PartyRole, counterparty_email: str) -> bool:
        """Tell the counterparty that the other side confirmed and they are now awaited"""
        body = (
            f"The {confirmer_role.value} has confirmed the escrow for {_format_amount(escrow)}.\n\n"
            f"The escrow completes once you confirm as well: {_escrow_link(escrow)}"
        )
        return self._send(
            "confirmation", escrow, counterparty_email,
            f"{Config.PLATFORM_NAME}: waiting for your confirmation", body
        )

    def escrow_completed(self, escrow: Escrow, creator_email: str) -> bool:
        body = (
            f"Both parties confirmed the escrow for {_format_amount(escrow)}. "
            f"It is now complete.\n\n{_escrow_link(escrow)}"
        )
        subject = f"{Config.PLATFORM_NAME}: escrow completed"
        creator_sent = self._send("completed", escrow, creator_email, subject, body)
        recipient_sent = self._send("completed", escrow, escrow.recipient_email, subject, body)
        return creator_sent and recipient_sent

    def escrow_disputed(self, escrow: Escrow, disputer_role: PartyRole, creator_email: str) -> bool:
        body = (
            f"The {disputer_role.value} has disputed the escrow for {_format_amount(escrow)}.\n\n"
            f"Reason: {escrow.dispute_reason or Config.DEFAULT_DISPUTE_REASON}\n\n"
            f"Confirmations are frozen while the dispute is open: {_escrow_link(escrow)}"
        )
        subject = f"{Config.PLATFORM_NAME}: escrow disputed"
        creator_sent = self._send("disputed", escrow, creator_email, subject, body)
        recipient_sent = self._send("disputed", escrow, escrow.recipient_email, subject, body)
        return creator_sent and recipient_sent
