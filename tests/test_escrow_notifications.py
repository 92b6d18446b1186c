"""
Escrow Notification Tests
Verifies each lifecycle event reaches the right parties and that delivery
problems never fail the lifecycle operation.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from models import Escrow, PartyRole
from services.email import EmailService
from services.escrow_lifecycle import EscrowLifecycleEngine
from services.escrow_notifications import EscrowNotificationService
from services.escrow_stats_service import EscrowStatsService


def _escrow(**overrides):
    fields = dict(
        id="abc123",
        recipient_email="bob@example.com",
        asset_symbol="USDC",
        amount=Decimal("500"),
        description="Domain sale",
        terms=None,
        dispute_reason=None,
    )
    fields.update(overrides)
    return Escrow(**fields)


@pytest.fixture
def email_service():
    service = MagicMock(spec=EmailService)
    service.send_email.return_value = True
    return service


class TestEscrowNotificationService:

    def test_created_goes_to_creator(self, email_service):
        sent = EscrowNotificationService(email_service, enabled=True).escrow_created(_escrow(), "alice@example.com")

        assert sent is True
        kwargs = email_service.send_email.call_args.kwargs
        assert kwargs["to_email"] == "alice@example.com"
        assert "500 USDC" in kwargs["subject"]
        assert kwargs["tags"] == ["escrow", "created"]

    def test_received_invites_recipient_email(self, email_service):
        EscrowNotificationService(email_service, enabled=True).escrow_received(
            _escrow(terms="Transfer within 7 days"), "alice@example.com"
        )

        kwargs = email_service.send_email.call_args.kwargs
        assert kwargs["to_email"] == "bob@example.com"
        assert "alice@example.com" in kwargs["text_content"]
        assert "Transfer within 7 days" in kwargs["text_content"]
        assert "/escrow/abc123" in kwargs["text_content"]

    def test_confirmation_names_confirming_party(self, email_service):
        EscrowNotificationService(email_service, enabled=True).confirmation_recorded(
            _escrow(), PartyRole.RECIPIENT, "alice@example.com"
        )

        kwargs = email_service.send_email.call_args.kwargs
        assert kwargs["to_email"] == "alice@example.com"
        assert "The recipient has confirmed" in kwargs["text_content"]

    @pytest.mark.parametrize("method,args", [
        ("escrow_completed", ("alice@example.com",)),
        ("escrow_disputed", (PartyRole.CREATOR, "alice@example.com")),
    ])
    def test_terminal_events_reach_both_parties(self, email_service, method, args):
        sent = getattr(EscrowNotificationService(email_service, enabled=True), method)(_escrow(), *args)

        assert sent is True
        recipients = [c.kwargs["to_email"] for c in email_service.send_email.call_args_list]
        assert recipients == ["alice@example.com", "bob@example.com"]

    def test_dispute_mail_carries_reason(self, email_service):
        EscrowNotificationService(email_service, enabled=True).escrow_disputed(
            _escrow(dispute_reason="Never delivered"), PartyRole.RECIPIENT, "alice@example.com"
        )
        assert "Never delivered" in email_service.send_email.call_args.kwargs["text_content"]

    def test_disabled_notifications_send_nothing(self, email_service):
        sent = EscrowNotificationService(email_service, enabled=False).escrow_created(_escrow(), "alice@example.com")

        assert sent is False
        email_service.send_email.assert_not_called()

    def test_delivery_exception_is_contained(self, email_service):
        email_service.send_email.side_effect = RuntimeError("connection reset")

        assert EscrowNotificationService(email_service, enabled=True).escrow_created(
            _escrow(), "alice@example.com"
        ) is False

    def test_amount_rendered_without_exponent(self, email_service):
        EscrowNotificationService(email_service, enabled=True).escrow_created(
            _escrow(amount=Decimal("1500.000000000000000000")), "alice@example.com"
        )
        assert "1500 USDC" in email_service.send_email.call_args.kwargs["subject"]


class TestLifecycleWithFailingDelivery:
    """Lifecycle operations succeed even when every e-mail fails"""

    def test_operations_succeed_when_email_raises(self, store, identity, email_service):
        email_service.send_email.side_effect = RuntimeError("Brevo down")
        engine = EscrowLifecycleEngine(
            store=store,
            identity=identity,
            notifications=EscrowNotificationService(email_service, enabled=True),
            stats=EscrowStatsService(store),
        )
        alice = identity.find_or_create_by_email("alice@example.com")

        escrow = engine.create_escrow(
            creator_id=alice,
            recipient_email="bob@example.com",
            asset_id="native",
            asset_symbol="ETH",
            amount="1",
            description="Laptop",
        )
        disputed = engine.dispute(escrow.id, alice)

        assert disputed.status == "disputed"
        assert email_service.send_email.call_count == 4
