"""
Conversation Log Tests
Party-only messaging with creation-ordered listing
"""

import pytest

from services.escrow_errors import NotAPartyError, NotFoundError, ValidationError


class TestConversationLog:

    def test_parties_exchange_messages_in_order(self, conversation, linked_escrow, alice, bob):
        conversation.post_message(linked_escrow.id, alice, "Hi Bob, files are ready")
        conversation.post_message(linked_escrow.id, bob, "  Thanks, reviewing now  ")
        conversation.post_message(linked_escrow.id, alice, "Let me know")

        messages = conversation.list_messages(linked_escrow.id, bob)

        assert [m.content for m in messages] == [
            "Hi Bob, files are ready",
            "Thanks, reviewing now",
            "Let me know",
        ]
        assert [m.sender_id for m in messages] == [alice, bob, alice]

    def test_unlinked_recipient_cannot_message(self, conversation, make_escrow, bob):
        escrow = make_escrow()
        with pytest.raises(NotAPartyError):
            conversation.post_message(escrow.id, bob, "hello")
        with pytest.raises(NotAPartyError):
            conversation.list_messages(escrow.id, bob)

    def test_outsider_cannot_read_or_write(self, conversation, linked_escrow, carol):
        with pytest.raises(NotAPartyError):
            conversation.post_message(linked_escrow.id, carol, "let me in")
        with pytest.raises(NotAPartyError):
            conversation.list_messages(linked_escrow.id, carol)

    @pytest.mark.parametrize("content", ["", "   ", None])
    def test_empty_content_rejected(self, conversation, linked_escrow, alice, content):
        with pytest.raises(ValidationError) as exc_info:
            conversation.post_message(linked_escrow.id, alice, content)
        assert exc_info.value.fields == ["content"]
        assert conversation.list_messages(linked_escrow.id, alice) == []

    def test_overlong_content_rejected(self, conversation, linked_escrow, alice):
        with pytest.raises(ValidationError):
            conversation.post_message(linked_escrow.id, alice, "x" * 4001)

    def test_messaging_allowed_after_dispute(self, conversation, engine, linked_escrow, alice, bob):
        engine.dispute(linked_escrow.id, bob)
        message = conversation.post_message(linked_escrow.id, alice, "Can we sort this out?")
        assert message.id is not None

    def test_authorization_checked_before_content(self, conversation, linked_escrow, alice, carol):
        """Test: outsiders and missing escrows are rejected even with empty content"""
        with pytest.raises(NotAPartyError):
            conversation.post_message(linked_escrow.id, carol, "")
        with pytest.raises(NotFoundError):
            conversation.post_message("missing", alice, "   ")

    def test_unknown_escrow(self, conversation, alice):
        with pytest.raises(NotFoundError):
            conversation.post_message("missing", alice, "hello")
