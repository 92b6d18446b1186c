"""
Identity Resolver Tests
Account creation on first contact and case-insensitive e-mail resolution
"""

import pytest

from services.escrow_errors import NotAPartyError, NotFoundError, ValidationError

WALLET = "0x4444444444444444444444444444444444444444"


class TestIdentityResolver:

    def test_first_contact_creates_account(self, identity):
        account_id = identity.find_or_create_by_email("dana@example.com", display_name="Dana")
        account = identity.by_id(account_id)

        assert account.email == "dana@example.com"
        assert account.email_normalized == "dana@example.com"
        assert account.display_name == "Dana"
        assert account.settlement_address is None

    def test_email_resolution_is_case_insensitive(self, identity):
        first = identity.find_or_create_by_email("Dana@Example.com")
        second = identity.find_or_create_by_email("  dana@EXAMPLE.COM ")

        assert first == second
        assert identity.by_email("DANA@example.com").id == first

    def test_display_name_filled_but_never_overwritten(self, identity):
        account_id = identity.find_or_create_by_email("dana@example.com")
        identity.find_or_create_by_email("dana@example.com", display_name="Dana")
        identity.find_or_create_by_email("dana@example.com", display_name="Someone Else")

        assert identity.by_id(account_id).display_name == "Dana"

    @pytest.mark.parametrize("email", ["", None, "plainaddress", "@example.com", "dana@", "dana@example"])
    def test_invalid_email_rejected(self, identity, email):
        with pytest.raises(ValidationError) as exc_info:
            identity.find_or_create_by_email(email)
        assert exc_info.value.fields == ["email"]

    def test_unknown_account(self, identity):
        with pytest.raises(NotFoundError):
            identity.by_id("missing")
        assert identity.by_email("nobody@example.com") is None

    def test_owner_sets_profile_settlement_address(self, identity, alice):
        identity.set_account_settlement_address(alice, alice, WALLET)
        assert identity.by_id(alice).settlement_address == WALLET

        # Profile addresses stay editable by their owner
        other = "0x5555555555555555555555555555555555555555"
        identity.set_account_settlement_address(alice, alice, other)
        assert identity.by_id(alice).settlement_address == other

    def test_only_owner_sets_profile_address(self, identity, alice, bob):
        with pytest.raises(NotAPartyError):
            identity.set_account_settlement_address(alice, bob, WALLET)
        assert identity.by_id(alice).settlement_address is None

    def test_profile_address_validated(self, identity, alice):
        with pytest.raises(ValidationError):
            identity.set_account_settlement_address(alice, alice, "not-a-wallet")
