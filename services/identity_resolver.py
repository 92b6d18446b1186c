"""
Identity Resolver - map authenticated e-mail addresses to durable account ids.

The authentication transport (passcode over e-mail, wallet signature) lives
outside the core. Once it has verified a caller it hands the e-mail here and
receives the account id the rest of the core works with.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from models import Account, normalize_email
from services.escrow_errors import NotAPartyError, NotFoundError, ValidationError
from services.escrow_store import EscrowStore
from utils.escrow_input_validation import is_valid_email, settlement_address_error

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Find-or-create accounts by e-mail, look them up by id"""

    def __init__(self, store: Optional[EscrowStore] = None, session_factory: Optional[sessionmaker] = None):
        self.store = store or EscrowStore(session_factory)

    def find_or_create_by_email(self, email: str, display_name: Optional[str] = None) -> str:
        """
        Resolve an authenticated e-mail to its account id, creating the account on first contact.

        A display name supplied on a later sign-in fills in a missing one but never
        overwrites an existing name.
        """
        if not is_valid_email(email):
            raise ValidationError({"email": "A valid e-mail address is required"})

        cleaned_name = display_name.strip() if display_name and display_name.strip() else None

        try:
            with self.store.transaction() as session:
                account = self.store.get_account_by_email(session, email)
                if account is not None:
                    if cleaned_name and not account.display_name:
                        account.display_name = cleaned_name
                    return account.id

                account = self.store.add_account(session, Account(
                    email=email.strip(),
                    email_normalized=normalize_email(email),
                    display_name=cleaned_name,
                ))
                logger.info(f"👤 ACCOUNT_CREATED: account={account.id}")
                return account.id
        except IntegrityError:
            # Another request registered the same e-mail first
            with self.store.transaction() as session:
                account = self.store.get_account_by_email(session, email)
                if account is None:
                    raise
                return account.id

    def by_id(self, account_id: str) -> Account:
        with self.store.transaction() as session:
            account = self.store.get_account(session, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            return account

    def by_email(self, email: str) -> Optional[Account]:
        with self.store.transaction() as session:
            return self.store.get_account_by_email(session, email)

    def set_account_settlement_address(self, account_id: str, acting_account_id: str, address: str) -> Account:
        """Update the profile's default settlement address; only the owner may do this"""
        if account_id != acting_account_id:
            raise NotAPartyError("Only the account owner can change its settlement address")

        error = settlement_address_error(address)
        if error:
            raise ValidationError({"address": error})

        with self.store.transaction() as session:
            account = self.store.get_account(session, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            account.settlement_address = address.strip()
            logger.info(f"👛 ACCOUNT_WALLET_LINKED: account={account_id}")
            return account
