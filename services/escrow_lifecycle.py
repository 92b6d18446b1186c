"""
Escrow Lifecycle Engine
=======================

Owns the escrow state machine: creation, recipient linkage, settlement address
provisioning, dual confirmation and dispute flagging.

Stored states::

    PENDING ──(both parties confirmed)──▶ COMPLETED
       │
       └──(either party disputes)──▶ DISPUTED

Both outcomes are terminal. "Active" is a display label for a PENDING escrow
whose recipient is linked (see ``Escrow.display_status``); it is never stored.

Every mutation runs as one transaction that reads the row FOR UPDATE and writes
through ``EscrowStore.compare_and_set``. A lost compare-and-set rolls the
transaction back and re-evaluates against fresh state. The COMPLETED transition
is itself a compare-and-set, so exactly one of two concurrent confirmations
performs it, and only that request fires the completion side effects.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from config import Config
from models import Escrow, EscrowStatus, PartyRole, normalize_email, utcnow
from services.escrow_errors import (
    AlreadyLinkedError,
    AlreadySetError,
    CollaboratorUnavailableError,
    ConcurrentUpdateError,
    EscrowError,
    InvalidStateError,
    NotAPartyError,
    NotAuthorizedError,
    ValidationError,
)
from services.escrow_notifications import EscrowNotificationService
from services.escrow_stats_service import EscrowStats, EscrowStatsService
from services.escrow_store import EscrowStore
from services.identity_resolver import IdentityResolver
from utils.escrow_input_validation import (
    is_valid_email,
    optional_text_error,
    parse_amount,
    required_text_error,
    settlement_address_error,
)

logger = logging.getLogger(__name__)

SettlementExecutor = Callable[[Escrow], Optional[str]]

_WALLET_COLUMN = {PartyRole.CREATOR: "creator_wallet", PartyRole.RECIPIENT: "recipient_wallet"}
_CONFIRMED_COLUMN = {PartyRole.CREATOR: "creator_confirmed", PartyRole.RECIPIENT: "recipient_confirmed"}


class _StateConflict(Exception):
    """A compare-and-set lost to a concurrent writer; the attempt is retried"""


class EscrowLifecycleEngine:
    """State machine for two-party escrows"""

    def __init__(
        self,
        store: Optional[EscrowStore] = None,
        identity: Optional[IdentityResolver] = None,
        notifications: Optional[EscrowNotificationService] = None,
        stats: Optional[EscrowStatsService] = None,
        settlement_executor: Optional[SettlementExecutor] = None,
        session_factory: Optional[sessionmaker] = None,
        max_cas_retries: Optional[int] = None,
    ):
        self.store = store or EscrowStore(session_factory)
        self.identity = identity or IdentityResolver(self.store)
        self.notifications = notifications or EscrowNotificationService()
        self.stats = stats or EscrowStatsService(self.store)
        self.settlement_executor = settlement_executor
        self.max_cas_retries = max_cas_retries or Config.ESCROW_CAS_MAX_RETRIES

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_escrow(
        self,
        creator_id: str,
        recipient_email: str,
        asset_id: str,
        asset_symbol: str,
        amount: Any,
        description: str,
        terms: Optional[str] = None,
        creator_wallet: Optional[str] = None,
    ) -> Escrow:
        """
        Validate and persist a new PENDING escrow.

        All violated fields are reported together in a single ValidationError;
        nothing is stored when validation fails.
        """
        creator = self.identity.by_id(creator_id)

        errors: Dict[str, str] = {}

        if not is_valid_email(recipient_email):
            errors["recipient_email"] = "A valid recipient e-mail address is required"
        elif normalize_email(recipient_email) == creator.email_normalized:
            errors["recipient_email"] = "You cannot open an escrow with your own e-mail address"

        asset_id_error = required_text_error(asset_id, "Asset", Config.ASSET_ID_MAX_LENGTH)
        if asset_id_error:
            errors["asset_id"] = asset_id_error

        asset_symbol_error = required_text_error(asset_symbol, "Asset symbol", Config.ASSET_SYMBOL_MAX_LENGTH)
        if asset_symbol_error:
            errors["asset_symbol"] = asset_symbol_error

        parsed_amount, amount_error = parse_amount(amount)
        if amount_error:
            errors["amount"] = amount_error

        description_error = required_text_error(description, "Description", Config.DESCRIPTION_MAX_LENGTH)
        if description_error:
            errors["description"] = description_error

        terms_error = optional_text_error(terms, "Terms", Config.TERMS_MAX_LENGTH)
        if terms_error:
            errors["terms"] = terms_error

        if isinstance(creator_wallet, str) and not creator_wallet.strip():
            creator_wallet = None
        if creator_wallet is not None:
            wallet_error = settlement_address_error(creator_wallet)
            if wallet_error:
                errors["creator_wallet"] = wallet_error

        if errors:
            logger.warning(f"🚫 ESCROW_CREATE_REJECTED: creator={creator_id} fields={sorted(errors)}")
            raise ValidationError(errors)

        cleaned_terms = terms.strip() if terms and terms.strip() else None

        with self.store.transaction() as session:
            escrow = self.store.add_escrow(session, Escrow(
                creator_id=creator_id,
                recipient_email=recipient_email.strip(),
                recipient_email_normalized=normalize_email(recipient_email),
                asset_id=asset_id.strip(),
                asset_symbol=asset_symbol.strip(),
                amount=parsed_amount,
                description=description.strip(),
                terms=cleaned_terms,
                creator_wallet=creator_wallet.strip() if creator_wallet else None,
                status=EscrowStatus.PENDING.value,
                creator_confirmed=False,
                recipient_confirmed=False,
                disputed=False,
                version=1,
            ))

        logger.info(
            f"✅ ESCROW_CREATED: escrow={escrow.id} creator={creator_id} "
            f"amount={parsed_amount} {escrow.asset_symbol}"
        )

        self.notifications.escrow_created(escrow, creator.email)
        self.notifications.escrow_received(escrow, creator.email)
        return escrow

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_escrow(self, escrow_id: str, caller_account_id: str) -> Escrow:
        """
        Read an escrow on behalf of a caller.

        Visible to the two bound parties, and to a caller whose e-mail matches
        the recipient e-mail of an escrow that has not been linked yet.
        """
        with self.store.transaction() as session:
            escrow = self.store.require_escrow(session, escrow_id)
            if escrow.party_role(caller_account_id) is not None:
                return escrow

            caller = self.store.get_account(session, caller_account_id)
            if (
                caller is not None
                and escrow.recipient_id is None
                and caller.email_normalized == escrow.recipient_email_normalized
            ):
                return escrow

        logger.warning(f"🚫 ESCROW_READ_DENIED: escrow={escrow_id} caller={caller_account_id}")
        raise NotAuthorizedError("You do not have access to this escrow")

    def get_escrow_if_changed(self, escrow_id: str, caller_account_id: str, known_version: Optional[int]) -> Optional[Escrow]:
        """Return the escrow only when its version differs from ``known_version``"""
        escrow = self.get_escrow(escrow_id, caller_account_id)
        if known_version is not None and escrow.version == known_version:
            return None
        return escrow

    def list_escrows(self, account_id: str) -> List[Escrow]:
        """Escrows created by, linked to, or addressed by e-mail to the account, newest first"""
        account = self.identity.by_id(account_id)
        with self.store.transaction() as session:
            return self.store.escrows_for_account(session, account_id, email=account.email)

    def summarize(self, account_id: str) -> EscrowStats:
        return self.stats.summarize(account_id)

    @staticmethod
    def available_actions(escrow: Escrow, account_id: str) -> Dict[str, Any]:
        """
        What the caller can do next on this escrow.

        Returns:
            Dict with can_set_wallet, can_confirm, can_dispute, can_message flags
            and a ``next_step`` hint for rendering
        """
        role = escrow.party_role(account_id)
        if role is None:
            return {
                "can_set_wallet": False,
                "can_confirm": False,
                "can_dispute": False,
                "can_message": False,
                "next_step": "not_a_party",
            }

        is_pending = escrow.status == EscrowStatus.PENDING.value
        has_wallet = getattr(escrow, _WALLET_COLUMN[role]) is not None
        has_confirmed = bool(getattr(escrow, _CONFIRMED_COLUMN[role]))

        if escrow.status == EscrowStatus.COMPLETED.value:
            next_step = "completed"
        elif escrow.status == EscrowStatus.DISPUTED.value:
            next_step = "disputed"
        elif not has_wallet:
            next_step = "add_settlement_address"
        elif not has_confirmed:
            next_step = "confirm"
        else:
            next_step = "await_counterparty"

        return {
            "can_set_wallet": not has_wallet,
            "can_confirm": is_pending and has_wallet and not has_confirmed,
            "can_dispute": is_pending,
            "can_message": True,
            "next_step": next_step,
        }

    # ------------------------------------------------------------------
    # Recipient linkage
    # ------------------------------------------------------------------

    def link_recipient(self, escrow_id: str, account_id: str, account_email: str) -> Escrow:
        """
        Bind an authenticated account as the escrow's recipient.

        Idempotent for the already-linked account. The asserted e-mail must agree
        with the account's registered e-mail and match the escrow's recipient
        e-mail case-insensitively.
        """
        account = self.identity.by_id(account_id)
        if account.email_normalized != normalize_email(account_email):
            logger.error(f"❌ IDENTITY_ASSERTION_MISMATCH: account={account_id} escrow={escrow_id}")
            raise CollaboratorUnavailableError(
                "Identity assertion does not match the registered account e-mail",
                collaborator="identity",
            )

        def attempt(session: Session) -> Tuple[Escrow, bool]:
            escrow = self.store.require_escrow(session, escrow_id, for_update=True)

            if escrow.recipient_email_normalized != account.email_normalized:
                raise NotAuthorizedError("This escrow was not addressed to your e-mail")
            if escrow.recipient_id == account_id:
                return escrow, False
            if escrow.recipient_id is not None:
                raise AlreadyLinkedError("This escrow is already linked to another account")
            if escrow.creator_id == account_id:
                raise ValidationError({"recipient": "The creator cannot be linked as recipient"})

            if not self.store.compare_and_set(
                session, escrow_id,
                expected={"recipient_id": None},
                values={"recipient_id": account_id},
            ):
                raise _StateConflict()
            return self.store.require_escrow(session, escrow_id), True

        escrow, linked = self._run_atomic("link_recipient", escrow_id, attempt)
        if linked:
            logger.info(f"🔗 ESCROW_RECIPIENT_LINKED: escrow={escrow_id} recipient={account_id}")
        return escrow

    def link_pending_escrows(self, account_id: str, account_email: str) -> List[Escrow]:
        """
        Authentication hook: link every unlinked escrow addressed to this e-mail.

        Escrows that lose a linkage race are skipped.
        """
        with self.store.transaction() as session:
            escrow_ids = self.store.unlinked_escrow_ids_for_email(session, account_email)

        linked = []
        for escrow_id in escrow_ids:
            try:
                linked.append(self.link_recipient(escrow_id, account_id, account_email))
            except (AlreadyLinkedError, ValidationError) as e:
                logger.info(f"ESCROW_LINK_SKIPPED: escrow={escrow_id} account={account_id}: {e}")
        return linked

    # ------------------------------------------------------------------
    # Settlement addresses
    # ------------------------------------------------------------------

    def set_settlement_address(self, escrow_id: str, account_id: str, address: str) -> Escrow:
        """
        Record the caller's settlement address on this escrow.

        Each party's address can be set exactly once; there is no re-binding path.
        """
        def attempt(session: Session) -> Escrow:
            escrow = self.store.require_escrow(session, escrow_id, for_update=True)
            role = self._require_party(escrow, account_id, "set a settlement address on")

            error = settlement_address_error(address)
            if error:
                raise ValidationError({"address": error})

            column = _WALLET_COLUMN[role]
            if getattr(escrow, column) is not None:
                raise AlreadySetError("Your settlement address for this escrow is already set")

            if not self.store.compare_and_set(
                session, escrow_id,
                expected={column: None},
                values={column: address.strip()},
            ):
                raise _StateConflict()
            return self.store.require_escrow(session, escrow_id)

        escrow = self._run_atomic("set_settlement_address", escrow_id, attempt)
        logger.info(f"👛 ESCROW_WALLET_SET: escrow={escrow_id} account={account_id}")
        return escrow

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(self, escrow_id: str, account_id: str) -> Escrow:
        """
        Record the caller's confirmation; complete the escrow once both sides confirmed.

        Returns the updated escrow: status stays PENDING while the counterparty is
        awaited and becomes COMPLETED when this confirmation was the second one.
        Repeated confirmations are no-ops returning current state.
        """
        def attempt(session: Session) -> Tuple[Escrow, Optional[PartyRole], bool, Optional[str]]:
            escrow = self.store.require_escrow(session, escrow_id, for_update=True)
            role = self._require_party(escrow, account_id, "confirm")

            if escrow.status == EscrowStatus.COMPLETED.value:
                return escrow, None, False, None
            if escrow.status == EscrowStatus.DISPUTED.value:
                raise InvalidStateError(
                    "This escrow is disputed; confirmations are frozen",
                    precondition="escrow_disputed",
                )

            flag_column = _CONFIRMED_COLUMN[role]
            if getattr(escrow, flag_column):
                return escrow, None, False, None
            if getattr(escrow, _WALLET_COLUMN[role]) is None:
                raise InvalidStateError(
                    "Add your settlement address first",
                    precondition="settlement_address_required",
                )

            if not self.store.compare_and_set(
                session, escrow_id,
                expected={flag_column: False, "status": EscrowStatus.PENDING.value},
                values={flag_column: True},
            ):
                raise _StateConflict()

            # The row lock (or SQLite's single writer) makes this the only request
            # that can observe both flags true while still PENDING
            completed_now = self.store.compare_and_set(
                session, escrow_id,
                expected={
                    "creator_confirmed": True,
                    "recipient_confirmed": True,
                    "status": EscrowStatus.PENDING.value,
                },
                values={"status": EscrowStatus.COMPLETED.value, "completed_at": utcnow()},
            )

            escrow = self.store.require_escrow(session, escrow_id)
            return escrow, role, completed_now, escrow.creator.email

        escrow, role, completed_now, creator_email = self._run_atomic("confirm", escrow_id, attempt)

        if role is None:
            logger.info(f"ESCROW_CONFIRM_NOOP: escrow={escrow_id} account={account_id} status={escrow.status}")
            return escrow

        logger.info(f"✅ ESCROW_CONFIRMED: escrow={escrow_id} by={role.value}")

        if completed_now:
            logger.info(f"🎉 ESCROW_COMPLETED: escrow={escrow_id} completed_at={escrow.completed_at}")
            self.notifications.escrow_completed(escrow, creator_email)
            return self._after_completion(escrow)

        counterparty_email = escrow.recipient_email if role is PartyRole.CREATOR else creator_email
        self.notifications.confirmation_recorded(escrow, role, counterparty_email)
        return escrow

    def _after_completion(self, escrow: Escrow) -> Escrow:
        """Run the settlement executor once for an escrow this request completed"""
        if self.settlement_executor is None:
            return escrow

        try:
            reference = self.settlement_executor(escrow)
        except Exception as e:
            logger.error(f"❌ ESCROW_SETTLEMENT_FAILED: escrow={escrow.id}: {e}")
            return escrow

        if not reference:
            return escrow
        return self.record_settlement_reference(escrow.id, reference)

    def record_settlement_reference(self, escrow_id: str, reference: str) -> Escrow:
        """Attach the settlement execution reference to a completed escrow (set once)"""
        error = required_text_error(reference, "Settlement reference", Config.SETTLEMENT_REFERENCE_MAX_LENGTH)
        if error:
            raise ValidationError({"settlement_reference": error})
        reference = reference.strip()

        def attempt(session: Session) -> Escrow:
            escrow = self.store.require_escrow(session, escrow_id, for_update=True)
            if escrow.status != EscrowStatus.COMPLETED.value:
                raise InvalidStateError(
                    "Settlement can only be recorded for completed escrows",
                    precondition="escrow_not_completed",
                )
            if escrow.settlement_reference == reference:
                return escrow
            if escrow.settlement_reference is not None:
                raise AlreadySetError("A settlement reference is already recorded for this escrow")

            if not self.store.compare_and_set(
                session, escrow_id,
                expected={"settlement_reference": None},
                values={"settlement_reference": reference},
            ):
                raise _StateConflict()
            return self.store.require_escrow(session, escrow_id)

        escrow = self._run_atomic("record_settlement_reference", escrow_id, attempt)
        logger.info(f"🧾 ESCROW_SETTLEMENT_RECORDED: escrow={escrow_id} reference={reference}")
        return escrow

    # ------------------------------------------------------------------
    # Dispute
    # ------------------------------------------------------------------

    def dispute(self, escrow_id: str, account_id: str, reason: Optional[str] = None) -> Escrow:
        """
        Flag the escrow as disputed, freezing further confirmations.

        Allowed from PENDING (linked or not), never after completion. Disputing an
        already disputed escrow is a no-op.
        """
        reason_error = optional_text_error(reason, "Reason", Config.DESCRIPTION_MAX_LENGTH)
        if reason_error:
            raise ValidationError({"reason": reason_error})
        dispute_reason = reason.strip() if reason and reason.strip() else Config.DEFAULT_DISPUTE_REASON

        def attempt(session: Session) -> Tuple[Escrow, Optional[PartyRole], Optional[str]]:
            escrow = self.store.require_escrow(session, escrow_id, for_update=True)
            role = self._require_party(escrow, account_id, "dispute")

            if escrow.status == EscrowStatus.COMPLETED.value:
                raise InvalidStateError(
                    "Completed escrows cannot be disputed",
                    precondition="escrow_completed",
                )
            if escrow.status == EscrowStatus.DISPUTED.value:
                return escrow, None, None

            if not self.store.compare_and_set(
                session, escrow_id,
                expected={"status": EscrowStatus.PENDING.value},
                values={
                    "disputed": True,
                    "status": EscrowStatus.DISPUTED.value,
                    "disputed_at": utcnow(),
                    "dispute_reason": dispute_reason,
                },
            ):
                raise _StateConflict()
            escrow = self.store.require_escrow(session, escrow_id)
            return escrow, role, escrow.creator.email

        escrow, role, creator_email = self._run_atomic("dispute", escrow_id, attempt)

        if role is None:
            logger.info(f"ESCROW_DISPUTE_NOOP: escrow={escrow_id} already disputed")
            return escrow

        logger.warning(f"⚠️ ESCROW_DISPUTED: escrow={escrow_id} by={role.value}")
        self.notifications.escrow_disputed(escrow, role, creator_email)
        return escrow

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_party(escrow: Escrow, account_id: str, action: str) -> PartyRole:
        role = escrow.party_role(account_id)
        if role is None:
            logger.warning(f"🚫 ESCROW_NOT_A_PARTY: escrow={escrow.id} account={account_id} action={action}")
            raise NotAPartyError(f"Only the parties to this escrow can {action} it")
        return role

    def _run_atomic(self, operation: str, escrow_id: str, attempt: Callable[[Session], Any]) -> Any:
        """Run ``attempt`` in its own transaction, retrying when a compare-and-set loses"""
        for attempt_number in range(1, self.max_cas_retries + 1):
            try:
                with self.store.transaction() as session:
                    return attempt(session)
            except _StateConflict:
                logger.info(f"🔁 ESCROW_CAS_RETRY: {operation} escrow={escrow_id} attempt={attempt_number}")
            except EscrowError as e:
                logger.info(f"ESCROW_{operation.upper()}_REJECTED: escrow={escrow_id} code={e.code}: {e}")
                raise

        logger.error(f"❌ ESCROW_CAS_EXHAUSTED: {operation} escrow={escrow_id} after {self.max_cas_retries} attempts")
        raise ConcurrentUpdateError(f"Escrow {escrow_id} is being updated concurrently, please retry")
