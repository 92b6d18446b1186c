"""
Conversation Log - append-only per-escrow message thread between the two parties
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from config import Config
from models import Escrow, EscrowMessage
from services.escrow_errors import NotAPartyError, ValidationError
from services.escrow_store import EscrowStore
from utils.escrow_input_validation import required_text_error

logger = logging.getLogger(__name__)


class ConversationLog:
    """Messages are allowed in every escrow status and are never edited or deleted"""

    def __init__(self, store: Optional[EscrowStore] = None, session_factory: Optional[sessionmaker] = None):
        self.store = store or EscrowStore(session_factory)

    def _require_party(self, session: Session, escrow_id: str, account_id: str) -> Escrow:
        escrow = self.store.require_escrow(session, escrow_id)
        if escrow.party_role(account_id) is None:
            logger.warning(f"🚫 ESCROW_CHAT_DENIED: escrow={escrow_id} account={account_id}")
            raise NotAPartyError("Only the parties to this escrow can use its conversation")
        return escrow

    def post_message(self, escrow_id: str, account_id: str, content: str) -> EscrowMessage:
        with self.store.transaction() as session:
            self._require_party(session, escrow_id, account_id)

            error = required_text_error(content, "Message", Config.MESSAGE_MAX_LENGTH)
            if error:
                raise ValidationError({"content": error})

            message = self.store.add_message(session, EscrowMessage(
                escrow_id=escrow_id,
                sender_id=account_id,
                content=content.strip(),
            ))

        logger.info(f"💬 ESCROW_MESSAGE_POSTED: escrow={escrow_id} sender={account_id} message={message.id}")
        return message

    def list_messages(self, escrow_id: str, account_id: str) -> List[EscrowMessage]:
        """Full thread, oldest first"""
        with self.store.transaction() as session:
            self._require_party(session, escrow_id, account_id)
            return self.store.messages_for_escrow(session, escrow_id)
