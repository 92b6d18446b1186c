"""
Escrow lifecycle error taxonomy.

Every lifecycle, conversation and stats operation either returns its result or
raises exactly one of these. Each carries a stable ``code`` the request layer
can map to a response without parsing messages.
"""

from typing import Dict, Optional


class EscrowError(Exception):
    """Base class for all escrow core failures"""
    code = "escrow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EscrowError):
    """Malformed or missing input; carries every violated field at once"""
    code = "validation_error"

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        summary = "; ".join(f"{field}: {reason}" for field, reason in self.errors.items())
        super().__init__(f"Invalid input - {summary}")

    @property
    def fields(self):
        return sorted(self.errors)


class NotFoundError(EscrowError):
    code = "not_found"


class NotAPartyError(EscrowError):
    """Caller is neither the creator nor the linked recipient"""
    code = "not_a_party"


class NotAuthorizedError(EscrowError):
    """Caller has no visibility into this escrow"""
    code = "not_authorized"


class AlreadyLinkedError(EscrowError):
    """Escrow recipient is already bound to a different account"""
    code = "already_linked"


class AlreadySetError(EscrowError):
    """Settlement address re-bind attempt"""
    code = "already_set"


class InvalidStateError(EscrowError):
    """A lifecycle precondition failed; ``precondition`` names which one"""
    code = "invalid_state"

    def __init__(self, message: str, precondition: str):
        super().__init__(message)
        self.precondition = precondition


class CollaboratorUnavailableError(EscrowError):
    """An external collaborator failed or returned an unusable answer"""
    code = "collaborator_unavailable"

    def __init__(self, message: str, collaborator: Optional[str] = None):
        super().__init__(message)
        self.collaborator = collaborator


class ConcurrentUpdateError(EscrowError):
    """Compare-and-set kept losing to concurrent writers"""
    code = "concurrent_update"
