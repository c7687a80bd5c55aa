"""
Error Taxonomy Module

Typed failures raised by the ledger core. The HTTP layer maps each kind to a
status code; nothing in the core interprets transport concerns.
"""

from typing import List, Optional


class LedgerError(Exception):
    """Base class for all ledger failures"""

    kind = "error"

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields or [])

    def to_dict(self) -> dict:
        """Structured failure payload (kind + message + offending fields)"""
        return {
            "kind": self.kind,
            "message": self.message,
            "fields": self.fields
        }


class NotFoundError(LedgerError):
    """Entity missing, deleted, or owned by someone else"""

    kind = "not_found"


class ValidationFailure(LedgerError):
    """Malformed or missing input, raised before any mutation"""

    kind = "validation"


class SelfDeactivationBlocked(LedgerError):
    """An admin tried to deactivate their own account"""

    kind = "self_deactivation_blocked"


class PersistenceFailure(LedgerError):
    """Underlying store operation failed"""

    kind = "persistence"
