"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations


class PortalError(Exception):
    """Base class. ``operation``/``identifier`` are folded into the message."""

    def __init__(self, message: str, *, operation: str | None = None, identifier: str | None = None):
        self.operation = operation
        self.identifier = identifier
        self.detail = message
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        prefix = []
        if self.operation:
            prefix.append(self.operation)
        if self.identifier:
            prefix.append(self.identifier)
        if not prefix:
            return message
        return f"{' '.join(prefix)}: {message}"


class ValidationError(PortalError):
    """Malformed question or staging item fields. Nothing was written."""


class AuthorizationError(PortalError):
    """Caller lacks the role required for the operation."""


class NotFoundError(PortalError):
    pass


class InvalidTransitionError(PortalError):
    """Batch status change not permitted by the review state machine."""


class TransactionError(PortalError):
    """The store rejected a write group. Earlier committed groups stand."""


class ExternalServiceError(PortalError):
    """Generation API or asset store failure."""
