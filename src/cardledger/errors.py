"""
Error taxonomy for the ledger and the proxy.

Every rejection raised by the core derives from :class:`LedgerError`.
A rejection always voids the whole external call: the proxy restores
the storage snapshot taken before the call and re-raises the error
unchanged.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every rejection raised by the core."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AuthorizationError(LedgerError):
    """Caller lacks the role, ownership or approval the operation needs."""
    pass


class NotFoundError(LedgerError):
    """Operation on an identifier that does not exist."""
    pass


class ValidationError(LedgerError):
    """Malformed arguments: empty or mismatched batches, zero addresses,
    unusable upgrade targets, undecodable payloads."""
    pass


class StateConflictError(LedgerError):
    """The request contradicts current state (re-mint, burn of a token
    the caller does not hold, double initialization)."""
    pass


class NonexistentTokenError(AuthorizationError, NotFoundError):
    """Authorization query against a token that was never minted.

    The approval check cannot be answered for a missing record, so the
    failure is both an authorization failure and a missing identifier.
    """
    pass


class MaintenanceError(StateConflictError):
    """Forwarded call rejected while the proxy is in maintenance."""
    pass
