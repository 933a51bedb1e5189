"""Exceptions raised by the POS transaction engine."""

from typing import Optional


class PosError(Exception):
    """Base class for all POS engine errors."""


class ValidationError(PosError):
    """Malformed local input. Raised before any network call."""


class PreconditionError(PosError):
    """Engine state does not allow the requested operation. No I/O attempted."""


class AuthenticationError(PosError):
    """Operator is not logged in or the login was rejected."""


class LookupFailed(PosError):
    """Backend rejected a lookup on business grounds (e.g. unknown customer)."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class TransportError(PosError):
    """Network failure or an unusable response from the backend."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class SaleBatchFailed(PosError):
    """The aggregate sale request was rejected. Carries the server's message verbatim."""

    def __init__(self, server_message: str) -> None:
        super().__init__(server_message)
        self.server_message = server_message
