"""
Error taxonomy. Validation problems never reach the gateway, gateway failures
are converted to assistant notices by the controller, persistence failures are
logged and swallowed by the adapter.
"""

from __future__ import annotations

from .models import FailureKind


class ForgeChatError(Exception):
    """Base class for all ForgeChat errors."""


class ValidationError(ForgeChatError, ValueError):
    """Rejected locally: empty send, malformed attachment."""


class GatewayFailure(ForgeChatError, RuntimeError):
    def __init__(self, kind: FailureKind, message: str = "") -> None:
        self.kind = FailureKind(kind)
        super().__init__(message or self.kind.value)

    def __repr__(self) -> str:
        return f"GatewayFailure(kind={self.kind.value!r}, message={str(self)!r})"


class PersistenceFailure(ForgeChatError, OSError):
    """Durable slot could not be written."""
