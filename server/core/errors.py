"""Typed errors so callers can tell transport trouble from legitimately inapplicable actions."""
from typing import Optional


class SyncError(Exception):
    """Base error. ``retryable`` marks transient failures."""
    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ValidationFailure(SyncError):
    """Malformed request, rejected before any command is sent."""


class NotFound(SyncError):
    """Target chat or message does not exist in the store."""


class PreconditionFailure(SyncError):
    """The action cannot apply to this target (not ours, retracted, outside its window)."""


class TransportFailure(SyncError):
    """The command executor could not be reached or did not answer."""
    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message, retryable=retryable)


class BridgeTimeout(TransportFailure):
    """No response with a matching correlation id before the deadline."""


class BridgeNotRunning(TransportFailure):
    """The executor process is not alive."""


class Rejected(SyncError):
    """The executor explicitly declined the command."""
    def __init__(self, message: str, *, action: Optional[str] = None):
        super().__init__(message)
        self.action = action


class NoEffect(SyncError):
    """
    The executor accepted the command but the store never reflected it.

    Usually the action is inapplicable (expired edit window, unsupported
    message type) rather than a bug.
    """
    def __init__(self, message: str, *, action: Optional[str] = None):
        super().__init__(message)
        self.action = action
