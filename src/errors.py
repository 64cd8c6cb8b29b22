"""
Exception hierarchy.

Item-level failures are recovered by the orchestrator and counted; run-level
errors end the run and are broadcast once as an ERROR event.
"""

from __future__ import annotations

from typing import Optional

from src.schemas import FailureReason


class UnmaskError(Exception):
    reason: Optional[FailureReason] = None


class RunError(UnmaskError):
    """Aborts the whole run."""


class AlreadyRunning(RunError):
    reason = FailureReason.ALREADY_RUNNING

    def __init__(self, message: str = "Already running"):
        super().__init__(message)


class EmptyInput(RunError):
    reason = FailureReason.EMPTY_INPUT

    def __init__(self, message: str = "No order IDs provided"):
        super().__init__(message)


class AuthenticationError(RunError):
    reason = FailureReason.AUTHENTICATION_ERROR

    def __init__(self, message: str = "Not logged in. Please log in and try again."):
        super().__init__(message)


class SessionError(RunError):
    """The browser session could not be opened or was lost."""
    reason = FailureReason.SESSION_ERROR


class ItemFailure(UnmaskError):
    """One item failed; the run continues with the next one."""

    def __init__(self, reason: FailureReason, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


class NavigationRequestError(UnmaskError):
    reason = FailureReason.NAVIGATION_ERROR


class StoreError(UnmaskError):
    """Persistence collaborator failed (network, HTTP status, bad payload)."""


class ConfigError(UnmaskError):
    pass
