"""
Typed error taxonomy for the harvesting engine.

Failures are classified once, at the boundary where they are first observed
(the browser session, the permission check, the configuration), and carried
downstream as an ``ErrorKind`` rather than re-derived from message text.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """How a failure should be treated by retry and scheduling logic."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    POLICY_DENIED = "policy_denied"
    RESOURCE_EXHAUSTED = "resource_exhausted"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT, ErrorKind.RESOURCE_EXHAUSTED)


class HarvestError(Exception):
    """Base class for classified harvesting failures."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str, *, target_key: str | None = None, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.target_key = target_key
        if kind is not None:
            self.kind = kind
        self.retry_exhausted = False


class SessionLostError(HarvestError):
    """The browser session or its connection went away."""

    kind = ErrorKind.TRANSIENT


class NavigationTimeoutError(HarvestError):
    """The page did not load within the navigation timeout."""

    kind = ErrorKind.TRANSIENT


class ResourceExhaustedError(HarvestError):
    """The rendering layer ran out of memory or similar resources."""

    kind = ErrorKind.RESOURCE_EXHAUSTED


class PolicyDeniedError(HarvestError):
    """The crawl-permission policy forbids fetching the target."""

    kind = ErrorKind.POLICY_DENIED


class ConfigurationError(HarvestError):
    """The target or selector configuration is unusable."""

    kind = ErrorKind.PERMANENT


class InvalidSnapshotError(ValueError):
    """Snapshots given to the diff engine cannot be compared."""


def error_kind(exc: BaseException) -> ErrorKind:
    """Kind of an arbitrary exception; unclassified errors are permanent."""
    if isinstance(exc, HarvestError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT
