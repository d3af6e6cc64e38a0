"""Exception types raised inside TenantGuard."""

from __future__ import annotations


class TenantGuardError(Exception):
    """Base class for all TenantGuard errors."""


class EvaluationUnavailable(TenantGuardError):
    """A collaborator needed for a decision could not be reached.

    Distinct from an explicit deny so callers can pick fail-closed or a
    stale-cache fallback per endpoint.
    """

    def __init__(self, collaborator: str, message: str = ""):
        self.collaborator = collaborator
        super().__init__(message or f"{collaborator} unavailable")


class CollaboratorTimeout(EvaluationUnavailable):
    """A collaborator call exceeded its configured timeout."""

    def __init__(self, collaborator: str, timeout: float):
        self.timeout = timeout
        super().__init__(collaborator, f"{collaborator} timed out after {timeout:.2f}s")


class InvalidPermissionError(TenantGuardError, ValueError):
    """One or more permission strings are not recognised."""

    def __init__(self, invalid: list[str]):
        self.invalid = invalid
        super().__init__(f"Invalid permissions provided: {', '.join(invalid)}")


class RuleConfigError(TenantGuardError, ValueError):
    """An alert rule document could not be parsed."""
