"""
Error types for the model version-control core.

Every failure raised by the core carries a machine-readable kind plus a
human-readable message:
- NotFoundError: unknown project, workspace, revision, version or patch
- InvalidArgumentError: malformed path, inverted bounds, bad version string
- ConflictError: duplicate creation, stale revision, wrong workspace state
- UnavailableError: operation not supported by the active store
- StorageFailureError: I/O fault inside the store (retryable)

Invariants:
    - All errors inherit from SdlcError
    - "No results" is never an error; empty lists are valid success values
    - Errors raised by a store propagate unchanged; callers may only add context

How to change safely:
    - Add new kinds to ErrorKind before adding a subclass
    - Never reuse an error code for a different meaning
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Machine-readable failure kinds."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    CONFLICT = "CONFLICT"
    UNAVAILABLE = "UNAVAILABLE"
    STORAGE_FAILURE = "STORAGE_FAILURE"


class SdlcError(Exception):
    """Base exception for all core failures.

    Attributes:
        message: Error message
        kind: Failure kind for programmatic handling
        details: Additional error context (target ids, operation)
        retryable: Whether the caller may retry the same call
    """

    kind: ErrorKind = ErrorKind.STORAGE_FAILURE
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def code(self) -> str:
        """Error code string (same as the kind value)."""
        return self.kind.value

    @property
    def operation(self) -> Optional[str]:
        """Operation during which the error surfaced, if annotated."""
        return self.details.get("operation")

    def annotate(self, operation: str, **ids: Any) -> SdlcError:
        """Attach the failing operation and target ids without changing the kind.

        Existing context wins so the innermost annotation is preserved.

        Args:
            operation: Description of the operation that failed
            **ids: Target identifiers (project_id, workspace_id, ...)

        Returns:
            This error, for use in ``raise error.annotate(...)``
        """
        self.details.setdefault("operation", operation)
        for key, value in ids.items():
            if value is not None:
                self.details.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        if self.operation:
            return f"{self.message} (while attempting to {self.operation})"
        return self.message


class NotFoundError(SdlcError):
    """Resource not found.

    Raised when:
    - Project, workspace or patch doesn't exist
    - Revision is not part of the addressed history line
    - Entity doesn't exist at the addressed revision
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidArgumentError(SdlcError):
    """Structural validation failed before any mutation was attempted.

    Attributes:
        errors: Individual validation messages (may be several per call)
    """

    kind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(message, details={"errors": list(errors or [])})
        self.errors = list(errors or [])

    @classmethod
    def from_errors(cls, errors: list[str], summary: str) -> InvalidArgumentError:
        """Build one error from a list of collected validation messages."""
        if len(errors) == 1:
            return cls(errors[0], errors)
        return cls(summary + ":\n\t" + "\n\t".join(errors), errors)


class ConflictError(SdlcError):
    """State conflict.

    Raised when:
    - A workspace, patch, version or project already exists
    - A commit was based on a stale revision (compare-and-swap failed)
    - A workspace in conflict resolution is mutated through the normal path
    """

    kind = ErrorKind.CONFLICT


class UnavailableError(SdlcError):
    """Operation is not supported by the active store.

    Mutating calls against a store that cannot perform them fail closed
    with this error; they never silently succeed.
    """

    kind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str, feature: Optional[str] = None) -> None:
        super().__init__(message, details={"feature": feature})
        self.feature = feature


class StorageFailureError(SdlcError):
    """I/O or network fault inside the store; safe to retry."""

    kind = ErrorKind.STORAGE_FAILURE
    retryable = True
