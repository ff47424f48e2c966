"""
Error Taxonomy - Local and remote failures raised during reconciliation.

Local errors (MalformedIdentity, UnknownAttribute, ConflictUnresolvable,
NotSupported) signal a caller or schema mismatch and are never retried.
Remote errors describe how a control-plane call failed; the Reconciler wraps
them in Faulted without altering them.
"""

from typing import Optional


class ReconcileError(Exception):
    """Base class for every error raised by the reconciliation core."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedIdentity(ReconcileError):
    """Raised when an identity token was not produced by the codec."""

    def __init__(self, token: object, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"Malformed identity {token!r}: {reason}")


class UnknownAttribute(ReconcileError):
    """Raised when an attribute is not part of a kind's declared schema."""

    def __init__(self, attribute: str, kind: Optional[str] = None):
        self.attribute = attribute
        self.kind = kind
        where = f" for kind '{kind}'" if kind else ""
        super().__init__(f"Unknown attribute '{attribute}'{where}")


class ConflictUnresolvable(ReconcileError):
    """Raised when two non-equivalent specs collide on one natural key."""

    def __init__(self, natural_key: dict, attributes: list):
        self.natural_key = natural_key
        self.attributes = attributes
        super().__init__(
            f"Natural key {natural_key} is already used by a resource that "
            f"differs on: {', '.join(attributes)}"
        )


class NotSupported(ReconcileError):
    """Raised when a kind has no update or deletion operation."""


class RemoteError(ReconcileError):
    """Base class for failures reported by the remote control plane."""

    retryable = False


class NotFound(RemoteError):
    """The addressed remote resource does not exist."""


class Conflict(RemoteError):
    """The remote rejected a write because the resource already exists."""


class ValidationRejected(RemoteError):
    """The remote (or the schema layer) rejected an attribute value."""

    def __init__(self, attribute: Optional[str], reason: str):
        self.attribute = attribute
        self.reason = reason
        if attribute:
            super().__init__(f"{attribute}: {reason}")
        else:
            super().__init__(reason)


class Transient(RemoteError):
    """A temporary failure; the whole cycle may be retried."""

    retryable = True

    def __init__(self, cause: object):
        self.cause = cause
        super().__init__(f"Transient failure: {cause}")


class CallTimeout(Transient):
    """A remote call did not answer in time; its outcome is unknown."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout}s (outcome unknown)")


class Unauthorized(RemoteError):
    """The control plane refused the credentials."""


class Faulted(ReconcileError):
    """
    A reconciliation cycle stopped on a remote failure.

    The remote cause is kept verbatim. Canonical state is left as it was
    before Applying began, so re-running the cycle is always safe.
    """

    def __init__(self, phase: str, cause: RemoteError):
        self.phase = phase
        self.cause = cause
        super().__init__(f"Reconciliation faulted during {phase}: {cause}")

    @property
    def retryable(self) -> bool:
        return self.cause.retryable
