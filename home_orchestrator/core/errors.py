"""Error kinds and exception hierarchy for the orchestration core.

Every failure that crosses a component boundary is one of a small set of
kinds. The kind decides the propagation policy:

- BACKEND_UNAVAILABLE: circuit open or health check failed. Handled by
  moving to the next candidate backend, never by retrying the same one.
- CAPABILITY_NOT_SUPPORTED: no backend satisfies the required capabilities.
  Surfaced immediately.
- TIMEOUT: deadline exceeded. Fails the enclosing step and triggers
  compensation.
- VALIDATION_ERROR: malformed request. Surfaced to the caller.
- COMPENSATION_FAILURE: a compensating action failed. Fatal, requires
  external reconciliation.
- BACKEND_ERROR: the backend ran the request and reported a failure.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Error kinds reported to callers."""

    BACKEND_UNAVAILABLE = "backend_unavailable"
    CAPABILITY_NOT_SUPPORTED = "capability_not_supported"
    TIMEOUT = "timeout"
    VALIDATION_ERROR = "validation_error"
    COMPENSATION_FAILURE = "compensation_failure"
    BACKEND_ERROR = "backend_error"


class OrchestrationError(Exception):
    """Base exception for orchestration errors."""

    kind: ErrorKind = ErrorKind.BACKEND_ERROR

    def __init__(self, message: str, backend: str | None = None) -> None:
        """Initialize orchestration error.

        Args:
            message: Error description
            backend: Backend id the error relates to (optional)
        """
        self.message = message
        self.backend = backend
        super().__init__(f"[{backend}] {message}" if backend else message)


class BackendUnavailableError(OrchestrationError):
    """Raised when a backend's circuit is open or its health check failed."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


class CapabilityNotSupportedError(OrchestrationError):
    """Raised when no backend satisfies the required capabilities."""

    kind = ErrorKind.CAPABILITY_NOT_SUPPORTED

    def __init__(
        self,
        message: str,
        missing: list[str] | None = None,
        backend: str | None = None,
    ) -> None:
        """Initialize capability error.

        Args:
            message: Error description
            missing: Capabilities that could not be satisfied
            backend: Backend id (optional)
        """
        self.missing = list(missing or [])
        super().__init__(message, backend)


class RequestTimeoutError(OrchestrationError):
    """Raised when a request or step exceeds its deadline."""

    kind = ErrorKind.TIMEOUT


class RequestValidationError(OrchestrationError):
    """Raised for malformed requests, plans and registrations."""

    kind = ErrorKind.VALIDATION_ERROR


class BackendInvocationError(OrchestrationError):
    """Raised when a backend reports that it could not perform a request."""

    kind = ErrorKind.BACKEND_ERROR


class TransientBackendError(BackendInvocationError):
    """Backend failure that is worth retrying (network blips, 5xx)."""


class CompensationFailureError(OrchestrationError):
    """Raised when one or more compensating actions did not complete."""

    kind = ErrorKind.COMPENSATION_FAILURE

    def __init__(self, message: str, unreconciled: list[str] | None = None) -> None:
        """Initialize compensation failure.

        Args:
            message: Error description
            unreconciled: Step ids whose compensation did not complete
        """
        self.unreconciled = list(unreconciled or [])
        super().__init__(message)


class WorkflowFailedError(OrchestrationError):
    """Raised by a compensated workflow to report its triggering failure."""

    def __init__(self, message: str, step_id: str, kind: ErrorKind) -> None:
        """Initialize workflow failure.

        Args:
            message: Error description of the failing step
            step_id: Step that failed
            kind: Error kind of the failure
        """
        self.step_id = step_id
        self.kind = kind
        super().__init__(message)


def error_kind_of(exc: BaseException) -> ErrorKind:
    """Map any exception to the error kind reported to callers."""
    if isinstance(exc, OrchestrationError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    return ErrorKind.BACKEND_ERROR
