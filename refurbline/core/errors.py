"""
Domain errors raised by the lifecycle services.

Every error is deterministic given the stored state and is returned to the
caller unchanged. Only StaleState is meant to be retried, and only by the
caller after re-reading the job (see services.concurrency).

The API layer maps each error to its status_code; services never raise
HTTPException themselves.
"""

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for refurbishment lifecycle errors."""
    status_code: int = 400
    code: str = "LIFECYCLE_ERROR"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "code": self.code}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class InvalidIdentifierFormat(LifecycleError):
    """Raised when a scanned or typed identifier matches no known pattern."""
    status_code = 400
    code = "INVALID_IDENTIFIER_FORMAT"


class JobNotFound(LifecycleError):
    """Raised when no job exists for an identifier."""
    status_code = 404
    code = "JOB_NOT_FOUND"


class DiagnosisNotFound(LifecycleError):
    """Raised when a diagnosis id does not exist."""
    status_code = 404
    code = "DIAGNOSIS_NOT_FOUND"


class CertificationNotFound(LifecycleError):
    """Raised when a certification id does not exist."""
    status_code = 404
    code = "CERTIFICATION_NOT_FOUND"


class IllegalTransition(LifecycleError):
    """Raised when an action is not legal from the job's current state."""
    status_code = 409
    code = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        action: Optional[str] = None,
        target_state: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(
            message,
            current_state=current_state,
            action=action,
            target_state=target_state,
            **details,
        )
        self.current_state = current_state
        self.action = action
        self.target_state = target_state


class AttemptLimitExceeded(IllegalTransition):
    """Raised when a job that used all final-test attempts is sent back to test."""
    code = "ATTEMPT_LIMIT_EXCEEDED"


class RepairsOutstanding(IllegalTransition):
    """Raised when a job leaves the repair stage with open diagnoses."""
    code = "REPAIRS_OUTSTANDING"


class StaleState(LifecycleError):
    """Raised when the caller's observed state no longer matches the stored state."""
    status_code = 409
    code = "STALE_STATE"

    def __init__(self, message: str, expected_state: Optional[str] = None, actual_state: Optional[str] = None):
        super().__init__(message, expected_state=expected_state, actual_state=actual_state)
        self.expected_state = expected_state
        self.actual_state = actual_state


class JobNotEligible(LifecycleError):
    """Raised when a job is not in a state that allows the requested record."""
    status_code = 422
    code = "JOB_NOT_ELIGIBLE"


class AlreadyResolved(LifecycleError):
    """Raised when a diagnosis is closed a second time."""
    status_code = 409
    code = "ALREADY_RESOLVED"


class AlreadyRevoked(LifecycleError):
    """Raised when a certification is revoked a second time."""
    status_code = 409
    code = "ALREADY_REVOKED"


class OverrideReasonRequired(LifecycleError):
    """Raised when a forced transition is requested without a reason."""
    status_code = 422
    code = "OVERRIDE_REASON_REQUIRED"


class OverrideNotPermitted(LifecycleError):
    """Raised when an actor without override authority forces a stage."""
    status_code = 403
    code = "OVERRIDE_NOT_PERMITTED"
