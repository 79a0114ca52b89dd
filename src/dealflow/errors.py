"""
Dealflow Errors

Standard error codes and the exception hierarchy raised by the engines.

Transition engines raise these internally and turn them into failure
results at their boundary; mutation paths raise them to the caller.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Engine error codes."""

    # Transition errors
    INVALID_STAGE_TRANSITION = "INVALID_STAGE_TRANSITION"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    STATUS_NOT_ALLOWED_FOR_STAGE = "STATUS_NOT_ALLOWED_FOR_STAGE"
    REQUIREMENTS_NOT_MET = "REQUIREMENTS_NOT_MET"
    STATUS_REQUIREMENTS_NOT_MET = "STATUS_REQUIREMENTS_NOT_MET"
    DEAL_TERMINATED = "DEAL_TERMINATED"
    TRANSITION_TIMEOUT = "TRANSITION_TIMEOUT"

    # Mutation errors
    PARTICIPANT_CONSTRAINT = "PARTICIPANT_CONSTRAINT"
    NOT_FOUND = "NOT_FOUND"
    SUBJECT_NOT_FOUND = "SUBJECT_NOT_FOUND"
    PARTICIPANT_NOT_FOUND = "PARTICIPANT_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    INVALID_DOCUMENT_STATE = "INVALID_DOCUMENT_STATE"
    INVALID_INPUT = "INVALID_INPUT"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


class DealflowError(Exception):
    """
    Base exception for engine errors.

    Carries a machine-readable code, a human-readable message and
    optional structured details.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidTransitionError(DealflowError):
    """Requested move is not an edge of the transition table."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_STAGE_TRANSITION,
        allowed: Optional[List[str]] = None
    ):
        super().__init__(code=code, message=message, details={"allowed": allowed or []})
        self.allowed = allowed or []


class RequirementsNotMetError(DealflowError):
    """Stage gate failed; carries the itemised missing requirements."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        missing_requirements: Optional[List[str]] = None,
        blocking_conditions: Optional[List[str]] = None
    ):
        super().__init__(
            code=ErrorCode.REQUIREMENTS_NOT_MET,
            message=message,
            details={
                "errors": errors or [],
                "missing_requirements": missing_requirements or [],
                "blocking_conditions": blocking_conditions or [],
            }
        )
        self.errors = errors or []
        self.missing_requirements = missing_requirements or []
        self.blocking_conditions = blocking_conditions or []


class StatusRequirementError(DealflowError):
    """A status-specific semantic check failed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(
            code=ErrorCode.STATUS_REQUIREMENTS_NOT_MET,
            message=message,
            details={"errors": errors or [message]}
        )
        self.errors = errors or [message]


class ParticipantConstraintError(DealflowError):
    """Mutation would leave the deal without a required active role."""

    def __init__(self, message: str, role: Optional[str] = None):
        super().__init__(
            code=ErrorCode.PARTICIPANT_CONSTRAINT,
            message=message,
            details={"role": role} if role else None
        )
        self.role = role


class NotFoundError(DealflowError):
    """Referenced entity not found."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"

        code_map = {
            "Subject": ErrorCode.SUBJECT_NOT_FOUND,
            "Participant": ErrorCode.PARTICIPANT_NOT_FOUND,
            "Document": ErrorCode.DOCUMENT_NOT_FOUND,
        }
        super().__init__(code=code_map.get(resource, ErrorCode.NOT_FOUND), message=message)
        self.resource = resource
        self.resource_id = resource_id


class TransitionTimeoutError(DealflowError):
    """Transition did not finish within the caller's timeout."""

    def __init__(self, timeout: float):
        super().__init__(
            code=ErrorCode.TRANSITION_TIMEOUT,
            message=f"Transition timed out after {timeout:g}s",
            details={"timeout_seconds": timeout}
        )
        self.timeout = timeout
