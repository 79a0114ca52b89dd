"""
dealflow - deal lifecycle workflow engine.

Stage and status transitions with requirement gates, an audit timeline
and lifecycle events for horse sale, lease and partnership deals.
"""

from .config import config, DealflowConfig
from .errors import (
    ErrorCode,
    DealflowError,
    InvalidTransitionError,
    RequirementsNotMetError,
    StatusRequirementError,
    ParticipantConstraintError,
    NotFoundError,
    TransitionTimeoutError,
)
from .models import (
    Deal,
    DealType,
    DealStage,
    DealStatus,
    BasicInfo,
    Terms,
    Participant,
    ParticipantRole,
    ParticipantStatus,
    Document,
    DocumentStatus,
    Logistics,
    Transportation,
    Inspection,
    Insurance,
    TimelineEntry,
    TimelineEventType,
)
from .observability import init_observability
from .service import DealLifecycleService, get_lifecycle_service

__version__ = "0.1.0"

__all__ = [
    "config",
    "DealflowConfig",
    # Errors
    "ErrorCode",
    "DealflowError",
    "InvalidTransitionError",
    "RequirementsNotMetError",
    "StatusRequirementError",
    "ParticipantConstraintError",
    "NotFoundError",
    "TransitionTimeoutError",
    # Models
    "Deal",
    "DealType",
    "DealStage",
    "DealStatus",
    "BasicInfo",
    "Terms",
    "Participant",
    "ParticipantRole",
    "ParticipantStatus",
    "Document",
    "DocumentStatus",
    "Logistics",
    "Transportation",
    "Inspection",
    "Insurance",
    "TimelineEntry",
    "TimelineEventType",
    "init_observability",
    # Service
    "DealLifecycleService",
    "get_lifecycle_service",
]
