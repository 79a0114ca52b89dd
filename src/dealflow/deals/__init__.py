"""
Deal Lifecycle

Requirement validation, stage and status engines, mutations and the
per-deal locking and transaction primitives they share.
"""

from .requirements import (
    RequirementKind,
    StageRequirement,
    STAGE_REQUIREMENTS,
    FINAL_DOCUMENTS,
    CRITICAL_DOCUMENTS,
)
from .validator import (
    RequirementValidator,
    Severity,
    ValidationIssue,
    ValidationWarning,
    ValidationResult,
    ValidationSummary,
)
from .locks import DealLock, DealLockRegistry, get_lock_registry
from .transaction import DealTransaction, SaveCallback
from .status import (
    HOLD_STARTED_KEY,
    StatusTransitionEngine,
    StatusTransitionResult,
    STATUS_TRANSITIONS,
    STAGE_STATUS_COMPATIBILITY,
    required_documents_for_status,
)
from .workflow import (
    StageTransitionEngine,
    StageTransitionResult,
    STAGE_TRANSITIONS,
    get_allowed_transitions,
    next_stage,
    get_workflow_engine,
)
from .mutations import DealMutator, DealChange

__all__ = [
    # Requirements
    "RequirementKind",
    "StageRequirement",
    "STAGE_REQUIREMENTS",
    "FINAL_DOCUMENTS",
    "CRITICAL_DOCUMENTS",
    # Validation
    "RequirementValidator",
    "Severity",
    "ValidationIssue",
    "ValidationWarning",
    "ValidationResult",
    "ValidationSummary",
    # Concurrency
    "DealLock",
    "DealLockRegistry",
    "get_lock_registry",
    "DealTransaction",
    "SaveCallback",
    # Status
    "StatusTransitionEngine",
    "StatusTransitionResult",
    "HOLD_STARTED_KEY",
    "STATUS_TRANSITIONS",
    "STAGE_STATUS_COMPATIBILITY",
    "required_documents_for_status",
    # Stages
    "StageTransitionEngine",
    "StageTransitionResult",
    "STAGE_TRANSITIONS",
    "get_allowed_transitions",
    "next_stage",
    "get_workflow_engine",
    # Mutations
    "DealMutator",
    "DealChange",
]
