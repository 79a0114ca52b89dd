"""
Requirement Validator

Stateless rule evaluation over a deal.

Three entry points, chosen explicitly by the caller:
- validate(): full health check (structure, common checks, current stage
  rules, blocking conditions)
- validate_stage(): only the rules of one stage
- validate_transition_gate(): structure, target stage rules and blocking
  conditions, used before a stage transition

Structural failures short-circuit with critical severity. Rule failures
are collected exhaustively.
"""

import dataclasses
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..config import config
from ..models import (
    Deal,
    DealStage,
    DealStatus,
    DocumentStatus,
    ParticipantRole,
)
from ..timeline import last_activity
from ..utils import as_utc, maybe_await, utcnow
from .requirements import (
    BLOCKING_ROLES,
    CRITICAL_DOCUMENTS,
    STAGE_REQUIREMENTS,
    StageRequirement,
)

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ValidationIssue:
    code: str
    message: str
    severity: Severity = Severity.ERROR
    field: Optional[str] = None
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclass
class ValidationWarning:
    code: str
    message: str
    recommendation: Optional[str] = None
    field: Optional[str] = None
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    missing_requirements: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    blocking_conditions: Optional[List[str]] = None

    @property
    def error_messages(self) -> List[str]:
        return [e.message for e in self.errors]

    @property
    def is_critical(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationSummary:
    can_progress: bool
    blockers: List[str]
    warnings: List[str]
    recommendations: List[str]


SUGGESTIONS: Dict[str, str] = {
    "MISSING_HORSE": "Add a horse reference to proceed",
    "MISSING_TERMS": "Define basic deal terms including price and conditions",
    "INSUFFICIENT_PARTICIPANTS": "Add required participants (minimum 2)",
    "MISSING_REQUIRED_ROLES": "Add a Seller and a Buyer or Agent to the deal",
    "MISSING_DOCUMENT": "Upload all required documents and ensure they are approved",
    "MISSING_SIGNATURE": "Upload the signed contract and have it approved",
    "MISSING_PAYMENT": "Upload the payment confirmation and have it approved",
    "MISSING_APPROVAL": "Obtain necessary approvals from all required parties",
    "MISSING_INSPECTION": "Schedule the inspection before moving to evaluation",
    "MISSING_PARTICIPANT": "Assign the participants this stage requires",
    "STATUS_MISMATCH": "Set the deal status to Completed or move it out of the Complete stage",
}


def generate_suggestions(
    errors: Iterable[ValidationIssue],
    warnings: Iterable[ValidationWarning]
) -> List[str]:
    """Suggestions from the fixed lookup plus warning recommendations, de-duplicated."""
    suggestions: Dict[str, None] = {}
    for error in errors:
        if error.code in SUGGESTIONS:
            suggestions[SUGGESTIONS[error.code]] = None
    for warning in warnings:
        if warning.recommendation:
            suggestions[warning.recommendation] = None
    return list(suggestions)


def _result(
    errors: List[ValidationIssue],
    warnings: List[ValidationWarning],
    missing: List[str],
    blocking_conditions: Optional[List[str]] = None
) -> ValidationResult:
    return ValidationResult(
        is_valid=not errors and not blocking_conditions,
        errors=errors,
        warnings=warnings,
        missing_requirements=missing,
        suggestions=generate_suggestions(errors, warnings),
        blocking_conditions=blocking_conditions,
    )


class RequirementValidator:
    """
    Evaluates deals against stage requirement tables.

    Usage:
        validator = RequirementValidator()
        result = await validator.validate_stage(deal, DealStage.DOCUMENTATION)
        if not result.is_valid:
            print(result.missing_requirements)
    """

    def __init__(
        self,
        requirements: Optional[Dict[DealStage, Tuple[StageRequirement, ...]]] = None,
        stale_after_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._requirements = requirements if requirements is not None else STAGE_REQUIREMENTS
        if stale_after_days is None:
            stale_after_days = config.STALE_DEAL_DAYS
        self.stale_after = timedelta(days=stale_after_days)
        self._clock = clock or utcnow

    def requirements_for(self, stage: DealStage) -> Tuple[StageRequirement, ...]:
        return self._requirements.get(stage, ())

    async def validate(self, deal: Deal) -> ValidationResult:
        """Full check of the deal in its current stage."""
        structure = self.validate_structure(deal)
        if not structure.is_valid:
            logger.debug(f"Deal {deal.id} failed structural validation")
            return structure

        common = self.validate_common(deal)
        stage = await self.validate_stage(deal, deal.stage)
        blocking = self.blocking_conditions(deal)

        return _result(
            errors=stage.errors + common.errors,
            warnings=stage.warnings + common.warnings,
            missing=stage.missing_requirements + common.missing_requirements,
            blocking_conditions=blocking,
        )

    async def validate_stage(self, deal: Deal, stage: DealStage) -> ValidationResult:
        """Flat pass over the stage's rules against the deal's current values."""
        errors: List[ValidationIssue] = []
        missing: List[str] = []

        for requirement in self.requirements_for(stage):
            met = await maybe_await(requirement.predicate(deal))
            if not met:
                errors.append(ValidationIssue(
                    code=requirement.error_code,
                    message=requirement.error_message,
                    severity=Severity.ERROR,
                    field=requirement.field,
                    metadata={
                        "requirement_id": requirement.id,
                        "kind": requirement.kind.value,
                        "depends_on": list(requirement.depends_on),
                    },
                ))
                missing.append(requirement.description)

        return _result(errors, [], missing)

    async def validate_transition_gate(self, deal: Deal, target_stage: DealStage) -> ValidationResult:
        """Readiness of the deal, as it is now, to enter target_stage."""
        structure = self.validate_structure(deal)
        if not structure.is_valid:
            return structure

        stage = await self.validate_stage(deal, target_stage)
        return _result(
            errors=stage.errors,
            warnings=stage.warnings,
            missing=stage.missing_requirements,
            blocking_conditions=self.blocking_conditions(deal),
        )

    def validate_structure(self, deal: Deal) -> ValidationResult:
        errors: List[ValidationIssue] = []
        missing: List[str] = []

        if not deal.basic_info or not deal.basic_info.horse_id:
            errors.append(ValidationIssue(
                code="MISSING_HORSE",
                message="Deal must reference a horse",
                severity=Severity.CRITICAL,
                field="basic_info.horse_id",
            ))
            missing.append("Horse reference")

        if deal.terms is None:
            errors.append(ValidationIssue(
                code="MISSING_TERMS",
                message="Deal must have terms defined",
                severity=Severity.CRITICAL,
                field="terms",
            ))
            missing.append("Deal terms")

        if len(deal.participants) < 2:
            errors.append(ValidationIssue(
                code="INSUFFICIENT_PARTICIPANTS",
                message="Deal must have at least 2 participants",
                severity=Severity.CRITICAL,
                field="participants",
            ))
            missing.append("Minimum participants")

        roles = {p.role for p in deal.participants}
        absent = []
        if ParticipantRole.SELLER not in roles:
            absent.append("Seller")
        if not roles & {ParticipantRole.BUYER, ParticipantRole.AGENT}:
            absent.append("Buyer or Agent")
        if absent:
            errors.append(ValidationIssue(
                code="MISSING_REQUIRED_ROLES",
                message=f"Deal is missing required participant role(s): {', '.join(absent)}",
                severity=Severity.CRITICAL,
                field="participants",
                metadata={"missing_roles": absent},
            ))
            missing.extend(f"{role} participant" for role in absent)

        return _result(errors, [], missing)

    def validate_common(self, deal: Deal) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        if not deal.is_completion_consistent():
            errors.append(ValidationIssue(
                code="STATUS_MISMATCH",
                message="Completed deals must have COMPLETED status",
                field="status",
            ))

        idle = as_utc(self._clock()) - last_activity(deal)
        if idle > self.stale_after and deal.status == DealStatus.ACTIVE:
            warnings.append(ValidationWarning(
                code="STALE_DEAL",
                message=f"Deal has been inactive for over {self.stale_after.days} days",
                recommendation="Consider updating the deal status or reaching out to participants",
                metadata={"idle_days": idle.days},
            ))

        return _result(errors, warnings, [])

    def blocking_conditions(self, deal: Deal) -> List[str]:
        """Hard stops independent of the rule set being evaluated."""
        conditions = []

        if any(p.role in BLOCKING_ROLES and not p.is_active for p in deal.participants):
            conditions.append("Required participants are inactive")

        if any(
            d.type in CRITICAL_DOCUMENTS and d.status == DocumentStatus.REJECTED
            for d in deal.documents
        ):
            conditions.append("Critical documents have been rejected")

        return conditions

    async def summarize(self, deal: Deal) -> ValidationSummary:
        validation = await self.validate(deal)
        return ValidationSummary(
            can_progress=validation.is_valid,
            blockers=validation.error_messages + (validation.blocking_conditions or []),
            warnings=[w.message for w in validation.warnings],
            recommendations=validation.suggestions,
        )
