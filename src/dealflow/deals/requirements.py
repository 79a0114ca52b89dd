"""
Stage Requirements

Data-driven entry gates: for each stage, an ordered tuple of typed
requirements backed by pure predicates over the deal.

A predicate may return a bool or an awaitable resolving to one.
`depends_on` documents ordering intent only; evaluation is a flat pass.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ..models import Deal, DealStage, DealType, ParticipantRole, Terms


class RequirementKind(str, Enum):
    DOCUMENT = "document"
    PARTICIPANT = "participant"
    APPROVAL = "approval"
    PAYMENT = "payment"
    INSPECTION = "inspection"
    SIGNATURE = "signature"
    CONDITION = "condition"


Predicate = Callable[[Deal], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class StageRequirement:
    id: str
    kind: RequirementKind
    description: str
    predicate: Predicate
    error_message: str
    depends_on: Tuple[str, ...] = ()
    field: Optional[str] = None

    @property
    def error_code(self) -> str:
        return f"MISSING_{self.kind.value.upper()}"


# Documents that must be approved before a deal can complete
FINAL_DOCUMENTS: Tuple[str, ...] = ("signed_contract", "transfer_of_ownership", "payment_confirmation")

# A rejection of any of these blocks all stage movement
CRITICAL_DOCUMENTS: Tuple[str, ...] = ("contract", "transfer_of_ownership")

# Roles whose inactivity blocks stage movement
BLOCKING_ROLES: Tuple[ParticipantRole, ...] = (ParticipantRole.SELLER, ParticipantRole.BUYER)

# Deal types whose terms need a bounded period
DATED_DEAL_TYPES: Tuple[DealType, ...] = (DealType.LEASE, DealType.TRAINING)


def parse_calendar_date(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date or datetime string; None when it is not a real date."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
    except ValueError:
        return None


def term_date_errors(terms: Optional[Terms], deal_type: DealType) -> List[str]:
    """Problems with the term dates, empty when they are acceptable."""
    if terms is None:
        return []

    errors = []
    parsed: Dict[str, Optional[date]] = {}
    for name in ("start_date", "end_date"):
        raw = getattr(terms, name)
        parsed[name] = parse_calendar_date(raw)
        if raw and parsed[name] is None:
            errors.append(f"{name} is not a valid calendar date: {raw!r}")

    if deal_type in DATED_DEAL_TYPES:
        for name in ("start_date", "end_date"):
            if not getattr(terms, name):
                errors.append(f"{name} is required for {deal_type.value} deals")
        start, end = parsed["start_date"], parsed["end_date"]
        if start and end and start >= end:
            errors.append("start_date must precede end_date")

    return errors


# -- predicates -------------------------------------------------------------

def has_basic_info(deal: Deal) -> bool:
    return bool(deal.basic_info.horse_id) and deal.type is not None


def has_required_participants(deal: Deal) -> bool:
    return (
        deal.has_active_role(ParticipantRole.SELLER)
        and deal.has_active_role(ParticipantRole.BUYER, ParticipantRole.AGENT)
    )


def has_terms(deal: Deal) -> bool:
    return deal.terms is not None


def has_defined_terms(deal: Deal) -> bool:
    return deal.terms is not None and deal.terms.price is not None and len(deal.terms.conditions) > 0


def has_positive_price(deal: Deal) -> bool:
    if deal.terms is None or deal.terms.price is None:
        return False
    price = deal.terms.price
    return math.isfinite(price) and price > 0


def has_valid_term_dates(deal: Deal) -> bool:
    return not term_date_errors(deal.terms, deal.type)


def is_inspection_scheduled(deal: Deal) -> bool:
    inspection = deal.logistics.inspection if deal.logistics else None
    return bool(inspection and inspection.date)


def has_inspector(deal: Deal) -> bool:
    return deal.has_active_role(ParticipantRole.INSPECTOR)


def has_insurance(deal: Deal) -> bool:
    insurance = deal.logistics.insurance if deal.logistics else None
    return bool(insurance and insurance.provider)


def is_transport_scheduled(deal: Deal) -> bool:
    transportation = deal.logistics.transportation if deal.logistics else None
    return bool(transportation and transportation.date)


def has_party_approvals(deal: Deal) -> bool:
    """Every active Seller and Buyer has recorded an approval."""
    approvals = set(deal.metadata.get("approvals") or [])
    parties = [p for p in deal.active_participants() if p.role in BLOCKING_ROLES]
    return bool(parties) and all(p.id in approvals for p in parties)


def approved_documents(*doc_types: str) -> Predicate:
    def predicate(deal: Deal) -> bool:
        return all(deal.has_approved_document(t) for t in doc_types)
    return predicate


# -- stage tables -----------------------------------------------------------

STAGE_REQUIREMENTS: Dict[DealStage, Tuple[StageRequirement, ...]] = {
    DealStage.INITIATION: (
        StageRequirement(
            id="init_basic_info",
            kind=RequirementKind.CONDITION,
            description="Basic deal information must be complete",
            predicate=has_basic_info,
            error_message="Missing basic deal information",
            field="basic_info",
        ),
        StageRequirement(
            id="init_participants",
            kind=RequirementKind.PARTICIPANT,
            description="Must have an active Seller and an active Buyer or Agent",
            predicate=has_required_participants,
            error_message="Missing required participants: Seller and Buyer or Agent",
            field="participants",
        ),
        StageRequirement(
            id="init_terms",
            kind=RequirementKind.CONDITION,
            description="Basic terms must be defined",
            predicate=has_terms,
            error_message="Basic terms not defined",
            field="terms",
        ),
    ),
    DealStage.DISCUSSION: (
        StageRequirement(
            id="disc_terms",
            kind=RequirementKind.CONDITION,
            description="Detailed terms must be defined",
            predicate=has_defined_terms,
            error_message="Terms not properly defined",
            depends_on=("init_terms",),
            field="terms",
        ),
        StageRequirement(
            id="disc_price",
            kind=RequirementKind.CONDITION,
            description="Price must be specified",
            predicate=has_positive_price,
            error_message="Valid price not specified",
            depends_on=("init_terms",),
            field="terms.price",
        ),
        StageRequirement(
            id="disc_dates",
            kind=RequirementKind.CONDITION,
            description="Term dates must be valid",
            predicate=has_valid_term_dates,
            error_message="Term dates are missing or invalid",
            depends_on=("init_terms",),
            field="terms.start_date",
        ),
    ),
    DealStage.EVALUATION: (
        StageRequirement(
            id="eval_inspection",
            kind=RequirementKind.INSPECTION,
            description="Inspection must be scheduled",
            predicate=is_inspection_scheduled,
            error_message="Inspection not scheduled",
            field="logistics.inspection",
        ),
        StageRequirement(
            id="eval_inspector",
            kind=RequirementKind.PARTICIPANT,
            description="Inspector must be assigned",
            predicate=has_inspector,
            error_message="Inspector not assigned",
            field="participants",
        ),
    ),
    DealStage.DOCUMENTATION: (
        StageRequirement(
            id="doc_contract",
            kind=RequirementKind.DOCUMENT,
            description="Contract must be uploaded and approved",
            predicate=approved_documents("contract"),
            error_message="Contract document missing or not approved",
            field="documents",
        ),
        StageRequirement(
            id="doc_insurance",
            kind=RequirementKind.CONDITION,
            description="Insurance details must be provided",
            predicate=has_insurance,
            error_message="Insurance details not provided",
            field="logistics.insurance",
        ),
    ),
    DealStage.CLOSING: (
        StageRequirement(
            id="close_inspection_report",
            kind=RequirementKind.DOCUMENT,
            description="Inspection report must be uploaded and approved",
            predicate=approved_documents("inspection_report"),
            error_message="Inspection report missing or not approved",
            depends_on=("eval_inspection",),
            field="documents",
        ),
        StageRequirement(
            id="close_signed_contract",
            kind=RequirementKind.SIGNATURE,
            description="Signed contract must be uploaded and approved",
            predicate=approved_documents("signed_contract"),
            error_message="Signed contract missing or not approved",
            depends_on=("doc_contract",),
            field="documents",
        ),
        StageRequirement(
            id="close_transport",
            kind=RequirementKind.CONDITION,
            description="Transportation must be scheduled",
            predicate=is_transport_scheduled,
            error_message="Transportation not scheduled",
            field="logistics.transportation",
        ),
        StageRequirement(
            id="close_approvals",
            kind=RequirementKind.APPROVAL,
            description="Seller and Buyer must approve completion",
            predicate=has_party_approvals,
            error_message="Missing required approvals",
            field="metadata.approvals",
        ),
    ),
    DealStage.COMPLETE: (
        StageRequirement(
            id="complete_documents",
            kind=RequirementKind.DOCUMENT,
            description="Signed contract and transfer of ownership must be approved",
            predicate=approved_documents("signed_contract", "transfer_of_ownership"),
            error_message="Missing or unapproved required documents",
            depends_on=("close_signed_contract",),
            field="documents",
        ),
        StageRequirement(
            id="complete_payment",
            kind=RequirementKind.PAYMENT,
            description="Payment confirmation must be uploaded and approved",
            predicate=approved_documents("payment_confirmation"),
            error_message="Payment confirmation missing or not approved",
            field="documents",
        ),
    ),
}
