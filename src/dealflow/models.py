"""
Dealflow Models

Pydantic models for the deal aggregate: participants, documents,
logistics and timeline entries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class DealType(str, Enum):
    """Kind of transaction a deal represents."""
    FULL_SALE = "Full Sale"
    LEASE = "Lease"
    PARTNERSHIP = "Partnership"
    BREEDING = "Breeding"
    TRAINING = "Training"


class DealStage(str, Enum):
    """Business stages, in progression order."""
    INITIATION = "Initiation"
    DISCUSSION = "Discussion"
    EVALUATION = "Evaluation"
    DOCUMENTATION = "Documentation"
    CLOSING = "Closing"
    COMPLETE = "Complete"


STAGE_ORDER: List[DealStage] = list(DealStage)


class DealStatus(str, Enum):
    """Operational status, independent of stage."""
    ACTIVE = "Active"
    ON_HOLD = "On Hold"
    PENDING = "Pending"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


class ParticipantRole(str, Enum):
    SELLER = "Seller"
    BUYER = "Buyer"
    AGENT = "Agent"
    VETERINARIAN = "Veterinarian"
    TRAINER = "Trainer"
    INSPECTOR = "Inspector"
    TRANSPORTER = "Transporter"


class ParticipantStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TimelineEventType(str, Enum):
    """Kinds of timeline (audit) entries."""
    STAGE_CHANGE = "STAGE_CHANGE"
    STATUS_CHANGE = "STATUS_CHANGE"
    PARTICIPANT_CHANGE = "PARTICIPANT_CHANGE"
    DOCUMENT_CHANGE = "DOCUMENT_CHANGE"
    TERMS_CHANGE = "TERMS_CHANGE"
    LOGISTICS_CHANGE = "LOGISTICS_CHANGE"
    COMMENT = "COMMENT"
    SYSTEM = "SYSTEM"


SYSTEM_ACTOR = "system"


class BasicInfo(BaseModel):
    """Reference to the subject of the deal (a horse record)."""

    horse_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class Terms(BaseModel):
    """Commercial terms. Dates are ISO-8601 strings as received."""

    price: Optional[float] = None
    currency: Optional[str] = None
    duration: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    conditions: List[str] = Field(default_factory=list)
    special_terms: Optional[str] = None


class Participant(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    role: ParticipantRole
    permissions: List[str] = Field(default_factory=list)
    status: ParticipantStatus = ParticipantStatus.ACTIVE
    date_added: datetime = Field(default_factory=_utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE


class Document(BaseModel):
    id: str = Field(default_factory=_new_id)
    type: str
    name: str = ""
    status: DocumentStatus = DocumentStatus.PENDING
    version: int = 1
    uploaded_by: Optional[str] = None
    upload_date: datetime = Field(default_factory=_utcnow)
    reviewed_by: Optional[str] = None
    review_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.status == DocumentStatus.APPROVED


class Transportation(BaseModel):
    pickup_location: Optional[str] = None
    delivery_location: Optional[str] = None
    date: Optional[str] = None
    provider: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    status: str = "pending"
    cost: Optional[float] = None


class Inspection(BaseModel):
    date: Optional[str] = None
    location: Optional[str] = None
    inspector: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    status: str = "pending"
    results: Optional[str] = None
    cost: Optional[float] = None


class Insurance(BaseModel):
    provider: Optional[str] = None
    coverage: Optional[str] = None
    policy_number: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    cost: Optional[float] = None
    status: str = "pending"


class Logistics(BaseModel):
    transportation: Optional[Transportation] = None
    inspection: Optional[Inspection] = None
    insurance: Optional[Insurance] = None


class TimelineEntry(BaseModel):
    """A single audit record. Metadata keys are snake_case."""

    id: str = Field(default_factory=_new_id)
    type: TimelineEventType
    stage: DealStage
    status: DealStatus
    date: datetime = Field(default_factory=_utcnow)
    description: str
    actor: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Deal(BaseModel):
    """
    Deal aggregate root.

    Loaded in full by the caller; the engines mutate it in place only on a
    committed transition or mutation.
    """

    id: str = Field(default_factory=_new_id)
    type: DealType = DealType.FULL_SALE
    stage: DealStage = DealStage.INITIATION
    status: DealStatus = DealStatus.ACTIVE
    basic_info: BasicInfo = Field(default_factory=BasicInfo)
    terms: Optional[Terms] = None
    participants: List[Participant] = Field(default_factory=list)
    documents: List[Document] = Field(default_factory=list)
    logistics: Optional[Logistics] = None
    timeline: List[TimelineEntry] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def active_participants(self) -> List[Participant]:
        return [p for p in self.participants if p.is_active]

    def has_active_role(self, *roles: ParticipantRole) -> bool:
        return any(p.role in roles for p in self.active_participants())

    def find_participant(self, participant_id: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.id == participant_id), None)

    def find_document(self, document_id: str) -> Optional[Document]:
        return next((d for d in self.documents if d.id == document_id), None)

    def has_approved_document(self, doc_type: str) -> bool:
        return any(d.type == doc_type and d.is_approved for d in self.documents)

    def is_completion_consistent(self) -> bool:
        """COMPLETE stage implies COMPLETED status (not the reverse)."""
        return self.stage != DealStage.COMPLETE or self.status == DealStatus.COMPLETED
