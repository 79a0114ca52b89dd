"""
Deal Mutations

Participant, document, terms and logistics changes.

Each method applies one change to the deal it is given, records it in
the timeline and returns a DealChange describing the event to publish.
Callers run these on a transaction's working copy; errors are raised.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from ..errors import DealflowError, ErrorCode, NotFoundError, ParticipantConstraintError
from ..events import LifecycleEventType
from ..models import (
    Deal,
    Document,
    DocumentStatus,
    Inspection,
    Insurance,
    Logistics,
    Participant,
    ParticipantRole,
    ParticipantStatus,
    Terms,
    TimelineEntry,
    Transportation,
)
from ..timeline import DocumentAction, LogisticsComponent, ParticipantAction, TimelineLedger
from ..utils import utcnow

logger = logging.getLogger(__name__)

LOGISTICS_MODELS: Dict[LogisticsComponent, Type[BaseModel]] = {
    LogisticsComponent.TRANSPORTATION: Transportation,
    LogisticsComponent.INSPECTION: Inspection,
    LogisticsComponent.INSURANCE: Insurance,
}

# Each group needs at least one active participant
REQUIRED_ROLE_GROUPS = (
    ("Seller", (ParticipantRole.SELLER,)),
    ("Buyer or Agent", (ParticipantRole.BUYER, ParticipantRole.AGENT)),
)


@dataclass
class DealChange:
    """A committed-on-copy change and the event announcing it."""
    entry: Optional[TimelineEntry]
    event_type: LifecycleEventType
    payload: Dict[str, Any]

    @property
    def changed(self) -> bool:
        return self.entry is not None


def _history_item(status: str, actor_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    return {"status": status, "date": utcnow().isoformat(), "actor": actor_id, "reason": reason}


def _apply_changes(model: Type[BaseModel], current: Optional[BaseModel], changes: Dict[str, Any]):
    unknown = sorted(set(changes) - set(model.model_fields))
    if unknown:
        raise DealflowError(
            ErrorCode.INVALID_INPUT,
            f"Unknown {model.__name__.lower()} field(s): {', '.join(unknown)}",
            {"fields": unknown},
        )

    base = current.model_dump() if current is not None else {}
    try:
        updated = model.model_validate({**base, **changes})
    except ValidationError as e:
        raise DealflowError(
            ErrorCode.INVALID_INPUT,
            f"Invalid {model.__name__.lower()} values",
            {"errors": e.errors(include_url=False)},
        ) from e

    changed = [
        name for name in changes
        if current is None or getattr(current, name) != getattr(updated, name)
    ]
    return updated, changed


class DealMutator:
    """
    Applies participant, document, terms and logistics changes.

    Usage:
        mutator = DealMutator(ledger)
        change = mutator.add_participant(deal, Participant(user_id="u-2", role=ParticipantRole.BUYER), "u-1")
    """

    def __init__(self, ledger: Optional[TimelineLedger] = None):
        self.ledger = ledger or TimelineLedger()

    # -- participants -------------------------------------------------------

    def add_participant(self, deal: Deal, participant: Participant, actor_id: str) -> DealChange:
        if any(p.user_id == participant.user_id and p.role == participant.role for p in deal.participants):
            raise DealflowError(
                ErrorCode.INVALID_INPUT,
                f"User {participant.user_id} is already a {participant.role.value} on this deal",
            )

        participant = participant.model_copy(deep=True)
        participant.metadata.setdefault("status_history", []).append(
            _history_item(participant.status.value, actor_id)
        )
        deal.participants.append(participant)
        entry = self.ledger.add_participant_entry(deal, ParticipantAction.ADDED, participant, actor_id)

        return DealChange(entry, LifecycleEventType.PARTICIPANT_ADDED, {
            "participant_id": participant.id,
            "user_id": participant.user_id,
            "role": participant.role.value,
        })

    def remove_participant(
        self,
        deal: Deal,
        participant_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        force: bool = False
    ) -> DealChange:
        participant = self._participant(deal, participant_id)
        remaining = [p for p in deal.participants if p.id != participant_id]
        if not force:
            self._ensure_required_roles(remaining, participant)
        else:
            logger.info(f"Force-removing participant {participant_id} from deal {deal.id}")

        deal.participants = remaining
        entry = self.ledger.add_participant_entry(
            deal, ParticipantAction.REMOVED, participant, actor_id,
            {"reason": reason, "forced": force}
        )

        return DealChange(entry, LifecycleEventType.PARTICIPANT_REMOVED, {
            "participant_id": participant.id,
            "user_id": participant.user_id,
            "role": participant.role.value,
            "reason": reason,
        })

    def update_participant_status(
        self,
        deal: Deal,
        participant_id: str,
        status: ParticipantStatus,
        actor_id: str,
        reason: Optional[str] = None,
        force: bool = False
    ) -> DealChange:
        participant = self._participant(deal, participant_id)
        previous = participant.status
        if previous == status:
            return DealChange(None, LifecycleEventType.PARTICIPANT_UPDATED, {})

        if status == ParticipantStatus.INACTIVE and not force:
            remaining = [p for p in deal.participants if p.id != participant_id]
            self._ensure_required_roles(remaining, participant)

        participant.status = status
        participant.metadata.setdefault("status_history", []).append(
            _history_item(status.value, actor_id, reason)
        )
        entry = self.ledger.add_participant_entry(
            deal, ParticipantAction.UPDATED, participant, actor_id,
            {"previous_status": previous.value, "new_status": status.value, "reason": reason}
        )

        return DealChange(entry, LifecycleEventType.PARTICIPANT_UPDATED, {
            "participant_id": participant.id,
            "previous_status": previous.value,
            "new_status": status.value,
            "reason": reason,
        })

    def _participant(self, deal: Deal, participant_id: str) -> Participant:
        participant = deal.find_participant(participant_id)
        if participant is None:
            raise NotFoundError("Participant", participant_id)
        return participant

    @staticmethod
    def _ensure_required_roles(remaining: List[Participant], leaving: Participant):
        if not leaving.is_active:
            return
        for label, roles in REQUIRED_ROLE_GROUPS:
            if leaving.role not in roles:
                continue
            if not any(p.is_active and p.role in roles for p in remaining):
                raise ParticipantConstraintError(
                    f"Deal must keep at least one active {label}",
                    role=leaving.role.value,
                )

    # -- documents ----------------------------------------------------------

    def add_document(self, deal: Deal, document: Document, actor_id: str) -> DealChange:
        document = document.model_copy(deep=True)
        document.uploaded_by = document.uploaded_by or actor_id
        document.metadata.setdefault("status_history", []).append(
            _history_item(document.status.value, actor_id)
        )
        deal.documents.append(document)
        entry = self.ledger.add_document_entry(deal, DocumentAction.UPLOADED, document, actor_id)

        return DealChange(entry, LifecycleEventType.DOCUMENT_ADDED, {
            "document_id": document.id,
            "document_type": document.type,
            "version": document.version,
        })

    def approve_document(self, deal: Deal, document_id: str, actor_id: str) -> DealChange:
        document = self._pending_document(deal, document_id)
        self._review(document, DocumentStatus.APPROVED, actor_id)
        entry = self.ledger.add_document_entry(deal, DocumentAction.APPROVED, document, actor_id)

        return DealChange(entry, LifecycleEventType.DOCUMENT_APPROVED, {
            "document_id": document.id,
            "document_type": document.type,
            "version": document.version,
        })

    def reject_document(self, deal: Deal, document_id: str, actor_id: str, reason: str) -> DealChange:
        if not (reason and reason.strip()):
            raise DealflowError(ErrorCode.INVALID_INPUT, "Reason required for rejecting a document")

        document = self._pending_document(deal, document_id)
        self._review(document, DocumentStatus.REJECTED, actor_id, reason)
        entry = self.ledger.add_document_entry(
            deal, DocumentAction.REJECTED, document, actor_id, {"reason": reason}
        )

        return DealChange(entry, LifecycleEventType.DOCUMENT_REJECTED, {
            "document_id": document.id,
            "document_type": document.type,
            "version": document.version,
            "reason": reason,
        })

    def resubmit_document(
        self,
        deal: Deal,
        document_id: str,
        actor_id: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> DealChange:
        """Upload a new version; the document goes back to pending review."""
        document = self._document(deal, document_id)
        document.version += 1
        document.status = DocumentStatus.PENDING
        document.uploaded_by = actor_id
        document.upload_date = utcnow()
        document.reviewed_by = None
        document.review_date = None
        document.rejection_reason = None
        if name:
            document.name = name
        if metadata:
            document.metadata.update(metadata)
        document.metadata.setdefault("status_history", []).append(
            _history_item(DocumentStatus.PENDING.value, actor_id, f"version {document.version}")
        )
        entry = self.ledger.add_document_entry(deal, DocumentAction.RESUBMITTED, document, actor_id)

        return DealChange(entry, LifecycleEventType.DOCUMENT_UPDATED, {
            "document_id": document.id,
            "document_type": document.type,
            "version": document.version,
        })

    def _document(self, deal: Deal, document_id: str) -> Document:
        document = deal.find_document(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    def _pending_document(self, deal: Deal, document_id: str) -> Document:
        document = self._document(deal, document_id)
        if document.status != DocumentStatus.PENDING:
            raise DealflowError(
                ErrorCode.INVALID_DOCUMENT_STATE,
                f"Document {document_id} is already {document.status.value}",
                {"status": document.status.value},
            )
        return document

    @staticmethod
    def _review(document: Document, status: DocumentStatus, actor_id: str, reason: Optional[str] = None):
        document.status = status
        document.reviewed_by = actor_id
        document.review_date = utcnow()
        document.rejection_reason = reason
        document.metadata.setdefault("status_history", []).append(
            _history_item(status.value, actor_id, reason)
        )

    # -- terms and logistics ------------------------------------------------

    def update_terms(self, deal: Deal, changes: Dict[str, Any], actor_id: str) -> DealChange:
        terms, changed = _apply_changes(Terms, deal.terms, changes)
        if not changed:
            return DealChange(None, LifecycleEventType.TERMS_UPDATED, {})

        deal.terms = terms
        entry = self.ledger.add_terms_change_entry(deal, changed, actor_id)
        return DealChange(entry, LifecycleEventType.TERMS_UPDATED, {"changed_fields": changed})

    def update_logistics(
        self,
        deal: Deal,
        component: LogisticsComponent,
        changes: Dict[str, Any],
        actor_id: str
    ) -> DealChange:
        logistics = deal.logistics or Logistics()
        current = getattr(logistics, component.value)
        updated, changed = _apply_changes(LOGISTICS_MODELS[component], current, changes)
        if not changed:
            return DealChange(None, LifecycleEventType.LOGISTICS_UPDATED, {})

        setattr(logistics, component.value, updated)
        deal.logistics = logistics
        entry = self.ledger.add_logistics_change_entry(deal, component, changed, actor_id)
        return DealChange(entry, LifecycleEventType.LOGISTICS_UPDATED, {
            "component": component.value,
            "changed_fields": changed,
        })
