"""
Event Models

Pydantic model for lifecycle events with schema versioning.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class LifecycleEvent(BaseModel):
    """A committed change (or failure) ready for external delivery."""

    id: UUID = Field(default_factory=uuid4)
    event_type: str
    deal_id: str
    actor_id: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    recipients: List[str] = Field(default_factory=list)
    schema_version: int = 1
    source: Optional[str] = "dealflow"
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        event_type: str,
        deal_id: str,
        actor_id: str,
        event_data: Dict[str, Any],
        recipients: Optional[List[str]] = None
    ) -> "LifecycleEvent":
        return cls(
            event_type=event_type,
            deal_id=deal_id,
            actor_id=actor_id,
            event_data=event_data,
            recipients=recipients or [],
        )
