from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

DOCUMENT_TAGS = (
    "da-approval",
    "da-modification",
    "section-68",
    "section-138",
    "construction-certificate",
    "engineering-plans",
    "basix",
    "other",
)

CONTACT_TYPES = ("client", "consultant", "contractor", "supplier", "lead")
CONTACT_STATUSES = ("active", "inactive", "lead", "qualified", "customer")
DEAL_STAGES = ("lead", "qualified", "proposal", "negotiation", "won", "lost")
CLOSED_DEAL_STAGES = frozenset({"won", "lost"})
ACTIVITY_TYPES = ("call", "email", "meeting", "task", "note")
ACTIVITY_STATUSES = ("pending", "completed", "cancelled")


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class TranscriptionRequest:
    user_id: str
    audio_size: int
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class PublicChatRequest:
    ip_address: str
    user_agent: Optional[str] = None
    messages_count: int = 1
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class UploadedDocument:
    project_id: str
    name: str
    file_url: str
    uploaded_by: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    tag: Optional[str] = None
    id: str = field(default_factory=_new_id)
    uploaded_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class CRMContact:
    created_by: str
    full_name: str
    email: str
    contact_type: str = "lead"
    status: str = "active"
    phone: Optional[str] = None
    company: Optional[str] = None
    source: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class CRMDeal:
    contact_id: str
    created_by: str
    deal_name: str
    stage: str = "lead"
    deal_value: Optional[float] = None
    currency: str = "AUD"
    probability: Optional[int] = None
    assigned_to: Optional[str] = None
    expected_close_date: Optional[datetime] = None
    actual_close_date: Optional[datetime] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_open(self) -> bool:
        return self.stage not in CLOSED_DEAL_STAGES


@dataclass
class CRMActivity:
    created_by: str
    activity_type: str
    subject: str
    status: str = "pending"
    contact_id: Optional[str] = None
    deal_id: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Identity:
    """Caller identity resolved from a bearer token."""

    user_id: str
    email: Optional[str] = None
    role: str = "authenticated"
