from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from asktrevor.storage.models import (
    ACTIVITY_STATUSES,
    ACTIVITY_TYPES,
    CONTACT_STATUSES,
    CONTACT_TYPES,
    DEAL_STAGES,
    DOCUMENT_TAGS,
)

MAX_HISTORY_MESSAGES = 50
MAX_DEMO_MESSAGES = 10
MAX_MESSAGE_CHARS = 10_000
MAX_CONTEXT_CHARS = 20_000
MAX_UPLOADED_DOCUMENTS = 100

# Base64 text bounds for recorded audio (~10MB of base64)
MIN_AUDIO_CHARS = 100
MAX_AUDIO_CHARS = 15_000_000
_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


class CamelModel(BaseModel):
    """Function bodies use the browser client's camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)


class UploadedDocumentRef(CamelModel):
    document_type: str = Field(..., min_length=1, max_length=100)
    file_name: str = Field(..., min_length=1, max_length=500)


# ---------------------------------------------------------------------------
# Assistant function bodies
# ---------------------------------------------------------------------------


class CouncilAssistantRequest(CamelModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1, max_length=MAX_HISTORY_MESSAGES)
    project_context: Optional[str] = Field(default=None, max_length=MAX_CONTEXT_CHARS)
    uploaded_documents: List[UploadedDocumentRef] = Field(
        default_factory=list, max_length=MAX_UPLOADED_DOCUMENTS
    )


class DocumentAssistantRequest(CamelModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1, max_length=MAX_HISTORY_MESSAGES)
    document_type: str = Field(..., min_length=1, max_length=100)
    document_title: str = Field(..., min_length=1, max_length=200)


class ProjectInfoRequest(CamelModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1, max_length=MAX_HISTORY_MESSAGES)
    project_context: Optional[str] = Field(default=None, max_length=MAX_CONTEXT_CHARS)


class PublicDemoRequest(CamelModel):
    messages: List[ChatMessageIn] = Field(..., min_length=1)
    captcha_token: Optional[str] = Field(default=None, max_length=4096)

    @field_validator("messages")
    @classmethod
    def _limit_demo_history(cls, value: List[ChatMessageIn]) -> List[ChatMessageIn]:
        if len(value) > MAX_DEMO_MESSAGES:
            raise ValueError("Message limit exceeded for demo")
        return value


class TranscribeAudioRequest(BaseModel):
    audio: str

    @field_validator("audio")
    @classmethod
    def _validate_audio(cls, value: str) -> str:
        if len(value) < MIN_AUDIO_CHARS:
            raise ValueError("Audio data too short")
        if len(value) > MAX_AUDIO_CHARS:
            raise ValueError("Audio file too large (max 10MB base64)")
        if not _BASE64_PATTERN.match(value):
            raise ValueError("Invalid base64 format")
        return value


class TranscribeAudioResponse(BaseModel):
    text: str


class FollowUpEmailRequest(CamelModel):
    project_title: str = Field(..., min_length=1, max_length=500)
    project_name: str = Field(..., min_length=1, max_length=500)
    contact_email: str = Field(..., min_length=3, max_length=320)
    contact_name: str = Field(..., min_length=1, max_length=200)
    my_quote: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)
    submitted_date: str = Field(..., min_length=1, max_length=100)

    @field_validator("contact_email")
    @classmethod
    def _validate_contact_email(cls, value: str) -> str:
        return _validate_email(value)


class FollowUpEmailResponse(CamelModel):
    success: bool
    email_content: str
    message: str


class QuoteEmailRequest(CamelModel):
    project_id: str = Field(..., min_length=1, max_length=128)
    draft_quote: str = Field(..., min_length=1, max_length=MAX_CONTEXT_CHARS)
    recipient_email: str = Field(..., min_length=3, max_length=320)
    sender_name: str = Field(..., min_length=1, max_length=200)
    sender_email: str = Field(..., min_length=3, max_length=320)
    start_date: Optional[str] = Field(default=None, max_length=100)
    completion_time: Optional[str] = Field(default=None, max_length=200)
    pricing_option: Optional[str] = Field(default=None, max_length=100)
    price_amount: Optional[str] = Field(default=None, max_length=100)
    additional_notes: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_CHARS)
    attached_files: List[str] = Field(default_factory=list, max_length=MAX_UPLOADED_DOCUMENTS)

    @field_validator("recipient_email", "sender_email")
    @classmethod
    def _validate_addresses(cls, value: str) -> str:
        return _validate_email(value)


class QuoteEmailResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    to: str
    from_: str = Field(..., alias="from")
    subject: str
    status: str


class GenerateEmailRequest(CamelModel):
    type: Literal["accept", "decline", "message", "meeting"]
    consultant_name: str = Field(..., min_length=1, max_length=200)
    company: str = Field(..., min_length=1, max_length=200)
    task_title: str = Field(..., min_length=1, max_length=500)
    existing_context: Optional[str] = Field(default=None, max_length=MAX_CONTEXT_CHARS)


class GenerateEmailResponse(CamelModel):
    email_content: str


class TeamBriefRequest(CamelModel):
    master_brief: Optional[str] = Field(default=None, max_length=MAX_CONTEXT_CHARS)
    role: Optional[str] = Field(default=None, max_length=200)
    modification: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_CHARS)
    current_brief: Optional[str] = Field(default=None, max_length=MAX_CONTEXT_CHARS)

    @model_validator(mode="after")
    def _require_one_mode(self):
        # Either split a master brief, or modify one role's brief
        if self.master_brief:
            return self
        if self.role and self.modification:
            return self
        raise ValueError("Invalid request parameters")


def _validate_choice(value: str, allowed, field_name: str) -> str:
    if value not in allowed:
        raise ValueError(f"{field_name} must be one of: {', '.join(allowed)}")
    return value


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps are naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _validate_email(value: str) -> str:
    value = value.strip()
    local, sep, domain = value.rpartition("@")
    if not sep or not local or "." not in domain or " " in value:
        raise ValueError("invalid email address")
    return value


# ---------------------------------------------------------------------------
# Project documents
# ---------------------------------------------------------------------------


class DocumentCreateRequest(BaseModel):
    project_id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1, max_length=2048)
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = Field(default=None, max_length=255)
    tag: Optional[str] = None

    @field_validator("tag")
    @classmethod
    def _validate_tag(cls, value: Optional[str]) -> Optional[str]:
        return _validate_document_tag(value)


class DocumentTagRequest(BaseModel):
    tag: Optional[str] = None

    @field_validator("tag")
    @classmethod
    def _validate_tag(cls, value: Optional[str]) -> Optional[str]:
        return _validate_document_tag(value)


def _validate_document_tag(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return _validate_choice(value, DOCUMENT_TAGS, "tag")


class DocumentResponse(BaseModel):
    id: str
    project_id: str
    name: str
    file_url: str
    uploaded_by: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    tag: Optional[str] = None
    uploaded_at: datetime


# ---------------------------------------------------------------------------
# CRM
# ---------------------------------------------------------------------------


class ContactCreateRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    contact_type: str = "lead"
    status: str = "active"
    phone: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=200)
    source: Optional[str] = Field(default=None, max_length=100)
    assigned_to: Optional[str] = Field(default=None, max_length=128)
    notes: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_CHARS)

    @field_validator("email")
    @classmethod
    def _validate_contact_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("contact_type")
    @classmethod
    def _validate_contact_type(cls, value: str) -> str:
        return _validate_choice(value, CONTACT_TYPES, "contact_type")

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        return _validate_choice(value, CONTACT_STATUSES, "status")


class ContactResponse(BaseModel):
    id: str
    created_by: str
    full_name: str
    email: str
    contact_type: str
    status: str
    phone: Optional[str] = None
    company: Optional[str] = None
    source: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class DealCreateRequest(BaseModel):
    contact_id: str = Field(..., min_length=1, max_length=128)
    deal_name: str = Field(..., min_length=1, max_length=200)
    stage: str = "lead"
    deal_value: Optional[float] = Field(default=None, ge=0)
    currency: str = Field(default="AUD", min_length=3, max_length=3)
    probability: Optional[int] = Field(default=None, ge=0, le=100)
    assigned_to: Optional[str] = Field(default=None, max_length=128)
    expected_close_date: Optional[datetime] = None

    @field_validator("expected_close_date")
    @classmethod
    def _normalize_close_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value)

    @field_validator("stage")
    @classmethod
    def _validate_stage(cls, value: str) -> str:
        return _validate_choice(value, DEAL_STAGES, "stage")


class DealStageRequest(BaseModel):
    stage: str

    @field_validator("stage")
    @classmethod
    def _validate_stage(cls, value: str) -> str:
        return _validate_choice(value, DEAL_STAGES, "stage")


class DealResponse(BaseModel):
    id: str
    contact_id: str
    created_by: str
    deal_name: str
    stage: str
    deal_value: Optional[float] = None
    currency: str
    probability: Optional[int] = None
    assigned_to: Optional[str] = None
    expected_close_date: Optional[datetime] = None
    actual_close_date: Optional[datetime] = None
    created_at: datetime


class ActivityCreateRequest(BaseModel):
    activity_type: str
    subject: str = Field(..., min_length=1, max_length=500)
    status: str = "pending"
    contact_id: Optional[str] = Field(default=None, max_length=128)
    deal_id: Optional[str] = Field(default=None, max_length=128)
    description: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_CHARS)
    due_date: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0, le=24 * 60)

    @field_validator("due_date")
    @classmethod
    def _normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value)

    @field_validator("activity_type")
    @classmethod
    def _validate_activity_type(cls, value: str) -> str:
        return _validate_choice(value, ACTIVITY_TYPES, "activity_type")

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        return _validate_choice(value, ACTIVITY_STATUSES, "status")


class ActivityResponse(BaseModel):
    id: str
    created_by: str
    activity_type: str
    subject: str
    status: str
    contact_id: Optional[str] = None
    deal_id: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    created_at: datetime


class CRMMetricsResponse(CamelModel):
    total_contacts: int
    active_deals: int
    pipeline_value: float
    win_rate: int
    deals_won_this_month: int
    revenue_this_month: float


class StageSummaryResponse(BaseModel):
    stage: str
    count: int
    value: float


class MonthlyRevenueResponse(BaseModel):
    month: str
    label: str
    revenue: float


class HoursSummaryResponse(CamelModel):
    this_week: float
    last_week: float
