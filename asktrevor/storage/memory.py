from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from asktrevor.logging import get_logger
from asktrevor.storage.errors import ConstraintViolation
from asktrevor.storage.models import (
    ACTIVITY_STATUSES,
    ACTIVITY_TYPES,
    CONTACT_STATUSES,
    CONTACT_TYPES,
    DEAL_STAGES,
    DOCUMENT_TAGS,
    CRMActivity,
    CRMContact,
    CRMDeal,
    Identity,
    PublicChatRequest,
    TranscriptionRequest,
    UploadedDocument,
)


def _check_choice(value: Optional[str], allowed, field_name: str) -> None:
    if value is not None and value not in allowed:
        raise ConstraintViolation(
            f"invalid {field_name}", {"field": field_name, "value": value}
        )


def _visible_to(record, user_id: str) -> bool:
    return record.created_by == user_id or getattr(record, "assigned_to", None) == user_id


class MemoryStore:
    """In-process backing store used by tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.transcription_requests: List[TranscriptionRequest] = []
        self.public_chat_requests: List[PublicChatRequest] = []
        self.documents: Dict[str, UploadedDocument] = {}
        self.contacts: Dict[str, CRMContact] = {}
        self.deals: Dict[str, CRMDeal] = {}
        self.activities: Dict[str, CRMActivity] = {}
        self.access_tokens: Dict[str, Identity] = {}
        # RLock so helpers can nest acquisitions within one thread
        self._data_lock = threading.RLock()

    # request logs ---------------------------------------------------------
    def count_transcription_requests(self, user_id: str, since: datetime) -> int:
        with self._data_lock:
            return sum(
                1
                for row in self.transcription_requests
                if row.user_id == user_id and row.created_at >= since
            )

    def record_transcription_request(
        self, user_id: str, audio_size: int
    ) -> TranscriptionRequest:
        row = TranscriptionRequest(user_id=user_id, audio_size=audio_size)
        with self._data_lock:
            self.transcription_requests.append(row)
        return row

    def count_public_chat_requests(self, ip_address: str, since: datetime) -> int:
        with self._data_lock:
            return sum(
                1
                for row in self.public_chat_requests
                if row.ip_address == ip_address and row.created_at >= since
            )

    def record_public_chat_request(
        self, ip_address: str, user_agent: Optional[str], messages_count: int = 1
    ) -> PublicChatRequest:
        row = PublicChatRequest(
            ip_address=ip_address, user_agent=user_agent, messages_count=messages_count
        )
        with self._data_lock:
            self.public_chat_requests.append(row)
        return row

    # identities -----------------------------------------------------------
    def register_access_token(self, token: str, identity: Identity) -> None:
        with self._data_lock:
            self.access_tokens[token] = identity

    def resolve_access_token(self, token: str) -> Optional[Identity]:
        with self._data_lock:
            return self.access_tokens.get(token)

    # documents ------------------------------------------------------------
    def create_document(self, document: UploadedDocument) -> UploadedDocument:
        _check_choice(document.tag, DOCUMENT_TAGS, "tag")
        with self._data_lock:
            self.documents[document.id] = document
        return document

    def get_document(self, document_id: str) -> Optional[UploadedDocument]:
        with self._data_lock:
            return self.documents.get(document_id)

    def list_documents(self, project_id: str) -> List[UploadedDocument]:
        with self._data_lock:
            docs = [d for d in self.documents.values() if d.project_id == project_id]
        return sorted(docs, key=lambda d: d.uploaded_at, reverse=True)

    def update_document_tag(
        self, document_id: str, tag: Optional[str]
    ) -> Optional[UploadedDocument]:
        _check_choice(tag, DOCUMENT_TAGS, "tag")
        with self._data_lock:
            doc = self.documents.get(document_id)
            if not doc:
                return None
            updated = replace(doc, tag=tag)
            self.documents[document_id] = updated
            return updated

    def delete_document(self, document_id: str) -> bool:
        with self._data_lock:
            return self.documents.pop(document_id, None) is not None

    # CRM ------------------------------------------------------------------
    def create_contact(self, contact: CRMContact) -> CRMContact:
        _check_choice(contact.contact_type, CONTACT_TYPES, "contact_type")
        _check_choice(contact.status, CONTACT_STATUSES, "status")
        with self._data_lock:
            self.contacts[contact.id] = contact
        return contact

    def get_contact(self, contact_id: str) -> Optional[CRMContact]:
        with self._data_lock:
            return self.contacts.get(contact_id)

    def list_contacts(self, user_id: str) -> List[CRMContact]:
        with self._data_lock:
            return [c for c in self.contacts.values() if _visible_to(c, user_id)]

    def create_deal(self, deal: CRMDeal) -> CRMDeal:
        _check_choice(deal.stage, DEAL_STAGES, "stage")
        with self._data_lock:
            if deal.contact_id not in self.contacts:
                raise ConstraintViolation(
                    "deal contact missing", {"contact_id": deal.contact_id}
                )
            self.deals[deal.id] = deal
        return deal

    def get_deal(self, deal_id: str) -> Optional[CRMDeal]:
        with self._data_lock:
            return self.deals.get(deal_id)

    def list_deals(self, user_id: str) -> List[CRMDeal]:
        with self._data_lock:
            return [d for d in self.deals.values() if _visible_to(d, user_id)]

    def update_deal_stage(
        self, deal_id: str, stage: str, *, actual_close_date: Optional[datetime] = None
    ) -> Optional[CRMDeal]:
        _check_choice(stage, DEAL_STAGES, "stage")
        with self._data_lock:
            deal = self.deals.get(deal_id)
            if not deal:
                return None
            updated = replace(
                deal,
                stage=stage,
                actual_close_date=actual_close_date,
                updated_at=datetime.utcnow(),
            )
            self.deals[deal_id] = updated
            return updated

    def create_activity(self, activity: CRMActivity) -> CRMActivity:
        _check_choice(activity.activity_type, ACTIVITY_TYPES, "activity_type")
        _check_choice(activity.status, ACTIVITY_STATUSES, "status")
        with self._data_lock:
            self.activities[activity.id] = activity
        return activity

    def list_activities(self, user_id: str) -> List[CRMActivity]:
        with self._data_lock:
            return [a for a in self.activities.values() if a.created_by == user_id]

    def close(self) -> None:
        return None
