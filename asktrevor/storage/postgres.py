from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from asktrevor.logging import get_logger
from asktrevor.storage.errors import ConstraintViolation, StoreUnavailable
from asktrevor.storage.models import (
    CRMActivity,
    CRMContact,
    CRMDeal,
    Identity,
    PublicChatRequest,
    TranscriptionRequest,
    UploadedDocument,
)

REQUIRED_TABLES = (
    "transcription_requests",
    "public_chat_requests",
    "documents",
    "crm_contacts",
    "crm_deals",
    "crm_activities",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS transcription_requests (
    id UUID PRIMARY KEY,
    user_id UUID NOT NULL,
    audio_size INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
);
CREATE INDEX IF NOT EXISTS transcription_requests_user_created_idx
    ON transcription_requests (user_id, created_at);

CREATE TABLE IF NOT EXISTS public_chat_requests (
    id UUID PRIMARY KEY,
    ip_address TEXT NOT NULL,
    user_agent TEXT,
    messages_count INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
);
CREATE INDEX IF NOT EXISTS public_chat_requests_ip_created_idx
    ON public_chat_requests (ip_address, created_at);

CREATE TABLE IF NOT EXISTS documents (
    id UUID PRIMARY KEY,
    project_id TEXT NOT NULL,
    name TEXT NOT NULL,
    file_url TEXT NOT NULL,
    file_size BIGINT,
    mime_type TEXT,
    tag TEXT CHECK (tag IN ('da-approval', 'da-modification', 'section-68', 'section-138',
                            'construction-certificate', 'engineering-plans', 'basix', 'other')),
    uploaded_by UUID,
    uploaded_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc'),
    updated_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
);

CREATE TABLE IF NOT EXISTS crm_contacts (
    id UUID PRIMARY KEY,
    created_by UUID NOT NULL,
    full_name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT,
    company TEXT,
    contact_type TEXT NOT NULL CHECK (contact_type IN ('client', 'consultant', 'contractor', 'supplier', 'lead')),
    status TEXT NOT NULL CHECK (status IN ('active', 'inactive', 'lead', 'qualified', 'customer')),
    source TEXT,
    assigned_to UUID,
    notes TEXT,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc'),
    updated_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
);

CREATE TABLE IF NOT EXISTS crm_deals (
    id UUID PRIMARY KEY,
    contact_id UUID NOT NULL REFERENCES crm_contacts (id) ON DELETE CASCADE,
    created_by UUID NOT NULL,
    assigned_to UUID,
    deal_name TEXT NOT NULL,
    deal_value NUMERIC,
    currency TEXT NOT NULL DEFAULT 'AUD',
    stage TEXT NOT NULL CHECK (stage IN ('lead', 'qualified', 'proposal', 'negotiation', 'won', 'lost')),
    probability INTEGER,
    expected_close_date TIMESTAMP,
    actual_close_date TIMESTAMP,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc'),
    updated_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
);

CREATE TABLE IF NOT EXISTS crm_activities (
    id UUID PRIMARY KEY,
    created_by UUID NOT NULL,
    contact_id UUID REFERENCES crm_contacts (id) ON DELETE SET NULL,
    deal_id UUID REFERENCES crm_deals (id) ON DELETE SET NULL,
    activity_type TEXT NOT NULL CHECK (activity_type IN ('call', 'email', 'meeting', 'task', 'note')),
    subject TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'completed', 'cancelled')),
    due_date TIMESTAMP,
    completed_at TIMESTAMP,
    duration_minutes INTEGER,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc'),
    updated_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
);
"""


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class PostgresStore:
    """Postgres-backed store for request logs, documents and CRM records."""

    def __init__(self, dsn: str, *, verify_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if verify_schema:
            self._verify_required_schema()

    @contextmanager
    def _connect(self):
        try:
            with self.pool.connection() as conn:
                yield conn
        except (PoolTimeout, errors.OperationalError) as exc:
            self.logger.error("postgres_unavailable", error=str(exc))
            raise StoreUnavailable(str(exc)) from exc

    def ensure_schema(self) -> None:
        """Create any missing tables and indexes."""

        with self._connect() as conn:
            conn.execute(SCHEMA_SQL)
        self.logger.info("postgres_schema_ensured", tables=list(REQUIRED_TABLES))

    def _verify_required_schema(self) -> None:
        with self._connect() as conn:
            missing_tables = []
            for table in REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Run scripts/init_schema.py to install them.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    # request logs ---------------------------------------------------------
    def count_transcription_requests(self, user_id: str, since: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT count(*) AS n FROM transcription_requests WHERE user_id = %s AND created_at >= %s",
                (user_id, since),
            ).fetchone()
        return int(row["n"]) if row else 0

    def record_transcription_request(
        self, user_id: str, audio_size: int
    ) -> TranscriptionRequest:
        row = TranscriptionRequest(user_id=user_id, audio_size=audio_size)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO transcription_requests (id, user_id, audio_size, created_at) VALUES (%s, %s, %s, %s)",
                (row.id, row.user_id, row.audio_size, row.created_at),
            )
        return row

    def count_public_chat_requests(self, ip_address: str, since: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT count(*) AS n FROM public_chat_requests WHERE ip_address = %s AND created_at >= %s",
                (ip_address, since),
            ).fetchone()
        return int(row["n"]) if row else 0

    def record_public_chat_request(
        self, ip_address: str, user_agent: Optional[str], messages_count: int = 1
    ) -> PublicChatRequest:
        row = PublicChatRequest(
            ip_address=ip_address, user_agent=user_agent, messages_count=messages_count
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO public_chat_requests (id, ip_address, user_agent, messages_count, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (row.id, row.ip_address, row.user_agent, row.messages_count, row.created_at),
            )
        return row

    # identities -----------------------------------------------------------
    def resolve_access_token(self, token: str) -> Optional[Identity]:
        # Tokens are resolved by the identity service, never stored here
        return None

    # documents ------------------------------------------------------------
    def _row_to_document(self, row: dict) -> UploadedDocument:
        return UploadedDocument(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            name=row["name"],
            file_url=row["file_url"],
            uploaded_by=_str_or_none(row.get("uploaded_by")),
            file_size=row.get("file_size"),
            mime_type=row.get("mime_type"),
            tag=row.get("tag"),
            uploaded_at=row.get("uploaded_at") or datetime.utcnow(),
        )

    def create_document(self, document: UploadedDocument) -> UploadedDocument:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO documents (id, project_id, name, file_url, file_size, mime_type, tag, uploaded_by, uploaded_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        document.id,
                        document.project_id,
                        document.name,
                        document.file_url,
                        document.file_size,
                        document.mime_type,
                        document.tag,
                        document.uploaded_by,
                        document.uploaded_at,
                        document.uploaded_at,
                    ),
                )
        except errors.CheckViolation:
            raise ConstraintViolation("invalid tag", {"field": "tag", "value": document.tag})
        return document

    def get_document(self, document_id: str) -> Optional[UploadedDocument]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = %s", (document_id,)
            ).fetchone()
        return self._row_to_document(row) if row else None

    def list_documents(self, project_id: str) -> List[UploadedDocument]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE project_id = %s ORDER BY uploaded_at DESC",
                (project_id,),
            ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def update_document_tag(
        self, document_id: str, tag: Optional[str]
    ) -> Optional[UploadedDocument]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "UPDATE documents SET tag = %s, updated_at = %s WHERE id = %s RETURNING *",
                    (tag, datetime.utcnow(), document_id),
                ).fetchone()
        except errors.CheckViolation:
            raise ConstraintViolation("invalid tag", {"field": "tag", "value": tag})
        return self._row_to_document(row) if row else None

    def delete_document(self, document_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM documents WHERE id = %s", (document_id,))
            return cur.rowcount > 0

    # CRM ------------------------------------------------------------------
    def _row_to_contact(self, row: dict) -> CRMContact:
        return CRMContact(
            id=str(row["id"]),
            created_by=str(row["created_by"]),
            full_name=row["full_name"],
            email=row["email"],
            phone=row.get("phone"),
            company=row.get("company"),
            contact_type=row["contact_type"],
            status=row["status"],
            source=row.get("source"),
            assigned_to=_str_or_none(row.get("assigned_to")),
            notes=row.get("notes"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_deal(self, row: dict) -> CRMDeal:
        value = row.get("deal_value")
        return CRMDeal(
            id=str(row["id"]),
            contact_id=str(row["contact_id"]),
            created_by=str(row["created_by"]),
            assigned_to=_str_or_none(row.get("assigned_to")),
            deal_name=row["deal_name"],
            deal_value=float(value) if value is not None else None,
            currency=row.get("currency") or "AUD",
            stage=row["stage"],
            probability=row.get("probability"),
            expected_close_date=row.get("expected_close_date"),
            actual_close_date=row.get("actual_close_date"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_activity(self, row: dict) -> CRMActivity:
        return CRMActivity(
            id=str(row["id"]),
            created_by=str(row["created_by"]),
            contact_id=_str_or_none(row.get("contact_id")),
            deal_id=_str_or_none(row.get("deal_id")),
            activity_type=row["activity_type"],
            subject=row["subject"],
            description=row.get("description"),
            status=row.get("status") or "pending",
            due_date=row.get("due_date"),
            completed_at=row.get("completed_at"),
            duration_minutes=row.get("duration_minutes"),
            created_at=row["created_at"],
        )

    def create_contact(self, contact: CRMContact) -> CRMContact:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO crm_contacts (id, created_by, full_name, email, phone, company, contact_type, status,
                                              source, assigned_to, notes, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        contact.id,
                        contact.created_by,
                        contact.full_name,
                        contact.email,
                        contact.phone,
                        contact.company,
                        contact.contact_type,
                        contact.status,
                        contact.source,
                        contact.assigned_to,
                        contact.notes,
                        contact.created_at,
                        contact.updated_at,
                    ),
                )
        except errors.CheckViolation:
            raise ConstraintViolation(
                "invalid contact enumeration",
                {"contact_type": contact.contact_type, "status": contact.status},
            )
        return contact

    def get_contact(self, contact_id: str) -> Optional[CRMContact]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM crm_contacts WHERE id = %s", (contact_id,)
            ).fetchone()
        return self._row_to_contact(row) if row else None

    def list_contacts(self, user_id: str) -> List[CRMContact]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM crm_contacts WHERE created_by = %s OR assigned_to = %s ORDER BY created_at DESC",
                (user_id, user_id),
            ).fetchall()
        return [self._row_to_contact(row) for row in rows]

    def create_deal(self, deal: CRMDeal) -> CRMDeal:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO crm_deals (id, contact_id, created_by, assigned_to, deal_name, deal_value, currency, stage,
                                           probability, expected_close_date, actual_close_date, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        deal.id,
                        deal.contact_id,
                        deal.created_by,
                        deal.assigned_to,
                        deal.deal_name,
                        deal.deal_value,
                        deal.currency,
                        deal.stage,
                        deal.probability,
                        deal.expected_close_date,
                        deal.actual_close_date,
                        deal.created_at,
                        deal.updated_at,
                    ),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("deal contact missing", {"contact_id": deal.contact_id})
        except errors.CheckViolation:
            raise ConstraintViolation("invalid stage", {"field": "stage", "value": deal.stage})
        return deal

    def get_deal(self, deal_id: str) -> Optional[CRMDeal]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM crm_deals WHERE id = %s", (deal_id,)).fetchone()
        return self._row_to_deal(row) if row else None

    def list_deals(self, user_id: str) -> List[CRMDeal]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM crm_deals WHERE created_by = %s OR assigned_to = %s ORDER BY created_at DESC",
                (user_id, user_id),
            ).fetchall()
        return [self._row_to_deal(row) for row in rows]

    def update_deal_stage(
        self, deal_id: str, stage: str, *, actual_close_date: Optional[datetime] = None
    ) -> Optional[CRMDeal]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE crm_deals SET stage = %s, actual_close_date = %s, updated_at = %s
                    WHERE id = %s RETURNING *
                    """,
                    (stage, actual_close_date, datetime.utcnow(), deal_id),
                ).fetchone()
        except errors.CheckViolation:
            raise ConstraintViolation("invalid stage", {"field": "stage", "value": stage})
        return self._row_to_deal(row) if row else None

    def create_activity(self, activity: CRMActivity) -> CRMActivity:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO crm_activities (id, created_by, contact_id, deal_id, activity_type, subject, description,
                                                status, due_date, completed_at, duration_minutes, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        activity.id,
                        activity.created_by,
                        activity.contact_id,
                        activity.deal_id,
                        activity.activity_type,
                        activity.subject,
                        activity.description,
                        activity.status,
                        activity.due_date,
                        activity.completed_at,
                        activity.duration_minutes,
                        activity.created_at,
                        activity.created_at,
                    ),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "activity contact or deal missing",
                {"contact_id": activity.contact_id, "deal_id": activity.deal_id},
            )
        except errors.CheckViolation:
            raise ConstraintViolation(
                "invalid activity enumeration",
                {"activity_type": activity.activity_type, "status": activity.status},
            )
        return activity

    def list_activities(self, user_id: str) -> List[CRMActivity]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM crm_activities WHERE created_by = %s ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_activity(row) for row in rows]

    def close(self) -> None:
        self.pool.close()
