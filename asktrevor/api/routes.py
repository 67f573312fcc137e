from __future__ import annotations

from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from asktrevor.api.schemas import (
    ActivityCreateRequest,
    ActivityResponse,
    ContactCreateRequest,
    ContactResponse,
    CouncilAssistantRequest,
    CRMMetricsResponse,
    DealCreateRequest,
    DealResponse,
    DealStageRequest,
    DocumentAssistantRequest,
    DocumentCreateRequest,
    DocumentResponse,
    DocumentTagRequest,
    FollowUpEmailRequest,
    FollowUpEmailResponse,
    GenerateEmailRequest,
    GenerateEmailResponse,
    HoursSummaryResponse,
    MonthlyRevenueResponse,
    ProjectInfoRequest,
    PublicDemoRequest,
    QuoteEmailRequest,
    QuoteEmailResponse,
    StageSummaryResponse,
    TeamBriefRequest,
    TranscribeAudioRequest,
    TranscribeAudioResponse,
)
from asktrevor.logging import bind_request_context, get_logger
from asktrevor.service import prompts
from asktrevor.service.runtime import get_runtime
from asktrevor.storage.models import Identity

logger = get_logger(__name__)

router = APIRouter()


async def _bind_endpoint(request: Request) -> None:
    bind_request_context(endpoint=request.url.path.rsplit("/", 1)[-1])


# Browser-facing functions, mounted under the hosted functions path
functions = APIRouter(prefix="/functions/v1", dependencies=[Depends(_bind_endpoint)])


async def _authenticate(authorization: Optional[str]) -> Identity:
    identity = await get_runtime().auth.authenticate(authorization)
    bind_request_context(user_id=identity.user_id)
    return identity


async def get_user(authorization: Optional[str] = Header(None)) -> Identity:
    return await _authenticate(authorization)


def _client_ip(request: Request) -> str:
    """First hop of ``X-Forwarded-For``, else ``X-Real-IP``, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# ---------------------------------------------------------------------------
# Streaming assistants
# ---------------------------------------------------------------------------


@functions.post("/council-assistant", tags=["assistants"])
async def council_assistant(
    body: CouncilAssistantRequest, authorization: Optional[str] = Header(None)
):
    identity = await _authenticate(authorization)
    context = prompts.CouncilContext(
        project_context=body.project_context,
        uploaded_documents=tuple(
            prompts.DocumentRef(document_type=doc.document_type, file_name=doc.file_name)
            for doc in body.uploaded_documents
        ),
    )
    return await get_runtime().assistants.council_chat(identity.user_id, body.messages, context)


@functions.post("/document-assistant", tags=["assistants"])
async def document_assistant(
    body: DocumentAssistantRequest, authorization: Optional[str] = Header(None)
):
    identity = await _authenticate(authorization)
    context = prompts.DocumentContext(
        document_title=body.document_title, document_type=body.document_type
    )
    return await get_runtime().assistants.document_chat(identity.user_id, body.messages, context)


@functions.post("/trevor-public-demo", tags=["assistants"])
async def trevor_public_demo(body: PublicDemoRequest, request: Request):
    """Anonymous landing-page chat; the caller's network address is the rate-limit subject."""
    return await get_runtime().assistants.public_demo(
        body.messages,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------


@functions.post("/transcribe-audio", response_model=TranscribeAudioResponse, tags=["voice"])
async def transcribe_audio(
    body: TranscribeAudioRequest, authorization: Optional[str] = Header(None)
):
    identity = await _authenticate(authorization)
    text = await get_runtime().assistants.transcribe(identity.user_id, body.audio)
    return TranscribeAudioResponse(text=text)


# ---------------------------------------------------------------------------
# Non-streaming helpers
# ---------------------------------------------------------------------------


@functions.post("/send-follow-up-email", response_model=FollowUpEmailResponse, tags=["email"])
async def send_follow_up_email(
    body: FollowUpEmailRequest, authorization: Optional[str] = Header(None)
):
    identity = await _authenticate(authorization)
    context = prompts.FollowUpContext(
        contact_name=body.contact_name,
        project_title=body.project_title,
        project_name=body.project_name,
        quote=body.my_quote,
        submitted_date=body.submitted_date,
    )
    return await get_runtime().assistants.follow_up_email(
        identity.user_id, context, body.contact_email
    )


@functions.post("/send-quote-email", response_model=QuoteEmailResponse, tags=["email"])
async def send_quote_email(body: QuoteEmailRequest, authorization: Optional[str] = Header(None)):
    identity = await _authenticate(authorization)
    result = get_runtime().email.send_quote(
        project_id=body.project_id,
        draft_quote=body.draft_quote,
        recipient_email=body.recipient_email,
        sender_name=body.sender_name,
        sender_email=body.sender_email,
    )
    logger.info("quote_email_sent", user_id=identity.user_id, project_id=body.project_id)
    return result


@functions.post("/project-info-assistant", tags=["assistants"])
async def project_info_assistant(
    body: ProjectInfoRequest, authorization: Optional[str] = Header(None)
):
    identity = await _authenticate(authorization)
    context = prompts.ProjectInfoContext(project_context=body.project_context)
    return await get_runtime().assistants.project_info(identity.user_id, body.messages, context)


@functions.post("/generate-email", response_model=GenerateEmailResponse, tags=["email"])
async def generate_email(body: GenerateEmailRequest, authorization: Optional[str] = Header(None)):
    identity = await _authenticate(authorization)
    context = prompts.EmailDraftContext(
        email_type=body.type,
        consultant_name=body.consultant_name,
        company=body.company,
        task_title=body.task_title,
        has_existing_thread=bool(body.existing_context),
    )
    content = await get_runtime().assistants.generate_email(identity.user_id, context)
    return GenerateEmailResponse(email_content=content)


@functions.post("/team-brief-generator", tags=["assistants"])
async def team_brief_generator(
    body: TeamBriefRequest, authorization: Optional[str] = Header(None)
):
    identity = await _authenticate(authorization)
    context = prompts.TeamBriefContext(
        master_brief=body.master_brief,
        role=body.role,
        modification=body.modification,
        current_brief=body.current_brief,
    )
    return await get_runtime().assistants.team_brief(identity.user_id, context)


# ---------------------------------------------------------------------------
# Project documents
# ---------------------------------------------------------------------------


@router.get("/documents", response_model=List[DocumentResponse], tags=["documents"])
async def list_documents(
    project_id: str = Query(..., min_length=1, max_length=128),
    identity: Identity = Depends(get_user),
):
    documents = get_runtime().documents.list_documents(project_id)
    return [DocumentResponse(**asdict(doc)) for doc in documents]


@router.post("/documents", response_model=DocumentResponse, status_code=201, tags=["documents"])
async def create_document(body: DocumentCreateRequest, identity: Identity = Depends(get_user)):
    document = get_runtime().documents.create_document(
        identity.user_id,
        project_id=body.project_id,
        name=body.name,
        file_url=body.file_url,
        file_size=body.file_size,
        mime_type=body.mime_type,
        tag=body.tag,
    )
    return DocumentResponse(**asdict(document))


@router.patch("/documents/{document_id}/tag", response_model=DocumentResponse, tags=["documents"])
async def tag_document(
    document_id: str, body: DocumentTagRequest, identity: Identity = Depends(get_user)
):
    document = get_runtime().documents.set_tag(identity.user_id, document_id, body.tag)
    return DocumentResponse(**asdict(document))


@router.delete("/documents/{document_id}", status_code=204, tags=["documents"])
async def delete_document(document_id: str, identity: Identity = Depends(get_user)):
    get_runtime().documents.delete(identity.user_id, document_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# CRM
# ---------------------------------------------------------------------------


@router.get("/crm/contacts", response_model=List[ContactResponse], tags=["crm"])
async def list_contacts(identity: Identity = Depends(get_user)):
    return [ContactResponse(**asdict(c)) for c in get_runtime().crm.list_contacts(identity.user_id)]


@router.post("/crm/contacts", response_model=ContactResponse, status_code=201, tags=["crm"])
async def create_contact(body: ContactCreateRequest, identity: Identity = Depends(get_user)):
    contact = get_runtime().crm.create_contact(identity.user_id, **body.model_dump())
    return ContactResponse(**asdict(contact))


@router.get("/crm/deals", response_model=List[DealResponse], tags=["crm"])
async def list_deals(identity: Identity = Depends(get_user)):
    return [DealResponse(**asdict(d)) for d in get_runtime().crm.list_deals(identity.user_id)]


@router.post("/crm/deals", response_model=DealResponse, status_code=201, tags=["crm"])
async def create_deal(body: DealCreateRequest, identity: Identity = Depends(get_user)):
    fields = body.model_dump()
    contact_id = fields.pop("contact_id")
    deal = get_runtime().crm.create_deal(identity.user_id, contact_id=contact_id, **fields)
    return DealResponse(**asdict(deal))


@router.get("/crm/deals/by-stage", response_model=List[StageSummaryResponse], tags=["crm"])
async def deals_by_stage(identity: Identity = Depends(get_user)):
    return [StageSummaryResponse(**asdict(s)) for s in get_runtime().crm.deals_by_stage(identity.user_id)]


@router.patch("/crm/deals/{deal_id}/stage", response_model=DealResponse, tags=["crm"])
async def update_deal_stage(
    deal_id: str, body: DealStageRequest, identity: Identity = Depends(get_user)
):
    deal = get_runtime().crm.update_deal_stage(identity.user_id, deal_id, body.stage)
    return DealResponse(**asdict(deal))


@router.post("/crm/activities", response_model=ActivityResponse, status_code=201, tags=["crm"])
async def create_activity(body: ActivityCreateRequest, identity: Identity = Depends(get_user)):
    activity = get_runtime().crm.create_activity(identity.user_id, **body.model_dump())
    return ActivityResponse(**asdict(activity))


@router.get("/crm/activities/upcoming", response_model=List[ActivityResponse], tags=["crm"])
async def upcoming_activities(
    days: int = Query(3, ge=0, le=90), identity: Identity = Depends(get_user)
):
    activities = get_runtime().crm.upcoming_activities(identity.user_id, days=days)
    return [ActivityResponse(**asdict(a)) for a in activities]


@router.get("/crm/metrics", response_model=CRMMetricsResponse, tags=["crm"])
async def crm_metrics(identity: Identity = Depends(get_user)):
    return CRMMetricsResponse(**asdict(get_runtime().crm.metrics(identity.user_id)))


@router.get("/crm/revenue", response_model=List[MonthlyRevenueResponse], tags=["crm"])
async def crm_revenue(months: int = Query(6, ge=1, le=24), identity: Identity = Depends(get_user)):
    revenue = get_runtime().crm.revenue_by_month(identity.user_id, months=months)
    return [MonthlyRevenueResponse(**asdict(r)) for r in revenue]


@router.get("/crm/hours", response_model=HoursSummaryResponse, tags=["crm"])
async def crm_hours(identity: Identity = Depends(get_user)):
    return HoursSummaryResponse(**asdict(get_runtime().crm.hours_summary(identity.user_id)))


router.include_router(functions)
