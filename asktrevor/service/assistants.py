"""Per-endpoint pipelines: rate limit, compose, forward, relay.

Request bodies arrive already validated and (where required) authenticated;
each method here runs the remaining stages in order and raises a
``ServiceError`` at the first failing stage. Nothing is retried.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Sequence

from fastapi.responses import StreamingResponse

from asktrevor.config import Settings
from asktrevor.logging import get_logger
from asktrevor.service import prompts
from asktrevor.service.email import EmailService
from asktrevor.service.errors import ServerError, UpstreamError
from asktrevor.service.gateway import CompletionRequest, GatewayClient, first_message_content
from asktrevor.service.rate_limit import RateLimiter, RateLimitPolicy
from asktrevor.service.relay import (
    ASSISTANT_MESSAGES,
    DEMO_MESSAGES,
    GENERIC_ERROR_MESSAGE,
    UpstreamErrorMessages,
    stream_response,
    translate_upstream_error,
)
from asktrevor.service.voice import TranscriptionService, decode_audio

logger = get_logger(__name__)


def build_policies(settings: Settings) -> Dict[str, RateLimitPolicy]:
    return {
        "transcription": RateLimitPolicy(
            scope="transcription",
            max_requests=settings.transcription_rate_limit,
            window_seconds=settings.transcription_rate_window_seconds,
            noun="transcriptions",
            fail_open=True,
        ),
        "demo": RateLimitPolicy(
            scope="public_demo",
            max_requests=settings.demo_rate_limit,
            window_seconds=settings.demo_rate_window_seconds,
            noun="messages",
            fail_open=False,
            message_template=(
                "Rate limit exceeded. You've reached the maximum of {limit} {noun} per {window}. "
                "Sign up for unlimited access!"
            ),
        ),
    }


class AssistantService:
    def __init__(
        self,
        settings: Settings,
        store: Any,
        gateway: GatewayClient,
        transcriber: TranscriptionService,
        email: EmailService,
        *,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.transcriber = transcriber
        self.email = email
        self.rate_limiter = rate_limiter or RateLimiter()
        self.policies = build_policies(settings)

    # shared stages --------------------------------------------------------
    async def _stream(
        self, request: CompletionRequest, messages: UpstreamErrorMessages = ASSISTANT_MESSAGES
    ) -> StreamingResponse:
        try:
            upstream = await self.gateway.open_stream(request)
        except UpstreamError as exc:
            raise translate_upstream_error(exc, messages) from exc
        return stream_response(upstream)

    async def _complete(
        self, request: CompletionRequest, messages: UpstreamErrorMessages = ASSISTANT_MESSAGES
    ) -> dict:
        try:
            return await self.gateway.complete(request)
        except UpstreamError as exc:
            raise translate_upstream_error(exc, messages) from exc

    async def _complete_text(self, request: CompletionRequest) -> str:
        data = await self._complete(request)
        try:
            return first_message_content(data)
        except UpstreamError as exc:
            raise translate_upstream_error(exc) from exc

    # streaming assistants -------------------------------------------------
    async def council_chat(
        self, user_id: str, history: Sequence, context: prompts.CouncilContext
    ) -> StreamingResponse:
        system_prompt = prompts.council_system_prompt(context)
        logger.info(
            "council_assistant_request",
            user_id=user_id,
            messages=len(history),
            documents=len(context.uploaded_documents),
        )
        return await self._stream(
            CompletionRequest(
                model=self.settings.chat_model,
                messages=prompts.compose_messages(system_prompt, history),
                endpoint="council-assistant",
            )
        )

    async def document_chat(
        self, user_id: str, history: Sequence, context: prompts.DocumentContext
    ) -> StreamingResponse:
        system_prompt = prompts.document_system_prompt(context)
        logger.info(
            "document_assistant_request",
            user_id=user_id,
            messages=len(history),
            document_type=context.document_type,
        )
        return await self._stream(
            CompletionRequest(
                model=self.settings.chat_model,
                messages=prompts.compose_messages(system_prompt, history),
                endpoint="document-assistant",
            )
        )

    async def public_demo(
        self, history: Sequence, *, ip_address: str, user_agent: Optional[str]
    ) -> StreamingResponse:
        """Anonymous demo chat, limited per network address and logged before forwarding."""
        self.rate_limiter.check(
            self.policies["demo"], ip_address, self.store.count_public_chat_requests
        )
        self.store.record_public_chat_request(ip_address, user_agent, messages_count=1)
        logger.info("public_demo_request", ip_address=ip_address, messages=len(history))
        return await self._stream(
            CompletionRequest(
                model=self.settings.demo_model,
                messages=prompts.compose_messages(prompts.demo_system_prompt(), history),
                max_tokens=self.settings.demo_max_tokens,
                endpoint="trevor-public-demo",
            ),
            DEMO_MESSAGES,
        )

    # transcription --------------------------------------------------------
    async def transcribe(self, user_id: str, audio_b64: str) -> str:
        self.rate_limiter.check(
            self.policies["transcription"], user_id, self.store.count_transcription_requests
        )
        audio_bytes = decode_audio(audio_b64)
        try:
            text = await self.transcriber.transcribe(audio_bytes, user_id=user_id)
        except UpstreamError as exc:
            # 429 is reserved for the local hourly quota
            raise ServerError(
                GENERIC_ERROR_MESSAGE, detail={"upstream_status": exc.status_code}
            ) from exc
        try:
            self.store.record_transcription_request(user_id, len(audio_bytes))
        except Exception as exc:
            # The caller already has a transcript; a missing log row only loosens the quota
            logger.error(
                "transcription_record_failed",
                user_id=user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        else:
            logger.info("transcription_recorded", user_id=user_id, audio_size=len(audio_bytes))
        return text

    # non-streaming helpers ------------------------------------------------
    async def follow_up_email(self, user_id: str, context: prompts.FollowUpContext, contact_email: str) -> dict:
        system_prompt, user_prompt = prompts.follow_up_email_prompts(context)
        content = await self._complete_text(
            CompletionRequest(
                model=self.settings.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                endpoint="send-follow-up-email",
            )
        )
        self.email.send_follow_up(
            contact_email=contact_email,
            project_title=context.project_title,
            project_name=context.project_name,
            body=content,
        )
        logger.info("follow_up_email_generated", user_id=user_id, length=len(content))
        return {
            "success": True,
            "emailContent": content,
            "message": "Follow-up email generated and simulated send",
        }

    async def generate_email(self, user_id: str, context: prompts.EmailDraftContext) -> str:
        system_prompt, user_prompt = prompts.generate_email_prompts(context)
        logger.info("generate_email_request", user_id=user_id, email_type=context.email_type)
        return await self._complete_text(
            CompletionRequest(
                model=self.settings.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.settings.email_temperature,
                endpoint="generate-email",
            )
        )

    async def project_info(
        self, user_id: str, history: Sequence, context: prompts.ProjectInfoContext
    ) -> dict:
        """Chat turn that may ask to update project fields via the update_field tool.

        Returns the gateway JSON, with ``fieldUpdates`` added when the model
        called the tool with parseable arguments.
        """
        data = await self._complete(
            CompletionRequest(
                model=self.settings.chat_model,
                messages=prompts.compose_messages(prompts.project_info_system_prompt(context), history),
                tools=[prompts.update_field_tool()],
                endpoint="project-info-assistant",
            )
        )
        updates = extract_field_updates(data)
        if updates:
            data["fieldUpdates"] = updates
        logger.info("project_info_response", user_id=user_id, field_updates=sorted(updates))
        return data

    async def team_brief(self, user_id: str, context: prompts.TeamBriefContext) -> dict:
        system_prompt, user_prompt = prompts.team_brief_prompts(context)
        content = await self._complete_text(
            CompletionRequest(
                model=self.settings.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                endpoint="team-brief-generator",
            )
        )
        if not context.is_split:
            return {"brief": content}
        briefs = parse_briefs(content)
        logger.info("team_briefs_generated", user_id=user_id, roles=sorted(briefs))
        return {"briefs": briefs}


def extract_field_updates(data: dict) -> Dict[str, str]:
    updates: Dict[str, str] = {}
    try:
        tool_calls = data["choices"][0]["message"].get("tool_calls") or []
    except (KeyError, IndexError, TypeError, AttributeError):
        return updates
    for call in tool_calls:
        function = call.get("function") if isinstance(call, dict) else None
        if not function or function.get("name") != "update_field":
            continue
        try:
            args = json.loads(function.get("arguments") or "{}")
        except ValueError as exc:
            logger.warning("update_field_arguments_invalid", error=str(exc))
            continue
        field = args.get("field") if isinstance(args, dict) else None
        if field in prompts.PROJECT_INFO_FIELDS and isinstance(args.get("value"), str):
            updates[field] = args["value"]
    return updates


def parse_briefs(content: str) -> Dict[str, str]:
    """Parse the role -> brief JSON object the split prompt asks for.

    Tolerates a surrounding markdown code fence.
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        briefs = json.loads(text)
    except ValueError as exc:
        logger.error("team_brief_parse_failed", content_preview=content[:200])
        raise ServerError("Failed to parse AI response") from exc
    if not isinstance(briefs, dict):
        logger.error("team_brief_not_object", content_type=type(briefs).__name__)
        raise ServerError("Failed to parse AI response")
    return {str(role): str(brief) for role, brief in briefs.items()}
