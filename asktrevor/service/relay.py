from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from asktrevor.service.errors import (
    ServerError,
    ServiceError,
    UpstreamError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

GENERIC_ERROR_MESSAGE = "An error occurred processing your request."


@dataclass(frozen=True)
class UpstreamErrorMessages:
    """Caller-facing text for each class of gateway failure."""

    rate_limited: str = "Rate limit exceeded. Please try again in a moment."
    unavailable: str = "Service temporarily unavailable."
    unavailable_status: int = 402
    generic: str = GENERIC_ERROR_MESSAGE


ASSISTANT_MESSAGES = UpstreamErrorMessages()

DEMO_MESSAGES = UpstreamErrorMessages(
    rate_limited="AI service is currently busy. Please try again in a moment.",
    unavailable="Demo temporarily unavailable. Please try again later.",
    unavailable_status=503,
)


def translate_upstream_error(
    exc: UpstreamError, messages: UpstreamErrorMessages = ASSISTANT_MESSAGES
) -> ServiceError:
    """Map a raw gateway failure onto the error returned to the caller.

    The upstream body is never part of the result.
    """
    status: Optional[int] = exc.status_code
    if status == 429:
        return UpstreamRateLimited(messages.rate_limited, detail={"upstream_status": status})
    if status == 402:
        error_code = "payment_required" if messages.unavailable_status == 402 else "unavailable"
        return UpstreamUnavailable(
            messages.unavailable,
            status_code=messages.unavailable_status,
            error_code=error_code,
            detail={"upstream_status": status},
        )
    return ServerError(messages.generic, detail={"upstream_status": status})


def stream_response(upstream: httpx.Response) -> StreamingResponse:
    """Pipe an open upstream SSE response to the caller unchanged.

    Upstream content-encoding is decoded first; the relayed response carries
    no Content-Encoding of its own. The upstream is closed once the body has
    been drained or the client goes away.
    """
    headers = dict(CORS_HEADERS)
    headers["Cache-Control"] = "no-cache"
    # Explicit header so no charset suffix is appended
    headers["Content-Type"] = "text/event-stream"
    return StreamingResponse(
        upstream.aiter_bytes(),
        status_code=200,
        media_type="text/event-stream",
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )
