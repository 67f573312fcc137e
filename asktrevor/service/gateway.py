from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from asktrevor.logging import get_logger, sanitize_error_message
from asktrevor.service.errors import ServerError, UpstreamError

logger = get_logger(__name__)


@dataclass
class CompletionRequest:
    """One chat/completions call to the gateway."""

    model: str
    messages: List[dict]
    stream: bool = True
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tools: List[dict] = field(default_factory=list)
    # Label used in logs only
    endpoint: str = "chat"

    def payload(self) -> dict:
        body: dict = {"model": self.model, "messages": self.messages, "stream": self.stream}
        if self.max_tokens is not None:
            body["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.tools:
            body["tools"] = self.tools
        return body


class GatewayClient:
    """Client for the hosted OpenAI-compatible completions gateway.

    Each call is a single attempt. Non-2xx responses are read, logged and
    closed here; callers only ever see an ``UpstreamError`` carrying the
    upstream status, never the upstream body.
    """

    COMPLETIONS_PATH = "/v1/chat/completions"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}{self.COMPLETIONS_PATH}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> dict:
        if not self.is_configured:
            logger.error("gateway_not_configured", url=self.base_url)
            raise ServerError("AI gateway is not configured")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            # Relay must see the upstream bytes exactly as sent
            "Accept-Encoding": "identity",
        }

    async def open_stream(self, request: CompletionRequest) -> httpx.Response:
        """POST a streaming completion and return the open 2xx response.

        The caller owns the returned response and must ``aclose()`` it.
        """
        headers = self._headers()
        client = self._get_client()
        try:
            upstream = await client.send(
                client.build_request(
                    "POST", self.completions_url, json=request.payload(), headers=headers
                ),
                stream=True,
            )
        except httpx.TimeoutException as exc:
            logger.error("gateway_timeout", endpoint=request.endpoint, model=request.model, error=str(exc))
            raise UpstreamError(None, "gateway timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(
                "gateway_connect_error",
                endpoint=request.endpoint,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise UpstreamError(None, "gateway unreachable") from exc

        if upstream.is_success:
            logger.info(
                "gateway_stream_opened",
                endpoint=request.endpoint,
                model=request.model,
                status_code=upstream.status_code,
            )
            return upstream

        try:
            body = await upstream.aread()
        finally:
            await upstream.aclose()
        self._log_failure(request, upstream.status_code, body)
        raise UpstreamError(upstream.status_code)

    async def complete(self, request: CompletionRequest) -> dict:
        """POST a non-streaming completion and return the decoded JSON body."""
        request.stream = False
        headers = self._headers()
        client = self._get_client()
        try:
            response = await client.post(
                self.completions_url, json=request.payload(), headers=headers
            )
        except httpx.TimeoutException as exc:
            logger.error("gateway_timeout", endpoint=request.endpoint, model=request.model, error=str(exc))
            raise UpstreamError(None, "gateway timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(
                "gateway_connect_error",
                endpoint=request.endpoint,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise UpstreamError(None, "gateway unreachable") from exc

        if not response.is_success:
            self._log_failure(request, response.status_code, response.content)
            raise UpstreamError(response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("gateway_invalid_json", endpoint=request.endpoint, error=str(exc))
            raise UpstreamError(response.status_code, "gateway returned invalid JSON") from exc
        logger.info("gateway_completion_received", endpoint=request.endpoint, model=request.model)
        return data

    def _log_failure(self, request: CompletionRequest, status_code: int, body: bytes) -> None:
        logger.error(
            "gateway_error",
            endpoint=request.endpoint,
            model=request.model,
            status_code=status_code,
            error_body=sanitize_error_message(body.decode("utf-8", errors="replace")),
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def first_message_content(data: dict) -> str:
    """Return ``choices[0].message.content`` from a completion body."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        logger.error("gateway_unexpected_shape", keys=sorted(data) if isinstance(data, dict) else None)
        raise UpstreamError(200, "gateway response missing message content") from exc
    return content or ""
