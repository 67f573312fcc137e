from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

import httpx

from asktrevor.config import get_settings, reset_settings_cache
from asktrevor.logging import get_logger
from asktrevor.service.assistants import AssistantService
from asktrevor.service.auth import AuthService
from asktrevor.service.crm import CRMService
from asktrevor.service.documents import DocumentService
from asktrevor.service.email import EmailService
from asktrevor.service.gateway import GatewayClient
from asktrevor.service.rate_limit import RateLimiter
from asktrevor.service.voice import TranscriptionService
from asktrevor.storage.memory import MemoryStore
from asktrevor.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a connection URL with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app.

    ``transport`` is handed to every outbound httpx client (gateway,
    transcription, identity service) so tests can substitute a mock.
    """

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        self.store_type = store_type

        self.gateway = GatewayClient(
            self.settings.gateway_url,
            api_key=self.settings.gateway_api_key,
            timeout_seconds=self.settings.gateway_timeout_seconds,
            transport=transport,
        )
        self.transcriber = TranscriptionService(
            self.settings.transcription_url,
            api_key=self.settings.transcription_api_key or self.settings.gateway_api_key,
            model=self.settings.transcription_model,
            timeout_seconds=self.settings.gateway_timeout_seconds,
            transport=transport,
        )
        self.auth = AuthService(self.settings, self.store, transport=transport)
        self.email = EmailService(sender_address=self.settings.email_sender_address)
        self.rate_limiter = RateLimiter()
        self.assistants = AssistantService(
            self.settings,
            self.store,
            self.gateway,
            self.transcriber,
            self.email,
            rate_limiter=self.rate_limiter,
        )
        self.crm = CRMService(self.store)
        self.documents = DocumentService(self.store)

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            gateway_configured=self.gateway.is_configured,
            transcription_configured=self.transcriber.is_configured,
            chat_model=self.settings.chat_model,
            demo_model=self.settings.demo_model,
        )

    async def close(self) -> None:
        await self.gateway.close()
        await self.transcriber.close()
        await self.auth.close()
        self.store.close()
        logger.info("runtime_closed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(
    *, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None:
            runtime.store.close()
        runtime = Runtime(transport=transport)
        return runtime


async def shutdown_runtime() -> None:
    global runtime
    with _runtime_lock:
        current, runtime = runtime, None
    if current is not None:
        await current.close()
