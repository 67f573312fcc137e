from __future__ import annotations

import base64
import binascii
import io
from typing import Optional

import httpx

from asktrevor.logging import get_logger, sanitize_error_message
from asktrevor.service.errors import ServerError, UpstreamError, ValidationError

logger = get_logger(__name__)


def decode_audio(audio_b64: str) -> bytes:
    """Decode a validated base64 audio payload to raw bytes."""
    try:
        return base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid base64 format", detail={"field": "audio"}) from exc


class TranscriptionService:
    """Speech-to-text through the OpenAI Whisper transcription API.

    Audio arrives base64-encoded from the browser recorder (webm/opus) and is
    uploaded as a multipart file. A missing API key is a configuration error,
    not a reason to fabricate a transcript.
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        model: str = "whisper-1",
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def transcribe(
        self,
        audio_bytes: bytes,
        *,
        user_id: Optional[str] = None,
        format: str = "webm",
    ) -> str:
        """Upload ``audio_bytes`` and return the transcript text.

        Raises:
            ServerError: the service has no API key configured
            UpstreamError: the transcription API failed or was unreachable
        """
        if not self.is_configured:
            logger.error("transcription_not_configured", user_id=user_id)
            raise ServerError("Transcription service is not configured")

        files = {
            "file": (f"audio.{format}", io.BytesIO(audio_bytes), f"audio/{format}"),
            "model": (None, self.model),
        }
        try:
            response = await self._get_client().post(self.url, files=files)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "transcription_api_error",
                user_id=user_id,
                status_code=e.response.status_code,
                error_body=sanitize_error_message(e.response.text),
                model=self.model,
            )
            raise UpstreamError(e.response.status_code, "transcription failed") from e
        except httpx.TimeoutException as e:
            logger.error(
                "transcription_timeout",
                user_id=user_id,
                audio_size=len(audio_bytes),
                model=self.model,
                error=str(e),
            )
            raise UpstreamError(None, "transcription timed out") from e
        except httpx.HTTPError as e:
            logger.error(
                "transcription_connect_error",
                user_id=user_id,
                url=self.url,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise UpstreamError(None, "transcription service unreachable") from e
        except ValueError as e:
            logger.error("transcription_invalid_json", user_id=user_id, error=str(e))
            raise UpstreamError(None, "transcription returned invalid JSON") from e

        transcript = data.get("text", "") if isinstance(data, dict) else ""
        logger.info(
            "transcription_success",
            user_id=user_id,
            audio_size=len(audio_bytes),
            transcript_length=len(transcript),
        )
        return transcript

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
