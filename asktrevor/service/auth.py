from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Optional

import httpx

from asktrevor.config import Settings
from asktrevor.logging import get_logger
from asktrevor.service.errors import AuthenticationRequired, Unauthorized
from asktrevor.storage.models import Identity

logger = get_logger(__name__)


class AuthService:
    """Resolves a bearer credential to the caller's identity.

    Resolution order:
    1. tokens registered with the store (memory store, local development)
    2. HS256 access tokens verified locally when ``AUTH_JWT_SECRET`` is set
    3. the hosted identity service at ``{AUTH_URL}/auth/v1/user``
    """

    USER_PATH = "/auth/v1/user"

    def __init__(
        self,
        settings: Settings,
        store: Any,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0),
                transport=self._transport,
            )
        return self._client

    async def authenticate(self, authorization: Optional[str]) -> Identity:
        if not authorization:
            raise AuthenticationRequired()
        token = self._extract_bearer(authorization)
        if not token:
            logger.warning("auth_malformed_header")
            raise Unauthorized()

        resolver = getattr(self.store, "resolve_access_token", None)
        identity = resolver(token) if resolver else None
        if identity:
            return identity

        if self.settings.auth_jwt_secret:
            identity = self._identity_from_jwt(token)
        elif self.settings.auth_url:
            identity = await self._identity_from_service(token)
        else:
            logger.error("auth_not_configured")
        if not identity:
            raise Unauthorized()
        return identity

    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        lower = header.lower()
        if not lower.startswith("bearer "):
            return None
        token = header.split(" ", 1)[1].strip()
        return token or None

    # local verification ---------------------------------------------------
    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def encode_jwt(self, payload: dict[str, Any]) -> str:
        """Sign ``payload`` with the configured secret (used by tooling and tests)."""
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        signature = hmac.new(
            self.settings.auth_jwt_secret.encode(), signing_input.encode(), hashlib.sha256
        ).digest()
        return f"{signing_input}.{self._encode_segment(signature)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Only HS256; reject "none" and asymmetric algorithms outright
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=header.get("alg") if isinstance(header, dict) else None)
            return None

        signing_input = f"{header_b64}.{payload_b64}"
        expected_sig = self._encode_segment(
            hmac.new(
                self.settings.auth_jwt_secret.encode(),
                signing_input.encode(),
                hashlib.sha256,
            ).digest()
        )
        if not hmac.compare_digest(expected_sig, sig_b64):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None

        exp = payload.get("exp")
        if exp is not None:
            try:
                if float(exp) <= time.time():
                    return None
            except (TypeError, ValueError):
                return None

        audience = self.settings.auth_jwt_audience
        aud = payload.get("aud")
        if audience and aud is not None:
            valid_aud = aud == audience if isinstance(aud, str) else (isinstance(aud, list) and audience in aud)
            if not valid_aud:
                return None
        return payload

    def _identity_from_jwt(self, token: str) -> Optional[Identity]:
        payload = self._decode_jwt(token)
        if not payload or not payload.get("sub"):
            logger.warning("auth_jwt_rejected")
            return None
        return Identity(
            user_id=str(payload["sub"]),
            email=payload.get("email"),
            role=payload.get("role") or "authenticated",
        )

    # remote verification --------------------------------------------------
    async def _identity_from_service(self, token: str) -> Optional[Identity]:
        headers = {"Authorization": f"Bearer {token}"}
        if self.settings.auth_anon_key:
            headers["apikey"] = self.settings.auth_anon_key
        try:
            response = await self._get_client().get(
                f"{self.settings.auth_url}{self.USER_PATH}", headers=headers
            )
        except httpx.HTTPError as exc:
            logger.error(
                "auth_service_unreachable",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
        if response.status_code != 200:
            logger.warning("auth_service_rejected", status_code=response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("auth_service_invalid_json")
            return None
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            return None
        return Identity(
            user_id=str(user_id),
            email=data.get("email"),
            role=data.get("role") or "authenticated",
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
