import base64
import json
import time

import httpx
import pytest

from asktrevor.config import Settings
from asktrevor.service.auth import AuthService
from asktrevor.service.errors import AuthenticationRequired, Unauthorized
from asktrevor.storage.memory import MemoryStore
from asktrevor.storage.models import Identity
from tests.upstream import UpstreamStub

SECRET = "unit-test-secret"


@pytest.fixture
def jwt_auth():
    return AuthService(Settings(auth_jwt_secret=SECRET), MemoryStore())


def _bearer(token: str) -> str:
    return f"Bearer {token}"


class TestBearerHeader:
    @pytest.mark.asyncio
    async def test_missing_header_requires_authentication(self, jwt_auth):
        with pytest.raises(AuthenticationRequired) as exc_info:
            await jwt_auth.authenticate(None)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_bearer_scheme_rejected(self, jwt_auth):
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate("Basic dXNlcjpwYXNz")

    @pytest.mark.asyncio
    async def test_empty_bearer_rejected(self, jwt_auth):
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate("Bearer   ")

    @pytest.mark.asyncio
    async def test_registered_token_resolves_first(self, jwt_auth):
        jwt_auth.store.register_access_token("dev-token", Identity(user_id="dev-user"))
        identity = await jwt_auth.authenticate("bearer dev-token")
        assert identity.user_id == "dev-user"


class TestLocalJwt:
    @pytest.mark.asyncio
    async def test_valid_token(self, jwt_auth):
        token = jwt_auth.encode_jwt(
            {"sub": "user-42", "email": "site@example.com", "aud": "authenticated", "exp": time.time() + 60}
        )
        identity = await jwt_auth.authenticate(_bearer(token))
        assert identity.user_id == "user-42"
        assert identity.email == "site@example.com"
        assert identity.role == "authenticated"

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, jwt_auth):
        token = jwt_auth.encode_jwt({"sub": "user-42", "exp": time.time() - 1})
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate(_bearer(token))

    @pytest.mark.asyncio
    async def test_wrong_audience_rejected(self, jwt_auth):
        token = jwt_auth.encode_jwt({"sub": "user-42", "aud": "service_role"})
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate(_bearer(token))

    @pytest.mark.asyncio
    async def test_audience_list_accepted(self, jwt_auth):
        token = jwt_auth.encode_jwt({"sub": "user-42", "aud": ["other", "authenticated"]})
        identity = await jwt_auth.authenticate(_bearer(token))
        assert identity.user_id == "user-42"

    @pytest.mark.asyncio
    async def test_tampered_signature_rejected(self, jwt_auth):
        token = jwt_auth.encode_jwt({"sub": "user-42"})
        other = AuthService(Settings(auth_jwt_secret="different"), MemoryStore()).encode_jwt({"sub": "user-42"})
        forged = ".".join(token.split(".")[:2] + [other.split(".")[2]])
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate(_bearer(forged))

    @pytest.mark.asyncio
    async def test_alg_none_rejected(self, jwt_auth):
        def segment(obj):
            return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")

        token = f"{segment({'alg': 'none', 'typ': 'JWT'})}.{segment({'sub': 'user-42'})}."
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate(_bearer(token))

    @pytest.mark.asyncio
    async def test_token_without_subject_rejected(self, jwt_auth):
        token = jwt_auth.encode_jwt({"email": "nobody@example.com"})
        with pytest.raises(Unauthorized):
            await jwt_auth.authenticate(_bearer(token))


class TestIdentityService:
    def _service(self, stub: UpstreamStub) -> AuthService:
        settings = Settings(auth_url="https://project.auth.test/", auth_anon_key="anon-key")
        return AuthService(settings, MemoryStore(), transport=stub.transport())

    @pytest.mark.asyncio
    async def test_resolves_user_from_service(self):
        stub = UpstreamStub()
        stub.on("/auth/v1/user", httpx.Response(200, json={"id": "abc-123", "email": "pm@example.com"}))
        service = self._service(stub)

        identity = await service.authenticate("Bearer user-access-token")
        await service.close()

        assert identity.user_id == "abc-123"
        sent = stub.requests[0]
        assert str(sent.url) == "https://project.auth.test/auth/v1/user"
        assert sent.headers["Authorization"] == "Bearer user-access-token"
        assert sent.headers["apikey"] == "anon-key"

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        stub = UpstreamStub()
        stub.on("/auth/v1/user", httpx.Response(401, json={"msg": "invalid JWT"}))
        service = self._service(stub)
        with pytest.raises(Unauthorized):
            await service.authenticate("Bearer expired")
        await service.close()

    @pytest.mark.asyncio
    async def test_unreachable_service_is_unauthorized(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        stub = UpstreamStub()
        stub.on("/auth/v1/user", refuse)
        service = self._service(stub)
        with pytest.raises(Unauthorized):
            await service.authenticate("Bearer whatever")
        await service.close()


class TestEndpointAuth:
    def test_unknown_token_is_401_envelope(self, client, upstream):
        resp = client.post(
            "/functions/v1/council-assistant",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers={"Authorization": "Bearer not-registered"},
        )
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized", "code": "unauthorized"}
        assert upstream.requests == []

    def test_data_endpoints_require_auth(self, client):
        resp = client.get("/crm/contacts")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Authentication required"
