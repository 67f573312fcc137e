import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the runtime before anything imports asktrevor
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("LOVABLE_API_KEY", "test-gateway-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("GATEWAY_URL", "https://gateway.test")
os.environ.setdefault("TRANSCRIPTION_URL", "https://speech.test/v1/audio/transcriptions")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from asktrevor.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402
from asktrevor.storage.models import Identity  # noqa: E402
from tests.upstream import UpstreamStub  # noqa: E402


@pytest.fixture(autouse=True)
def upstream():
    stub = UpstreamStub()
    reset_runtime_for_tests(transport=stub.transport())
    yield stub
    reset_runtime_for_tests()


@pytest.fixture
def client(upstream):
    from asktrevor import app as app_module

    return TestClient(app_module.app)


@pytest.fixture
def auth_headers(upstream):
    get_runtime().store.register_access_token(
        "test-token", Identity(user_id="user-1", email="builder@example.com")
    )
    return {"Authorization": "Bearer test-token"}


@pytest.fixture
def other_auth_headers(upstream):
    get_runtime().store.register_access_token(
        "other-token", Identity(user_id="user-2", email="other@example.com")
    )
    return {"Authorization": "Bearer other-token"}


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
