import asyncio
import inspect
import os
import sys
from pathlib import Path

os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pixelist.app import create_app  # noqa: E402
from pixelist.config import Settings, reset_settings_cache  # noqa: E402
from pixelist.service.runtime import Runtime  # noqa: E402
from pixelist.storage.memory import MemoryStore  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"
# Mid-step (2100-01-01T00:00:15Z) so +/-1 TOTP step arithmetic stays unambiguous
# and cookie Expires dates stay in the future for the test client
START_TIME = 4_102_444_815.0


class FakeClock:
    """Callable stand-in for ``time.time`` that only moves when told to."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(jwt_secret=TEST_SECRET, use_memory_store=True)


@pytest.fixture
def password_hasher():
    # Minimum argon2 cost keeps the suite fast; production uses library defaults
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)


@pytest.fixture
def memory_store():
    return MemoryStore(mfa_encryption_key=TEST_SECRET)


@pytest.fixture
def runtime(settings, memory_store, clock, password_hasher):
    return Runtime(
        settings, store=memory_store, clock=clock, password_hasher=password_hasher
    )


@pytest.fixture
def auth_service(runtime):
    return runtime.auth


@pytest.fixture
def admin_user(auth_service):
    return auth_service.create_user("admin", "correct-horse-battery", name="Ada Admin")


@pytest.fixture
def app(runtime):
    return create_app(runtime=runtime)


@pytest.fixture
def client(app):
    return TestClient(app)


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
