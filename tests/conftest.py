import asyncio
import inspect
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("SESSION_SWEEPER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from clinigate.logging import clear_request_context  # noqa: E402
from clinigate.service.runtime import reset_runtime_for_tests  # noqa: E402


class FakeClock:
    """Settable clock in naive server-local time."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    """Clock parked mid-morning, after the 9 AM boundary."""
    return FakeClock(datetime(2026, 3, 10, 10, 0, 0))


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    clear_request_context()
    yield
    reset_runtime_for_tests()
    clear_request_context()


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
