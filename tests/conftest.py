import httpx
import pytest

from todoist_mcp.client import TodoistApiService
from todoist_mcp.config import APIConfiguration

TEST_TOKEN = "test-token-0123456789"
TEST_BASE_URL = "https://api.todoist.test/api/v1"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep: records delays and returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_service(sleeper, monkeypatch):
    """Builds a TodoistApiService whose HTTP traffic is served by `handler`."""
    monkeypatch.delenv("TODOIST_API_TOKEN", raising=False)

    def factory(handler, token=TEST_TOKEN, retry_attempts=3, **kwargs):
        config = APIConfiguration(token=token, base_url=TEST_BASE_URL, retry_attempts=retry_attempts)
        service = TodoistApiService(config, transport=httpx.MockTransport(handler), sleep=sleeper, **kwargs)
        return service

    return factory
