import asyncio
from typing import Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from job_server import JobServer
from polling_request_client.clock import VirtualClock
from polling_request_client.models import RequestSpec

BASE_URL_TEMPLATE = "http://localhost:{}"


class FakeExecutor:
    """Scripted stand-in for HTTPExecutor.

    Outcomes are queued per URL. An outcome may be a value, a RequestError
    (raised), or an asyncio.Future that is awaited first. When a URL has no
    queued outcome the call hangs on a future kept in ``held`` so the test
    can resolve it later.
    """

    def __init__(self):
        self.calls: List[RequestSpec] = []
        self.bodies: List[Any] = []
        self.headers: List[Dict[str, str]] = []
        self.held: List[asyncio.Future] = []
        self._outcomes: Dict[str, List[Any]] = {}

    def respond(self, url: str, *outcomes: Any) -> None:
        self._outcomes.setdefault(url, []).extend(outcomes)

    def urls(self) -> List[str]:
        return [spec.url for spec in self.calls]

    async def execute(self, spec, result_type=Any, body=None, headers=None):
        self.calls.append(spec)
        self.bodies.append(body)
        self.headers.append(dict(headers or {}))

        queue = self._outcomes.get(spec.url)
        if queue:
            outcome = queue.pop(0)
        else:
            outcome = asyncio.get_running_loop().create_future()
            self.held.append(outcome)

        if isinstance(outcome, asyncio.Future):
            outcome = await outcome
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def settle(rounds: int = 5) -> None:
    """Let tasks spawned by fired timers run to their next suspension point"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[tuple, None]:
    """Start and yield a JobServer instance on a random port, with its base URL."""
    port = unused_tcp_port_factory()
    server_instance = JobServer(completion_time=0.0, slow_delay=1.0)
    await server_instance.start(port=port)
    try:
        yield server_instance, BASE_URL_TEMPLATE.format(port)
    finally:
        await server_instance.stop()
