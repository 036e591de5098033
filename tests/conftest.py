"""
Pytest fixtures for flow engine tests
"""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from apiflow.flow_engine.environment_manager import EnvironmentManager
from apiflow.flow_engine.executor import FlowExecutor
from apiflow.flow_engine.http_executor import HttpRequestExecutor


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class SleepRecorder:
    """Async sleep replacement that records requested waits"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def backend_client():
    """Backend client double with empty defaults"""
    client = MagicMock()
    client.get_flow_details = AsyncMock(return_value=None)
    client.get_environment_variables = AsyncMock(return_value={'variables': []})
    client.get_endpoint_details = AsyncMock(return_value={})
    return client


@pytest.fixture
def environment_manager(backend_client):
    return EnvironmentManager(backend_client)


@pytest.fixture
def make_executor(backend_client, environment_manager, sleep_recorder):
    """
    Build a FlowExecutor serving one flow and one environment.

    HTTP calls go to `handler` through httpx.MockTransport.
    """
    def factory(flow, variables=None, handler=None, config=None, sleep=None):
        backend_client.get_flow_details.return_value = {'id': 'flow-1', **flow}
        backend_client.get_environment_variables.return_value = {
            'variables': [
                {'key': key, 'value': value, 'enabled': True}
                for key, value in (variables or {}).items()
            ]
        }

        transport = httpx.MockTransport(handler or (lambda request: httpx.Response(200, json={})))
        http_executor = HttpRequestExecutor(transport=transport, sleep=sleep_recorder)

        return FlowExecutor(
            environment_manager,
            http_executor=http_executor,
            config=config,
            sleep=sleep or sleep_recorder,
        )

    return factory
