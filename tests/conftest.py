"""
Pytest configuration for LearnFlow tests.

This conftest.py provides:
1. Marker registration
2. A recording fake for asyncio.sleep so retry schedules run instantly
3. Automatic reset of the mock OpenAI configuration between tests
"""

from collections.abc import Callable, Generator
from typing import Any, List

import pytest
from _pytest.config import Config

from learnflow.mock_api import MockOpenAIConfig, configure_mock_openai, reset_mock_openai


def pytest_configure(config: Config) -> None:
    config.addinivalue_line("markers", "mock_api: tests that run against MockOpenAIClient")
    config.addinivalue_line("markers", "http: tests that drive the FastAPI app")


class FakeSleep:
    """Records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture(autouse=True)
def clean_mock_openai() -> Generator[None, None, None]:
    """Every test starts and ends with the default mock behavior."""
    reset_mock_openai()
    yield
    reset_mock_openai()


@pytest.fixture
def mock_openai_config() -> Generator[Callable[..., None], None, None]:
    """
    Configure module-level mock OpenAI behavior for one test.

    Usage:
        def test_rate_limit(mock_openai_config):
            mock_openai_config(error_scenario=MockErrorScenario.RATE_LIMIT)
    """

    def _configure(**kwargs: Any) -> None:
        configure_mock_openai(MockOpenAIConfig(**kwargs))

    yield _configure
    reset_mock_openai()
