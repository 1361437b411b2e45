"""Pytest fixtures for leadsync tests."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Generator

import pytest
import structlog

from leadsync.api.client import ScraperClient, static_token
from leadsync.jobs.registry import JobRegistry

from tests.helpers import FakeBackend, FakeTransport


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI option state around each test."""
    from leadsync.cli import helpers as cli_helpers

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry(max_concurrent_jobs=2, max_recent_jobs=5)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def api_client(backend: FakeBackend) -> AsyncIterator[ScraperClient]:
    client = ScraperClient(
        "http://scraper.test",
        token_provider=static_token("tok-123"),
        transport=backend.transport(),
    )
    yield client
    await client.aclose()
