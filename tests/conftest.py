"""Common test fixtures and configuration for pytest."""

from typing import Any, Callable, Dict, Optional

import pytest

from m365crawler.core.logging import LoggerConfigurator
from m365crawler.platform.sync.context import CrawlContext
from m365crawler.platform.sync.factory import CrawlFactory
from tests.fixtures.fakes import (
    FakeExtractor,
    FakeTransport,
    LookupFieldMapper,
    RecordingFailureLog,
    RecordingSink,
)


@pytest.fixture
def transport() -> FakeTransport:
    """Provide an empty route table transport."""
    return FakeTransport()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failure_log() -> RecordingFailureLog:
    return RecordingFailureLog()


@pytest.fixture
def test_logger():
    """Provide a contextual logger for tests."""
    return LoggerConfigurator.configure_logger("m365crawler.tests", dimensions={"test": "true"})


@pytest.fixture
def make_context(
    transport, extractor, sink, failure_log, test_logger
) -> Callable[..., CrawlContext]:
    """Build a crawl context around the fake collaborators.

    Keyword arguments become crawl parameters.
    """

    def _make(
        script_map: Optional[Dict[str, str]] = None,
        defaults: Optional[Dict[str, Any]] = None,
        **params: Any,
    ) -> CrawlContext:
        return CrawlFactory.create_context(
            params=params,
            transport=transport,
            extractor=extractor,
            sink=sink,
            failure_log=failure_log,
            mapper=LookupFieldMapper(),
            script_map=script_map,
            defaults=defaults,
            crawl_logger=test_logger,
        )

    return _make
