from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog

from dual_nback.log import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


def test_get_logger_leaves_configuration_to_the_host() -> None:
    logger = get_logger("dual_nback.session")
    logger.debug("batch_generated", level=2, trial=3)
    assert not structlog.is_configured()


def test_configure_logging_installs_processors() -> None:
    configure_logging("DEBUG", json=True)
    assert structlog.is_configured()
    renderer = structlog.get_config()["processors"][-1]
    assert isinstance(renderer, structlog.processors.JSONRenderer)
