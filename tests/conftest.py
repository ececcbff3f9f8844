"""Shared fixtures."""

import pytest
from loguru import logger

from arb_engine.config import Config

from sample_data import make_config


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture(autouse=True)
def quiet_logs():
    """Keep loguru output out of test reports."""
    logger.remove()
    yield
