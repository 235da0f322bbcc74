"""Shared fixtures."""
import logging

import pytest

from earthwalk_events import EventBus, EventRecorder, create_logger
from earthwalk_session import ManualScheduler, SessionConfig

from helpers import T0


@pytest.fixture
def scheduler():
    return ManualScheduler(start=T0)


@pytest.fixture
def bus():
    return EventBus(logger=create_logger("test.bus", level=logging.WARNING))


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def config():
    return SessionConfig()
