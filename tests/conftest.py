"""Shared fixtures: offline HTTP, in-memory state and log sinks."""

from __future__ import annotations

from unittest import mock

import pytest

from visual_traceroute.config import (
    GeolocationConfig,
    StateConfig,
    VisualTracerouteConfig,
)
from visual_traceroute.logs import MemoryLogIngestClient
from visual_traceroute.state import MemoryStateStore
from visual_traceroute.visual_traceroute import TracerouteApp

from helpers import FakeHttp


@pytest.fixture
def http():
    """Patch requests.get so every test runs offline."""
    fake = FakeHttp()
    with mock.patch("requests.get", side_effect=fake):
        yield fake


@pytest.fixture
def config():
    """Configuration with in-memory state."""
    return VisualTracerouteConfig(state=StateConfig(backend="memory"))


@pytest.fixture
def offline_config():
    """Configuration with geolocation switched off."""
    return VisualTracerouteConfig(
        state=StateConfig(backend="memory"),
        geolocation=GeolocationConfig(enabled=False),
    )


@pytest.fixture
def state():
    return MemoryStateStore()


@pytest.fixture
def log_client():
    return MemoryLogIngestClient()


@pytest.fixture
def app(config, state, log_client, http):
    return TracerouteApp(config, state=state, log_client=log_client)
