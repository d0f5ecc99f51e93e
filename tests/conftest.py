"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before anything imports the settings module.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SESSION_HASH_SALT", "test-salt")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

import pytest
from fastapi.testclient import TestClient

from anonchat.adapters.store.in_memory import InMemoryStore
from anonchat.core.app_factory import create_app
from anonchat.core.config import settings
from anonchat.core.dependencies import build_request_gate, get_request_gate, get_store

# Epoch seconds; an arbitrary fixed instant keeps timestamps readable
START = 1_700_000_000.0


class FakeTime:
    """Manually advanced clock returning UNIX seconds."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> FakeTime:
    return FakeTime()


@pytest.fixture
def store(clock: FakeTime) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def gate(store: InMemoryStore, clock: FakeTime):
    return build_request_gate(store, settings, clock=clock)


@pytest.fixture
def client(gate, store):
    """TestClient over the real app with store and clock injected."""
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_request_gate] = lambda: gate
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
