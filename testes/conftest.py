"""
Shared fixtures: an in-memory Supabase and an isolated event bus.
No network, no real Supabase.
"""
import pytest

from fake_supabase import FakeSupabase

from app.services.notifications import EventBus, event_bus


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture(autouse=True)
def _reset_global_bus():
    yield
    event_bus.clear()
