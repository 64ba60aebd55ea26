import importlib

import pytest

from rallybot.tools.schemas import UserProfile
from tests.fakes import FakeStore

# rallybot.tools.create_event resolves to the executor function, not the module.
create_event_module = importlib.import_module("rallybot.tools.create_event")


@pytest.fixture
def user():
    return UserProfile(uid="host-1", email="host@example.com", display_name="Dana", rating=1200)


@pytest.fixture
def store(monkeypatch):
    fake = FakeStore()
    monkeypatch.setattr(create_event_module, "get_event_store", lambda: fake)
    return fake
