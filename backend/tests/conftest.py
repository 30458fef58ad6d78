"""Stable shared fixtures for tests.

Design goal: avoid async fixture loop injection and keep test boundaries explicit.
"""
import os
from unittest.mock import AsyncMock, patch

import pytest

# Must be set before importing app modules.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["APP_AUTH_BEARER_TOKENS"] = "test_token"
os.environ["APP_AUTH_TOKEN_USER_MAP"] = "alice_token:usr_alice"
os.environ["LLM_API_KEY"] = "test_key"
os.environ["LLM_MODEL_EXTRACT"] = "test-model"
os.environ["LLM_MODEL_EXTRACT_PRO"] = "test-model-pro"
os.environ["LLM_MODEL_DATE"] = "test-model"
os.environ["LLM_MODEL_REMINDER"] = "test-model"
os.environ["EMAIL_API_KEY"] = "test_email_key"
os.environ["AGENDA_API_BASE"] = "http://agenda.test"
os.environ["AGENDA_API_TOKEN"] = "test_token"

from api.main import app, get_db


class _FakeResult:
    def __init__(self, items=None, one=None):
        self._items = items or []
        self._one = one

    def scalars(self):
        return self

    def all(self):
        return self._items

    def scalar_one_or_none(self):
        return self._one

    def scalar(self):
        return self._one


@pytest.fixture
def mock_redis():
    r = AsyncMock()
    r.rpush = AsyncMock(return_value=1)
    r.get = AsyncMock(return_value=None)
    r.set = AsyncMock(return_value=True)
    r.ping = AsyncMock(return_value=True)
    return r


@pytest.fixture
def mock_adapter():
    with patch("api.main.adapter") as m:
        m.extract_turn = AsyncMock(return_value="<title>Stub</title>\n<follow_up>When?</follow_up>\n<still_needed>date,urgency</still_needed>")
        m.resolve_date_text = AsyncMock(side_effect=lambda text, tz_name="UTC": text)
        m.convert_date = AsyncMock()
        m.generate_reminder_details = AsyncMock()
        m.resolve_reminder_time = AsyncMock()
        yield m


@pytest.fixture
def mock_db():
    db = AsyncMock()
    result = _FakeResult()
    db.execute = AsyncMock(return_value=result)
    db.commit = AsyncMock(return_value=None)
    return db


@pytest.fixture
def app_no_db(mock_redis, mock_adapter, mock_db):
    async def _stub_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _stub_get_db
    with patch("api.main.redis_client", mock_redis):
        yield app
    app.dependency_overrides.clear()
