import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from common.adapter import LLMAdapter
from common.config import settings
from common.dates import DateFormatError, UNCLEAR_DATE_SENTINEL


class _FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


def _content(text):
    return {"choices": [{"message": {"content": text}}]}


def _set_provider_settings():
    original = {
        "LLM_API_BASE_URL": settings.LLM_API_BASE_URL,
        "LLM_API_KEY": settings.LLM_API_KEY,
        "LLM_MAX_RETRIES": settings.LLM_MAX_RETRIES,
        "LLM_TIMEOUT_SECONDS": settings.LLM_TIMEOUT_SECONDS,
        "LLM_RETRY_BACKOFF_SECONDS": settings.LLM_RETRY_BACKOFF_SECONDS,
    }
    settings.LLM_API_BASE_URL = "https://provider.example/v1"
    settings.LLM_API_KEY = "test_api_key"
    settings.LLM_MAX_RETRIES = 2
    settings.LLM_TIMEOUT_SECONDS = 5
    settings.LLM_RETRY_BACKOFF_SECONDS = 0
    return original


def _restore_provider_settings(original):
    for key, value in original.items():
        setattr(settings, key, value)


def test_extract_turn_uses_pro_model_and_sampling_settings():
    async def _run():
        adapter = LLMAdapter()
        original = _set_provider_settings()
        try:
            post = AsyncMock(return_value=_FakeResponse(_content("<title>Buy milk</title>")))
            with patch("common.adapter.httpx.AsyncClient.post", new=post):
                out = await adapter.extract_turn("system prompt", "buy milk", pro=True)
            assert out == "<title>Buy milk</title>"
            url = post.await_args.args[0]
            payload = post.await_args.kwargs["json"]
            assert url == "https://provider.example/v1/chat/completions"
            assert payload["model"] == settings.LLM_MODEL_EXTRACT_PRO
            assert payload["temperature"] == settings.LLM_EXTRACT_TEMPERATURE
            assert payload["max_tokens"] == settings.LLM_EXTRACT_MAX_TOKENS
            assert payload["messages"][0] == {"role": "system", "content": "system prompt"}
            assert payload["messages"][1] == {"role": "user", "content": "buy milk"}
        finally:
            _restore_provider_settings(original)

    asyncio.run(_run())


def test_retry_then_success():
    async def _run():
        adapter = LLMAdapter()
        original = _set_provider_settings()
        try:
            post = AsyncMock(side_effect=[
                httpx.ConnectError("boom"),
                _FakeResponse(_content("ok")),
            ])
            with patch("common.adapter.httpx.AsyncClient.post", new=post):
                out = await adapter.complete("extract", "s", "p")
            assert out == "ok"
            assert post.await_count == 2
        finally:
            _restore_provider_settings(original)

    asyncio.run(_run())


def test_retries_exhausted_raises():
    async def _run():
        adapter = LLMAdapter()
        original = _set_provider_settings()
        try:
            post = AsyncMock(side_effect=httpx.ConnectError("down"))
            with patch("common.adapter.httpx.AsyncClient.post", new=post):
                with pytest.raises(httpx.ConnectError):
                    await adapter.extract_turn("s", "p")
            assert post.await_count == 3
        finally:
            _restore_provider_settings(original)

    asyncio.run(_run())


def test_content_parts_are_joined_and_non_text_rejected():
    assert LLMAdapter._extract_content(
        {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]}
    ) == "a\nb"
    with pytest.raises(ValueError):
        LLMAdapter._extract_content({"choices": [{"message": {"content": None}}]})
    with pytest.raises(ValueError):
        LLMAdapter._extract_content({"choices": []})


def test_convert_date_and_invalid_format():
    async def _run():
        adapter = LLMAdapter()
        original = _set_provider_settings()
        now = datetime(2025, 4, 20, 12, 0, tzinfo=timezone.utc)
        try:
            post = AsyncMock(return_value=_FakeResponse(_content("<TIME>April 21, 2025, 9:00 PM</TIME>")))
            with patch("common.adapter.httpx.AsyncClient.post", new=post):
                conversion = await adapter.convert_date("tomorrow 9pm", "UTC", now=now)
            assert conversion.to_dict()["dateTime"] == "2025-04-21T21:00:00.000Z"
            assert post.await_args.kwargs["json"]["model"] == settings.LLM_MODEL_DATE

            post = AsyncMock(return_value=_FakeResponse(_content("tomorrow, probably")))
            with patch("common.adapter.httpx.AsyncClient.post", new=post):
                with pytest.raises(DateFormatError):
                    await adapter.convert_date("tomorrow", "UTC", now=now)
        finally:
            _restore_provider_settings(original)

    asyncio.run(_run())


def test_resolve_date_text_falls_back_to_original_text():
    async def _run():
        adapter = LLMAdapter()
        with patch.object(adapter, "complete", AsyncMock(return_value="<TIME>May 3, 2025, 9:00 AM</TIME>")):
            assert await adapter.resolve_date_text("saturday morning") == "2025-05-03T09:00:00"
        with patch.object(adapter, "complete", AsyncMock(return_value=f"<TIME>{UNCLEAR_DATE_SENTINEL}</TIME>")):
            assert await adapter.resolve_date_text("soon") == "soon"
        with patch.object(adapter, "complete", AsyncMock(side_effect=httpx.ConnectError("down"))):
            assert await adapter.resolve_date_text("friday") == "friday"

    asyncio.run(_run())


def test_reminder_details_and_time():
    async def _run():
        adapter = LLMAdapter()
        answer = (
            "<reminder_title>Call bank</reminder_title>"
            "<reminder_description>Ask about fees</reminder_description>"
            "<reminder_time>tomorrow at 9am</reminder_time>"
            "<reminder_summary>!!RMD!! Reminding you to call the bank</reminder_summary>"
        )
        complete = AsyncMock(side_effect=[answer, "<TIME>April 22, 2025, 1:00 PM UTC</TIME>"])
        with patch.object(adapter, "complete", complete):
            details = await adapter.generate_reminder_details("Bank", ["fees went up"], "!rmd tomorrow 9am", "America/New_York")
            when = await adapter.resolve_reminder_time(details.time_text, "America/New_York")
        assert details.title == "Call bank"
        assert when == datetime(2025, 4, 22, 13, 0, tzinfo=timezone.utc)
        operation, _, prompt = complete.await_args_list[1].args
        assert operation == "date"
        assert "User timezone: America/New_York" in prompt

        with patch.object(adapter, "complete", AsyncMock(return_value=f"<TIME>{UNCLEAR_DATE_SENTINEL}</TIME>")):
            with pytest.raises(ValueError):
                await adapter.resolve_reminder_time("whenever", "UTC")

    asyncio.run(_run())
