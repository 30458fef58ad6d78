import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import httpx

from common.config import settings
from common.dates import (
    DateConversion, ISO_SECONDS_FORMAT, build_conversion_prompt, conversion_from_answer,
    extract_time_tag, parse_formatted_datetime,
)
from common.reminders import (
    REMINDER_SYSTEM_PROMPT, ReminderDetails, build_reminder_prompt, parse_reminder_details,
)

logger = logging.getLogger(__name__)


class LLMAdapter:
    def _model_for(self, operation: str, pro: bool = False) -> str:
        if operation == "extract":
            return settings.LLM_MODEL_EXTRACT_PRO if pro else settings.LLM_MODEL_EXTRACT
        if operation == "date":
            return settings.LLM_MODEL_DATE
        if operation == "reminder":
            return settings.LLM_MODEL_REMINDER
        raise ValueError(f"Unsupported operation: {operation}")

    def _base_url(self) -> str:
        base = settings.LLM_API_BASE_URL.strip()
        if not base:
            raise RuntimeError("LLM_API_BASE_URL is not configured")
        return base.rstrip("/")

    async def _post_with_retry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        retries = max(0, settings.LLM_MAX_RETRIES)
        for attempt in range(retries + 1):
            try:
                async with httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_SECONDS) as client:
                    response = await client.post(
                        f"{self._base_url()}/chat/completions",
                        headers={
                            "Authorization": f"Bearer {settings.LLM_API_KEY}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    )
                    response.raise_for_status()
                    body = response.json()
                    if not isinstance(body, dict):
                        raise ValueError("Provider response is not a JSON object")
                    return body
            except (httpx.RequestError, httpx.HTTPStatusError, httpx.TimeoutException, ValueError) as exc:
                last_error = exc
                if attempt >= retries:
                    break
                delay = max(0.0, settings.LLM_RETRY_BACKOFF_SECONDS) * (2 ** attempt)
                if delay > 0:
                    await asyncio.sleep(delay)
        assert last_error is not None
        raise last_error

    @staticmethod
    def _extract_content(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Provider response missing choices")
        first = choices[0]
        if not isinstance(first, dict):
            raise ValueError("Provider choice is invalid")
        message = first.get("message")
        if not isinstance(message, dict):
            raise ValueError("Provider message is invalid")
        content = message.get("content")
        if isinstance(content, list):
            parts = []
            for part in content:
                if isinstance(part, dict):
                    text_value = part.get("text")
                    if isinstance(text_value, str):
                        parts.append(text_value)
            content = "\n".join(parts).strip()
        if not isinstance(content, str):
            raise ValueError("Provider content is not text")
        return content

    @staticmethod
    def _build_payload(
        model: str,
        system: str,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    async def complete(
        self,
        operation: str,
        system: str,
        prompt: str,
        pro: bool = False,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        model = self._model_for(operation, pro=pro)
        response = await self._post_with_retry(self._build_payload(model, system, prompt, temperature, max_tokens))
        return self._extract_content(response)

    async def extract_turn(self, system: str, message: str, pro: bool = False) -> str:
        try:
            return await self.complete(
                "extract",
                system,
                message,
                pro=pro,
                temperature=settings.LLM_EXTRACT_TEMPERATURE,
                max_tokens=settings.LLM_EXTRACT_MAX_TOKENS,
            )
        except Exception as exc:
            logger.error("extract_turn failed: %s", type(exc).__name__)
            raise

    async def convert_date(self, text: str, tz_name: str = "UTC", now: Optional[datetime] = None) -> DateConversion:
        now = now or datetime.now(timezone.utc)
        answer = await self.complete("date", build_conversion_prompt(now, tz_name), text)
        return conversion_from_answer(text, answer, tz_name)

    async def resolve_date_text(self, text: str, tz_name: str = "UTC") -> str:
        """Best-effort resolution of a free-text date to YYYY-MM-DDTHH:MM:SS."""
        try:
            conversion = await self.convert_date(text, tz_name)
        except Exception as exc:
            logger.warning("resolve_date_text fallback: %s", type(exc).__name__)
            return text
        if conversion.date_time is None:
            return text
        return conversion.date_time.strftime(ISO_SECONDS_FORMAT)

    async def generate_reminder_details(
        self,
        todo_title: str,
        comments: Iterable[str],
        message: str,
        tz_name: str,
    ) -> ReminderDetails:
        answer = await self.complete(
            "reminder",
            REMINDER_SYSTEM_PROMPT,
            build_reminder_prompt(todo_title, comments, message, tz_name),
        )
        return parse_reminder_details(answer)

    async def resolve_reminder_time(self, time_text: str, tz_name: str, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        answer = await self.complete(
            "date",
            build_conversion_prompt(now, tz_name, to_utc=True),
            f"{time_text}\nUser timezone: {tz_name}",
        )
        formatted = extract_time_tag(answer)
        # The answer is already converted to UTC; an explicit zone suffix still wins.
        parsed = parse_formatted_datetime(formatted, "UTC")
        if parsed is None:
            raise ValueError("Invalid date format in AI response")
        return parsed.astimezone(timezone.utc)


adapter = LLMAdapter()
