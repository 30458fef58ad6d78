import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from common.dates import ISO_PREFIX_RE
from common.tagged import parse_tagged_response, render_tagged_response

logger = logging.getLogger(__name__)

LOOP_THRESHOLD = 3
REQUIRED_FIELDS = ("title", "date", "urgency")
HIGH_URGENCY_KEYWORDS = ("urgent", "important", "critical", "deadline", "asap", "immediately", "investor")
HIGH_URGENCY = 4.5
DEFAULT_URGENCY = 3.0

# First keyword found in the lowercased title wins, so order matters.
TIME_SUGGESTIONS = (
    ("breakfast", (("07:00:00", "7 AM"), ("08:00:00", "8 AM"), ("09:00:00", "9 AM"))),
    ("lunch", (("12:00:00", "12 PM"), ("13:00:00", "1 PM"), ("13:30:00", "1:30 PM"))),
    ("dinner", (("18:00:00", "6 PM"), ("19:00:00", "7 PM"), ("20:00:00", "8 PM"))),
    ("meeting", (("09:00:00", "9 AM"), ("14:00:00", "2 PM"), ("16:00:00", "4 PM"))),
    ("call", (("10:00:00", "10 AM"), ("14:00:00", "2 PM"), ("15:30:00", "3:30 PM"))),
    ("workout", (("06:00:00", "6 AM"), ("18:00:00", "6 PM"), ("20:00:00", "8 PM"))),
    ("investor", (("09:30:00", "9:30 AM"), ("11:00:00", "11 AM"), ("14:00:00", "2 PM"))),
)
DEFAULT_TIME_SUGGESTIONS = (("09:00:00", "9 AM"), ("14:00:00", "2 PM"), ("16:00:00", "4 PM"))

BASE_PROMPT = """You are a concise todo assistant that helps users create structured todos.

Current time: {now}
Today: {weekday}

Required tags:
<title>Clear title without date/time info (e.g. "Meet with investor" not "Meet investor tomorrow")</title>
<date>ISO format date (YYYY-MM-DDTHH:MM:SS)</date>
<urgency>Number 1.0-5.0</urgency>
<follow_up>Brief, direct question or statement about what's needed next</follow_up>
<still_needed>missing fields</still_needed>

For missing info, provide 2-3 suggestions:
<suggestion type="date|time|datetime" value="YYYY-MM-DDTHH:MM:SS">Display text</suggestion>

Add <todo_complete> when done.

Key rules:
1. Be extremely concise in follow-up messages
2. Never include date/time in titles
3. Always convert relative dates to absolute
4. Provide contextual suggestions (morning for breakfast, etc.) and only suggest times in the future
5. If you have a date, do not ask for it again
6. If there's a mention of "investor", "deadline" or "urgent", set urgency to 4.5 automatically
7. Don't go in circles, listen carefully to user input
8. After 3 attempts to get a field, provide a reasonable default
9. When a user gives a relative date like "tomorrow" or "next week", convert it directly

Examples:

User: "Meet investors tomorrow"
Assistant: <title>Meet with investors</title>
<date>2024-04-28T09:00:00</date>
<follow_up>How urgent is this meeting? (1-5)</follow_up>
<still_needed>urgency</still_needed>

User: "4"
Assistant: <title>Meet with investors</title>
<date>2024-04-28T09:00:00</date>
<urgency>4.0</urgency>
<todo_complete>
"""


def build_system_prompt(now: Optional[datetime] = None, workspace_todos: Optional[Iterable[Dict[str, Any]]] = None) -> str:
    now = now or datetime.now(timezone.utc)
    prompt = BASE_PROMPT.format(now=now.isoformat(), weekday=now.strftime("%A"))
    todos = list(workspace_todos or [])
    if todos:
        prompt += "\nRecent todos in this workspace:\n"
        for todo in todos:
            prompt += f'- "{todo.get("title")}" (Urgency: {todo.get("urgency")}, Due: {todo.get("due_date") or "unspecified"})\n'
    return prompt


def build_context_block(
    values: Dict[str, str],
    pending_fields: List[str],
    current_field: Optional[str],
    field_attempts: Dict[str, int],
    fallback_field: Optional[str] = None,
    fallback_text: Optional[str] = None,
) -> str:
    if not values and not pending_fields:
        return ""
    block = "\n\nCurrent information:\n"
    for name in REQUIRED_FIELDS:
        if values.get(name):
            block += f"{name.capitalize()}: {values[name]}\n"
    if pending_fields:
        block += f"\nNeeded: {', '.join(pending_fields)}\n"
    if current_field:
        block += f"\nAsking about: {current_field}\n"
    block += "\nField attempts: " + ", ".join(f"{k}={v}" for k, v in field_attempts.items()) + "\n"
    if fallback_field:
        block += f"\nFallback applied for {fallback_field}. Message: {fallback_text}\n"
    return block


def is_high_urgency(title: Optional[str]) -> bool:
    lowered = (title or "").lower()
    return any(keyword in lowered for keyword in HIGH_URGENCY_KEYWORDS)


def fallback_urgency(title: Optional[str]) -> str:
    return str(HIGH_URGENCY if is_high_urgency(title) else DEFAULT_URGENCY)


def fallback_message(field_name: str, values: Dict[str, str]) -> str:
    if field_name == "urgency":
        urgency = HIGH_URGENCY if is_high_urgency(values.get("title")) else DEFAULT_URGENCY
        return (
            f"I'll set this to {urgency:g} out of 5 urgency based on the description. "
            "You can adjust this later."
        )
    if field_name == "date":
        return "I'll need a specific date and time. Would you like me to set this for today?"
    return f"I'm having trouble understanding your input for {field_name}. Could you provide it in a different way?"


def check_for_loop(field_attempts: Dict[str, int], current_field: Optional[str], threshold: int = LOOP_THRESHOLD) -> bool:
    if not current_field:
        return False
    return field_attempts.get(current_field, 0) >= threshold


def clamp_urgency(value: Any, default: float = 1.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 1.0), 5.0)


def validate_todo_values(values: Dict[str, str]) -> Dict[str, Any]:
    """Check the slot values that are present. Informational only."""
    errors: Dict[str, str] = {}
    if "title" in values and not str(values["title"] or "").strip():
        errors["title"] = "Title must not be empty"
    if values.get("date") and not ISO_PREFIX_RE.match(str(values["date"])):
        errors["date"] = "Date must be in ISO format"
    if values.get("urgency"):
        try:
            urgency = float(values["urgency"])
        except (TypeError, ValueError):
            errors["urgency"] = "Urgency must be a number"
        else:
            if urgency != urgency or not 1.0 <= urgency <= 5.0:
                errors["urgency"] = "Urgency must be between 1 and 5"
    if errors:
        return {"valid": False, "errors": errors}
    return {"valid": True}


def finalize_todo_values(values: Dict[str, str]) -> Dict[str, Any]:
    """Turn completed slot values into todo fields, clamping urgency into 1..5."""
    return {
        "title": (values.get("title") or "").strip(),
        "due_date": values.get("date") or None,
        "urgency": clamp_urgency(values.get("urgency"), default=1.0),
    }


def generate_time_suggestions(title: str) -> List[Dict[str, str]]:
    lowered = (title or "").lower()
    for keyword, options in TIME_SUGGESTIONS:
        if keyword in lowered:
            return [{"time": t, "display": d} for t, d in options]
    return [{"time": t, "display": d} for t, d in DEFAULT_TIME_SUGGESTIONS]


class ExtractionEngine:
    """Runs one slot-filling turn: loop check, completion (or fallback), merge, validate, cache."""

    def __init__(
        self,
        complete: Callable[[str, str, bool], Awaitable[str]],
        resolve_date: Optional[Callable[[str], Awaitable[str]]] = None,
        store=None,
        loop_threshold: int = LOOP_THRESHOLD,
    ):
        self.complete = complete
        self.resolve_date = resolve_date
        self.store = store
        self.loop_threshold = loop_threshold

    async def process_turn(
        self,
        message: str,
        conversation_id: str,
        collected_values: Optional[Dict[str, str]] = None,
        pending_fields: Optional[List[str]] = None,
        current_field: Optional[str] = None,
        field_attempts: Optional[Dict[str, int]] = None,
        workspace_todos: Optional[Iterable[Dict[str, Any]]] = None,
        pro: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        values = dict(collected_values or {})
        pending = list(pending_fields or [])
        attempts = dict(field_attempts or {})

        if not values and not attempts and self.store is not None:
            cached = await self.store.load(conversation_id)
            if cached:
                logger.info("Resuming conversation %s from cache", conversation_id)
                values = dict(cached.get("values") or {})
                pending = pending or list(cached.get("pendingFields") or [])
                attempts = dict(cached.get("fieldAttempts") or {})

        if current_field:
            attempts[current_field] = attempts.get(current_field, 0) + 1

        fallback_applied = check_for_loop(attempts, current_field, self.loop_threshold)
        if fallback_applied:
            logger.warning("Loop detected on %s after %d attempts", current_field, attempts[current_field])
            fallback_text = fallback_message(current_field, values)
            if current_field == "urgency":
                values["urgency"] = fallback_urgency(values.get("title"))
            assistant_message = render_tagged_response(values, fallback_text, REQUIRED_FIELDS)
        else:
            system = build_system_prompt(now, workspace_todos) + build_context_block(
                values, pending, current_field, attempts
            )
            assistant_message = await self.complete(system, message, pro)

        parsed = parse_tagged_response(assistant_message)
        extracted = parsed.values()
        final_values = {**values, **extracted}
        if self.resolve_date and extracted.get("date") and "T" not in extracted["date"]:
            final_values["date"] = await self.resolve_date(extracted["date"])

        validation = validate_todo_values(final_values)

        if self.store is not None:
            await self.store.save(
                conversation_id,
                {
                    "message": message,
                    "response": assistant_message,
                    "values": final_values,
                    "pendingFields": parsed.still_needed,
                    "fieldAttempts": attempts,
                    "validation": validation,
                    "isComplete": parsed.complete,
                    "updatedAt": datetime.now(timezone.utc).isoformat(),
                },
            )

        suggestions: List[Dict[str, str]] = []
        if "time" in parsed.still_needed and final_values.get("title"):
            suggestions = generate_time_suggestions(final_values["title"])

        return {
            "text": parsed.display_text(),
            "html": assistant_message,
            "values": final_values,
            "stillNeeded": parsed.still_needed,
            "isComplete": parsed.complete,
            "validation": validation,
            "fieldAttempts": attempts,
            "fallbackApplied": fallback_applied,
            "suggestions": suggestions,
            "choices": [s.to_dict() for s in parsed.suggestions],
        }
