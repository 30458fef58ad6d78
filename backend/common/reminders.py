import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from common.models import ReminderStatus

RMD_PREFIX = "!!RMD!!"
RMD_SEPARATOR = "||"
REMINDER_COMMAND_RE = re.compile(r"^(!remindme|!rmd)\s", re.IGNORECASE)

_ALLOWED_TRANSITIONS = {
    ReminderStatus.pending: {ReminderStatus.sent, ReminderStatus.cancelled},
}

REMINDER_SYSTEM_PROMPT = """### Generate Reminder Details from Todo Context

You help generate reminder details from user messages.
The input includes a todo title, its comments, a reminder command message and the user's timezone.

Answer with exactly these blocks:

<reminder_title>A concise, clear title for the reminder</reminder_title>
<reminder_description>What needs to be done, using context from the todo and comments</reminder_description>
<reminder_time>The time for the reminder in natural language, e.g. "tomorrow at 9am", "in 2 hours", "next Monday at 3pm"</reminder_time>
<reminder_summary>!!RMD!! A short comment such as "Reminding you to check the invoice", with no date or time reference and no emojis</reminder_summary>

Notes:
- The title and description are shown when the reminder fires, so do not reference the future ("check the invoice tomorrow" becomes "check the invoice today").
- Interpret times in the user's timezone.
- For unclear time expressions, pick a reasonable default based on context.
"""


class ReminderFormatError(ValueError):
    """The model answer is missing one of the reminder blocks."""


class InvalidReminderTransition(ValueError):
    def __init__(self, current: ReminderStatus, target: ReminderStatus):
        super().__init__(f"Cannot move reminder from {current.value} to {target.value}")
        self.current = current
        self.target = target


@dataclass
class ReminderDetails:
    title: str
    description: str
    time_text: str
    summary: str


@dataclass
class ReminderComment:
    summary: str
    reminder_id: str
    reminder_time: str


def is_reminder_command(text: str) -> bool:
    return bool(REMINDER_COMMAND_RE.match(text or ""))


def build_reminder_prompt(todo_title: str, comments: Iterable[str], message: str, tz_name: str) -> str:
    return (
        f'Todo: "{todo_title}"\n'
        f"Comments: {json.dumps(list(comments), ensure_ascii=False)}\n"
        f'Message: "{message}"\n'
        f'Timezone: "{tz_name}"'
    )


def _extract_block(text: str, name: str) -> str:
    match = re.search(rf"<{name}>(.*?)</{name}>", text or "", re.DOTALL)
    return match.group(1).strip() if match else ""


def parse_reminder_details(text: str) -> ReminderDetails:
    details = ReminderDetails(
        title=_extract_block(text, "reminder_title"),
        description=_extract_block(text, "reminder_description"),
        time_text=_extract_block(text, "reminder_time"),
        summary=_extract_block(text, "reminder_summary"),
    )
    if not (details.title and details.description and details.time_text and details.summary):
        raise ReminderFormatError("Invalid AI response format")
    return details


def encode_reminder_comment(summary: str, reminder_id: str, reminder_time) -> str:
    if isinstance(reminder_time, datetime):
        reminder_time = reminder_time.isoformat()
    body = summary if summary.startswith(RMD_PREFIX) else f"{RMD_PREFIX}{summary}"
    return RMD_SEPARATOR.join([body, reminder_id, str(reminder_time)])


def parse_reminder_comment(text: str) -> Optional[ReminderComment]:
    """Decode a reminder comment; plain comments return None."""
    if not text or not text.startswith(RMD_PREFIX) or RMD_SEPARATOR not in text:
        return None
    parts = [part.strip() for part in text.replace(RMD_PREFIX, "", 1).split(RMD_SEPARATOR)]
    parts += [""] * (3 - len(parts))
    return ReminderComment(summary=parts[0], reminder_id=parts[1], reminder_time=parts[2])


def transition_status(current: ReminderStatus, target: ReminderStatus) -> ReminderStatus:
    if target not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidReminderTransition(current, target)
    return target


def reminder_email_subject(title: str) -> str:
    return f"you need to do: {(title or '').lower()}"
