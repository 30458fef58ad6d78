import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Single-line, non-greedy: a tag split across lines is treated as absent.
_VALUE_TAGS = ("title", "date", "urgency", "follow_up")
_TAG_PATTERNS = {name: re.compile(rf"<{name}>(.*?)</{name}>") for name in _VALUE_TAGS}
_STILL_NEEDED_RE = re.compile(r"<still_needed>(.*?)</still_needed>")
_SUGGESTION_RE = re.compile(r'<suggestion type="(date|time|datetime)" value="([^"]+)">([^<]+)</suggestion>')
_ANY_TAG_RE = re.compile(r"<.*?>")
COMPLETE_MARKER = "<todo_complete>"


@dataclass
class Suggestion:
    type: str
    value: str
    display: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "value": self.value, "display": self.display}


@dataclass
class TaggedResponse:
    raw: str
    title: Optional[str] = None
    date: Optional[str] = None
    urgency: Optional[str] = None
    follow_up: Optional[str] = None
    still_needed: List[str] = field(default_factory=list)
    complete: bool = False
    suggestions: List[Suggestion] = field(default_factory=list)

    def values(self) -> Dict[str, str]:
        """Slot values present in this response (follow_up included)."""
        out: Dict[str, str] = {}
        for name in _VALUE_TAGS:
            value = getattr(self, name)
            if value:
                out[name] = value
        return out

    def display_text(self) -> str:
        if self.follow_up:
            return self.follow_up
        return strip_tags(self.raw)


def strip_tags(text: str) -> str:
    return _ANY_TAG_RE.sub("", text or "").strip()


def parse_tagged_response(text: str) -> TaggedResponse:
    text = text or ""
    parsed = TaggedResponse(raw=text)
    for name, pattern in _TAG_PATTERNS.items():
        match = pattern.search(text)
        # An empty tag body leaves the slot untouched.
        if match and match.group(1):
            setattr(parsed, name, match.group(1))
    needed = _STILL_NEEDED_RE.search(text)
    if needed and needed.group(1):
        parsed.still_needed = [part.strip() for part in needed.group(1).split(",")]
    parsed.complete = COMPLETE_MARKER in text
    parsed.suggestions = [
        Suggestion(type=m.group(1), value=m.group(2), display=m.group(3))
        for m in _SUGGESTION_RE.finditer(text)
    ]
    return parsed


def render_tagged_response(
    values: Dict[str, str],
    follow_up: str,
    required: tuple = ("title", "date", "urgency"),
) -> str:
    """Build an assistant message in the tag grammar from known values."""
    lines = [f"<title>{values.get('title') or ''}</title>"]
    if values.get("date"):
        lines.append(f"<date>{values['date']}</date>")
    if values.get("urgency"):
        lines.append(f"<urgency>{values['urgency']}</urgency>")
    lines.append(f"<follow_up>{follow_up}</follow_up>")
    missing = [name for name in required if not values.get(name)]
    if missing:
        lines.append(f"<still_needed>{','.join(missing)}</still_needed>")
    else:
        lines.append(COMPLETE_MARKER)
    return "\n".join(lines)
