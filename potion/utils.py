import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def slugify(title: Optional[str], fallback: str = "page") -> str:
    """
    Lowercases and replaces every character outside [a-z0-9] with '-'.
    """
    if title is None:
        return fallback
    return re.sub(r"[^a-z0-9]", "-", title.lower())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parses an ISO-8601 string, date or datetime into an aware datetime.
    Naive values are taken as UTC. Returns None when the value does not parse.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_plain_text(blocks: Iterable[Any]) -> str:
    """
    Flattens block documents (as dicts) into space separated plain text for search.
    """
    parts = []
    for block in blocks or []:
        if not isinstance(block, dict):
            continue
        content = block.get("content")
        if isinstance(content, list):
            for inline in content:
                if isinstance(inline, dict) and inline.get("text"):
                    parts.append(str(inline["text"]))
        parts.append(extract_plain_text(block.get("children") or []))
    text = " ".join(part for part in parts if part)
    return re.sub(r"\s+", " ", text).strip()
