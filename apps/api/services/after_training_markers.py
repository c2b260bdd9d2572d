"""
After-training marker codec.

Synthetic feedback tasks carry a hidden tag in their free-text description:

    [auto-after-training:<template-id>]

The tag ties a template-less task back to the template that produced it.
Newer rows also have activity_tasks.feedback_template_id set; the tag is kept
so older rows and older clients keep working.
"""

from __future__ import annotations

import re
from typing import Optional, Union
from uuid import UUID

MARKER_PREFIX = "[auto-after-training:"
MARKER_SUFFIX = "]"

_UUID_PATTERN = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"

# Any marker, with or without a well-formed id (used when stripping for display).
_ANY_MARKER_RE = re.compile(r"\[auto-after-training(?::[^\]\s]*)?\]", re.IGNORECASE)
# Only markers whose payload is UUID-shaped.
_CAPTURE_RE = re.compile(r"\[auto-after-training:(" + _UUID_PATTERN + r")\]", re.IGNORECASE)
_WHITESPACE_RUN_RE = re.compile(r"\s{2,}")


def encode_marker(template_id: Union[UUID, str]) -> str:
    """Return the literal marker for a template id."""
    return f"{MARKER_PREFIX}{template_id}{MARKER_SUFFIX}"


def decode_marker(description: Optional[str]) -> Optional[str]:
    """
    Extract the template id from the first well-formed marker in `description`.

    The marker may sit anywhere in the text. Returns None when there is no
    marker or its payload is not UUID-shaped; callers treat None as
    "not a feedback task".
    """
    if not description:
        return None
    match = _CAPTURE_RE.search(description)
    if not match:
        return None
    return match.group(1)


def decode_marker_uuid(description: Optional[str]) -> Optional[UUID]:
    """Like decode_marker, but returns a UUID."""
    raw = decode_marker(description)
    return UUID(raw) if raw else None


def has_any_marker(description: Optional[str]) -> bool:
    """True when the text contains a marker prefix at all (well-formed or not)."""
    if not description:
        return False
    return MARKER_PREFIX in description.lower()


def strip_markers(description: Optional[str]) -> str:
    """Remove every marker and collapse the whitespace left behind."""
    if not description:
        return ""
    cleaned = _ANY_MARKER_RE.sub(" ", description)
    return _WHITESPACE_RUN_RE.sub(" ", cleaned).strip()


def marker_like_pattern(template_id: Union[UUID, str, None] = None) -> str:
    """
    SQL LIKE pattern matching descriptions that carry a marker.

    With a template id the pattern matches only that template's marker,
    without one it matches any marker.
    """
    if template_id is None:
        return f"%{MARKER_PREFIX}%"
    return f"%{encode_marker(template_id)}%"
