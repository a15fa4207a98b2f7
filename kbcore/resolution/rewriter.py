"""Whole-word rewriting of entity names inside event text."""

import re
from functools import lru_cache
from typing import Dict, List, Optional, Pattern

from ..models import Event

REWRITABLE_FIELDS = ("actor", "target", "sentence")


@lru_cache(maxsize=256)
def _word_pattern(name: str) -> Pattern:
    return re.compile(rf"(?<!\w){re.escape(name)}(?!\w)")


@lru_cache(maxsize=256)
def _rewrite_pattern(losing_name: str, winning_name: str) -> Pattern:
    # Longest alternative first, so a winning name that contains the losing
    # one (or the other way round) is consumed whole.
    alternatives = sorted(
        [(winning_name, "keep"), (losing_name, "lose")],
        key=lambda item: len(item[0]),
        reverse=True,
    )
    body = "|".join(f"(?P<{tag}>{re.escape(text)})" for text, tag in alternatives)
    return re.compile(rf"(?<!\w)(?:{body})(?!\w)")


def contains_name(text: Optional[str], name: str) -> bool:
    """True when ``name`` occurs in ``text`` as a whole word."""
    if not text or not name:
        return False
    return _word_pattern(name).search(text) is not None


def rewrite_text(text: Optional[str], losing_name: str, winning_name: str) -> Optional[str]:
    """Replace whole-word occurrences of ``losing_name`` with ``winning_name``.

    Text already spelled as the winning name is left as it is, so rewriting
    "Cole" to "Nicholas Cole" never yields "Nicholas Nicholas Cole".
    """
    if not text or not losing_name or losing_name == winning_name:
        return text

    pattern = _rewrite_pattern(losing_name, winning_name)

    def substitute(match):
        return winning_name if match.group("lose") is not None else match.group(0)

    return pattern.sub(substitute, text)


def references_name(event: Event, name: str) -> bool:
    """Whether any name-bearing field of the event mentions ``name``."""
    if any(contains_name(getattr(event, field), name) for field in REWRITABLE_FIELDS):
        return True
    return any(contains_name(location, name) for location in event.locations)


def rewrite_event(event: Event, losing_name: str, winning_name: str) -> Event:
    """Return a copy of ``event`` with every reference to one name replaced.

    Covers actor, target, sentence and each location. Matching is
    case-sensitive and boundary-aware, so "Cole" never touches "Nicole".
    The input event is not modified.

    Args:
        event: Event to rewrite
        losing_name: Name being retired
        winning_name: Name that replaces it

    Returns:
        A new Event, identical to the input when nothing matched
    """
    changes: Dict[str, object] = {}

    for field in REWRITABLE_FIELDS:
        original = getattr(event, field)
        rewritten = rewrite_text(original, losing_name, winning_name)
        if rewritten != original:
            changes[field] = rewritten

    locations: List[str] = [
        rewrite_text(location, losing_name, winning_name) for location in event.locations
    ]
    if locations != event.locations:
        changes["locations"] = locations

    return event.model_copy(update=changes, deep=True)
