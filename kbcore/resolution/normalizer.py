"""Name normalization: search variations and splitting of multi-name fields."""

import re
from typing import Any, Container, Iterable, List, Optional, Tuple

LEADING_ARTICLES = ("the ", "a ", "an ")

PUNCTUATION_PATTERN = re.compile(r"[.,!?;:'\"()\-]")

CONJUNCTION_PATTERN = re.compile(r"\s+(?:and|&|\+)\s+", re.IGNORECASE)

SEPARATOR_PATTERN = re.compile(r",|\s+(?:and|&|\+)\s+", re.IGNORECASE)

ABBREVIATIONS = ("D.C.", "U.S.", "U.K.", "St.", "Dr.", "Mr.", "Mrs.", "Ms.")

_TRAILING_ABBREVIATION = re.compile(
    r"\b(?:" + "|".join(re.escape(a) for a in ABBREVIATIONS) + r")$"
)

_WHITESPACE = re.compile(r"\s+")


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def generate_search_variations(name: str) -> List[str]:
    """Produce the textual variants of a name that matching should accept.

    The original name always comes first so that an exact match wins over a
    derived one.

    Args:
        name: Raw name as it appeared in an event

    Returns:
        Ordered, de-duplicated variations; empty for blank input
    """
    if not name or not name.strip():
        return []

    variations = [name]
    lowered = name.lower().strip()

    for article in LEADING_ARTICLES:
        if lowered.startswith(article):
            stripped = name.strip()[len(article):].strip()
            if stripped:
                variations.append(stripped)

    if not lowered.startswith("the "):
        variations.append(f"the {name}")

    no_punctuation = PUNCTUATION_PATTERN.sub("", name).strip()
    if no_punctuation != name and no_punctuation:
        variations.append(no_punctuation)

    return _unique(variations)


def _split_commas(text: str) -> List[str]:
    """Split on commas, keeping "Washington, D.C." and "Dr., Smith" style runs whole."""
    parts = [part.strip() for part in text.split(",")]
    names = []
    current = ""

    for index, part in enumerate(parts):
        current = f"{current}, {part}" if current else part

        if index == len(parts) - 1:
            names.append(current)
            break

        following = parts[index + 1]
        starts_new_name = bool(following) and following[0].isupper()
        if (
            starts_new_name
            and not _TRAILING_ABBREVIATION.search(current)
            and following not in ABBREVIATIONS
        ):
            names.append(current)
            current = ""

    return [name.strip(" ,") for name in names if name.strip(" ,")]


def _split_plain(text: str) -> List[str]:
    names = []
    for chunk in CONJUNCTION_PATTERN.split(text.strip()):
        names.extend(_split_commas(chunk))
    return names


def _token_spans(text: str) -> List[Tuple[int, int]]:
    """Spans of the pieces between commas and conjunctions."""
    spans = []
    start = 0
    for separator in SEPARATOR_PATTERN.finditer(text):
        spans.append((start, separator.start()))
        start = separator.end()
    spans.append((start, len(text)))
    return spans


def _split_known(text: str, known_names: Container[str]) -> List[str]:
    """Split ``text``, keeping known names that contain a separator whole.

    At each piece the longest run of two or more pieces that spells a known
    name (case-insensitively) is taken as one name. Stretches without such a
    name are split as usual.
    """
    spans = _token_spans(text)
    names: List[str] = []
    pending_start: Optional[int] = None
    pending_end = 0
    i = 0

    while i < len(spans):
        match = None
        for j in range(len(spans) - 1, i, -1):
            candidate = text[spans[i][0]:spans[j][1]].strip()
            if _WHITESPACE.sub(" ", candidate).lower() in known_names:
                match = (j, candidate)
                break

        if match is None:
            if pending_start is None:
                pending_start = spans[i][0]
            pending_end = spans[i][1]
            i += 1
            continue

        if pending_start is not None:
            names.extend(_split_plain(text[pending_start:pending_end]))
            pending_start = None
        names.append(match[1])
        i = match[0] + 1

    if pending_start is not None:
        names.extend(_split_plain(text[pending_start:pending_end]))
    return [name for name in names if name]


def parse_entity_names(text: Any, known_names: Optional[Container[str]] = None) -> List[str]:
    """Split a raw actor/target field into individual names.

    Conjunctions (``and``, ``&``, ``+``) always separate names. Commas
    separate names only when the next part starts with a capital letter
    and the current part does not end with a known abbreviation.

    Args:
        text: Raw field value; anything that is not a string yields no names
        known_names: Lowercased names that must not be split, such as
            "marks & spencer" or "smith, john"

    Returns:
        Names in the order they appear
    """
    if not isinstance(text, str) or not text.strip():
        return []
    if known_names:
        return _split_known(text.strip(), known_names)
    return _split_plain(text)


def normalize_locations(value: Any) -> List[str]:
    """Turn any stored shape of the locations field into a list of names.

    Accepts a raw comma-joined string, a list of strings, or a list of
    ``{"name": ..., "category": ...}`` records.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return _unique(parse_entity_names(value))
    if isinstance(value, dict):
        value = [value]

    names = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name")
        if isinstance(item, str) and item.strip():
            names.append(item.strip())
    return _unique(names)


def clean_entity_name(name: str) -> str:
    """Strip one leading article and collapse whitespace, for external lookups."""
    cleaned = _WHITESPACE.sub(" ", name or "").strip()
    lowered = cleaned.lower()
    for article in LEADING_ARTICLES:
        if lowered.startswith(article) and len(cleaned) > len(article):
            return cleaned[len(article):].strip()
    return cleaned
