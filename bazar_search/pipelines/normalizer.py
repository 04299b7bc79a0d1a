"""Query Normalizer.

Canonicalizes raw user input so that comparison, dedup, history keys and
index lookups all agree on one form:
  - strip C0/C1 control characters (whitespace controls become spaces)
  - strip zero-width characters
  - Unicode NFC, case-fold
  - collapse whitespace runs, trim

The same module owns the tokenizer shared by ingest and query time.
"""

import re
import unicodedata
from typing import Any

from bazar_search.config import settings
from bazar_search.errors import InvalidInput
from bazar_search.orchestrator.schemas import NormalizedQuery

ZERO_WIDTH = frozenset("\u200b\u200c\u200d\u2060\ufeff")

# Splits on Unicode whitespace and punctuation (underscore included)
_TOKEN_RE = re.compile(r"[^\W_]+")

MIN_TOKEN_LENGTH = 2


def _is_stripped(ch: str) -> bool:
    if ch in ZERO_WIDTH:
        return True
    code = ord(ch)
    return code < 0x20 or 0x7F <= code <= 0x9F


def canonicalize(text: str) -> str:
    """Canonical form of `text`. Idempotent."""
    cleaned = "".join(
        " " if ch.isspace() else ch
        for ch in text
        if ch.isspace() or not _is_stripped(ch)
    )
    cleaned = unicodedata.normalize("NFC", cleaned)
    cleaned = unicodedata.normalize("NFC", cleaned.casefold())
    return " ".join(cleaned.split())


def normalize(raw: Any, prefix_length: int | None = None) -> NormalizedQuery:
    """Normalize a raw query. Raises InvalidInput for non-string input."""
    if not isinstance(raw, str):
        raise InvalidInput("Search query must be a string.")

    canonical = canonicalize(raw)
    prefix_length = prefix_length or settings.prefix_key_length
    return NormalizedQuery(
        canonical=canonical,
        prefix_key=canonical[:prefix_length],
        length=len(canonical),
    )


def tokenize(text: str) -> list[str]:
    """Split canonical text into tokens of at least two code points."""
    return [t for t in _TOKEN_RE.findall(text) if len(t) >= MIN_TOKEN_LENGTH]


def token_spans(text: str) -> list[tuple[str, int, int]]:
    """Tokens with their character offsets in `text`."""
    return [
        (m.group(), m.start(), m.end())
        for m in _TOKEN_RE.finditer(text)
        if len(m.group()) >= MIN_TOKEN_LENGTH
    ]
