"""Text normalization shared by deduplication and matching."""

import re
import unicodedata
from typing import Optional

_WHITESPACE = re.compile(r"\s+")
_LETTER_DIGIT = re.compile(r"([^\W\d_])(\d)")
_DIGIT_LETTER = re.compile(r"(\d)([^\W\d_])")
_NON_NAME_CHARS = re.compile(r"[^\w]+|_")

# German umlauts fold to their base letter and ß to "ss"; mis-decoded UTF-8 variants too.
_GERMAN_FOLD = {
    "ã¤": "a",
    "ã¶": "o",
    "ã¼": "u",
    "ãÿ": "ss",
    "ä": "a",
    "ö": "o",
    "ü": "u",
    "ß": "ss",
}


def normalize_iban(iban: Optional[str]) -> Optional[str]:
    """Uppercase an IBAN and drop spaces; empty input becomes None."""
    if not iban:
        return None
    cleaned = _WHITESPACE.sub("", iban).upper()
    return cleaned or None


def normalize_match_text(text: Optional[str]) -> str:
    """
    Lowercase, collapse whitespace, split glued letters and digits
    ("kita12345" -> "kita 12345") and fold diacritics.
    """
    if not text:
        return ""
    normalized = text.strip().lower().replace("\u00a0", " ")
    if not normalized:
        return ""
    normalized = _WHITESPACE.sub(" ", normalized)
    normalized = _LETTER_DIGIT.sub(r"\1 \2", normalized)
    normalized = _DIGIT_LETTER.sub(r"\1 \2", normalized)
    for source, target in _GERMAN_FOLD.items():
        normalized = normalized.replace(source, target)
    # Remaining accents (é, ç, ...) lose their combining marks
    decomposed = unicodedata.normalize("NFKD", normalized)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def compact(text: str) -> str:
    """Strip everything but letters and digits."""
    return _NON_NAME_CHARS.sub("", text)
