"""
Payer-name similarity.

Bank payer names come as "Mustermann, Erika", "ERIKA MUSTERMANN" or
"Mustermann Erika u. Max"; both name orders are compared against the
normalized text and the best ratio wins.
"""

import re
from difflib import SequenceMatcher
from typing import Optional

from app.utils.text import compact, normalize_match_text

_SEPARATORS = re.compile(r"[,;/]+")


def _clean(value: str) -> str:
    return " ".join(_SEPARATORS.sub(" ", normalize_match_text(value)).split())


def _fuzzy_ratio(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()


def name_similarity(text: Optional[str], first_name: str, last_name: str) -> float:
    """
    Similarity in [0, 1] between a free-text payer name and a person.

    1.0 when the full name appears verbatim (in either order, with or without
    separators); otherwise the SequenceMatcher ratio of the closest token window.
    """
    haystack = _clean(text or "")
    first = _clean(first_name)
    last = _clean(last_name)
    if not haystack or not first or not last:
        return 0.0

    forward = f"{first} {last}"
    backward = f"{last} {first}"
    padded = f" {haystack} "
    if f" {forward} " in padded or f" {backward} " in padded:
        return 1.0

    compact_haystack = compact(haystack)
    if compact(forward) in compact_haystack or compact(backward) in compact_haystack:
        return 1.0

    tokens = haystack.split()
    size = len(forward.split())
    best = 0.0
    for window_size in {max(1, size - 1), size, size + 1}:
        if window_size > len(tokens):
            continue
        for idx in range(0, len(tokens) - window_size + 1):
            window = " ".join(tokens[idx : idx + window_size])
            best = max(best, _fuzzy_ratio(forward, window), _fuzzy_ratio(backward, window))
    return best
