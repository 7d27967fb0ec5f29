"""
Text normalization used to locate an anchor inside a paragraph.

`normalize_for_indexing` keeps a parallel index map so that a position found
in normalized space can be translated back to an offset in the original text.
"""

import re
from typing import List, Tuple

_WHITESPACE_RE = re.compile(r"\s+")

# Typographic variants Word exports in place of the ASCII characters.
_CHAR_FOLDS = {
    "’": "'",  # right single quote
    "‘": "'",  # left single quote
    "ʼ": "'",  # modifier letter apostrophe
    "＇": "'",  # fullwidth apostrophe
    "‛": "'",  # reversed-9 single quote
    "“": '"',
    "”": '"',
    "–": "-",  # en dash
    "—": "-",  # em dash
}


def clean_anchor_text(text: str) -> str:
    """Collapses whitespace runs to single spaces and trims."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def normalize_for_indexing(text: str) -> Tuple[str, List[int]]:
    """
    Returns (normalized, index_map) where index_map[i] is the offset in `text`
    of the character that produced normalized[i].

    Rules, left to right: whitespace runs collapse to one space, quotes and
    dashes fold to ASCII, everything else is lowercased, then leading and
    trailing spaces are trimmed together with their map entries.
    """
    chars: List[str] = []
    index_map: List[int] = []
    last_was_space = False

    for i, raw in enumerate(text or ""):
        if raw.isspace():
            if not last_was_space:
                chars.append(" ")
                index_map.append(i)
                last_was_space = True
            continue
        last_was_space = False

        folded = _CHAR_FOLDS.get(raw, raw).lower()
        # lower() may expand one character (e.g. 'İ'); every piece maps to the same source offset
        for ch in folded:
            chars.append(ch)
            index_map.append(i)

    start = 0
    end = len(chars)
    if end and chars[0] == " ":
        start = 1
    if end > start and chars[end - 1] == " ":
        end -= 1

    return "".join(chars[start:end]), index_map[start:end]


def normalize_for_search(text: str) -> str:
    return normalize_for_indexing(text)[0]
