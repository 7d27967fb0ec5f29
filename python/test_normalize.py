"""
Tests for marginalia.normalize: position-preserving text normalization.

Run: pytest python/test_normalize.py
"""

from marginalia.normalize import clean_anchor_text, normalize_for_indexing, normalize_for_search


def test_whitespace_collapses_and_map_points_to_originals():
    text = "  Hello \t\n World "
    normalized, index_map = normalize_for_indexing(text)

    assert normalized == "hello world"
    assert index_map == [2, 3, 4, 5, 6, 7, 11, 12, 13, 14, 15]


def test_never_emits_double_spaces():
    normalized, _ = normalize_for_indexing("a \n\n\t  b   c")
    assert "  " not in normalized
    assert normalized == "a b c"


def test_quotes_and_dashes_fold_to_ascii():
    text = "“Cozy” — it’s ‘fine’ ʼn ＇x‛ – ok"
    normalized, index_map = normalize_for_indexing(text)

    assert normalized == "\"cozy\" - it's 'fine' 'n 'x' - ok"
    assert len(index_map) == len(normalized)


def test_index_map_is_non_decreasing_and_aligned():
    text = "The  QUICK\tbrown—fox’s   tail\n"
    normalized, index_map = normalize_for_indexing(text)

    assert len(index_map) == len(normalized)
    assert all(a <= b for a, b in zip(index_map, index_map[1:]))
    for i, ch in enumerate(normalized):
        original = text[index_map[i]]
        if ch == " ":
            assert original.isspace()
        elif ch in "'-":
            assert original in "'’-—"
        else:
            assert original.lower() == ch


def test_trim_drops_leading_and_trailing_map_entries():
    normalized, index_map = normalize_for_indexing("\n\n  x  \n")
    assert normalized == "x"
    assert index_map == [4]


def test_empty_and_blank_inputs():
    assert normalize_for_indexing("") == ("", [])
    assert normalize_for_indexing(" \t\n ") == ("", [])
    assert normalize_for_search(None) == ""


def test_clean_anchor_text():
    assert clean_anchor_text("  brown \n fox\tjumps ") == "brown fox jumps"
    assert clean_anchor_text("   ") == ""
    assert clean_anchor_text(None) == ""
