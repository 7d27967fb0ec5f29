"""
Tests for paragraph text extraction (marginalia.utils.docx) and anchor node
selection / comment range insertion (marginalia.merge.anchors).

Run: pytest python/test_anchors.py
"""

from lxml import etree

from _docx_fixtures import W, parse_paragraph, run
from marginalia.merge.anchors import AnchorAllocator, find_anchor_node_index, insert_comment_anchor
from marginalia.utils.docx import get_anchor_candidates, get_node_text_length, get_paragraph_text


def _local_names(paragraph):
    return [etree.QName(child).localname for child in paragraph]


# ---------------------------------------------------------------------------
# Paragraph Text Extractor
# ---------------------------------------------------------------------------


def test_text_includes_runs_nested_in_revision_wrappers():
    p = parse_paragraph(
        "<w:p>"
        + run("Hello ")
        + '<w:ins w:id="1" w:author="A"><w:r><w:t>brave</w:t></w:r></w:ins>'
        + '<w:hyperlink><w:r><w:t> new</w:t></w:r></w:hyperlink>'
        + run(" world")
        + "</w:p>"
    )
    assert get_paragraph_text(p) == "Hello brave new world"


def test_tabs_and_breaks():
    p = parse_paragraph("<w:p><w:r><w:t>a</w:t><w:tab/><w:t>b</w:t><w:br/><w:t>c</w:t><w:cr/><w:t>d</w:t></w:r></w:p>")
    assert get_paragraph_text(p) == "a\tb\nc\nd"


def test_tab_stop_definitions_are_not_text():
    p = parse_paragraph(
        '<w:p><w:pPr><w:tabs><w:tab w:val="left" w:pos="720"/></w:tabs></w:pPr>'
        "<w:r><w:t>x</w:t><w:tab/><w:t>y</w:t></w:r></w:p>"
    )
    assert get_paragraph_text(p) == "x\ty"


def test_foreign_namespace_text_is_ignored():
    p = parse_paragraph("<w:p>" + run("E = ") + "<m:oMath><m:r><m:t>mc2</m:t></m:r></m:oMath></w:p>")
    assert get_paragraph_text(p) == "E = "


def test_extraction_is_deterministic():
    p = parse_paragraph("<w:p>" + run("one") + run(" two") + "</w:p>")
    assert get_paragraph_text(p) == get_paragraph_text(p) == "one two"


def test_node_length_counts_tabs_and_breaks_as_one():
    r = parse_paragraph("<w:p><w:r><w:t>ab</w:t><w:tab/><w:br/></w:r></w:p>")[0]
    assert get_node_text_length(r) == 4


# ---------------------------------------------------------------------------
# Anchor candidates and node selection
# ---------------------------------------------------------------------------


def test_candidates_exclude_properties_markers_and_reference_runs():
    p = parse_paragraph(
        "<w:p><w:pPr/>"
        '<w:commentRangeStart w:id="1"/>'
        + run("kept")
        + '<w:commentRangeEnd w:id="1"/>'
        '<w:r><w:rPr/><w:commentReference w:id="1"/></w:r>'
        '<w:bookmarkStart w:id="0" w:name="b"/>'
        + run("also kept")
        + "</w:p>"
    )
    names = [etree.QName(c).localname for c in get_anchor_candidates(p)]
    assert names == ["r", "bookmarkStart", "r"]


def test_offset_selects_child_containing_it():
    p = parse_paragraph("<w:p>" + run("Hello ") + run("brave ") + run("world") + "</w:p>")
    assert find_anchor_node_index(p, 0) == 0
    assert find_anchor_node_index(p, 5) == 0
    assert find_anchor_node_index(p, 6) == 1
    assert find_anchor_node_index(p, 12) == 2
    assert find_anchor_node_index(p, 500) == 2


def test_empty_children_occupy_one_position():
    p = parse_paragraph('<w:p><w:bookmarkStart w:id="0" w:name="b"/>' + run("abc") + "</w:p>")
    assert find_anchor_node_index(p, 0) == 0
    assert find_anchor_node_index(p, 1) == 1


def test_paragraph_without_candidates_selects_zero():
    p = parse_paragraph("<w:p><w:pPr/></w:p>")
    assert find_anchor_node_index(p, 10) == 0


def test_allocator_probes_past_used_indices():
    allocator = AnchorAllocator()
    assert allocator.claim(3, 0) == 0
    assert allocator.claim(3, 0) == 1
    assert allocator.claim(3, 1) == 2
    assert allocator.claim(4, 0) == 0
    assert allocator.used(3) == {0, 1, 2}


# ---------------------------------------------------------------------------
# Comment range insertion
# ---------------------------------------------------------------------------


def test_markers_wrap_anchor_in_order():
    p = parse_paragraph("<w:p><w:pPr/>" + run("first") + run("second") + "</w:p>")
    anchor = insert_comment_anchor(p, 12, 1)

    assert _local_names(p) == ["pPr", "r", "commentRangeStart", "r", "commentRangeEnd", "r"]
    assert anchor is p[3]
    assert p[2].get(f"{W}id") == "12"
    assert p[4].get(f"{W}id") == "12"
    ref = p[5].find(f"{W}commentReference")
    assert ref is not None and ref.get(f"{W}id") == "12"
    assert p[5].find(f"{W}rPr/{W}rStyle").get(f"{W}val") == "CommentReference"


def test_insertion_keeps_paragraph_text():
    p = parse_paragraph("<w:p>" + run("alpha ") + run("beta") + "</w:p>")
    insert_comment_anchor(p, 1, 0)
    assert get_paragraph_text(p) == "alpha beta"


def test_empty_paragraph_gets_space_run_anchor():
    p = parse_paragraph("<w:p><w:pPr/></w:p>")
    insert_comment_anchor(p, 5, 0)

    assert _local_names(p) == ["pPr", "commentRangeStart", "r", "commentRangeEnd", "r"]
    assert p[2].find(f"{W}t").text == " "


def test_candidate_indices_stay_stable_after_insertion():
    p = parse_paragraph("<w:p>" + run("a") + run("b") + "</w:p>")
    insert_comment_anchor(p, 1, 0)
    # markers and the reference run are not candidates, so index 1 is still "b"
    candidates = get_anchor_candidates(p)
    assert [c.find(f"{W}t").text for c in candidates] == ["a", "b"]
