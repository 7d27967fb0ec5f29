from typing import Dict, Set

import structlog
from lxml import etree

from marginalia.utils.docx import (
    create_attribute,
    create_element,
    create_space_run,
    get_anchor_candidates,
    get_node_text_length,
)

logger = structlog.get_logger(__name__)


def find_anchor_node_index(paragraph: etree._Element, offset: int) -> int:
    """
    Index (into get_anchor_candidates) of the direct child whose text span
    contains `offset`. Empty children still occupy one position so that
    bookmarks and similar markers can be selected. Offsets past the end
    resolve to the last candidate.
    """
    candidates = get_anchor_candidates(paragraph)
    if not candidates:
        return 0

    cursor = 0
    for i, node in enumerate(candidates):
        span = max(1, get_node_text_length(node))
        if offset < cursor + span:
            return i
        cursor += span
    return len(candidates) - 1


class AnchorAllocator:
    """
    Tracks which anchor nodes each paragraph has already handed out in this run,
    so several comments on one paragraph do not stack on the same node.
    """

    def __init__(self):
        self._used: Dict[int, Set[int]] = {}

    def claim(self, paragraph_index: int, anchor_index: int) -> int:
        used = self._used.setdefault(paragraph_index, set())
        while anchor_index in used:
            anchor_index += 1
        used.add(anchor_index)
        return anchor_index

    def used(self, paragraph_index: int) -> Set[int]:
        return set(self._used.get(paragraph_index, ()))


def _create_comment_reference_run(comment_id: int) -> etree._Element:
    run = create_element("w:r")
    rPr = create_element("w:rPr")
    rStyle = create_element("w:rStyle")
    create_attribute(rStyle, "w:val", "CommentReference")
    rPr.append(rStyle)
    run.append(rPr)

    ref = create_element("w:commentReference")
    create_attribute(ref, "w:id", str(comment_id))
    run.append(ref)
    return run


def insert_comment_anchor(paragraph: etree._Element, comment_id: int, anchor_index: int) -> etree._Element:
    """
    Wraps one direct child of `paragraph` in a comment range:

        <w:commentRangeStart/> anchor <w:commentRangeEnd/> <w:r><w:commentReference/></w:r>

    When `anchor_index` has no candidate (empty paragraph or probe ran past the
    end), a single-space run is appended and used as the anchor.
    Returns the anchor node.
    """
    candidates = get_anchor_candidates(paragraph)
    if anchor_index < len(candidates):
        anchor = candidates[anchor_index]
    else:
        anchor = create_space_run()
        paragraph.append(anchor)
        logger.debug("Synthesized space run anchor", comment_id=comment_id, anchor_index=anchor_index)

    range_start = create_element("w:commentRangeStart")
    create_attribute(range_start, "w:id", str(comment_id))
    range_end = create_element("w:commentRangeEnd")
    create_attribute(range_end, "w:id", str(comment_id))

    anchor.addprevious(range_start)
    anchor.addnext(range_end)
    range_end.addnext(_create_comment_reference_run(comment_id))
    return anchor
