"""
Low-level helpers over raw WordprocessingML (lxml) elements.
Text extraction here defines the character offsets every other module relies on.
"""

from typing import Iterator, List, Tuple

import structlog
from docx.oxml.ns import nsmap, qn
from lxml import etree

logger = structlog.get_logger(__name__)

W_NS = nsmap["w"]

_T = qn("w:t")
_TAB = qn("w:tab")
_BR = qn("w:br")
_CR = qn("w:cr")
_TABS = qn("w:tabs")

# Direct children of w:p that can never wrap a comment range
_NON_ANCHOR_TAGS = {
    qn("w:pPr"),
    qn("w:commentRangeStart"),
    qn("w:commentRangeEnd"),
}


def create_element(name: str) -> etree._Element:
    """Creates a bare lxml element from a prefixed name such as 'w:r'."""
    return etree.Element(qn(name))


def create_attribute(element: etree._Element, name: str, value: str):
    element.set(qn(name), value)


def _iter_text_pieces(node: etree._Element) -> Iterator[str]:
    for el in node.iter(_T, _TAB, _BR, _CR):
        if el.tag == _T:
            yield el.text or ""
        elif el.tag == _TAB:
            # Tab stop definitions in w:pPr/w:tabs are layout, not content
            parent = el.getparent()
            if parent is not None and parent.tag == _TABS:
                continue
            yield "\t"
        else:
            yield "\n"


def get_paragraph_text(paragraph: etree._Element) -> str:
    """
    Reduces a paragraph to plain text.
    Walks every descendant (runs nested in w:ins, w:hyperlink, w:smartTag, ...):
    w:t text verbatim, w:tab as a tab, w:br / w:cr as a newline.
    """
    return "".join(_iter_text_pieces(paragraph))


def get_node_text_length(node: etree._Element) -> int:
    """Length this subtree contributes to get_paragraph_text."""
    return sum(len(piece) for piece in _iter_text_pieces(node))


def iter_paragraphs(document_root: etree._Element) -> Iterator[etree._Element]:
    """All w:p elements in document order, including table cells and text boxes."""
    yield from document_root.iter(qn("w:p"))


def build_paragraph_index(document_root: etree._Element) -> List[Tuple[etree._Element, str]]:
    """
    Snapshot of (paragraph, text) pairs in document order.
    Texts are taken once, before any mutation, and are never refreshed.
    """
    index = [(p, get_paragraph_text(p)) for p in iter_paragraphs(document_root)]
    logger.debug("Built paragraph index", paragraphs=len(index))
    return index


def _has_comment_reference(run: etree._Element) -> bool:
    return next(run.iter(qn("w:commentReference")), None) is not None


def get_anchor_candidates(paragraph: etree._Element) -> List[etree._Element]:
    """
    Direct children of a paragraph that comment range markers may be placed around.
    Excludes paragraph properties, existing range markers and runs that already
    carry a comment reference.
    """
    candidates = []
    for child in paragraph:
        if not isinstance(child.tag, str):
            # comments / processing instructions
            continue
        if etree.QName(child).namespace != W_NS:
            continue
        if child.tag in _NON_ANCHOR_TAGS:
            continue
        if child.tag == qn("w:r") and _has_comment_reference(child):
            continue
        candidates.append(child)
    return candidates


def create_space_run() -> etree._Element:
    r = create_element("w:r")
    t = create_element("w:t")
    create_attribute(t, "xml:space", "preserve")
    t.text = " "
    r.append(t)
    return r
