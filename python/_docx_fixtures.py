"""
Helpers for building small DOCX packages in memory for the test modules.
"""

import zipfile
from io import BytesIO
from typing import Dict, Optional, Union
from xml.sax.saxutils import escape

from docx import Document
from lxml import etree

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
W = f"{{{W_NS}}}"

DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'

CONTENT_TYPES_XML = (
    f"{DECL}\n"
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Override PartName="/word/document.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    "</Types>"
)

COMMENTS_OVERRIDE = (
    '<Override PartName="/word/comments.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.comments+xml"/>'
)

PACKAGE_RELS_XML = (
    f"{DECL}\n"
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    '<Relationship Id="rId1" '
    'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" '
    'Target="word/document.xml"/>'
    "</Relationships>"
)

STYLES_REL = (
    '<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/styles" '
    'Target="styles.xml"/>'
)
SETTINGS_REL = (
    '<Relationship Id="rId7" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/settings" '
    'Target="settings.xml"/>'
)
COMMENTS_REL = (
    '<Relationship Id="rId3" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/comments" '
    'Target="comments.xml"/>'
)

# Zip entry date for every fixture part
FIXTURE_DATE_TIME = (2024, 1, 2, 3, 4, 6)

STYLES_XML = f'{DECL}\n<w:styles xmlns:w="{W_NS}"><w:docDefaults/></w:styles>'


def document_rels_xml(*relationships: str) -> str:
    return (
        f"{DECL}\n"
        '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
        + "".join(relationships)
        + "</Relationships>"
    )


def run(text: str) -> str:
    return f'<w:r><w:t xml:space="preserve">{escape(text)}</w:t></w:r>'


def paragraph(*runs: str, ppr: bool = False) -> str:
    props = '<w:pPr><w:pStyle w:val="Normal"/></w:pPr>' if ppr else ""
    return f"<w:p>{props}{''.join(runs)}</w:p>"


def document_xml(*paragraphs: str, declaration: str = DECL) -> str:
    return f'{declaration}\n<w:document xmlns:w="{W_NS}"><w:body>{"".join(paragraphs)}<w:sectPr/></w:body></w:document>'


def comments_xml(*comment_ids: int) -> str:
    comments = "".join(
        f'<w:comment w:id="{cid}" w:author="Old" w:date="2024-01-01T00:00:00Z">'
        f'<w:p><w:r><w:t>existing {cid}</w:t></w:r></w:p></w:comment>'
        for cid in comment_ids
    )
    return f'{DECL}\n<w:comments xmlns:w="{W_NS}">{comments}</w:comments>'


def make_docx(
    document: Optional[Union[str, bytes]],
    content_types: Optional[str] = CONTENT_TYPES_XML,
    document_rels: Optional[str] = None,
    omit_document_rels: bool = False,
    comments: Optional[str] = None,
    extra_parts: Optional[Dict[str, str]] = None,
) -> bytes:
    """
    Builds a minimal package. Pass None for document or content_types, or
    omit_document_rels=True, to leave that part out.
    """
    if document_rels is None:
        document_rels = document_rels_xml(STYLES_REL, SETTINGS_REL)

    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:

        def add(name, content):
            info = zipfile.ZipInfo(name, date_time=FIXTURE_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, content)

        if content_types is not None:
            add("[Content_Types].xml", content_types)
        add("_rels/.rels", PACKAGE_RELS_XML)
        if document is not None:
            add("word/document.xml", document)
        if not omit_document_rels:
            add("word/_rels/document.xml.rels", document_rels)
        add("word/styles.xml", STYLES_XML)
        if comments is not None:
            add("word/comments.xml", comments)
        for name, content in (extra_parts or {}).items():
            add(name, content)
    return buf.getvalue()


def make_python_docx(*texts: str) -> bytes:
    """A real python-docx package with one paragraph per text."""
    doc = Document()
    for text in texts:
        doc.add_paragraph(text)
    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


def read_part(docx_bytes: bytes, name: str) -> bytes:
    with zipfile.ZipFile(BytesIO(docx_bytes)) as zf:
        return zf.read(name)


def read_xml(docx_bytes: bytes, name: str) -> etree._Element:
    return etree.fromstring(read_part(docx_bytes, name))


def part_names(docx_bytes: bytes):
    with zipfile.ZipFile(BytesIO(docx_bytes)) as zf:
        return zf.namelist()


def all_comments(docx_bytes: bytes):
    """All w:comment elements in the output comments part, as {id: (author, text)}."""
    root = read_xml(docx_bytes, "word/comments.xml")
    result = {}
    for c in root.iter(f"{W}comment"):
        text = "".join(t.text or "" for t in c.iter(f"{W}t"))
        result[int(c.get(f"{W}id"))] = (c.get(f"{W}author"), text)
    return result


def parse_paragraph(xml: str) -> etree._Element:
    """Parses a single <w:p> fragment written with the w: prefix."""
    wrapped = f'<w:body xmlns:w="{W_NS}" xmlns:m="http://schemas.openxmlformats.org/officeDocument/2006/math">{xml}</w:body>'
    return etree.fromstring(wrapped)[0]
