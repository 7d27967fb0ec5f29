import datetime
from typing import Dict, Optional

import structlog
from docx.oxml.ns import qn
from lxml import etree

from marginalia.package import COMMENTS_PART, EMPTY_COMMENTS_XML, DocxPackage, XmlPart
from marginalia.utils.docx import create_attribute, create_element

logger = structlog.get_logger(__name__)


def utc_timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_initials(author: str) -> str:
    if not author:
        return ""
    return "".join(part[0] for part in author.split() if part).upper()


class CommentsManager:
    """
    Manages the 'word/comments.xml' part of a DocxPackage.
    The part is created empty when the package has none.
    """

    def __init__(self, package: DocxPackage):
        self.package = package
        self.part: XmlPart = package.load_xml_part(COMMENTS_PART, default_xml=EMPTY_COMMENTS_XML)
        self.root = self._find_comments_root()
        self.dirty = self.part.created
        # Computed once; every new comment takes the next value, never reused
        self.next_id = self.get_max_comment_id() + 1
        logger.debug("Initialized CommentsManager", created=self.part.created, next_id=self.next_id)

    def _find_comments_root(self) -> etree._Element:
        root = self.part.root
        if root.tag == qn("w:comments"):
            return root
        nested = next(root.iter(qn("w:comments")), None)
        return nested if nested is not None else root

    def get_max_comment_id(self) -> int:
        max_id = 0
        for c in self.part.root.iter(qn("w:comment")):
            try:
                max_id = max(max_id, int(c.get(qn("w:id"))))
            except (ValueError, TypeError):
                pass
        return max_id

    def allocate_id(self) -> int:
        comment_id = self.next_id
        self.next_id += 1
        return comment_id

    def add_comment(self, comment_id: int, author: str, text: str, date: Optional[str] = None) -> etree._Element:
        """
        Appends a w:comment whose body is one paragraph:
        an annotationRef run followed by the comment text run.
        """
        comment = create_element("w:comment")
        create_attribute(comment, "w:id", str(comment_id))
        create_attribute(comment, "w:author", author)
        create_attribute(comment, "w:date", date or utc_timestamp())
        initials = get_initials(author)
        if initials:
            create_attribute(comment, "w:initials", initials)

        p = create_element("w:p")

        r_ref = create_element("w:r")
        rPr_ref = create_element("w:rPr")
        rStyle_ref = create_element("w:rStyle")
        create_attribute(rStyle_ref, "w:val", "CommentReference")
        rPr_ref.append(rStyle_ref)
        r_ref.append(rPr_ref)
        r_ref.append(create_element("w:annotationRef"))
        p.append(r_ref)

        r = create_element("w:r")
        t = create_element("w:t")
        create_attribute(t, "xml:space", "preserve")
        t.text = text
        r.append(t)
        p.append(r)

        comment.append(p)
        self.root.append(comment)
        self.dirty = True
        logger.debug("Added comment", comment_id=comment_id, author=author)
        return comment

    def extract_comments_data(self) -> Dict[str, dict]:
        """Maps comment id -> {author, date, text} for every comment in the part."""
        data: Dict[str, dict] = {}
        for c in self.part.root.iter(qn("w:comment")):
            c_id = c.get(qn("w:id"))
            text_parts = []
            for p in c.iter(qn("w:p")):
                for t in p.iter(qn("w:t")):
                    if t.text:
                        text_parts.append(t.text)
                text_parts.append("\n")
            data[c_id] = {
                "author": c.get(qn("w:author")) or "Unknown",
                "date": c.get(qn("w:date")) or "",
                "text": "".join(text_parts).strip(),
            }
        return data

    def save(self):
        self.package.store_xml_part(self.part)
