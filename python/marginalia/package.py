"""
Zip-level access to a DOCX package.

Parts are held as raw bytes and only parsed on demand. Untouched parts are
written back byte-identical with their original zip entry metadata; parts we
re-serialize keep the XML declaration they were read with.
"""

import re
import zipfile
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Optional, Tuple, Union

import structlog
from docx.opc.constants import CONTENT_TYPE as CT
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from lxml import etree

from marginalia.errors import InvalidPackageError, OutputCorruptError, PartMissingError
from marginalia.utils.docx import W_NS

logger = structlog.get_logger(__name__)

CONTENT_TYPES_PART = "[Content_Types].xml"
PACKAGE_RELS_PART = "_rels/.rels"
DOCUMENT_PART = "word/document.xml"
DOCUMENT_RELS_PART = "word/_rels/document.xml.rels"
COMMENTS_PART = "word/comments.xml"

CONTENT_TYPES_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
RELATIONSHIPS_NS = "http://schemas.openxmlformats.org/package/2006/relationships"

DEFAULT_XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'

EMPTY_COMMENTS_XML = f'{DEFAULT_XML_DECLARATION}<w:comments xmlns:w="{W_NS}"></w:comments>'
EMPTY_RELATIONSHIPS_XML = f'{DEFAULT_XML_DECLARATION}<Relationships xmlns="{RELATIONSHIPS_NS}"></Relationships>'

REQUIRED_OUTPUT_PARTS = (
    CONTENT_TYPES_PART,
    PACKAGE_RELS_PART,
    DOCUMENT_PART,
    DOCUMENT_RELS_PART,
    COMMENTS_PART,
)

_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)
_ENCODING_RE = re.compile(r"""encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")
_RID_RE = re.compile(r"^rId(\d+)$")

# Zip entry date for synthesized parts when the input has no document.xml entry
DEFAULT_ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, huge_tree=True)


def declared_encoding(declaration: Optional[str]) -> str:
    """Encoding named by an XML declaration; UTF-8 when there is none."""
    match = _ENCODING_RE.search(declaration or "")
    return match.group(1).lower() if match else "utf-8"


def _decode(data: bytes, name: str) -> str:
    # Declarations are ASCII in every encoding Word writes
    head = data[:200].decode("ascii", errors="ignore")
    encoding = declared_encoding(extract_xml_declaration(head))
    if encoding.replace("-", "") == "utf8":
        encoding = "utf-8-sig"
    try:
        return data.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise InvalidPackageError(f"{name} is not readable as {encoding} text.") from e


def extract_xml_declaration(text: str) -> Optional[str]:
    match = _DECLARATION_RE.match(text)
    return match.group(0).strip() if match else None


def parse_xml_or_raise(text: Union[str, bytes], label: str, error_cls=InvalidPackageError) -> etree._Element:
    if isinstance(text, str):
        # Already decoded: the declaration's encoding no longer applies
        text = _DECLARATION_RE.sub("", text, count=1).encode("utf-8")
    try:
        return etree.fromstring(text, _xml_parser())
    except etree.XMLSyntaxError as e:
        raise error_cls(f"Could not parse {label}.") from e


def serialize_with_declaration(root: etree._Element, declaration: Optional[str]) -> str:
    """
    Serializes `root` and prefixes the given declaration (or the OOXML default).
    Any declaration lxml emits is stripped first so the output never carries two.
    """
    body = etree.tostring(root.getroottree(), encoding="unicode")
    body = _DECLARATION_RE.sub("", body, count=1).lstrip()
    header = declaration or DEFAULT_XML_DECLARATION
    return f"{header}\n{body}"


@dataclass
class XmlPart:
    name: str
    root: etree._Element
    declaration: Optional[str]
    created: bool = False


class DocxPackage:
    """
    In-memory view of one DOCX zip. Owned by a single merge call.
    """

    def __init__(self, parts: Dict[str, bytes], infos: Dict[str, zipfile.ZipInfo]):
        self._parts = parts
        self._infos = infos

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxPackage":
        try:
            with zipfile.ZipFile(BytesIO(data)) as zf:
                parts: Dict[str, bytes] = {}
                infos: Dict[str, zipfile.ZipInfo] = {}
                for info in zf.infolist():
                    parts[info.filename] = zf.read(info)
                    infos[info.filename] = info
        except zipfile.BadZipFile as e:
            raise InvalidPackageError("This file is not a valid DOCX (zip) package.") from e

        logger.debug("Opened package", parts=len(parts))
        return cls(parts, infos)

    def has_part(self, name: str) -> bool:
        return name in self._parts

    def read_part_bytes(self, name: str) -> bytes:
        try:
            return self._parts[name]
        except KeyError:
            raise PartMissingError(name) from None

    def read_part(self, name: str) -> str:
        return _decode(self.read_part_bytes(name), name)

    def write_part(self, name: str, content: Union[str, bytes]):
        if isinstance(content, str):
            content = content.encode("utf-8")
        self._parts[name] = content

    def load_xml_part(self, name: str, default_xml: Optional[str] = None) -> XmlPart:
        """
        Parses a part. When the part is absent, `default_xml` is parsed instead;
        with no default the part is required and PartMissingError is raised.
        """
        created = False
        if self.has_part(name):
            text = self.read_part(name)
        elif default_xml is not None:
            logger.info("Part missing, synthesizing empty document", part=name)
            text = default_xml
            created = True
        else:
            raise PartMissingError(name)

        root = parse_xml_or_raise(text, name)
        return XmlPart(name=name, root=root, declaration=extract_xml_declaration(text), created=created)

    def store_xml_part(self, part: XmlPart):
        """Re-serializes a part in the encoding its declaration names."""
        text = serialize_with_declaration(part.root, part.declaration)
        self.write_part(part.name, text.encode(declared_encoding(part.declaration), errors="xmlcharrefreplace"))

    def _new_entry_date_time(self) -> Tuple[int, int, int, int, int, int]:
        reference = self._infos.get(DOCUMENT_PART)
        return reference.date_time if reference is not None else DEFAULT_ZIP_DATE_TIME

    def to_bytes(self) -> bytes:
        output = BytesIO()
        with zipfile.ZipFile(output, "w", zipfile.ZIP_DEFLATED) as out_zip:
            for name, data in self._parts.items():
                original = self._infos.get(name)
                if original is None:
                    # Synthesized parts reuse the date of the document.xml entry
                    info = zipfile.ZipInfo(name, date_time=self._new_entry_date_time())
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = 0o600 << 16
                else:
                    info = zipfile.ZipInfo(name, date_time=original.date_time)
                    info.compress_type = original.compress_type
                    info.external_attr = original.external_attr
                    info.comment = original.comment
                out_zip.writestr(info, data)
        return output.getvalue()


def ensure_comments_content_type(content_types_root: etree._Element) -> bool:
    """Adds the comments Override if missing. Returns True when the tree changed."""
    part_name = f"/{COMMENTS_PART}"
    for el in content_types_root.iter(f"{{{CONTENT_TYPES_NS}}}Override"):
        if el.get("PartName") == part_name:
            return False

    override = etree.SubElement(content_types_root, f"{{{CONTENT_TYPES_NS}}}Override")
    override.set("PartName", part_name)
    override.set("ContentType", CT.WML_COMMENTS)
    logger.info("Declared comments part in content types", part_name=part_name)
    return True


def ensure_comments_relationship(rels_root: etree._Element) -> Tuple[str, bool]:
    """
    Returns (Id, created) for the document's comments relationship,
    creating it when missing.
    """
    relationships = list(rels_root.iter(f"{{{RELATIONSHIPS_NS}}}Relationship"))

    for rel in relationships:
        if rel.get("Type") == RT.COMMENTS:
            return rel.get("Id") or "rIdComments", False

    max_num = 0
    for rel in relationships:
        match = _RID_RE.match(rel.get("Id") or "")
        if match:
            max_num = max(max_num, int(match.group(1)))

    new_id = f"rId{max_num + 1}"
    rel = etree.SubElement(rels_root, f"{{{RELATIONSHIPS_NS}}}Relationship")
    rel.set("Id", new_id)
    rel.set("Type", RT.COMMENTS)
    rel.set("Target", "comments.xml")
    logger.info("Created comments relationship", rel_id=new_id)
    return new_id, True


def verify_docx_bytes(data: bytes):
    """
    Re-opens generated package bytes and re-parses every required part.
    Raises OutputCorruptError on the first problem.
    """
    if len(data) < 2 or data[:2] != b"PK":
        raise OutputCorruptError("Generated file was not a valid DOCX (zip header missing).")

    try:
        with zipfile.ZipFile(BytesIO(data)) as zf:
            names = set(zf.namelist())
            missing = [name for name in REQUIRED_OUTPUT_PARTS if name not in names]
            if missing:
                raise OutputCorruptError(f"Generated file was missing required DOCX parts: {', '.join(missing)}")

            for name in REQUIRED_OUTPUT_PARTS:
                parse_xml_or_raise(zf.read(name), f"{name} (output)", error_cls=OutputCorruptError)
    except zipfile.BadZipFile as e:
        raise OutputCorruptError("Generated file could not be re-opened as a zip.") from e

    logger.debug("Verified output package", size=len(data))
