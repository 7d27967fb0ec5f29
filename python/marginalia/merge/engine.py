import json
from typing import Any, Iterable, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from marginalia.errors import InvalidCommentsError
from marginalia.merge.anchors import AnchorAllocator, find_anchor_node_index, insert_comment_anchor
from marginalia.merge.comments import CommentsManager, utc_timestamp
from marginalia.merge.mapper import ParagraphIndex, locate_anchor_start
from marginalia.models import (
    AnchorPlacement,
    CommentRecord,
    MatchResult,
    MergeConfig,
    MergeDetail,
    MergeOutcome,
    MergeReport,
)
from marginalia.normalize import clean_anchor_text
from marginalia.package import (
    CONTENT_TYPES_PART,
    DOCUMENT_PART,
    DOCUMENT_RELS_PART,
    EMPTY_RELATIONSHIPS_XML,
    DocxPackage,
    ensure_comments_content_type,
    ensure_comments_relationship,
    verify_docx_bytes,
)

logger = structlog.get_logger(__name__)

RecordsInput = Union[str, bytes, Iterable[Any]]


def load_comment_records(raw: RecordsInput) -> List[CommentRecord]:
    """
    Accepts a JSON document (str/bytes) or an already-decoded list.
    The top level must be an array; entries that are not objects become
    empty records, which the merge skips.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidCommentsError(f"Comments JSON could not be parsed: {e}") from e

    if not isinstance(raw, list):
        raise InvalidCommentsError("Comments JSON must be an array.")

    records = []
    for i, item in enumerate(raw):
        if isinstance(item, CommentRecord):
            records.append(item)
            continue
        if not isinstance(item, dict):
            logger.warning("Comment entry is not an object", index=i)
            item = {}
        try:
            records.append(CommentRecord.model_validate(item))
        except ValidationError as e:
            raise InvalidCommentsError(f"Comment entry {i} is invalid: {e}") from e
    return records


class CommentMergeEngine:
    """
    Merges reviewer comments into one DOCX package.

    Usage:
        engine = CommentMergeEngine(docx_bytes)
        report = engine.merge(records)
        data = engine.save_to_bytes()
    """

    def __init__(self, docx_bytes: bytes, config: Optional[MergeConfig] = None):
        self.config = config or MergeConfig()
        self.package = DocxPackage.from_bytes(docx_bytes)

        # Both required parts are checked before any mutation
        self.document_part = self.package.load_xml_part(DOCUMENT_PART)
        self.content_types_part = self.package.load_xml_part(CONTENT_TYPES_PART)

        self.paragraphs = ParagraphIndex.from_document(self.document_part.root)
        self.comments_manager = CommentsManager(self.package)
        self.allocator = AnchorAllocator()
        self.timestamp = self.config.timestamp or utc_timestamp()
        self.report = MergeReport()

    def _preview(self, text: str) -> str:
        return clean_anchor_text(text)[: self.config.preview_length]

    def match(self, anchor_text: str) -> MatchResult:
        return self.paragraphs.find_best_paragraph(anchor_text)

    def locate(self, match: MatchResult, anchor_text: str) -> AnchorPlacement:
        """
        Position search plus anchor node selection, without claiming the node.
        A failed position search anchors at offset 0.
        """
        paragraph = self.paragraphs.paragraph(match.paragraph_index)
        paragraph_text = self.paragraphs.text(match.paragraph_index)

        approx_start, start_method = locate_anchor_start(paragraph_text, anchor_text, self.config)
        node_index = find_anchor_node_index(paragraph, approx_start if approx_start is not None else 0)
        return AnchorPlacement(approx_char_offset=approx_start, start_method=start_method, anchor_node_index=node_index)

    def place(self, match: MatchResult, anchor_text: str) -> AnchorPlacement:
        placement = self.locate(match, anchor_text)
        claimed = self.allocator.claim(match.paragraph_index, placement.anchor_node_index)
        return placement._replace(anchor_node_index=claimed)

    def preview(self, anchor_text: str) -> Tuple[MatchResult, Optional[AnchorPlacement]]:
        """Dry-run for one anchor: does not claim nodes or mutate the document."""
        match = self.match(anchor_text)
        if match.paragraph_index < 0:
            return match, None
        return match, self.locate(match, anchor_text)

    def _comment_body(self, record: CommentRecord) -> str:
        prefix = f"[{record.edit_type_label}] " if record.edit_type_label else ""
        return f"{prefix}{record.comment_text}"

    def _author(self, record: CommentRecord) -> str:
        return (record.author or "").strip() or self.config.default_author

    def merge_record(self, index: int, record: CommentRecord) -> MergeDetail:
        match = self.match(record.anchor_text)
        if match.paragraph_index < 0:
            logger.warning("No paragraph matched anchor, skipping", index=index, anchor=self._preview(record.anchor_text))
            return MergeDetail(
                index=index,
                merged=False,
                score=match.score,
                anchor_preview=self._preview(record.anchor_text),
                target_preview="",
                method=match.method,
            )

        comment_id = self.comments_manager.allocate_id()
        self.comments_manager.add_comment(comment_id, self._author(record), self._comment_body(record), self.timestamp)

        placement = self.place(match, record.anchor_text)
        paragraph = self.paragraphs.paragraph(match.paragraph_index)
        insert_comment_anchor(paragraph, comment_id, placement.anchor_node_index)

        logger.info(
            "Merged comment",
            index=index,
            comment_id=comment_id,
            paragraph=match.paragraph_index,
            score=match.score,
            start_method=placement.start_method,
            anchor_node_index=placement.anchor_node_index,
        )
        return MergeDetail(
            index=index,
            merged=True,
            score=match.score,
            anchor_preview=self._preview(record.anchor_text),
            target_preview=self._preview(self.paragraphs.text(match.paragraph_index)),
            method=match.method,
            approx_start=placement.approx_char_offset,
            anchor_node_index=placement.anchor_node_index,
            start_method=placement.start_method,
            comment_id=comment_id,
        )

    def merge(self, records: RecordsInput) -> MergeReport:
        """
        Merges a batch of records. Repeated calls extend the same report:
        detail indices keep counting from the previous batch, so `index`
        always matches the record's position among all records seen.
        """
        records = load_comment_records(records)
        logger.info("Merging comments", records=len(records), paragraphs=len(self.paragraphs))

        offset = self.report.total_count
        for i, record in enumerate(records, start=offset):
            detail = self.merge_record(i, record)
            self.report.details.append(detail)
            if detail.merged:
                self.report.merged_count += 1
        self.report.total_count += len(records)

        logger.info("Merge finished", merged=self.report.merged_count, total=self.report.total_count)
        return self.report

    def _finalize_package(self):
        """
        Manifest fix-ups and re-serialization, once per run.
        Only parts that changed (or were synthesized) are rewritten.
        """
        if ensure_comments_content_type(self.content_types_part.root):
            self.package.store_xml_part(self.content_types_part)

        rels_part = self.package.load_xml_part(DOCUMENT_RELS_PART, default_xml=EMPTY_RELATIONSHIPS_XML)
        _, rel_created = ensure_comments_relationship(rels_part.root)
        if rel_created or rels_part.created:
            self.package.store_xml_part(rels_part)

        if self.report.merged_count:
            self.package.store_xml_part(self.document_part)
        if self.comments_manager.dirty:
            self.comments_manager.save()

    def save_to_bytes(self) -> bytes:
        self._finalize_package()
        data = self.package.to_bytes()
        verify_docx_bytes(data)
        return data


def merge_comments(docx_bytes: bytes, records: RecordsInput, config: Optional[MergeConfig] = None) -> MergeOutcome:
    """
    Pure transform: input package bytes + comment records -> output bytes + report.
    Records are validated before the package is opened, so a malformed records
    input fails without touching the document.
    """
    records = load_comment_records(records)
    engine = CommentMergeEngine(docx_bytes, config=config)
    report = engine.merge(records)
    return MergeOutcome(docx_bytes=engine.save_to_bytes(), report=report)
