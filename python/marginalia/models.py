from dataclasses import dataclass
from typing import List, Literal, NamedTuple, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

StartMethod = Literal["substring", "prefix", "fuzzy", "none"]


class CommentRecord(BaseModel):
    """
    A single reviewer comment to attach near `anchor_text`.
    Both snake_case and camelCase keys are accepted on input.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    anchor_text: str = Field(
        "",
        validation_alias=AliasChoices("anchor_text", "anchorText"),
        description="Short phrase used to find the paragraph the comment belongs to.",
    )
    comment_text: str = Field(
        "",
        validation_alias=AliasChoices("comment_text", "commentText"),
        description="Body of the comment bubble.",
    )
    author: Optional[str] = Field(None, description="Comment author. Defaults to the configured reviewer label.")
    edit_type_label: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("edit_type_label", "editTypeLabel"),
        description="Optional category rendered as a '[label] ' prefix on the comment body.",
    )

    @field_validator("anchor_text", "comment_text", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class MergeConfig(BaseModel):
    """Tunables for matching and insertion. Defaults reproduce the reference merge behaviour."""

    default_author: str = "Reviewer"
    preview_length: int = 80

    # Stage A position search
    prefix_length: int = 80
    min_prefix_length: int = 12
    scan_sample_length: int = 220
    min_window_length: int = 80
    max_window_length: int = 260
    scan_step: int = Field(5, ge=1)
    min_fuzzy_score: int = 60
    exact_fuzzy_score: int = 98

    # Fixed ISO-8601 date for every new comment; None means "now" (UTC).
    timestamp: Optional[str] = None


class MatchResult(NamedTuple):
    paragraph_index: int
    score: int
    method: str


class AnchorPlacement(NamedTuple):
    approx_char_offset: Optional[int]
    start_method: StartMethod
    anchor_node_index: int


class MergeDetail(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    index: int
    merged: bool
    score: int
    anchor_preview: str
    target_preview: str
    method: str
    approx_start: Optional[int] = None
    anchor_node_index: int = -1
    start_method: StartMethod = "none"
    comment_id: Optional[int] = None


class MergeReport(BaseModel):
    """
    Per-run summary. Every input record has a detail entry;
    skipped records carry merged=False.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    merged_count: int = 0
    total_count: int = 0
    details: List[MergeDetail] = Field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return self.total_count - self.merged_count

    @property
    def status(self) -> str:
        """
        'empty'        no records were supplied
        'none_matched' records were supplied but none found a paragraph
        'partial'      some records were merged
        'complete'     every record was merged
        """
        if self.total_count == 0:
            return "empty"
        if self.merged_count == 0:
            return "none_matched"
        if self.merged_count < self.total_count:
            return "partial"
        return "complete"

    def summary(self) -> str:
        text = f"Merged {self.merged_count} of {self.total_count} comment(s)."
        if self.skipped_count:
            text += f" {self.skipped_count} had no sufficiently similar text."
        return text


@dataclass
class MergeOutcome:
    """Result of a merge: the new package bytes plus its report."""

    docx_bytes: bytes
    report: MergeReport
