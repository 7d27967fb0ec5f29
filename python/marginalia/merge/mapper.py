from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog
from fuzzywuzzy import fuzz
from lxml import etree

from marginalia.models import MatchResult, MergeConfig, StartMethod
from marginalia.normalize import clean_anchor_text, normalize_for_indexing, normalize_for_search
from marginalia.utils.docx import build_paragraph_index

logger = structlog.get_logger(__name__)

MATCH_METHOD = "partial_ratio"


def score_match(anchor_text: str, paragraph_text: str) -> Tuple[int, str]:
    """
    Partial-ratio similarity on the raw strings.
    fuzz.partial_ratio applies no preprocessing, so anchors that differ only in
    punctuation or quotes are not folded into a false 100.
    """
    return fuzz.partial_ratio(anchor_text, paragraph_text), MATCH_METHOD


@dataclass
class ParagraphIndex:
    """
    Ordered paragraph handles and their text, captured before any mutation.
    The texts are snapshots: later insertions into a paragraph must not shift
    offsets used for records processed after it.
    """

    paragraphs: List[etree._Element] = field(default_factory=list)
    texts: List[str] = field(default_factory=list)

    @classmethod
    def from_document(cls, document_root: etree._Element) -> "ParagraphIndex":
        pairs = build_paragraph_index(document_root)
        return cls(paragraphs=[p for p, _ in pairs], texts=[t for _, t in pairs])

    def __len__(self) -> int:
        return len(self.paragraphs)

    def paragraph(self, index: int) -> etree._Element:
        return self.paragraphs[index]

    def text(self, index: int) -> str:
        return self.texts[index]

    def find_best_paragraph(self, anchor_text: str) -> MatchResult:
        """
        Highest partial-ratio paragraph for the anchor.
        Ties keep the earliest paragraph; blank paragraphs are never candidates.
        """
        clean_anchor = clean_anchor_text(anchor_text)
        if not clean_anchor:
            return MatchResult(paragraph_index=-1, score=0, method=MATCH_METHOD)

        best_index = -1
        best_score = 0
        best_method = MATCH_METHOD

        for i, text in enumerate(self.texts):
            if not text.strip():
                continue
            score, method = score_match(clean_anchor, text)
            if score > best_score:
                best_score = score
                best_index = i
                best_method = method

        logger.debug("Best paragraph match", anchor=clean_anchor[:40], index=best_index, score=best_score)
        return MatchResult(paragraph_index=best_index, score=best_score, method=best_method)


def _fuzzy_window_scan(norm_para: str, norm_anchor: str, config: MergeConfig) -> Tuple[int, int]:
    """Returns (best_pos, best_score) of a sliding-window partial-ratio scan."""
    needle = norm_anchor[: config.scan_sample_length]
    window_len = min(max(len(needle), config.min_window_length), config.max_window_length)

    best_score = 0
    best_pos = -1
    for pos in range(0, max(1, len(norm_para)), config.scan_step):
        window = norm_para[pos : pos + window_len]
        if not window:
            break
        score = fuzz.partial_ratio(needle, window)
        if score > best_score:
            best_score = score
            best_pos = pos
            if best_score >= config.exact_fuzzy_score:
                break

    return best_pos, best_score


def locate_anchor_start(
    paragraph_text: str, anchor_text: str, config: Optional[MergeConfig] = None
) -> Tuple[Optional[int], StartMethod]:
    """
    Approximates where `anchor_text` begins inside `paragraph_text`.

    Strategies, first hit wins:
      1. substring - normalized anchor found verbatim in normalized paragraph
      2. prefix    - leading slice of the normalized anchor found verbatim
      3. fuzzy     - best sliding window by partial ratio, above a threshold
    Returns (offset into the original paragraph text, method); (None, "none")
    when nothing is good enough.
    """
    config = config or MergeConfig()

    norm_para, norm_to_orig = normalize_for_indexing(paragraph_text)
    norm_anchor = normalize_for_search(anchor_text)
    if not norm_anchor or not norm_para:
        return None, "none"

    direct = norm_para.find(norm_anchor)
    if direct >= 0:
        return norm_to_orig[direct], "substring"

    prefix = norm_anchor[: config.prefix_length].strip()
    if len(prefix) >= config.min_prefix_length:
        idx = norm_para.find(prefix)
        if idx >= 0:
            return norm_to_orig[idx], "prefix"

    best_pos, best_score = _fuzzy_window_scan(norm_para, norm_anchor, config)
    if best_pos >= 0 and best_score >= config.min_fuzzy_score:
        return norm_to_orig[best_pos], "fuzzy"

    return None, "none"
