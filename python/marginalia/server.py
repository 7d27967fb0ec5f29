import json
import logging
from pathlib import Path
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from marginalia.log import configure_logging
from marginalia.merge.engine import CommentMergeEngine
from marginalia.models import CommentRecord, MergeConfig

# --- LOGGING CONFIGURATION ---
# MCP communicates over stdio; all logs must go to stderr.
configure_logging(logging.INFO, json_output=True)

mcp = FastMCP("Marginalia Comment Merge Service")


def _read_file_bytes(path: str) -> bytes:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(p, "rb") as f:
        return f.read()


@mcp.tool()
def merge_comments_into_docx(
    docx_path: str,
    comments: List[CommentRecord],
    default_author: str = "Reviewer",
    output_path: Optional[str] = None,
) -> str:
    """
    Inserts native Word comments into an existing DOCX.

    Each comment names a short `anchor_text`; the tool finds the paragraph that best
    matches it (fuzzy partial-ratio), attaches the comment near the matching position
    and saves a copy that opens in Word, Google Docs and Pages.

    Args:
        docx_path: Absolute path to the source DOCX.
        comments: Records with anchor_text, comment_text, optional author and edit_type_label.
        default_author: Author used for records that do not name one.
        output_path: Optional. Defaults to '<name>_merged.docx' next to the source.
    """
    try:
        engine = CommentMergeEngine(_read_file_bytes(docx_path), config=MergeConfig(default_author=default_author))
        report = engine.merge(comments)
        data = engine.save_to_bytes()

        if not output_path:
            p = Path(docx_path)
            output_path = str(p.parent / f"{p.stem}_merged{p.suffix}")

        with open(output_path, "wb") as f:
            f.write(data)

        return f"{report.summary()} Saved to: {output_path}\n{json.dumps(report.model_dump(by_alias=True), indent=2)}"

    except Exception as e:
        return f"Error merging comments: {str(e)}"


@mcp.tool()
def preview_anchor_match(docx_path: str, anchor_text: str) -> str:
    """
    Shows which paragraph an anchor would attach to, and how precisely, without writing anything.
    """
    try:
        engine = CommentMergeEngine(_read_file_bytes(docx_path))
        match, placement = engine.preview(anchor_text)
        if placement is None:
            return "No paragraph matched this anchor."
        return (
            f"Paragraph {match.paragraph_index} (score {match.score}, {match.method}); "
            f"start {placement.approx_char_offset} via {placement.start_method}; "
            f"anchor node {placement.anchor_node_index}.\n"
            f"Text: {engine.paragraphs.text(match.paragraph_index)[:200]}"
        )
    except Exception as e:
        return f"Error previewing anchor: {str(e)}"


@mcp.tool()
def list_paragraphs(docx_path: str) -> str:
    """Returns the non-blank paragraph texts of a DOCX, numbered in document order."""
    try:
        engine = CommentMergeEngine(_read_file_bytes(docx_path))
        index = engine.paragraphs
        lines = [f"[{i}] {index.text(i)}" for i in range(len(index)) if index.text(i).strip()]
        return "\n".join(lines) or "The document has no text paragraphs."
    except Exception as e:
        return f"Error reading file: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
