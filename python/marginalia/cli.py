import argparse
import json
import logging
import sys
from pathlib import Path

from marginalia import __version__
from marginalia.errors import MarginaliaError
from marginalia.log import configure_logging
from marginalia.merge.engine import CommentMergeEngine, load_comment_records
from marginalia.models import MergeConfig

EXIT_INVALID = 1
EXIT_PARTIAL = 2


def _read_bytes(path: Path) -> bytes:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(EXIT_INVALID)
    with open(path, "rb") as f:
        return f.read()


def _open_engine(path: Path, config: MergeConfig = None) -> CommentMergeEngine:
    try:
        return CommentMergeEngine(_read_bytes(path), config=config)
    except MarginaliaError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_INVALID)


def default_output_path(original: Path) -> Path:
    if original.stem.endswith("_merged"):
        return original
    return original.with_name(f"{original.stem}_merged.docx")


def handle_merge(args):
    config = MergeConfig(default_author=args.author, timestamp=args.timestamp)

    try:
        with open(args.comments, "r", encoding="utf-8") as f:
            records = load_comment_records(f.read())
    except FileNotFoundError:
        print(f"Error: File not found: {args.comments}", file=sys.stderr)
        sys.exit(EXIT_INVALID)
    except MarginaliaError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_INVALID)

    engine = _open_engine(args.original, config)
    print(f"Merging {len(records)} comment(s)...", file=sys.stderr)
    report = engine.merge(records)

    try:
        data = engine.save_to_bytes()
    except MarginaliaError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_INVALID)

    output_path = args.output or default_output_path(args.original)
    with open(output_path, "wb") as f:
        f.write(data)

    if args.json:
        print(json.dumps(report.model_dump(by_alias=True), indent=2))

    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(report.summary(), file=sys.stderr)
    if report.status in ("partial", "none_matched"):
        sys.exit(EXIT_PARTIAL)


def handle_paragraphs(args):
    engine = _open_engine(args.input)
    index = engine.paragraphs
    if args.json:
        print(json.dumps([{"index": i, "text": index.text(i)} for i in range(len(index))], indent=2))
        return
    for i in range(len(index)):
        text = index.text(i)
        if text.strip() or args.all:
            print(f"[{i}] {text}")


def handle_locate(args):
    engine = _open_engine(args.input)
    match, placement = engine.preview(args.anchor)
    if placement is None:
        print("No paragraph matched.", file=sys.stderr)
        sys.exit(EXIT_PARTIAL)

    result = {
        "paragraphIndex": match.paragraph_index,
        "score": match.score,
        "method": match.method,
        "approxStart": placement.approx_char_offset,
        "startMethod": placement.start_method,
        "anchorNodeIndex": placement.anchor_node_index,
        "targetPreview": engine.paragraphs.text(match.paragraph_index)[:80],
    }
    print(json.dumps(result, indent=2))


def handle_comments(args):
    engine = _open_engine(args.input)
    data = engine.comments_manager.extract_comments_data()
    if args.json:
        print(json.dumps(data, indent=2))
        return
    for c_id, info in data.items():
        print(f"[Com:{c_id}] {info['author']} ({info['date']}): {info['text']}")


def main():
    parser = argparse.ArgumentParser(prog="marginalia", description="Marginalia: merge reviewer comments into DOCX")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Log matching decisions to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_merge = subparsers.add_parser("merge", help="Insert native comments from a JSON file into a DOCX")
    p_merge.add_argument("original", type=Path, help="Original DOCX")
    p_merge.add_argument("comments", type=Path, help="JSON array of {anchor_text, comment_text, author, edit_type_label}")
    p_merge.add_argument("-o", "--output", type=Path, help="Output DOCX path (default: <original>_merged.docx)")
    p_merge.add_argument(
        "--author",
        type=str,
        default=MergeConfig().default_author,
        help="Author for comments that do not name one (default: '%(default)s')",
    )
    p_merge.add_argument("--timestamp", type=str, default=None, help="ISO-8601 date stamped on every new comment")
    p_merge.add_argument("--json", action="store_true", help="Print the merge report as JSON on stdout")
    p_merge.set_defaults(func=handle_merge)

    p_paragraphs = subparsers.add_parser("paragraphs", help="List the paragraph texts anchors are matched against")
    p_paragraphs.add_argument("input", type=Path, help="Input DOCX")
    p_paragraphs.add_argument("--all", action="store_true", help="Include blank paragraphs")
    p_paragraphs.add_argument("--json", action="store_true", help="Output JSON")
    p_paragraphs.set_defaults(func=handle_paragraphs)

    p_locate = subparsers.add_parser("locate", help="Dry-run: show where an anchor would attach")
    p_locate.add_argument("input", type=Path, help="Input DOCX")
    p_locate.add_argument("anchor", type=str, help="Anchor text")
    p_locate.set_defaults(func=handle_locate)

    p_comments = subparsers.add_parser("comments", help="List comments already present in a DOCX")
    p_comments.add_argument("input", type=Path, help="Input DOCX")
    p_comments.add_argument("--json", action="store_true", help="Output JSON")
    p_comments.set_defaults(func=handle_comments)

    args = parser.parse_args()
    configure_logging(logging.INFO if args.verbose else logging.WARNING)
    args.func(args)


if __name__ == "__main__":
    main()
