"""
Tests for the marginalia command line.

Run: pytest python/test_cli.py
"""

import json
import sys
from pathlib import Path

import pytest
import structlog

from _docx_fixtures import all_comments, comments_xml, document_xml, make_docx, paragraph, run
from marginalia import cli

FOX = "The quick brown fox jumps over the lazy dog."


@pytest.fixture(autouse=True)
def _reset_structlog():
    # configure_logging binds the captured stderr of the running test
    yield
    structlog.reset_defaults()


def _run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["marginalia", *[str(a) for a in argv]])
    cli.main()


def _write_inputs(tmp_path, records, **docx_kwargs):
    docx_path = tmp_path / "story.docx"
    docx_path.write_bytes(make_docx(document_xml(paragraph(run(FOX)), paragraph(run("Second line."))), **docx_kwargs))
    comments_path = tmp_path / "comments.json"
    comments_path.write_text(json.dumps(records), encoding="utf-8")
    return docx_path, comments_path


def test_default_output_path():
    assert cli.default_output_path(Path("/tmp/story.docx")) == Path("/tmp/story_merged.docx")
    assert cli.default_output_path(Path("/tmp/story_merged.docx")) == Path("/tmp/story_merged.docx")


def test_merge_writes_output_and_json_report(tmp_path, monkeypatch, capsys):
    docx_path, comments_path = _write_inputs(
        tmp_path, [{"anchor_text": "lazy dog", "comment_text": "good ending", "author": "Kate"}]
    )

    _run_cli(monkeypatch, "merge", docx_path, comments_path, "--json", "--timestamp", "2025-01-01T00:00:00Z")

    out_path = tmp_path / "story_merged.docx"
    assert out_path.exists()
    assert list(all_comments(out_path.read_bytes()).values()) == [("Kate", "good ending")]

    captured = capsys.readouterr()
    report = json.loads(captured.out)
    assert report["mergedCount"] == 1
    assert report["details"][0]["startMethod"] == "substring"
    assert "Merged 1 of 1 comment(s)." in captured.err


def test_merge_author_flag_and_explicit_output(tmp_path, monkeypatch):
    docx_path, comments_path = _write_inputs(tmp_path, [{"anchor_text": "Second line", "comment_text": "ok"}])
    out_path = tmp_path / "out.docx"

    _run_cli(monkeypatch, "merge", docx_path, comments_path, "-o", out_path, "--author", "Editor")

    assert list(all_comments(out_path.read_bytes()).values()) == [("Editor", "ok")]


def test_partial_merge_exits_with_partial_code(tmp_path, monkeypatch):
    docx_path, comments_path = _write_inputs(
        tmp_path, [{"anchor_text": "quick brown", "comment_text": "a"}, {"anchor_text": "", "comment_text": "b"}]
    )

    with pytest.raises(SystemExit) as exc:
        _run_cli(monkeypatch, "merge", docx_path, comments_path)
    assert exc.value.code == cli.EXIT_PARTIAL
    assert (tmp_path / "story_merged.docx").exists()


def test_invalid_comments_json_exits_with_error(tmp_path, monkeypatch, capsys):
    docx_path, comments_path = _write_inputs(tmp_path, [])
    comments_path.write_text('{"anchor_text": "not an array"}', encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        _run_cli(monkeypatch, "merge", docx_path, comments_path)
    assert exc.value.code == cli.EXIT_INVALID
    assert "must be an array" in capsys.readouterr().err
    assert not (tmp_path / "story_merged.docx").exists()


def test_missing_input_file_exits_with_error(tmp_path, monkeypatch):
    _, comments_path = _write_inputs(tmp_path, [])

    with pytest.raises(SystemExit) as exc:
        _run_cli(monkeypatch, "merge", tmp_path / "nope.docx", comments_path)
    assert exc.value.code == cli.EXIT_INVALID


def test_paragraphs_lists_texts(tmp_path, monkeypatch, capsys):
    docx_path, _ = _write_inputs(tmp_path, [])

    _run_cli(monkeypatch, "paragraphs", docx_path, "--json")

    listing = json.loads(capsys.readouterr().out)
    assert listing == [{"index": 0, "text": FOX}, {"index": 1, "text": "Second line."}]


def test_locate_reports_placement_without_writing(tmp_path, monkeypatch, capsys):
    docx_path, _ = _write_inputs(tmp_path, [])
    original = docx_path.read_bytes()

    _run_cli(monkeypatch, "locate", docx_path, "brown fox")

    result = json.loads(capsys.readouterr().out)
    assert result["paragraphIndex"] == 0
    assert result["approxStart"] == FOX.index("brown")
    assert result["startMethod"] == "substring"
    assert docx_path.read_bytes() == original


def test_comments_lists_existing_comments(tmp_path, monkeypatch, capsys):
    docx_path, _ = _write_inputs(tmp_path, [], comments=comments_xml(4))

    _run_cli(monkeypatch, "comments", docx_path, "--json")

    data = json.loads(capsys.readouterr().out)
    assert data == {"4": {"author": "Old", "date": "2024-01-01T00:00:00Z", "text": "existing 4"}}


def test_undecodable_part_exits_with_error(tmp_path, monkeypatch, capsys):
    docx_path, comments_path = _write_inputs(tmp_path, [{"anchor_text": "fox", "comment_text": "x"}])
    bad = document_xml(paragraph(run("caf"))).encode("utf-8").replace(b"caf", b"caf\xe9")
    docx_path.write_bytes(make_docx(bad))

    with pytest.raises(SystemExit) as exc:
        _run_cli(monkeypatch, "merge", docx_path, comments_path)
    assert exc.value.code == cli.EXIT_INVALID
    assert "Error: word/document.xml is not readable" in capsys.readouterr().err
