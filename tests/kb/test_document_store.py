"""
Unit tests for agent_workbench.kb.store

Covers normalization, HTML extraction, heading/size segmentation and
best-effort corpus loading.
"""

from __future__ import annotations

import os

import pytest

from agent_workbench.kb.store import (
    CorpusUnavailable,
    html_to_text,
    load_corpus,
    normalize_text,
    segment_text,
    walk_corpus,
)


def _write(root, rel_path: str, content, mode: str = "w") -> None:
    path = os.path.join(str(root), *rel_path.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    if mode == "wb":
        with open(path, "wb") as f:
            f.write(content)
    else:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

class TestNormalizeText:
    def test_strips_bom_and_unifies_line_endings(self):
        assert normalize_text("\ufeffa\r\nb\rc\n") == "a\nb\nc\n"

    def test_plain_text_unchanged(self):
        assert normalize_text("already\nclean\n") == "already\nclean\n"


class TestHtmlToText:
    def test_headings_become_markdown_and_scripts_are_dropped(self):
        html = (
            "<html><head><style>p { color: red }</style></head><body>"
            "<h1>Vectors</h1><p>Push items</p><script>var a = 1;</script>"
            "</body></html>"
        )
        assert html_to_text(html) == "# Vectors\n\nPush items"

    def test_nested_heading_levels(self):
        text = html_to_text("<h2>Usage</h2><p>one</p><h3>Details</h3><p>two</p>")
        assert text.split("\n\n") == ["## Usage", "one", "### Details", "two"]


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

class TestSegmentText:
    def test_splits_at_markdown_headings(self):
        text = "# Intro\nHello world\n\n## Usage\nRun the tool\n"
        segs = segment_text("doc", text)

        assert [s.heading for s in segs] == ["Intro", "Usage"]
        assert [s.segment_id for s in segs] == [0, 1]
        assert text[segs[0].start:segs[0].end] == "# Intro\nHello world"
        assert text[segs[1].start:segs[1].end] == "## Usage\nRun the tool"

    def test_preamble_before_first_heading(self):
        segs = segment_text("doc", "preamble words\n# Title\nbody words\n")
        assert [s.heading for s in segs] == ["", "Title"]

    def test_headings_inside_code_fences_are_ignored(self):
        text = "# Real\nintro text\n```\n# not a heading\n```\nmore text\n"
        segs = segment_text("doc", text)
        assert len(segs) == 1
        assert segs[0].heading == "Real"

    def test_restructuredtext_titles(self):
        text = "Install\n=======\n\nRun pip install.\n\nUsage\n-----\n\nCall the tool.\n"
        segs = segment_text("doc", text)
        assert [s.heading for s in segs] == ["Install", "Usage"]

    def test_unstructured_document_is_one_segment(self):
        segs = segment_text("doc", "Vec is a growable array. Vec supports push and pop.")
        assert len(segs) == 1
        assert segs[0].heading == ""
        assert segs[0].length == 7
        assert segs[0].terms["vec"] == 2

    def test_segments_are_bounded(self):
        paragraph = "alpha beta gamma delta epsilon zeta eta theta"
        text = "\n\n".join(f"{paragraph} {i}" for i in range(12))
        segs = segment_text("doc", text, max_segment_chars=120)

        assert len(segs) > 1
        for seg in segs:
            assert seg.end - seg.start <= 120

    def test_single_long_paragraph_is_split_at_whitespace(self):
        text = " ".join(f"word{i}" for i in range(100))
        segs = segment_text("doc", text, max_segment_chars=50)

        assert len(segs) > 1
        for seg in segs:
            piece = text[seg.start:seg.end]
            assert len(piece) <= 50
            assert not piece.startswith(" ")
            assert not piece.endswith(" ")

    def test_segment_without_terms_is_dropped(self):
        assert segment_text("doc", "# The\nthe and of\n") == ()

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            segment_text("doc", "text", max_segment_chars=0)


# ---------------------------------------------------------------------------
# Corpus loading
# ---------------------------------------------------------------------------

class TestWalkCorpus:
    def test_sorted_posix_paths_and_pruned_directories(self, tmp_path):
        _write(tmp_path, "b.md", "bee")
        _write(tmp_path, "guide/intro.md", "intro")
        _write(tmp_path, "a.txt", "aye")
        _write(tmp_path, ".hidden/secret.md", "hidden")
        _write(tmp_path, "node_modules/pkg/readme.md", "vendored")
        _write(tmp_path, "script.py", "print()")

        paths = walk_corpus(str(tmp_path), (".md", ".txt"))
        assert paths == ["a.txt", "b.md", "guide/intro.md"]


class TestLoadCorpus:
    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(CorpusUnavailable):
            load_corpus(str(tmp_path / "nope"))

    def test_file_root_raises(self, tmp_path):
        _write(tmp_path, "file.md", "text")
        with pytest.raises(CorpusUnavailable):
            load_corpus(str(tmp_path / "file.md"))

    def test_loads_documents_in_order(self, tmp_path):
        _write(tmp_path, "vec.md", "# Vec\nVec is a growable array.\n")
        _write(tmp_path, "guide/hashmap.md", "# HashMap\nA hash map.\n")

        corpus = load_corpus(str(tmp_path))
        assert [d.doc_id for d in corpus.documents] == ["guide/hashmap.md", "vec.md"]
        assert corpus.documents[1].title == "Vec"
        assert corpus.warnings == ()

    def test_title_falls_back_to_file_stem(self, tmp_path):
        _write(tmp_path, "plain.txt", "just some words here")
        corpus = load_corpus(str(tmp_path))
        assert corpus.documents[0].title == "plain"

    def test_bom_and_crlf_are_normalized(self, tmp_path):
        _write(tmp_path, "win.md", b"\xef\xbb\xbf# Title\r\nline one\r\n", mode="wb")
        doc = load_corpus(str(tmp_path)).documents[0]
        assert doc.text == "# Title\nline one\n"
        assert doc.title == "Title"

    def test_undecodable_file_is_skipped_with_warning(self, tmp_path):
        _write(tmp_path, "good.md", "good words")
        _write(tmp_path, "bad.md", b"\xff\xfe\xfa broken", mode="wb")

        corpus = load_corpus(str(tmp_path))
        assert [d.doc_id for d in corpus.documents] == ["good.md"]
        assert len(corpus.warnings) == 1
        assert "bad.md" in corpus.warnings[0]

    def test_empty_documents_are_skipped(self, tmp_path):
        _write(tmp_path, "empty.md", "   \n\n")
        _write(tmp_path, "full.md", "content words")
        corpus = load_corpus(str(tmp_path))
        assert [d.doc_id for d in corpus.documents] == ["full.md"]

    def test_html_documents_are_converted(self, tmp_path):
        _write(tmp_path, "page.html", "<h1>Slices</h1><p>Borrowed views</p>")
        doc = load_corpus(str(tmp_path)).documents[0]
        assert doc.title == "Slices"
        assert "<p>" not in doc.text

    def test_excerpt_is_raw_segment_text(self, tmp_path):
        _write(tmp_path, "doc.md", "# One\nFirst part.\n\n# Two\nSecond part.\n")
        doc = load_corpus(str(tmp_path)).documents[0]
        assert doc.excerpt(1) == "# Two\nSecond part."

    def test_progress_callback(self, tmp_path):
        _write(tmp_path, "a.md", "alpha")
        _write(tmp_path, "b.md", "beta")
        calls = []
        load_corpus(str(tmp_path), progress_callback=lambda *a: calls.append(a))
        assert calls == [(1, 2, "a.md"), (2, 2, "b.md")]
