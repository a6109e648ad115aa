"""
Document store — loads a corpus of reference documents from disk and splits
each one into retrievable segments.

Loading is best-effort: a missing or unreadable corpus root raises
:class:`CorpusUnavailable`, but individual files that cannot be read or
decoded are skipped and reported in :attr:`LoadedCorpus.warnings`.
"""

from __future__ import annotations

import logging
import os
import re
from collections import Counter
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Callable, Iterator, Optional

from .tokenizer import term_counts

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE_EXTENSIONS: tuple[str, ...] = (
    ".md", ".markdown", ".txt", ".rst", ".html", ".htm",
)
DEFAULT_MAX_SEGMENT_CHARS = 1500

_HTML_EXTENSIONS = frozenset({".html", ".htm"})

_SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "__pycache__", ".git", ".hg", ".svn",
    ".venv", "venv", ".tox", ".mypy_cache", ".pytest_cache",
    ".workbench", "target", "build", "dist",
})

_MD_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.+?)[ \t#]*$")
_RST_UNDERLINE_RE = re.compile(r"^([=\-~^*#+`'\".:_])\1{2,}[ \t]*$")
_FENCE_RE = re.compile(r"^ {0,3}(```|~~~)")
_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")


class CorpusUnavailable(Exception):
    """Raised when the corpus root does not exist or cannot be listed."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Segment:
    """
    A retrievable slice of a document.

    Attributes
    ----------
    doc_id:
        Identifier of the owning :class:`Document`.
    segment_id:
        0-based ordinal of the segment within its document.
    start, end:
        Offsets into ``Document.text`` (end exclusive).
    heading:
        Heading of the section the segment belongs to (``""`` for a preamble
        or an unstructured document).
    length:
        Number of tokens in the segment.
    terms:
        Token multiset, computed once at load time.
    """

    doc_id: str
    segment_id: int
    start: int
    end: int
    heading: str
    length: int
    terms: Counter = field(compare=False, repr=False)


@dataclass(frozen=True)
class Document:
    """An immutable, normalized corpus document."""

    doc_id: str
    title: str
    text: str = field(repr=False)
    segments: tuple[Segment, ...] = field(repr=False)

    def excerpt(self, segment_id: int) -> str:
        """Return the raw text of segment *segment_id*."""
        seg = self.segments[segment_id]
        return self.text[seg.start:seg.end]


@dataclass(frozen=True)
class LoadedCorpus:
    """Result of :func:`load_corpus`."""

    root: str
    documents: tuple[Document, ...]
    warnings: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------

def normalize_text(text: str) -> str:
    """Strip a BOM and unify line endings to ``\\n``."""
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


class _HTMLTextExtractor(HTMLParser):
    """Extract readable text from HTML, keeping headings as Markdown headings."""

    _SKIP_TAGS = frozenset({
        "script", "style", "nav", "footer", "header", "aside", "noscript",
    })
    _HEADING_TAGS = {f"h{i}": i for i in range(1, 7)}
    _BLOCK_TAGS = frozenset({
        "p", "div", "section", "article", "li", "pre", "tr", "table",
        "ul", "ol", "dl", "dt", "dd", "blockquote", "br", "summary",
    })

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._blocks: list[str] = []
        self._current: list[str] = []
        self._skip_depth = 0
        self._heading_level = 0

    def _flush(self) -> None:
        text = " ".join(" ".join(self._current).split())
        self._current = []
        if not text:
            return
        if self._heading_level:
            text = "#" * self._heading_level + " " + text
        self._blocks.append(text)

    def handle_starttag(self, tag, attrs):
        if tag in self._SKIP_TAGS:
            self._skip_depth += 1
        elif tag in self._HEADING_TAGS:
            self._flush()
            self._heading_level = self._HEADING_TAGS[tag]
        elif tag in self._BLOCK_TAGS:
            self._flush()

    def handle_endtag(self, tag):
        if tag in self._SKIP_TAGS:
            if self._skip_depth > 0:
                self._skip_depth -= 1
        elif tag in self._HEADING_TAGS:
            self._flush()
            self._heading_level = 0
        elif tag in self._BLOCK_TAGS:
            self._flush()

    def handle_data(self, data):
        if self._skip_depth == 0 and data.strip():
            self._current.append(data.strip())

    def get_text(self) -> str:
        self._flush()
        return "\n\n".join(self._blocks)


def html_to_text(html: str) -> str:
    """Convert HTML to plain text with ``#`` headings."""
    extractor = _HTMLTextExtractor()
    extractor.feed(html)
    extractor.close()
    return extractor.get_text()


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

def _find_sections(text: str) -> list[tuple[int, str]]:
    """Return ``(offset, heading)`` for every structural boundary in *text*."""
    lines = text.split("\n")
    offsets: list[int] = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line) + 1

    boundaries: list[tuple[int, str]] = []
    in_fence = False
    for i, line in enumerate(lines):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        m = _MD_HEADING_RE.match(line)
        if m:
            boundaries.append((offsets[i], m.group(2).strip()))
            continue
        # reStructuredText: a title line followed by an underline at least as long
        title = line.strip()
        if (
            title
            and i + 1 < len(lines)
            and _RST_UNDERLINE_RE.match(lines[i + 1])
            and len(lines[i + 1].strip()) >= len(title)
            and not _RST_UNDERLINE_RE.match(line)
        ):
            boundaries.append((offsets[i], title))
    return boundaries


def _hard_split(text: str, start: int, end: int, limit: int) -> Iterator[tuple[int, int]]:
    while end - start > limit:
        cut = max(text.rfind(" ", start + 1, start + limit),
                  text.rfind("\n", start + 1, start + limit))
        if cut <= start:
            cut = start + limit
        yield start, cut
        start = cut
    if start < end:
        yield start, end


def _bounded_pieces(text: str, start: int, end: int, limit: int) -> Iterator[tuple[int, int]]:
    """Split ``text[start:end]`` into pieces of at most *limit* characters.

    Paragraphs (blank-line separated) are packed greedily; a paragraph that
    alone exceeds the limit is split at whitespace.
    """
    if end - start <= limit:
        yield start, end
        return

    cuts = [start] + [m.end() for m in _BLANK_LINE_RE.finditer(text, start, end)] + [end]
    chunk_start: int | None = None
    chunk_end = start
    for p_start, p_end in zip(cuts, cuts[1:]):
        if p_end - p_start > limit:
            if chunk_start is not None:
                yield chunk_start, chunk_end
                chunk_start = None
            yield from _hard_split(text, p_start, p_end, limit)
            continue
        if chunk_start is None:
            chunk_start, chunk_end = p_start, p_end
        elif p_end - chunk_start <= limit:
            chunk_end = p_end
        else:
            yield chunk_start, chunk_end
            chunk_start, chunk_end = p_start, p_end
    if chunk_start is not None:
        yield chunk_start, chunk_end


def _trim(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def segment_text(
    doc_id: str,
    text: str,
    max_segment_chars: int = DEFAULT_MAX_SEGMENT_CHARS,
) -> tuple[Segment, ...]:
    """Split normalized *text* into segments at headings, bounded in size.

    A document with no headings becomes a single segment unless it exceeds
    *max_segment_chars*.  Segments without any index term are dropped.
    """
    if max_segment_chars < 1:
        raise ValueError("max_segment_chars must be >= 1")

    boundaries = _find_sections(text)
    sections: list[tuple[int, int, str]] = []
    first = boundaries[0][0] if boundaries else len(text)
    if first > 0:
        sections.append((0, first, ""))
    for idx, (offset, heading) in enumerate(boundaries):
        end = boundaries[idx + 1][0] if idx + 1 < len(boundaries) else len(text)
        sections.append((offset, end, heading))

    segments: list[Segment] = []
    for sec_start, sec_end, heading in sections:
        for p_start, p_end in _bounded_pieces(text, sec_start, sec_end, max_segment_chars):
            s, e = _trim(text, p_start, p_end)
            if s >= e:
                continue
            terms = term_counts(text[s:e])
            if not terms:
                continue
            segments.append(Segment(
                doc_id=doc_id,
                segment_id=len(segments),
                start=s,
                end=e,
                heading=heading,
                length=sum(terms.values()),
                terms=terms,
            ))
    return tuple(segments)


# ---------------------------------------------------------------------------
# Corpus loading
# ---------------------------------------------------------------------------

def walk_corpus(corpus_root: str, include_extensions: tuple[str, ...]) -> list[str]:
    """Return sorted corpus-relative POSIX paths of all indexable files."""
    extensions = {e.lower() for e in include_extensions}
    results: list[str] = []
    for dirpath, dirnames, filenames in os.walk(corpus_root, topdown=True):
        dirnames[:] = [
            d for d in dirnames
            if d not in _SKIP_DIRS and not d.startswith(".")
        ]
        for fname in filenames:
            if os.path.splitext(fname)[1].lower() not in extensions:
                continue
            rel_path = os.path.relpath(os.path.join(dirpath, fname), corpus_root)
            results.append(rel_path.replace(os.sep, "/"))
    return sorted(results)


def _read_document(
    abs_path: str,
    doc_id: str,
    max_segment_chars: int,
) -> Document | None:
    with open(abs_path, "r", encoding="utf-8", newline="") as fh:
        raw = fh.read()
    text = normalize_text(raw)
    if os.path.splitext(abs_path)[1].lower() in _HTML_EXTENSIONS:
        text = html_to_text(text)
    if not text.strip():
        logger.debug("[KB] Skipping empty document %s", doc_id)
        return None

    segments = segment_text(doc_id, text, max_segment_chars)
    if not segments:
        logger.debug("[KB] No indexable text in %s", doc_id)
        return None

    title = next((s.heading for s in segments if s.heading), "")
    if not title:
        title = os.path.splitext(os.path.basename(doc_id))[0]
    return Document(doc_id=doc_id, title=title, text=text, segments=segments)


def load_corpus(
    corpus_root: str,
    include_extensions: tuple[str, ...] = DEFAULT_INCLUDE_EXTENSIONS,
    max_segment_chars: int = DEFAULT_MAX_SEGMENT_CHARS,
    progress_callback: Optional[Callable[[int, int, str], None]] = None,
) -> LoadedCorpus:
    """
    Load every indexable document under *corpus_root*.

    Parameters
    ----------
    corpus_root:
        Directory containing the reference documents.
    include_extensions:
        File extensions (with leading dot) to load.
    max_segment_chars:
        Upper bound on the character length of a single segment.
    progress_callback:
        Optional callable ``(current, total, doc_id)`` invoked before each file.

    Returns
    -------
    LoadedCorpus
        Documents sorted by ``doc_id`` plus warnings for skipped files.

    Raises
    ------
    CorpusUnavailable
        If *corpus_root* is missing, not a directory, or cannot be listed.
    """
    root = os.path.abspath(corpus_root)
    if not os.path.isdir(root):
        raise CorpusUnavailable(f"Corpus root not found: {root}")
    try:
        os.listdir(root)
    except OSError as exc:
        raise CorpusUnavailable(f"Corpus root is not readable: {root}: {exc}") from exc

    documents: list[Document] = []
    warnings: list[str] = []
    paths = walk_corpus(root, include_extensions)
    for i, rel_path in enumerate(paths, 1):
        if progress_callback is not None:
            progress_callback(i, len(paths), rel_path)
        abs_path = os.path.join(root, *rel_path.split("/"))
        try:
            doc = _read_document(abs_path, rel_path, max_segment_chars)
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Skipped unreadable document {rel_path}: {exc}"
            logger.warning("[KB] %s", msg)
            warnings.append(msg)
            continue
        if doc is not None:
            documents.append(doc)

    logger.info(
        "[KB] Loaded %d documents (%d segments) from %s",
        len(documents), sum(len(d.segments) for d in documents), root,
    )
    return LoadedCorpus(root=root, documents=tuple(documents), warnings=tuple(warnings))
