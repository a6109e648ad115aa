"""
Location resolver — turns an edit request into an exact :class:`Span` of a
given file text, or explains why it cannot.

Anchor matching tolerates indentation and spacing differences: the anchor
and the file are both compared in a normalized form where line endings are
unified, every line is stripped of leading/trailing spaces and tabs, and
inner runs of spaces/tabs collapse to one space.  Matches in the normalized
text are mapped back to offsets in the original text.  An anchor that
matches more than once is reported as ambiguous; the resolver never picks
one of several candidates.

Resolution is read-only.
"""

from __future__ import annotations

import bisect
import logging
import re
from typing import Optional, Union

from .models import EditRequest, PatchStatus, ResolveFailure, Span, content_hash

logger = logging.getLogger(__name__)

_EOL_RE = re.compile(r"\r\n|\r|\n")
_HSPACE = " \t\f\v"

# Ambiguity reports list at most this many candidate lines
MAX_CANDIDATE_LINES = 20

Resolution = Union[Span, ResolveFailure]


# ---------------------------------------------------------------------------
# Normalization with an offset map
# ---------------------------------------------------------------------------

def normalize_with_map(text: str) -> tuple[str, list[int]]:
    """
    Normalize *text* and return it with the original offset of each char.

    ``positions[i]`` is the index in *text* of the character that produced
    normalized character ``i``.  A collapsed whitespace run maps to its first
    character; a ``\\r\\n`` terminator maps to its ``\\r``.
    """
    out: list[str] = []
    positions: list[int] = []
    pos = 0
    n = len(text)
    while True:
        m = _EOL_RE.search(text, pos)
        line_end = m.start() if m else n

        s, e = pos, line_end
        while s < e and text[s] in _HSPACE:
            s += 1
        while e > s and text[e - 1] in _HSPACE:
            e -= 1
        in_space = False
        for i in range(s, e):
            ch = text[i]
            if ch in _HSPACE:
                if not in_space:
                    out.append(" ")
                    positions.append(i)
                    in_space = True
            else:
                out.append(ch)
                positions.append(i)
                in_space = False

        if m is None:
            break
        out.append("\n")
        positions.append(m.start())
        pos = m.end()
    return "".join(out), positions


def normalize_anchor(anchor: str) -> str:
    """Normalize an anchor the same way as file text, minus outer blank lines."""
    normalized, _ = normalize_with_map(anchor)
    return normalized.strip("\n")


def _occurrences(haystack: str, needle: str) -> list[int]:
    """Return the start of every (possibly overlapping) occurrence."""
    found: list[int] = []
    idx = haystack.find(needle)
    while idx != -1:
        found.append(idx)
        idx = haystack.find(needle, idx + 1)
    return found


def line_starts(text: str) -> list[int]:
    """Return the start offset of every line, for :func:`line_number_at`."""
    return [0] + [m.end() for m in _EOL_RE.finditer(text)]


def line_number_at(text: str, offset: int, starts: Optional[list[int]] = None) -> int:
    """
    Return the 1-based line containing *offset*.

    Pass *starts* from :func:`line_starts` when looking up many offsets of
    the same text.
    """
    if starts is None:
        starts = line_starts(text)
    return bisect.bisect_right(starts, offset)


def line_bounds(text: str) -> tuple[list[int], list[int]]:
    """Return per-line start offsets and end offsets (terminator included)."""
    starts = [0]
    ends: list[int] = []
    for m in _EOL_RE.finditer(text):
        ends.append(m.end())
        starts.append(m.end())
    if starts[-1] == len(text):
        starts.pop()
    else:
        ends.append(len(text))
    return starts, ends


def _span(text: str, start: int, end: int, source_hash: str, mode: str) -> Span:
    last = max(start, end - 1)
    starts = line_starts(text)
    return Span(
        start=start,
        end=end,
        start_line=line_number_at(text, start, starts),
        end_line=line_number_at(text, last, starts),
        source_hash=source_hash,
        mode=mode,
    )


# ---------------------------------------------------------------------------
# Anchor mode
# ---------------------------------------------------------------------------

def resolve_anchor(file_text: str, anchor: str) -> Resolution:
    """Locate the single occurrence of *anchor* in *file_text*."""
    source_hash = content_hash(file_text)
    needle = normalize_anchor(anchor)
    if not needle.strip():
        return ResolveFailure(
            status=PatchStatus.ANCHOR_NOT_FOUND,
            message="The anchor is empty after whitespace normalization.",
        )

    haystack, positions = normalize_with_map(file_text)
    hits = _occurrences(haystack, needle)

    if not hits:
        hint = ""
        if " ".join(needle.split()) in " ".join(haystack.split()):
            hint = (
                "The anchor matches when line breaks are ignored: the line "
                "structure of your snippet differs from the file. Read the "
                "file again and copy the lines exactly."
            )
        logger.debug("[Patch] Anchor not found (near miss: %s)", bool(hint))
        return ResolveFailure(
            status=PatchStatus.ANCHOR_NOT_FOUND,
            message=(
                "Could not find the anchor text. It does not exist, or the "
                "file was modified since it was last read."
            ),
            hint=hint,
        )

    if len(hits) > 1:
        starts = line_starts(file_text)
        lines = sorted({line_number_at(file_text, positions[h], starts) for h in hits})
        listed = ""
        if len(lines) > MAX_CANDIDATE_LINES:
            listed = f" Only the first {MAX_CANDIDATE_LINES} of {len(lines)} lines are listed."
        return ResolveFailure(
            status=PatchStatus.ANCHOR_AMBIGUOUS,
            message=(
                f"The anchor matches {len(hits)} locations. Include more "
                f"surrounding context so it identifies exactly one.{listed}"
            ),
            candidates=tuple(lines[:MAX_CANDIDATE_LINES]),
        )

    # Prefer the verbatim occurrence when the raw anchor is itself unique
    raw = anchor
    if "\r\n" in file_text and "\r\n" not in raw:
        raw = raw.replace("\n", "\r\n")
    raw_hits = _occurrences(file_text, raw) if raw else []
    if len(raw_hits) == 1:
        start = raw_hits[0]
        return _span(file_text, start, start + len(raw), source_hash, "anchor")

    hit = hits[0]
    start = positions[hit]
    end = positions[hit + len(needle) - 1] + 1
    if file_text[end - 1] == "\r" and file_text[end:end + 1] == "\n":
        end += 1
    return _span(file_text, start, end, source_hash, "anchor")


# ---------------------------------------------------------------------------
# Range mode
# ---------------------------------------------------------------------------

def resolve_range(file_text: str, start_line: int, end_line: int) -> Resolution:
    """Convert an inclusive 1-based line range into a span of whole lines."""
    starts, ends = line_bounds(file_text)
    line_count = len(starts)
    if start_line < 1 or end_line < start_line or end_line > line_count:
        return ResolveFailure(
            status=PatchStatus.RANGE_OUT_OF_BOUNDS,
            message=(
                f"Line range {start_line}-{end_line} is outside the file "
                f"(1-{line_count})."
            ),
        )
    return Span(
        start=starts[start_line - 1],
        end=ends[end_line - 1],
        start_line=start_line,
        end_line=end_line,
        source_hash=content_hash(file_text),
        mode="range",
    )


def resolve(file_text: str, request: EditRequest) -> Resolution:
    """Resolve *request* against *file_text* without modifying anything."""
    if request.is_range:
        return resolve_range(file_text, request.start_line, request.end_line)
    return resolve_anchor(file_text, request.anchor)
