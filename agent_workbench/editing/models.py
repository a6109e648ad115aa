"""
Typed values exchanged by the location resolver, the patch engine and their
callers.  Every patch failure is one of these values; none is an exception.
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass
from typing import Optional


def content_hash(text: str) -> str:
    """Return the sha256 hex digest identifying one version of a file's text."""
    return hashlib.sha256(text.encode("utf-8", "surrogatepass")).hexdigest()


class PatchStatus(str, enum.Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    ANCHOR_NOT_FOUND = "anchor_not_found"
    ANCHOR_AMBIGUOUS = "anchor_ambiguous"
    RANGE_OUT_OF_BOUNDS = "range_out_of_bounds"
    STALE_SPAN = "stale_span"
    VALIDATION_FAILED = "validation_failed"


@dataclass(frozen=True)
class EditRequest:
    """
    One requested edit of a file.

    Exactly one anchor must be given: either literal ``anchor`` text that
    should occur once in the file, or an inclusive 1-based
    ``start_line``/``end_line`` range.
    """

    replacement: str
    anchor: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    path: str = ""
    expected_hash: Optional[str] = None

    def __post_init__(self) -> None:
        has_range = self.start_line is not None or self.end_line is not None
        if self.anchor is not None and has_range:
            raise ValueError("Give either an anchor or a line range, not both.")
        if self.anchor is None and not has_range:
            raise ValueError("An anchor or a line range is required.")
        if has_range and (self.start_line is None or self.end_line is None):
            raise ValueError("A line range needs both start_line and end_line.")

    @property
    def is_range(self) -> bool:
        return self.anchor is None


@dataclass(frozen=True)
class Span:
    """
    A resolved region of one specific version of a file.

    ``start``/``end`` are string offsets (end exclusive); ``start_line`` and
    ``end_line`` are 1-based and inclusive.  ``source_hash`` identifies the
    text the span was computed against.
    """

    start: int
    end: int
    start_line: int
    end_line: int
    source_hash: str
    mode: str = "anchor"

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "mode": self.mode,
        }


@dataclass(frozen=True)
class ResolveFailure:
    """Why an edit request could not be located in a file."""

    status: PatchStatus
    message: str
    candidates: tuple[int, ...] = ()
    hint: str = ""


@dataclass(frozen=True)
class PatchResult:
    """Outcome of one patch attempt."""

    status: PatchStatus
    message: str = ""
    new_text: Optional[str] = None
    span: Optional[Span] = None
    changed_range: Optional[tuple[int, int]] = None
    candidates: tuple[int, ...] = ()
    hint: str = ""

    @property
    def applied(self) -> bool:
        return self.status is PatchStatus.APPLIED

    @property
    def ok(self) -> bool:
        return self.status in (PatchStatus.APPLIED, PatchStatus.UNCHANGED)

    @classmethod
    def from_failure(cls, failure: ResolveFailure) -> "PatchResult":
        return cls(
            status=failure.status,
            message=failure.message,
            candidates=failure.candidates,
            hint=failure.hint,
        )

    def to_dict(self, include_text: bool = False) -> dict:
        data: dict = {
            "status": self.status.value,
            "message": self.message,
            "span": self.span.to_dict() if self.span else None,
            "changed_range": list(self.changed_range) if self.changed_range else None,
        }
        if self.candidates:
            data["candidate_lines"] = list(self.candidates)
        if self.hint:
            data["hint"] = self.hint
        if include_text and self.new_text is not None:
            data["new_text"] = self.new_text
        return data
