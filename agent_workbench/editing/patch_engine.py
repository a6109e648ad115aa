"""
Patch engine — splices a replacement into an in-memory file text.

The engine is pure: it performs no disk I/O, keeps no state between calls
and never retries.  Persisting the new text and running any build
verification are the caller's job.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .models import PatchResult, PatchStatus, Span, content_hash

logger = logging.getLogger(__name__)

# (old_text, new_text) -> error message, or None when the new text is valid
Validator = Callable[[str, str], Optional[str]]


def utf8_roundtrip(old_text: str, new_text: str) -> Optional[str]:
    """Reject text that cannot be written back as UTF-8."""
    try:
        new_text.encode("utf-8").decode("utf-8")
    except UnicodeError as exc:
        return f"Patched text does not round-trip through UTF-8: {exc}"
    return None


def apply(
    file_text: str,
    span: Span,
    replacement: str,
    validators: Iterable[Validator] = (),
) -> PatchResult:
    """
    Apply *replacement* at *span* of *file_text*.

    Parameters
    ----------
    file_text:
        The current text of the file.
    span:
        A span resolved against *file_text*.  If it was resolved against a
        different version the result is ``stale_span``.
    replacement:
        Text that replaces ``file_text[span.start:span.end]``.
    validators:
        Checks run on the spliced text; the first error message makes the
        result ``validation_failed``.  Empty by default.

    Returns
    -------
    PatchResult
        ``applied`` with the new text and changed range, ``unchanged`` when
        the splice is a no-op, or a failure status.
    """
    if content_hash(file_text) != span.source_hash:
        return PatchResult(
            status=PatchStatus.STALE_SPAN,
            message=(
                "The span was resolved against a different version of the "
                "file. Read the file again and re-resolve the edit."
            ),
            span=span,
        )

    new_text = file_text[:span.start] + replacement + file_text[span.end:]
    if new_text == file_text:
        return PatchResult(
            status=PatchStatus.UNCHANGED,
            message="The replacement is identical to the current text.",
            span=span,
        )

    for validator in validators:
        error = validator(file_text, new_text)
        if error:
            logger.info("[Patch] Validation failed at lines %d-%d: %s",
                        span.start_line, span.end_line, error)
            return PatchResult(
                status=PatchStatus.VALIDATION_FAILED,
                message=error,
                span=span,
            )

    return PatchResult(
        status=PatchStatus.APPLIED,
        message=f"Replaced lines {span.start_line}-{span.end_line}.",
        new_text=new_text,
        span=span,
        changed_range=(span.start, span.start + len(replacement)),
    )
