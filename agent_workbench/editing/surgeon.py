"""
Patch interface — composes the resolver and the engine for one file text.

``patch`` is what the dispatcher calls after reading a file; it never
touches the disk itself.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .models import EditRequest, PatchResult, PatchStatus, ResolveFailure, Span, content_hash
from .patch_engine import Validator, apply, utf8_roundtrip
from .resolver import resolve, resolve_anchor
from .syntax import syntax_validator

logger = logging.getLogger(__name__)


def strict_validators(file_path: str) -> list[Validator]:
    """Validators used when strict-apply mode is enabled."""
    validators: list[Validator] = [utf8_roundtrip]
    syntax = syntax_validator(file_path)
    if syntax is not None:
        validators.append(syntax)
    return validators


def _adapt_replacement(file_text: str, span: Span, replacement: str) -> str:
    """Match the replacement's line endings to the file and the span."""
    eol = "\r\n" if "\r\n" in file_text else "\n"
    if eol == "\r\n":
        replacement = replacement.replace("\r\n", "\n").replace("\n", "\r\n")

    if span.mode == "range" and replacement:
        replaced = file_text[span.start:span.end]
        if replaced.endswith(("\n", "\r")) and not replacement.endswith(("\n", "\r")):
            replacement += eol
    return replacement


def patch(
    file_path: str,
    current_text: str,
    edit: EditRequest,
    validators: Iterable[Validator] = (),
) -> PatchResult:
    """
    Resolve *edit* against *current_text* and apply it.

    Parameters
    ----------
    file_path:
        Path of the file, used for messages and by path-aware validators.
    current_text:
        The file's text as the caller last read it.
    edit:
        The requested edit.  If ``edit.expected_hash`` is set and does not
        match *current_text*, the result is ``stale_span``.
    validators:
        Extra checks passed to the engine (see :func:`strict_validators`).

    Returns
    -------
    PatchResult
        Always a value; no patch failure raises.
    """
    if edit.expected_hash and edit.expected_hash != content_hash(current_text):
        logger.info("[Patch] %s changed since it was read", file_path)
        return PatchResult(
            status=PatchStatus.STALE_SPAN,
            message=(
                f"{file_path} changed since it was read. Read it again and "
                "retry the edit."
            ),
        )

    located = resolve(current_text, edit)
    if isinstance(located, ResolveFailure):
        if located.status is PatchStatus.ANCHOR_NOT_FOUND and not edit.is_range:
            # anchor gone but the replacement is there once: the edit was applied before
            present = resolve_anchor(current_text, edit.replacement)
            if isinstance(present, Span):
                logger.info("[Patch] %s: edit already present at lines %d-%d",
                            file_path, present.start_line, present.end_line)
                return PatchResult(
                    status=PatchStatus.UNCHANGED,
                    message=(
                        f"The anchor is gone but the replacement is already "
                        f"present at lines {present.start_line}-{present.end_line}; "
                        "nothing to do."
                    ),
                    span=present,
                )
        logger.info("[Patch] %s: %s", file_path, located.status.value)
        return PatchResult.from_failure(located)

    replacement = _adapt_replacement(current_text, located, edit.replacement)
    result = apply(current_text, located, replacement, validators)
    logger.debug("[Patch] %s: %s at lines %d-%d", file_path,
                 result.status.value, located.start_line, located.end_line)
    return result
