"""
Safe file editing — locate an edit in a file text, splice it in, and write
the result only if the file has not changed underneath.
"""

from .models import EditRequest, PatchResult, PatchStatus, ResolveFailure, Span, content_hash
from .patch_engine import apply, utf8_roundtrip
from .resolver import resolve, resolve_anchor, resolve_range
from .surgeon import patch, strict_validators
from .writer import read_text, safe_write, write_if_unchanged

__all__ = [
    "EditRequest", "PatchResult", "PatchStatus", "ResolveFailure", "Span",
    "content_hash",
    "apply", "utf8_roundtrip",
    "resolve", "resolve_anchor", "resolve_range",
    "patch", "strict_validators",
    "read_text", "safe_write", "write_if_unchanged",
]
