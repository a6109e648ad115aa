"""Tests for the pure patch engine and the models it returns."""

import pytest

from agent_workbench.editing.models import EditRequest, PatchResult, PatchStatus, Span, content_hash
from agent_workbench.editing.patch_engine import apply, utf8_roundtrip
from agent_workbench.editing.resolver import resolve_anchor, resolve_range

RUST_MAIN = 'fn main() {\n    println!("hi");\n}\n'


class TestApply:
    def test_applies_replacement(self):
        span = resolve_anchor(RUST_MAIN, 'println!("hi");')
        result = apply(RUST_MAIN, span, 'println!("hello");')

        assert result.status is PatchStatus.APPLIED
        assert "hello" in result.new_text
        assert 'hi"' not in result.new_text
        assert result.span == span
        start, end = result.changed_range
        assert result.new_text[start:end] == 'println!("hello");'

    def test_stale_span_is_rejected(self):
        span = resolve_anchor(RUST_MAIN, "fn main")
        first = apply(RUST_MAIN, span, "fn start")
        assert first.applied

        retry = apply(first.new_text, span, "fn start")
        assert retry.status is PatchStatus.STALE_SPAN
        assert retry.new_text is None

    def test_identical_replacement_is_unchanged(self):
        span = resolve_anchor(RUST_MAIN, 'println!("hi");')
        result = apply(RUST_MAIN, span, 'println!("hi");')
        assert result.status is PatchStatus.UNCHANGED
        assert result.new_text is None
        assert result.ok

    def test_round_trip_with_located_text(self):
        text = "def f():\n    return  1\n"
        span = resolve_anchor(text, "return 1")
        result = apply(text, span, text[span.start:span.end])
        assert result.status is PatchStatus.UNCHANGED

    def test_reapplying_range_edit_is_unchanged(self):
        text = "one\ntwo\nthree\n"
        first = apply(text, resolve_range(text, 2, 2), "TWO\n")
        second = apply(first.new_text, resolve_range(first.new_text, 2, 2), "TWO\n")
        assert first.applied
        assert second.status is PatchStatus.UNCHANGED

    def test_deletion(self):
        text = "one\ntwo\nthree\n"
        result = apply(text, resolve_range(text, 2, 2), "")
        assert result.new_text == "one\nthree\n"
        assert result.changed_range == (4, 4)

    def test_validator_failure(self):
        span = resolve_anchor(RUST_MAIN, "fn main")
        result = apply(RUST_MAIN, span, "fn start", validators=[lambda old, new: "nope"])
        assert result.status is PatchStatus.VALIDATION_FAILED
        assert result.message == "nope"
        assert result.new_text is None

    def test_passing_validators(self):
        seen = []

        def _record(old, new):
            seen.append((old, new))
            return None

        span = resolve_anchor(RUST_MAIN, "fn main")
        result = apply(RUST_MAIN, span, "fn start", validators=[_record, utf8_roundtrip])
        assert result.applied
        assert seen == [(RUST_MAIN, result.new_text)]

    def test_validators_skipped_for_unchanged(self):
        span = resolve_anchor(RUST_MAIN, "fn main")
        result = apply(RUST_MAIN, span, "fn main", validators=[lambda old, new: "nope"])
        assert result.status is PatchStatus.UNCHANGED

    def test_input_text_is_not_modified(self):
        text = RUST_MAIN
        apply(text, resolve_anchor(text, "fn main"), "fn start")
        assert text == RUST_MAIN


class TestUtf8Roundtrip:
    def test_accepts_normal_text(self):
        assert utf8_roundtrip("", "héllo wörld ✓") is None

    def test_rejects_lone_surrogate(self):
        assert utf8_roundtrip("", "bad \ud800 text") is not None


class TestModels:
    def test_edit_request_needs_exactly_one_anchor(self):
        with pytest.raises(ValueError):
            EditRequest(replacement="x")
        with pytest.raises(ValueError):
            EditRequest(replacement="x", anchor="a", start_line=1, end_line=1)
        with pytest.raises(ValueError):
            EditRequest(replacement="x", start_line=1)

    def test_edit_request_mode(self):
        assert EditRequest(replacement="x", start_line=1, end_line=2).is_range
        assert not EditRequest(replacement="x", anchor="a").is_range

    def test_content_hash_is_stable(self):
        assert content_hash("abc") == content_hash("abc")
        assert content_hash("abc") != content_hash("abd")

    def test_result_to_dict(self):
        span = Span(start=0, end=2, start_line=1, end_line=1, source_hash="h")
        result = PatchResult(
            status=PatchStatus.APPLIED, message="ok", new_text="xy",
            span=span, changed_range=(0, 2),
        )
        data = result.to_dict()
        assert data["status"] == "applied"
        assert data["span"] == {"start": 0, "end": 2, "start_line": 1,
                                "end_line": 1, "mode": "anchor"}
        assert data["changed_range"] == [0, 2]
        assert "new_text" not in data
        assert result.to_dict(include_text=True)["new_text"] == "xy"

    def test_ambiguous_result_lists_candidates(self):
        failure = resolve_anchor("x\nx\n", "x")
        data = PatchResult.from_failure(failure).to_dict()
        assert data["status"] == "anchor_ambiguous"
        assert data["candidate_lines"] == [1, 2]
        assert data["span"] is None
