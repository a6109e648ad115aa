"""
Unit tests for agent_workbench.editing.surgeon and the strict-apply syntax
check.  Syntax tests are skipped when the Python grammar is not installed.
"""

import pytest

from agent_workbench.editing.models import EditRequest, PatchStatus, content_hash
from agent_workbench.editing.patch_engine import utf8_roundtrip
from agent_workbench.editing.surgeon import patch, strict_validators
from agent_workbench.editing.syntax import detect_language, syntax_validator

RUST_MAIN = 'fn main() {\n    println!("hi");\n}\n'


class TestPatch:
    def test_anchor_edit(self):
        result = patch("src/main.rs", RUST_MAIN, EditRequest(
            anchor='println!("hi");', replacement='println!("hello");',
        ))
        assert result.status is PatchStatus.APPLIED
        assert result.new_text == 'fn main() {\n    println!("hello");\n}\n'

    def test_resolve_failures_become_results(self):
        result = patch("a.py", "x = 1\nx = 1\n", EditRequest(anchor="x = 1", replacement="y"))
        assert result.status is PatchStatus.ANCHOR_AMBIGUOUS
        assert result.candidates == (1, 2)

        result = patch("a.py", "x = 1\n", EditRequest(start_line=5, end_line=6, replacement="y"))
        assert result.status is PatchStatus.RANGE_OUT_OF_BOUNDS

    def test_expected_hash_mismatch_is_stale(self):
        edit = EditRequest(anchor="fn main", replacement="fn start",
                           expected_hash=content_hash("something else"))
        result = patch("src/main.rs", RUST_MAIN, edit)
        assert result.status is PatchStatus.STALE_SPAN
        assert "changed since it was read" in result.message

    def test_matching_expected_hash(self):
        edit = EditRequest(anchor="fn main", replacement="fn start",
                           expected_hash=content_hash(RUST_MAIN))
        assert patch("src/main.rs", RUST_MAIN, edit).applied

    def test_crlf_file_keeps_crlf(self):
        text = "a\r\nb\r\nc\r\n"
        result = patch("notes.txt", text, EditRequest(anchor="b\nc", replacement="B\nC"))
        assert result.new_text == "a\r\nB\r\nC\r\n"

    def test_range_replacement_keeps_line_terminator(self):
        text = "one\ntwo\nthree\n"
        result = patch("n.txt", text, EditRequest(start_line=2, end_line=2, replacement="TWO"))
        assert result.new_text == "one\nTWO\nthree\n"

    def test_range_deletion_removes_whole_lines(self):
        text = "one\ntwo\nthree\n"
        result = patch("n.txt", text, EditRequest(start_line=2, end_line=3, replacement=""))
        assert result.new_text == "one\n"

    def test_validators_are_forwarded(self):
        result = patch("src/main.rs", RUST_MAIN,
                       EditRequest(anchor="fn main", replacement="fn start"),
                       validators=[lambda old, new: "rejected"])
        assert result.status is PatchStatus.VALIDATION_FAILED


class TestRepeatedEdits:
    EDIT = EditRequest(anchor='println!("hi");', replacement='println!("hello");')

    def test_repeated_anchor_edit_is_unchanged(self):
        first = patch("src/main.rs", RUST_MAIN, self.EDIT)
        assert first.applied

        second = patch("src/main.rs", first.new_text, self.EDIT)
        assert second.status is PatchStatus.UNCHANGED
        assert second.new_text is None
        assert first.new_text[second.span.start:second.span.end] == 'println!("hello");'
        assert (second.span.start_line, second.span.end_line) == (2, 2)

    def test_repeated_edit_on_crlf_file(self):
        text = RUST_MAIN.replace("\n", "\r\n")
        edit = EditRequest(anchor="fn main() {\n", replacement="fn start() {\n")
        first = patch("src/main.rs", text, edit)
        assert first.new_text.startswith("fn start() {\r\n")
        assert patch("src/main.rs", first.new_text, edit).status is PatchStatus.UNCHANGED

    def test_missing_anchor_and_missing_replacement_is_not_found(self):
        result = patch("src/main.rs", RUST_MAIN,
                       EditRequest(anchor="eprintln!", replacement="dbg!(x);"))
        assert result.status is PatchStatus.ANCHOR_NOT_FOUND

    def test_replacement_present_twice_is_not_unchanged(self):
        text = "a = 1\nb = 2\nb = 2\n"
        result = patch("a.py", text, EditRequest(anchor="a = 0", replacement="b = 2"))
        assert result.status is PatchStatus.ANCHOR_NOT_FOUND

    def test_deletion_retry_is_not_found(self):
        result = patch("src/main.rs", RUST_MAIN,
                       EditRequest(anchor="eprintln!", replacement=""))
        assert result.status is PatchStatus.ANCHOR_NOT_FOUND


class TestStrictValidators:
    def test_unknown_extension_only_checks_encoding(self):
        assert strict_validators("notes.txt") == [utf8_roundtrip]
        assert syntax_validator("notes.txt") is None

    def test_detect_language(self):
        assert detect_language("pkg/mod.py") == "python"
        assert detect_language("src/App.TSX") == "tsx"
        assert detect_language("README") is None


class TestSyntaxValidator:
    @pytest.fixture(autouse=True)
    def _grammar(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_python")

    def test_valid_edit_passes(self):
        text = "def f():\n    return 1\n"
        result = patch("m.py", text, EditRequest(anchor="return 1", replacement="return 2"),
                       validators=strict_validators("m.py"))
        assert result.applied

    def test_edit_introducing_error_is_rejected(self):
        text = "def f():\n    return 1\n"
        result = patch("m.py", text, EditRequest(anchor="return 1", replacement="return (1"),
                       validators=strict_validators("m.py"))
        assert result.status is PatchStatus.VALIDATION_FAILED
        assert "no longer parses" in result.message
        assert result.new_text is None

    def test_already_broken_file_is_not_blocked(self):
        text = "def f(:\n    pass\nx = 1\n"
        result = patch("m.py", text, EditRequest(anchor="x = 1", replacement="x = 2"),
                       validators=strict_validators("m.py"))
        assert result.applied
