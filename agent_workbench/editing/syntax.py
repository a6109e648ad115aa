"""
Tree-sitter syntax check used by strict-apply mode.

A patch is rejected only when it introduces parse errors: files whose
current text already fails to parse, and languages without an installed
grammar, are never blocked.

Uses tree-sitter >= 0.22 API with individual language packages.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".cs": "c_sharp",
    ".php": "php",
}


def detect_language(file_path: str) -> Optional[str]:
    """Return the grammar name for *file_path*, or None if unsupported."""
    return EXTENSION_TO_LANGUAGE.get(os.path.splitext(file_path)[1].lower())


def _get_lang_func(language: str):
    """Return the tree-sitter language() function for *language*, or None."""
    try:
        if language == "python":
            import tree_sitter_python as m  # type: ignore
            return m.language
        elif language == "javascript":
            import tree_sitter_javascript as m  # type: ignore
            return m.language
        elif language == "typescript":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_typescript
        elif language == "tsx":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_tsx
        elif language == "java":
            import tree_sitter_java as m  # type: ignore
            return m.language
        elif language == "c":
            import tree_sitter_c as m  # type: ignore
            return m.language
        elif language == "cpp":
            import tree_sitter_cpp as m  # type: ignore
            return m.language
        elif language == "go":
            import tree_sitter_go as m  # type: ignore
            return m.language
        elif language == "rust":
            import tree_sitter_rust as m  # type: ignore
            return m.language
        elif language == "ruby":
            import tree_sitter_ruby as m  # type: ignore
            return m.language
        elif language == "c_sharp":
            import tree_sitter_c_sharp as m  # type: ignore
            return m.language
        elif language == "php":
            import tree_sitter_php as m  # type: ignore
            return m.language_php
    except ImportError:
        pass
    return None


_PARSER_CACHE: dict[str, object] = {}


def _get_parser(language: str):
    """Return a cached tree-sitter Parser for *language*, or None."""
    if language in _PARSER_CACHE:
        return _PARSER_CACHE[language]
    import tree_sitter as ts

    func = _get_lang_func(language)
    if func is None:
        logger.debug("[Patch] No tree-sitter grammar installed for %s", language)
        return None
    parser = ts.Parser(ts.Language(func()))
    _PARSER_CACHE[language] = parser
    return parser


def _first_error_line(node) -> Optional[int]:
    """Return the 1-based line of the first ERROR/MISSING node under *node*."""
    if node.type == "ERROR" or node.is_missing:
        return node.start_point[0] + 1
    if not node.has_error:
        return None
    for child in node.children:
        line = _first_error_line(child)
        if line is not None:
            return line
    return node.start_point[0] + 1


def find_syntax_error(text: str, language: str) -> Optional[int]:
    """Parse *text*; return the line of the first syntax error, or None."""
    parser = _get_parser(language)
    if parser is None:
        return None
    tree = parser.parse(text.encode("utf-8"))
    if not tree.root_node.has_error:
        return None
    return _first_error_line(tree.root_node)


def syntax_validator(file_path: str):
    """
    Build a patch validator that rejects patches introducing syntax errors
    into *file_path*.  Returns None when the language is unsupported.
    """
    language = detect_language(file_path)
    if language is None or _get_lang_func(language) is None:
        return None

    def _validate(old_text: str, new_text: str) -> Optional[str]:
        if find_syntax_error(old_text, language) is not None:
            return None
        line = find_syntax_error(new_text, language)
        if line is None:
            return None
        return (
            f"The patched {language} file no longer parses (first error near "
            f"line {line}). The file was not changed."
        )

    return _validate
