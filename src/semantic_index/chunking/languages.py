"""Language detection and tree-sitter grammar registry."""

from __future__ import annotations

import threading
from pathlib import PurePosixPath
from typing import Callable, Optional

import tree_sitter_go
import tree_sitter_javascript
import tree_sitter_python
import tree_sitter_rust
import tree_sitter_typescript
from tree_sitter import Language, Parser

from .models import ChunkKind

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
    ".rs": "rust",
    # Indexed with line windows only.
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
    ".lua": "lua",
    ".sh": "shell",
    ".bash": "shell",
    ".sql": "sql",
}

_GRAMMARS: dict[str, Callable[[], object]] = {
    "python": tree_sitter_python.language,
    "javascript": tree_sitter_javascript.language,
    "typescript": tree_sitter_typescript.language_typescript,
    "tsx": tree_sitter_typescript.language_tsx,
    "go": tree_sitter_go.language,
    "rust": tree_sitter_rust.language,
}

_JS_UNITS = {
    "function_declaration": ChunkKind.FUNCTION,
    "generator_function_declaration": ChunkKind.FUNCTION,
    "class_declaration": ChunkKind.CLASS,
}
_TS_UNITS = {
    **_JS_UNITS,
    "abstract_class_declaration": ChunkKind.CLASS,
    "interface_declaration": ChunkKind.CLASS,
    "enum_declaration": ChunkKind.CLASS,
}

# Top-level node types emitted as their own chunk.
UNIT_KINDS: dict[str, dict[str, ChunkKind]] = {
    "python": {
        "function_definition": ChunkKind.FUNCTION,
        "class_definition": ChunkKind.CLASS,
    },
    "javascript": _JS_UNITS,
    "typescript": _TS_UNITS,
    "tsx": _TS_UNITS,
    "go": {
        "function_declaration": ChunkKind.FUNCTION,
        "method_declaration": ChunkKind.FUNCTION,
        "type_declaration": ChunkKind.CLASS,
    },
    "rust": {
        "function_item": ChunkKind.FUNCTION,
        "impl_item": ChunkKind.CLASS,
        "struct_item": ChunkKind.CLASS,
        "enum_item": ChunkKind.CLASS,
        "trait_item": ChunkKind.CLASS,
        "mod_item": ChunkKind.BLOCK,
    },
}

# Wrapper node type -> field holding the wrapped declaration.
WRAPPER_FIELDS: dict[str, dict[str, str]] = {
    "python": {"decorated_definition": "definition"},
    "javascript": {"export_statement": "declaration"},
    "typescript": {"export_statement": "declaration"},
    "tsx": {"export_statement": "declaration"},
}

VARIABLE_DECLARATIONS = {"lexical_declaration", "variable_declaration"}
FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}

COMMENT_TYPES = {"comment", "line_comment", "block_comment"}

_languages: dict[str, Language] = {}
_languages_lock = threading.Lock()
_local = threading.local()


def detect_language(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    return EXTENSION_TO_LANGUAGE.get(suffix, "text")


def has_grammar(language: str) -> bool:
    return language in _GRAMMARS


def _get_language(language: str) -> Language:
    with _languages_lock:
        lang = _languages.get(language)
        if lang is None:
            lang = Language(_GRAMMARS[language]())
            _languages[language] = lang
        return lang


def get_parser(language: str) -> Optional[Parser]:
    """Return a parser for the language owned by the calling thread, or None."""
    if not has_grammar(language):
        return None
    parsers: dict[str, Parser] = getattr(_local, "parsers", None) or {}
    _local.parsers = parsers
    parser = parsers.get(language)
    if parser is None:
        parser = Parser(_get_language(language))
        parsers[language] = parser
    return parser
