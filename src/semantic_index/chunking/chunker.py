from __future__ import annotations

import bisect
import hashlib
import logging
from typing import Optional

from tree_sitter import Node

from ..errors import ChunkingError
from .languages import (
    COMMENT_TYPES,
    FUNCTION_VALUES,
    UNIT_KINDS,
    VARIABLE_DECLARATIONS,
    WRAPPER_FIELDS,
    detect_language,
    get_parser,
    has_grammar,
)
from .models import Chunk, ChunkingConfig, ChunkKind

logger = logging.getLogger(__name__)

# Bump when boundaries produced for identical input change.
CHUNKER_VERSION = 2

Span = tuple[int, int, ChunkKind, Optional[str]]


def _sha256_hex(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_hex_str(s: str) -> str:
    return _sha256_hex(s.encode("utf-8"))


def compute_chunk_id(*, file_path: str, data: bytes, config: ChunkingConfig, occurrence: int = 0) -> str:
    """Id derived from the chunk bytes, path and chunking config, never from its position.

    `occurrence` numbers chunks with identical bytes within one file.
    """
    return _sha256_hex_str(
        f"v{CHUNKER_VERSION}:{config.signature()}:{file_path}:{_sha256_hex(data)}:{occurrence}"
    )


def _safe_utf8_end(data: bytes, start: int, end: int) -> int:
    end = min(end, len(data))
    if end <= start:
        return start
    # Back off at most 4 bytes (UTF-8 max codepoint length).
    for back in range(0, 5):
        cand = end - back
        if cand <= start:
            continue
        try:
            data[start:cand].decode("utf-8", errors="strict")
        except UnicodeDecodeError:
            continue
        return cand
    raise UnicodeDecodeError("utf-8", data, start, end, "unable to split on UTF-8 boundary")


def _fit(data: bytes, start: int, end: int, max_bytes: int) -> list[tuple[int, int]]:
    """Split [start, end) into pieces of at most max_bytes, cutting after newlines where possible."""
    if end - start <= max_bytes:
        return [(start, end)]

    spans: list[tuple[int, int]] = []
    cur = start
    while cur < end:
        hard_end = min(cur + max_bytes, end)
        if hard_end == end:
            spans.append((cur, end))
            break
        newline = data.rfind(b"\n", cur, hard_end)
        if newline != -1:
            cut = newline + 1
        else:
            cut = _safe_utf8_end(data, cur, hard_end)
        if cut <= cur:
            raise ValueError(f"Unable to make progress splitting window at byte {cur}")
        spans.append((cur, cut))
        cur = cut
    return spans


def _group_nodes(start: int, end: int, nodes: list[Node], max_bytes: int) -> list[tuple[int, int]]:
    # Contiguous pieces at statement boundaries; the first piece keeps the header.
    if not nodes:
        return [(start, end)]
    pieces: list[tuple[int, int]] = []
    piece_start = start
    piece_end: Optional[int] = None
    for node in nodes:
        if piece_end is not None and node.end_byte - piece_start > max_bytes:
            pieces.append((piece_start, piece_end))
            piece_start = node.start_byte
        piece_end = node.end_byte
    pieces.append((piece_start, max(end, piece_end or end)))
    return pieces


def _classify(node: Node, language: str) -> Optional[tuple[ChunkKind, Node]]:
    units = UNIT_KINDS.get(language, {})
    if node.type in units:
        return units[node.type], node

    wrapped_field = WRAPPER_FIELDS.get(language, {}).get(node.type)
    if wrapped_field is not None:
        inner = node.child_by_field_name(wrapped_field)
        if inner is not None:
            return _classify(inner, language)

    if node.type in VARIABLE_DECLARATIONS:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            if value is not None and value.type in FUNCTION_VALUES:
                return ChunkKind.FUNCTION, declarator
    return None


def _body_of(node: Node) -> Optional[Node]:
    body = node.child_by_field_name("body")
    if body is None and node.type == "variable_declarator":
        value = node.child_by_field_name("value")
        if value is not None:
            body = value.child_by_field_name("body")
    return body


def _symbol_name(node: Node) -> Optional[str]:
    name_node = node.child_by_field_name("name") or node.child_by_field_name("type")
    if name_node is None and node.named_children:
        # Go type_declaration wraps one or more type_spec nodes.
        name_node = node.named_children[0].child_by_field_name("name")
    if name_node is None or name_node.text is None:
        return None
    return name_node.text.decode("utf-8", errors="replace")


def _unit_spans(outer: Node, inner: Node, kind: ChunkKind, data: bytes, max_bytes: int) -> list[Span]:
    name = _symbol_name(inner)
    start, end = outer.start_byte, outer.end_byte
    if end - start <= max_bytes:
        return [(start, end, kind, name)]

    body = _body_of(inner)
    statements = list(body.named_children) if body is not None else []
    spans: list[Span] = []
    for piece_start, piece_end in _group_nodes(start, end, statements, max_bytes):
        for s, e in _fit(data, piece_start, piece_end, max_bytes):
            spans.append((s, e, kind, name))
    return spans


def _block_spans(run: list[Node], data: bytes, max_bytes: int) -> list[Span]:
    code = [i for i, node in enumerate(run) if node.type not in COMMENT_TYPES]
    if not code:
        return []
    nodes = run[code[0] : code[-1] + 1]
    start, end = nodes[0].start_byte, nodes[-1].end_byte
    spans: list[Span] = []
    for piece_start, piece_end in _group_nodes(start, end, nodes, max_bytes):
        for s, e in _fit(data, piece_start, piece_end, max_bytes):
            spans.append((s, e, ChunkKind.BLOCK, None))
    return spans


def _grammar_spans(data: bytes, language: str, config: ChunkingConfig) -> list[Span]:
    parser = get_parser(language)
    if parser is None:
        raise ChunkingError(f"No grammar for language {language!r}")

    tree = parser.parse(data)
    root = tree.root_node
    if root.has_error:
        raise ChunkingError(f"Syntax errors while parsing {language} source")

    spans: list[Span] = []
    run: list[Node] = []
    for node in root.named_children:
        unit = _classify(node, language)
        if unit is None:
            run.append(node)
            continue
        spans.extend(_block_spans(run, data, config.max_bytes))
        run = []
        kind, inner = unit
        spans.extend(_unit_spans(node, inner, kind, data, config.max_bytes))
    spans.extend(_block_spans(run, data, config.max_bytes))
    return spans


def _window_spans(data: bytes, config: ChunkingConfig) -> list[Span]:
    lines = data.splitlines(keepends=True)
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))

    step = config.window_lines - config.window_overlap
    spans: list[Span] = []
    for i in range(0, len(lines), step):
        count = min(config.window_lines, len(lines) - i)
        start, end = offsets[i], offsets[i + count]
        for s, e in _fit(data, start, end, config.max_bytes):
            spans.append((s, e, ChunkKind.WINDOW, None))
        if i + count >= len(lines):
            break
    return spans


def _line_starts(data: bytes) -> list[int]:
    starts = [0]
    idx = data.find(b"\n")
    while idx != -1:
        starts.append(idx + 1)
        idx = data.find(b"\n", idx + 1)
    return starts


def chunk_file(
    file_path: str,
    text: str,
    config: ChunkingConfig,
    *,
    language: Optional[str] = None,
) -> list[Chunk]:
    """Split a file's text into an ordered sequence of chunks.

    Grammar-aware for languages with a tree-sitter grammar; any parse failure,
    or a grammar pass that finds nothing, falls back to fixed line windows.
    Identical input always yields the identical chunk sequence.
    """
    language = language or detect_language(file_path)
    data = text.encode("utf-8")
    if not data.strip():
        return []

    spans: list[Span] = []
    if has_grammar(language):
        try:
            spans = _grammar_spans(data, language, config)
        except ChunkingError as e:
            logger.debug(f"Falling back to line windows for {file_path}: {e}")
            spans = []
    if not spans:
        spans = _window_spans(data, config)

    line_starts = _line_starts(data)
    chunks: list[Chunk] = []
    seen: set[tuple[int, int]] = set()
    occurrences: dict[bytes, int] = {}
    for start, end, kind, name in sorted(spans, key=lambda s: (s[0], s[1])):
        if (start, end) in seen:
            continue
        piece = data[start:end]
        if not piece.strip():
            continue
        seen.add((start, end))
        occurrence = occurrences.get(piece, 0)
        occurrences[piece] = occurrence + 1
        chunks.append(
            Chunk(
                chunk_id=compute_chunk_id(file_path=file_path, data=piece, config=config, occurrence=occurrence),
                file_path=file_path,
                start_byte=start,
                end_byte=end,
                start_line=bisect.bisect_right(line_starts, start),
                end_line=bisect.bisect_right(line_starts, max(start, end - 1)),
                text=piece.decode("utf-8", errors="strict"),
                language=language,
                kind=kind,
                name=name,
            )
        )
    return chunks
