"""Directory scanning and file reading collaborators for the coordinator."""

from __future__ import annotations

import fnmatch
import hashlib
import logging
from pathlib import Path
from typing import Mapping, Optional

from ..chunking.languages import EXTENSION_TO_LANGUAGE
from .models import ChangeKind, FileEvent, FileStatus, IndexEntry

logger = logging.getLogger(__name__)

_BINARY_SNIFF_BYTES = 8192


def fingerprint_text(text: str) -> str:
    h = hashlib.sha256()
    h.update(text.encode("utf-8"))
    return h.hexdigest()


def decode_source(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _is_excluded(rel_posix: str, exclude_globs: list[str]) -> bool:
    for pat in exclude_globs:
        if fnmatch.fnmatchcase(rel_posix, pat):
            return True
        # "dir/**" also excludes the same directory nested anywhere.
        if fnmatch.fnmatchcase(rel_posix, f"*/{pat}"):
            return True
    return False


def _looks_binary(data: bytes) -> bool:
    return b"\x00" in data[:_BINARY_SNIFF_BYTES]


def iter_source_files(root: Path, exclude_globs: list[str], max_file_bytes: int) -> list[Path]:
    """Source files under root with a known extension, sorted by relative path."""
    paths: list[Path] = []
    for p in root.rglob("*"):
        if p.suffix.lower() not in EXTENSION_TO_LANGUAGE or not p.is_file():
            continue
        rel_posix = p.relative_to(root).as_posix()
        if _is_excluded(rel_posix, exclude_globs):
            continue
        if p.stat().st_size > max_file_bytes:
            logger.debug(f"Skipping {rel_posix}: larger than {max_file_bytes} bytes")
            continue
        paths.append(p)
    paths.sort(key=lambda p: p.relative_to(root).as_posix())
    return paths


def snapshot(root: Path, exclude_globs: list[str], max_file_bytes: int) -> dict[str, str]:
    """Map of relative path -> content fingerprint for every indexable file."""
    out: dict[str, str] = {}
    for p in iter_source_files(root, exclude_globs, max_file_bytes):
        try:
            data = p.read_bytes()
        except FileNotFoundError:
            continue
        if _looks_binary(data):
            continue
        out[p.relative_to(root).as_posix()] = fingerprint_text(decode_source(data))
    return out


def reconcile(disk: Mapping[str, str], entries: Mapping[str, IndexEntry]) -> list[FileEvent]:
    """Change events that bring the index state in line with a disk snapshot."""
    events: list[FileEvent] = []
    for path in sorted(disk):
        fingerprint = disk[path]
        entry = entries.get(path)
        if entry is None:
            events.append(FileEvent(path, ChangeKind.CREATED, fingerprint))
        elif entry.fingerprint != fingerprint or entry.status != FileStatus.INDEXED:
            events.append(FileEvent(path, ChangeKind.MODIFIED, fingerprint))
    for path in sorted(set(entries) - set(disk)):
        events.append(FileEvent(path, ChangeKind.DELETED))
    return events


class FileSystemReader:
    """Synchronous `read(path) -> text` over a project root."""

    def __init__(self, root: Path, *, max_file_bytes: Optional[int] = None):
        self._root = root
        self._max_file_bytes = max_file_bytes

    def read(self, path: str) -> str:
        """Raises FileNotFoundError when the file is gone (or no longer indexable)."""
        abs_path = self._root / path
        data = abs_path.read_bytes()
        if self._max_file_bytes is not None and len(data) > self._max_file_bytes:
            raise FileNotFoundError(f"{path} exceeds {self._max_file_bytes} bytes")
        if _looks_binary(data):
            raise FileNotFoundError(f"{path} is binary")
        return decode_source(data)
