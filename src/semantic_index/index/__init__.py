"""Incremental index maintenance and query entry point."""

from .coordinator import IndexCoordinator, path_prefixes, project_id_for
from .models import ChangeKind, FileEvent, FileStatus, IndexEntry, IndexSummary, SearchResult
from .retry import Cancelled, RetryPolicy, call_with_retry
from .scanner import FileSystemReader, fingerprint_text, iter_source_files, reconcile, snapshot
from .search import NO_RESULTS, render_results_markdown

__all__ = [
    "NO_RESULTS",
    "Cancelled",
    "ChangeKind",
    "FileEvent",
    "FileStatus",
    "FileSystemReader",
    "IndexCoordinator",
    "IndexEntry",
    "IndexSummary",
    "RetryPolicy",
    "SearchResult",
    "call_with_retry",
    "fingerprint_text",
    "iter_source_files",
    "path_prefixes",
    "project_id_for",
    "reconcile",
    "render_results_markdown",
    "snapshot",
]
