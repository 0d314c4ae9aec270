"""Index coordinator: per-file state machine driving chunk -> embed -> upsert.

Each tracked file moves through
``untracked -> scanning -> indexed -> stale -> scanning ... -> removed``.
Change events go through a bounded queue consumed by a pool of worker
threads. A path is owned by at most one worker at a time: events that
arrive while it is being scanned are parked (latest wins) and picked up by
the same worker once the scan finishes, so the committed state always ends
on the newest content.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import logging
import queue
import threading
from collections import Counter
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Optional, TypeVar

from ..chunking import Chunk, ChunkingConfig, chunk_file, detect_language
from ..errors import TRANSIENT_ERRORS, EmbeddingFailure, SemanticIndexError, VectorStoreUnavailable
from ..embedding import EmbeddingProvider
from ..vectorstore import SearchFilter, VectorRecord, VectorStore
from . import db as dbmod
from .models import ChangeKind, FileEvent, FileStatus, IndexEntry, IndexSummary, SearchResult
from .retry import Cancelled, RetryPolicy, call_with_retry
from .scanner import FileSystemReader, fingerprint_text, reconcile, snapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ABANDONED = (Cancelled,) + TRANSIENT_ERRORS

_META_KEYS = ("collection", "model_id", "dimension", "project_id")


def project_id_for(root: Path) -> str:
    h = hashlib.sha256()
    h.update(str(root.resolve()).encode("utf-8"))
    return h.hexdigest()[:12]


def path_prefixes(path: str) -> list[str]:
    """Every ancestor directory of a relative path, plus the path itself."""
    parts = PurePosixPath(path).parts
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


class IndexCoordinator:
    def __init__(
        self,
        project_root: Path,
        *,
        provider: EmbeddingProvider,
        store: VectorStore,
        collection: str,
        chunking: ChunkingConfig,
        reader: Optional[Any] = None,
        project_id: Optional[str] = None,
        workers: int = 4,
        queue_size: int = 256,
        retry_policy: RetryPolicy = RetryPolicy(),
        embed_timeout: Optional[float] = None,
        store_timeout: Optional[float] = None,
        exclude_globs: Optional[list[str]] = None,
        max_file_bytes: int = 1_000_000,
        state_db: Optional[Path] = None,
        owns_store: bool = False,
    ):
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self.project_root = project_root.resolve()
        self.project_id = project_id or project_id_for(self.project_root)
        self.collection = collection

        self._provider = provider
        self._store = store
        self._owns_store = owns_store
        self._chunking = chunking
        self._reader = reader or FileSystemReader(self.project_root, max_file_bytes=max_file_bytes)
        self._retry = retry_policy
        self._embed_timeout = embed_timeout
        self._store_timeout = store_timeout
        self._exclude_globs = list(exclude_globs or [])
        self._max_file_bytes = max_file_bytes
        self._state_db = state_db
        self._conn = None

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._entries: dict[str, IndexEntry] = {}
        self._pending: dict[str, FileEvent] = {}
        self._scheduled: set[str] = set()
        self._failures: list[BaseException] = []

        self._queue: queue.Queue[Optional[str]] = queue.Queue(maxsize=queue_size)
        self._cancel = threading.Event()
        self._num_workers = workers
        self._threads: list[threading.Thread] = []
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._started = False
        self._closed = False

    def __enter__(self) -> "IndexCoordinator":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # lifecycle

    def start(self) -> None:
        """Ensure the collection, load Index State and start the worker pool.

        Raises:
            DimensionMismatch: If the collection was built for another model dimension
            VectorStoreUnavailable: If the vector database stays unreachable
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("coordinator is closed")
            if self._started:
                return

        created = call_with_retry(
            lambda: self._store.ensure_collection(self.collection, self._provider.dimension),
            policy=self._retry,
            what=f"ensure collection {self.collection}",
        )
        self._load_state(fresh_collection=created)

        with self._lock:
            if self._embed_timeout is not None or self._store_timeout is not None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self._num_workers * 2, thread_name_prefix="semantic-index-call"
                )
            for i in range(self._num_workers):
                t = threading.Thread(target=self._worker, name=f"semantic-index-worker-{i}", daemon=True)
                t.start()
                self._threads.append(t)
            self._started = True
        logger.info(
            f"Index coordinator started for {self.project_root} "
            f"(collection={self.collection}, files={len(self._entries)}, workers={self._num_workers})"
        )

    def close(self) -> None:
        """Cancel in-flight scans, stop workers and release resources.

        Files whose scan was interrupted stay Stale, so the next run rechecks them.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._cancel.set()

        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        for _ in self._threads:
            self._queue.put(None)
        for t in self._threads:
            t.join()

        with self._lock:
            self._pending.clear()
            self._scheduled.clear()
            self._idle.notify_all()
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if self._owns_store:
            self._store.close()
        logger.debug(f"Index coordinator for {self.project_root} closed")

    # Index State

    def _load_state(self, *, fresh_collection: bool) -> None:
        if self._state_db is None:
            if not fresh_collection:
                self.rebuild_state_from_store()
            return

        with self._lock:
            self._conn = dbmod.connect(self._state_db)
            dbmod.create_schema(self._conn)
            stored_meta = {k: dbmod.get_meta(self._conn, k) for k in _META_KEYS}

        if fresh_collection:
            # Nothing recorded can describe a collection that did not exist.
            with self._lock:
                self._entries = {}
                dbmod.drop_schema(self._conn)
                dbmod.create_schema(self._conn)
                with self._conn:
                    self._write_meta()
            return

        if stored_meta != self._meta():
            logger.info(f"Index state at {self._state_db} does not match {self.collection}; rebuilding from store")
            self.rebuild_state_from_store()
            return

        with self._lock:
            entries = dbmod.load_entries(self._conn)
            for path, entry in entries.items():
                # A scan that was running when the process died never committed.
                if entry.status == FileStatus.SCANNING:
                    entries[path] = replace(entry, status=FileStatus.STALE)
            self._entries = entries

    def _meta(self) -> dict[str, str]:
        return {
            "collection": self.collection,
            "model_id": self._provider.model_id,
            "dimension": str(self._provider.dimension),
            "project_id": self.project_id,
        }

    def _write_meta(self) -> None:
        for key, value in self._meta().items():
            dbmod.set_meta(self._conn, key, value)

    def rebuild_state_from_store(self) -> int:
        """Reconstruct Index State from stored payloads. Returns the number of files found.

        A file counts as Indexed only when all of its points share one
        fingerprint and the full chunk count for that fingerprint is present.
        """
        ids: dict[str, set[str]] = {}
        fingerprints: dict[str, set[Optional[str]]] = {}
        counts: dict[str, set[int]] = {}
        languages: dict[str, Optional[str]] = {}
        for payload in self._store.scroll_payloads(self.collection, SearchFilter(project_id=self.project_id)):
            path = payload.get("file_path")
            chunk_id = payload.get("chunk_id")
            if not path or not chunk_id:
                continue
            ids.setdefault(path, set()).add(chunk_id)
            fingerprints.setdefault(path, set()).add(payload.get("fingerprint"))
            counts.setdefault(path, set()).add(int(payload.get("chunk_count", -1)))
            languages[path] = payload.get("language")

        entries: dict[str, IndexEntry] = {}
        for path, chunk_ids in ids.items():
            fps = fingerprints[path]
            complete = len(fps) == 1 and counts[path] == {len(chunk_ids)}
            entries[path] = IndexEntry(
                path=path,
                status=FileStatus.INDEXED if complete else FileStatus.STALE,
                fingerprint=next(iter(fps)) if complete else None,
                chunk_ids=frozenset(chunk_ids),
                language=languages.get(path),
            )

        with self._lock:
            self._entries = entries
            if self._conn is not None:
                with self._conn:
                    dbmod.replace_all(self._conn, entries.values())
                    self._write_meta()
        logger.info(f"Rebuilt index state for {len(entries)} file(s) from collection {self.collection}")
        return len(entries)

    def _set_entry(self, entry: IndexEntry) -> None:
        with self._lock:
            prev = self._entries.get(entry.path)
            self._entries[entry.path] = entry
            if prev is None or prev.status != entry.status:
                old = prev.status.value if prev else FileStatus.UNTRACKED.value
                logger.debug(f"{entry.path}: {old} -> {entry.status.value}")
            if self._conn is not None:
                with self._conn:
                    dbmod.save_entry(self._conn, entry)

    def _drop_entry(self, path: str) -> None:
        with self._lock:
            prev = self._entries.pop(path, None)
            if prev is not None:
                logger.debug(f"{path}: {prev.status.value} -> {FileStatus.REMOVED.value}")
            if self._conn is not None:
                with self._conn:
                    dbmod.delete_entries(self._conn, [path])

    def _mark_stale(self, path: str, error: str, *, chunk_ids: Optional[frozenset[str]] = None) -> None:
        with self._lock:
            entry = self._entries.get(path) or IndexEntry(path=path, status=FileStatus.STALE, fingerprint=None)
            self._set_entry(
                replace(
                    entry,
                    status=FileStatus.STALE,
                    chunk_ids=entry.chunk_ids if chunk_ids is None else chunk_ids,
                    last_error=error,
                )
            )

    # events

    def _relpath(self, path: str) -> str:
        p = Path(path)
        if p.is_absolute():
            p = p.resolve().relative_to(self.project_root)
        return PurePosixPath(p.as_posix()).as_posix()

    def submit(self, event: FileEvent) -> bool:
        """Queue a change event. Returns False when it requires no work.

        Blocks while the queue is full.
        """
        path = self._relpath(event.path)
        if path != event.path:
            event = replace(event, path=path)

        with self._lock:
            if self._closed:
                raise RuntimeError("coordinator is closed")
            entry = self._entries.get(path)
            if path not in self._scheduled:
                if event.kind == ChangeKind.DELETED and entry is None:
                    return False
                if (
                    event.kind != ChangeKind.DELETED
                    and entry is not None
                    and entry.status == FileStatus.INDEXED
                    and event.fingerprint is not None
                    and event.fingerprint == entry.fingerprint
                ):
                    logger.debug(f"{path}: unchanged, skipping")
                    return False
            if entry is not None and entry.status in (FileStatus.INDEXED, FileStatus.SCANNING):
                self._set_entry(replace(entry, status=FileStatus.STALE))
            self._pending[path] = event
            if path in self._scheduled:
                return True
            self._scheduled.add(path)

        while True:
            try:
                self._queue.put(path, timeout=0.1)
                return True
            except queue.Full:
                if self._cancel.is_set():
                    return False

    def index_file(self, path: str) -> bool:
        return self.submit(FileEvent(path, ChangeKind.MODIFIED))

    def remove_file(self, path: str) -> bool:
        return self.submit(FileEvent(path, ChangeKind.DELETED))

    def index_project(self) -> int:
        """Scan the project root and queue every change against Index State."""
        disk = snapshot(self.project_root, self._exclude_globs, self._max_file_bytes)
        with self._lock:
            entries = dict(self._entries)
        events = reconcile(disk, entries)
        for event in events:
            self.submit(event)
        logger.info(f"Scanned {len(disk)} file(s) under {self.project_root}: {len(events)} change(s) queued")
        return len(events)

    def retry_stale(self) -> int:
        """Resubmit every Stale file. Returns how many were queued."""
        with self._lock:
            stale = sorted(p for p, e in self._entries.items() if e.status == FileStatus.STALE)
        queued = 0
        for path in stale:
            if self.submit(FileEvent(path, ChangeKind.MODIFIED)):
                queued += 1
        return queued

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no file is queued or scanning. Returns False on timeout.

        Re-raises the first non-transient failure a worker hit since the last call.
        """
        with self._idle:
            done = self._idle.wait_for(lambda: not self._scheduled, timeout=timeout)
            if self._failures:
                failure = self._failures[0]
                self._failures.clear()
                raise failure
            return done

    # workers

    def _worker(self) -> None:
        while True:
            path = self._queue.get()
            if path is None:
                return
            self._drain(path)

    def _drain(self, path: str) -> None:
        while True:
            with self._lock:
                event = self._pending.pop(path, None)
                if event is None or self._cancel.is_set():
                    self._scheduled.discard(path)
                    self._idle.notify_all()
                    return
            try:
                self._process(event)
            except SemanticIndexError as e:
                logger.error(f"Indexing {path} failed: {e.describe()}")
                self._record_failure(path, e)
            except Exception as e:
                logger.exception(f"Unexpected error while indexing {path}")
                self._record_failure(path, e)

    def _record_failure(self, path: str, error: Exception) -> None:
        self._mark_stale(path, str(error))
        with self._lock:
            self._failures.append(error)

    def _call(
        self,
        fn: Callable[[], T],
        *,
        what: str,
        timeout: Optional[float],
        timeout_error: type[SemanticIndexError],
    ) -> T:
        return call_with_retry(
            fn,
            policy=self._retry,
            what=what,
            cancel=self._cancel,
            timeout=timeout,
            executor=self._executor,
            timeout_error=timeout_error,
        )

    def _embed_call(self, fn: Callable[[], T], what: str) -> T:
        return self._call(fn, what=what, timeout=self._embed_timeout, timeout_error=EmbeddingFailure)

    def _store_call(self, fn: Callable[[], T], what: str) -> T:
        return self._call(fn, what=what, timeout=self._store_timeout, timeout_error=VectorStoreUnavailable)

    def _process(self, event: FileEvent) -> None:
        path = event.path
        if event.kind == ChangeKind.DELETED:
            self._remove(path)
            return

        with self._lock:
            prev = self._entries.get(path)
            old_ids = prev.chunk_ids if prev else frozenset()
            old_fingerprint = prev.fingerprint if prev else None
            self._set_entry(
                IndexEntry(
                    path=path,
                    status=FileStatus.SCANNING,
                    fingerprint=prev.fingerprint if prev else None,
                    chunk_ids=old_ids,
                    language=prev.language if prev else None,
                )
            )

        try:
            text = self._reader.read(path)
        except FileNotFoundError:
            self._remove(path)
            return
        except OSError as e:
            self._mark_stale(path, str(e))
            logger.warning(f"Cannot read {path}: {e}")
            return

        fingerprint = fingerprint_text(text)
        chunks = chunk_file(path, text, self._chunking)
        new_ids = frozenset(c.chunk_id for c in chunks)
        to_add = [c for c in chunks if c.chunk_id not in old_ids]
        # Kept chunks may have moved, and their payloads still name the previous fingerprint.
        to_refresh = [c for c in chunks if c.chunk_id in old_ids] if fingerprint != old_fingerprint else []
        to_delete = sorted(old_ids - new_ids)

        written: set[str] = set()
        batch_size = self._provider.batch_size
        try:
            for i in range(0, len(to_add), batch_size):
                batch = to_add[i : i + batch_size]
                self._write_batch(path, batch, fingerprint, len(chunks))
                written.update(c.chunk_id for c in batch)
            if self._cancel.is_set():
                raise Cancelled(path)
            if to_refresh:
                updates = [(c.chunk_id, self._payload(c, fingerprint, len(chunks))) for c in to_refresh]
                self._store_call(
                    lambda: self._store.set_payloads(self.collection, updates),
                    f"refresh payloads of {len(updates)} kept chunk(s) of {path}",
                )
            if to_delete:
                self._store_call(
                    lambda: self._store.delete(self.collection, to_delete),
                    f"delete {len(to_delete)} superseded chunk(s) of {path}",
                )
        except _ABANDONED as e:
            self._mark_stale(path, str(e) or type(e).__name__, chunk_ids=old_ids | written)
            if isinstance(e, Cancelled):
                logger.debug(f"Scan of {path} cancelled")
            else:
                logger.warning(f"{path} left stale after {self._retry.attempts} attempt(s): {e}")
            return

        with self._lock:
            status = FileStatus.STALE if path in self._pending else FileStatus.INDEXED
            self._set_entry(
                IndexEntry(
                    path=path,
                    status=status,
                    fingerprint=fingerprint,
                    chunk_ids=new_ids,
                    language=detect_language(path),
                )
            )
        logger.debug(f"Indexed {path}: {len(chunks)} chunk(s), {len(to_add)} new, {len(to_delete)} deleted")

    def _write_batch(self, path: str, batch: list[Chunk], fingerprint: str, chunk_count: int) -> None:
        if self._cancel.is_set():
            raise Cancelled(path)
        texts = [c.embedding_text() for c in batch]
        embedded = self._embed_call(lambda: self._provider.embed(texts), f"embed {len(batch)} chunk(s) of {path}")
        if embedded.truncated_count:
            logger.warning(f"{path}: {embedded.truncated_count} chunk(s) truncated to the model context length")
        if self._cancel.is_set():
            raise Cancelled(path)

        records = [
            VectorRecord(chunk_id=c.chunk_id, vector=vec.tolist(), payload=self._payload(c, fingerprint, chunk_count))
            for c, vec in zip(batch, embedded.vectors)
        ]
        self._store_call(lambda: self._store.upsert(self.collection, records), f"upsert {len(records)} chunk(s) of {path}")

    def _payload(self, chunk: Chunk, fingerprint: str, chunk_count: int) -> dict[str, Any]:
        return {
            "file_path": chunk.file_path,
            "path_prefixes": path_prefixes(chunk.file_path),
            "start_line": chunk.start_line,
            "end_line": chunk.end_line,
            "start_byte": chunk.start_byte,
            "end_byte": chunk.end_byte,
            "content": chunk.text,
            "language": chunk.language,
            "kind": chunk.kind.value,
            "name": chunk.name,
            "model_id": self._provider.model_id,
            "project_id": self.project_id,
            "fingerprint": fingerprint,
            "chunk_count": chunk_count,
        }

    def _remove(self, path: str) -> None:
        with self._lock:
            entry = self._entries.get(path)
        ids = sorted(entry.chunk_ids) if entry else []
        try:
            if ids:
                self._store_call(lambda: self._store.delete(self.collection, ids), f"delete {len(ids)} chunk(s) of {path}")
            # Points written by an interrupted scan that never reached Index State.
            self._store_call(lambda: self._store.delete_by_file(self.collection, path), f"delete points of {path}")
        except _ABANDONED as e:
            self._mark_stale(path, str(e) or type(e).__name__)
            logger.warning(f"Removal of {path} deferred: {e}")
            return
        self._drop_entry(path)

    # queries

    def search(
        self,
        query: str,
        k: int = 10,
        filter: Optional[SearchFilter] = None,
        *,
        min_score: Optional[float] = None,
    ) -> list[SearchResult]:
        """Embed the query and return up to k chunks, best first.

        Runs against whatever is committed to the vector store; does not wait
        for in-flight indexing.

        Raises:
            EmbeddingFailure: If the query could not be embedded
            VectorStoreUnavailable: If the vector database cannot be reached
        """
        if k <= 0 or not query.strip():
            return []
        embedded = self._provider.embed([query], is_query=True)
        flt = replace(filter or SearchFilter(), project_id=self.project_id)
        records = self._store.search(self.collection, embedded.vectors[0].tolist(), k, flt, min_score=min_score)
        return [SearchResult.from_payload(r.chunk_id, r.score, r.payload) for r in records]

    def entry(self, path: str) -> Optional[IndexEntry]:
        with self._lock:
            return self._entries.get(self._relpath(path))

    def status_of(self, path: str) -> FileStatus:
        entry = self.entry(path)
        return entry.status if entry is not None else FileStatus.UNTRACKED

    def entries(self) -> dict[str, IndexEntry]:
        with self._lock:
            return dict(self._entries)

    def status(self) -> IndexSummary:
        with self._lock:
            counts = Counter(e.status.value for e in self._entries.values())
            chunks = sum(len(e.chunk_ids) for e in self._entries.values())
            pending = len(self._scheduled)
        return IndexSummary(
            project_root=str(self.project_root),
            collection=self.collection,
            model_id=self._provider.model_id,
            device=self._provider.device,
            quantization=self._provider.quantization,
            dimension=self._provider.dimension,
            files=dict(counts),
            chunks=chunks,
            pending=pending,
        )
