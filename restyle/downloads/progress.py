"""
Progress tracking for multi-file download tasks.

One download task fetches several files in sequence. Progress is reported
for the task as a whole: bytes from every file are summed into a single
downloaded/total pair, so the figure only ever grows across file
boundaries.

Each update produces a DownloadProgress snapshot. Snapshots are pushed as
('download_progress', DownloadProgress) messages into an optional event
queue, throttled so a fast transfer (one update per 64 KiB block) does not
flood the consumer. File boundaries always push immediately.

Usage:
    tracker = DownloadProgressTracker(task_id, repo, event_queue, throttle_ms=100)
    tracker.set_total(expected_bytes)
    tracker.begin_file("model.gguf")
    for block in response.iter_content(DOWNLOAD_BLOCK_SIZE):
        snapshot = tracker.add(len(block))
    tracker.end_file("model.gguf")
"""

from dataclasses import dataclass
from queue import Queue
import threading
import time


@dataclass(frozen=True)
class DownloadProgress:
    """
    Point-in-time progress of one download task.

    Attributes:
        task_id: Download task this snapshot belongs to.
        repo: Repository being downloaded.
        filename: File currently transferring (None between files).
        downloaded_bytes: Bytes received so far across all files.
        total_bytes: Expected total, or None when unknown.
    """
    task_id: str
    repo: str
    filename: str | None
    downloaded_bytes: int
    total_bytes: int | None = None

    @property
    def percentage(self) -> int | None:
        """Completion percentage (0-100), or None without a known total."""
        if not self.total_bytes:
            return None
        return min(100, int((self.downloaded_bytes / self.total_bytes) * 100))


class DownloadProgressTracker:
    """
    Thread-safe byte counter for one download task.

    Args:
        task_id: Owning task id.
        repo: Repository being downloaded.
        event_queue: Optional queue receiving ('download_progress', DownloadProgress).
        throttle_ms: Minimum milliseconds between pushed block updates.
    """

    def __init__(self, task_id: str, repo: str, event_queue: Queue = None, throttle_ms: int = 100):
        self.task_id = task_id
        self.repo = repo
        self.event_queue = event_queue
        self.throttle_ms = throttle_ms
        self._downloaded = 0
        self._total = None
        self._filename = None
        self._last_push = 0.0
        self._lock = threading.Lock()

    def set_total(self, total_bytes: int | None) -> None:
        """Seed the expected total; non-positive values mean unknown."""
        with self._lock:
            self._total = total_bytes if total_bytes and total_bytes > 0 else None

    def offer_total(self, total_bytes: int | None) -> None:
        """Use total_bytes only if no total is known yet (Content-Length fallback)."""
        with self._lock:
            if self._total is None and total_bytes and total_bytes > 0:
                self._total = total_bytes

    def begin_file(self, filename: str) -> DownloadProgress:
        with self._lock:
            self._filename = filename
            return self._push(force=True)

    def add(self, nbytes: int) -> DownloadProgress:
        """Count received bytes (throttled push)."""
        with self._lock:
            self._downloaded += nbytes
            return self._push(force=False)

    def end_file(self, filename: str) -> DownloadProgress:
        with self._lock:
            if self._filename == filename:
                self._filename = None
            return self._push(force=True)

    def snapshot(self) -> DownloadProgress:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> DownloadProgress:
        # Must be called while holding _lock.
        return DownloadProgress(
            task_id=self.task_id,
            repo=self.repo,
            filename=self._filename,
            downloaded_bytes=self._downloaded,
            total_bytes=self._total,
        )

    def _push(self, force: bool) -> DownloadProgress:
        # Must be called while holding _lock.
        snapshot = self._snapshot()
        if self.event_queue is None:
            return snapshot
        now = time.time() * 1000
        if force or now - self._last_push >= self.throttle_ms:
            self.event_queue.put(('download_progress', snapshot))
            self._last_push = now
        return snapshot

    @property
    def downloaded(self) -> int:
        with self._lock:
            return self._downloaded

    @property
    def total(self) -> int | None:
        with self._lock:
            return self._total
