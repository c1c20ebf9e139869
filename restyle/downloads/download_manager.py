"""
Download Manager

Runs named, cancellable, progress-tracked multi-file download tasks that
install a model into the local layout.

Lifecycle of a task:
    queued -> running{downloaded_bytes, total_bytes} -> completed{path}
                                                     -> failed{error}
                                                     -> cancelled

Terminal states never change again. A task is only mutated by its own
background worker; the manager's only influence on a running task is its
cancellation event.

Files are fetched in a fixed order and later files start only after the
earlier required ones succeed:
    base:  info.json, README.md (optional), model.gguf
    style: info.json, README.md (optional), adapter.gguf, system_prompt.txt
The install manifest is written last, so a partially fetched model is
never recorded as installed.
"""

from __future__ import annotations

import os
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from queue import Queue
from typing import Any

import requests

from restyle.catalog import (
    MODEL_TYPE_STYLE,
    RepositoryClient,
    normalize_model_type,
    primary_file_for,
    validate_repo,
)
from restyle.config import (
    ADAPTER_WEIGHTS_FILE,
    BASE_WEIGHTS_FILE,
    DOWNLOAD_BLOCK_SIZE,
    DOWNLOAD_PROGRESS_THROTTLE_MS,
    INFO_FILE,
    README_FILE,
    SYSTEM_PROMPT_FILE,
)
from restyle.downloads.progress import DownloadProgress, DownloadProgressTracker
from restyle.errors import Cancelled, DownloadFailed, InvalidRepo, UnknownTask
from restyle.library import ModelStore
from restyle.logging_config import debug_log, error, info, warning
from restyle.parallel import ExecutorStrategy, ThreadPoolStrategy


# =============================================================================
# Task status (tagged union)
# =============================================================================

@dataclass(frozen=True)
class Queued:
    state = "queued"


@dataclass(frozen=True)
class Running:
    downloaded_bytes: int = 0
    total_bytes: int | None = None
    state = "running"


@dataclass(frozen=True)
class Completed:
    path: str
    state = "completed"


@dataclass(frozen=True)
class Failed:
    error: str
    code: str = DownloadFailed.code
    state = "failed"


@dataclass(frozen=True)
class CancelledStatus:
    state = "cancelled"


TERMINAL_STATES = ("completed", "failed", "cancelled")


def status_to_dict(status) -> dict[str, Any]:
    data = {'state': status.state}
    if isinstance(status, Running):
        data['downloadedBytes'] = status.downloaded_bytes
        if status.total_bytes:
            data['totalBytes'] = status.total_bytes
    elif isinstance(status, Completed):
        data['path'] = status.path
    elif isinstance(status, Failed):
        data['error'] = status.error
        data['code'] = status.code
    return data


@dataclass
class DownloadTask:
    """
    One invocation of DownloadManager.start().

    started_at / completed_at are epoch milliseconds.
    """
    id: str
    repo: str
    type: str
    target_path: str
    status: Any = field(default_factory=Queued)
    started_at: int = 0
    completed_at: int | None = None
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)
    _response: Any = field(default=None, repr=False, compare=False)
    _future: Any = field(default=None, repr=False, compare=False)

    @property
    def state(self) -> str:
        return self.status.state

    @property
    def is_terminal(self) -> bool:
        return self.status.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        data = {
            'id': self.id,
            'repo': self.repo,
            'type': self.type,
            'targetPath': self.target_path,
            'status': status_to_dict(self.status),
            'startedAt': self.started_at,
        }
        if self.completed_at is not None:
            data['completedAt'] = self.completed_at
        return data


@dataclass(frozen=True)
class _Artifact:
    filename: str
    optional: bool = False
    primary: bool = False


def artifacts_for(model_type: str) -> list[_Artifact]:
    """Files to fetch for a model type, in download order."""
    artifacts = [_Artifact(INFO_FILE), _Artifact(README_FILE, optional=True)]
    if model_type == MODEL_TYPE_STYLE:
        artifacts.append(_Artifact(ADAPTER_WEIGHTS_FILE, primary=True))
        artifacts.append(_Artifact(SYSTEM_PROMPT_FILE))
    else:
        artifacts.append(_Artifact(BASE_WEIGHTS_FILE, primary=True))
    return artifacts


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_task_id() -> str:
    return f"dl_{_now_ms()}_{uuid.uuid4().hex[:6]}"


# =============================================================================
# Manager
# =============================================================================

class DownloadManager:
    """
    Starts, tracks and cancels model download tasks.

    Args:
        client: RepositoryClient used for metadata and file streams.
        store: ModelStore that owns the destination layout.
        strategy: ExecutorStrategy running the transfers. Defaults to a
                  ThreadPoolStrategy; tests inject SequentialStrategy.
        event_queue: Optional queue receiving ('download_progress', DownloadProgress)
                     and ('download_finished', DownloadTask) messages.
        block_size: Bytes read per network block.

    Example:
        manager = DownloadManager(RepositoryClient(), ModelStore())
        task = manager.start("Rewritelikeme/some-style", "style")
        ...
        manager.status(task.id).state   # 'running' / 'completed' / ...
    """

    def __init__(
        self,
        client: RepositoryClient,
        store: ModelStore,
        strategy: ExecutorStrategy = None,
        event_queue: Queue = None,
        block_size: int = DOWNLOAD_BLOCK_SIZE,
        throttle_ms: int = DOWNLOAD_PROGRESS_THROTTLE_MS,
    ):
        self.client = client
        self.store = store
        self.strategy = strategy or ThreadPoolStrategy(thread_name_prefix="restyle-download")
        self.event_queue = event_queue
        self.block_size = block_size
        self.throttle_ms = throttle_ms
        self._tasks: dict[str, DownloadTask] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def start(self, repo: str, model_type: str = None) -> DownloadTask:
        """
        Start downloading a model; returns immediately with the new task.

        If the model's primary weight file already exists the task is
        returned already completed and no network call is made.

        Args:
            repo: Repository id (org/name).
            model_type: 'base' or 'style'. Inferred from the catalog when omitted.

        Raises:
            InvalidRepo: If repo is not org/name or the type cannot be inferred.
            RepositoryFetchFailed: If type inference needs the catalog and it fails.
        """
        validate_repo(repo)
        debug_log(f"[DL] request repo={repo} type={model_type}")
        resolved_type = normalize_model_type(model_type) if model_type else None
        if resolved_type is None:
            entry = self.client.resolve_repo(repo)
            resolved_type = normalize_model_type(entry.type)
            if resolved_type is None:
                raise InvalidRepo(repo)

        folder = self.store.folder_for(repo, resolved_type)
        folder.mkdir(parents=True, exist_ok=True)
        task = DownloadTask(
            id=_new_task_id(),
            repo=repo,
            type=resolved_type,
            target_path=str(folder),
            started_at=_now_ms(),
        )

        if self.store.is_installed(repo, resolved_type):
            task.status = Completed(path=str(folder))
            task.completed_at = task.started_at
            with self._lock:
                self._tasks[task.id] = task
            debug_log(f"[DL] already installed, marking completed id={task.id} repo={repo} type={resolved_type}")
            return self._snapshot(task)

        with self._lock:
            self._tasks[task.id] = task
        task._future = self.strategy.submit(self._run, task)
        return self._snapshot(task)

    def status(self, task_id: str) -> DownloadTask:
        """
        Latest snapshot of a task.

        Raises:
            UnknownTask: If no task has this id.
        """
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(f"Unknown download id: {task_id}")
        return self._snapshot(task)

    def cancel(self, task_id: str) -> bool:
        """
        Abort a queued or running task.

        Returns:
            True if a cancellation signal was delivered, False if the task is
            unknown or already finished.
        """
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None or task.is_terminal:
            return False
        debug_log(f"[DL] cancel requested id={task_id}")
        task._cancel_event.set()
        response = task._response
        if response is not None:
            # Unblocks a worker sitting in a socket read
            try:
                response.close()
            except Exception as e:
                debug_log(f"[DL] closing response for {task_id} raised {e!r}")
        return True

    def list(self) -> list[DownloadTask]:
        with self._lock:
            tasks = list(self._tasks.values())
        return [self._snapshot(t) for t in tasks]

    def wait(self, task_id: str, timeout: float = None) -> DownloadTask:
        """Block until a task reaches a terminal state; returns its final snapshot."""
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(f"Unknown download id: {task_id}")
        if task._future is not None:
            task._future.result(timeout=timeout)
        return self._snapshot(task)

    def shutdown(self, cancel_running: bool = True):
        """Cancel outstanding tasks and stop the worker pool."""
        if cancel_running:
            for task in self.list():
                self.cancel(task.id)
        self.strategy.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot(task: DownloadTask) -> DownloadTask:
        return replace(task)

    def _publish(self, kind: str, payload):
        if self.event_queue is not None:
            self.event_queue.put((kind, payload))

    def _run(self, task: DownloadTask) -> None:
        """Background body of one task. Never raises; outcome lands in task.status."""
        tracker = DownloadProgressTracker(task.id, task.repo, self.event_queue, self.throttle_ms)
        folder = Path(task.target_path)
        placed: list[Path] = []
        try:
            if task._cancel_event.is_set():
                raise Cancelled(f"Download {task.id} cancelled before start")

            info(f"[DL] start id={task.id} repo={task.repo} type={task.type}")
            details = self.client.resolve_repo(task.repo)
            tracker.set_total(details.size_bytes)
            self._set_running(task, tracker.snapshot())

            for artifact in artifacts_for(task.type):
                if task._cancel_event.is_set():
                    raise Cancelled(f"Download {task.id} cancelled")
                try:
                    self._download_file(task, artifact, folder / artifact.filename, tracker)
                    placed.append(folder / artifact.filename)
                except Cancelled:
                    raise
                except Exception as e:
                    if artifact.optional and not task._cancel_event.is_set():
                        debug_log(f"[DL] optional {artifact.filename} skipped for {task.repo}: {e}")
                        continue
                    raise

            try:
                self.store.write_manifest(task.repo, task.type, details.latest_revision)
            except OSError as e:
                warning(f"[DL] failed to write install manifest id={task.id} repo={task.repo}: {e}")

            task.status = Completed(path=str(folder))
            task.completed_at = _now_ms()
            self.client.invalidate(task.repo)
            info(f"[DL] completed id={task.id} repo={task.repo}")
        except Exception as e:
            if task._cancel_event.is_set():
                task.status = CancelledStatus()
                info(f"[DL] cancelled id={task.id} repo={task.repo}")
            else:
                message = getattr(e, 'message', None) or str(e) or "Download failed"
                code = getattr(e, 'code', DownloadFailed.code)
                task.status = Failed(error=message, code=code)
                error(f"[DL] failed id={task.id} repo={task.repo}: {message}")
            self._discard(task, placed)
            task.completed_at = _now_ms()
        finally:
            task._response = None
            self._publish('download_finished', self._snapshot(task))

    def _discard(self, task: DownloadTask, placed: list[Path]) -> None:
        """Remove files this task already moved into place, so the model never looks installed."""
        for path in placed:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                debug_log(f"[DL] could not remove {path} for id={task.id}: {e}")
        if placed:
            debug_log(f"[DL] removed {len(placed)} partial file(s) for id={task.id} repo={task.repo}")

    def _set_running(self, task: DownloadTask, snapshot: DownloadProgress):
        task.status = Running(downloaded_bytes=snapshot.downloaded_bytes, total_bytes=snapshot.total_bytes)

    def _download_file(
        self,
        task: DownloadTask,
        artifact: _Artifact,
        dest: Path,
        tracker: DownloadProgressTracker,
    ) -> None:
        """
        Stream one repository file into dest.

        Data lands in dest + '.part' and is renamed into place only once the
        whole body has arrived.
        """
        part = dest.with_name(dest.name + ".part")
        dest.parent.mkdir(parents=True, exist_ok=True)
        response = self.client.open_file_stream(task.repo, artifact.filename)
        task._response = response
        try:
            if task._cancel_event.is_set():
                raise Cancelled(f"Download {task.id} cancelled")
            if artifact.primary:
                try:
                    tracker.offer_total(int(response.headers.get('content-length') or 0))
                except (TypeError, ValueError):
                    pass
            self._set_running(task, tracker.begin_file(artifact.filename))
            with open(part, 'wb') as f:
                try:
                    for block in response.iter_content(chunk_size=self.block_size):
                        if task._cancel_event.is_set():
                            raise Cancelled(f"Download {task.id} cancelled")
                        if not block:
                            continue
                        f.write(block)
                        self._set_running(task, tracker.add(len(block)))
                except Cancelled:
                    raise
                except (requests.exceptions.RequestException, OSError, ValueError, AttributeError) as e:
                    if task._cancel_event.is_set():
                        raise Cancelled(f"Download {task.id} cancelled") from e
                    raise DownloadFailed(f"Failed to download {artifact.filename} for {task.repo}: {e}") from e
            if task._cancel_event.is_set():
                raise Cancelled(f"Download {task.id} cancelled")
            os.replace(part, dest)
            self._set_running(task, tracker.end_file(artifact.filename))
            debug_log(f"[DL] fetched {artifact.filename} for {task.repo} ({tracker.downloaded} bytes so far)")
        finally:
            task._response = None
            response.close()
            if part.exists():
                try:
                    part.unlink()
                except OSError as e:
                    debug_log(f"[DL] could not remove {part}: {e}")
