"""
Activation Coordinator

Turns a (base, style) selection into a running, ready engine:

    1. Validate the selection
    2. Check the style's adapter and prompt are on disk (before touching anything)
    3. Work out the base repo (style's info.json, then the catalog)
    4. Make sure the base weights are installed, downloading if needed
    5. Stop any engine already running
    6. Resolve binary, pick a port, launch, wait for liveness and readiness
    7. Record the selection and remember it in user preferences

activate() and deactivate() are serialized; a second call waits for the
first to finish.
"""

import threading
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Callable

from restyle.catalog import MODEL_TYPE_BASE, RepositoryClient, validate_repo
from restyle.config import (
    ENGINE_HOST,
    ENGINE_LIVE_TIMEOUT_SECONDS,
    ENGINE_PORT_MAX_TRIES,
    ENGINE_PORT_START,
    ENGINE_READY_TIMEOUT_SECONDS,
    get_setting,
)
from restyle.downloads import DownloadManager
from restyle.engine.binaries import resolve_engine_binary
from restyle.engine.ports import find_free_port
from restyle.engine.supervisor import ActivationSelection, EngineState, EngineSupervisor
from restyle.errors import Cancelled, DownloadFailed, ModelStructureInvalid
from restyle.library import ModelStore
from restyle.logging_config import Timer, debug_log, error, info
from restyle.preferences import UserPreferencesManager


@dataclass(frozen=True)
class ActivationState:
    active: bool
    base_repo: str | None = None
    style_repo: str | None = None
    pid: int | None = None
    port: int | None = None
    url: str | None = None

    def to_dict(self) -> dict:
        return {
            'active': self.active,
            'base': {'repo': self.base_repo} if self.base_repo else None,
            'style': {'repo': self.style_repo} if self.style_repo else None,
            'server': {'pid': self.pid, 'port': self.port, 'url': self.url},
        }


class ActivationCoordinator:
    """
    Owns the engine lifecycle for one (base, style) selection at a time.

    Args:
        store: Local model layout.
        client: Catalog client, used to find a style's base model.
        downloads: DownloadManager used to fetch a missing base model.
        supervisor: EngineSupervisor (creates one with a fresh EngineState if omitted).
        preferences: Where the last selection is remembered; skipped when None.
        binary_resolver: Returns the engine executable path.
        port_finder: find_free_port-compatible callable.
        download_timeout: Seconds to wait for a base download (None = no limit).
    """

    def __init__(
        self,
        store: ModelStore,
        client: RepositoryClient,
        downloads: DownloadManager,
        supervisor: EngineSupervisor = None,
        preferences: UserPreferencesManager = None,
        binary_resolver: Callable = resolve_engine_binary,
        port_finder: Callable = find_free_port,
        download_timeout: float = None,
    ):
        self.store = store
        self.client = client
        self.downloads = downloads
        self.supervisor = supervisor or EngineSupervisor()
        self.preferences = preferences
        self.binary_resolver = binary_resolver
        self.port_finder = port_finder
        self.download_timeout = download_timeout

        self.host = get_setting('engine', 'host', ENGINE_HOST)
        self.port_start = int(get_setting('engine', 'port_start', ENGINE_PORT_START))
        self.port_max_tries = int(get_setting('engine', 'port_max_tries', ENGINE_PORT_MAX_TRIES))
        self.live_timeout = float(get_setting('engine', 'live_timeout_seconds', ENGINE_LIVE_TIMEOUT_SECONDS))
        self.ready_timeout = float(get_setting('engine', 'ready_timeout_seconds', ENGINE_READY_TIMEOUT_SECONDS))

        self._activation_lock = threading.Lock()

    @property
    def engine_state(self) -> EngineState:
        return self.supervisor.state

    def state(self) -> ActivationState:
        engine, selection = self.engine_state.snapshot()
        if engine is None:
            return ActivationState(active=False)
        return ActivationState(
            active=True,
            base_repo=selection.base_repo,
            style_repo=selection.style_repo,
            pid=engine.pid,
            port=engine.port,
            url=engine.url,
        )

    def activate(self, base_repo: str = None, style_repo: str = None) -> ActivationState:
        """
        Start the engine for a selection, replacing any running one.

        Raises:
            ModelStructureInvalid: Empty selection, style not installed, or no base found.
            DownloadFailed / Cancelled: The base model download did not complete.
            BinaryMissing / NoFreePort / EngineUnreachable: Engine could not be started.
        """
        with self._activation_lock:
            try:
                with Timer("Activation"):
                    return self._activate(base_repo, style_repo)
            except Exception as e:
                error(f"[ACT] failed: {e}")
                raise

    def _activate(self, base_repo: str | None, style_repo: str | None) -> ActivationState:
        if not base_repo and not style_repo:
            raise ModelStructureInvalid("Missing activation selection")

        style = None
        if style_repo:
            validate_repo(style_repo)
            style = self.store.ensure_style_installed(style_repo)
            debug_log(f"[ACT] style artifacts present for {style_repo}")

        if not base_repo:
            base_repo = self._resolve_base_repo(style_repo)
        validate_repo(base_repo)

        model_path = self._ensure_base_installed(base_repo)

        self.supervisor.terminate()

        binary = self.binary_resolver()
        port = self.port_finder(self.host, self.port_start, self.port_max_tries)
        info(f"[ACT] activating base={base_repo} style={style_repo} port={port}")

        self.supervisor.start(
            binary,
            model_path,
            adapter_path=style.adapter if style else None,
            host=self.host,
            port=port,
            selection=ActivationSelection(base_repo=base_repo, style_repo=style_repo),
            live_timeout=self.live_timeout,
            ready_timeout=self.ready_timeout,
        )

        if self.preferences is not None:
            self.preferences.set_last_selection(base_repo, style_repo)
        return self.state()

    def _resolve_base_repo(self, style_repo: str) -> str:
        base_repo = self.store.local_base_repo(style_repo)
        if base_repo:
            debug_log(f"[ACT] base for {style_repo} from local info.json: {base_repo}")
            return base_repo
        details = self.client.resolve_repo(style_repo)
        if not details.base_repo:
            raise ModelStructureInvalid(f"Style info missing baseModelRepo: {style_repo}")
        debug_log(f"[ACT] base for {style_repo} from catalog: {details.base_repo}")
        return details.base_repo

    def _ensure_base_installed(self, base_repo: str):
        if self.store.is_installed(base_repo, MODEL_TYPE_BASE):
            return self.store.primary_path(base_repo, MODEL_TYPE_BASE)

        info(f"[ACT] base missing, downloading {base_repo}")
        task = self.downloads.start(base_repo, MODEL_TYPE_BASE)
        try:
            task = self.downloads.wait(task.id, timeout=self.download_timeout)
        except FuturesTimeout:
            self.downloads.cancel(task.id)
            raise DownloadFailed(f"Timed out downloading base model {base_repo}")

        if task.state == 'cancelled':
            raise Cancelled(f"Download of {base_repo} was cancelled")
        if task.state != 'completed':
            raise DownloadFailed(getattr(task.status, 'error', None) or f"Download of {base_repo} failed")
        return self.store.primary_path(base_repo, MODEL_TYPE_BASE)

    def deactivate(self) -> ActivationState:
        """Stop the engine and clear the active selection."""
        with self._activation_lock:
            self.supervisor.terminate()
            info("[ACT] deactivated")
            return self.state()
