"""
Inference Engine Supervisor

Launches the llama.cpp server as a child process and decides when it can
take requests. Two checks run after launch:

    1. Liveness:  the TCP port accepts connections (polled every 200 ms)
    2. Readiness: a one-token "ping" chat completion returns 2xx JSON
                  (polled every 400 ms)

Either check failing kills the process and raises EngineUnreachable.

Process output (stdout and stderr merged) is forwarded line by line to the
debug log from a reader thread. A watcher thread waits on the process; when
it exits for any reason the shared EngineState is cleared, so a crashed
engine never looks active.

The running engine and the selection it serves live in one EngineState
object behind a lock, shared by the ActivationCoordinator (writer) and the
RewritePipeline (reader).
"""

import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path

import requests

from restyle.config import (
    ENGINE_CHAT_PATH,
    ENGINE_CHAT_TEMPLATE,
    ENGINE_HOST,
    ENGINE_LIVE_POLL_SECONDS,
    ENGINE_LIVE_TIMEOUT_SECONDS,
    ENGINE_PORT_PROBE_TIMEOUT_SECONDS,
    ENGINE_READY_POLL_SECONDS,
    ENGINE_READY_TIMEOUT_SECONDS,
    get_setting,
)
from restyle.engine.ports import port_in_use
from restyle.errors import EngineUnreachable
from restyle.logging_config import debug_log, info, warning


@dataclass
class EngineProcess:
    """A launched engine and the address it serves on."""
    process: subprocess.Popen
    host: str
    port: int
    binary_path: Path
    model_path: Path
    adapter_path: Path | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def is_running(self) -> bool:
        return self.process.poll() is None


@dataclass(frozen=True)
class ActivationSelection:
    base_repo: str | None = None
    style_repo: str | None = None


class EngineState:
    """
    The active engine and selection, guarded by a lock.

    Both are set together and cleared together.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._process: EngineProcess | None = None
        self._selection = ActivationSelection()

    def set(self, process: EngineProcess, selection: ActivationSelection):
        with self._lock:
            self._process = process
            self._selection = selection

    def clear(self, process: EngineProcess = None) -> bool:
        """
        Reset to inactive.

        Args:
            process: If given, only clear when it is still the active engine.

        Returns:
            True if state was cleared.
        """
        with self._lock:
            if process is not None and self._process is not process:
                return False
            self._process = None
            self._selection = ActivationSelection()
            return True

    def snapshot(self) -> tuple[EngineProcess | None, ActivationSelection]:
        with self._lock:
            return self._process, self._selection

    @property
    def process(self) -> EngineProcess | None:
        with self._lock:
            return self._process

    @property
    def selection(self) -> ActivationSelection:
        with self._lock:
            return self._selection

    @property
    def url(self) -> str | None:
        process = self.process
        return process.url if process is not None else None

    def is_active(self) -> bool:
        return self.process is not None


def build_engine_command(
    binary_path,
    model_path,
    host: str,
    port: int,
    adapter_path=None,
    chat_template: str | None = ENGINE_CHAT_TEMPLATE,
) -> list[str]:
    command = [str(binary_path), '--model', str(model_path), '--host', host, '--port', str(port)]
    if chat_template:
        command += ['--chat-template', chat_template]
    if adapter_path:
        command += ['--lora', str(adapter_path)]
    return command


class EngineSupervisor:
    """
    Spawns, health-checks and stops the engine process.

    Args:
        state: Shared EngineState. A fresh one is created when omitted.
        session: requests.Session for readiness probes (injectable for tests).
        chat_template: Value for --chat-template; None leaves it off.
    """

    def __init__(self, state: EngineState = None, session: requests.Session = None,
                 chat_template: str | None = None):
        self.state = state or EngineState()
        self.session = session or requests.Session()
        self.chat_template = chat_template if chat_template is not None else get_setting(
            'engine', 'chat_template', ENGINE_CHAT_TEMPLATE)

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def launch(self, binary_path, model_path, adapter_path=None, host: str = ENGINE_HOST,
               port: int = None) -> EngineProcess:
        """Spawn the engine. Does not wait for it to come up."""
        command = build_engine_command(binary_path, model_path, host, port, adapter_path, self.chat_template)
        info(f"[ENGINE] spawn {' '.join(command)}")
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding='utf-8',
            errors='replace',
        )
        engine = EngineProcess(
            process=process,
            host=host,
            port=port,
            binary_path=Path(binary_path),
            model_path=Path(model_path),
            adapter_path=Path(adapter_path) if adapter_path else None,
        )
        threading.Thread(target=self._forward_output, args=(engine,), name="engine-output",
                         daemon=True).start()
        threading.Thread(target=self._watch_exit, args=(engine,), name="engine-exit-watcher",
                         daemon=True).start()
        return engine

    def _forward_output(self, engine: EngineProcess):
        stream = engine.process.stdout
        if stream is None:
            return
        try:
            for line in stream:
                line = line.rstrip()
                if line:
                    debug_log(f"[LLAMA] {line}")
        except (OSError, ValueError):
            # Pipe closed underneath us after kill
            pass

    def _watch_exit(self, engine: EngineProcess):
        code = engine.process.wait()
        info(f"[ENGINE] llama-server exited pid={engine.pid} code={code}")
        if self.state.clear(engine):
            debug_log("[ENGINE] Active engine cleared after exit")

    def kill(self, engine: EngineProcess, timeout: float = 5.0):
        """Stop a process, escalating from terminate to kill."""
        if not engine.is_running():
            return
        engine.process.terminate()
        try:
            engine.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            warning(f"[ENGINE] pid={engine.pid} ignored terminate, killing")
            engine.process.kill()
            engine.process.wait(timeout=timeout)

    def terminate(self, timeout: float = 5.0):
        """Stop the active engine (if any) and clear shared state."""
        engine, _ = self.state.snapshot()
        self.state.clear()
        if engine is not None:
            debug_log(f"[ENGINE] Terminating pid={engine.pid}")
            self.kill(engine, timeout)

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    def await_live(self, host: str, port: int, timeout: float = ENGINE_LIVE_TIMEOUT_SECONDS,
                   engine: EngineProcess = None) -> bool:
        """
        Poll until the port accepts TCP connections.

        Returns False on timeout, or early if engine is given and has exited.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if port_in_use(host, port, ENGINE_PORT_PROBE_TIMEOUT_SECONDS):
                return True
            if engine is not None and not engine.is_running():
                debug_log(f"[ENGINE] Process exited before port {port} opened")
                return False
            time.sleep(ENGINE_LIVE_POLL_SECONDS)
        return False

    def await_ready(self, url: str, timeout: float = ENGINE_READY_TIMEOUT_SECONDS,
                    engine: EngineProcess = None) -> bool:
        """
        Poll with a one-token chat completion until the engine answers 2xx JSON.

        Args:
            url: Engine base URL, e.g. http://127.0.0.1:33333
        """
        endpoint = f"{url}{ENGINE_CHAT_PATH}"
        body = {
            'messages': [{'role': 'user', 'content': 'ping'}],
            'stream': False,
            'max_tokens': 1,
        }
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if engine is not None and not engine.is_running():
                debug_log("[ENGINE] Process exited before becoming ready")
                return False
            remaining = max(0.5, deadline - time.monotonic())
            try:
                response = self.session.post(endpoint, json=body, timeout=min(10.0, remaining))
                if 200 <= response.status_code < 300:
                    response.json()
                    return True
                debug_log(f"[ENGINE] Readiness probe returned {response.status_code}")
            except (requests.exceptions.RequestException, ValueError) as e:
                debug_log(f"[ENGINE] Readiness probe failed: {e}")
            time.sleep(ENGINE_READY_POLL_SECONDS)
        return False

    # ------------------------------------------------------------------
    # Launch + checks
    # ------------------------------------------------------------------

    def start(self, binary_path, model_path, adapter_path=None, host: str = ENGINE_HOST,
              port: int = None, selection: ActivationSelection = None,
              live_timeout: float = ENGINE_LIVE_TIMEOUT_SECONDS,
              ready_timeout: float = ENGINE_READY_TIMEOUT_SECONDS) -> EngineProcess:
        """
        Launch the engine, wait for liveness then readiness, and record it as active.

        Raises:
            EngineUnreachable: If either check fails. The process is killed first.
        """
        engine = self.launch(binary_path, model_path, adapter_path, host, port)

        if not self.await_live(host, port, live_timeout, engine):
            self.kill(engine)
            raise EngineUnreachable("server did not start in time")
        debug_log(f"[ENGINE] Port {port} is live, waiting for readiness")

        if not self.await_ready(engine.url, ready_timeout, engine):
            self.kill(engine)
            raise EngineUnreachable("server not ready in time")

        self.state.set(engine, selection or ActivationSelection())
        if not engine.is_running():
            self.state.clear(engine)
            raise EngineUnreachable("server exited right after becoming ready")
        info(f"[ENGINE] Ready pid={engine.pid} url={engine.url}")
        return engine
