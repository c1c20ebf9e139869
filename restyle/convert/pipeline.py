"""
Streaming Rewrite Pipeline

Rewrites a document in the active style, one chunk at a time, streaming
tokens as they are produced.

Flow for one job:
    1. Chunk the input (restyle.text.chunk_text)
    2. For each chunk, in order:
       - POST a streaming chat completion to the active engine
       - Parse server-sent "data: {json}" lines, pulling choices[0].delta.content
       - Feed content through a TagExtractor; emit what it releases as tokens
    3. Stitch results back together with the original separators

The job body is a generator of typed events. A daemon thread drains it into
a queue, and ConversionJob.events() reads that queue, so a consumer sees
events as soon as they happen and always ends on exactly one terminal event.
"""

import json
import queue
import threading
import time
import uuid
from typing import Callable, Iterator

import requests

from restyle.config import ENGINE_CHAT_PATH, ENGINE_REQUEST_TIMEOUT_SECONDS
from restyle.convert.events import (
    CancelledEvent,
    ChunkCompleteEvent,
    ChunkPositionsEvent,
    ChunkResult,
    ChunkStartEvent,
    CompleteEvent,
    ConversionEvent,
    ConversionResult,
    ErrorEvent,
    SeparatorEvent,
    StartEvent,
    TokenEvent,
)
from restyle.convert.prompts import build_chat_request
from restyle.convert.tag_parser import TagExtractor
from restyle.engine.supervisor import EngineState
from restyle.errors import Cancelled, ConversionFailed, EngineUnreachable, UnknownTask
from restyle.library import ModelStore
from restyle.logging_config import debug_log, error, info, warning
from restyle.preferences import UserPreferencesManager
from restyle.text import Chunk, ChunkPolicy, chunk_text, reassemble, separators


def _new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class ConversionJob:
    """
    One running conversion.

    Attributes:
        job_id: Unique id (job_<millis>_<random>).
        text: The original input.
        chunks: Chunk positions the input was split into.
        final_event: The terminal event once the job has ended, else None.
    """

    def __init__(self, job_id: str, text: str, chunks: list[Chunk]):
        self.job_id = job_id
        self.text = text
        self.chunks = chunks
        self.final_event: ConversionEvent | None = None
        self._cancel_event = threading.Event()
        self._state_lock = threading.Lock()
        self._response = None
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._on_finish: Callable | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def finished(self) -> bool:
        return self.final_event is not None

    def start(self, body: Iterator[ConversionEvent], on_finish: Callable = None):
        self._on_finish = on_finish
        self._thread = threading.Thread(target=self._drain, args=(body,),
                                        name=f"convert-{self.job_id}", daemon=True)
        self._thread.start()

    def _drain(self, body: Iterator[ConversionEvent]):
        try:
            for event in body:
                if event.terminal:
                    with self._state_lock:
                        # A cancel that lands after the last chunk still wins
                        if isinstance(event, CompleteEvent) and self.cancelled:
                            info(f"[CONVERT] Job {self.job_id} cancelled")
                            event = CancelledEvent(self.job_id)
                        self.final_event = event
                self._queue.put(event)
                if event.terminal:
                    break
        finally:
            if self.final_event is None:
                # Body ended without a terminal event; should not happen
                self.final_event = ErrorEvent(self.job_id, message="Conversion ended unexpectedly")
                self._queue.put(self.final_event)
            if self._on_finish is not None:
                self._on_finish(self)

    def events(self) -> Iterator[ConversionEvent]:
        """Yield events as they happen, ending with the terminal event."""
        while True:
            event = self._queue.get()
            yield event
            if event.terminal:
                return

    def cancel(self) -> bool:
        """Abort the job. Returns False if it had already ended."""
        with self._state_lock:
            if self.finished:
                return False
            self._cancel_event.set()
        response = self._response
        if response is not None:
            try:
                response.close()
            except Exception as e:
                debug_log(f"[CONVERT] closing response for {self.job_id} raised {e!r}")
        return True

    def wait(self, timeout: float = None) -> ConversionEvent | None:
        """Block until the job ends; returns its terminal event (None on timeout)."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.final_event

    @property
    def result(self) -> ConversionResult | None:
        if isinstance(self.final_event, CompleteEvent):
            return self.final_event.result
        return None


class RewritePipeline:
    """
    Starts and cancels conversion jobs against the active engine.

    Args:
        engine_state: Shared EngineState; the engine URL and style are read from it.
        store: ModelStore, for the active style's prompt and styleguide.
        session: requests.Session used for streaming requests.
        preferences: Optional source of user sampling overrides.
        max_char_length / min_char_length / policy: Chunking parameters
            (settings defaults when None).
    """

    def __init__(self, engine_state: EngineState, store: ModelStore, session: requests.Session = None,
                 preferences: UserPreferencesManager = None, max_char_length: int = None,
                 min_char_length: int = None, policy: ChunkPolicy = None,
                 request_timeout: float = ENGINE_REQUEST_TIMEOUT_SECONDS):
        self.engine_state = engine_state
        self.store = store
        self.session = session or requests.Session()
        self.preferences = preferences
        self.max_char_length = max_char_length
        self.min_char_length = min_char_length
        self.policy = policy
        self.request_timeout = request_timeout
        self._jobs: dict[str, ConversionJob] = {}
        self._lock = threading.Lock()

    def start_job(self, text: str, sampling: dict = None) -> ConversionJob:
        """
        Begin rewriting text; returns immediately.

        Raises:
            EngineUnreachable: No engine is active.
            ConversionFailed: Text is empty or whitespace only.
        """
        engine, selection = self.engine_state.snapshot()
        if engine is None:
            raise EngineUnreachable("server not active")
        text = '' if text is None else str(text)
        if not text.strip():
            raise ConversionFailed("empty text")

        style_prompt, styleguide = None, ''
        if selection.style_repo:
            try:
                style_prompt, styleguide = self.store.read_style_prompt(selection.style_repo)
            except OSError as e:
                warning(f"[CONVERT] Could not read style prompt for {selection.style_repo}: {e}")

        params = {}
        if self.preferences is not None:
            params.update(self.preferences.get_sampling_overrides())
        params.update(sampling or {})

        info(f"[CONVERT] Chunking text ({len(text)} chars)")
        chunks = chunk_text(text, self.max_char_length, self.min_char_length, self.policy)
        info(f"[CONVERT] Split into {len(chunks)} chunks")

        job = ConversionJob(_new_job_id(), text, chunks)
        with self._lock:
            self._jobs[job.job_id] = job
        job.start(self._run(job, engine.url, style_prompt, styleguide, params), on_finish=self._forget)
        return job

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a running job.

        Raises:
            UnknownTask: If no running job has this id.
        """
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise UnknownTask(f"Unknown conversion job: {job_id}")
        info(f"[CONVERT] Cancel requested for {job_id}")
        return job.cancel()

    def _forget(self, job: ConversionJob):
        with self._lock:
            self._jobs.pop(job.job_id, None)

    # ------------------------------------------------------------------
    # Job body
    # ------------------------------------------------------------------

    def _run(self, job: ConversionJob, url: str, style_prompt: str | None, styleguide: str,
             sampling: dict) -> Iterator[ConversionEvent]:
        text, chunks = job.text, job.chunks
        seps = separators(text, chunks)
        yield StartEvent(job.job_id, total_chunks=len(chunks))
        yield ChunkPositionsEvent(job.job_id, positions=tuple(chunks), base_text=text)

        results: list[ChunkResult] = []
        try:
            for chunk in chunks:
                if job.cancelled:
                    raise Cancelled(f"Job {job.job_id} cancelled")
                yield ChunkStartEvent(job.job_id, chunk_index=chunk.index)

                started = time.monotonic()
                extractor = TagExtractor()
                body = build_chat_request(chunk.text_of(text), style_prompt, styleguide, sampling)
                stream = self._stream_chunk(job, url, body)
                try:
                    for piece in stream:
                        released = extractor.feed(piece)
                        if released:
                            yield TokenEvent(job.job_id, chunk_index=chunk.index, text=released)
                        if extractor.done:
                            break
                finally:
                    stream.close()
                if job.cancelled:
                    raise Cancelled(f"Job {job.job_id} cancelled")
                tail = extractor.finish()
                if tail:
                    yield TokenEvent(job.job_id, chunk_index=chunk.index, text=tail)

                if not extractor.found_open:
                    debug_log(f"[CONVERT] Chunk {chunk.index}: no open marker in response, result is empty")
                result = ChunkResult(
                    index=chunk.index,
                    text=extractor.text,
                    approx_token_count=len(extractor.text),
                    elapsed_ms=int((time.monotonic() - started) * 1000),
                )
                results.append(result)
                debug_log(f"[CONVERT] Chunk {chunk.index} complete. Result: {result.text[:100]!r}")
                if job.cancelled:
                    raise Cancelled(f"Job {job.job_id} cancelled")
                yield ChunkCompleteEvent(job.job_id, chunk_index=chunk.index, result=result)
                if seps[chunk.index] and not job.cancelled:
                    yield SeparatorEvent(job.job_id, chunk_index=chunk.index, text=seps[chunk.index])

            final = ConversionResult(
                text=reassemble(text, chunks, [r.text for r in results]),
                chunks=results,
                total_tokens=sum(r.approx_token_count for r in results),
                total_ms=sum(r.elapsed_ms for r in results),
            )
            if job.cancelled:
                raise Cancelled(f"Job {job.job_id} cancelled")
            info(f"[CONVERT] Job {job.job_id} complete: {len(results)} chunks, {final.total_ms} ms")
            yield CompleteEvent(job.job_id, result=final)
        except Exception as e:
            if job.cancelled:
                info(f"[CONVERT] Job {job.job_id} cancelled")
                yield CancelledEvent(job.job_id)
            else:
                message = getattr(e, 'message', None) or str(e) or "Conversion failed"
                code = getattr(e, 'code', ConversionFailed.code)
                error(f"[CONVERT] Job {job.job_id} failed: {message}")
                yield ErrorEvent(job.job_id, message=f"{code}: {message}", code=code)

    def _stream_chunk(self, job: ConversionJob, url: str, body: dict) -> Iterator[str]:
        """Yield content deltas from one streaming chat completion."""
        try:
            response = self.session.post(
                f"{url}{ENGINE_CHAT_PATH}",
                json=body,
                stream=True,
                timeout=self.request_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ConversionFailed(f"Could not reach engine at {url}: {e}") from e

        job._response = response
        try:
            if not 200 <= response.status_code < 300:
                try:
                    detail = response.text
                except (requests.exceptions.RequestException, ValueError):
                    detail = ''
                raise ConversionFailed(f"Server error {response.status_code}: {detail or 'unknown'}")

            for raw in response.iter_lines():
                if job.cancelled:
                    raise Cancelled(f"Job {job.job_id} cancelled")
                if isinstance(raw, bytes):
                    raw = raw.decode('utf-8', errors='replace')
                line = raw.strip()
                if not line.startswith('data:'):
                    continue
                payload = line[len('data:'):].strip()
                if payload == '[DONE]':
                    return
                try:
                    obj = json.loads(payload)
                    content = obj['choices'][0]['delta'].get('content')
                except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                    debug_log(f"[CONVERT] Skipping malformed stream line ({e!r}): {payload[:120]}")
                    continue
                if isinstance(content, str) and content:
                    yield content
        finally:
            job._response = None
            response.close()
