"""
Execution strategies for background work.

The Download Manager never runs a transfer on the caller's thread; it
submits the transfer to an ExecutorStrategy. Production code uses
ThreadPoolStrategy, tests inject SequentialStrategy so a download finishes
inside start() and can be asserted on deterministically.

Usage:
    # Production (background threads)
    manager = DownloadManager(client, store, strategy=ThreadPoolStrategy(max_workers=2))

    # Testing (runs inline, deterministic)
    manager = DownloadManager(client, store, strategy=SequentialStrategy())
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TypeVar

from restyle.config import DOWNLOAD_MAX_CONCURRENT

T = TypeVar('T')
R = TypeVar('R')


class ExecutorStrategy(ABC):
    """
    Abstract strategy for running submitted work.

    Attributes:
        max_workers: Number of concurrent workers (1 for sequential).
    """

    max_workers: int

    @abstractmethod
    def submit(self, fn: Callable[[T], R], item: T) -> Future:
        """
        Submit a single unit of work.

        Args:
            fn: Function to execute.
            item: Argument to pass to the function.

        Returns:
            Future that will hold the result or the raised exception.
        """

    @abstractmethod
    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        """
        Release the strategy's resources.

        Args:
            wait: If True, wait for running work to finish.
            cancel_futures: If True, drop work that has not started yet.
        """

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
        return False


class ThreadPoolStrategy(ExecutorStrategy):
    """
    Thread-based execution for network-bound work.

    Transfers spend nearly all their time blocked in socket reads, which
    release the GIL, so a small pool is enough to keep several downloads
    moving at once.

    Args:
        max_workers: Maximum concurrent threads. Defaults to
                     DOWNLOAD_MAX_CONCURRENT from config.
        thread_name_prefix: Name prefix for worker threads (shows up in logs).
    """

    def __init__(self, max_workers: int = None, thread_name_prefix: str = "restyle-worker"):
        if max_workers is None:
            max_workers = DOWNLOAD_MAX_CONCURRENT
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self.max_workers = max_workers

    def submit(self, fn: Callable[[T], R], item: T) -> Future:
        return self._executor.submit(fn, item)

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)


class SequentialStrategy(ExecutorStrategy):
    """
    Inline execution for tests and debugging.

    submit() runs the function immediately on the calling thread and hands
    back an already-completed Future, so callers written against
    ThreadPoolStrategy behave the same way, only deterministically.
    """

    def __init__(self):
        self.max_workers = 1

    def submit(self, fn: Callable[[T], R], item: T) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(item))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        """No-op: nothing is pooled."""
