# app/reputation/tasks.py
"""
Bounded background execution for fire-and-forget side effects.

Tasks run on a small thread pool. A task's exception is caught and logged
inside the worker and never reaches the code that submitted it.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class BackgroundTaskQueue:
    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="side-effect")
        self._lock = threading.Lock()
        self._closed = False
        self._stats = {"submitted": 0, "succeeded": 0, "failed": 0}

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Future]:
        """Schedule `fn(*args, **kwargs)`; returns None once the queue is shut down."""
        with self._lock:
            if self._closed:
                logger.warning(f"Background queue closed, dropping task {name}")
                return None
            self._stats["submitted"] += 1
        return self._executor.submit(self._run, name, fn, args, kwargs)

    def _run(self, name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> Any:
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.exception(f"Background task {name} failed: {e}")
            self._bump("failed")
            return None
        self._bump("succeeded")
        return result

    def _bump(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info(f"Background queue stopped: {self.stats()}")
