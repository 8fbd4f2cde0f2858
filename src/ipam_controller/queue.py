"""Deduplicating reconcile queue with per-key exponential backoff."""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections import deque
from threading import Condition, Event, Thread
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from kubevirt_ipam.exceptions import IPAMError
from kubevirt_ipam.objects import NamespacedName

LOG = logging.getLogger(__name__)

DEFAULT_BACKOFF_BASE = 0.005
DEFAULT_BACKOFF_MAX = 1000.0


class ReconcileQueue:
    """Work queue handing ``namespace/name`` keys to reconcile workers.

    A key is queued at most once.  A key added while a worker holds it is
    redelivered after the worker is done, so the same key is never processed
    by two workers at once.  Failures requeue the key after
    ``backoff_base * 2 ** failures`` seconds, capped at ``backoff_max``;
    success or a non-retryable error resets the failure count.
    """

    def __init__(
        self,
        reconcile: Callable[[NamespacedName], Any],
        *,
        workers: int = 2,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reconcile = reconcile
        self._workers = workers
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._clock = clock

        self._cond = Condition()
        self._queue: Deque[NamespacedName] = deque()
        self._dirty: Set[NamespacedName] = set()
        self._processing: Set[NamespacedName] = set()
        self._waiting: List[Tuple[float, int, NamespacedName]] = []
        self._sequence = itertools.count()
        self._failures: Dict[NamespacedName, int] = {}
        self._shutting_down = False
        self._threads: List[Thread] = []

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    # ------------------------------------------------------------------
    # Queue primitives
    # ------------------------------------------------------------------
    def add(self, key: NamespacedName) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: NamespacedName) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: NamespacedName, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            heapq.heappush(self._waiting, (self._clock() + delay, next(self._sequence), key))
            self._cond.notify()

    def add_rate_limited(self, key: NamespacedName) -> float:
        """Requeue ``key`` after its backoff delay and return that delay."""

        delay = self.backoff(key)
        with self._cond:
            self._failures[key] = self._failures.get(key, 0) + 1
        self.add_after(key, delay)
        return delay

    def backoff(self, key: NamespacedName) -> float:
        with self._cond:
            failures = self._failures.get(key, 0)
        try:
            delay = self._backoff_base * (2 ** failures)
        except OverflowError:
            return self._backoff_max
        return min(delay, self._backoff_max)

    def forget(self, key: NamespacedName) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def failures(self, key: NamespacedName) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def _promote_waiting_locked(self) -> Optional[float]:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, key = heapq.heappop(self._waiting)
            self._add_locked(key)
        if self._waiting:
            return self._waiting[0][0] - now
        return None

    def get(self, timeout: Optional[float] = None) -> Optional[NamespacedName]:
        """Block until a key is ready; ``None`` on timeout or shutdown."""

        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                next_ready = self._promote_waiting_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None

                wait = next_ready
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: NamespacedName) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------
    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one key.  Returns ``False`` when no key was available."""

        key = self.get(timeout)
        if key is None:
            return False
        try:
            self._reconcile(key)
        except IPAMError as exc:
            if exc.retryable:
                delay = self.add_rate_limited(key)
                LOG.warning("reconcile of %s failed, requeue in %.3fs: %s", key, delay, exc)
            else:
                self.forget(key)
                LOG.error("reconcile of %s failed permanently: %s", key, exc)
        except Exception:
            delay = self.add_rate_limited(key)
            LOG.exception("unexpected error reconciling %s, requeue in %.3fs", key, delay)
        else:
            self.forget(key)
            LOG.debug("reconciled %s", key)
        finally:
            self.done(key)
        return True

    def _worker(self, stop_event: Event) -> None:
        while not stop_event.is_set():
            self.process_next(timeout=0.5)

    def start(self, stop_event: Event) -> None:
        for index in range(self._workers):
            thread = Thread(
                target=self._worker,
                args=(stop_event,),
                name=f"reconcile-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        LOG.info("started %d reconcile workers", self._workers)

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        for thread in self._threads:
            thread.join()
        self._threads = []
