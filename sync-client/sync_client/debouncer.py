import random
import threading
from typing import Callable, Optional

from sync_client import get_logger

LOG = get_logger(__name__)


class PushDebouncer:
    """Collects book ids of local saves and pushes them once saves stop for `delay` seconds.

    Only ids are queued, the push callback reads the current record at flush time, so a burst of saves of one
    book results in a single push of the last one. The callback returns False when the book has to be pushed
    again later. Failed books stay pending and are retried on the next flush: the next save restarts the
    debounce timer, and with backoff enabled a retry timer (exponential, capped, with jitter) is armed as well.
    """

    def __init__(self,
                 push: Callable[[str], bool],
                 delay: float = 2.0,
                 backoff: bool = True,
                 backoff_base: float = 2.0,
                 backoff_max: float = 60.0,
                 jitter: float = 1.0):
        self._push = push
        self.delay = delay
        self.backoff = backoff
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.jitter = jitter

        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._retry_timer: Optional[threading.Timer] = None
        self._failures = 0
        self._closed = False

    def enqueue(self, book_id: str):
        with self._lock:
            if self._closed:
                LOG.warning("Debouncer is closed, not queueing %s", book_id)
                return
            self._pending.add(book_id)
            self._cancel_timers()
            self._timer = self._start_timer(self.delay, "push-debounce")

    def pending(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    @property
    def failures(self) -> int:
        """Number of consecutive flushes that left failed books behind."""
        return self._failures

    def flush(self) -> set[str]:
        """Push all pending books now. Returns the books that failed and were queued again."""
        with self._flush_lock:
            with self._lock:
                book_ids, self._pending = self._pending, set()
                if self._timer is threading.current_thread():
                    self._timer = None
                if self._retry_timer is threading.current_thread():
                    self._retry_timer = None

            if not book_ids:
                return set()

            LOG.debug("Flushing %s books: %s", len(book_ids), book_ids)
            failed = set()
            for book_id in book_ids:
                try:
                    if not self._push(book_id):
                        failed.add(book_id)
                except Exception:
                    LOG.exception("Failed to push progress of %s", book_id)
                    failed.add(book_id)

            with self._lock:
                self._pending.update(failed)
                if not failed:
                    self._failures = 0
                else:
                    self._failures += 1
                    self._schedule_retry()

            return failed

    def flush_now(self) -> set[str]:
        """Cancel the timers and flush in the calling thread."""
        with self._lock:
            self._cancel_timers()
        return self.flush()

    def close(self):
        with self._lock:
            self._closed = True
            self._cancel_timers()

    def _schedule_retry(self):
        if not self.backoff or self._closed:
            return
        if self._timer is not None:
            # A save arrived during the flush, its timer pushes the failed books too.
            return

        delay = min(self.backoff_max, self.backoff_base * 2 ** (self._failures - 1)) + random.random() * self.jitter
        LOG.info("Retrying %s books in %.1f seconds", len(self._pending), delay)
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        self._retry_timer = self._start_timer(delay, "push-retry")

    def _start_timer(self, delay: float, name: str) -> threading.Timer:
        timer = threading.Timer(delay, self._on_timer)
        timer.name = name
        timer.daemon = True
        timer.start()
        return timer

    def _on_timer(self):
        try:
            self.flush()
        except Exception:
            LOG.exception("Flush failed")

    def _cancel_timers(self):
        for timer in (self._timer, self._retry_timer):
            if timer is not None:
                timer.cancel()
        self._timer = None
        self._retry_timer = None
