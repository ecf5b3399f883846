"""
Best-effort channel — bounded in-process queue drained by one worker thread.

Delivery is at-most-once and may drop: submit() never blocks the caller, a
full queue drops the item, and a handler that raises is logged and skipped.
Used for span/reward persistence, which must never slow a chat response.
"""
import logging
import queue
import threading
import time

logger = logging.getLogger('services.channel')

_STOP = object()


class BestEffortChannel:

    def __init__(self, name='rewards', maxsize=1000, autostart=True):
        self.name = name
        self.autostart = autostart
        self._queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._thread = None
        self._closed = False
        self._stats = {'submitted': 0, 'processed': 0, 'dropped': 0, 'failed': 0}

    def start(self):
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return self
            self._closed = False
            self._thread = threading.Thread(
                target=self._run, name=f'channel-{self.name}', daemon=True,
            )
            self._thread.start()
        return self

    def submit(self, fn, *args, **kwargs):
        """Enqueue fn(*args, **kwargs). Returns False if the item was dropped."""
        if self._closed:
            self._count('dropped')
            logger.warning("Channel %s closed, dropping %s", self.name, getattr(fn, '__name__', fn))
            return False
        if self._thread is None and self.autostart:
            self.start()
        try:
            self._queue.put_nowait((fn, args, kwargs))
        except queue.Full:
            self._count('dropped')
            logger.warning("Channel %s full (%d), dropping %s",
                           self.name, self._queue.maxsize, getattr(fn, '__name__', fn))
            return False
        self._count('submitted')
        return True

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args, kwargs = item
                try:
                    fn(*args, **kwargs)
                    self._count('processed')
                except Exception:
                    self._count('failed')
                    logger.error("Channel %s handler %s failed",
                                 self.name, getattr(fn, '__name__', fn), exc_info=True)
            finally:
                self._queue.task_done()

    def drain(self, timeout=5.0):
        """Wait until every queued item has been handled. True if drained in time."""
        if self._thread is None or not self._thread.is_alive():
            return self._queue.unfinished_tasks == 0
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                logger.warning("Channel %s drain timed out with %d pending",
                               self.name, self._queue.unfinished_tasks)
                return False
            time.sleep(0.01)
        return True

    def close(self, timeout=5.0):
        """Stop accepting work, finish what is queued, stop the worker."""
        self._closed = True
        thread = self._thread
        if thread is None:
            return
        self.drain(timeout)
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Channel %s could not enqueue stop signal", self.name)
            return
        thread.join(timeout)
        self._thread = None
        logger.info("Channel %s closed: %s", self.name, self.stats())

    def stats(self):
        with self._lock:
            stats = dict(self._stats)
        stats['pending'] = self._queue.qsize()
        return stats

    def _count(self, key):
        with self._lock:
            self._stats[key] += 1
