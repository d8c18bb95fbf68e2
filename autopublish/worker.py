"""Background worker: polls the job queue and dispatches jobs to their handlers."""

import logging
import threading
from typing import Callable, Optional

from autopublish.job_store import JobQueue
from autopublish.models import Job

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3
DEFAULT_BATCH_SIZE = 5


class Worker:
    """Fixed-interval poll loop. Jobs within a tick run sequentially."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: dict,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.queue = queue
        # payload class -> callable(payload) -> result dict
        self.handlers: dict[type, Callable] = dict(handlers)
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._tick_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: dict, queue: JobQueue, handlers: dict) -> "Worker":
        worker = config.get("worker", {})
        return cls(
            queue,
            handlers,
            poll_interval=worker.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL),
            batch_size=worker.get("batch_size", DEFAULT_BATCH_SIZE),
        )

    def tick(self) -> int:
        """Process one batch. Returns how many jobs this tick ran; 0 if a tick is already in progress."""
        if not self._tick_lock.acquire(blocking=False):
            log.debug("Previous tick still running, skipping")
            return 0
        try:
            processed = 0
            for job in self.queue.get_pending_jobs(limit=self.batch_size):
                if self.process(job):
                    processed += 1
            return processed
        finally:
            self._tick_lock.release()

    def process(self, job: Job) -> bool:
        """Claim and run one job. False when another worker claimed it first."""
        claimed = self.queue.claim(job.id)
        if claimed is None:
            log.debug(f"Job {job.id} already claimed", extra={"job_id": job.id})
            return False

        extra = {"job_id": claimed.id, "job_type": claimed.type}
        handler = self.handlers.get(type(claimed.payload))
        log.info(f"Processing job {claimed.id} ({claimed.type})", extra=extra)
        try:
            if handler is None:
                raise ValueError(f"No handler registered for job type {claimed.type}")
            result = handler(claimed.payload)
            self.queue.complete(claimed.id, result)
            log.info(f"Job {claimed.id} completed", extra=extra)
        except Exception as e:
            log.error(f"Job {claimed.id} failed: {e}", extra=extra, exc_info=True)
            self.queue.fail(claimed.id, str(e))
        return True

    def _run(self):
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                log.exception("Worker tick failed")
            self._stop.wait(self.poll_interval)

    def start(self):
        if self._thread and self._thread.is_alive():
            log.warning("Worker already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="autopublish-worker", daemon=True)
        self._thread.start()
        log.info(f"Worker started (every {self.poll_interval}s, batch {self.batch_size})")

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        log.info("Worker stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
