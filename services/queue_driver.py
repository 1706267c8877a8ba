"""
Queue Driver

Owns the ProcessingQueue and walks it one job at a time:

    next pending job -> quota check -> mark processing -> persist
      -> run the analysis pipeline -> apply completed/failed -> persist
      -> short delay -> repeat

Everything runs on the asyncio event loop. Queue mutations happen
synchronously between awaits, so `snapshot()` and the HTTP handlers
always see a consistent queue.

A separate ticker refreshes `status_message` every few seconds for
pollers. Listeners registered with `add_listener()` are also pushed a
snapshot on every transition. Neither one ever picks the next job.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from config import QUEUE, QueueConfig
from pipeline.pricing_engine import AnalysisResult
from services.exceptions import (
    IdentificationFailedError,
    PersistenceError,
    PricingError,
    QuotaExhaustedError,
    ResellException,
    TransientNetworkError,
)
from services.processing_queue import JobStatus, ProcessingQueue, QueuedJob
from services.queue_store import QueueStore
from utils.quota import ANALYSIS_KIND, QuotaAuthority

logger = logging.getLogger(__name__)

# Extra time allowed on top of the pipeline's own call timeouts
ANALYSIS_GRACE_SECONDS = 5.0

STATUS_READY = "Queue Ready"
STATUS_STARTING = "Starting queue processing..."
STATUS_PAUSED = "Queue paused"
STATUS_CLEARED = "Queue cleared"
STATUS_RATE_LIMITED = "Rate limit reached - queue paused"
STATUS_QUOTA_UNAVAILABLE = "Quota check failed - queue paused"


class AnalysisRunner(Protocol):
    async def analyze(self, photos: Sequence[bytes]) -> AnalysisResult:
        ...


Listener = Callable[[Dict[str, Any]], None]


class QueueDriver:
    """
    Runs queued analyses sequentially.

    Usage:
        driver = QueueDriver(store.load_queue(), store, pipeline, quota)
        job_id = driver.enqueue([photo_bytes])   # auto-starts when idle
        await driver.wait_idle()
        print(driver.snapshot())
    """

    def __init__(
        self,
        queue: ProcessingQueue,
        store: Optional[QueueStore],
        pipeline: AnalysisRunner,
        quota: QuotaAuthority,
        config: QueueConfig = QUEUE,
    ):
        self.queue = queue
        self.store = store
        self.pipeline = pipeline
        self.quota = quota
        self.config = config

        self.status_message = STATUS_READY
        self.progress = self.queue.progress()

        self._listeners: List[Listener] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._ticker_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._slot_released = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

        self.stats = {
            "analyzed": 0,
            "failed": 0,
            "stale_discarded": 0,
            "quota_pauses": 0,
        }

    # ============================================================
    # Control
    # ============================================================

    @property
    def is_running(self) -> bool:
        return self.queue.is_running

    def start(self) -> bool:
        """Start processing. Returns False (with a status message) if refused."""
        if self.queue.is_running:
            self.status_message = "Queue already running"
            return False
        if self.queue.rate_limit_hit:
            self.status_message = STATUS_RATE_LIMITED
            logger.info("[QUEUE] Start refused - rate limit hit, resume required")
            return False
        allowed = self._check_quota()
        if allowed is None:
            self.status_message = STATUS_QUOTA_UNAVAILABLE
            self._notify()
            return False
        if not allowed:
            self._pause_for_quota()
            return False

        self.queue.is_running = True
        self.status_message = STATUS_STARTING
        self._persist()

        # A stopped loop may still be waiting on its last call; it picks the run back up
        if self._loop_task is None or self._loop_task.done():
            self._idle.clear()
            self._loop_task = asyncio.create_task(self._run())
        if self._ticker_task is None or self._ticker_task.done():
            self._ticker_task = asyncio.create_task(self._tick())

        logger.info(f"[QUEUE] Started with {len(self.queue.jobs_with_status(JobStatus.PENDING))} pending job(s)")
        self._notify()
        return True

    def stop(self) -> None:
        """Stop after the in-flight job (if any) lands"""
        if not self.queue.is_running:
            return
        self.queue.is_running = False
        self.status_message = STATUS_PAUSED
        self._persist()
        logger.info("[QUEUE] Stopped")
        self._notify()

    def resume(self) -> bool:
        """Clear a rate-limit pause and start again"""
        if self.queue.rate_limit_hit:
            self.queue.rate_limit_hit = False
            self._persist()
            logger.info("[QUEUE] Rate limit flag cleared")
        return self.start()

    def enqueue(self, photos: Sequence[bytes]) -> str:
        job_id = self.queue.enqueue(photos)
        job = self.queue.get(job_id)

        if self.store is not None:
            try:
                self.store.save_photos(job_id, job.photos)
            except PersistenceError as e:
                logger.warning(f"[QUEUE] {e}")
        self._persist()
        logger.info(f"[QUEUE] Added item {job.position} ({len(job.photos)} photo(s))")
        self._notify()

        if not self.queue.is_running and not self.queue.rate_limit_hit and self._check_quota():
            self.start()
        return job_id

    def remove(self, job_id: str) -> None:
        was_current = self.queue.current_job_id == job_id
        self.queue.remove(job_id)

        if self.store is not None:
            try:
                self.store.delete_photos(job_id)
            except PersistenceError as e:
                logger.warning(f"[QUEUE] {e}")
        self._persist()

        if was_current:
            logger.info(f"[QUEUE] Removed in-flight job {job_id[:8]} - result will be discarded")
            self._slot_released.set()
        self._notify()

    def retry(self, job_id: str) -> None:
        """Put a failed job back in line. Does not start the queue."""
        self.queue.retry(job_id)
        self._persist()
        logger.info(f"[QUEUE] Retrying job {job_id[:8]}")
        self._notify()

    def clear(self) -> int:
        self.stop()
        count = self.queue.clear()
        self._slot_released.set()

        if self.store is not None:
            try:
                self.store.clear_photos()
            except PersistenceError as e:
                logger.warning(f"[QUEUE] {e}")
        self._persist()

        self.status_message = STATUS_CLEARED
        self.progress = 0.0
        logger.info(f"[QUEUE] Cleared {count} job(s)")
        self._notify()
        return count

    async def wait_idle(self) -> None:
        """Wait until the processing loop has exited"""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """
        Stop everything for process exit. An in-flight job is cancelled and
        put back to pending so it runs again after restart.
        """
        self.queue.is_running = False
        for task in (self._inflight, self._loop_task, self._ticker_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._inflight, self._loop_task, self._ticker_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug(f"[QUEUE] Task ended with {e!r} during shutdown")

        current = self.queue.current_job
        if current is not None and current.status == JobStatus.PROCESSING:
            self.queue.requeue(current.id)
        self._persist()
        self._idle.set()
        logger.info("[QUEUE] Shut down")

    # ============================================================
    # Observation
    # ============================================================

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self, include_results: bool = True) -> Dict[str, Any]:
        data = self.queue.to_dict(include_results=include_results)
        data["status_message"] = self.status_message
        return data

    def _refresh_status(self) -> None:
        self.progress = self.queue.progress()
        current = self.queue.current_job
        if current is not None:
            self.status_message = f"Processing Item {current.position}..."

    def _notify(self) -> None:
        self._refresh_status()
        if not self._listeners:
            return
        snapshot = self.snapshot(include_results=False)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"[QUEUE] Progress listener failed: {e}")

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.config.progress_interval)
            self._notify()

    # ============================================================
    # Processing loop
    # ============================================================

    async def _run(self) -> None:
        try:
            while self.queue.is_running:
                job = self.queue.next_pending()
                if job is None:
                    self._finish()
                    break

                allowed = self._check_quota()
                if allowed is None:
                    self.queue.is_running = False
                    self.status_message = STATUS_QUOTA_UNAVAILABLE
                    self._persist()
                    break
                if not allowed:
                    self._pause_for_quota()
                    break

                await self._process(job)

                if self.queue.is_running:
                    await asyncio.sleep(self.config.advance_delay)
        except Exception as e:
            logger.error(f"[QUEUE] Processing loop crashed: {e}", exc_info=True)
            self.queue.is_running = False
            self.status_message = f"Queue error: {e}"
            self._persist()
        finally:
            if self._ticker_task is not None and not self._ticker_task.done():
                self._ticker_task.cancel()
            self._idle.set()
            self._notify()

    async def _process(self, job: QueuedJob) -> None:
        self.queue.mark_processing(job.id)
        self._persist()
        logger.info(f"[QUEUE] Processing item {job.position} ({job.id[:8]})")
        self._notify()

        self._slot_released.clear()
        self._inflight = asyncio.create_task(self.pipeline.analyze(job.photos))
        released = asyncio.create_task(self._slot_released.wait())
        timeout = self.config.identify_timeout + self.config.market_timeout + ANALYSIS_GRACE_SECONDS
        try:
            done, _ = await asyncio.wait(
                {self._inflight, released},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            released.cancel()

        analysis, self._inflight = self._inflight, None

        if analysis not in done:
            if self._is_current(job.id):
                # Neither finished nor released: the whole analysis overran
                analysis.cancel()
                self._apply_failure(
                    job.id,
                    TransientNetworkError("analysis", f"Analysis timed out after {timeout:.0f}s"),
                )
            else:
                analysis.add_done_callback(self._discard_stale)
            return

        if not self._is_current(job.id):
            self._discard_stale(analysis)
            return

        try:
            result = analysis.result()
        except QuotaExhaustedError as e:
            logger.warning(f"[QUEUE] {e.message} - putting item {job.position} back in line")
            self.queue.requeue(job.id)
            self._pause_for_quota()
            return
        except ResellException as e:
            self._apply_failure(job.id, e)
            return
        except Exception as e:
            logger.error(f"[QUEUE] Unexpected error analyzing item {job.position}: {e}", exc_info=True)
            self._apply_failure(job.id, e)
            return

        self.queue.mark_completed(job.id, result)
        self.stats["analyzed"] += 1
        self._record_usage(job.id)
        self._persist()
        logger.info(f"[QUEUE] Item {job.position} complete: {result.name[:40]}")
        self._notify()

    def _is_current(self, job_id: str) -> bool:
        return job_id in self.queue and self.queue.current_job_id == job_id

    def _discard_stale(self, task: asyncio.Task) -> None:
        self.stats["stale_discarded"] += 1
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"[QUEUE] Discarded error from removed job: {error}")
        else:
            logger.debug("[QUEUE] Discarded result from removed job")

    def _apply_failure(self, job_id: str, error: Exception) -> None:
        counted = is_billable(error)
        message = error.message if isinstance(error, ResellException) else f"Unexpected error: {error}"

        self.queue.mark_failed(job_id, message, counted_against_quota=counted)
        self.stats["failed"] += 1
        if counted:
            self._record_usage(job_id)
        self._persist()
        logger.warning(f"[QUEUE] Job {job_id[:8]} failed: {message} (billable: {counted})")
        self._notify()

    def _record_usage(self, job_id: str) -> None:
        try:
            self.quota.record_usage(ANALYSIS_KIND, {"job_id": job_id})
        except PersistenceError as e:
            logger.warning(f"[QUEUE] Usage not recorded for {job_id[:8]}: {e}")

    def _check_quota(self) -> Optional[bool]:
        """The quota authority's answer, or None when it could not be read"""
        try:
            return self.quota.can_submit_analysis()
        except PersistenceError as e:
            logger.warning(f"[QUEUE] Quota check failed: {e}")
            return None

    def _pause_for_quota(self) -> None:
        self.queue.rate_limit_hit = True
        self.queue.is_running = False
        self.status_message = STATUS_RATE_LIMITED
        self.stats["quota_pauses"] += 1
        self._persist()
        logger.warning("[QUEUE] Rate limit reached, queue processing paused")
        self._notify()

    def _finish(self) -> None:
        counts = self.queue.counts()
        self.queue.is_running = False
        self.status_message = f"Queue complete: {counts['completed']} analyzed, {counts['failed']} failed"
        self._persist()
        logger.info(f"[QUEUE] Finished: {counts['completed']} completed, {counts['failed']} failed")

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save_queue(self.queue)
        except PersistenceError as e:
            logger.warning(f"[QUEUE] {e}")


def is_billable(error: Exception) -> bool:
    """
    Whether a failed attempt used up an analysis.

    Only failures after the identification provider actually answered count:
    unusable identifications and pricing errors. Network errors, timeouts and
    provider rejections do not.
    """
    if isinstance(error, (IdentificationFailedError, PricingError)):
        return error.billable
    return False
