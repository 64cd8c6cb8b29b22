from __future__ import annotations

import random
import threading
from typing import Callable, ContextManager, List, Optional

from playwright.sync_api import Page

from src.broadcast import StatusBroadcaster
from src.config import UnmaskConfig
from src.errors import (
    AlreadyRunning,
    AuthenticationError,
    EmptyInput,
    ItemFailure,
    NavigationRequestError,
    RunError,
    SessionError,
)
from src.schemas import (
    EventType,
    ExtractedRecord,
    FailureReason,
    Item,
    Job,
    RunState,
    StatusSnapshot,
    UnmaskEvent,
)
from src.store.base import ResultStore
from .disclosure import DisclosureActuator
from .extractors import FieldExtractor
from .navigation import NavigationWaiter, Navigator, PageCheck, check_page
from .session import BrowserSession


SessionFactory = Callable[[], ContextManager[Page]]


class ItemOrchestrator:
    """Drives one run: navigate, disclose, extract and persist, one item at a time.

    Concurrency model:
    - ``start`` validates on the caller's thread, then a single worker thread
      owns the browser page and walks the items in input order
    - ``stop`` is cooperative: it is honoured before an item starts and after
      one finishes, never in the middle of one
    - counters are updated under the Job lock before the matching event is
      published, so no event carries stale counters

    Item failures (navigation, extraction, persistence) are counted and the run
    continues. Authentication and session failures abort the run with one
    ERROR event.
    """

    def __init__(
        self,
        *,
        store: ResultStore,
        config: Optional[UnmaskConfig] = None,
        broadcaster: Optional[StatusBroadcaster] = None,
        session_factory: Optional[SessionFactory] = None,
        navigator: Optional[Navigator] = None,
        waiter: Optional[NavigationWaiter] = None,
        actuator: Optional[DisclosureActuator] = None,
        extractor: Optional[FieldExtractor] = None,
        page_check: Callable[..., PageCheck] = check_page,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or UnmaskConfig()
        self.store = store
        self.broadcaster = broadcaster or StatusBroadcaster()
        self.session_factory = session_factory or self._default_session
        timing = self.config.timing
        self.navigator = navigator or Navigator(self.config.page, timeout_ms=timing.navigation_timeout_ms)
        self.waiter = waiter or NavigationWaiter()
        self.rng = rng or random.Random()
        self.actuator = actuator or DisclosureActuator(timing=timing, rng=self.rng)
        self.extractor = extractor or FieldExtractor(self.config.extraction)
        self.page_check = page_check

        self._job = Job()
        self._start_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _default_session(self) -> ContextManager[Page]:
        return BrowserSession(browser=self.config.browser, page_config=self.config.page, timing=self.config.timing)

    # -------------------------
    # Control surface
    # -------------------------
    @property
    def job(self) -> Job:
        return self._job

    def status(self) -> StatusSnapshot:
        return self._job.snapshot()

    def start(self, item_ids: List[str]) -> int:
        """Begin a run on a worker thread; returns the number of items queued.

        Raises AlreadyRunning while a run is in progress and EmptyInput when
        no usable id was given; both are also broadcast as ERROR.
        """
        try:
            job = self._prepare(item_ids)
        except RunError as e:
            self.reject(e)
            raise
        self._publish(EventType.STARTED, job, message=f"Processing {job.total} orders...", is_running=True)
        self._thread.start()
        return job.total

    def _prepare(self, item_ids: List[str]) -> Job:
        with self._start_lock:
            if self._job.is_running:
                raise AlreadyRunning()
            ids = [str(i).strip() for i in (item_ids or []) if i is not None and str(i).strip()]
            if not ids:
                raise EmptyInput()
            # stop() reads the job first, so its event must already be in place
            stop_event = threading.Event()
            job = Job.from_ids(ids)
            job.state = RunState.RUNNING
            self._stop_event = stop_event
            self._job = job
            self._thread = threading.Thread(
                target=self._run_job, args=(job, stop_event), name="unmask-run", daemon=True,
            )
        return job

    def reject(self, error: RunError) -> None:
        """Broadcast a refused start; the current run, if any, is untouched."""
        snap = self.status()
        self.broadcaster.publish(UnmaskEvent.with_counters(
            EventType.ERROR, snap, message=str(error), failure=error.reason, is_running=snap.is_running,
        ))

    def run(self, item_ids: List[str]) -> StatusSnapshot:
        """Blocking variant of ``start``: returns the final snapshot."""
        self.start(item_ids)
        self.join()
        return self.status()

    def stop(self) -> None:
        job = self._job
        with job.lock:
            if job.state == RunState.RUNNING:
                job.state = RunState.STOPPING
                self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread; True when no run is in flight afterwards."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # -------------------------
    # Run loop (worker thread)
    # -------------------------
    def _publish(self, type: EventType, job: Job, **fields) -> None:
        self.broadcaster.publish(UnmaskEvent.with_counters(type, job.snapshot(), **fields))

    def _run_job(self, job: Job, stop_event: threading.Event) -> None:
        try:
            with self.session_factory() as page:
                self._loop(job, page, stop_event)
        except RunError as e:
            self._abort(job, e)
        except Exception as e:
            self._abort(job, SessionError(f"Unexpected error: {e}"))

    def _loop(self, job: Job, page: Page, stop_event: threading.Event) -> None:
        while True:
            if stop_event.is_set():
                self._finish(job, RunState.STOPPED)
                return
            item = job.mark_processing()
            self._publish(
                EventType.PROCESSING, job,
                item_id=item.item_id, item_id_short=item.short_id, index=job.cursor + 1, is_running=True,
            )
            try:
                record = self.process_item(item, page)
            except ItemFailure as f:
                job.record_failure(item, f.reason, f.detail)
                self._publish(
                    EventType.ORDER_FAILED, job,
                    item_id=item.item_id, item_id_short=item.short_id, index=job.cursor + 1,
                    reason=f.detail, failure=f.reason,
                )
            except Exception:
                job.release(item)
                raise
            else:
                job.record_success(item)
                self._publish(
                    EventType.ORDER_SUCCESS, job,
                    item_id=item.item_id, item_id_short=item.short_id, index=job.cursor + 1,
                    name=record.name, phone=record.phone, address_preview=record.address_preview(),
                )

            job.advance()
            if stop_event.is_set():
                self._finish(job, RunState.STOPPED)
                return
            if job.at_end:
                self._finish(job, RunState.COMPLETED)
                return
            self._pace(stop_event)

    def _pace(self, stop_event: threading.Event) -> None:
        # Human-like gap between items; a stop request cuts it short
        lo, hi = self.config.timing.item_pacing_s
        delay = self.rng.uniform(lo, hi)
        if delay > 0:
            stop_event.wait(delay)

    def _finish(self, job: Job, state: RunState) -> None:
        with job.lock:
            job.state = state
        if state == RunState.COMPLETED:
            self._publish(EventType.COMPLETED, job, message="All orders processed!", is_running=False)
        else:
            self._publish(EventType.STOPPED, job, message="Stopped", is_running=False)

    def _abort(self, job: Job, error: RunError) -> None:
        with job.lock:
            job.state = RunState.ABORTED
        self._publish(EventType.ERROR, job, message=str(error), failure=error.reason, is_running=False)

    # -------------------------
    # One item
    # -------------------------
    def process_item(self, item: Item, page: Page) -> ExtractedRecord:
        """Navigate, disclose, extract and commit one item.

        Raises ItemFailure for anything that only concerns this item and
        AuthenticationError when the session is logged out.
        """
        timing = self.config.timing
        try:
            self.navigator.request_navigate(page, item.item_id)
        except NavigationRequestError as e:
            raise ItemFailure(FailureReason.NAVIGATION_ERROR, str(e)) from e
        except Exception as e:
            raise ItemFailure(FailureReason.NAVIGATION_ERROR, f"Navigation failed: {e}") from e

        try:
            outcome = self.waiter.await_navigation(page, timing.navigation_timeout_ms)
            if outcome.completed:
                self.waiter.settle(page, timing.settle_ms)
                check = self.page_check(page, self.config.page)
        except Exception as e:
            raise ItemFailure(FailureReason.NAVIGATION_ERROR, f"Navigation failed: {e}") from e
        if not outcome.completed:
            detail = "Navigation timed out" if outcome.timed_out else f"Navigation failed: {outcome.error}"
            raise ItemFailure(FailureReason.NAVIGATION_ERROR, detail)

        if not check.is_logged_in:
            raise AuthenticationError()
        if not check.is_detail:
            raise ItemFailure(FailureReason.NAVIGATION_ERROR, f"Not an order detail page: {check.url}")

        try:
            self.actuator.reveal(page)
            record = self.extractor.extract(page)
        except Exception as e:
            raise ItemFailure(FailureReason.EXTRACTION_INCOMPLETE, f"Extraction failed: {e}") from e
        if not record.has_data:
            raise ItemFailure(FailureReason.EXTRACTION_INCOMPLETE, "Could not extract customer data")
        if record.is_masked:
            raise ItemFailure(FailureReason.EXTRACTION_MASKED, "Data still masked - reveal may have failed")

        try:
            result = self.store.commit_result(item.item_id, record)
        except Exception as e:
            raise ItemFailure(FailureReason.PERSISTENCE_ERROR, f"Failed to save to database: {e}") from e
        if not result.ok:
            raise ItemFailure(FailureReason.PERSISTENCE_ERROR, result.error or "Failed to save to database")
        return record
