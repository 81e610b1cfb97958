"""
Scheduler module for the Result Watcher pipeline.

Runs the poll cycle: load subjects still waiting for their result, check
each one in turn, record releases and send notifications.

Only one cycle runs at a time. The background timer and manual triggers
share a non-blocking lock; a trigger that finds the lock taken is skipped.
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional

from result_watcher.fetch import ResultFetcher
from result_watcher.notify import NotificationDispatcher, NotificationOutcome
from result_watcher.status import Subject
from result_watcher.store import StoreError, SubjectStore
from result_watcher.utils import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SUBJECT_DELAY_SECONDS,
    get_logger,
)


# Module logger
logger = get_logger("scheduler")


@dataclass
class SubjectCheckResult:
    """Outcome of processing one subject."""
    subject_id: int
    roll_number: str
    released: bool = False
    already_released: bool = False
    error: Optional[str] = None
    notification: Optional[NotificationOutcome] = None


@dataclass
class CycleSummary:
    """Counters for one poll cycle."""
    checked: int = 0
    released: int = 0
    pending: int = 0
    failed: int = 0
    notified: int = 0
    notification_failures: int = 0
    retried_notifications: int = 0


class PollScheduler:
    """
    Periodically check eligible subjects for a released result.

    Args:
        store: Subject store.
        fetcher: Result fetcher used for each subject.
        dispatcher: Notification dispatcher for releases.
        poll_interval_seconds: Seconds between scheduled cycles.
        subject_delay_seconds: Pause between two subjects in a cycle.
        retry_notifications: Re-send failed release notifications at the
            start of each cycle.
    """

    def __init__(
        self,
        store: SubjectStore,
        fetcher: ResultFetcher,
        dispatcher: NotificationDispatcher,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        subject_delay_seconds: float = DEFAULT_SUBJECT_DELAY_SECONDS,
        retry_notifications: bool = True
    ):
        self.store = store
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.poll_interval_seconds = poll_interval_seconds
        self.subject_delay_seconds = subject_delay_seconds
        self.retry_notifications = retry_notifications

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running_cycle(self) -> bool:
        return self._cycle_lock.locked()

    # -------------------------------------------------------------------------
    # Timer
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background timer; the first cycle runs immediately."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Scheduler already started")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_forever, name="result_watcher_scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started: checking results every {self.poll_interval_seconds:g}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the timer and wait for the current cycle to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def _run_forever(self) -> None:
        interval = self.poll_interval_seconds
        next_run = time.monotonic()
        while True:
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception(f"Unexpected error in scheduled cycle: {e}")

            # Firings stay on the start-time grid; slots a long cycle overran are dropped.
            next_run += interval
            now = time.monotonic()
            if interval > 0 and next_run <= now:
                missed = int((now - next_run) // interval) + 1
                logger.warning(f"Cycle overran the poll interval; skipping {missed} scheduled run(s)")
                next_run += missed * interval

            if self._stop_event.wait(max(0.0, next_run - now)):
                return

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def trigger_manual(self) -> Optional[CycleSummary]:
        """Run one cycle now; skipped if a cycle is already running."""
        logger.info("Manual cycle requested")
        return self.run_cycle()

    def run_cycle(self) -> Optional[CycleSummary]:
        """
        Run one poll cycle unless another is in progress.

        Returns:
            CycleSummary, or None if the cycle was skipped.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Previous cycle still running, skipping")
            return None

        try:
            return self._run_cycle_locked()
        finally:
            self._cycle_lock.release()

    def _run_cycle_locked(self) -> CycleSummary:
        summary = CycleSummary()

        logger.info("=" * 60)
        logger.info("Result check cycle - Starting")
        logger.info("=" * 60)

        if self.retry_notifications:
            self._retry_pending_notifications(summary)

        try:
            subjects = self.store.list_eligible()
        except StoreError as e:
            logger.error(f"Could not load eligible subjects: {e}")
            return summary

        logger.info(f"Found {len(subjects)} subject(s) awaiting results")

        for index, subject in enumerate(subjects):
            if index > 0 and self.subject_delay_seconds > 0:
                time.sleep(self.subject_delay_seconds)

            result = self._process_subject(subject)
            summary.checked += 1
            if result.error:
                summary.failed += 1
            elif result.released:
                summary.released += 1
            else:
                summary.pending += 1

            if result.notification is not None:
                if result.notification.delivered:
                    summary.notified += 1
                else:
                    summary.notification_failures += 1

        logger.info("=" * 60)
        logger.info("Result check cycle - Complete")
        logger.info(
            f"Summary: {summary.checked} checked, {summary.released} released, "
            f"{summary.pending} pending, {summary.failed} failed"
        )
        logger.info("=" * 60)

        return summary

    def check_subject(self, subject_id: int) -> Optional[SubjectCheckResult]:
        """
        Check a single subject now, behind the cycle guard.

        Returns:
            SubjectCheckResult, or None if a cycle is running.

        Raises:
            StoreError: If the subject does not exist.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info(f"Cycle in progress, skipping manual check of subject {subject_id}")
            return None

        try:
            subject = self.store.find_by_id(subject_id)
            if subject is None:
                raise StoreError(f"Subject {subject_id} not found")
            if subject.is_released:
                return SubjectCheckResult(subject.id, subject.roll_number, already_released=True)
            return self._process_subject(subject)
        finally:
            self._cycle_lock.release()

    def _process_subject(self, subject: Subject) -> SubjectCheckResult:
        result = SubjectCheckResult(subject.id, subject.roll_number)
        logger.info(f"Checking result for {subject.name} ({subject.roll_number})...")

        try:
            outcome = self.fetcher.fetch(subject.roll_number, subject.date_of_birth)

            if not (outcome.available and outcome.markup):
                if outcome.error:
                    logger.warning(f"[{subject.roll_number}] Fetch failed: {outcome.error}")
                else:
                    logger.info(f"[{subject.roll_number}] Result not yet available")
                self.store.touch(subject.id)
                result.error = outcome.error
                return result

            released = self.store.apply_release(subject.id, outcome.markup)
            result.released = True
            logger.info(f"[{subject.roll_number}] Result found for {subject.name}")

            result.notification = self._notify(released, outcome.markup)

        except Exception as e:
            logger.error(f"[{subject.roll_number}] Error checking result: {e}")
            result.error = str(e)

        return result

    def _notify(self, subject: Subject, markup: str) -> NotificationOutcome:
        outcome = self.dispatcher.notify(subject, markup)

        if outcome.delivered:
            logger.info(f"[{subject.roll_number}] Notification sent via {outcome.channel_used}")
            try:
                self.store.mark_notified(subject.id)
            except StoreError as e:
                logger.error(f"[{subject.roll_number}] Could not record notification: {e}")
        else:
            logger.warning(
                f"[{subject.roll_number}] Notification failed ({outcome.channel_used}): {outcome.error}"
            )

        return outcome

    def _retry_pending_notifications(self, summary: CycleSummary) -> None:
        try:
            pending = self.store.list_unnotified()
        except StoreError as e:
            logger.error(f"Could not load pending notifications: {e}")
            return

        if pending:
            logger.info(f"Retrying {len(pending)} undelivered notification(s)")

        for subject in pending:
            try:
                outcome = self._notify(subject, subject.result_snapshot or "")
            except Exception as e:
                logger.error(f"[{subject.roll_number}] Notification retry failed: {e}")
                continue
            summary.retried_notifications += 1
            if outcome.delivered:
                summary.notified += 1
            else:
                summary.notification_failures += 1
