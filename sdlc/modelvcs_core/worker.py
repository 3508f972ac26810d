"""
Bounded background worker pool for deferred maintenance.

Request handling never waits on this pool. It runs follow-up work such as
deleting a backup workspace after a resolved conflict, or closing the open
reviews of a deleted patch.

Invariants:
    - At most ``max_workers`` tasks run at once
    - A failing task is logged, never raised into the submitting thread
    - Retryable tasks are retried only for errors ``is_retryable`` accepts

How to change safely:
    - Tasks must be idempotent; a retried task may have partly run before
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from .errors import SdlcError, UnavailableError

logger = logging.getLogger(__name__)

Task = Callable[[], object]


def default_is_retryable(error: Exception) -> bool:
    return isinstance(error, SdlcError) and error.retryable


class BackgroundTaskProcessor:
    """Runs fire-and-forget tasks on a small thread pool.

    Attributes:
        max_workers: Pool size
        retry_delay_ms: Default pause between attempts of retryable tasks
        max_retries: Default retries for retryable tasks

    Example:
        >>> worker = BackgroundTaskProcessor(max_workers=2)
        >>> worker.submit_task(lambda: cleanup(), "delete backup workspace")
        >>> worker.wait_idle(timeout=5)
        >>> worker.shutdown()
    """

    def __init__(self, max_workers: int = 1, retry_delay_ms: int = 1000, max_retries: int = 3) -> None:
        self.max_workers = max_workers
        self.retry_delay_ms = retry_delay_ms
        self.max_retries = max_retries
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sdlc-bg")
        self._pending = 0
        self._idle = threading.Condition()
        self._shutdown = False
        self.completed_count = 0
        self.failed_count = 0

    @property
    def pending_count(self) -> int:
        with self._idle:
            return self._pending

    def submit_task(self, task: Task, description: str = "background task") -> Future:
        """Run ``task`` once in the background."""
        return self.submit_retryable_task(task, description, max_retries=0)

    def submit_retryable_task(
        self,
        task: Task,
        description: str = "background task",
        retry_delay_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
        is_retryable: Callable[[Exception], bool] = default_is_retryable,
    ) -> Future:
        """Run ``task`` in the background, retrying failures that are retryable.

        Args:
            task: Zero-argument callable
            description: Human-readable description used in logs
            retry_delay_ms: Pause between attempts (processor default if None)
            max_retries: Additional attempts after the first failure (processor default if None)
            is_retryable: Decides whether an error warrants another attempt

        Returns:
            Future resolving to the task result (or its final exception)

        Raises:
            UnavailableError: If the processor has been shut down
        """
        if retry_delay_ms is None:
            retry_delay_ms = self.retry_delay_ms
        if max_retries is None:
            max_retries = self.max_retries
        with self._idle:
            if self._shutdown:
                raise UnavailableError(
                    f"Cannot submit {description}: background processor is shut down",
                    feature="background tasks",
                )
            self._pending += 1
        try:
            return self._executor.submit(
                self._run, task, description, retry_delay_ms, max_retries, is_retryable
            )
        except RuntimeError as e:
            self._finished(failed=True)
            raise UnavailableError(
                f"Cannot submit {description}: {e}", feature="background tasks"
            ) from e

    def _run(
        self,
        task: Task,
        description: str,
        retry_delay_ms: int,
        max_retries: int,
        is_retryable: Callable[[Exception], bool],
    ) -> object:
        attempt = 0
        failed = True
        try:
            while True:
                attempt += 1
                try:
                    result = task()
                except Exception as e:
                    if attempt <= max_retries and is_retryable(e):
                        logger.warning(
                            f"Background task failed, retrying: {description}",
                            extra={"attempt": attempt, "error": str(e)},
                        )
                        time.sleep(retry_delay_ms / 1000.0)
                        continue
                    logger.error(
                        f"Background task failed: {description}",
                        extra={"attempt": attempt, "error": str(e)},
                        exc_info=True,
                    )
                    raise
                logger.debug(f"Background task completed: {description}", extra={"attempt": attempt})
                failed = False
                return result
        finally:
            self._finished(failed=failed)

    def _finished(self, failed: bool) -> None:
        with self._idle:
            self._pending -= 1
            if failed:
                self.failed_count += 1
            else:
                self.completed_count += 1
            if self._pending == 0:
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no task is pending. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks; optionally wait for running ones."""
        with self._idle:
            self._shutdown = True
        self._executor.shutdown(wait=wait)
        logger.debug(
            "Background task processor stopped",
            extra={"completed": self.completed_count, "failed": self.failed_count},
        )
