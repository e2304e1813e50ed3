"""Single-flight operation lock and the shared status record."""

import itertools
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

from .._utils import logger
from .errors import Conflict
from .models import JobState, OperationKind, OperationStatus


class OperationLease:
    """Handle for one successful acquisition of the OperationLock.

    Use it as a (sync or async) context manager: leaving the block releases
    the lock whatever happened inside. The outcome recorded with `finish()`
    becomes the final status; an exception overrides it with FAILED.
    """

    def __init__(self, lock: "OperationLock", kind: OperationKind, generation: int):
        self._lock = lock
        self.kind = kind
        self.generation = generation
        self._released = False
        self._outcome: Dict = {
            "state": JobState.DONE,
            "message": f"{kind.value.capitalize()} completed",
        }

    @property
    def released(self) -> bool:
        return self._released

    def update(
        self,
        message: Optional[str] = None,
        progress: Optional[float] = None,
        state: Optional[JobState] = None,
        dataset: Optional[str] = None,
    ) -> None:
        if self._released:
            raise RuntimeError("Cannot update progress through a released lease")
        self._lock._update(self.generation, message, progress, state, dataset)

    def finish(
        self,
        state: JobState,
        message: str,
        error: Optional[str] = None,
        failed: Optional[Dict[str, str]] = None,
        skipped: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record the final status applied when the lease is released."""
        self._outcome = {
            "state": state,
            "message": message,
            "error": error,
            "failed": failed,
            "skipped": skipped,
        }

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._lock._release(self.generation, **self._outcome)

    def _exit(self, exc: Optional[BaseException]) -> None:
        if exc is not None:
            text = str(exc) or type(exc).__name__
            self.finish(
                JobState.FAILED,
                f"{self.kind.value.capitalize()} failed: {text}",
                error=text,
                failed=self._outcome.get("failed"),
                skipped=self._outcome.get("skipped"),
            )
        self.release()

    def __enter__(self) -> "OperationLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._exit(exc)
        return False

    async def __aenter__(self) -> "OperationLease":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._exit(exc)
        return False


class OperationLock:
    """At most one backup or restore runs at a time, process wide.

    All state sits behind a threading.Lock because progress is reported both
    from the event loop and from worker threads.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._status = OperationStatus()
        self._generation = 0
        self._counter = itertools.count(1)

    def try_acquire(
        self,
        kind: OperationKind,
        filename: Optional[str] = None,
        message: Optional[str] = None,
        state: Optional[JobState] = None,
    ) -> Optional[OperationLease]:
        """Transition idle -> kind. Returns None when another operation holds the lock."""
        lease, _ = self._try_acquire(kind, filename, message, state)
        return lease

    def acquire(
        self,
        kind: OperationKind,
        filename: Optional[str] = None,
        message: Optional[str] = None,
        state: Optional[JobState] = None,
    ) -> OperationLease:
        """Like try_acquire, but raises Conflict naming the active operation."""
        lease, active = self._try_acquire(kind, filename, message, state)
        if lease is None:
            raise Conflict(f"Another {active.value} operation is in progress")
        return lease

    @contextmanager
    def held(self, kind: OperationKind, **kwargs) -> Iterator[OperationLease]:
        lease = self.acquire(kind, **kwargs)
        with lease:
            yield lease

    def _try_acquire(self, kind, filename, message, state):
        if kind == OperationKind.IDLE:
            raise ValueError("Cannot acquire the lock for the idle operation")

        with self._mutex:
            if self._status.operation != OperationKind.IDLE:
                return None, self._status.operation

            self._generation = next(self._counter)
            self._status = OperationStatus(
                operation=kind,
                state=state or (JobState.BACKUP_STARTED if kind == OperationKind.BACKUP else JobState.PENDING),
                started_at=datetime.now(timezone.utc),
                message=message or f"{kind.value.capitalize()} started",
                progress=0.0,
                filename=filename,
            )
            generation = self._generation

        logger.info(f"Acquired {kind.value} lock")
        return OperationLease(self, kind, generation), None

    def get_status(self) -> OperationStatus:
        """Consistent snapshot of the status record."""
        with self._mutex:
            return self._status.model_copy(deep=True)

    def is_idle(self) -> bool:
        with self._mutex:
            return self._status.operation == OperationKind.IDLE

    def is_busy_with(self, filename: str) -> bool:
        with self._mutex:
            return (
                self._status.operation != OperationKind.IDLE
                and self._status.filename == filename
            )

    @contextmanager
    def guard_file(self, filename: str) -> Iterator[None]:
        """Hold the status mutex while touching `filename`.

        Raises Conflict when the running operation uses that file. No new
        operation can start while the block runs.
        """
        with self._mutex:
            if (
                self._status.operation != OperationKind.IDLE
                and self._status.filename == filename
            ):
                raise Conflict(f"Backup {filename} is in use by the running {self._status.operation.value}")
            yield

    def update_progress(
        self,
        message: Optional[str] = None,
        progress: Optional[float] = None,
        state: Optional[JobState] = None,
        dataset: Optional[str] = None,
    ) -> None:
        """Update the status of the operation currently holding the lock."""
        self._update(None, message, progress, state, dataset)

    def _update(self, generation, message, progress, state, dataset) -> None:
        with self._mutex:
            if self._status.operation == OperationKind.IDLE:
                raise RuntimeError("No operation in progress")
            if generation is not None and generation != self._generation:
                raise RuntimeError("Lease no longer holds the lock")
            if message is not None:
                self._status.message = message
            if progress is not None:
                self._status.progress = max(0.0, min(1.0, progress))
            if state is not None:
                self._status.state = state
            if dataset is not None:
                self._status.current_dataset = dataset

    def _release(
        self,
        generation: int,
        state: JobState,
        message: str,
        error: Optional[str] = None,
        failed: Optional[Dict[str, str]] = None,
        skipped: Optional[Dict[str, str]] = None,
    ) -> None:
        with self._mutex:
            if generation != self._generation or self._status.operation == OperationKind.IDLE:
                logger.warning("Ignoring release of a lease that no longer holds the lock")
                return
            kind = self._status.operation
            self._status = OperationStatus(
                operation=OperationKind.IDLE,
                state=state,
                finished_at=datetime.now(timezone.utc),
                message=message,
                failed_datasets=dict(failed or {}),
                skipped_datasets=dict(skipped or {}),
                last_error=error,
            )

        logger.info(f"Released {kind.value} lock ({state.value})")
