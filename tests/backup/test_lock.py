"""Tests for the single-flight operation lock."""

import threading

import pytest

from audit_vault.backup.errors import Conflict
from audit_vault.backup.lock import OperationLock
from audit_vault.backup.models import JobState, OperationKind


def test_initial_status_is_idle():
    lock = OperationLock()
    status = lock.get_status()

    assert status.operation == OperationKind.IDLE
    assert status.state == JobState.IDLE
    assert lock.is_idle()


def test_acquire_sets_status():
    lock = OperationLock()
    lease = lock.acquire(OperationKind.RESTORE, filename="abc.avbak")

    status = lock.get_status()
    assert status.operation == OperationKind.RESTORE
    assert status.state == JobState.PENDING
    assert status.filename == "abc.avbak"
    assert status.started_at is not None
    assert lock.is_busy_with("abc.avbak")

    lease.release()
    assert lock.is_idle()


def test_second_acquire_conflicts():
    lock = OperationLock()
    lease = lock.acquire(OperationKind.BACKUP)

    assert lock.try_acquire(OperationKind.RESTORE) is None
    with pytest.raises(Conflict, match="Another backup operation is in progress"):
        lock.acquire(OperationKind.RESTORE)

    lease.release()
    assert lock.try_acquire(OperationKind.RESTORE) is not None


def test_cannot_acquire_idle():
    with pytest.raises(ValueError):
        OperationLock().acquire(OperationKind.IDLE)


def test_release_is_idempotent():
    lock = OperationLock()
    lease = lock.acquire(OperationKind.BACKUP)
    lease.release()
    lease.release()

    # A stale lease must not release the next holder
    second = lock.acquire(OperationKind.RESTORE)
    lease.release()
    assert lock.get_status().operation == OperationKind.RESTORE
    second.release()


def test_stale_lease_cannot_update():
    lock = OperationLock()
    first = lock.acquire(OperationKind.BACKUP)
    first.release()
    lock.acquire(OperationKind.RESTORE)

    with pytest.raises(RuntimeError):
        first.update("late progress")


def test_update_progress_requires_holder():
    lock = OperationLock()
    with pytest.raises(RuntimeError, match="No operation in progress"):
        lock.update_progress("nothing running")


def test_progress_is_clamped():
    lock = OperationLock()
    with lock.held(OperationKind.BACKUP) as lease:
        lease.update("Exporting", progress=1.7, state=JobState.DUMPING_DATABASE, dataset="Users")
        status = lock.get_status()
        assert status.progress == 1.0
        assert status.state == JobState.DUMPING_DATABASE
        assert status.current_dataset == "Users"

        lock.update_progress(progress=-0.5)
        assert lock.get_status().progress == 0.0


def test_context_manager_records_outcome():
    lock = OperationLock()
    with lock.held(OperationKind.RESTORE) as lease:
        lease.finish(JobState.PARTIAL_FAILURE, "Restore partially failed", failed={"Users": "boom"})

    status = lock.get_status()
    assert status.operation == OperationKind.IDLE
    assert status.state == JobState.PARTIAL_FAILURE
    assert status.failed_datasets == {"Users": "boom"}
    assert status.finished_at is not None


def test_context_manager_releases_on_error():
    lock = OperationLock()
    with pytest.raises(KeyError):
        with lock.held(OperationKind.BACKUP):
            raise KeyError("disk vanished")

    status = lock.get_status()
    assert status.operation == OperationKind.IDLE
    assert status.state == JobState.FAILED
    assert status.message.startswith("Backup failed")
    assert "disk vanished" in status.last_error


@pytest.mark.asyncio
async def test_async_context_manager_releases():
    lock = OperationLock()
    lease = lock.acquire(OperationKind.BACKUP)
    async with lease:
        assert not lock.is_idle()

    assert lock.is_idle()
    assert lock.get_status().state == JobState.DONE
    assert lease.released


def test_status_snapshot_is_a_copy():
    lock = OperationLock()
    lease = lock.acquire(OperationKind.RESTORE)
    snapshot = lock.get_status()
    snapshot.failed_datasets["Users"] = "tampered"
    snapshot.message = "tampered"

    assert lock.get_status().failed_datasets == {}
    assert lock.get_status().message != "tampered"
    lease.release()


def test_guard_file_blocks_file_in_use():
    lock = OperationLock()
    lease = lock.acquire(OperationKind.RESTORE, filename="busy.avbak")

    with pytest.raises(Conflict):
        with lock.guard_file("busy.avbak"):
            pass

    with lock.guard_file("other.avbak"):
        pass

    lease.release()
    with lock.guard_file("busy.avbak"):
        pass


def test_concurrent_acquire_single_winner():
    lock = OperationLock()
    barrier = threading.Barrier(8)
    leases = []
    results_lock = threading.Lock()

    def contend(kind):
        barrier.wait()
        lease = lock.try_acquire(kind)
        if lease is not None:
            with results_lock:
                leases.append(lease)

    threads = [
        threading.Thread(target=contend, args=(OperationKind.BACKUP if i % 2 else OperationKind.RESTORE,))
        for i in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(leases) == 1
    leases[0].release()
    assert lock.is_idle()
