"""End-to-end tests for archive building and restoring through the datastore."""

import dataclasses
from unittest.mock import AsyncMock, patch

import pytest

from audit_vault.backup import crypto
from audit_vault.backup.archive import ArchiveReader
from audit_vault.backup.errors import BadParameters, Conflict, NotFound, Unauthorized
from audit_vault.backup.models import (
    BackupRequest,
    JobState,
    OperationKind,
    RestoreMode,
    RestoreRequest,
)


async def snapshot(datastore):
    return {name: await datastore.collection(name).all_records() for name in datastore.registry.names}


@pytest.mark.asyncio
async def test_backup_selected_datasets(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)

    manifest = await backup_manager.create_backup(BackupRequest(backup_data=["Users", "Settings"]))

    assert manifest.encrypted is False
    assert manifest.dataset == ["Users", "Settings"]
    assert manifest.statistics == {"Users": 2, "Settings": 1}
    assert manifest.filename == f"{manifest.slug}.avbak"
    assert manifest.name.startswith("Backup ")
    assert (backup_manager.backup_dir / manifest.filename).stat().st_size == manifest.size

    status = backup_manager.get_status()
    assert status.operation == OperationKind.IDLE
    assert status.state == JobState.DONE


@pytest.mark.asyncio
async def test_backup_all_datasets_by_default(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)

    manifest = await backup_manager.create_backup(BackupRequest(name="Full"))

    assert manifest.name == "Full"
    assert manifest.dataset == list(datastore.registry.names)


@pytest.mark.asyncio
async def test_backup_rejects_bad_selection(backup_manager):
    with pytest.raises(BadParameters, match="At least one dataset"):
        await backup_manager.create_backup(BackupRequest(backup_data=[]))
    with pytest.raises(BadParameters, match="Unknown datasets"):
        await backup_manager.create_backup(BackupRequest(backup_data=["Users", "Pets"]))

    # Rejected before the lock is taken
    assert backup_manager.get_status().state == JobState.IDLE


@pytest.mark.asyncio
async def test_replace_round_trip(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    before = await snapshot(datastore)
    manifest = await backup_manager.create_backup(BackupRequest(password="s3cret"))

    # Wreck the data
    await datastore.collection("Users").drop()
    await datastore.collection("Users").upsert_many([{"_id": "u9", "username": "mallory"}])
    await datastore.collection("Audits").drop()

    report = await backup_manager.restore_backup(
        manifest.slug, RestoreRequest(password="s3cret", mode=RestoreMode.REPLACE)
    )

    assert report.state == JobState.DONE
    assert report.restored == list(datastore.registry.names)
    assert report.failed == {}
    assert await snapshot(datastore) == before


@pytest.mark.asyncio
async def test_merge_restore_leaves_other_datasets(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(backup_data=["Users", "Settings"]))

    await datastore.collection("Users").upsert_many([
        {"_id": "u1", "username": "alice", "role": "guest"},
        {"_id": "u3", "username": "carol", "role": "user"},
    ])
    await datastore.collection("Settings").upsert_many([{"_id": "report", "language": "de"}])

    report = await backup_manager.restore_backup(
        manifest.slug, RestoreRequest(restore_data=["Users"], mode="upsert")
    )

    assert report.restored == ["Users"]
    users = {u["_id"]: u for u in await datastore.collection("Users").all_records()}
    # Archived records win, records absent from the archive survive
    assert users["u1"]["role"] == "admin"
    assert "u3" in users
    settings = await datastore.collection("Settings").get_by_key("report")
    assert settings["language"] == "de"


@pytest.mark.asyncio
async def test_wrong_password_touches_nothing(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(password="s3cret"))
    await datastore.collection("Users").upsert_many([{"_id": "u9", "username": "mallory"}])
    before = await snapshot(datastore)

    with pytest.raises(Unauthorized):
        await backup_manager.restore_backup(manifest.slug, RestoreRequest(password="guess"))

    assert await snapshot(datastore) == before
    status = backup_manager.get_status()
    assert status.operation == OperationKind.IDLE
    assert status.state == JobState.FAILED
    assert "Wrong password" in status.message


@pytest.mark.asyncio
async def test_encrypted_restore_derives_key_once(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(password="s3cret"))

    with patch("audit_vault.backup.crypto.derive_keys", wraps=crypto.derive_keys) as derive:
        report = await backup_manager.restore_backup(
            manifest.slug, RestoreRequest(password="s3cret", mode="replace")
        )

    assert report.state == JobState.DONE
    assert derive.call_count == 1


@pytest.mark.asyncio
async def test_missing_password(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(password="s3cret"))
    assert manifest.encrypted is True

    with pytest.raises(Unauthorized, match="password is required"):
        await backup_manager.restore_backup(manifest.slug, RestoreRequest())


@pytest.mark.asyncio
async def test_restore_unknown_slug(backup_manager):
    with pytest.raises(NotFound):
        await backup_manager.restore_backup("0000000000000000", RestoreRequest())
    assert backup_manager.lock.is_idle()


@pytest.mark.asyncio
async def test_restore_skips_datasets(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(backup_data=["Users"]))

    report = await backup_manager.restore_backup(
        manifest.slug, RestoreRequest(restore_data=["Users", "Audits"])
    )

    assert report.restored == ["Users"]
    assert report.skipped == {"Audits": "Not included in the backup"}
    assert backup_manager.get_status().skipped_datasets == {"Audits": "Not included in the backup"}


@pytest.mark.asyncio
async def test_restore_skips_datasets_unknown_to_registry(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(backup_data=["Users", "Audits"]))

    # The running system no longer knows Audits
    datastore.registry = datastore.registry.__class__.from_names(["Settings", "Companies", "Users"])

    report = await backup_manager.restore_backup(manifest.slug, RestoreRequest())

    assert report.restored == ["Users"]
    assert report.skipped == {"Audits": "Unknown dataset"}


@pytest.mark.asyncio
async def test_restore_runs_in_dependency_order(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(backup_data=["Audits", "Users", "Companies"]))

    report = await backup_manager.restore_backup(manifest.slug, RestoreRequest(mode="replace"))

    assert report.restored == ["Companies", "Users", "Audits"]


@pytest.mark.asyncio
async def test_partial_failure_keeps_going(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest())

    users = datastore.collection("Users")
    with patch.object(users, "upsert_many", AsyncMock(side_effect=RuntimeError("write refused"))):
        report = await backup_manager.restore_backup(manifest.slug, RestoreRequest())

    assert report.state == JobState.PARTIAL_FAILURE
    assert report.failed == {"Users": "write refused"}
    assert "Audits" in report.restored and "Settings" in report.restored

    status = backup_manager.get_status()
    assert status.state == JobState.PARTIAL_FAILURE
    assert status.failed_datasets == {"Users": "write refused"}


@pytest.mark.asyncio
async def test_busy_engine_conflicts(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest())

    lease = backup_manager.lock.acquire(OperationKind.BACKUP)
    try:
        with pytest.raises(Conflict):
            await backup_manager.create_backup(BackupRequest())
        with pytest.raises(Conflict):
            await backup_manager.restore_backup(manifest.slug, RestoreRequest())
    finally:
        lease.release()


@pytest.mark.asyncio
async def test_archive_validates_after_build(backup_manager, datastore, seed, sample_records):
    await seed(datastore, sample_records)
    manifest = await backup_manager.create_backup(BackupRequest(password="s3cret"))

    reader = ArchiveReader(backup_manager.backup_dir / manifest.filename)
    assert reader.validate("s3cret").slug == manifest.slug
    assert reader.read_dataset("Audits", password="s3cret") == sample_records["Audits"]


@pytest.mark.asyncio
async def test_not_enough_disk_space(backup_manager):
    with patch("audit_vault.backup.builder.disk_usage", return_value=(10, 10, 100)):
        backup_manager.builder.config = dataclasses.replace(backup_manager.config, min_free_bytes=1024)
        with pytest.raises(BadParameters, match="Not enough free disk space"):
            await backup_manager.create_backup(BackupRequest())

    assert backup_manager.get_status().state == JobState.FAILED
    assert list(backup_manager.backup_dir.glob("*.avbak")) == []
