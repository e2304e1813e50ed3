"""Tests for the JSON file collection backend."""

import json

import pytest

from audit_vault._storage.collection_json import JsonCollection


@pytest.fixture
def collection(tmp_path):
    return JsonCollection(namespace="users", global_config={"working_dir": str(tmp_path)})


@pytest.mark.asyncio
async def test_upsert_and_read(collection):
    await collection.upsert_many([{"_id": "u1", "name": "alice"}, {"_id": "u2", "name": "bob"}])
    await collection.upsert_many([{"_id": "u1", "name": "alice2"}])

    assert await collection.count() == 2
    assert await collection.get_by_key("u1") == {"_id": "u1", "name": "alice2"}
    assert await collection.get_by_key("missing") is None
    assert [r["_id"] for r in await collection.all_records()] == ["u1", "u2"]


@pytest.mark.asyncio
async def test_insert_rejects_duplicates_atomically(collection):
    await collection.insert_many([{"_id": "u1"}])

    with pytest.raises(ValueError, match="Duplicate keys"):
        await collection.insert_many([{"_id": "u2"}, {"_id": "u1"}])
    with pytest.raises(ValueError, match="Duplicate keys"):
        await collection.insert_many([{"_id": "u3"}, {"_id": "u3"}])

    assert await collection.count() == 1


@pytest.mark.asyncio
async def test_record_without_key(collection):
    with pytest.raises(ValueError, match="no '_id' key field"):
        await collection.upsert_many([{"name": "anonymous"}])


@pytest.mark.asyncio
async def test_custom_key_field(tmp_path):
    collection = JsonCollection(
        namespace="settings", global_config={"working_dir": str(tmp_path)}, key_field="name"
    )
    await collection.upsert_many([{"name": "report", "value": 1}])
    assert await collection.get_by_key("report") == {"name": "report", "value": 1}


@pytest.mark.asyncio
async def test_persistence(collection, tmp_path):
    await collection.upsert_many([{"_id": "u1", "name": "alice"}])
    await collection.index_done_callback()

    path = tmp_path / "collection_users.json"
    assert json.loads(path.read_text()) == {"u1": {"_id": "u1", "name": "alice"}}

    reloaded = JsonCollection(namespace="users", global_config={"working_dir": str(tmp_path)})
    assert await reloaded.get_by_key("u1") == {"_id": "u1", "name": "alice"}


@pytest.mark.asyncio
async def test_drop(collection):
    await collection.upsert_many([{"_id": "u1"}])
    await collection.drop()
    assert await collection.count() == 0
    assert await collection.check_health() is True
