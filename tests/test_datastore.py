"""Tests for the dataset registry and datastore wiring."""

import pytest

from audit_vault import DataStore, DatasetRegistry, DatasetSpec
from audit_vault._storage.collection_json import JsonCollection
from audit_vault.datastore import namespace_for


def test_namespace_for():
    assert namespace_for("Vulnerabilities Updates") == "vulnerabilities_updates"
    assert namespace_for("Audit Types") == "audit_types"
    assert namespace_for("Settings") == "settings"


def test_registry_order_and_lookup():
    registry = DatasetRegistry.from_names(["Settings", "Users", "Audits"])

    assert registry.names == ["Settings", "Users", "Audits"]
    assert "Users" in registry
    assert "Pets" not in registry
    assert len(registry) == 3
    assert registry.get("Users") == DatasetSpec(name="Users", namespace="users")
    assert registry.unknown(["Users", "Pets"]) == ["Pets"]
    assert registry.ordered(["Audits", "Pets", "Settings", "Audits"]) == ["Settings", "Audits"]


def test_registry_rejects_duplicates_and_empty():
    with pytest.raises(ValueError, match="registered twice"):
        DatasetRegistry.from_names(["Users", "Users"])
    with pytest.raises(ValueError, match="must not be empty"):
        DatasetRegistry([])


def test_registry_rejects_shared_namespace():
    with pytest.raises(ValueError, match="share namespace audit_types"):
        DatasetRegistry.from_names(["Audit Types", "audit-types"])
    with pytest.raises(ValueError, match="share namespace"):
        DatasetRegistry([DatasetSpec("Users", "people"), DatasetSpec("Staff", "people")])


def test_datastore_builds_collections(vault_config):
    datastore = DataStore(config=vault_config)

    assert datastore.registry.names == list(vault_config.datasets.datasets)
    users = datastore.collection("Users")
    assert isinstance(users, JsonCollection)
    assert users.namespace == "users"

    with pytest.raises(KeyError):
        datastore.collection("Pets")


def test_datastore_with_injected_collections(vault_config, tmp_path):
    registry = DatasetRegistry([DatasetSpec(name="Users", namespace="users", key_field="username")])
    users = JsonCollection(namespace="users", global_config={"working_dir": str(tmp_path)}, key_field="username")

    datastore = DataStore(config=vault_config, registry=registry, collections={"Users": users})
    assert datastore.collection("Users") is users

    with pytest.raises(ValueError, match="No collection provided"):
        DataStore(config=vault_config, registry=registry, collections={})


@pytest.mark.asyncio
async def test_datastore_health(datastore):
    assert await datastore.check_health() is True
    await datastore.close()
