import json

import pytest

from core.exceptions import (
    InvalidOperationError,
    NotFoundError,
    StorageError,
    StorageQuotaExceededError,
    StorageUnavailableError,
    ValidationError,
)
from schemas.providers import ProviderKey
from schemas.storage import CreateProfileInput, ProviderConfigInput
from utils.storage_backend import BucketStorage, MemoryKeyValueStore
from utils.storage_provider import BucketStorageProvider


def openai_config(profile_id, **fields):
    return ProviderConfigInput(
        profile_id=profile_id, provider_id="openai", provider_type="builtin", **fields
    )


def test_fresh_storage_creates_default_profile(storage):
    default = storage.get_default_profile()

    assert default.name == "Default"
    assert default.is_default is True
    assert len(storage.get_all_profiles()) == 1
    assert storage.get_default_profile().id == default.id


def test_create_profile_trims_and_truncates_name(storage):
    profile = storage.create_profile(CreateProfileInput(name="  " + "x" * 60 + "  "))

    assert profile.name == "x" * 50
    assert profile.is_default is False
    assert profile.created_at == profile.updated_at
    assert storage.get_profile(profile.id) == profile


def test_create_profile_rejects_blank_name(storage):
    with pytest.raises(ValidationError):
        storage.create_profile(CreateProfileInput(name="   "))


def test_update_profile_merges_and_bumps_updated_at(storage, monkeypatch):
    profile = storage.create_profile(CreateProfileInput(name="Work", description="office"))
    monkeypatch.setattr("utils.storage_provider.now_ms", lambda: profile.updated_at + 1000)

    updated = storage.update_profile(profile.id, {"name": "Home", "id": "hijack"})

    assert updated.id == profile.id
    assert updated.name == "Home"
    assert updated.description == "office"
    assert updated.created_at == profile.created_at
    assert updated.updated_at == profile.updated_at + 1000


def test_update_unknown_profile_raises(storage):
    with pytest.raises(NotFoundError):
        storage.update_profile("missing", {"name": "x"})


def test_making_a_profile_default_demotes_the_old_default(storage):
    old_default = storage.get_default_profile()
    work = storage.create_profile(CreateProfileInput(name="Work"))

    storage.update_profile(work.id, {"is_default": True})

    defaults = [p for p in storage.get_all_profiles() if p.is_default]
    assert [p.id for p in defaults] == [work.id]
    assert storage.get_profile(old_default.id).is_default is False


def test_unsetting_the_default_flag_is_rejected(storage):
    default = storage.get_default_profile()

    with pytest.raises(InvalidOperationError):
        storage.update_profile(default.id, {"is_default": False})


def test_delete_default_profile_is_rejected_before_any_write(storage, memory_store):
    default = storage.get_default_profile()
    storage.save_provider_config(openai_config(default.id))
    before = memory_store.get_item("ai-providers"), memory_store.get_item("ai-profiles")

    with pytest.raises(InvalidOperationError):
        storage.delete_profile(default.id)

    assert (memory_store.get_item("ai-providers"), memory_store.get_item("ai-profiles")) == before


def test_delete_profile_cascades_to_its_provider_configs(storage):
    default = storage.get_default_profile()
    work = storage.create_profile(CreateProfileInput(name="Work"))
    storage.save_provider_config(openai_config(default.id))
    storage.save_provider_config(openai_config(work.id))
    storage.save_provider_config(
        ProviderConfigInput(profile_id=work.id, provider_id="anthropic", provider_type="builtin")
    )

    storage.delete_profile(work.id)

    assert storage.get_profile(work.id) is None
    assert storage.get_provider_configs_by_profile(work.id) == []
    assert len(storage.get_provider_configs_by_profile(default.id)) == 1


def test_delete_unknown_profile_raises(storage):
    with pytest.raises(NotFoundError):
        storage.delete_profile("missing")


def test_save_provider_config_upserts_by_composite_key(storage, memory_store):
    profile = storage.get_default_profile()
    created = storage.save_provider_config(openai_config(profile.id, model="gpt-4o", enabled=True))

    updated = storage.save_provider_config(openai_config(profile.id, enabled=False))

    assert updated.id == created.id
    assert updated.created_at == created.created_at
    assert updated.enabled is False
    # Fields not passed keep their stored value
    assert updated.model == "gpt-4o"
    assert len(storage.get_provider_configs_by_profile(profile.id)) == 1

    raw = json.loads(memory_store.get_item("ai-providers"))
    assert list(raw) == [f"{profile.id}:openai"]
    assert raw[f"{profile.id}:openai"]["apiKey"] is None
    assert raw[f"{profile.id}:openai"]["profileId"] == profile.id


def test_save_provider_config_validates_identity(storage):
    profile = storage.get_default_profile()

    with pytest.raises(ValidationError):
        storage.save_provider_config(
            ProviderConfigInput(profile_id=profile.id, provider_id="mistral", provider_type="builtin")
        )
    with pytest.raises(ValidationError):
        storage.save_provider_config(
            ProviderConfigInput(
                profile_id=profile.id,
                provider_id="custom-123",
                provider_type="custom",
                custom_name="Local",
            )
        )
    assert storage.get_provider_configs_by_profile(profile.id) == []


def test_get_provider_config(storage):
    profile = storage.get_default_profile()
    saved = storage.save_provider_config(openai_config(profile.id))

    assert storage.get_provider_config(profile.id, "openai") == saved
    assert storage.get_provider_config(profile.id, "anthropic") is None


def test_update_provider_config_keeps_identity(storage):
    profile = storage.get_default_profile()
    saved = storage.save_provider_config(openai_config(profile.id))

    updated = storage.update_provider_config(
        ProviderKey(profile.id, "openai"), {"model": "gpt-4o", "provider_id": "anthropic"}
    )

    assert updated.id == saved.id
    assert updated.provider_id == "openai"
    assert updated.model == "gpt-4o"
    with pytest.raises(NotFoundError):
        storage.update_provider_config("missing:openai", {"enabled": True})


@pytest.mark.parametrize("key_kind", ["provider_key", "string", "record_id"])
def test_delete_provider_config_by_key_or_id(storage, key_kind):
    profile = storage.get_default_profile()
    saved = storage.save_provider_config(openai_config(profile.id))
    key = {
        "provider_key": ProviderKey(profile.id, "openai"),
        "string": f"{profile.id}:openai",
        "record_id": saved.id,
    }[key_kind]

    storage.delete_provider_config(key)

    assert storage.get_provider_config(profile.id, "openai") is None


def test_delete_missing_provider_config_raises(storage):
    with pytest.raises(NotFoundError):
        storage.delete_provider_config("nobody:openai")


def test_metadata_and_schema_version(storage):
    assert storage.get_metadata("active_profile_id") is None
    assert storage.get_schema_version() == 0

    storage.set_metadata("active_profile_id", "abc")
    storage.set_schema_version(2)

    assert storage.get_metadata("active_profile_id") == "abc"
    assert storage.get_active_profile_id() == "abc"
    assert storage.get_schema_version() == 2


@pytest.mark.parametrize("stored", [True, "2", 2.5, None])
def test_schema_version_ignores_non_integer_markers(storage, stored):
    storage.set_metadata("schema_version", stored)

    assert storage.get_schema_version() == 0


def test_export_then_import_restores_all_buckets(storage):
    default = storage.get_default_profile()
    storage.save_provider_config(openai_config(default.id, enabled=True))
    storage.set_schema_version(2)
    exported = storage.export_data()

    storage.clear_all()
    assert storage.export_data() == json.dumps(
        {"profiles": {}, "providers": {}, "metadata": {}}, indent=2
    )

    storage.import_data(exported)

    assert storage.get_all_profiles() == [default]
    assert storage.get_provider_config(default.id, "openai").enabled is True
    assert storage.get_schema_version() == 2


@pytest.mark.parametrize(
    "document",
    [
        "not json",
        json.dumps({"profiles": {}, "metadata": {}}),
        json.dumps({"profiles": {"p": {"id": "p"}}, "providers": {}, "metadata": {}}),
    ],
)
def test_import_rejects_malformed_documents(storage, document):
    default = storage.get_default_profile()

    with pytest.raises(ValidationError):
        storage.import_data(document)

    assert storage.get_all_profiles() == [default]


def test_import_rejects_mismatched_provider_key(storage):
    default = storage.get_default_profile()
    record = storage.save_provider_config(openai_config(default.id))
    document = json.loads(storage.export_data())
    document["providers"] = {f"{default.id}:anthropic": record.to_storage()}

    with pytest.raises(ValidationError):
        storage.import_data(json.dumps(document))


@pytest.mark.parametrize("default_flags", [(True, True), (False, False)])
def test_import_requires_exactly_one_default_profile(storage, default_flags):
    default = storage.get_default_profile()
    document = json.loads(storage.export_data())
    first, second = default.to_storage(), dict(default.to_storage(), id="other", name="Other")
    first["isDefault"], second["isDefault"] = default_flags
    document["profiles"] = {first["id"]: first, "other": second}

    with pytest.raises(ValidationError):
        storage.import_data(json.dumps(document))

    assert storage.get_all_profiles() == [default]


def test_import_rejects_mismatched_profile_key(storage):
    default = storage.get_default_profile()
    document = json.loads(storage.export_data())
    document["profiles"] = {"someone-else": default.to_storage()}

    with pytest.raises(ValidationError):
        storage.import_data(json.dumps(document))

    assert storage.get_all_profiles() == [default]


def test_near_quota_store_stays_usable():
    store = MemoryKeyValueStore(quota_bytes=0)
    storage = BucketStorageProvider(BucketStorage(store))
    default = storage.get_default_profile()
    # Less room left than the availability probe needs
    store.quota_bytes = store.usage_bytes() + 10

    assert storage.is_available() is True
    assert storage.get_all_profiles() == [default]
    with pytest.raises(StorageQuotaExceededError):
        storage.create_profile(CreateProfileInput(name="Work"))

    storage.clear_all()

    assert store.usage_bytes() == 0


def test_unavailable_store_raises():
    storage = BucketStorageProvider(BucketStorage(MemoryKeyValueStore(available=False)))

    assert storage.is_available() is False
    with pytest.raises(StorageUnavailableError):
        storage.create_profile(CreateProfileInput(name="Work"))


def test_quota_exceeded_propagates():
    storage = BucketStorageProvider(BucketStorage(MemoryKeyValueStore(quota_bytes=300)))
    storage.get_default_profile()

    with pytest.raises(StorageQuotaExceededError):
        for i in range(10):
            storage.create_profile(CreateProfileInput(name=f"Profile {i}"))


def test_corrupted_bucket_surfaces_as_storage_error(storage, memory_store):
    memory_store.set_item("ai-profiles", "{broken")

    with pytest.raises(StorageError):
        storage.get_all_profiles()
