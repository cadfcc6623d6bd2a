import json

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import MigrationError, StorageQuotaExceededError
from models.legacy_settings import (
    LegacyMetadataModel,
    LegacyProfileModel,
    LegacyProviderConfigModel,
)
from utils.legacy_sources import LegacyDatabaseSource
from utils.migration_manager import MigrationManager

NOW = 1_700_000_000_000


def write_flat_settings(store, settings):
    store.set_item("ai-settings", json.dumps(settings))


def seed_legacy_db(legacy_db, blob):
    with legacy_db._session_factory() as db:
        db.add_all(
            [
                LegacyProfileModel(
                    id="p-default", name="Default", created_at=NOW, updated_at=NOW, is_default=True
                ),
                LegacyProfileModel(
                    id="p-work", name="Work", description="office", created_at=NOW + 1,
                    updated_at=NOW + 1, is_default=False,
                ),
                LegacyProviderConfigModel(
                    id="c1", profile_id="p-default", provider_id="openai", provider_type="builtin",
                    api_key=blob, model="gpt-4o", enabled=True, created_at=NOW, updated_at=NOW,
                ),
                LegacyProviderConfigModel(
                    id="c2", profile_id="p-work", provider_id="custom-abc", provider_type="custom",
                    api_key=None, model="llama3", base_url="https://llm.example.com/v1",
                    enabled=False, custom_name="Local", custom_models=["llama3"],
                    created_at=NOW, updated_at=NOW,
                ),
                LegacyProviderConfigModel(
                    id="c3", profile_id="p-work", provider_id="retired", provider_type="builtin",
                    model="", enabled=False, created_at=NOW, updated_at=NOW,
                ),
                LegacyMetadataModel(key="active_profile_id", value="p-work", updated_at=NOW),
                LegacyMetadataModel(key="schema_version", value=1, updated_at=NOW),
            ]
        )
        db.commit()


def test_nothing_to_migrate_records_current_version(storage, migration):
    assert migration.is_migration_needed() is False
    assert storage.get_schema_version() == 2
    assert migration.run_if_needed() is None


def test_flat_settings_migrate_into_default_profile(storage, memory_store, migration, cipher):
    blob = cipher.encrypt("sk-legacy").to_storage()
    write_flat_settings(
        memory_store,
        {
            "providers": {"openai": {"apiKey": blob, "model": "gpt-4o", "enabled": True}},
            "activeProvider": "openai",
        },
    )

    assert migration.is_migration_needed() is True
    result = migration.migrate()

    assert result.success is True
    profiles = storage.get_all_profiles()
    assert len(profiles) == 1
    configs = storage.get_provider_configs_by_profile(profiles[0].id)
    assert len(configs) == 1
    assert configs[0].provider_id == "openai"
    assert configs[0].enabled is True
    assert configs[0].model == "gpt-4o"
    assert configs[0].api_key.to_storage() == blob
    assert storage.get_schema_version() == 2
    assert storage.get_active_profile_id() == profiles[0].id


def test_migration_runs_only_once(storage, memory_store, migration, cipher):
    write_flat_settings(
        memory_store,
        {"providers": {"anthropic": {"apiKey": cipher.encrypt("k").to_storage(), "enabled": True}}},
    )
    migration.cleanup = False

    first = migration.run_if_needed()
    second = migration.run_if_needed()

    assert first.success is True
    assert second is None
    assert len(storage.get_all_profiles()) == 1
    assert len(storage.get_provider_configs_by_profile(storage.get_default_profile().id)) == 1


def test_cleanup_removes_flat_settings(memory_store, migration):
    write_flat_settings(memory_store, {"providers": {"openai": {"apiKey": "", "enabled": False}}})

    result = migration.migrate_and_cleanup()

    assert "cleaned up" in result.message
    assert memory_store.get_item("ai-settings") is None


def test_flat_settings_skip_unknown_providers_and_empty_keys(storage, memory_store, migration):
    write_flat_settings(
        memory_store,
        {
            "providers": {
                "openai": {"apiKey": "", "model": "", "enabled": False},
                "mistral": {"apiKey": "", "enabled": True},
            }
        },
    )

    migration.migrate()

    configs = storage.get_provider_configs_by_profile(storage.get_default_profile().id)
    assert [c.provider_id for c in configs] == ["openai"]
    assert configs[0].api_key is None
    assert configs[0].model == "gpt-4o-mini"


def test_failed_write_aborts_without_marker(storage, memory_store, migration, monkeypatch):
    write_flat_settings(memory_store, {"providers": {"openai": {"enabled": True}}})

    def full(config):
        raise StorageQuotaExceededError()

    monkeypatch.setattr(storage, "save_provider_config", full)

    with pytest.raises(MigrationError):
        migration.migrate_and_cleanup()

    assert storage.get_schema_version() == 0
    assert memory_store.get_item("ai-settings") is not None


def test_corrupted_flat_settings_abort(storage, memory_store, migration):
    memory_store.set_item("ai-settings", "{not json")

    with pytest.raises(MigrationError):
        migration.migrate()
    assert storage.get_schema_version() == 0


def test_legacy_database_migrates_every_profile(storage, legacy_db, cipher):
    blob = cipher.encrypt("sk-db").to_storage()
    seed_legacy_db(legacy_db, blob)
    migration = MigrationManager(storage, legacy_db=legacy_db)

    result = migration.migrate_and_cleanup()

    assert result.success is True
    assert result.migrated_items == 4
    assert {p.id for p in storage.get_all_profiles()} == {"p-default", "p-work"}
    assert storage.get_default_profile().id == "p-default"
    openai = storage.get_provider_config("p-default", "openai")
    assert openai.api_key.to_storage() == blob
    assert cipher.decrypt(openai.api_key) == "sk-db"
    custom = storage.get_provider_config("p-work", "custom-abc")
    assert custom.custom_models == ["llama3"]
    assert storage.get_provider_config("p-work", "retired") is None
    assert storage.get_active_profile_id() == "p-work"
    assert storage.get_schema_version() == 2
    assert legacy_db.count_items() == 0


def test_legacy_default_is_demoted_when_a_default_exists(storage, legacy_db, cipher):
    current_default = storage.get_default_profile()
    seed_legacy_db(legacy_db, cipher.encrypt("k").to_storage())

    MigrationManager(storage, legacy_db=legacy_db, cleanup=False).migrate()

    defaults = [p.id for p in storage.get_all_profiles() if p.is_default]
    assert defaults == [current_default.id]
    assert storage.get_profile("p-default").is_default is False
    assert legacy_db.count_items() > 0


def test_cleanup_failure_still_counts_as_success(storage, legacy_db, cipher, monkeypatch):
    seed_legacy_db(legacy_db, cipher.encrypt("k").to_storage())

    def locked(profile_id):
        raise OperationalError("DELETE", {}, Exception("database is locked"))

    monkeypatch.setattr(legacy_db, "delete_profile", locked)

    result = MigrationManager(storage, legacy_db=legacy_db).migrate_and_cleanup()

    assert result.success is True
    assert "Warning" in result.message
    assert storage.get_schema_version() == 2


def test_migration_status_counts_both_sides(storage, legacy_db, cipher):
    seed_legacy_db(legacy_db, cipher.encrypt("k").to_storage())
    migration = MigrationManager(storage, legacy_db=legacy_db)

    status = migration.get_migration_status()

    assert status.needs_migration is True
    assert status.storage_available is True
    assert status.storage_items == 0
    assert status.legacy_available is True
    assert status.legacy_items == 5


def test_export_legacy_data(storage, legacy_db, cipher):
    seed_legacy_db(legacy_db, cipher.encrypt("k").to_storage())

    exported = json.loads(MigrationManager(storage, legacy_db=legacy_db).export_legacy_data())

    assert set(exported["profiles"]) == {"p-default", "p-work"}
    assert "p-work:custom-abc" in exported["providers"]
    assert exported["metadata"] == {"active_profile_id": "p-work", "schema_version": 1}


def test_export_legacy_data_without_legacy_data_raises(migration):
    with pytest.raises(MigrationError):
        migration.export_legacy_data()


def test_missing_legacy_database_file_is_no_source(tmp_path):
    assert LegacyDatabaseSource.from_url(f"sqlite:///{tmp_path / 'missing.db'}") is None
    assert not (tmp_path / "missing.db").exists()


def test_migration_status_writes_nothing(storage, migration, memory_store):
    status = migration.get_migration_status()

    assert status.needs_migration is False
    assert memory_store.keys() == []
    assert storage.get_schema_version() == 0


def test_second_legacy_default_is_demoted(storage, legacy_db):
    with legacy_db._session_factory() as db:
        db.add_all(
            [
                LegacyProfileModel(
                    id="p-first", name="First", created_at=NOW, updated_at=NOW, is_default=True
                ),
                LegacyProfileModel(
                    id="p-second", name="Second", created_at=NOW + 1, updated_at=NOW + 1,
                    is_default=True,
                ),
            ]
        )
        db.commit()

    MigrationManager(storage, legacy_db=legacy_db).migrate()

    assert [p.id for p in storage.get_all_profiles() if p.is_default] == ["p-first"]
