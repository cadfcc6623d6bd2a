import json
import re

import pytest

from core.exceptions import StorageUnavailableError
from schemas.storage import ProviderConfigInput
from utils.backup_manager import BackupManager, format_bytes
from utils.storage_backend import BucketStorage, MemoryKeyValueStore
from utils.storage_provider import BucketStorageProvider


@pytest.fixture
def backup(storage):
    return BackupManager(storage)


def seed(storage):
    profile = storage.get_default_profile()
    storage.save_provider_config(
        ProviderConfigInput(profile_id=profile.id, provider_id="openai", provider_type="builtin")
    )
    return profile


def test_export_names_file_with_timestamp(storage, backup):
    seed(storage)

    exported = backup.export_data()

    assert re.fullmatch(r"ai-settings-backup-[0-9T\-]+Z\.json", exported.filename)
    assert set(json.loads(exported.data)) == {"profiles", "providers", "metadata"}


def test_import_into_another_store(storage, backup):
    profile = seed(storage)
    exported = backup.export_data()
    target = BucketStorageProvider(BucketStorage(MemoryKeyValueStore()))

    result = BackupManager(target).import_data(exported.data)

    assert result.success is True
    assert result.message == "Successfully imported 1 profiles and 1 provider configurations."
    assert target.get_all_profiles() == [profile]


def test_import_failure_is_reported_not_raised(storage, backup):
    profile = seed(storage)

    result = backup.import_data('{"profiles": {}}')

    assert result.success is False
    assert result.message.startswith("Import failed")
    assert storage.get_all_profiles() == [profile]


def test_clear_all_data(storage, backup):
    seed(storage)

    backup.clear_all_data()

    assert json.loads(storage.export_data()) == {"profiles": {}, "providers": {}, "metadata": {}}


def test_data_info(storage, backup):
    seed(storage)

    info = backup.get_data_info()

    assert info.profile_count == 1
    assert info.provider_count == 1
    assert info.data_size.endswith("Bytes") or info.data_size.endswith("KB")
    assert info.quota_info.usage > 0


def test_unavailable_storage_raises():
    backup = BackupManager(BucketStorageProvider(BucketStorage(MemoryKeyValueStore(available=False))))

    with pytest.raises(StorageUnavailableError):
        backup.export_data()


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0 Bytes"), (500, "500 Bytes"), (1536, "1.5 KB"), (1024 * 1024, "1 MB"), (5 * 1024 ** 4, "5120 GB")],
)
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected
