import os
import tempfile

import pytest

# Keep config-derived paths away from the developer's data directory.
os.environ.setdefault("AI_SETTINGS_DATA_DIR", tempfile.mkdtemp(prefix="ai-settings-test-"))

from core.database import create_db_engine, init_legacy_db, make_session_factory  # noqa: E402
from core.encryption import ApiKeyCipher  # noqa: E402
from utils.legacy_sources import FlatSettingsSource, LegacyDatabaseSource  # noqa: E402
from utils.migration_manager import MigrationManager  # noqa: E402
from utils.settings_manager import AISettingsManager  # noqa: E402
from utils.storage_backend import BucketStorage, MemoryKeyValueStore  # noqa: E402
from utils.storage_provider import BucketStorageProvider  # noqa: E402


@pytest.fixture(scope="session")
def cipher() -> ApiKeyCipher:
    # Key derivation is deliberately slow; derive once per run.
    return ApiKeyCipher()


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def storage(memory_store: MemoryKeyValueStore) -> BucketStorageProvider:
    return BucketStorageProvider(BucketStorage(memory_store))


@pytest.fixture
def flat_source(memory_store: MemoryKeyValueStore) -> FlatSettingsSource:
    return FlatSettingsSource(memory_store)


@pytest.fixture
def legacy_db() -> LegacyDatabaseSource:
    engine = create_db_engine("sqlite://")
    init_legacy_db(engine)
    source = LegacyDatabaseSource(make_session_factory(engine))
    yield source
    source.close()


@pytest.fixture
def migration(storage: BucketStorageProvider, flat_source: FlatSettingsSource) -> MigrationManager:
    return MigrationManager(storage, flat_source)


@pytest.fixture
def manager(
    storage: BucketStorageProvider, cipher: ApiKeyCipher, migration: MigrationManager
) -> AISettingsManager:
    """An initialized manager over an in-memory store."""
    settings_manager = AISettingsManager(storage, cipher, migration)
    settings_manager.initialize()
    return settings_manager
