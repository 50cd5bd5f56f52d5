"""Common test fixtures for the penvault note vault."""

import tempfile
from pathlib import Path

import pytest

from penvault.config import MIN_KDF_ITERATIONS, config
from penvault.services.vault_service import VaultService
from penvault.storage.vault_store import VaultStore
from tests.samples import PDF_BYTES, PNG_BYTES


@pytest.fixture
def temp_dir():
    """Create a temporary directory for databases, backups and logs."""
    with tempfile.TemporaryDirectory() as path:
        yield Path(path)


@pytest.fixture
def test_config(temp_dir, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", temp_dir)
    monkeypatch.setattr(config, "database_path", temp_dir / "data" / "test_penvault.db")
    monkeypatch.setattr(config, "backup_dir", temp_dir / "backups")
    monkeypatch.setattr(config, "log_dir", temp_dir / "logs")
    # Lowest permitted work factor keeps envelope tests fast
    monkeypatch.setattr(config, "kdf_iterations", MIN_KDF_ITERATIONS)
    yield config


@pytest.fixture
def store(test_config):
    """Create a file-backed test store."""
    store = VaultStore(db_url=test_config.get_db_url())
    yield store
    store.close()


@pytest.fixture
def other_store(test_config, temp_dir):
    """A second, independent store (the "other device")."""
    store = VaultStore(db_url=f"sqlite:///{temp_dir / 'other.db'}")
    yield store
    store.close()


@pytest.fixture
def memory_store(test_config):
    """An in-memory store."""
    store = VaultStore(db_url="sqlite://")
    yield store
    store.close()


@pytest.fixture
def service(store):
    """Create a VaultService over the test store."""
    return VaultService(store)


@pytest.fixture
def other_service(other_store):
    return VaultService(other_store)


@pytest.fixture
def populated_store(store):
    """A store with two notes, an image and a file."""
    first = store.create_note()
    store.update_note(
        first.id, title="Cats", content="My cat #Pets ![cat](image:1) #'house cats'"
    )
    second = store.create_note()
    store.update_note(second.id, title="Taxes", content="See file:1 #finance")
    store.add_image(first.id, "cat.png", PNG_BYTES)
    store.add_file(second.id, "return.pdf", PDF_BYTES, mime_type="application/pdf")
    return store
