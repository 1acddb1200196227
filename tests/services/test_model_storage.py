import pytest

from aip_insights.config import settings
from aip_insights.services.analysis.errors import ModelStorageError
from aip_insights.services.analysis.storage import (
    DatabaseModelStorage,
    InMemoryModelStorage,
    LocalFileModelStorage,
    build_model_storage,
)


def test_in_memory_storage_round_trip():
    storage = InMemoryModelStorage()

    assert storage.get("missing.json") is None
    storage.put("model.json", '{"version": 1}')

    assert storage.get("model.json") == '{"version": 1}'


def test_file_storage_writes_nested_keys(tmp_path):
    storage = LocalFileModelStorage(tmp_path / "models")

    storage.put("budget/model.json", "{}")

    assert (tmp_path / "models" / "budget" / "model.json").read_text(encoding="utf-8") == "{}"
    assert storage.get("budget/model.json") == "{}"
    assert storage.get("budget/other.json") is None


@pytest.mark.parametrize("key", ["../escape.json", "/etc/passwd"])
def test_file_storage_rejects_keys_outside_root(tmp_path, key):
    storage = LocalFileModelStorage(tmp_path)

    with pytest.raises(ModelStorageError) as excinfo:
        storage.put(key, "{}")

    assert excinfo.value.code == "400_INVALID_KEY"


def test_database_storage_upserts_blobs(tmp_path):
    storage = DatabaseModelStorage(f"sqlite:///{tmp_path / 'models.db'}")
    try:
        assert storage.get("model.json") is None
        storage.put("model.json", '{"minor": 0}')
        storage.put("model.json", '{"minor": 1}')

        assert storage.get("model.json") == '{"minor": 1}'
    finally:
        storage.dispose()


def test_build_model_storage_selects_backend(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "model_storage_dir", str(tmp_path))

    assert isinstance(build_model_storage("memory"), InMemoryModelStorage)
    file_storage = build_model_storage("file")
    assert isinstance(file_storage, LocalFileModelStorage)
    assert file_storage.root == tmp_path


def test_build_model_storage_requires_database_url(monkeypatch):
    monkeypatch.setattr(settings, "database_url", None)

    with pytest.raises(ModelStorageError) as excinfo:
        build_model_storage("database")

    assert excinfo.value.code == "500_STORAGE_CONFIG"


def test_build_model_storage_rejects_unknown_backend():
    with pytest.raises(ModelStorageError):
        build_model_storage("s3")
