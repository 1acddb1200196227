"""Key/value backends for persisting analyzer parameters and versions."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from aip_insights.config import settings
from aip_insights.models.model_artifact import ModelArtifactRecord
from aip_insights.services.analysis.errors import ModelStorageError

logger = logging.getLogger(__name__)


class ModelStorage(Protocol):
    """Persistence contract for serialized model blobs."""

    def put(self, key: str, blob: str) -> None:
        ...

    def get(self, key: str) -> str | None:
        ...


class InMemoryModelStorage(ModelStorage):
    """Thread-safe store used by tests and ephemeral deployments."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}
        self._lock = Lock()

    def put(self, key: str, blob: str) -> None:
        with self._lock:
            self._blobs[key] = blob

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._blobs.get(key)


class LocalFileModelStorage(ModelStorage):
    """Writes each blob to ``<root>/<key>``; concurrent writers are not coordinated."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or settings.model_storage_dir).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def put(self, key: str, blob: str) -> None:
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(blob, encoding="utf-8")
        except OSError as exc:
            logger.exception("model_storage.write_failed", extra={"path": str(path)})
            raise ModelStorageError(f"Failed to write model blob to {path}: {exc}") from exc
        logger.info("model_storage.saved", extra={"path": str(path), "backend": "file"})

    def get(self, key: str) -> str | None:
        path = self._resolve(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.exception("model_storage.read_failed", extra={"path": str(path)})
            raise ModelStorageError(f"Failed to read model blob from {path}: {exc}") from exc

    def _resolve(self, key: str) -> Path:
        candidate = Path(key)
        if candidate.is_absolute() or ".." in candidate.parts:
            raise ModelStorageError(f"Storage key must be a relative path: {key}", code="400_INVALID_KEY")
        return self._root / candidate


class DatabaseModelStorage(ModelStorage):
    """SQLModel-backed store persisting blobs to the ``model_artifacts`` table."""

    def __init__(self, database_url: str, *, auto_create_schema: bool = True) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for DatabaseModelStorage.")
        is_sqlite = database_url.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": not is_sqlite}
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self._engine: Engine = create_engine(database_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine, tables=[ModelArtifactRecord.__table__])

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def put(self, key: str, blob: str) -> None:
        try:
            with self._session() as session:
                record = session.get(ModelArtifactRecord, key)
                if record is None:
                    session.add(ModelArtifactRecord(key=key, blob=blob))
                else:
                    record.blob = blob
                    record.updated_at = datetime.now(timezone.utc)
                    session.add(record)
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("model_storage.write_failed", extra={"key": key, "backend": "database"})
            raise ModelStorageError(f"Failed to persist model blob {key}.") from exc
        logger.info("model_storage.saved", extra={"key": key, "backend": "database"})

    def get(self, key: str) -> str | None:
        try:
            with self._session() as session:
                record = session.get(ModelArtifactRecord, key)
                return record.blob if record else None
        except SQLAlchemyError as exc:
            logger.exception("model_storage.read_failed", extra={"key": key, "backend": "database"})
            raise ModelStorageError(f"Failed to load model blob {key}.") from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session


def build_model_storage(backend: str | None = None) -> ModelStorage:
    """Instantiate a ModelStorage from settings."""
    resolved = (backend or settings.model_storage_backend or "file").lower()
    if resolved == "memory":
        storage: ModelStorage = InMemoryModelStorage()
    elif resolved == "database":
        if not settings.database_url:
            raise ModelStorageError(
                "DATABASE_URL is required for the database model storage backend.",
                code="500_STORAGE_CONFIG",
            )
        storage = DatabaseModelStorage(settings.database_url)
    elif resolved == "file":
        storage = LocalFileModelStorage()
    else:
        raise ModelStorageError(f"Unknown model storage backend: {resolved}", code="500_STORAGE_CONFIG")
    logger.info("model_storage.initialized", extra={"backend": resolved})
    return storage
