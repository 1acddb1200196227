"""SQLModel mapping for persisted analyzer parameters."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelArtifactRecord(SQLModel, table=True):
    """One serialized parameter blob per storage key."""

    __tablename__ = "model_artifacts"

    key: str = Field(
        sa_column=Column(String(length=255), primary_key=True, nullable=False),
    )
    blob: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
