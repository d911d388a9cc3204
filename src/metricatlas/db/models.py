from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class MetricModel(Base):
    __tablename__ = "metrics"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    canonical_name: Mapped[str] = mapped_column(String(512), nullable=False)
    instrument_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    unit: Mapped[str | None] = mapped_column(String(64))
    attributes: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    component: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    commit_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    extracted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confidence: Mapped[str] = mapped_column(String(32), nullable=False)
    extraction_method: Mapped[str] = mapped_column(String(32), nullable=False)
    semantic_convention_match: Mapped[str] = mapped_column(String(16), default="None", nullable=False)
    semantic_convention_name: Mapped[str | None] = mapped_column(String(512))

    __table_args__ = (
        Index("idx_metrics_name", "canonical_name"),
        Index("idx_metrics_source", "source_name"),
        Index("idx_metrics_category", "category"),
        Index("idx_metrics_type", "instrument_type"),
        Index("idx_metrics_confidence", "confidence"),
        Index("idx_metrics_semconv", "semantic_convention_match"),
    )


class SourceModel(Base):
    __tablename__ = "sources"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    repository_location: Mapped[str] = mapped_column(String(1024), nullable=False)
    confidence: Mapped[str] = mapped_column(String(32), nullable=False)
    extraction_method: Mapped[str] = mapped_column(String(32), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_run_id: Mapped[str | None] = mapped_column(String(64))
    last_run_status: Mapped[str | None] = mapped_column(String(32))
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_commit_hash: Mapped[str | None] = mapped_column(String(64))
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class RunModel(Base):
    __tablename__ = "runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    enrichment_status: Mapped[str] = mapped_column(String(16), nullable=False)
    warnings: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    error: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("idx_runs_started", "started_at"),)


class SourceRunModel(Base):
    __tablename__ = "source_runs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("runs.run_id", ondelete="CASCADE"), nullable=False
    )
    source_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    commit_hash: Mapped[str | None] = mapped_column(String(64))
    metrics_extracted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    metrics_persisted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    metrics_dropped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    metrics_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    partial_failures: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    __table_args__ = (Index("idx_source_runs_run", "run_id", "source_name"),)
