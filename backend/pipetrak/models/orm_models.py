"""ORM Models for the PipeTrak progress core — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import (
    JSON, String, Boolean, Integer, DateTime, ForeignKey, Index, text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from pipetrak.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


# ── PROGRESS TEMPLATES ───────────────────────────────────────────────────────
class ProgressTemplateRecord(Base):
    __tablename__ = "progress_templates"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=gen_uuid)
    project_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    component_type: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    workflow_type: Mapped[str] = mapped_column(String(20), nullable=False, default="discrete")
    # [{"name": "Receive", "weight": 10, "order": 1, "kind": "discrete", "requires_welder": false}, ...]
    milestones_config: Mapped[list] = mapped_column(JsonDocument, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_progress_templates_type", "project_id", "component_type", "version"),
    )


# ── COMPONENTS ───────────────────────────────────────────────────────────────
class ComponentRecord(Base):
    __tablename__ = "components"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    drawing_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    component_type: Mapped[str] = mapped_column(String(50), nullable=False)
    progress_template_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("progress_templates.id", ondelete="RESTRICT")
    )
    # Lookup key for identity_key (sorted JSON), unique among live rows per project+type
    identity_token: Mapped[str] = mapped_column(String(512), nullable=False)
    identity_key: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    attributes: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    current_milestones: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    percent_complete: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Optimistic lock: every successful write increments it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_retired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    area_id: Mapped[Optional[str]] = mapped_column(String(36))
    system_id: Mapped[Optional[str]] = mapped_column(String(36))
    test_package_id: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            "idx_components_identity_unique",
            "project_id", "component_type", "identity_token",
            unique=True,
            postgresql_where=text("NOT is_retired"),
            sqlite_where=text("NOT is_retired"),
        ),
    )
