"""
RentControl Database Models
SQLAlchemy ORM tables backing the SQL repository and the database history sink.

Domain entities are stored as versioned JSON snapshots keyed by
(entity_type, entity_id); the engine never navigates ORM relationships.

All datetime columns use DateTime(timezone=True) for proper UTC handling.
Use utc_now() from rentcontrol.core.utc for all timestamp defaults.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rentcontrol.core.database import Base
from rentcontrol.core.utc import utc_now


# Type alias for timezone-aware DateTime columns
DateTimeTZ = DateTime(timezone=True)


# =============================================================================
# Entity Snapshots
# =============================================================================

class LifecycleRecord(Base):
    """
    Latest committed state of one domain entity.

    version mirrors Entity.version and is the optimistic-concurrency token:
    updates are issued as UPDATE ... WHERE version = :expected.
    """
    __tablename__ = "lifecycle_records"

    entity_type: Mapped[str] = mapped_column(String(50), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    payload: Mapped[dict] = mapped_column(JSON)

    updated_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)


# =============================================================================
# Audit Trail
# =============================================================================

class AuditRecord(Base):
    """
    Append-only history of lifecycle transitions.
    Rows are never updated or deleted.
    """
    __tablename__ = "audit_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[str] = mapped_column(String(80))
    action: Mapped[str] = mapped_column(String(50))
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now)

    __table_args__ = (
        Index("ix_audit_records_entity", "entity_type", "entity_id"),
    )
