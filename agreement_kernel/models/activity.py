"""
Module: agreement_kernel.models.activity
Responsibility: ORM persistence for the human-readable activity feed.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Append-only, like status_records.
Failure modes:
    - A failed insert is contained by the writer's savepoint and never
      blocks the status write it accompanies.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agreement_kernel.db.base import Base, UUIDString


class ActivityAction(str, Enum):
    """Kinds of feed entry the kernel writes."""

    STATUS_CHANGE = "status_change"
    AGREEMENT_ISSUED = "agreement_issued"
    AGREEMENT_CANCELLED = "agreement_cancelled"
    RESPONSE_SUBMITTED = "response_submitted"


class ActivityRecord(Base):
    """A feed entry such as "Line item 2024-03-05 set to accepted"."""

    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activity_entity", "entity_kind", "entity_id"),
        Index("idx_activity_occurred", "occurred_at"),
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. "status_change", "agreement_cancelled"
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_kind: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ActivityRecord {self.action} on {self.entity_kind}:{self.entity_id}>"
