"""
Module: agreement_kernel.models.status_record
Responsibility: ORM persistence for the append-only status audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py listeners).
    - seq is monotonically increasing per (entity_kind, entity_id), allocated
      by SequenceService; unique together with the identity.
Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError if two writers ever obtained the same seq (they cannot
      while SequenceService holds the counter row lock).
Audit relevance:
    The current status of any tracked entity is the newest matching row
    here, by recorded_at then seq.  Every transition the kernel performs,
    including derived and cascaded ones, writes exactly one row.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agreement_kernel.db.base import Base, UUIDString


class StatusRecord(Base):
    """
    One recorded status of one entity.

    Contract:
        Rows are never modified.  A correction is a new row.

    Guarantees:
        - (entity_kind, entity_id, seq) is unique.
        - primary_status was a member of the kind's vocabulary when written.
    """

    __tablename__ = "status_records"
    __table_args__ = (
        UniqueConstraint(
            "entity_kind", "entity_id", "seq",
            name="uq_status_record_entity_seq",
        ),
        Index("idx_status_entity_recorded", "entity_kind", "entity_id", "recorded_at"),
        Index("idx_status_parent", "parent_id"),
        Index("idx_status_counterparty", "counterparty_id"),
    )

    entity_kind: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    primary_status: Mapped[str] = mapped_column(String(50), nullable=False)

    # Free-text refinement shown instead of primary_status when present
    custom_status: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Scope
    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    counterparty_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    occurs_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    # When the status applies from, as asserted by the caller
    effective_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # When the kernel wrote the row
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    record_metadata: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<StatusRecord {self.entity_kind}:{self.entity_id} "
            f"{self.primary_status} seq={self.seq}>"
        )
