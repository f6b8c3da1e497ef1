"""
Module: agreement_kernel.models.agreement
Responsibility: ORM persistence for the three-level agreement hierarchy:
    Agreement -> SubAgreement (one per counterparty) -> LineItem (one per date).
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - SubAgreement: accepted_count + rejected_count + pending_count ==
      total_count after every reconciliation (checked by the sync engine
      before the row is written).
    - SubAgreement.version is a SQLAlchemy version_id_col: every UPDATE is
      a compare-and-set on the version read, so a write based on stale
      counts fails with StaleDataError instead of overwriting.
    - One SubAgreement per (agreement, counterparty); one LineItem per
      (sub-agreement, date).
Failure modes:
    - StaleDataError on a concurrent SubAgreement update (surfaced by the
      services as OptimisticLockError).
    - IntegrityError on duplicate counterparty or date.
Audit relevance:
    status and the count columns are a cache.  The status_records table is
    authoritative; SummaryReporter.find_drift recomputes the cache from
    line items to detect divergence.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agreement_kernel.db.base import TrackedBase, UUIDString


class Agreement(TrackedBase):
    """
    A set of dated work items offered to several counterparties.

    Contract:
        ``status`` is derived from the sub-agreements while sent or
        in-progress; draft, completed and cancelled are only left through
        explicit operations.  Counts are not stored at this level.
    """

    __tablename__ = "agreements"
    __table_args__ = (
        Index("idx_agreement_status", "status"),
        Index("idx_agreement_period", "period_start", "period_end"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="draft",
    )

    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    sub_agreements: Mapped[list["SubAgreement"]] = relationship(
        back_populates="agreement",
        order_by="SubAgreement.id",
    )

    def __repr__(self) -> str:
        return f"<Agreement {self.id} {self.status}>"


class SubAgreement(TrackedBase):
    """
    One counterparty's share of an agreement.

    Guarantees:
        - Only the sync engine (and issuance, for initial values) writes
          status and the count columns.
        - ``version`` increments on every UPDATE.
    """

    __tablename__ = "sub_agreements"
    __table_args__ = (
        UniqueConstraint(
            "agreement_id", "counterparty_id",
            name="uq_sub_agreement_counterparty",
        ),
        Index("idx_sub_agreement_agreement", "agreement_id"),
        Index("idx_sub_agreement_status", "status"),
    )

    agreement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("agreements.id"),
        nullable=False,
    )

    counterparty_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="pending",
    )

    accepted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_accepted_value: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0"),
    )

    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    agreement: Mapped["Agreement"] = relationship(back_populates="sub_agreements")

    line_items: Mapped[list["LineItem"]] = relationship(
        back_populates="sub_agreement",
        order_by="LineItem.occurs_on",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<SubAgreement {self.id} {self.status} "
            f"{self.accepted_count}/{self.rejected_count}/"
            f"{self.pending_count}/{self.total_count}>"
        )


class LineItem(TrackedBase):
    """
    One dated work item offered to one counterparty.

    Contract:
        ``cancelled`` is only ever written by agreement cancellation.
        ``reassigned`` and ``cancelled`` items are excluded from all counts.
    """

    __tablename__ = "line_items"
    __table_args__ = (
        UniqueConstraint(
            "sub_agreement_id", "occurs_on",
            name="uq_line_item_date",
        ),
        Index("idx_line_item_sub_agreement", "sub_agreement_id"),
    )

    sub_agreement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sub_agreements.id"),
        nullable=False,
    )

    occurs_on: Mapped[date] = mapped_column(Date, nullable=False)

    # Fee for this date; summed over accepted items
    value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="pending",
    )

    response_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sub_agreement: Mapped["SubAgreement"] = relationship(back_populates="line_items")

    def __repr__(self) -> str:
        return f"<LineItem {self.occurs_on} {self.status}>"
