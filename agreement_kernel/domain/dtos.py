"""
DTOs -- immutable data crossing the kernel boundary.

Responsibility:
    Every value a caller gets back from a service or selector is one of the
    frozen dataclasses below; ORM instances never leave the kernel.  Input
    shapes for issuance and batch responses live here too.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model`` class methods are
    boundary converters invoked only from services and selectors.

Invariants enforced:
    - Metadata mappings are deep-frozen (MappingProxyType / tuples), so a
      caller cannot mutate what was read from the audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from agreement_kernel.domain.derivation import ResponseTally

if TYPE_CHECKING:
    from agreement_kernel.models.agreement import SubAgreement as SubAgreementModel
    from agreement_kernel.models.status_record import StatusRecord as StatusRecordModel


def _deep_freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _deep_freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_deep_freeze(v) for v in value)
    return value


_EMPTY: Mapping[str, Any] = MappingProxyType({})


# ---------------------------------------------------------------------------
# Status records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatusScope:
    """
    Optional context qualifying a status record.

    Contract:
        When used as a query filter, fields that are set must match and
        fields left as None are unconstrained.
    """

    parent_id: UUID | None = None
    counterparty_id: UUID | None = None
    occurs_on: date | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.parent_id is None
            and self.counterparty_id is None
            and self.occurs_on is None
        )


@dataclass(frozen=True)
class StatusRecordInfo:
    """One immutable status record as seen by callers."""

    id: UUID
    entity_kind: str
    entity_id: UUID
    primary_status: str
    custom_status: str | None
    scope: StatusScope
    effective_at: datetime
    recorded_at: datetime
    seq: int
    actor_id: UUID
    metadata: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    @property
    def display_status(self) -> str:
        return self.custom_status or self.primary_status

    @classmethod
    def from_model(cls, record: StatusRecordModel) -> StatusRecordInfo:
        return cls(
            id=record.id,
            entity_kind=record.entity_kind,
            entity_id=record.entity_id,
            primary_status=record.primary_status,
            custom_status=record.custom_status,
            scope=StatusScope(
                parent_id=record.parent_id,
                counterparty_id=record.counterparty_id,
                occurs_on=record.occurs_on,
            ),
            effective_at=record.effective_at,
            recorded_at=record.recorded_at,
            seq=record.seq,
            actor_id=record.actor_id,
            metadata=_deep_freeze(record.record_metadata or {}),
        )


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of ``record_transition``.

    ``activity_warning`` is set when the status record was written but the
    companion activity entry was not.
    """

    record: StatusRecordInfo
    activity_warning: str | None = None

    @property
    def warnings(self) -> tuple[str, ...]:
        return (self.activity_warning,) if self.activity_warning else ()


@dataclass(frozen=True)
class StatusChange:
    """A committed status change, as delivered to notifier subscribers."""

    entity_kind: str
    entity_id: UUID
    new_status: str
    actor_id: UUID
    recorded_at: datetime
    scope: StatusScope = field(default_factory=StatusScope)
    record_id: UUID | None = None


# ---------------------------------------------------------------------------
# Sync engine results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItemTransitionResult:
    """
    Outcome of ``set_line_item_status``.

    Contract:
        ``changed`` is False for a no-op (requested status already current);
        nothing was written in that case and the aggregate fields reflect
        the cached state.
    """

    line_item_id: UUID
    sub_agreement_id: UUID
    agreement_id: UUID
    changed: bool
    previous_status: str
    new_status: str
    sub_agreement_status: str
    sub_agreement_changed: bool
    agreement_status: str
    agreement_changed: bool
    tally: ResponseTally
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class StatusOverrideResult:
    """Outcome of an administrative sub-agreement or agreement override."""

    entity_kind: str
    entity_id: UUID
    changed: bool
    previous_status: str
    new_status: str
    agreement_status: str
    agreement_changed: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class CancellationResult:
    """Outcome of ``cancel_agreement``."""

    agreement_id: UUID
    changed: bool
    previous_status: str
    cancelled_sub_agreements: int = 0
    cancelled_line_items: int = 0
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class BatchResponse:
    """One answer in a counterparty's batch response."""

    line_item_id: UUID
    status: str
    notes: str | None = None


@dataclass(frozen=True)
class BatchItemOutcome:
    line_item_id: UUID
    success: bool
    status: str
    changed: bool = False
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BatchResponseResult:
    """
    Outcome of ``respond``.

    Guarantees:
        - One outcome per submitted response, in submission order.
        - A failed outcome never rolled back a successful one.
    """

    sub_agreement_id: UUID
    outcomes: tuple[BatchItemOutcome, ...]
    sub_agreement_status: str
    agreement_status: str
    warnings: tuple[str, ...] = ()

    @property
    def succeeded(self) -> tuple[BatchItemOutcome, ...]:
        return tuple(o for o in self.outcomes if o.success)

    @property
    def failed(self) -> tuple[BatchItemOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.success)

    @property
    def all_succeeded(self) -> bool:
        return all(o.success for o in self.outcomes)


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItemDraft:
    occurs_on: date
    value: Decimal | None = None


@dataclass(frozen=True)
class SubAgreementDraft:
    """A counterparty and the dates offered to them."""

    counterparty_id: UUID
    line_items: tuple[LineItemDraft, ...]


@dataclass(frozen=True)
class IssuedAgreement:
    agreement_id: UUID
    status: str
    sub_agreement_ids: Mapping[UUID, UUID]
    line_item_count: int
    warnings: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubAgreementInfo:
    """Cached state of one sub-agreement."""

    id: UUID
    agreement_id: UUID
    counterparty_id: UUID
    status: str
    accepted_count: int
    rejected_count: int
    pending_count: int
    total_count: int
    total_accepted_value: Decimal
    responded_at: datetime | None
    completed_at: datetime | None
    version: int

    @classmethod
    def from_model(cls, sub: SubAgreementModel) -> SubAgreementInfo:
        return cls(
            id=sub.id,
            agreement_id=sub.agreement_id,
            counterparty_id=sub.counterparty_id,
            status=sub.status,
            accepted_count=sub.accepted_count,
            rejected_count=sub.rejected_count,
            pending_count=sub.pending_count,
            total_count=sub.total_count,
            total_accepted_value=sub.total_accepted_value or Decimal("0"),
            responded_at=sub.responded_at,
            completed_at=sub.completed_at,
            version=sub.version,
        )


@dataclass(frozen=True)
class AgreementSummary:
    """
    Aggregate view of one agreement, computed from cached fields only.

    Rates are percentages rounded to two decimal places.
    """

    agreement_id: UUID
    agreement_status: str
    total_counterparties: int
    responded_counterparties: int
    fully_accepted: int
    partially_accepted: int
    fully_rejected: int
    needs_attention: int
    pending_counterparties: int
    cancelled_counterparties: int
    response_rate: Decimal
    accepted_items: int
    rejected_items: int
    pending_items: int
    total_items: int
    accepted_value: Decimal
    rejection_rate: Decimal


@dataclass(frozen=True)
class DriftFinding:
    """A sub-agreement whose cached state disagrees with its line items."""

    sub_agreement_id: UUID
    cached_status: str
    derived_status: str
    cached: ResponseTally
    derived: ResponseTally

    @property
    def status_drift(self) -> bool:
        return self.cached_status != self.derived_status

    @property
    def count_drift(self) -> bool:
        return (
            self.cached.accepted != self.derived.accepted
            or self.cached.rejected != self.derived.rejected
            or self.cached.pending != self.derived.pending
            or self.cached.total != self.derived.total
        )
