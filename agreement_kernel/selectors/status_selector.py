"""
Module: agreement_kernel.selectors.status_selector
Responsibility: Read access to the status audit trail: current status and
    paginated history for any (kind, id, scope).
Architecture position: Kernel > Selectors.  Used by EntityStatusService for
    its read operations.

Invariants enforced:
    - Current status is the newest matching record by recorded_at, ties
      broken by the highest seq.  Records are never filtered by status.
    - Scope matching: scope fields that are set must match exactly; fields
      left unset are not constrained.
"""

from uuid import UUID

from sqlalchemy import Select, func, select

from agreement_kernel.domain.dtos import StatusRecordInfo, StatusScope
from agreement_kernel.models.status_record import StatusRecord
from agreement_kernel.selectors.base import BaseSelector

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 500


class StatusRecordSelector(BaseSelector[StatusRecord]):
    """
    Selector for status records.

    Contract:
        Returns StatusRecordInfo DTOs; an entity with no records yields
        None / an empty tuple, never an exception.
    """

    def _matching(
        self,
        entity_kind: str,
        entity_id: UUID,
        scope: StatusScope | None,
    ) -> Select:
        stmt = select(StatusRecord).where(
            StatusRecord.entity_kind == entity_kind,
            StatusRecord.entity_id == entity_id,
        )
        if scope is not None:
            if scope.parent_id is not None:
                stmt = stmt.where(StatusRecord.parent_id == scope.parent_id)
            if scope.counterparty_id is not None:
                stmt = stmt.where(StatusRecord.counterparty_id == scope.counterparty_id)
            if scope.occurs_on is not None:
                stmt = stmt.where(StatusRecord.occurs_on == scope.occurs_on)
        return stmt.order_by(
            StatusRecord.recorded_at.desc(),
            StatusRecord.seq.desc(),
        )

    def current(
        self,
        entity_kind: str,
        entity_id: UUID,
        scope: StatusScope | None = None,
    ) -> StatusRecordInfo | None:
        record = self.session.execute(
            self._matching(entity_kind, entity_id, scope).limit(1)
        ).scalar_one_or_none()
        if record is None:
            return None
        return StatusRecordInfo.from_model(record)

    def history(
        self,
        entity_kind: str,
        entity_id: UUID,
        scope: StatusScope | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        before_seq: int | None = None,
    ) -> tuple[StatusRecordInfo, ...]:
        """
        Newest-first history page.

        Pass the ``seq`` of the last record of one page as ``before_seq`` to
        get the next page.

        Raises:
            ValueError: If limit is not between 1 and MAX_HISTORY_LIMIT.
        """
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValueError(
                f"History limit must be between 1 and {MAX_HISTORY_LIMIT}, got {limit}"
            )
        stmt = self._matching(entity_kind, entity_id, scope)
        if before_seq is not None:
            stmt = stmt.where(StatusRecord.seq < before_seq)
        records = self.session.execute(stmt.limit(limit)).scalars().all()
        return tuple(StatusRecordInfo.from_model(r) for r in records)

    def count(self, entity_kind: str, entity_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(StatusRecord)
            .where(
                StatusRecord.entity_kind == entity_kind,
                StatusRecord.entity_id == entity_id,
            )
        ).scalar_one()
