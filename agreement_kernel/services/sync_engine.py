"""
AgreementSyncEngine -- bottom-up status propagation through the hierarchy.

Responsibility:
    Applies a line item response, recounts its sub-agreement, re-derives the
    sub-agreement status and, only when that changed, re-derives the
    agreement.  Also owns top-down cancellation, batch responses and the
    administrative status overrides.

Architecture position:
    Kernel > Services.  Writes status records only through
    EntityStatusService; derivation rules come from domain/derivation.py.

Invariants enforced:
    - Atomic read-recompute-write: the owning sub-agreement row is locked
      (SELECT ... FOR UPDATE) before its line items are recounted, and the
      write is a version compare-and-set.
    - Lock order: sub-agreement(s) first, ordered by id, then agreement.
    - Count sum: the recount is cross-checked against an independent
      aggregate COUNT; a mismatch raises before anything is persisted.
    - Idempotence: re-applying the current status writes nothing.
    - Terminal protection: nothing under a cancelled agreement changes, and
      ``cancelled`` is only written by ``cancel_agreement``.

Failure modes:
    - LineItemNotFoundError / SubAgreementNotFoundError /
      AgreementNotFoundError: unknown id.
    - InvalidTransitionError: status not in vocabulary, or terminal state.
    - ConsistencyViolationError: recount does not add up.
    - OptimisticLockError: versioned sub-agreement changed underneath.
    - PersistenceError: any other store failure.  Partial writes are left
      in the session; the transaction owner must roll back.

Audit relevance:
    Every level that changes gets its own status record.  A derived change
    records the counts that produced it in the record metadata.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agreement_kernel.domain.derivation import (
    ResponseTally,
    derive_agreement_status,
    derive_sub_agreement_status,
    tally_line_items,
)
from agreement_kernel.domain.dtos import (
    BatchItemOutcome,
    BatchResponse,
    BatchResponseResult,
    CancellationResult,
    LineItemTransitionResult,
    StatusOverrideResult,
    StatusScope,
)
from agreement_kernel.domain.statuses import (
    AgreementStatus,
    EntityKind,
    LineItemStatus,
    SubAgreementStatus,
    UNCOUNTED_LINE_ITEM_STATUSES,
    status_value,
)
from agreement_kernel.exceptions import (
    AgreementKernelError,
    AgreementNotFoundError,
    ConcurrencyError,
    ConsistencyViolationError,
    InvalidTransitionError,
    LineItemNotFoundError,
    SubAgreementNotFoundError,
)
from agreement_kernel.logging_config import LogContext, get_logger
from agreement_kernel.models.activity import ActivityAction
from agreement_kernel.models.agreement import Agreement, LineItem, SubAgreement
from agreement_kernel.services.activity_log import ActivityLogService
from agreement_kernel.services.base import BaseService
from agreement_kernel.services.entity_status_service import EntityStatusService

logger = get_logger("services.sync_engine")

_CANCELLED = AgreementStatus.CANCELLED.value


class AgreementSyncEngine(BaseService[SubAgreement]):
    """
    Hierarchical status synchronization.

    Contract:
        Stateless between calls; everything is read from and written to the
        caller's session.  Never commits.

    Guarantees:
        - After a successful ``set_line_item_status`` the owning
          sub-agreement's counts equal a fresh tally of its line items and
          its status equals ``derive_sub_agreement_status`` of those counts.
        - The agreement is re-derived exactly when the sub-agreement status
          changed.

    Non-goals:
        - No retry.  Wrap calls in ``run_in_transaction`` for that.
    """

    def __init__(self, session: Session, status_service: EntityStatusService):
        super().__init__(session)
        self._status = status_service
        self._clock = status_service.clock
        self._activity = ActivityLogService(session, self._clock)

    # ------------------------------------------------------------------
    # Loading and locking
    # ------------------------------------------------------------------

    def _get_line_item(self, line_item_id: UUID, refresh: bool = False) -> LineItem:
        stmt = select(LineItem).where(LineItem.id == line_item_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        item = self.session.execute(stmt).scalar_one_or_none()
        if item is None:
            raise LineItemNotFoundError(str(line_item_id))
        return item

    def _lock_sub_agreement(self, sub_agreement_id: UUID) -> SubAgreement:
        sub = self.session.execute(
            select(SubAgreement)
            .where(SubAgreement.id == sub_agreement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sub is None:
            raise SubAgreementNotFoundError(str(sub_agreement_id))
        return sub

    def _lock_sub_agreements_of(self, agreement_id: UUID) -> list[SubAgreement]:
        return list(
            self.session.execute(
                select(SubAgreement)
                .where(SubAgreement.agreement_id == agreement_id)
                .order_by(SubAgreement.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _get_agreement(self, agreement_id: UUID, lock: bool = False) -> Agreement:
        stmt = select(Agreement).where(Agreement.id == agreement_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        agreement = self.session.execute(stmt).scalar_one_or_none()
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    # ------------------------------------------------------------------
    # Recount
    # ------------------------------------------------------------------

    def recount(self, sub: SubAgreement) -> ResponseTally:
        """
        Tally the sub-agreement's line items from the store.

        Raises:
            ConsistencyViolationError: The tally does not add up, or its
                total disagrees with an independent aggregate count.
        """
        rows = self.session.execute(
            select(LineItem.status, LineItem.value)
            .where(LineItem.sub_agreement_id == sub.id)
        ).all()
        tally = tally_line_items((row.status, row.value) for row in rows)

        counted_total = self.session.execute(
            select(func.count())
            .select_from(LineItem)
            .where(
                LineItem.sub_agreement_id == sub.id,
                LineItem.status.not_in(sorted(UNCOUNTED_LINE_ITEM_STATUSES)),
            )
        ).scalar_one()

        if not tally.is_consistent or tally.total != counted_total:
            logger.error(
                "consistency_violation_detected",
                extra={
                    "sub_agreement_id": str(sub.id),
                    "accepted": tally.accepted,
                    "rejected": tally.rejected,
                    "pending": tally.pending,
                    "total": counted_total,
                },
            )
            raise ConsistencyViolationError(
                str(sub.id),
                tally.accepted,
                tally.rejected,
                tally.pending,
                counted_total,
            )
        return tally

    @staticmethod
    def cached_tally(sub: SubAgreement) -> ResponseTally:
        return ResponseTally(
            accepted=sub.accepted_count,
            rejected=sub.rejected_count,
            pending=sub.pending_count,
            total=sub.total_count,
            accepted_value=sub.total_accepted_value,
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def _reconcile_sub_agreement(
        self,
        sub: SubAgreement,
        actor_id: UUID,
    ) -> tuple[ResponseTally, bool, list[str]]:
        """Recount, persist counts, re-derive.  ``sub`` must be locked."""
        tally = self.recount(sub)
        warnings: list[str] = []

        sub.accepted_count = tally.accepted
        sub.rejected_count = tally.rejected
        sub.pending_count = tally.pending
        sub.total_count = tally.total
        sub.total_accepted_value = tally.accepted_value
        sub.updated_by_id = actor_id
        if tally.is_complete and sub.completed_at is None:
            sub.completed_at = self._clock.now()

        previous = sub.status
        derived = derive_sub_agreement_status(tally)
        changed = derived != previous
        if changed:
            sub.status = derived

        self._flush("reconcile_sub_agreement", "SubAgreement", sub.id)

        if changed:
            result = self._status.record_transition(
                EntityKind.SUB_AGREEMENT,
                sub.id,
                derived,
                actor_id,
                scope=StatusScope(
                    parent_id=sub.agreement_id,
                    counterparty_id=sub.counterparty_id,
                ),
                metadata={
                    "previous_status": previous,
                    "derived": True,
                    "accepted": tally.accepted,
                    "rejected": tally.rejected,
                    "pending": tally.pending,
                    "total": tally.total,
                },
            )
            warnings.extend(result.warnings)
            logger.info(
                "sub_agreement_status_derived",
                extra={
                    "sub_agreement_id": str(sub.id),
                    "previous_status": previous,
                    "new_status": derived,
                },
            )
        return tally, changed, warnings

    def rederive_agreement(
        self,
        agreement_id: UUID,
        actor_id: UUID,
    ) -> tuple[str, bool, list[str]]:
        """
        Re-derive and, if changed, persist and record the agreement status.

        Only acts while the agreement is sent or in-progress.

        Returns:
            (status, changed, warnings)
        """
        agreement = self._get_agreement(agreement_id, lock=True)
        statuses = self.session.execute(
            select(SubAgreement.status).where(SubAgreement.agreement_id == agreement_id)
        ).scalars().all()

        previous = agreement.status
        derived = derive_agreement_status(previous, statuses)
        if derived == previous:
            return previous, False, []

        agreement.status = derived
        agreement.updated_by_id = actor_id
        if derived == AgreementStatus.COMPLETED.value and agreement.completed_at is None:
            agreement.completed_at = self._clock.now()
        self._flush("rederive_agreement", "Agreement", agreement.id)

        result = self._status.record_transition(
            EntityKind.AGREEMENT,
            agreement.id,
            derived,
            actor_id,
            metadata={"previous_status": previous, "derived": True},
        )
        logger.info(
            "agreement_status_derived",
            extra={
                "agreement_id": str(agreement.id),
                "previous_status": previous,
                "new_status": derived,
            },
        )
        return derived, True, list(result.warnings)

    # ------------------------------------------------------------------
    # Line items
    # ------------------------------------------------------------------

    def set_line_item_status(
        self,
        line_item_id: UUID,
        new_status: str | LineItemStatus,
        actor_id: UUID,
        response_notes: str | None = None,
    ) -> LineItemTransitionResult:
        """
        Apply one response and propagate it upward.

        Preconditions:
            - The caller is within an active transaction it will commit
              or roll back.

        Postconditions:
            - On change: the line item, one line item status record, the
              recounted sub-agreement and (when derived statuses changed)
              sub-agreement and agreement status records are flushed.
            - On no-op: nothing is written.

        Raises:
            InvalidTransitionError, LineItemNotFoundError,
            ConsistencyViolationError, OptimisticLockError, PersistenceError.
        """
        status = self._status.validate_status(EntityKind.LINE_ITEM, line_item_id, new_status)
        if status == LineItemStatus.CANCELLED.value:
            raise InvalidTransitionError(
                EntityKind.LINE_ITEM.value,
                str(line_item_id),
                status,
                "line items are cancelled only by cancelling their agreement",
            )

        item = self._get_line_item(line_item_id)
        sub = self._lock_sub_agreement(item.sub_agreement_id)
        item = self._get_line_item(line_item_id, refresh=True)
        agreement = self._get_agreement(sub.agreement_id)

        with LogContext.bind(
            actor_id=str(actor_id), agreement_id=str(agreement.id), entity_id=str(item.id)
        ):
            if (
                agreement.status == _CANCELLED
                or sub.status == SubAgreementStatus.CANCELLED.value
                or item.status == LineItemStatus.CANCELLED.value
            ):
                logger.warning(
                    "line_item_transition_rejected_terminal",
                    extra={
                        "line_item_id": str(item.id),
                        "requested_status": status,
                        "agreement_status": agreement.status,
                    },
                )
                raise InvalidTransitionError(
                    EntityKind.LINE_ITEM.value,
                    str(item.id),
                    status,
                    "agreement or line item is cancelled",
                )

            previous = item.status
            if previous == status:
                logger.info(
                    "line_item_status_unchanged",
                    extra={"line_item_id": str(item.id), "status": status},
                )
                return LineItemTransitionResult(
                    line_item_id=item.id,
                    sub_agreement_id=sub.id,
                    agreement_id=agreement.id,
                    changed=False,
                    previous_status=previous,
                    new_status=status,
                    sub_agreement_status=sub.status,
                    sub_agreement_changed=False,
                    agreement_status=agreement.status,
                    agreement_changed=False,
                    tally=self.cached_tally(sub),
                )

            now = self._clock.now()
            item.status = status
            item.responded_at = now
            item.updated_by_id = actor_id
            if response_notes is not None:
                item.response_notes = response_notes
            if status != LineItemStatus.PENDING.value:
                sub.responded_at = now
            self._flush("set_line_item_status", "LineItem", item.id)

            warnings: list[str] = []
            result = self._status.record_transition(
                EntityKind.LINE_ITEM,
                item.id,
                status,
                actor_id,
                scope=StatusScope(
                    parent_id=sub.id,
                    counterparty_id=sub.counterparty_id,
                    occurs_on=item.occurs_on,
                ),
                metadata={
                    "previous_status": previous,
                    "response_notes": response_notes,
                },
                description=f"Line item {item.occurs_on.isoformat()} set to {status}",
            )
            warnings.extend(result.warnings)

            tally, sub_changed, sub_warnings = self._reconcile_sub_agreement(sub, actor_id)
            warnings.extend(sub_warnings)

            agreement_status = agreement.status
            agreement_changed = False
            if sub_changed:
                agreement_status, agreement_changed, agr_warnings = self.rederive_agreement(
                    agreement.id, actor_id
                )
                warnings.extend(agr_warnings)

            logger.info(
                "line_item_status_changed",
                extra={
                    "line_item_id": str(item.id),
                    "previous_status": previous,
                    "new_status": status,
                    "sub_agreement_status": sub.status,
                    "agreement_status": agreement_status,
                },
            )

            return LineItemTransitionResult(
                line_item_id=item.id,
                sub_agreement_id=sub.id,
                agreement_id=agreement.id,
                changed=True,
                previous_status=previous,
                new_status=status,
                sub_agreement_status=sub.status,
                sub_agreement_changed=sub_changed,
                agreement_status=agreement_status,
                agreement_changed=agreement_changed,
                tally=tally,
                warnings=tuple(warnings),
            )

    def respond(
        self,
        sub_agreement_id: UUID,
        responses: Iterable[BatchResponse],
        actor_id: UUID,
        notes: str | None = None,
    ) -> BatchResponseResult:
        """
        Apply a counterparty's answers for several dates.

        Each response runs in its own SAVEPOINT.  A failing response is
        reported on its outcome and leaves the others in place.

        Raises:
            SubAgreementNotFoundError: Unknown sub-agreement.
            ConcurrencyError: Propagated so the whole batch can be retried.
        """
        sub = self._lock_sub_agreement(sub_agreement_id)
        notifier = self._status.notifier
        outcomes: list[BatchItemOutcome] = []
        warnings: list[str] = []

        for response in responses:
            requested = status_value(response.status)
            mark = notifier.checkpoint(self.session) if notifier is not None else 0
            try:
                with self.session.begin_nested():
                    item = self._get_line_item(response.line_item_id)
                    if item.sub_agreement_id != sub_agreement_id:
                        raise LineItemNotFoundError(str(response.line_item_id))
                    result = self.set_line_item_status(
                        response.line_item_id,
                        requested,
                        actor_id,
                        response_notes=response.notes,
                    )
            except ConcurrencyError:
                raise
            except AgreementKernelError as exc:
                if notifier is not None:
                    notifier.discard_since(self.session, mark)
                logger.warning(
                    "batch_response_item_failed",
                    extra={
                        "sub_agreement_id": str(sub_agreement_id),
                        "line_item_id": str(response.line_item_id),
                        "error_code": exc.code,
                    },
                )
                outcomes.append(
                    BatchItemOutcome(
                        line_item_id=response.line_item_id,
                        success=False,
                        status=requested,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                )
                continue
            warnings.extend(result.warnings)
            outcomes.append(
                BatchItemOutcome(
                    line_item_id=response.line_item_id,
                    success=True,
                    status=requested,
                    changed=result.changed,
                )
            )

        sub = self._lock_sub_agreement(sub_agreement_id)
        agreement = self._get_agreement(sub.agreement_id)
        succeeded = sum(1 for o in outcomes if o.success)

        activity_warning = self._activity.record(
            actor_id=actor_id,
            action=ActivityAction.RESPONSE_SUBMITTED,
            entity_kind=EntityKind.SUB_AGREEMENT.value,
            entity_id=sub.id,
            description=(
                f"Response submitted: {succeeded} of {len(outcomes)} dates recorded"
            ),
            details={
                "notes": notes,
                "succeeded": succeeded,
                "failed": len(outcomes) - succeeded,
            },
        )
        if activity_warning:
            warnings.append(activity_warning)

        logger.info(
            "batch_response_applied",
            extra={
                "sub_agreement_id": str(sub.id),
                "succeeded": succeeded,
                "failed": len(outcomes) - succeeded,
            },
        )

        return BatchResponseResult(
            sub_agreement_id=sub.id,
            outcomes=tuple(outcomes),
            sub_agreement_status=sub.status,
            agreement_status=agreement.status,
            warnings=tuple(warnings),
        )

    # ------------------------------------------------------------------
    # Administrative overrides
    # ------------------------------------------------------------------

    def set_sub_agreement_status(
        self,
        sub_agreement_id: UUID,
        new_status: str | SubAgreementStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> StatusOverrideResult:
        """
        Set a sub-agreement status directly and re-derive the agreement.

        The next line item response re-derives the sub-agreement from its
        counts again.

        Raises:
            InvalidTransitionError: Not in vocabulary, ``cancelled``, or the
                sub-agreement / agreement is cancelled.
            SubAgreementNotFoundError: Unknown id.
        """
        status = self._status.validate_status(
            EntityKind.SUB_AGREEMENT, sub_agreement_id, new_status
        )
        if status == SubAgreementStatus.CANCELLED.value:
            raise InvalidTransitionError(
                EntityKind.SUB_AGREEMENT.value,
                str(sub_agreement_id),
                status,
                "sub-agreements are cancelled only by cancelling their agreement",
            )

        sub = self._lock_sub_agreement(sub_agreement_id)
        agreement = self._get_agreement(sub.agreement_id)
        if agreement.status == _CANCELLED or sub.status == SubAgreementStatus.CANCELLED.value:
            raise InvalidTransitionError(
                EntityKind.SUB_AGREEMENT.value,
                str(sub.id),
                status,
                "agreement is cancelled",
            )

        previous = sub.status
        if previous == status:
            return StatusOverrideResult(
                entity_kind=EntityKind.SUB_AGREEMENT.value,
                entity_id=sub.id,
                changed=False,
                previous_status=previous,
                new_status=status,
                agreement_status=agreement.status,
            )

        sub.status = status
        sub.responded_at = self._clock.now()
        sub.updated_by_id = actor_id
        self._flush("set_sub_agreement_status", "SubAgreement", sub.id)

        result = self._status.record_transition(
            EntityKind.SUB_AGREEMENT,
            sub.id,
            status,
            actor_id,
            scope=StatusScope(
                parent_id=sub.agreement_id,
                counterparty_id=sub.counterparty_id,
            ),
            metadata={"previous_status": previous, "override": True, "notes": notes},
        )
        warnings = list(result.warnings)

        agreement_status, agreement_changed, agr_warnings = self.rederive_agreement(
            agreement.id, actor_id
        )
        warnings.extend(agr_warnings)

        logger.info(
            "sub_agreement_status_overridden",
            extra={
                "sub_agreement_id": str(sub.id),
                "previous_status": previous,
                "new_status": status,
            },
        )
        return StatusOverrideResult(
            entity_kind=EntityKind.SUB_AGREEMENT.value,
            entity_id=sub.id,
            changed=True,
            previous_status=previous,
            new_status=status,
            agreement_status=agreement_status,
            agreement_changed=agreement_changed,
            warnings=tuple(warnings),
        )

    def set_agreement_status(
        self,
        agreement_id: UUID,
        new_status: str | AgreementStatus,
        actor_id: UUID,
        notes: str | None = None,
    ) -> StatusOverrideResult:
        """
        Set an agreement status directly.

        ``cancelled`` is routed through ``cancel_agreement`` so the cascade
        always happens.

        Raises:
            InvalidTransitionError: Not in vocabulary, or agreement cancelled.
            AgreementNotFoundError: Unknown id.
        """
        status = self._status.validate_status(EntityKind.AGREEMENT, agreement_id, new_status)

        if status == _CANCELLED:
            cancellation = self.cancel_agreement(
                agreement_id, actor_id, notes or "cancelled by status change"
            )
            return StatusOverrideResult(
                entity_kind=EntityKind.AGREEMENT.value,
                entity_id=agreement_id,
                changed=cancellation.changed,
                previous_status=cancellation.previous_status,
                new_status=_CANCELLED,
                agreement_status=_CANCELLED,
                agreement_changed=cancellation.changed,
                warnings=cancellation.warnings,
            )

        agreement = self._get_agreement(agreement_id, lock=True)
        previous = agreement.status
        if previous == _CANCELLED:
            raise InvalidTransitionError(
                EntityKind.AGREEMENT.value,
                str(agreement_id),
                status,
                "agreement is cancelled",
            )
        if previous == status:
            return StatusOverrideResult(
                entity_kind=EntityKind.AGREEMENT.value,
                entity_id=agreement.id,
                changed=False,
                previous_status=previous,
                new_status=status,
                agreement_status=previous,
            )

        now = self._clock.now()
        agreement.status = status
        agreement.updated_by_id = actor_id
        if status == AgreementStatus.SENT.value and agreement.sent_at is None:
            agreement.sent_at = now
        if status == AgreementStatus.COMPLETED.value and agreement.completed_at is None:
            agreement.completed_at = now
        self._flush("set_agreement_status", "Agreement", agreement.id)

        result = self._status.record_transition(
            EntityKind.AGREEMENT,
            agreement.id,
            status,
            actor_id,
            metadata={"previous_status": previous, "override": True, "notes": notes},
        )
        logger.info(
            "agreement_status_overridden",
            extra={
                "agreement_id": str(agreement.id),
                "previous_status": previous,
                "new_status": status,
            },
        )
        return StatusOverrideResult(
            entity_kind=EntityKind.AGREEMENT.value,
            entity_id=agreement.id,
            changed=True,
            previous_status=previous,
            new_status=status,
            agreement_status=status,
            agreement_changed=True,
            warnings=result.warnings,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_agreement(
        self,
        agreement_id: UUID,
        actor_id: UUID,
        reason: str,
    ) -> CancellationResult:
        """
        Cancel an agreement and everything under it.

        Top-down and without derivation: the agreement, then every
        sub-agreement, then every line item is set to ``cancelled`` with its
        own status record.  Cached counts are left as last reconciled.

        Raises:
            AgreementNotFoundError: Unknown id.
        """
        self._get_agreement(agreement_id)
        subs = self._lock_sub_agreements_of(agreement_id)
        agreement = self._get_agreement(agreement_id, lock=True)

        with LogContext.bind(actor_id=str(actor_id), agreement_id=str(agreement_id)):
            previous = agreement.status
            if previous == _CANCELLED:
                logger.info("agreement_already_cancelled")
                return CancellationResult(
                    agreement_id=agreement.id,
                    changed=False,
                    previous_status=previous,
                )

            now = self._clock.now()
            warnings: list[str] = []

            agreement.status = _CANCELLED
            agreement.cancelled_at = now
            agreement.cancellation_reason = reason
            agreement.updated_by_id = actor_id
            self._flush("cancel_agreement", "Agreement", agreement.id)
            result = self._status.record_transition(
                EntityKind.AGREEMENT,
                agreement.id,
                _CANCELLED,
                actor_id,
                metadata={"previous_status": previous, "reason": reason},
            )
            warnings.extend(result.warnings)

            cancelled_subs = 0
            cancelled_items = 0
            for sub in subs:
                if sub.status != SubAgreementStatus.CANCELLED.value:
                    sub_previous = sub.status
                    sub.status = SubAgreementStatus.CANCELLED.value
                    sub.updated_by_id = actor_id
                    self._flush("cancel_agreement", "SubAgreement", sub.id)
                    result = self._status.record_transition(
                        EntityKind.SUB_AGREEMENT,
                        sub.id,
                        SubAgreementStatus.CANCELLED.value,
                        actor_id,
                        scope=StatusScope(
                            parent_id=agreement.id,
                            counterparty_id=sub.counterparty_id,
                        ),
                        metadata={"previous_status": sub_previous, "cascade": True},
                    )
                    warnings.extend(result.warnings)
                    cancelled_subs += 1

                items = self.session.execute(
                    select(LineItem)
                    .where(
                        LineItem.sub_agreement_id == sub.id,
                        LineItem.status != LineItemStatus.CANCELLED.value,
                    )
                    .order_by(LineItem.occurs_on)
                ).scalars().all()
                for item in items:
                    item_previous = item.status
                    item.status = LineItemStatus.CANCELLED.value
                    item.updated_by_id = actor_id
                    self._flush("cancel_agreement", "LineItem", item.id)
                    result = self._status.record_transition(
                        EntityKind.LINE_ITEM,
                        item.id,
                        LineItemStatus.CANCELLED.value,
                        actor_id,
                        scope=StatusScope(
                            parent_id=sub.id,
                            counterparty_id=sub.counterparty_id,
                            occurs_on=item.occurs_on,
                        ),
                        metadata={"previous_status": item_previous, "cascade": True},
                    )
                    warnings.extend(result.warnings)
                    cancelled_items += 1

            activity_warning = self._activity.record(
                actor_id=actor_id,
                action=ActivityAction.AGREEMENT_CANCELLED,
                entity_kind=EntityKind.AGREEMENT.value,
                entity_id=agreement.id,
                description=f"Agreement cancelled: {reason}",
                details={
                    "previous_status": previous,
                    "sub_agreements": cancelled_subs,
                    "line_items": cancelled_items,
                },
                occurred_at=now,
            )
            if activity_warning:
                warnings.append(activity_warning)

            logger.info(
                "agreement_cancelled",
                extra={
                    "previous_status": previous,
                    "cancelled_sub_agreements": cancelled_subs,
                    "cancelled_line_items": cancelled_items,
                },
            )
            return CancellationResult(
                agreement_id=agreement.id,
                changed=True,
                previous_status=previous,
                cancelled_sub_agreements=cancelled_subs,
                cancelled_line_items=cancelled_items,
                warnings=tuple(warnings),
            )
