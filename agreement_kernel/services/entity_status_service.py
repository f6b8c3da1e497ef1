"""
EntityStatusService -- the single writer of the status audit trail.

Responsibility:
    Records status transitions for any tracked entity kind and answers
    "what is its status now" and "what happened before".  Every status the
    sync engine, issuance or cancellation writes goes through
    ``record_transition``.

Architecture position:
    Kernel > Services.  Reads are delegated to StatusRecordSelector; seq
    allocation to SequenceService; the activity feed to ActivityLogService.

Invariants enforced:
    - Vocabulary membership is checked before any write.
    - Exactly one StatusRecord per call, unconditionally.  Deduplication of
      no-op transitions is the caller's job (the sync engine does it).
    - Audit monotonicity: per entity, seq strictly increases, so history
      never loses or reorders a record.
    - The activity entry is best-effort: it runs in a SAVEPOINT, and its
      failure is reported on TransitionResult.activity_warning.

Failure modes:
    - InvalidTransitionError: status not in the kind's vocabulary.
    - PersistenceError: the status record (or its seq) could not be
      written or read.  The caller must roll back.

Audit relevance:
    This service is the audit boundary.  ``get_history`` is how auditors
    and the UI see who changed what, when.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agreement_kernel.domain.clock import Clock, SystemClock
from agreement_kernel.domain.dtos import (
    StatusChange,
    StatusRecordInfo,
    StatusScope,
    TransitionResult,
)
from agreement_kernel.domain.statuses import status_value
from agreement_kernel.domain.vocabulary import StatusVocabulary, VocabularyRegistry
from agreement_kernel.exceptions import InvalidTransitionError, PersistenceError
from agreement_kernel.logging_config import get_logger
from agreement_kernel.models.activity import ActivityAction
from agreement_kernel.models.status_record import StatusRecord
from agreement_kernel.selectors.status_selector import (
    DEFAULT_HISTORY_LIMIT,
    StatusRecordSelector,
)
from agreement_kernel.services.activity_log import ActivityLogService
from agreement_kernel.services.base import BaseService
from agreement_kernel.services.notifier import StatusChangeNotifier
from agreement_kernel.services.sequence_service import SequenceService
from agreement_kernel.utils.json_safe import to_json_safe

logger = get_logger("services.entity_status")


class EntityStatusService(BaseService[StatusRecord]):
    """
    Status tracking for any entity kind.

    Contract:
        ``record_transition`` validates, appends one StatusRecord, then
        attempts one ActivityRecord.  Reads never raise for a missing
        entity; they return None or an empty tuple.

    Non-goals:
        - Does NOT enforce transition graphs (any vocabulary member may
          follow any other).  Terminal-state protection for the agreement
          hierarchy lives in the sync engine.
        - Does NOT derive parent statuses.
    """

    def __init__(
        self,
        session: Session,
        vocabulary: VocabularyRegistry,
        clock: Clock | None = None,
        notifier: StatusChangeNotifier | None = None,
    ):
        super().__init__(session)
        self._vocabulary = vocabulary
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._selector = StatusRecordSelector(session)
        self._sequence = SequenceService(session)
        self._activity = ActivityLogService(session, self._clock)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def notifier(self) -> StatusChangeNotifier | None:
        return self._notifier

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_status(
        self,
        entity_kind: str | Enum,
        entity_id: UUID,
        scope: StatusScope | None = None,
    ) -> StatusRecordInfo | None:
        """
        Most recent record for the entity within ``scope``, or None.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        try:
            return self._selector.current(status_value(entity_kind), entity_id, scope)
        except SQLAlchemyError as exc:
            raise PersistenceError("get_current_status", str(exc)) from exc

    def get_history(
        self,
        entity_kind: str | Enum,
        entity_id: UUID,
        scope: StatusScope | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        before_seq: int | None = None,
    ) -> tuple[StatusRecordInfo, ...]:
        """
        Newest-first records for the entity within ``scope``.

        Raises:
            PersistenceError: If the store cannot be read.
            ValueError: If ``limit`` is out of range.
        """
        try:
            return self._selector.history(
                status_value(entity_kind),
                entity_id,
                scope=scope,
                limit=limit,
                before_seq=before_seq,
            )
        except SQLAlchemyError as exc:
            raise PersistenceError("get_history", str(exc)) from exc

    def get_status_vocabulary(self, entity_kind: str | Enum) -> StatusVocabulary:
        """Vocabulary for the kind, or the default vocabulary."""
        return self._vocabulary.for_kind(status_value(entity_kind))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def validate_status(
        self,
        entity_kind: str | Enum,
        entity_id: UUID,
        new_status: str | Enum,
    ) -> str:
        """
        Return the plain status string if the kind's vocabulary has it.

        Raises:
            InvalidTransitionError: Otherwise.
        """
        kind = status_value(entity_kind)
        status = status_value(new_status)
        vocabulary = self.get_status_vocabulary(kind)
        if not vocabulary.contains(status):
            logger.warning(
                "status_rejected_not_in_vocabulary",
                extra={
                    "entity_kind": kind,
                    "entity_id": str(entity_id),
                    "requested_status": status,
                },
            )
            raise InvalidTransitionError(
                kind,
                str(entity_id),
                status,
                f"not one of {', '.join(vocabulary.values)}",
            )
        return status

    def record_transition(
        self,
        entity_kind: str | Enum,
        entity_id: UUID,
        new_status: str | Enum,
        actor_id: UUID,
        scope: StatusScope | None = None,
        metadata: dict[str, Any] | None = None,
        custom_status: str | None = None,
        effective_at: datetime | None = None,
        description: str | None = None,
    ) -> TransitionResult:
        """
        Append one status record and a best-effort activity entry.

        Preconditions:
            - The caller is within an active transaction.

        Postconditions:
            - One new StatusRecord with the next seq for this entity is
              flushed.  No prior record is touched.
            - A StatusChange is staged on the notifier (published on commit).

        Raises:
            InvalidTransitionError: ``new_status`` not in the vocabulary.
            PersistenceError: The status record could not be written.
        """
        kind = status_value(entity_kind)
        status = self.validate_status(kind, entity_id, new_status)
        scope = scope or StatusScope()
        now = self._clock.now()

        try:
            seq = self._sequence.next_value(
                SequenceService.status_record_sequence(kind, entity_id)
            )
            record = StatusRecord(
                entity_kind=kind,
                entity_id=entity_id,
                primary_status=status,
                custom_status=custom_status,
                parent_id=scope.parent_id,
                counterparty_id=scope.counterparty_id,
                occurs_on=scope.occurs_on,
                effective_at=effective_at or now,
                recorded_at=now,
                seq=seq,
                actor_id=actor_id,
                record_metadata=to_json_safe(metadata) if metadata else None,
            )
            self.session.add(record)
            self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "status_record_write_failed",
                extra={
                    "entity_kind": kind,
                    "entity_id": str(entity_id),
                    "new_status": status,
                },
                exc_info=True,
            )
            raise PersistenceError("record_transition", str(exc)) from exc

        info = StatusRecordInfo.from_model(record)

        logger.info(
            "status_recorded",
            extra={
                "entity_kind": kind,
                "entity_id": str(entity_id),
                "new_status": status,
                "seq": seq,
            },
        )

        vocabulary = self.get_status_vocabulary(kind)
        activity_warning = self._activity.record(
            actor_id=actor_id,
            action=ActivityAction.STATUS_CHANGE,
            entity_kind=kind,
            entity_id=entity_id,
            description=description
            or f"{kind} status set to {vocabulary.label_for(status)}",
            details={
                "status": status,
                "custom_status": custom_status,
                "scope": {
                    "parent_id": scope.parent_id,
                    "counterparty_id": scope.counterparty_id,
                    "occurs_on": scope.occurs_on,
                },
                "seq": seq,
            },
            occurred_at=now,
        )

        if self._notifier is not None:
            self._notifier.stage(
                self.session,
                StatusChange(
                    entity_kind=kind,
                    entity_id=entity_id,
                    new_status=status,
                    actor_id=actor_id,
                    recorded_at=now,
                    scope=scope,
                    record_id=info.id,
                ),
            )

        return TransitionResult(record=info, activity_warning=activity_warning)
