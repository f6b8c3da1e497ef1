"""
ActivityLogService -- best-effort writer for the human-readable feed.

Responsibility:
    Appends ActivityRecord rows next to status records.  The feed is a
    secondary write: a failure here must not undo the status change it
    describes, so every insert runs inside its own SAVEPOINT and failures
    are returned as a warning string instead of raised.

Architecture position:
    Kernel > Services.  Called by EntityStatusService and the agreement
    services.

Failure modes:
    - SQLAlchemyError during the insert: the savepoint is rolled back,
      ``activity_write_failed`` is logged at WARNING and the warning text
      is returned.  The outer transaction stays usable.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agreement_kernel.domain.clock import Clock, SystemClock
from agreement_kernel.logging_config import get_logger
from agreement_kernel.models.activity import ActivityAction, ActivityRecord
from agreement_kernel.utils.json_safe import to_json_safe

logger = get_logger("services.activity")


class ActivityLogService:
    """
    Appends activity feed entries without ever failing the caller.

    Guarantees:
        - On success exactly one ActivityRecord is flushed.
        - On failure nothing from this call remains in the session and the
          return value describes the failure.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _insert(self, record: ActivityRecord) -> None:
        self._session.add(record)
        self._session.flush()

    def record(
        self,
        actor_id: UUID,
        action: ActivityAction,
        entity_kind: str,
        entity_id: UUID,
        description: str,
        details: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> str | None:
        """
        Write one feed entry.

        Returns:
            None on success, otherwise a warning message.
        """
        record = ActivityRecord(
            actor_id=actor_id,
            action=action.value,
            entity_kind=entity_kind,
            entity_id=entity_id,
            occurred_at=occurred_at or self._clock.now(),
            description=description,
            details=to_json_safe(details) if details else None,
        )
        try:
            with self._session.begin_nested():
                self._insert(record)
        except SQLAlchemyError as exc:
            logger.warning(
                "activity_write_failed",
                extra={
                    "action": action.value,
                    "entity_kind": entity_kind,
                    "entity_id": str(entity_id),
                    "error": str(exc),
                },
            )
            return f"activity not recorded for {entity_kind} {entity_id}: {exc.__class__.__name__}"
        return None
