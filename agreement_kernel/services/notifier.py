"""
StatusChangeNotifier -- in-process publication of committed status changes.

Responsibility:
    Lets outer layers (push-to-client, cache invalidation) hear about status
    changes without the kernel knowing who they are.  Changes are staged on
    the SQLAlchemy session while the transaction is open and handed to
    subscribers from the session's ``after_commit`` event.

Architecture position:
    Kernel > Services.  Staged by EntityStatusService.record_transition.

Invariants enforced:
    - Nothing is published before commit.  A rolled back transaction
      publishes nothing; a rolled back savepoint discards what was staged
      inside it (callers use ``checkpoint`` / ``discard_since``).
    - A subscriber failure is logged and never propagates into the status
      write path or to other subscribers.

Failure modes:
    - Subscriber exceptions: logged as ``status_change_subscriber_failed``.
"""

import threading
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from agreement_kernel.domain.dtos import StatusChange
from agreement_kernel.logging_config import get_logger

logger = get_logger("services.notifier")

Subscriber = Callable[[StatusChange], None]


class StatusChangeNotifier:
    """
    Subscription hook for committed status changes.

    Contract:
        ``subscribe`` returns an unsubscribe callable.  Callbacks run
        synchronously in the committing thread, in subscription order.

    Non-goals:
        - No delivery guarantees beyond "after commit, at most once".
        - No persistence of undelivered changes.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._info_key = f"status_changes:{id(self)}"

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _attach(self, session: Session) -> list[StatusChange]:
        pending = session.info.get(self._info_key)
        if pending is None:
            pending = []
            session.info[self._info_key] = pending
            if not event.contains(session, "after_commit", self._on_after_commit):
                event.listen(session, "after_commit", self._on_after_commit)
                event.listen(session, "after_soft_rollback", self._on_after_soft_rollback)
        return pending

    def stage(self, session: Session, change: StatusChange) -> None:
        """Queue a change for publication when ``session`` commits."""
        self._attach(session).append(change)

    def pending(self, session: Session) -> tuple[StatusChange, ...]:
        return tuple(session.info.get(self._info_key, ()))

    def checkpoint(self, session: Session) -> int:
        """Mark the current staging position, e.g. before a savepoint."""
        return len(self._attach(session))

    def discard_since(self, session: Session, mark: int) -> None:
        """Drop changes staged after ``mark`` (their savepoint rolled back)."""
        pending = session.info.get(self._info_key)
        if pending is not None:
            del pending[mark:]

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _on_after_commit(self, session: Session) -> None:
        # A released SAVEPOINT also fires after_commit; only the outer
        # transaction publishes.
        if session.in_nested_transaction():
            return
        pending = session.info.pop(self._info_key, None)
        if pending:
            self.publish(pending)

    def _on_after_soft_rollback(self, session: Session, previous_transaction) -> None:
        # Savepoint rollbacks are handled by checkpoint / discard_since.
        if previous_transaction.nested or previous_transaction.parent is not None:
            return
        dropped = session.info.pop(self._info_key, None)
        if dropped:
            logger.debug(
                "status_changes_discarded",
                extra={"count": len(dropped)},
            )

    def publish(self, changes: list[StatusChange]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for change in changes:
            for callback in subscribers:
                try:
                    callback(change)
                except Exception:
                    logger.exception(
                        "status_change_subscriber_failed",
                        extra={
                            "entity_kind": change.entity_kind,
                            "entity_id": str(change.entity_id),
                            "new_status": change.new_status,
                        },
                    )
