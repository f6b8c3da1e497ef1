"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Hands out the per-entity ``seq`` stamped on every status record.  Two
    records for the same entity written within the same clock instant are
    still totally ordered by ``seq``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    EntityStatusService.record_transition.

Invariants enforced:
    - Monotonicity: values for one sequence name are strictly increasing.
      MAX(seq)+1 is never used; the locked counter row is the only source.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first use of a name, handled via a
      savepoint rollback and a locked re-read.

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from agreement_kernel.db.base import Base
from agreement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is a named sequence with its current value.  Status record
    sequences are named per entity, so writers for different entities
    never contend for the same row.
    """

    __tablename__ = "sequence_counters"

    # e.g. "status_record:line-item:6f1c..."
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for
          the same name (PostgreSQL; SQLite serializes whole transactions).
        - Never calls ``session.commit()``.
    """

    STATUS_RECORD_PREFIX = "status_record"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def status_record_sequence(cls, entity_kind: str, entity_id: UUID) -> str:
        """Sequence name for one entity's status records."""
        return f"{cls.STATUS_RECORD_PREFIX}:{entity_kind}:{entity_id}"

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for this name.
            - The counter row stays locked until the transaction ends.
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            # First use of this name; another writer may be creating it too
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value
