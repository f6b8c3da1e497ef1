"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session contract for every write-side service,
    plus the translation of SQLAlchemy failures into kernel exceptions.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back the outer transaction.
      The caller (session_scope, run_in_transaction or a test harness)
      owns commit/rollback.

Failure modes:
    - ``_flush`` raises OptimisticLockError for a stale versioned row and
      PersistenceError for any other SQLAlchemy failure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from agreement_kernel.db.base import Base
from agreement_kernel.exceptions import OptimisticLockError, PersistenceError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Read-only queries belong in ``agreement_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    def _flush(self, operation: str, entity_type: str = "", entity_id: object = None) -> None:
        """Flush pending changes, translating SQLAlchemy errors."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type or "unknown", str(entity_id)) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(operation, str(exc)) from exc
