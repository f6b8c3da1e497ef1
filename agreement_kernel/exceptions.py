"""
Typed exception hierarchy for the agreement kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (routing layer, batch jobs, tests) branch on the kind
of failure, never on message text:

    try:
        engine.set_line_item_status(item_id, "accepted", actor_id)
    except InvalidTransitionError as e:
        return reject(code=e.code, status=e.requested_status)
    except (PersistenceError, ConsistencyViolationError) as e:
        return failure(code=e.code)

Every exception carries:
  1. A CODE class attribute (machine-readable, API-safe)
  2. Structured attributes (entity ids, statuses, counts)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AgreementKernelError (base)
    |
    +-- NotFoundError
    |   +-- AgreementNotFoundError
    |   +-- SubAgreementNotFoundError
    |   +-- LineItemNotFoundError
    |
    +-- InvalidTransitionError
    |
    +-- PersistenceError
    |
    +-- ConsistencyViolationError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                      | When Raised
--------------|---------------------------|------------------------------------------
Not found     | AGREEMENT_NOT_FOUND       | Agreement id doesn't exist
              | SUB_AGREEMENT_NOT_FOUND   | Sub-agreement id doesn't exist
              | LINE_ITEM_NOT_FOUND       | Line item id doesn't exist (or not owned)
--------------|---------------------------|------------------------------------------
Transition    | INVALID_TRANSITION        | Status not in the kind's vocabulary, or
              |                           | target entity is in a terminal state
--------------|---------------------------|------------------------------------------
Persistence   | PERSISTENCE_ERROR         | Backing store failed a read or write
--------------|---------------------------|------------------------------------------
Consistency   | CONSISTENCY_VIOLATION     | Recomputed counts do not sum to total
--------------|---------------------------|------------------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT  | Sub-agreement changed under our feet
--------------|---------------------------|------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION    | UPDATE/DELETE of a status or activity row

===============================================================================
PROPAGATION
===============================================================================

- InvalidTransitionError and ConsistencyViolationError always reach the
  caller.
- PersistenceError on a primary status write aborts the whole propagation;
  the transaction owner rolls back.
- A failed activity write is NOT an exception at the caller boundary; it is
  reported on TransitionResult.activity_warning.
- ConcurrencyError is retryable (see db.engine.run_in_transaction).
"""


class AgreementKernelError(Exception):
    """
    Base exception for all agreement kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "AGREEMENT_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(AgreementKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_kind: str, entity_id: str):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind} not found: {entity_id}")


class AgreementNotFoundError(NotFoundError):
    """Agreement with given ID was not found."""

    code: str = "AGREEMENT_NOT_FOUND"

    def __init__(self, agreement_id: str):
        self.agreement_id = agreement_id
        super().__init__("agreement", agreement_id)


class SubAgreementNotFoundError(NotFoundError):
    """Sub-agreement with given ID was not found."""

    code: str = "SUB_AGREEMENT_NOT_FOUND"

    def __init__(self, sub_agreement_id: str):
        self.sub_agreement_id = sub_agreement_id
        super().__init__("sub-agreement", sub_agreement_id)


class LineItemNotFoundError(NotFoundError):
    """Line item with given ID was not found."""

    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, line_item_id: str):
        self.line_item_id = line_item_id
        super().__init__("line-item", line_item_id)


# Transition exceptions


class InvalidTransitionError(AgreementKernelError):
    """
    Requested status is not allowed for the entity.

    Raised before any write, either because the status is not a member of
    the entity kind's vocabulary or because the entity is in a state that
    does not accept the change (e.g. cancelled).
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_kind: str,
        entity_id: str,
        requested_status: str,
        reason: str,
    ):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.requested_status = requested_status
        self.reason = reason
        super().__init__(
            f"Invalid transition of {entity_kind} {entity_id} "
            f"to '{requested_status}': {reason}"
        )


# Persistence exceptions


class PersistenceError(AgreementKernelError):
    """The backing store failed a read or write."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


# Consistency exceptions


class ConsistencyViolationError(AgreementKernelError):
    """
    Recomputed sub-agreement counts do not add up.

    Indicates a concurrency bug or data corruption; never persisted.
    """

    code: str = "CONSISTENCY_VIOLATION"

    def __init__(
        self,
        sub_agreement_id: str,
        accepted: int,
        rejected: int,
        pending: int,
        total: int,
    ):
        self.sub_agreement_id = sub_agreement_id
        self.accepted = accepted
        self.rejected = rejected
        self.pending = pending
        self.total = total
        super().__init__(
            f"Inconsistent counts for sub-agreement {sub_agreement_id}: "
            f"accepted={accepted} + rejected={rejected} + pending={pending} "
            f"!= total={total}"
        )


# Concurrency exceptions


class ConcurrencyError(AgreementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(AgreementKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    StatusRecord and ActivityRecord rows are immutable from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
