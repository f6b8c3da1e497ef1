"""
Entity kinds and the statuses the kernel itself writes.

The full, labelled vocabulary of each kind lives in configuration (see
``agreement_kernel.domain.vocabulary``).  The enums here name only the values
that the sync engine and issuance service produce or branch on, so that the
derivation rules can be written without string literals.
"""

from enum import Enum


class EntityKind(str, Enum):
    """Kinds of tracked entity.

    Contract: AGREEMENT, SUB_AGREEMENT and LINE_ITEM form the synchronized
    hierarchy.  CONTRACT, COUNTERPARTY and EVENT are tracked with status
    history only; nothing is derived for them.
    """

    AGREEMENT = "agreement"
    SUB_AGREEMENT = "sub-agreement"
    LINE_ITEM = "line-item"
    CONTRACT = "contract"
    COUNTERPARTY = "counterparty"
    EVENT = "event"


HIERARCHY_KINDS: tuple[EntityKind, ...] = (
    EntityKind.AGREEMENT,
    EntityKind.SUB_AGREEMENT,
    EntityKind.LINE_ITEM,
)


class AgreementStatus(str, Enum):
    """Agreement lifecycle.

    Contract: DRAFT -> SENT -> IN_PROGRESS -> COMPLETED, with CANCELLED
    reachable from any non-cancelled state.  COMPLETED and CANCELLED are
    never left by derivation.
    """

    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Derivation only runs while the agreement is awaiting responses.
DERIVABLE_AGREEMENT_STATUSES: frozenset[str] = frozenset(
    {AgreementStatus.SENT.value, AgreementStatus.IN_PROGRESS.value}
)


class SubAgreementStatus(str, Enum):
    """Per-counterparty status, derived from line item counts."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PARTIALLY_ACCEPTED = "partially-accepted"
    NEEDS_ATTENTION = "needs-attention"
    CANCELLED = "cancelled"


class LineItemStatus(str, Enum):
    """Per-date response status.

    Contract: REASSIGNED and CANCELLED items are outside every count.
    CANCELLED is written only by agreement cancellation.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REASSIGNED = "reassigned"
    CANCELLED = "cancelled"


COUNTED_LINE_ITEM_STATUSES: frozenset[str] = frozenset(
    {
        LineItemStatus.PENDING.value,
        LineItemStatus.ACCEPTED.value,
        LineItemStatus.REJECTED.value,
    }
)

UNCOUNTED_LINE_ITEM_STATUSES: frozenset[str] = frozenset(
    {LineItemStatus.REASSIGNED.value, LineItemStatus.CANCELLED.value}
)


def status_value(value: str | Enum) -> str:
    """Plain string form of a kind or status, whether passed as enum or str."""
    if isinstance(value, Enum):
        return value.value
    return value
