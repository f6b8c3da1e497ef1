"""
Derivation -- the one place aggregate statuses are computed.

Responsibility:
    Pure functions that turn line item statuses into sub-agreement counts
    and a sub-agreement status, and sub-agreement statuses into an
    agreement status.  The sync engine (write path) and the summary
    reporter's drift check (read path) both call these, so the two can
    never disagree about what a set of responses means.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Count sum: accepted + rejected + pending == total for any tally built
      from vocabulary statuses.  Rows with a status outside the line item
      vocabulary are counted in ``total`` only, so ``is_consistent`` is
      False and the engine refuses to persist.
    - Status is a function of counts: ``derive_sub_agreement_status`` reads
      nothing but the tally.
    - Derivation precedence is fixed:
        total == 0                     -> pending
        accepted == total              -> accepted
        rejected == total              -> rejected
        accepted > 0 and rejected > 0  -> partially-accepted
        rejected > 0 and accepted == 0 -> needs-attention
        otherwise                      -> pending

Failure modes:
    None.  All functions are total over their inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from agreement_kernel.domain.statuses import (
    DERIVABLE_AGREEMENT_STATUSES,
    AgreementStatus,
    LineItemStatus,
    SubAgreementStatus,
    UNCOUNTED_LINE_ITEM_STATUSES,
)


@dataclass(frozen=True)
class ResponseTally:
    """
    Counts for one sub-agreement's line items.

    ``accepted_value`` is the sum of ``value`` over accepted items.
    """

    accepted: int = 0
    rejected: int = 0
    pending: int = 0
    total: int = 0
    accepted_value: Decimal = Decimal("0")

    @property
    def is_consistent(self) -> bool:
        return self.accepted + self.rejected + self.pending == self.total

    @property
    def responded(self) -> int:
        return self.accepted + self.rejected

    @property
    def is_complete(self) -> bool:
        """Every counted item has an answer and there is at least one."""
        return self.pending == 0 and self.total > 0


def tally_line_items(
    items: Iterable[tuple[str, Decimal | None]],
) -> ResponseTally:
    """
    Count ``(status, value)`` pairs.

    Reassigned and cancelled items are skipped entirely.  Any other status
    that is not pending/accepted/rejected still increments ``total``.
    """
    accepted = rejected = pending = total = 0
    accepted_value = Decimal("0")
    for status, value in items:
        if status in UNCOUNTED_LINE_ITEM_STATUSES:
            continue
        total += 1
        if status == LineItemStatus.ACCEPTED.value:
            accepted += 1
            if value is not None:
                accepted_value += value
        elif status == LineItemStatus.REJECTED.value:
            rejected += 1
        elif status == LineItemStatus.PENDING.value:
            pending += 1
    return ResponseTally(
        accepted=accepted,
        rejected=rejected,
        pending=pending,
        total=total,
        accepted_value=accepted_value,
    )


def derive_sub_agreement_status(tally: ResponseTally) -> str:
    """Sub-agreement status as a function of its counts."""
    if tally.total == 0:
        return SubAgreementStatus.PENDING.value
    if tally.accepted == tally.total:
        return SubAgreementStatus.ACCEPTED.value
    if tally.rejected == tally.total:
        return SubAgreementStatus.REJECTED.value
    if tally.accepted > 0 and tally.rejected > 0:
        return SubAgreementStatus.PARTIALLY_ACCEPTED.value
    if tally.rejected > 0 and tally.accepted == 0:
        return SubAgreementStatus.NEEDS_ATTENTION.value
    return SubAgreementStatus.PENDING.value


def derive_agreement_status(
    current_status: str,
    sub_agreement_statuses: Sequence[str],
) -> str:
    """
    Agreement status given its sub-agreements' cached statuses.

    Returns ``current_status`` unchanged when the agreement is not awaiting
    responses (draft, completed, cancelled), when it has no live
    sub-agreements, or when every live sub-agreement is still pending.
    Cancelled sub-agreements are not live.
    """
    if current_status not in DERIVABLE_AGREEMENT_STATUSES:
        return current_status

    live = [
        s for s in sub_agreement_statuses
        if s != SubAgreementStatus.CANCELLED.value
    ]
    if not live:
        return current_status

    pending = sum(1 for s in live if s == SubAgreementStatus.PENDING.value)
    if pending == 0:
        return AgreementStatus.COMPLETED.value
    if pending < len(live):
        return AgreementStatus.IN_PROGRESS.value
    return current_status
