"""
Module: agreement_kernel.selectors.summary_reporter
Responsibility: Read-only aggregate views of an agreement: the summary shown
    to schedulers, the list of sub-agreements, and a drift check that
    compares cached counts and statuses against the line items.
Architecture position: Kernel > Selectors.  Uses domain/derivation.py so the
    drift check applies exactly the rules the sync engine applies.

Invariants enforced:
    - get_agreement_summary reads cached fields only; it never derives.
    - find_drift never writes.

Failure modes:
    - AgreementNotFoundError for an unknown agreement id.

Audit relevance:
    find_drift is the compliance check for the derived cache: an empty
    result means every live sub-agreement's counts and status are what its
    line items imply.
"""

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select

from agreement_kernel.domain.derivation import (
    ResponseTally,
    derive_sub_agreement_status,
    tally_line_items,
)
from agreement_kernel.domain.dtos import AgreementSummary, DriftFinding, SubAgreementInfo
from agreement_kernel.domain.statuses import SubAgreementStatus
from agreement_kernel.exceptions import AgreementNotFoundError
from agreement_kernel.models.agreement import Agreement, LineItem, SubAgreement
from agreement_kernel.selectors.base import BaseSelector

_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


def percentage(part: int, whole: int) -> Decimal:
    """``part`` as a percentage of ``whole``, two decimal places; 0 when whole is 0."""
    if whole <= 0:
        return Decimal("0.00")
    return (Decimal(part) * _HUNDRED / Decimal(whole)).quantize(_CENT, rounding=ROUND_HALF_UP)


class SummaryReporter(BaseSelector[SubAgreement]):
    """
    Aggregate reporting over one agreement.

    Contract:
        Rates are Decimal percentages with two decimal places.
        ``response_rate`` is responded counterparties over all
        counterparties; ``rejection_rate`` is rejected items over all
        counted items.
    """

    def _agreement(self, agreement_id: UUID) -> Agreement:
        agreement = self.session.get(Agreement, agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    def _sub_agreements(self, agreement_id: UUID) -> list[SubAgreement]:
        return list(
            self.session.execute(
                select(SubAgreement)
                .where(SubAgreement.agreement_id == agreement_id)
                .order_by(SubAgreement.id)
            ).scalars()
        )

    def list_sub_agreements(self, agreement_id: UUID) -> tuple[SubAgreementInfo, ...]:
        self._agreement(agreement_id)
        return tuple(
            SubAgreementInfo.from_model(sub)
            for sub in self._sub_agreements(agreement_id)
        )

    def get_agreement_summary(self, agreement_id: UUID) -> AgreementSummary:
        agreement = self._agreement(agreement_id)
        subs = self._sub_agreements(agreement_id)

        by_status: dict[str, int] = {}
        for sub in subs:
            by_status[sub.status] = by_status.get(sub.status, 0) + 1

        pending = by_status.get(SubAgreementStatus.PENDING.value, 0)
        cancelled = by_status.get(SubAgreementStatus.CANCELLED.value, 0)
        responded = len(subs) - pending - cancelled

        accepted_items = sum(s.accepted_count for s in subs)
        rejected_items = sum(s.rejected_count for s in subs)
        pending_items = sum(s.pending_count for s in subs)
        total_items = sum(s.total_count for s in subs)
        accepted_value = sum(
            (s.total_accepted_value or Decimal("0") for s in subs),
            Decimal("0"),
        )

        return AgreementSummary(
            agreement_id=agreement.id,
            agreement_status=agreement.status,
            total_counterparties=len(subs),
            responded_counterparties=responded,
            fully_accepted=by_status.get(SubAgreementStatus.ACCEPTED.value, 0),
            partially_accepted=by_status.get(SubAgreementStatus.PARTIALLY_ACCEPTED.value, 0),
            fully_rejected=by_status.get(SubAgreementStatus.REJECTED.value, 0),
            needs_attention=by_status.get(SubAgreementStatus.NEEDS_ATTENTION.value, 0),
            pending_counterparties=pending,
            cancelled_counterparties=cancelled,
            response_rate=percentage(responded, len(subs)),
            accepted_items=accepted_items,
            rejected_items=rejected_items,
            pending_items=pending_items,
            total_items=total_items,
            accepted_value=accepted_value,
            rejection_rate=percentage(rejected_items, total_items),
        )

    def find_drift(self, agreement_id: UUID) -> tuple[DriftFinding, ...]:
        """
        Live sub-agreements whose cached counts or status disagree with a
        fresh tally of their line items.  Cancelled sub-agreements are
        skipped; their counts are frozen at cancellation.
        """
        self._agreement(agreement_id)
        findings: list[DriftFinding] = []
        for sub in self._sub_agreements(agreement_id):
            if sub.status == SubAgreementStatus.CANCELLED.value:
                continue
            rows = self.session.execute(
                select(LineItem.status, LineItem.value)
                .where(LineItem.sub_agreement_id == sub.id)
            ).all()
            derived = tally_line_items((row.status, row.value) for row in rows)
            cached = ResponseTally(
                accepted=sub.accepted_count,
                rejected=sub.rejected_count,
                pending=sub.pending_count,
                total=sub.total_count,
                accepted_value=sub.total_accepted_value or Decimal("0"),
            )
            finding = DriftFinding(
                sub_agreement_id=sub.id,
                cached_status=sub.status,
                derived_status=derive_sub_agreement_status(derived),
                cached=cached,
                derived=derived,
            )
            if finding.status_drift or finding.count_drift:
                findings.append(finding)
        return tuple(findings)
