"""
AgreementService -- issuing agreements and sending them out.

Responsibility:
    Creates the Agreement -> SubAgreement -> LineItem hierarchy in ``draft``
    with an initial status record at every level, and moves a draft to
    ``sent`` so that responses start driving derivation.

Architecture position:
    Kernel > Services.  Writes initial statuses through EntityStatusService;
    delegates post-send derivation to AgreementSyncEngine.

Invariants enforced:
    - Initial cached counts equal the offered dates: pending == total.
    - One sub-agreement per counterparty, one line item per date.

Failure modes:
    - ValueError: duplicate counterparty or date in the request, or a
      request with no counterparties.
    - InvalidTransitionError: sending an agreement that is not a draft.
    - AgreementNotFoundError: unknown id.
    - PersistenceError: store failure.
"""

from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from agreement_kernel.domain.dtos import (
    IssuedAgreement,
    StatusOverrideResult,
    StatusScope,
    SubAgreementDraft,
)
from agreement_kernel.domain.statuses import (
    AgreementStatus,
    EntityKind,
    LineItemStatus,
    SubAgreementStatus,
)
from agreement_kernel.exceptions import AgreementNotFoundError, InvalidTransitionError
from agreement_kernel.logging_config import get_logger
from agreement_kernel.models.activity import ActivityAction
from agreement_kernel.models.agreement import Agreement, LineItem, SubAgreement
from agreement_kernel.services.activity_log import ActivityLogService
from agreement_kernel.services.base import BaseService
from agreement_kernel.services.entity_status_service import EntityStatusService
from agreement_kernel.services.sync_engine import AgreementSyncEngine

logger = get_logger("services.agreement")


def _check_drafts(sub_agreements: Sequence[SubAgreementDraft]) -> None:
    if not sub_agreements:
        raise ValueError("An agreement needs at least one counterparty")
    seen_counterparties: set[UUID] = set()
    for draft in sub_agreements:
        if draft.counterparty_id in seen_counterparties:
            raise ValueError(f"Duplicate counterparty: {draft.counterparty_id}")
        seen_counterparties.add(draft.counterparty_id)
        seen_dates: set[date] = set()
        for line in draft.line_items:
            if line.occurs_on in seen_dates:
                raise ValueError(
                    f"Duplicate date {line.occurs_on} for counterparty "
                    f"{draft.counterparty_id}"
                )
            seen_dates.add(line.occurs_on)


class AgreementService(BaseService[Agreement]):
    """
    Issuance and sending of agreements.

    Non-goals:
        - Does NOT edit an issued hierarchy (adding dates or counterparties
          after issue).
        - Does NOT deliver anything to counterparties; subscribers to the
          status notifier do that.
    """

    def __init__(
        self,
        session: Session,
        status_service: EntityStatusService,
        sync_engine: AgreementSyncEngine | None = None,
    ):
        super().__init__(session)
        self._status = status_service
        self._clock = status_service.clock
        self._engine = sync_engine or AgreementSyncEngine(session, status_service)
        self._activity = ActivityLogService(session, self._clock)

    def issue_agreement(
        self,
        title: str,
        sub_agreements: Sequence[SubAgreementDraft],
        actor_id: UUID,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> IssuedAgreement:
        """
        Create an agreement in ``draft`` with all its sub-agreements and
        line items, each with an initial status record.

        Raises:
            ValueError: Empty or duplicated request.
            PersistenceError: Store failure.
        """
        _check_drafts(sub_agreements)

        agreement = Agreement(
            title=title,
            period_start=period_start,
            period_end=period_end,
            status=AgreementStatus.DRAFT.value,
            created_by_id=actor_id,
        )
        self.session.add(agreement)
        self._flush("issue_agreement", "Agreement")

        created: list[tuple[SubAgreement, list[LineItem]]] = []
        for draft in sub_agreements:
            count = len(draft.line_items)
            sub = SubAgreement(
                agreement_id=agreement.id,
                counterparty_id=draft.counterparty_id,
                status=SubAgreementStatus.PENDING.value,
                accepted_count=0,
                rejected_count=0,
                pending_count=count,
                total_count=count,
                total_accepted_value=Decimal("0"),
                created_by_id=actor_id,
            )
            self.session.add(sub)
            self._flush("issue_agreement", "SubAgreement")
            items = []
            for line in draft.line_items:
                item = LineItem(
                    sub_agreement_id=sub.id,
                    occurs_on=line.occurs_on,
                    value=line.value,
                    status=LineItemStatus.PENDING.value,
                    created_by_id=actor_id,
                )
                self.session.add(item)
                items.append(item)
            created.append((sub, items))
        self._flush("issue_agreement", "LineItem")

        warnings: list[str] = []
        result = self._status.record_transition(
            EntityKind.AGREEMENT, agreement.id, AgreementStatus.DRAFT, actor_id
        )
        warnings.extend(result.warnings)
        line_item_count = 0
        for sub, items in created:
            result = self._status.record_transition(
                EntityKind.SUB_AGREEMENT,
                sub.id,
                SubAgreementStatus.PENDING,
                actor_id,
                scope=StatusScope(
                    parent_id=agreement.id,
                    counterparty_id=sub.counterparty_id,
                ),
            )
            warnings.extend(result.warnings)
            for item in items:
                result = self._status.record_transition(
                    EntityKind.LINE_ITEM,
                    item.id,
                    LineItemStatus.PENDING,
                    actor_id,
                    scope=StatusScope(
                        parent_id=sub.id,
                        counterparty_id=sub.counterparty_id,
                        occurs_on=item.occurs_on,
                    ),
                )
                warnings.extend(result.warnings)
                line_item_count += 1

        activity_warning = self._activity.record(
            actor_id=actor_id,
            action=ActivityAction.AGREEMENT_ISSUED,
            entity_kind=EntityKind.AGREEMENT.value,
            entity_id=agreement.id,
            description=f"Agreement '{title}' issued to {len(created)} counterparties",
            details={
                "counterparties": len(created),
                "line_items": line_item_count,
                "period_start": period_start,
                "period_end": period_end,
            },
        )
        if activity_warning:
            warnings.append(activity_warning)

        logger.info(
            "agreement_issued",
            extra={
                "agreement_id": str(agreement.id),
                "counterparties": len(created),
                "line_items": line_item_count,
            },
        )
        return IssuedAgreement(
            agreement_id=agreement.id,
            status=agreement.status,
            sub_agreement_ids={sub.counterparty_id: sub.id for sub, _ in created},
            line_item_count=line_item_count,
            warnings=tuple(warnings),
        )

    def send_agreement(self, agreement_id: UUID, actor_id: UUID) -> StatusOverrideResult:
        """
        Move a draft agreement to ``sent``, then derive once in case
        responses were captured while it was still a draft.

        Raises:
            AgreementNotFoundError: Unknown id.
            InvalidTransitionError: Agreement is not a draft.
        """
        agreement = self.session.get(Agreement, agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        if agreement.status != AgreementStatus.DRAFT.value:
            raise InvalidTransitionError(
                EntityKind.AGREEMENT.value,
                str(agreement_id),
                AgreementStatus.SENT.value,
                f"only a draft can be sent (status is {agreement.status})",
            )

        sent = self._engine.set_agreement_status(
            agreement_id, AgreementStatus.SENT, actor_id
        )
        status, _, warnings = self._engine.rederive_agreement(agreement_id, actor_id)

        logger.info(
            "agreement_sent",
            extra={"agreement_id": str(agreement_id), "agreement_status": status},
        )
        return StatusOverrideResult(
            entity_kind=EntityKind.AGREEMENT.value,
            entity_id=agreement_id,
            changed=True,
            previous_status=AgreementStatus.DRAFT.value,
            new_status=AgreementStatus.SENT.value,
            agreement_status=status,
            agreement_changed=True,
            warnings=sent.warnings + tuple(warnings),
        )
