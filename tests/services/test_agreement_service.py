"""
AgreementService: issuing the hierarchy in draft and sending it.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from agreement_kernel.domain.dtos import LineItemDraft, SubAgreementDraft
from agreement_kernel.domain.statuses import EntityKind
from agreement_kernel.exceptions import AgreementNotFoundError, InvalidTransitionError
from agreement_kernel.models.activity import ActivityAction, ActivityRecord
from agreement_kernel.models.agreement import Agreement, LineItem, SubAgreement


class TestIssueAgreement:
    def test_creates_hierarchy_in_draft(self, session, agreement_service, make_drafts, test_actor_id):
        drafts = make_drafts([3, 2])
        issued = agreement_service.issue_agreement("Summer tour", drafts, test_actor_id)

        assert issued.status == "draft"
        assert issued.line_item_count == 5
        assert set(issued.sub_agreement_ids) == {d.counterparty_id for d in drafts}

        agreement = session.get(Agreement, issued.agreement_id)
        assert agreement.title == "Summer tour"
        assert agreement.created_by_id == test_actor_id

        for draft in drafts:
            sub = session.get(SubAgreement, issued.sub_agreement_ids[draft.counterparty_id])
            count = len(draft.line_items)
            assert sub.status == "pending"
            assert (sub.accepted_count, sub.rejected_count, sub.pending_count, sub.total_count) == (
                0, 0, count, count,
            )
            assert sub.version == 1

    def test_initial_status_records_at_every_level(
        self, session, agreement_service, status_service, make_drafts, test_actor_id
    ):
        issued = agreement_service.issue_agreement("Gala", make_drafts([2]), test_actor_id)
        sub_id = next(iter(issued.sub_agreement_ids.values()))

        assert status_service.get_current_status(
            EntityKind.AGREEMENT, issued.agreement_id
        ).primary_status == "draft"
        sub_record = status_service.get_current_status(EntityKind.SUB_AGREEMENT, sub_id)
        assert sub_record.primary_status == "pending"
        assert sub_record.scope.parent_id == issued.agreement_id

        item_ids = session.execute(
            select(LineItem.id).where(LineItem.sub_agreement_id == sub_id)
        ).scalars().all()
        for item_id in item_ids:
            record = status_service.get_current_status(EntityKind.LINE_ITEM, item_id)
            assert record.primary_status == "pending"
            assert record.scope.parent_id == sub_id

    def test_issued_activity(self, session, agreement_service, make_drafts, test_actor_id):
        issued = agreement_service.issue_agreement("Gala", make_drafts([1, 1]), test_actor_id)
        activity = session.execute(
            select(ActivityRecord).where(
                ActivityRecord.entity_id == issued.agreement_id,
                ActivityRecord.action == ActivityAction.AGREEMENT_ISSUED.value,
            )
        ).scalar_one()
        assert activity.details["counterparties"] == 2

    def test_line_item_values_kept(self, session, agreement_service, test_actor_id):
        counterparty = uuid4()
        issued = agreement_service.issue_agreement(
            "Gala",
            [
                SubAgreementDraft(
                    counterparty,
                    (
                        LineItemDraft(date(2024, 5, 1), Decimal("250.00")),
                        LineItemDraft(date(2024, 5, 2)),
                    ),
                )
            ],
            test_actor_id,
        )
        values = session.execute(
            select(LineItem.value)
            .where(LineItem.sub_agreement_id == issued.sub_agreement_ids[counterparty])
            .order_by(LineItem.occurs_on)
        ).scalars().all()
        assert values == [Decimal("250.00"), None]

    def test_rejects_empty_request(self, agreement_service, test_actor_id):
        with pytest.raises(ValueError, match="at least one counterparty"):
            agreement_service.issue_agreement("Empty", [], test_actor_id)

    def test_rejects_duplicate_counterparty(self, agreement_service, make_drafts, test_actor_id):
        drafts = make_drafts([1])
        with pytest.raises(ValueError, match="Duplicate counterparty"):
            agreement_service.issue_agreement("Dup", drafts + drafts, test_actor_id)

    def test_rejects_duplicate_date(self, agreement_service, test_actor_id):
        day = LineItemDraft(date(2024, 5, 1))
        with pytest.raises(ValueError, match="Duplicate date"):
            agreement_service.issue_agreement(
                "Dup", [SubAgreementDraft(uuid4(), (day, day))], test_actor_id
            )


class TestSendAgreement:
    def test_draft_becomes_sent(self, session, agreement_service, issue_hierarchy, test_actor_id):
        hierarchy = issue_hierarchy([2], send=False)
        result = agreement_service.send_agreement(hierarchy.agreement_id, test_actor_id)

        assert result.new_status == "sent"
        assert result.agreement_status == "sent"
        agreement = session.get(Agreement, hierarchy.agreement_id)
        assert agreement.status == "sent"
        assert agreement.sent_at is not None

    def test_responses_captured_in_draft_derive_on_send(
        self, sync_engine, agreement_service, issue_hierarchy, test_actor_id
    ):
        hierarchy = issue_hierarchy([1, 1], send=False)
        first = hierarchy.sub_agreement_ids[0]
        result = sync_engine.set_line_item_status(
            hierarchy.line_item_ids[first][0], "accepted", test_actor_id
        )
        assert result.sub_agreement_status == "accepted"
        assert result.agreement_status == "draft"

        sent = agreement_service.send_agreement(hierarchy.agreement_id, test_actor_id)
        assert sent.agreement_status == "in-progress"

    def test_only_drafts_can_be_sent(self, agreement_service, issue_hierarchy, test_actor_id):
        hierarchy = issue_hierarchy([1])
        with pytest.raises(InvalidTransitionError, match="only a draft"):
            agreement_service.send_agreement(hierarchy.agreement_id, test_actor_id)

    def test_unknown_agreement(self, agreement_service, test_actor_id):
        with pytest.raises(AgreementNotFoundError):
            agreement_service.send_agreement(uuid4(), test_actor_id)
