"""
EntityStatusService: vocabulary checks, append-only history, scoped reads,
pagination and the best-effort activity feed.
"""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from agreement_kernel.domain.dtos import StatusScope
from agreement_kernel.domain.statuses import EntityKind
from agreement_kernel.exceptions import InvalidTransitionError
from agreement_kernel.models.activity import ActivityAction, ActivityRecord
from agreement_kernel.models.status_record import StatusRecord
from agreement_kernel.selectors.status_selector import MAX_HISTORY_LIMIT
from agreement_kernel.services.activity_log import ActivityLogService


class TestRecordTransition:
    """Writing status records."""

    def test_records_and_reads_back(self, status_service, test_actor_id):
        contract_id = uuid4()
        result = status_service.record_transition(
            EntityKind.CONTRACT, contract_id, "contract-sent", test_actor_id
        )

        assert result.activity_warning is None
        assert result.warnings == ()
        assert result.record.primary_status == "contract-sent"
        assert result.record.seq == 1

        current = status_service.get_current_status("contract", contract_id)
        assert current is not None
        assert current.id == result.record.id
        assert current.actor_id == test_actor_id
        assert current.display_status == "contract-sent"

    def test_unknown_status_rejected_before_write(self, session, status_service, test_actor_id):
        entity_id = uuid4()
        with pytest.raises(InvalidTransitionError) as exc_info:
            status_service.record_transition(EntityKind.LINE_ITEM, entity_id, "maybe", test_actor_id)

        assert exc_info.value.requested_status == "maybe"
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert status_service.get_history(EntityKind.LINE_ITEM, entity_id) == ()

    def test_unknown_kind_uses_default_vocabulary(self, status_service, test_actor_id):
        entity_id = uuid4()
        status_service.record_transition("invoice", entity_id, "confirmed", test_actor_id)
        with pytest.raises(InvalidTransitionError):
            status_service.record_transition("invoice", entity_id, "accepted", test_actor_id)

    def test_same_status_twice_writes_two_records(self, status_service, test_actor_id):
        """Deduplication is the sync engine's job, not the status service's."""
        entity_id = uuid4()
        status_service.record_transition("event", entity_id, "pending", test_actor_id)
        status_service.record_transition("event", entity_id, "pending", test_actor_id)
        history = status_service.get_history("event", entity_id)
        assert [r.seq for r in history] == [2, 1]

    def test_custom_status_and_metadata(self, status_service, test_actor_id):
        entity_id = uuid4()
        result = status_service.record_transition(
            "event",
            entity_id,
            "confirmed",
            test_actor_id,
            custom_status="Booked (tentative)",
            metadata={"venue": "Hall B", "nested": {"seats": [1, 2]}},
        )
        assert result.record.display_status == "Booked (tentative)"
        assert result.record.metadata["venue"] == "Hall B"
        with pytest.raises(TypeError):
            result.record.metadata["venue"] = "elsewhere"

    def test_effective_at_defaults_to_now(self, status_service, test_actor_id, deterministic_clock):
        result = status_service.record_transition("event", uuid4(), "draft", test_actor_id)
        assert result.record.effective_at == deterministic_clock.now()

        backdated = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = status_service.record_transition(
            "event", uuid4(), "draft", test_actor_id, effective_at=backdated
        )
        assert result.record.effective_at == backdated
        assert result.record.recorded_at == deterministic_clock.now()

    def test_seq_is_per_entity(self, status_service, test_actor_id):
        first, second = uuid4(), uuid4()
        status_service.record_transition("event", first, "draft", test_actor_id)
        status_service.record_transition("event", first, "pending", test_actor_id)
        result = status_service.record_transition("event", second, "draft", test_actor_id)
        assert result.record.seq == 1

    def test_logs_status_recorded(self, status_service, test_actor_id, captured_logs):
        entity_id = uuid4()
        status_service.record_transition("event", entity_id, "confirmed", test_actor_id)
        logs = [r for r in captured_logs() if r["message"] == "status_recorded"]
        assert logs[-1]["entity_id"] == str(entity_id)
        assert logs[-1]["new_status"] == "confirmed"


class TestActivityFeed:
    """The activity entry written next to each status record."""

    def test_activity_written(self, session, status_service, test_actor_id):
        entity_id = uuid4()
        status_service.record_transition(EntityKind.SUB_AGREEMENT, entity_id, "accepted", test_actor_id)

        activity = session.execute(
            select(ActivityRecord).where(ActivityRecord.entity_id == entity_id)
        ).scalar_one()
        assert activity.action == ActivityAction.STATUS_CHANGE.value
        assert activity.description == "sub-agreement status set to Accepted"
        assert activity.details["status"] == "accepted"

    def test_activity_failure_keeps_status_record(
        self, session, status_service, test_actor_id, monkeypatch, captured_logs
    ):
        def _fail(self, record):
            raise OperationalError("INSERT INTO activities", {}, Exception("disk full"))

        monkeypatch.setattr(ActivityLogService, "_insert", _fail)
        entity_id = uuid4()

        result = status_service.record_transition("event", entity_id, "confirmed", test_actor_id)

        assert result.activity_warning is not None
        assert "OperationalError" in result.activity_warning
        assert result.warnings == (result.activity_warning,)
        assert status_service.get_current_status("event", entity_id).primary_status == "confirmed"
        assert any(r["message"] == "activity_write_failed" for r in captured_logs())

        # The outer transaction is still usable
        status_service.record_transition("event", entity_id, "completed", test_actor_id)
        assert status_service.get_current_status("event", entity_id).primary_status == "completed"


class TestScopedReads:
    """Current status and history filtered by scope."""

    def test_current_status_per_parent(self, status_service, test_actor_id):
        counterparty_id = uuid4()
        event_a, event_b = uuid4(), uuid4()
        status_service.record_transition(
            "counterparty", counterparty_id, "accepted", test_actor_id,
            scope=StatusScope(parent_id=event_a),
        )
        status_service.record_transition(
            "counterparty", counterparty_id, "rejected", test_actor_id,
            scope=StatusScope(parent_id=event_b),
        )

        assert status_service.get_current_status(
            "counterparty", counterparty_id, StatusScope(parent_id=event_a)
        ).primary_status == "accepted"
        assert status_service.get_current_status(
            "counterparty", counterparty_id, StatusScope(parent_id=event_b)
        ).primary_status == "rejected"
        # Unscoped: most recent overall
        assert status_service.get_current_status(
            "counterparty", counterparty_id
        ).primary_status == "rejected"

    def test_scope_by_date(self, status_service, test_actor_id):
        counterparty_id = uuid4()
        for day, status in ((4, "accepted"), (5, "not-available")):
            status_service.record_transition(
                "counterparty", counterparty_id, status, test_actor_id,
                scope=StatusScope(occurs_on=date(2024, 3, day)),
            )
        history = status_service.get_history(
            "counterparty", counterparty_id, StatusScope(occurs_on=date(2024, 3, 4))
        )
        assert [r.primary_status for r in history] == ["accepted"]
        assert history[0].scope.occurs_on == date(2024, 3, 4)

    def test_unknown_entity(self, status_service):
        assert status_service.get_current_status("event", uuid4()) is None
        assert status_service.get_history("event", uuid4()) == ()

    def test_empty_scope_matches_everything(self, status_service, test_actor_id):
        entity_id = uuid4()
        status_service.record_transition(
            "event", entity_id, "draft", test_actor_id, scope=StatusScope(parent_id=uuid4())
        )
        assert StatusScope().is_empty
        assert status_service.get_current_status("event", entity_id, StatusScope()) is not None


class TestHistoryPagination:
    """Newest-first pages with a seq keyset."""

    def _record_many(self, status_service, actor_id, clock, count):
        entity_id = uuid4()
        statuses = ["draft", "pending", "confirmed", "in-progress", "completed"]
        for i in range(count):
            status_service.record_transition("event", entity_id, statuses[i % 5], actor_id)
            clock.tick()
        return entity_id

    def test_newest_first(self, status_service, test_actor_id, deterministic_clock):
        entity_id = self._record_many(status_service, test_actor_id, deterministic_clock, 3)
        history = status_service.get_history("event", entity_id)
        assert [r.primary_status for r in history] == ["confirmed", "pending", "draft"]

    def test_same_timestamp_ordered_by_seq(self, status_service, test_actor_id):
        entity_id = uuid4()
        for status in ("draft", "pending", "confirmed"):
            status_service.record_transition("event", entity_id, status, test_actor_id)
        assert status_service.get_current_status("event", entity_id).primary_status == "confirmed"

    def test_pages(self, status_service, test_actor_id, deterministic_clock):
        entity_id = self._record_many(status_service, test_actor_id, deterministic_clock, 5)

        first = status_service.get_history("event", entity_id, limit=2)
        assert [r.seq for r in first] == [5, 4]
        second = status_service.get_history("event", entity_id, limit=2, before_seq=first[-1].seq)
        assert [r.seq for r in second] == [3, 2]
        third = status_service.get_history("event", entity_id, limit=2, before_seq=second[-1].seq)
        assert [r.seq for r in third] == [1]

    @pytest.mark.parametrize("limit", [0, -1, MAX_HISTORY_LIMIT + 1])
    def test_limit_out_of_range(self, status_service, limit):
        with pytest.raises(ValueError):
            status_service.get_history("event", uuid4(), limit=limit)


class TestVocabularyLookup:
    def test_get_status_vocabulary(self, status_service):
        assert "needs-attention" in status_service.get_status_vocabulary(
            EntityKind.SUB_AGREEMENT
        ).values
        assert status_service.get_status_vocabulary("invoice").entity_kind == "default"

    def test_one_record_per_call(self, session, status_service, test_actor_id):
        entity_id = uuid4()
        status_service.record_transition("event", entity_id, "draft", test_actor_id)
        rows = session.execute(
            select(StatusRecord).where(StatusRecord.entity_id == entity_id)
        ).scalars().all()
        assert len(rows) == 1
