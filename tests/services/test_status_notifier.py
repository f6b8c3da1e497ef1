"""
StatusChangeNotifier: nothing is published before commit, rolled back work
is never published, and a failing subscriber cannot break the write path.
"""

from uuid import uuid4

import pytest

from agreement_kernel.domain.dtos import StatusChange
from agreement_kernel.services.entity_status_service import EntityStatusService
from agreement_kernel.services.notifier import StatusChangeNotifier


@pytest.fixture
def committing_status_service(committing_session, vocabulary, deterministic_clock, notifier):
    return EntityStatusService(committing_session, vocabulary, deterministic_clock, notifier)


class TestPublication:
    def test_published_after_commit(
        self, committing_session, committing_status_service, notifier, test_actor_id
    ):
        received: list[StatusChange] = []
        notifier.subscribe(received.append)
        entity_id = uuid4()

        committing_status_service.record_transition("event", entity_id, "confirmed", test_actor_id)
        assert received == []
        assert len(notifier.pending(committing_session)) == 1

        committing_session.commit()

        assert [c.entity_id for c in received] == [entity_id]
        assert received[0].new_status == "confirmed"
        assert received[0].actor_id == test_actor_id
        assert notifier.pending(committing_session) == ()

    def test_nothing_published_on_rollback(
        self, committing_session, committing_status_service, notifier, test_actor_id
    ):
        received: list[StatusChange] = []
        notifier.subscribe(received.append)

        committing_status_service.record_transition("event", uuid4(), "confirmed", test_actor_id)
        committing_session.rollback()
        committing_session.commit()

        assert received == []

    def test_savepoint_release_does_not_publish(
        self, committing_session, committing_status_service, notifier, test_actor_id
    ):
        """Activity writes and seq allocation release savepoints mid-transaction."""
        received: list[StatusChange] = []
        notifier.subscribe(received.append)
        entity_id = uuid4()

        committing_status_service.record_transition("event", entity_id, "draft", test_actor_id)
        committing_status_service.record_transition("event", entity_id, "pending", test_actor_id)
        assert received == []

        committing_session.commit()
        assert [c.new_status for c in received] == ["draft", "pending"]

    def test_subscriber_failure_is_logged_not_raised(
        self, committing_session, committing_status_service, notifier, test_actor_id, captured_logs
    ):
        received: list[StatusChange] = []

        def _broken(change):
            raise RuntimeError("socket closed")

        notifier.subscribe(_broken)
        notifier.subscribe(received.append)

        committing_status_service.record_transition("event", uuid4(), "confirmed", test_actor_id)
        committing_session.commit()

        assert len(received) == 1
        assert any(r["message"] == "status_change_subscriber_failed" for r in captured_logs())


class TestSubscriptions:
    def test_unsubscribe(self):
        notifier = StatusChangeNotifier()
        unsubscribe = notifier.subscribe(lambda change: None)
        assert notifier.subscriber_count == 1
        unsubscribe()
        assert notifier.subscriber_count == 0
        # Second call is harmless
        unsubscribe()

    def test_checkpoint_and_discard(self, session, notifier, test_actor_id, deterministic_clock):
        change = StatusChange(
            entity_kind="event",
            entity_id=uuid4(),
            new_status="draft",
            actor_id=test_actor_id,
            recorded_at=deterministic_clock.now(),
        )
        notifier.stage(session, change)
        mark = notifier.checkpoint(session)
        notifier.stage(session, change)
        notifier.discard_since(session, mark)
        assert notifier.pending(session) == (change,)
