"""Tests for transition actions and the dispatcher."""

from datetime import datetime, timedelta
from uuid import uuid4

from shopinspect.core.workflow.actions import (
    Action,
    ActionCategory,
    ActionContext,
    ActionDispatcher,
    QUEUED_ACTIONS,
    resolve_action,
)
from shopinspect.db.models import Inspection

from tests import factories
from tests.conftest import RecordingNotifier


NOW = datetime(2026, 3, 2, 12, 0, 0)


def _context(db, inspection, **kwargs):
    return ActionContext(
        db=db,
        inspection_id=inspection.id,
        shop_id=inspection.shop_id,
        user_id=uuid4(),
        from_state="in_progress",
        to_state="pending_review",
        now=NOW,
        **kwargs,
    )


def _reload(db, inspection):
    db.expire_all()
    return db.get(Inspection, inspection.id)


class TestActionCatalog:
    """Test action identifiers and categories."""

    def test_categories(self):
        assert Action.SEND_SMS.category == ActionCategory.QUEUED
        assert Action.NOTIFY_MANAGERS in QUEUED_ACTIONS
        assert Action.START_TIMER.category == ActionCategory.TRANSACTIONAL
        assert Action.CREATE_CUSTOMER_LINK.category == ActionCategory.TRANSACTIONAL

    def test_resolve(self):
        assert resolve_action("start_timer") == Action.START_TIMER
        assert resolve_action("start_inspection_timer") == Action.START_TIMER
        assert resolve_action("launch_rockets") is None


class TestTransactionalActions:
    """Test actions that write through the session."""

    def test_start_timer(self, db_session):
        inspection = factories.create_inspection(db_session)
        ActionDispatcher().run([Action.START_TIMER], _context(db_session, inspection))
        assert _reload(db_session, inspection).started_at == NOW

    def test_calc_duration(self, db_session):
        inspection = factories.create_inspection(db_session)
        inspection.started_at = NOW - timedelta(minutes=95)
        db_session.flush()

        ActionDispatcher().run([Action.CALC_DURATION], _context(db_session, inspection))
        assert _reload(db_session, inspection).inspection_duration == 95

    def test_calc_duration_without_start(self, db_session):
        inspection = factories.create_inspection(db_session)
        ActionDispatcher().run([Action.CALC_DURATION], _context(db_session, inspection))
        assert _reload(db_session, inspection).inspection_duration is None

    def test_clear_rejection_reason(self, db_session):
        inspection = factories.create_inspection(db_session, rejection_reason="Blurry photos")
        ActionDispatcher().run([Action.CLEAR_REJECTION_REASON], _context(db_session, inspection))
        assert _reload(db_session, inspection).rejection_reason is None

    def test_create_customer_link(self, db_session):
        inspection = factories.create_inspection(db_session)
        ActionDispatcher().run([Action.CREATE_CUSTOMER_LINK], _context(db_session, inspection))
        token = _reload(db_session, inspection).customer_link_token
        assert token and len(token) >= 24

    def test_completion_actions(self, db_session):
        inspection = factories.create_inspection(db_session)
        ActionDispatcher().run(
            [Action.SET_COMPLETION_TIME, Action.PREPARE_CUSTOMER_REPORT],
            _context(db_session, inspection),
        )
        reloaded = _reload(db_session, inspection)
        assert reloaded.completed_at == NOW
        assert reloaded.customer_report_ready_at == NOW

    def test_actions_never_touch_version(self, db_session):
        inspection = factories.create_inspection(db_session, version=4)
        ActionDispatcher().run(
            [Action.START_TIMER, Action.RECORD_COMPLETION],
            _context(db_session, inspection),
        )
        assert _reload(db_session, inspection).version == 4


class TestQueuedActions:
    """Test staging and delivery of external side effects."""

    def test_staged_until_flush(self, db_session):
        notifier = RecordingNotifier()
        dispatcher = ActionDispatcher(notifier)
        inspection = factories.create_inspection(db_session)
        context = _context(db_session, inspection, warnings=["1 critical safety items found"])

        dispatcher.run([Action.NOTIFY_MANAGERS], context)
        assert notifier.sent == []
        assert len(context.queued) == 1

        failed = dispatcher.flush(context)
        assert failed == []
        assert notifier.actions == ["notify_managers"]
        assert notifier.sent[0].details["warnings"] == ["1 critical safety items found"]
        assert context.queued == []

    def test_payload_is_json_ready(self, db_session):
        inspection = factories.create_inspection(db_session)
        context = _context(db_session, inspection, reason="Missing photos")
        ActionDispatcher().run([Action.NOTIFY_TECHNICIAN], context)

        payload = context.queued[0].to_payload()
        assert payload["action"] == "notify_technician"
        assert payload["inspection_id"] == str(inspection.id)
        assert payload["reason"] == "Missing photos"
        assert payload["queued_at"] == NOW.isoformat()

    def test_delivery_failure_is_reported_not_raised(self, db_session):
        dispatcher = ActionDispatcher(RecordingNotifier(fail=True))
        inspection = factories.create_inspection(db_session)
        context = _context(db_session, inspection)

        dispatcher.run([Action.SEND_SMS], context)
        assert dispatcher.flush(context) == ["send_sms"]

    def test_unknown_action_skipped(self, db_session):
        inspection = factories.create_inspection(db_session)
        context = _context(db_session, inspection)
        ActionDispatcher().run(["launch_rockets", Action.START_TIMER], context)
        assert context.skipped == ["launch_rockets"]
        assert context.executed == ["start_timer"]
