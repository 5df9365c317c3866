"""Tests for Celery notification tasks."""

import logging
from datetime import datetime, timedelta
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import httpx
import pytest
from celery import Task
from celery.exceptions import Retry
from celery.signals import after_setup_logger

from shopinspect.core.config import Settings
from shopinspect.core.logger import PACKAGE_LOGGER
from shopinspect.core.workflow.actions import Action, QueuedAction
from shopinspect.db.models import InspectionStateHistory, NotificationLog
from shopinspect.workers import notification_tasks

from tests import factories


@pytest.fixture
def task_sessions(session_factory, monkeypatch):
    """Point the tasks at the test database."""
    monkeypatch.setattr(notification_tasks, "SessionLocal", session_factory)
    return session_factory


def _payload(action, inspection, shop, **kwargs):
    return QueuedAction(
        action=action,
        inspection_id=inspection.id,
        shop_id=shop.id,
        user_id=shop.manager.id,
        from_state="pending_review",
        to_state=inspection.workflow_state,
        **kwargs,
    ).to_payload()


class TestCeleryApp:

    def test_routes_and_schedule(self):
        conf = notification_tasks.celery_app.conf
        assert conf.task_serializer == "json"
        assert conf.task_routes[
            "shopinspect.workers.notification_tasks.deliver_workflow_action"
        ] == {"queue": "notifications"}
        assert "purge-expired-history" in conf.beat_schedule


class TestDeliverWorkflowAction:

    def test_notifies_managers(self, task_sessions, shop, make_inspection):
        inspection = make_inspection("pending_review")
        payload = _payload(Action.NOTIFY_MANAGERS, inspection, shop)

        result = notification_tasks.deliver_workflow_action(payload)

        assert result["action"] == "notify_managers"
        assert len(result["notifications"]) == 1
        with task_sessions() as db:
            assert db.query(NotificationLog).count() == 1

    def test_notifies_technician(self, task_sessions, shop, make_inspection):
        inspection = make_inspection("rejected")
        payload = _payload(Action.NOTIFY_TECHNICIAN, inspection, shop, reason="Brake photos missing")

        result = notification_tasks.deliver_workflow_action(payload)

        assert len(result["notifications"]) == 1
        with task_sessions() as db:
            log = db.query(NotificationLog).one()
        assert log.user_id == shop.technician.id
        assert log.event_type == "inspection_rejected"

    def test_sends_sms(self, task_sessions, shop, make_inspection):
        inspection = make_inspection("sent_to_customer")
        payload = _payload(Action.SEND_SMS, inspection, shop)

        result = notification_tasks.deliver_workflow_action(payload)

        assert result["action"] == "send_sms"
        with task_sessions() as db:
            log = db.query(NotificationLog).one()
        assert log.channel == "sms"
        assert log.recipient == "+15555550100"

    def test_unreachable_gateway_retried(self, task_sessions, shop, make_inspection):
        inspection = make_inspection("sent_to_customer")
        payload = _payload(Action.SEND_SMS, inspection, shop)
        error = httpx.ConnectError("gateway down")

        with patch.object(notification_tasks, "send_notification_sync", side_effect=error), \
                patch.object(Task, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                notification_tasks.deliver_workflow_action(payload)

        retry.assert_called_once_with(exc=error)

    def test_other_failures_not_retried(self, task_sessions, shop, make_inspection):
        inspection = make_inspection("draft")
        payload = _payload(Action.START_TIMER, inspection, shop)

        with patch.object(Task, "retry") as retry:
            with pytest.raises(ValueError):
                notification_tasks.deliver_workflow_action(payload)

        retry.assert_not_called()


class TestWorkerLogging:

    @pytest.fixture
    def package_logger(self):
        logger = logging.getLogger(PACKAGE_LOGGER)
        handlers, level = list(logger.handlers), logger.level
        logger.handlers = []
        yield logger
        for handler in logger.handlers:
            handler.close()
        logger.handlers = handlers
        logger.setLevel(level)

    def test_after_setup_logger_configures_package_logger(self, package_logger, monkeypatch, tmp_path):
        monkeypatch.setattr(
            notification_tasks, "settings", Settings(log_level="DEBUG", log_dir=str(tmp_path)),
        )

        after_setup_logger.send(sender=None, logger=logging.getLogger("celery"), loglevel=logging.INFO)

        assert package_logger.level == logging.DEBUG
        assert [type(h) for h in package_logger.handlers] == [RotatingFileHandler]
        assert (tmp_path / "shopinspect.log").exists()


class TestPurgeExpiredHistory:

    def test_purges_old_entries_only(self, task_sessions, db_session, make_inspection):
        inspection = make_inspection("in_progress")
        now = datetime.utcnow()
        factories.create_history_entry(
            db_session, inspection=inspection, from_state="draft", to_state="in_progress",
            changed_at=now - timedelta(days=45),
        )
        factories.create_history_entry(
            db_session, inspection=inspection, from_state="in_progress", to_state="pending_review",
            changed_at=now - timedelta(days=1),
        )
        db_session.commit()

        result = notification_tasks.purge_expired_history(retention_days=30)

        assert result["deleted"] == 1
        with task_sessions() as db:
            remaining = db.query(InspectionStateHistory).all()
        assert [h.to_state for h in remaining] == ["pending_review"]

    def test_zero_retention_purges_everything_older_than_now(self, task_sessions, db_session,
                                                            make_inspection):
        inspection = make_inspection("in_progress")
        factories.create_history_entry(
            db_session, inspection=inspection, from_state="draft", to_state="in_progress",
            changed_at=datetime.utcnow() - timedelta(hours=1),
        )
        db_session.commit()

        result = notification_tasks.purge_expired_history(retention_days=0)

        assert result["deleted"] == 1
