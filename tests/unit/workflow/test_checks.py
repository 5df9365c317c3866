"""Tests for workflow conditions and validations."""

from uuid import uuid4

import pytest

from shopinspect.core.workflow.checks import (
    CheckResult,
    Condition,
    SqlInspectionData,
    Validation,
    WorkflowEvaluator,
    resolve_condition,
)
from shopinspect.core.workflow.request import CallerContext, TransitionRequest
from shopinspect.core.workflow.states import Role, TransitionRule, WorkflowState, rule_for

from tests import factories


class FakeData:
    """In-memory InspectionDataSource."""

    def __init__(self, items=(), phone="+15555550100"):
        self.items = list(items)
        self.phone = phone

    def count_items(self, inspection_id):
        return len(self.items)

    def count_unscored_items(self, inspection_id):
        return sum(1 for c in self.items if c is None)

    def count_items_in_condition(self, inspection_id, condition):
        return sum(1 for c in self.items if c == condition)

    def customer_phone(self, inspection_id):
        return self.phone


def _request(from_state, to_state, role=Role.SHOP_MANAGER, reason=None):
    return TransitionRequest(
        inspection_id=uuid4(),
        from_state=from_state,
        to_state=to_state,
        caller=CallerContext(user_id=uuid4(), role=role, shop_id=uuid4()),
        reason=reason,
    )


class TestConditions:
    """Test individual condition handlers."""

    def test_may_add_items_always_passes(self):
        evaluator = WorkflowEvaluator(FakeData())
        result = evaluator.check_condition(Condition.MAY_ADD_ITEMS, _request("draft", "in_progress"))
        assert result.ok

    def test_has_items(self):
        evaluator = WorkflowEvaluator(FakeData(items=[]))
        result = evaluator.check_condition(Condition.HAS_ITEMS, _request("in_progress", "pending_review"))
        assert not result.ok
        assert "at least one item" in result.errors[0]
        assert "(has_items)" in result.errors[0]

    def test_all_items_scored(self):
        evaluator = WorkflowEvaluator(FakeData(items=["good", None, None]))
        result = evaluator.check_condition("all_items_scored", _request("in_progress", "pending_review"))
        assert not result.ok
        assert "2 unscored" in result.errors[0]

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required_rejects_blank(self, reason):
        evaluator = WorkflowEvaluator(FakeData())
        result = evaluator.check_condition(
            Condition.REASON_REQUIRED, _request("pending_review", "rejected", reason=reason)
        )
        assert not result.ok

    def test_reason_required_accepts_text(self):
        evaluator = WorkflowEvaluator(FakeData())
        result = evaluator.check_condition(
            Condition.REASON_REQUIRED, _request("pending_review", "rejected", reason="Missing photos")
        )
        assert result.ok

    def test_customer_has_phone(self):
        evaluator = WorkflowEvaluator(FakeData(phone=None))
        result = evaluator.check_condition(
            Condition.CUSTOMER_HAS_PHONE, _request("approved", "sent_to_customer")
        )
        assert not result.ok
        assert "customer_has_phone" in result.errors[0]

    def test_legacy_alias(self):
        assert resolve_condition("customer_contact_info") == Condition.CUSTOMER_HAS_PHONE

    def test_unknown_condition_warns(self):
        evaluator = WorkflowEvaluator(FakeData())
        result = evaluator.check_condition("moon_is_full", _request("draft", "in_progress"))
        assert result.ok
        assert result.warnings == ["Unknown condition: moon_is_full"]


class TestValidations:
    """Test individual validation handlers."""

    def test_check_critical_items_only_warns(self):
        evaluator = WorkflowEvaluator(FakeData(items=["needs_immediate", "good"]))
        result = evaluator.check_validation(
            Validation.CHECK_CRITICAL_ITEMS, _request("in_progress", "pending_review")
        )
        assert result.ok
        assert result.warnings == ["1 critical safety items found - requires manager approval"]

    def test_no_blocking_critical_items(self):
        evaluator = WorkflowEvaluator(FakeData(items=["needs_immediate", "needs_immediate"]))
        result = evaluator.check_validation(
            Validation.NO_BLOCKING_CRITICAL_ITEMS, _request("pending_review", "approved")
        )
        assert not result.ok
        assert "cannot approve with unresolved critical items" in result.errors[0].lower()
        assert "2 critical" in result.errors[0]

    def test_unknown_validation_warns(self):
        evaluator = WorkflowEvaluator(FakeData())
        result = evaluator.check_validation("credit_check", _request("draft", "in_progress"))
        assert result.ok
        assert result.warnings == ["Unknown validation: credit_check"]


class TestRuleEvaluation:
    """Test aggregation across a rule."""

    def test_collects_every_failure(self):
        rule = TransitionRule(
            WorkflowState.IN_PROGRESS,
            WorkflowState.PENDING_REVIEW,
            frozenset({Role.TECHNICIAN}),
            conditions=(Condition.ALL_ITEMS_SCORED, Condition.REASON_REQUIRED),
            validations=(Validation.NO_BLOCKING_CRITICAL_ITEMS,),
        )
        data = FakeData(items=[None, "needs_immediate"])
        evaluation = WorkflowEvaluator(data).evaluate(rule, _request("in_progress", "pending_review"))

        assert not evaluation.ok
        assert len(evaluation.condition_errors) == 2
        assert len(evaluation.validation_errors) == 1
        assert len(evaluation.errors) == 3
        assert evaluation.failed_checks == [
            "all_items_scored", "reason_required", "no_blocking_critical_items",
        ]

    def test_warnings_survive_success(self):
        rule = rule_for(WorkflowState.IN_PROGRESS, WorkflowState.PENDING_REVIEW)
        data = FakeData(items=["needs_immediate"])
        evaluation = WorkflowEvaluator(data).evaluate(rule, _request("in_progress", "pending_review"))
        assert evaluation.ok
        assert len(evaluation.warnings) == 1

    def test_check_result_helpers(self):
        result = CheckResult().warn("heads up").fail("nope")
        assert not result.ok
        assert result.errors == ["nope"]
        assert result.warnings == ["heads up"]


class TestSqlInspectionData:
    """Test the SQLAlchemy-backed data source."""

    def test_counts(self, db_session):
        inspection = factories.create_inspection(db_session)
        factories.create_item(db_session, inspection=inspection, condition="good")
        factories.create_item(db_session, inspection=inspection, condition="needs_immediate")
        factories.create_item(db_session, inspection=inspection, condition=None)

        data = SqlInspectionData(db_session)
        assert data.count_items(inspection.id) == 3
        assert data.count_unscored_items(inspection.id) == 1
        assert data.count_items_in_condition(inspection.id, "needs_immediate") == 1

    def test_customer_phone(self, db_session):
        shop = factories.create_shop(db_session)
        customer = factories.create_customer(db_session, shop=shop, phone="+15555550199")
        vehicle = factories.create_vehicle(db_session, shop=shop, customer=customer)
        inspection = factories.create_inspection(db_session, shop=shop, vehicle=vehicle)

        assert SqlInspectionData(db_session).customer_phone(inspection.id) == "+15555550199"

    def test_customer_phone_without_customer(self, db_session):
        inspection = factories.create_inspection(db_session)
        assert SqlInspectionData(db_session).customer_phone(inspection.id) is None
