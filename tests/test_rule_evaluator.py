"""Rule evaluation and targeting"""
from types import SimpleNamespace

import pytest

from app.core.exceptions import NotFoundError
from app.models.condition import FunnelCondition
from app.services import rule_evaluator
from app.services.rule_evaluator import MISSING, evaluate, evaluate_rule, matches_targeting, resolve_field


def _condition(rules, logic="AND", actions=None, else_actions=None):
    return SimpleNamespace(
        rules=rules,
        logic_operator=logic,
        actions=actions or [{"type": "show_element", "element_id": "bonus"}],
        else_actions=else_actions or [{"type": "hide_element", "element_id": "bonus"}],
    )


def test_resolve_field_prefers_flat_key():
    context = {"utm.source": "flat", "utm": {"source": "nested"}}
    assert resolve_field(context, "utm.source") == "flat"
    assert resolve_field({"utm": {"source": "nested"}}, "utm.source") == "nested"
    assert resolve_field({"utm": {}}, "utm.source") is MISSING


@pytest.mark.parametrize("rule, context, expected", [
    ({"field": "age", "operator": "equals", "value": "30"}, {"age": 30}, True),
    ({"field": "country", "operator": "not_equals", "value": "US"}, {"country": "CA"}, True),
    ({"field": "email", "operator": "contains", "value": "@acme"}, {"email": "jo@acme.io"}, True),
    ({"field": "tags", "operator": "contains", "value": "vip"}, {"tags": ["new", "vip"]}, True),
    ({"field": "cart_total", "operator": "greater_than", "value": 100}, {"cart_total": "150.5"}, True),
    ({"field": "cart_total", "operator": "less_than", "value": 100}, {"cart_total": 150}, False),
    ({"field": "plan", "operator": "in_list", "value": ["pro", "team"]}, {"plan": "team"}, True),
    ({"field": "plan", "operator": "in_list", "value": "pro, team"}, {"plan": "pro"}, True),
    ({"field": "plan", "operator": "not_in_list", "value": ["pro"]}, {"plan": "free"}, True),
    ({"field": "coupon", "operator": "is_empty"}, {"coupon": ""}, True),
    ({"field": "coupon", "operator": "is_empty"}, {}, True),
    ({"field": "coupon", "operator": "is_not_empty"}, {"coupon": "SAVE10"}, True),
    ({"field": "phone", "operator": "regex_match", "value": r"^\+1"}, {"phone": "+15551234"}, True),
])
def test_operators(rule, context, expected):
    assert evaluate_rule(rule, context) is expected


@pytest.mark.parametrize("rule, context", [
    ({"field": "age", "operator": "equals", "value": 30}, {}),
    ({"field": "age", "operator": "not_equals", "value": 30}, {}),
    ({"field": "age", "operator": "greater_than", "value": 18}, {"age": "adult"}),
    ({"field": "age", "operator": "greater_than", "value": 18}, {"age": True}),
    ({"field": "name", "operator": "regex_match", "value": "[unclosed"}, {"name": "x"}),
    ({"field": "name", "operator": "sounds_like", "value": "x"}, {"name": "x"}),
    ({"field": "count", "operator": "contains", "value": 1}, {"count": 12}),
    ("not a rule", {"name": "x"}),
])
def test_malformed_rules_fail_without_raising(rule, context):
    """Missing fields, bad types and bad patterns make the rule fail"""
    assert evaluate_rule(rule, context) is False


_DEVICE_AND_SOURCE = [
    {"field": "device", "operator": "equals", "value": "mobile"},
    {"field": "traffic_source", "operator": "equals", "value": "paid"},
]


@pytest.mark.parametrize("device_ok", [True, False])
@pytest.mark.parametrize("source_ok", [True, False])
@pytest.mark.parametrize("logic", ["AND", "OR"])
def test_logic_operator_truth_table(logic, device_ok, source_ok):
    context = {
        "device": "mobile" if device_ok else "desktop",
        "traffic_source": "paid" if source_ok else "organic",
    }
    expected = (device_ok and source_ok) if logic == "AND" else (device_ok or source_ok)

    result = evaluate(_condition(_DEVICE_AND_SOURCE, logic=logic), context)

    assert result.rule_results == [device_ok, source_ok]
    assert result.passed is expected
    if expected:
        assert result.actions == [{"type": "show_element", "element_id": "bonus"}]
    else:
        assert result.actions == [{"type": "hide_element", "element_id": "bonus"}]


def test_empty_rule_set_passes():
    result = evaluate(_condition([]), {})
    assert result.passed is True
    assert result.rule_results == []


def test_targeting_dimensions():
    targeting = {"devices": ["Mobile"], "traffic_sources": ["facebook", "paid"]}
    assert matches_targeting(targeting, {"device": "mobile", "traffic_source": "paid"})
    # utm_source stands in for the traffic source
    assert matches_targeting(targeting, {"device": "MOBILE", "utm_source": "Facebook"})
    assert not matches_targeting(targeting, {"device": "desktop", "traffic_source": "paid"})
    assert not matches_targeting({"segments": ["vip"]}, {"segments": ["new"]})
    assert matches_targeting({"segments": [], "tags": []}, {})
    assert matches_targeting(None, {})


def _stored_condition(db, funnel, name, rules, page_id=None, order=0, targeting=None, is_active=True):
    condition = FunnelCondition(
        org_id=funnel.org_id,
        funnel_id=funnel.id,
        page_id=page_id,
        name=name,
        rules=rules,
        actions=[{"type": "show_element", "element_id": name}],
        else_actions=[],
        targeting=targeting,
        execution_order=order,
        is_active=is_active,
    )
    db.add(condition)
    db.commit()
    return condition


def test_evaluate_conditions_filters_and_counts(db, funnel, pages):
    landing, checkout = pages[0], pages[1]
    mobile_only = {"field": "device", "operator": "equals", "value": "mobile"}
    _stored_condition(db, funnel, "global", [], order=2)
    on_landing = _stored_condition(db, funnel, "landing", [mobile_only], page_id=landing.id, order=1)
    _stored_condition(db, funnel, "checkout", [], page_id=checkout.id)
    _stored_condition(db, funnel, "paused", [], is_active=False)
    targeted = _stored_condition(db, funnel, "vip", [], targeting={"segments": ["vip"]})

    results = rule_evaluator.evaluate_conditions(db, funnel.org_id, funnel.id, landing.id, {"device": "desktop"})

    assert [r.condition.name for r in results] == ["landing", "global"]
    assert [r.passed for r in results] == [False, True]

    rule_evaluator.evaluate_conditions(db, funnel.org_id, funnel.id, landing.id, {"device": "mobile"})
    db.refresh(on_landing)
    db.refresh(targeted)
    assert on_landing.evaluation_count == 2
    assert on_landing.passed_count == 1
    assert on_landing.failed_count == 1
    assert on_landing.pass_rate == pytest.approx(50.0)
    assert targeted.evaluation_count == 0


def test_evaluate_conditions_is_tenant_scoped(db, funnel, other_org):
    with pytest.raises(NotFoundError):
        rule_evaluator.evaluate_conditions(db, other_org.id, funnel.id, None, {})
