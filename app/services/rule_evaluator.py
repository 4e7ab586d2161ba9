"""
Condition rule evaluation.

`evaluate` and `matches_targeting` are pure: they never touch the database
and never raise for malformed rules or values. A rule that cannot be
evaluated (unknown operator, non-numeric comparison, bad regex, missing
field) simply fails.

`evaluate_conditions` is the runtime entry point: it loads a funnel's
active conditions for a page, applies the targeting pre-filter, evaluates
the rest and bumps each condition's counters with a single SQL UPDATE.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.models.condition import FunnelCondition, ConditionOperator
from app.models.funnel import Funnel
from app.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


@dataclass
class EvaluationResult:
    passed: bool
    actions: List[Dict[str, Any]]
    rule_results: List[bool] = field(default_factory=list)


@dataclass
class ConditionEvaluation:
    condition: FunnelCondition
    passed: bool
    actions: List[Dict[str, Any]]


def resolve_field(context: Dict[str, Any], path: str) -> Any:
    """Look up `path` in the visitor context: flat key first, then dotted traversal"""
    if not isinstance(context, dict) or not isinstance(path, str):
        return MISSING
    if path in context:
        return context[path]

    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return MISSING
    return current


def _is_empty(value: Any) -> bool:
    if value is MISSING or value is None:
        return True
    if isinstance(value, (str, list, tuple, set, dict)):
        return len(value) == 0
    return False


def _scalar_equals(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    return str(actual) == str(expected)


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return any(_scalar_equals(item, expected) for item in actual)
    return _scalar_equals(actual, expected)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set)):
        return any(_scalar_equals(item, expected) for item in actual)
    if isinstance(actual, dict):
        return str(expected) in actual
    raise TypeError(f"contains is not defined for {type(actual).__name__}")


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not numeric")
    return float(value)


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    raise TypeError(f"expected a list, got {type(value).__name__}")


def _in_list(actual: Any, expected: Any) -> bool:
    options = _as_list(expected)
    candidates = actual if isinstance(actual, (list, tuple, set)) else [actual]
    return any(_scalar_equals(candidate, option) for candidate in candidates for option in options)


def _apply_operator(operator: ConditionOperator, actual: Any, expected: Any) -> bool:
    if operator == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if operator == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    # Every remaining operator needs a value to compare against
    if actual is MISSING:
        return False

    if operator == ConditionOperator.EQUALS:
        return _equals(actual, expected)
    if operator == ConditionOperator.NOT_EQUALS:
        return not _equals(actual, expected)
    if operator == ConditionOperator.CONTAINS:
        return _contains(actual, expected)
    if operator == ConditionOperator.NOT_CONTAINS:
        return not _contains(actual, expected)
    if operator == ConditionOperator.GREATER_THAN:
        return _to_number(actual) > _to_number(expected)
    if operator == ConditionOperator.LESS_THAN:
        return _to_number(actual) < _to_number(expected)
    if operator == ConditionOperator.IN_LIST:
        return _in_list(actual, expected)
    if operator == ConditionOperator.NOT_IN_LIST:
        return not _in_list(actual, expected)
    if operator == ConditionOperator.REGEX_MATCH:
        return re.search(str(expected), str(actual)) is not None
    return False


def evaluate_rule(rule: Any, context: Dict[str, Any]) -> bool:
    """Evaluate a single {field, operator, value} rule; any malformation is a failed rule"""
    if not isinstance(rule, dict):
        logger.debug("[RULES] Malformed rule ignored as failed: %r", rule)
        return False

    try:
        operator = ConditionOperator(rule.get("operator"))
    except ValueError:
        logger.debug("[RULES] Unknown operator %r treated as failed", rule.get("operator"))
        return False

    actual = resolve_field(context, rule.get("field"))
    if actual is MISSING:
        logger.debug("[RULES] Field %r missing from context", rule.get("field"))

    try:
        return bool(_apply_operator(operator, actual, rule.get("value")))
    except (TypeError, ValueError, re.error) as e:
        logger.debug("[RULES] %s on field %r not comparable: %s", operator.value, rule.get("field"), e)
        return False


def evaluate(condition: Any, context: Dict[str, Any]) -> EvaluationResult:
    """
    Evaluate a rule set against a visitor context.

    `condition` is anything exposing rules, logic_operator, actions and
    else_actions (a FunnelCondition row or a plain object). An empty rule
    list always passes.
    """
    rules = getattr(condition, "rules", None) or []
    logic = str(getattr(condition, "logic_operator", None) or "AND").upper()

    rule_results = [evaluate_rule(rule, context) for rule in rules]
    if not rule_results:
        passed = True
    elif logic == "OR":
        passed = any(rule_results)
    else:
        passed = all(rule_results)

    if passed:
        actions = list(getattr(condition, "actions", None) or [])
    else:
        actions = list(getattr(condition, "else_actions", None) or [])
    return EvaluationResult(passed=passed, actions=actions, rule_results=rule_results)


def _visitor_values(context: Dict[str, Any], *keys: str) -> set:
    values = set()
    for key in keys:
        value = resolve_field(context, key)
        if value is MISSING or value is None:
            continue
        items = value if isinstance(value, (list, tuple, set)) else [value]
        values.update(str(item).strip().lower() for item in items if item is not None)
    return values


_TARGETING_DIMENSIONS = {
    "segments": ("segment", "segments"),
    "tags": ("tag", "tags"),
    "devices": ("device",),
    "traffic_sources": ("traffic_source", "utm_source"),
}


def matches_targeting(targeting: Optional[Dict[str, Any]], context: Dict[str, Any]) -> bool:
    """Every non-empty targeting dimension must share at least one value with the visitor"""
    if not targeting or not isinstance(targeting, dict):
        return True

    for dimension, context_keys in _TARGETING_DIMENSIONS.items():
        configured = targeting.get(dimension) or []
        if not isinstance(configured, (list, tuple)) or not configured:
            continue
        wanted = {str(v).strip().lower() for v in configured}
        if not wanted & _visitor_values(context, *context_keys):
            return False
    return True


def _record_outcome(db: Session, condition_id: UUID, passed: bool) -> None:
    """Atomic counter bump; pass_rate is derived from the pre-update values in the same statement"""
    new_evaluations = FunnelCondition.evaluation_count + 1
    new_passed = FunnelCondition.passed_count + (1 if passed else 0)
    values = {
        FunnelCondition.evaluation_count: new_evaluations,
        FunnelCondition.pass_rate: new_passed * 100.0 / new_evaluations,
    }
    if passed:
        values[FunnelCondition.passed_count] = FunnelCondition.passed_count + 1
    else:
        values[FunnelCondition.failed_count] = FunnelCondition.failed_count + 1

    db.execute(
        update(FunnelCondition)
        .where(FunnelCondition.id == condition_id)
        .values(values)
        .execution_options(synchronize_session=False)
    )


def evaluate_conditions(
    db: Session,
    org_id: UUID,
    funnel_id: UUID,
    page_id: Optional[UUID],
    context: Dict[str, Any],
) -> List[ConditionEvaluation]:
    """Evaluate the funnel's active conditions that apply to `page_id` (or to every page)"""
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id, Funnel.org_id == org_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)

    query = db.query(FunnelCondition).filter(
        FunnelCondition.org_id == org_id,
        FunnelCondition.funnel_id == funnel_id,
        FunnelCondition.is_active.is_(True),
    )
    if page_id is not None:
        query = query.filter(or_(FunnelCondition.page_id == page_id, FunnelCondition.page_id.is_(None)))
    else:
        query = query.filter(FunnelCondition.page_id.is_(None))
    conditions = query.order_by(FunnelCondition.execution_order, FunnelCondition.created_at).all()

    results = []
    skipped = 0
    for condition in conditions:
        if not matches_targeting(condition.targeting, context):
            skipped += 1
            continue
        outcome = evaluate(condition, context)
        _record_outcome(db, condition.id, outcome.passed)
        results.append(ConditionEvaluation(condition=condition, passed=outcome.passed, actions=outcome.actions))

    db.commit()
    logger.info(
        "[RULES] Funnel %s page %s: %d evaluated, %d skipped by targeting",
        funnel_id, page_id, len(results), skipped,
    )
    return results
