# app/services/flow_conditions.py
"""
Edge condition evaluation and {{variable}} substitution for the flow executor.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

log = logging.getLogger("whatsaflow.flows.conditions")

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _parse_number(value: Any) -> Optional[float]:
    """Leading numeric prefix of value ("85 pts" -> 85.0); None when absent"""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_NUMBER.match(_as_text(value))
    return float(match.group(1)) if match else None


def _loose_equals(left: Any, right: Any) -> bool:
    """Equality that lets "85" match 85, as values typed in the editor are strings"""
    if left is None or right is None:
        return left is None and right is None
    if left == right:
        return True
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        try:
            return float(left) == float(right)
        except (TypeError, ValueError):
            return False
    return False


def evaluate_condition(condition: Optional[Dict[str, Any]], value: Any, variables: Dict[str, Any]) -> bool:
    """
    Evaluate an edge condition.

    Args:
        condition: {variable, operator, compareValue}; empty means "always"
        value: value of the condition node's variable
        variables: the execution's variable bag

    The condition's own `variable`, when set, overrides `value`.
    Operators: equals, contains, starts_with, greater_than, less_than.
    Anything else evaluates to True.
    """
    if not condition:
        return True

    try:
        operator = condition.get("operator")
        compare_value = condition.get("compareValue", condition.get("compare_value"))
        variable = condition.get("variable")
        actual = (variables or {}).get(variable) if variable else value

        if operator == "equals":
            return _loose_equals(actual, compare_value)
        if operator == "contains":
            return _as_text(compare_value).lower() in _as_text(actual).lower()
        if operator == "starts_with":
            return _as_text(actual).lower().startswith(_as_text(compare_value).lower())
        if operator in ("greater_than", "less_than"):
            left, right = _parse_number(actual), _parse_number(compare_value)
            if left is None or right is None:
                return False
            return left > right if operator == "greater_than" else left < right
        return True
    except Exception as e:
        log.error(f"❌ Error evaluating condition {condition}: {e}")
        return False


def replace_variables(text: Optional[str], variables: Optional[Dict[str, Any]]) -> str:
    """Replace every {{key}} in text with the value stored under key"""
    result = text or ""
    for key, value in (variables or {}).items():
        result = result.replace("{{" + str(key) + "}}", _as_text(value))
    return result
