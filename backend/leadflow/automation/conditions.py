"""Branch and condition evaluation against a CRM record snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

NONE_BRANCH_ID = "none"
ASSIGNED_TO_ANYONE = "any"
TEMPERATURES = ("HOT", "WARM", "COLD")

VALUE_OPERATORS = frozenset({"equals", "not_equals", "contains"})
PRESENCE_OPERATORS = frozenset({"is_empty", "is_not_empty"})
COMBINATORS = frozenset({"AND", "OR"})

_SCALAR_OPERATORS = frozenset({"equals", "not_equals"}) | PRESENCE_OPERATORS
_SET_OPERATORS = VALUE_OPERATORS | PRESENCE_OPERATORS

FIELD_OPERATORS: dict[str, frozenset[str]] = {
    "status": _SCALAR_OPERATORS,
    "temperature": _SCALAR_OPERATORS,
    "isComplete": frozenset({"equals", "not_equals"}),
    "hasTag": _SET_OPERATORS,
    "hasMotivation": _SET_OPERATORS,
    "isAssigned": _SCALAR_OPERATORS,
}

_RECORD_ATTRIBUTES = {
    "status": "status_id",
    "temperature": "temperature",
    "isComplete": "is_complete",
    "hasTag": "tag_ids",
    "hasMotivation": "motivation_ids",
    "isAssigned": "assigned_to_id",
}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, frozenset, set, list, tuple)):
        return len(value) == 0
    return False


def matches(condition: Any, record: Any) -> bool:
    """Return whether a single condition holds for the record."""

    field = condition.field
    operator = condition.operator
    expected = condition.value
    actual = getattr(record, _RECORD_ATTRIBUTES[field])

    if operator == "is_empty":
        return _is_empty(actual)
    if operator == "is_not_empty":
        return not _is_empty(actual)

    if field in ("hasTag", "hasMotivation"):
        present = expected in (actual or ())
        return not present if operator == "not_equals" else present

    if field == "isComplete":
        result = bool(actual) == _as_bool(expected)
    elif field == "isAssigned" and expected == ASSIGNED_TO_ANYONE:
        result = actual is not None
    elif field == "temperature":
        result = actual is not None and str(actual).upper() == str(expected).upper()
    else:
        result = actual == expected

    return not result if operator == "not_equals" else result


def combine(result: bool, combinator: str, matched: bool) -> bool:
    if (combinator or "AND").upper() == "OR":
        return result or matched
    return result and matched


def evaluate_branch(branch: Any, record: Any) -> bool:
    """Fold a branch's conditions left to right without operator precedence."""

    conditions = list(branch.conditions)
    if not conditions:
        return False

    result = matches(conditions[0], record)
    for condition in conditions[1:]:
        result = combine(result, condition.combinator, matches(condition, record))
    return result


def select_branch(branches: Iterable[Any], record: Any) -> str:
    """Return the id of the first matching branch, falling back to the None branch."""

    for branch in branches:
        if evaluate_branch(branch, record):
            return branch.id
    return NONE_BRANCH_ID
