"""Typed intent construction from the model's untyped `intent.data` payload.

Every coercion here is total: a missing or wrongly typed field falls back to
its default instead of raising, so one bad field never drops the whole intent.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any

from lifemanager.ai.models import (
    CommandIntent,
    GoalAction,
    GoalIntent,
    HabitCheckinIntent,
    QueryIntent,
    QueryType,
    TodoIntent,
    TransactionIntent,
    TransactionType,
)


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _as_number(value: Any) -> float | None:
    # JSON booleans decode to bool, which is an int subclass.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def _as_day_number(value: Any) -> int | None:
    number = _as_number(value)
    if number is None:
        return None
    return int(number)


def transaction_from_payload(data: dict[str, Any]) -> TransactionIntent:
    type_text = _as_str(data.get("transactionType")) or "expense"
    transaction_type = (
        TransactionType.INCOME if type_text.lower() == "income" else TransactionType.EXPENSE
    )
    return TransactionIntent(
        type=transaction_type,
        amount=_as_number(data.get("amount")),
        category_name=_as_str(data.get("category")),
        date=_as_day_number(data.get("date")),
        note=_as_str(data.get("note")) or "",
    )


def todo_from_payload(data: dict[str, Any]) -> TodoIntent:
    return TodoIntent(
        title=_as_str(data.get("title")) or "",
        description=_as_str(data.get("description")),
        due_date=_as_day_number(data.get("dueDate")),
        start_time=_as_str(data.get("startTime")),
        end_time=_as_str(data.get("endTime")),
        priority=_as_str(data.get("priority")),
        quadrant=_as_str(data.get("quadrant")),
    )


def habit_from_payload(data: dict[str, Any]) -> HabitCheckinIntent:
    return HabitCheckinIntent(
        habit_name=_as_str(data.get("habitName")) or "",
        value=_as_number(data.get("value")),
    )


def goal_from_payload(data: dict[str, Any]) -> GoalIntent:
    # Sub-actions (create, update progress) are not distinguished yet.
    return GoalIntent(action=GoalAction.CHECK, goal_name=_as_str(data.get("goalName")))


def query_from_payload(data: dict[str, Any]) -> QueryIntent:
    type_text = (_as_str(data.get("queryType")) or "").lower()
    try:
        query_type = QueryType(type_text)
    except ValueError:
        query_type = QueryType.TODAY_EXPENSE
    return QueryIntent(query_type=query_type)


_INTENT_BUILDERS: dict[str, Callable[[dict[str, Any]], CommandIntent]] = {
    "transaction": transaction_from_payload,
    "todo": todo_from_payload,
    "habit": habit_from_payload,
    "goal": goal_from_payload,
    "query": query_from_payload,
}


def decode_intent(raw_intent: Any) -> CommandIntent | None:
    """Map `{"type": ..., "data": {...}}` to a typed intent, or None for chat-only turns."""
    if not isinstance(raw_intent, dict):
        return None

    intent_type = raw_intent.get("type")
    if not isinstance(intent_type, str):
        return None

    builder = _INTENT_BUILDERS.get(intent_type)
    if builder is None:
        return None

    data = raw_intent.get("data")
    if not isinstance(data, dict):
        data = {}

    return builder(data)
