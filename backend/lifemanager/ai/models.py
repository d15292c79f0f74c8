"""Conversation and command-intent types shared by the assistant pipeline.

Every type here is immutable. Conversation history grows by building a new
`ConversationContext` per appended message, so a reader holding an older
context never observes a half-applied update.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union
from uuid import UUID, uuid4


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AIMode(str, Enum):
    COMMAND = "command"
    CHAT = "chat"
    ASSISTANT = "assistant"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class GoalAction(str, Enum):
    CHECK = "check"


class QueryType(str, Enum):
    TODAY_EXPENSE = "today_expense"
    MONTH_EXPENSE = "month_expense"
    MONTH_INCOME = "month_income"
    CATEGORY_EXPENSE = "category_expense"
    HABIT_STREAK = "habit_streak"
    GOAL_PROGRESS = "goal_progress"
    SAVINGS_PROGRESS = "savings_progress"


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    STABLE = "STABLE"


class DuplicateType(str, Enum):
    NONE = "none"
    RECENT = "recent"
    SAME_DAY = "same_day"


@dataclass(frozen=True)
class TransactionIntent:
    kind: ClassVar[str] = "transaction"

    type: TransactionType = TransactionType.EXPENSE
    amount: float | None = None
    category_name: str | None = None
    date: int | None = None
    note: str = ""


@dataclass(frozen=True)
class TodoIntent:
    kind: ClassVar[str] = "todo"

    title: str = ""
    description: str | None = None
    due_date: int | None = None
    start_time: str | None = None
    end_time: str | None = None
    priority: str | None = None
    quadrant: str | None = None


@dataclass(frozen=True)
class HabitCheckinIntent:
    kind: ClassVar[str] = "habit"

    habit_name: str = ""
    value: float | None = None


@dataclass(frozen=True)
class GoalIntent:
    kind: ClassVar[str] = "goal"

    action: GoalAction = GoalAction.CHECK
    goal_name: str | None = None


@dataclass(frozen=True)
class QueryIntent:
    kind: ClassVar[str] = "query"

    query_type: QueryType = QueryType.TODAY_EXPENSE


# A chat-only turn carries `None` instead of an intent.
CommandIntent = Union[TransactionIntent, TodoIntent, HabitCheckinIntent, GoalIntent, QueryIntent]


@dataclass(frozen=True)
class QuickReply:
    text: str
    action: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str
    intent: CommandIntent | None = None
    suggestions: tuple[QuickReply, ...] = ()
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def __post_init__(self) -> None:
        if self.intent is not None and self.role is not ChatRole.ASSISTANT:
            raise ValueError("Only assistant messages may carry an intent")


@dataclass(frozen=True)
class ConversationContext:
    messages: tuple[ChatMessage, ...] = ()
    session_id: str = field(default_factory=lambda: str(uuid4()))
    started_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def append(self, message: ChatMessage) -> ConversationContext:
        return ConversationContext(
            messages=self.messages + (message,),
            session_id=self.session_id,
            started_at_ms=self.started_at_ms,
        )

    def recent_window(self, max_count: int = 10) -> tuple[ChatMessage, ...]:
        """Last `max_count` non-system messages, oldest first."""
        if max_count < 1:
            return ()
        visible = [message for message in self.messages if message.role is not ChatRole.SYSTEM]
        return tuple(visible[-max_count:])

    def clear(self) -> ConversationContext:
        return ConversationContext()

    def __len__(self) -> int:
        return len(self.messages)


@dataclass(frozen=True)
class QueryDetail:
    label: str
    value: str
    change: float | None = None
    trend: TrendDirection | None = None


@dataclass(frozen=True)
class DataQueryResult:
    success: bool
    query_type: str
    summary: str
    details: tuple[QueryDetail, ...] = ()
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransactionRecord:
    """One stored transaction row as returned by the transaction store."""

    id: UUID
    type: TransactionType
    amount: Decimal
    occurred_on: date
    category_id: UUID | None
    category_name: str | None
    note: str | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> TransactionRecord:
        return cls(
            id=row["id"],
            type=TransactionType(row["type"]),
            amount=row["amount"],
            occurred_on=row["occurred_on"],
            category_id=row.get("category_id"),
            category_name=row.get("category_name"),
            note=row.get("note"),
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class AddTransactionResult:
    success: bool
    transaction_id: UUID | None = None
    duplicate_type: DuplicateType = DuplicateType.NONE
    potential_duplicates: tuple[TransactionRecord, ...] = ()


def intent_to_dict(intent: CommandIntent | None) -> dict[str, Any] | None:
    """Wire shape `{type, data}` used by the HTTP layer."""
    if intent is None:
        return None

    data: dict[str, Any] = {}
    for item in fields(intent):
        value = getattr(intent, item.name)
        data[item.name] = value.value if isinstance(value, Enum) else value

    return {"type": intent.kind, "data": data}
