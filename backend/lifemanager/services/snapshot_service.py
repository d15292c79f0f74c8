"""Read-only aggregate snapshots of the user's data for assistant prompts.

Each builder performs a single point-in-time read; callers build one snapshot
per turn and pass it along instead of querying again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any
from uuid import UUID

from lifemanager.services.dates import month_to_date, previous_month, trailing_week
from lifemanager.services.transactions_service import quantize_amount

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

CATEGORY_NAME_LIMIT = 10
TOP_CATEGORY_LIMIT = 5
UNCATEGORIZED_LABEL = "未分类"


def _normalize_amount(value: Decimal | None) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return quantize_amount(Decimal(value))


@dataclass(frozen=True)
class BudgetUsage:
    name: str
    spent: Decimal
    total: Decimal

    @property
    def percent(self) -> int | None:
        if self.total <= Decimal("0"):
            return None
        ratio = (self.spent * Decimal("100")) / self.total
        return int(ratio.to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CategorySpend:
    name: str
    amount: Decimal


@dataclass(frozen=True)
class HabitWeek:
    name: str
    checked_days: int


@dataclass(frozen=True)
class GoalProgress:
    title: str
    percent: int


@dataclass(frozen=True)
class DataSnapshot:
    as_of: date
    month_income: Decimal
    month_expense: Decimal
    today_expense: Decimal
    pending_todo_count: int
    habit_total: int
    habit_checked: int
    active_goal_count: int
    budget_usage: tuple[BudgetUsage, ...]
    category_names: tuple[str, ...]

    @property
    def habit_unchecked(self) -> int:
        return max(self.habit_total - self.habit_checked, 0)


@dataclass(frozen=True)
class QuerySnapshot:
    as_of: date
    today_income: Decimal
    today_expense: Decimal
    month_income: Decimal
    month_expense: Decimal
    last_month_income: Decimal
    last_month_expense: Decimal
    top_categories: tuple[CategorySpend, ...]
    budgets: tuple[BudgetUsage, ...]
    habit_weeks: tuple[HabitWeek, ...]
    goals: tuple[GoalProgress, ...]

    @property
    def month_balance(self) -> Decimal:
        return quantize_amount(self.month_income - self.month_expense)


async def _transaction_totals(
    connection: AsyncConnection,
    user_id: UUID,
    start_date: date,
    end_date: date,
) -> tuple[Decimal, Decimal]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT
                COALESCE(SUM(CASE WHEN type = 'income' THEN amount ELSE 0 END), 0) AS income_total,
                COALESCE(SUM(CASE WHEN type = 'expense' THEN amount ELSE 0 END), 0) AS expense_total
            FROM transactions
            WHERE user_id = %s
              AND deleted_at IS NULL
              AND occurred_on >= %s
              AND occurred_on <= %s
            """,
            (user_id, start_date, end_date),
        )
        row = await cursor.fetchone()

    if row is None:
        return Decimal("0.00"), Decimal("0.00")
    return _normalize_amount(row["income_total"]), _normalize_amount(row["expense_total"])


async def _expense_by_category(
    connection: AsyncConnection,
    user_id: UUID,
    start_date: date,
    end_date: date,
) -> list[dict[str, Any]]:
    """Expense totals per category, largest first."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT
                t.category_id,
                c.name AS category_name,
                COALESCE(SUM(t.amount), 0) AS spent_amount
            FROM transactions t
            LEFT JOIN categories c ON c.id = t.category_id
            WHERE t.user_id = %s
              AND t.deleted_at IS NULL
              AND t.type = 'expense'
              AND t.occurred_on >= %s
              AND t.occurred_on <= %s
            GROUP BY t.category_id, c.name
            ORDER BY spent_amount DESC
            """,
            (user_id, start_date, end_date),
        )
        return list(await cursor.fetchall())


async def _budget_rows(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id, name, category_id, total_budget
            FROM budgets
            WHERE user_id = %s
            ORDER BY name ASC
            """,
            (user_id,),
        )
        return list(await cursor.fetchall())


def _budget_usage(
    budget_rows: list[dict[str, Any]],
    category_rows: list[dict[str, Any]],
    month_expense: Decimal,
) -> tuple[BudgetUsage, ...]:
    # A budget without a category covers all expenses.
    spent_by_category = {
        row["category_id"]: _normalize_amount(row["spent_amount"])
        for row in category_rows
    }
    usage: list[BudgetUsage] = []
    for row in budget_rows:
        category_id = row.get("category_id")
        if category_id is None:
            spent = month_expense
        else:
            spent = spent_by_category.get(category_id, Decimal("0.00"))
        usage.append(
            BudgetUsage(
                name=str(row["name"]),
                spent=spent,
                total=_normalize_amount(row["total_budget"]),
            )
        )
    return tuple(usage)


async def _pending_todo_count(connection: AsyncConnection, user_id: UUID, day: date) -> int:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT COUNT(*) AS pending_count
            FROM todos
            WHERE user_id = %s
              AND due_date = %s
              AND status = 'pending'
            """,
            (user_id, day),
        )
        row = await cursor.fetchone()
    return int(row["pending_count"]) if row else 0


async def _habit_checkins(connection: AsyncConnection, user_id: UUID, day: date) -> tuple[int, int]:
    """(enabled habits, habits checked in on `day`)."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT
                COUNT(*) AS habit_total,
                COUNT(*) FILTER (
                    WHERE EXISTS (
                        SELECT 1
                        FROM habit_records r
                        WHERE r.habit_id = h.id
                          AND r.record_date = %s
                    )
                ) AS habit_checked
            FROM habits h
            WHERE h.user_id = %s
              AND h.enabled = TRUE
            """,
            (day, user_id),
        )
        row = await cursor.fetchone()
    if row is None:
        return 0, 0
    return int(row["habit_total"]), int(row["habit_checked"])


async def _active_goal_rows(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id, title, current_value, target_value
            FROM goals
            WHERE user_id = %s
              AND status = 'active'
            ORDER BY created_at ASC
            """,
            (user_id,),
        )
        return list(await cursor.fetchall())


async def _category_names(connection: AsyncConnection, user_id: UUID, limit: int) -> list[str]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT name
            FROM categories
            WHERE is_system = TRUE OR user_id = %s
            ORDER BY is_system DESC, name ASC
            LIMIT %s
            """,
            (user_id, limit),
        )
        rows = await cursor.fetchall()
    return [str(row["name"]) for row in rows]


async def build_data_snapshot(
    connection: AsyncConnection,
    user_id: UUID,
    as_of: date,
) -> DataSnapshot:
    """Month-to-date money, today's todos/habits, goals, budgets and categories."""
    month_start, _ = month_to_date(as_of)

    month_income, month_expense = await _transaction_totals(connection, user_id, month_start, as_of)
    _, today_expense = await _transaction_totals(connection, user_id, as_of, as_of)
    category_rows = await _expense_by_category(connection, user_id, month_start, as_of)
    budget_rows = await _budget_rows(connection, user_id)
    pending_count = await _pending_todo_count(connection, user_id, as_of)
    habit_total, habit_checked = await _habit_checkins(connection, user_id, as_of)
    goal_rows = await _active_goal_rows(connection, user_id)
    category_names = await _category_names(connection, user_id, CATEGORY_NAME_LIMIT)

    return DataSnapshot(
        as_of=as_of,
        month_income=month_income,
        month_expense=month_expense,
        today_expense=today_expense,
        pending_todo_count=pending_count,
        habit_total=habit_total,
        habit_checked=habit_checked,
        active_goal_count=len(goal_rows),
        budget_usage=_budget_usage(budget_rows, category_rows, month_expense),
        category_names=tuple(category_names),
    )


async def _habit_week_rows(
    connection: AsyncConnection,
    user_id: UUID,
    start_date: date,
    end_date: date,
) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT
                h.name,
                COUNT(DISTINCT r.record_date) AS checked_days
            FROM habits h
            LEFT JOIN habit_records r
              ON r.habit_id = h.id
             AND r.record_date >= %s
             AND r.record_date <= %s
            WHERE h.user_id = %s
              AND h.enabled = TRUE
            GROUP BY h.id, h.name
            ORDER BY h.name ASC
            """,
            (start_date, end_date, user_id),
        )
        return list(await cursor.fetchall())


def _goal_percent(row: dict[str, Any]) -> int:
    target = row.get("target_value")
    if target is None or Decimal(target) <= Decimal("0"):
        return 0
    current = Decimal(row.get("current_value") or 0)
    return int(current * Decimal("100") / Decimal(target))


async def build_query_snapshot(
    connection: AsyncConnection,
    user_id: UUID,
    as_of: date,
) -> QuerySnapshot:
    """Richer read used to answer analytical questions."""
    month_start, _ = month_to_date(as_of)
    last_month_start, last_month_end = previous_month(as_of)
    week_start, week_end = trailing_week(as_of)

    today_income, today_expense = await _transaction_totals(connection, user_id, as_of, as_of)
    month_income, month_expense = await _transaction_totals(connection, user_id, month_start, as_of)
    last_income, last_expense = await _transaction_totals(
        connection, user_id, last_month_start, last_month_end
    )
    category_rows = await _expense_by_category(connection, user_id, month_start, as_of)
    budget_rows = await _budget_rows(connection, user_id)
    habit_rows = await _habit_week_rows(connection, user_id, week_start, week_end)
    goal_rows = await _active_goal_rows(connection, user_id)

    top_categories = tuple(
        CategorySpend(
            name=str(row.get("category_name") or UNCATEGORIZED_LABEL),
            amount=_normalize_amount(row["spent_amount"]),
        )
        for row in category_rows[:TOP_CATEGORY_LIMIT]
    )

    return QuerySnapshot(
        as_of=as_of,
        today_income=today_income,
        today_expense=today_expense,
        month_income=month_income,
        month_expense=month_expense,
        last_month_income=last_income,
        last_month_expense=last_expense,
        top_categories=top_categories,
        budgets=_budget_usage(budget_rows, category_rows, month_expense),
        habit_weeks=tuple(
            HabitWeek(name=str(row["name"]), checked_days=int(row["checked_days"]))
            for row in habit_rows
        ),
        goals=tuple(
            GoalProgress(title=str(row["title"]), percent=_goal_percent(row))
            for row in goal_rows
        ),
    )
