"""Transaction creation behind a two-tier duplicate guard.

Tier 1 (RECENT) looks for the same date/type/amount created within the last
few minutes; Tier 2 (SAME_DAY) looks for the same date/type/amount, narrowed
to the category when one is given. The first tier that matches blocks the
insert and returns the matches so the user can confirm or cancel.

The check and the insert are separate statements with no lock between them.
Two concurrent add attempts for the same fingerprint can both pass the check
and both commit; callers needing at-most-one semantics must serialize adds.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any
from uuid import UUID

from lifemanager.ai.models import (
    AddTransactionResult,
    DuplicateType,
    TransactionRecord,
    TransactionType,
)

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
DEFAULT_DUPLICATE_WINDOW_MINUTES = 5

_RECORD_COLUMNS = """
    t.id, t.type, t.amount, t.occurred_on, t.category_id,
    c.name AS category_name, t.note, t.created_at
"""


def quantize_amount(value: Decimal) -> Decimal:
    """Normalize money values to NUMERIC(12,2) precision."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_amount(value: Decimal | float | int | str) -> Decimal:
    # str() first so floats such as 0.1 keep their short decimal form.
    return quantize_amount(Decimal(str(value)))


async def _resolve_category(
    connection: AsyncConnection,
    user_id: UUID,
    transaction_type: TransactionType,
    category_id: UUID | None,
    category_name: str | None,
) -> dict[str, Any] | None:
    """Resolve a visible category by id (strict) or by name (lenient)."""
    if category_id is not None:
        async with connection.cursor() as cursor:
            await cursor.execute(
                """
                SELECT id, name, kind, user_id, is_system
                FROM categories
                WHERE id = %s
                """,
                (category_id,),
            )
            row = await cursor.fetchone()

        if row is None:
            raise ValueError("Category not found")
        if not row["is_system"] and row["user_id"] != user_id:
            raise ValueError("Category is not visible to this user")
        if row["kind"] != transaction_type.value:
            raise ValueError("Category kind does not match transaction type")
        return row

    normalized_name = (category_name or "").strip()
    if not normalized_name:
        return None

    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT id, name, kind, user_id, is_system
            FROM categories
            WHERE kind = %s
              AND (is_system = TRUE OR user_id = %s)
              AND LOWER(name) = LOWER(%s)
            ORDER BY is_system DESC, name ASC
            LIMIT 1
            """,
            (transaction_type.value, user_id, normalized_name),
        )
        row = await cursor.fetchone()

    # Unknown names are stored uncategorized rather than rejected.
    return row


async def find_duplicates_in_time_window(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    occurred_on: date,
    transaction_type: TransactionType,
    amount: Decimal,
    window_minutes: int,
    now: datetime,
) -> list[TransactionRecord]:
    created_after = now - timedelta(minutes=window_minutes)
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM transactions t
            LEFT JOIN categories c ON c.id = t.category_id
            WHERE t.user_id = %s
              AND t.deleted_at IS NULL
              AND t.occurred_on = %s
              AND t.type = %s
              AND t.amount = %s
              AND t.created_at >= %s
            ORDER BY t.created_at DESC
            """,
            (user_id, occurred_on, transaction_type.value, amount, created_after),
        )
        rows = await cursor.fetchall()
    return [TransactionRecord.from_row(row) for row in rows]


async def find_potential_duplicates(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    occurred_on: date,
    transaction_type: TransactionType,
    amount: Decimal,
    category_id: UUID | None = None,
) -> list[TransactionRecord]:
    query = f"""
        SELECT {_RECORD_COLUMNS}
        FROM transactions t
        LEFT JOIN categories c ON c.id = t.category_id
        WHERE t.user_id = %s
          AND t.deleted_at IS NULL
          AND t.occurred_on = %s
          AND t.type = %s
          AND t.amount = %s
    """
    params: list[Any] = [user_id, occurred_on, transaction_type.value, amount]
    if category_id is not None:
        query += "  AND t.category_id = %s\n"
        params.append(category_id)
    query += "ORDER BY t.created_at DESC"

    async with connection.cursor() as cursor:
        await cursor.execute(query, tuple(params))
        rows = await cursor.fetchall()
    return [TransactionRecord.from_row(row) for row in rows]


async def insert_transaction(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    occurred_on: date,
    transaction_type: TransactionType,
    amount: Decimal,
    category_id: UUID | None,
    note: str | None,
) -> UUID:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            INSERT INTO transactions (user_id, category_id, type, amount, occurred_on, note)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                user_id,
                category_id,
                transaction_type.value,
                amount,
                occurred_on,
                note.strip() if note else None,
            ),
        )
        row = await cursor.fetchone()
    return row["id"]


async def add_transaction_with_duplicate_check(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    occurred_on: date,
    transaction_type: TransactionType,
    amount: Decimal | float,
    category_id: UUID | None = None,
    category_name: str | None = None,
    note: str | None = None,
    skip_duplicate_check: bool = False,
    window_minutes: int = DEFAULT_DUPLICATE_WINDOW_MINUTES,
    now: datetime | None = None,
) -> AddTransactionResult:
    """Insert unless an existing transaction looks like the same entry.

    With `skip_duplicate_check=True` the row is always inserted; this is the
    "add anyway" path after the user has seen the candidates.
    """
    normalized_amount = to_amount(amount)
    if normalized_amount <= Decimal("0.00"):
        raise ValueError("Amount must be greater than 0")

    category = await _resolve_category(
        connection,
        user_id,
        transaction_type,
        category_id,
        category_name,
    )
    resolved_category_id = category["id"] if category else None

    if not skip_duplicate_check:
        recent = await find_duplicates_in_time_window(
            connection,
            user_id,
            occurred_on=occurred_on,
            transaction_type=transaction_type,
            amount=normalized_amount,
            window_minutes=window_minutes,
            now=now or datetime.now(timezone.utc),
        )
        if recent:
            logger.info("Duplicate guard: %d recent match(es), insert blocked", len(recent))
            return AddTransactionResult(
                success=False,
                duplicate_type=DuplicateType.RECENT,
                potential_duplicates=tuple(recent),
            )

        same_day = await find_potential_duplicates(
            connection,
            user_id,
            occurred_on=occurred_on,
            transaction_type=transaction_type,
            amount=normalized_amount,
            category_id=resolved_category_id,
        )
        if same_day:
            logger.info("Duplicate guard: %d same-day match(es), insert blocked", len(same_day))
            return AddTransactionResult(
                success=False,
                duplicate_type=DuplicateType.SAME_DAY,
                potential_duplicates=tuple(same_day),
            )

    transaction_id = await insert_transaction(
        connection,
        user_id,
        occurred_on=occurred_on,
        transaction_type=transaction_type,
        amount=normalized_amount,
        category_id=resolved_category_id,
        note=note,
    )
    return AddTransactionResult(success=True, transaction_id=transaction_id)


async def force_add_transaction(
    connection: AsyncConnection,
    user_id: UUID,
    **kwargs: Any,
) -> AddTransactionResult:
    """Insert without consulting either duplicate tier."""
    kwargs["skip_duplicate_check"] = True
    return await add_transaction_with_duplicate_check(connection, user_id, **kwargs)


async def check_for_duplicates(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    occurred_on: date,
    transaction_type: TransactionType,
    amount: Decimal | float,
    category_id: UUID | None = None,
    category_name: str | None = None,
) -> list[TransactionRecord]:
    """Same-day candidates for a prospective transaction; never inserts."""
    category = await _resolve_category(
        connection,
        user_id,
        transaction_type,
        category_id,
        category_name,
    )
    return await find_potential_duplicates(
        connection,
        user_id,
        occurred_on=occurred_on,
        transaction_type=transaction_type,
        amount=to_amount(amount),
        category_id=category["id"] if category else None,
    )
