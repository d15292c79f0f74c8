import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from lifemanager.ai.models import DuplicateType, TransactionType
from lifemanager.services import transactions_service

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
DAY = date(2026, 3, 1)


class LedgerCursor:
    def __init__(self, connection):
        self.connection = connection
        self._rows = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def _with_category(self, row):
        category = self.connection.categories.get(row["category_id"])
        return {**row, "category_name": category["name"] if category else None}

    async def execute(self, query, params=None):
        normalized = " ".join(query.split())
        self.connection.queries.append(normalized)
        self._rows = []

        if "FROM categories WHERE id = %s" in normalized:
            (category_id,) = params
            row = self.connection.categories.get(category_id)
            self._rows = [row] if row else []
            return

        if "FROM categories WHERE kind = %s" in normalized:
            kind, user_id, name = params
            self._rows = [
                row
                for row in self.connection.categories.values()
                if row["kind"] == kind
                and (row["is_system"] or row["user_id"] == user_id)
                and row["name"].lower() == name.lower()
            ][:1]
            return

        if "INSERT INTO transactions" in normalized:
            user_id, category_id, tx_type, amount, occurred_on, note = params
            row = {
                "id": uuid4(),
                "user_id": user_id,
                "category_id": category_id,
                "type": tx_type,
                "amount": amount,
                "occurred_on": occurred_on,
                "note": note,
                "created_at": self.connection.now,
                "deleted_at": None,
            }
            self.connection.transactions.append(row)
            self._rows = [{"id": row["id"]}]
            return

        if "FROM transactions t" in normalized:
            user_id, occurred_on, tx_type, amount, *rest = params
            matches = [
                row
                for row in self.connection.transactions
                if row["user_id"] == user_id
                and row["deleted_at"] is None
                and row["occurred_on"] == occurred_on
                and row["type"] == tx_type
                and row["amount"] == amount
            ]
            if "t.created_at >= %s" in normalized:
                (created_after,) = rest
                matches = [row for row in matches if row["created_at"] >= created_after]
            elif "t.category_id = %s" in normalized:
                (category_id,) = rest
                matches = [row for row in matches if row["category_id"] == category_id]
            self._rows = [self._with_category(row) for row in matches]
            return

        raise AssertionError(f"Unhandled query: {normalized}")

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


class LedgerConnection:
    def __init__(self, now=NOW):
        self.categories = {}
        self.transactions = []
        self.queries = []
        self.now = now

    def cursor(self):
        return LedgerCursor(self)

    def add_category(self, name, kind="expense", user_id=None, is_system=True):
        category_id = uuid4()
        self.categories[category_id] = {
            "id": category_id,
            "name": name,
            "kind": kind,
            "user_id": user_id,
            "is_system": is_system,
        }
        return category_id

    def add_existing(self, user_id, *, amount, created_at, occurred_on=DAY, tx_type="expense", category_id=None):
        self.transactions.append(
            {
                "id": uuid4(),
                "user_id": user_id,
                "category_id": category_id,
                "type": tx_type,
                "amount": Decimal(amount),
                "occurred_on": occurred_on,
                "note": None,
                "created_at": created_at,
                "deleted_at": None,
            }
        )


def _run(coro):
    return asyncio.run(coro)


def _add(connection, user_id, *, at, amount=50.0, occurred_on=DAY, **kwargs):
    return _run(
        transactions_service.add_transaction_with_duplicate_check(
            connection,
            user_id,
            occurred_on=occurred_on,
            transaction_type=kwargs.pop("transaction_type", TransactionType.EXPENSE),
            amount=amount,
            now=at,
            **kwargs,
        )
    )


def test_same_fingerprint_inside_window_is_recent() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW)

    result = _add(connection, user_id, at=NOW + timedelta(minutes=3))

    assert result.success is False
    assert result.duplicate_type == DuplicateType.RECENT
    assert len(result.potential_duplicates) == 1
    assert result.potential_duplicates[0].amount == Decimal("50.00")
    assert result.transaction_id is None
    assert len(connection.transactions) == 1


def test_same_fingerprint_outside_window_is_same_day() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW)

    result = _add(connection, user_id, at=NOW + timedelta(minutes=30))

    assert result.success is False
    assert result.duplicate_type == DuplicateType.SAME_DAY
    assert len(result.potential_duplicates) == 1
    assert len(connection.transactions) == 1


def test_recent_tier_short_circuits_same_day_lookup() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW)

    _add(connection, user_id, at=NOW + timedelta(minutes=1))

    lookups = [query for query in connection.queries if "FROM transactions t" in query]
    assert len(lookups) == 1
    assert "t.created_at >= %s" in lookups[0]


@pytest.mark.parametrize(
    "amount, occurred_on",
    [
        (51.0, DAY),
        (50.0, DAY + timedelta(days=1)),
    ],
)
def test_different_amount_or_date_commits(amount, occurred_on) -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW)

    result = _add(connection, user_id, at=NOW + timedelta(minutes=3), amount=amount, occurred_on=occurred_on)

    assert result.success is True
    assert result.duplicate_type == DuplicateType.NONE
    assert result.transaction_id is not None
    assert len(connection.transactions) == 2


def test_other_type_and_other_user_do_not_match() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW, tx_type="income")
    connection.add_existing(uuid4(), amount="50.00", created_at=NOW)

    result = _add(connection, user_id, at=NOW + timedelta(minutes=1))

    assert result.success is True
    assert result.duplicate_type == DuplicateType.NONE


def test_same_day_tier_filters_by_category_when_given() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    food = connection.add_category("Food")
    transport = connection.add_category("Transport")
    connection.add_existing(user_id, amount="50.00", created_at=NOW, category_id=food)

    other_category = _add(connection, user_id, at=NOW + timedelta(hours=2), category_id=transport)
    same_category = _add(connection, user_id, at=NOW + timedelta(hours=3), category_name="food")

    assert other_category.success is True
    assert same_category.success is False
    assert same_category.duplicate_type == DuplicateType.SAME_DAY
    assert same_category.potential_duplicates[0].category_name == "Food"


def test_unknown_category_name_is_stored_uncategorized() -> None:
    connection = LedgerConnection()
    user_id = uuid4()

    result = _add(connection, user_id, at=NOW, category_name="Nonexistent")

    assert result.success is True
    assert connection.transactions[0]["category_id"] is None


def test_bypass_always_commits_even_with_candidates() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW)

    first = _add(connection, user_id, at=NOW + timedelta(minutes=1), skip_duplicate_check=True)
    second = _run(
        transactions_service.force_add_transaction(
            connection,
            user_id,
            occurred_on=DAY,
            transaction_type=TransactionType.EXPENSE,
            amount=50.0,
        )
    )

    assert first.success is True
    assert second.success is True
    assert first.transaction_id != second.transaction_id
    assert len(connection.transactions) == 3
    assert not any("FROM transactions t" in query for query in connection.queries)


def test_window_is_configurable() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="50.00", created_at=NOW)

    result = _add(connection, user_id, at=NOW + timedelta(minutes=8), window_minutes=10)

    assert result.duplicate_type == DuplicateType.RECENT


def test_non_positive_amount_is_rejected() -> None:
    connection = LedgerConnection()

    with pytest.raises(ValueError):
        _add(connection, uuid4(), at=NOW, amount=0.004)


def test_category_kind_mismatch_is_rejected() -> None:
    connection = LedgerConnection()
    salary = connection.add_category("Salary", kind="income")

    with pytest.raises(ValueError):
        _add(connection, uuid4(), at=NOW, category_id=salary)


def test_check_for_duplicates_never_inserts() -> None:
    connection = LedgerConnection()
    user_id = uuid4()
    connection.add_existing(user_id, amount="12.50", created_at=NOW)

    candidates = _run(
        transactions_service.check_for_duplicates(
            connection,
            user_id,
            occurred_on=DAY,
            transaction_type=TransactionType.EXPENSE,
            amount=Decimal("12.5"),
        )
    )

    assert len(candidates) == 1
    assert len(connection.transactions) == 1
