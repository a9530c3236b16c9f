import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import HTTPException

from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.services.state import read_cache

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def cache_get(key: str) -> Any | None:
    return read_cache.get(key)


def cache_set(key: str, value: Any, ttl: int) -> None:
    read_cache.set(key, value, ttl)


def invalidate_user_cache(username: str) -> None:
    read_cache.invalidate_prefix(f"{username}:")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def month_str(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def prev_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def aggregate_deltas(kind: str, amount: Decimal) -> tuple[Decimal, Decimal]:
    if kind == "income":
        return amount, ZERO
    if kind == "expense":
        return ZERO, amount
    raise HTTPException(status_code=400, detail="Invalid transaction kind")


def get_category(cur, username: str, name: str) -> dict[str, Any]:
    cur.execute(
        """
        SELECT name, icon
        FROM categories
        WHERE username=%s AND name=%s
        LIMIT 1
        """,
        (username, name),
    )
    row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=400, detail="Category not found")
    return row


def insert_transaction(cur, username: str, payload: TransactionInput, category: dict[str, Any]) -> str:
    transaction_id = str(uuid.uuid4())
    cur.execute(
        """
        INSERT INTO transactions (
            transaction_id,
            username,
            kind,
            amount,
            description,
            notes,
            category,
            category_icon,
            date
        )
        VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            transaction_id,
            username,
            payload.kind,
            payload.amount,
            payload.description,
            payload.notes or None,
            category["name"],
            category.get("icon") or "",
            payload.occurred_at,
        ),
    )
    return transaction_id


def link_tags(cur, transaction_id: str, tag_ids: list[str]) -> None:
    for tag_id in tag_ids:
        cur.execute(
            "INSERT INTO transaction_tags (transaction_id, tag_id) VALUES (%s::uuid, %s)",
            (transaction_id, tag_id),
        )


def upsert_month_history(cur, username: str, day: date, income: Decimal, expense: Decimal) -> None:
    cur.execute(
        """
        INSERT INTO month_history (username, day, month, year, income, expense)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (username, day, month, year) DO UPDATE
        SET income = month_history.income + EXCLUDED.income,
            expense = month_history.expense + EXCLUDED.expense
        """,
        (username, day.day, day.month, day.year, income, expense),
    )


def upsert_year_history(cur, username: str, day: date, income: Decimal, expense: Decimal) -> None:
    cur.execute(
        """
        INSERT INTO year_history (username, month, year, income, expense)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (username, month, year) DO UPDATE
        SET income = year_history.income + EXCLUDED.income,
            expense = year_history.expense + EXCLUDED.expense
        """,
        (username, day.month, day.year, income, expense),
    )


def create_transaction(cur, username: str, payload: TransactionInput) -> str:
    # Transaction row and both aggregate tables move together; the caller owns commit.
    category = get_category(cur, username, payload.category)
    income, expense = aggregate_deltas(payload.kind, payload.amount)

    transaction_id = insert_transaction(cur, username, payload, category)
    link_tags(cur, transaction_id, payload.tag_ids)
    upsert_month_history(cur, username, payload.occurred_at, income, expense)
    upsert_year_history(cur, username, payload.occurred_at, income, expense)

    logger.info(
        "Created %s transaction %s for %s on %s",
        payload.kind,
        transaction_id,
        username,
        payload.occurred_at.isoformat(),
    )
    return transaction_id


def month_totals(cur, username: str, year: int, month: int) -> tuple[Decimal, Decimal]:
    cur.execute(
        """
        SELECT COALESCE(SUM(income), 0) AS income,
               COALESCE(SUM(expense), 0) AS expense
        FROM month_history
        WHERE username=%s AND year=%s AND month=%s
        """,
        (username, year, month),
    )
    row = cur.fetchone() or {}
    return Decimal(row.get("income") or 0), Decimal(row.get("expense") or 0)


def build_stats(cur, username: str, today: date) -> dict[str, Any]:
    income, expense = month_totals(cur, username, today.year, today.month)
    prev_year, prev_month_num = prev_month(today.year, today.month)
    prev_income, prev_expense = month_totals(cur, username, prev_year, prev_month_num)
    return {
        "month": month_str(today.year, today.month),
        "income": income,
        "expense": expense,
        "balance": income - expense,
        "previous_balance": prev_income - prev_expense,
    }
