from fastapi import APIRouter, HTTPException, Request
from psycopg.errors import ForeignKeyViolation

from budgetbuddy.core.config import settings
from budgetbuddy.db.pool import db_ready, db_transaction
from budgetbuddy.models.transactions import StatsResponse, TransactionCreateResponse, TransactionInput
from budgetbuddy.services.auth import require_api_user
from budgetbuddy.services.history import (
    build_stats,
    cache_get,
    cache_set,
    create_transaction,
    invalidate_user_cache,
    now_utc,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"ok": True, "database": db_ready()}


@router.post("/v1/transactions", response_model=TransactionCreateResponse)
def public_create_transaction(req: Request, payload: TransactionInput):
    username = require_api_user(req)
    try:
        with db_transaction() as cur:
            transaction_id = create_transaction(cur, username, payload)
    except ForeignKeyViolation:
        raise HTTPException(status_code=400, detail="Unknown tag")

    invalidate_user_cache(username)
    return TransactionCreateResponse(id=transaction_id)


@router.get("/v1/stats", response_model=StatsResponse)
def public_stats(req: Request):
    username = require_api_user(req)
    today = now_utc().date()

    cache_key = f"{username}:stats:{today.strftime('%Y-%m')}"
    cached = cache_get(cache_key)
    if cached is not None:
        return cached

    with db_transaction() as cur:
        payload = build_stats(cur, username, today)
    cache_set(cache_key, payload, settings.stats_cache_ttl)
    return payload
