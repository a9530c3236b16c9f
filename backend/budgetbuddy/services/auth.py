import hashlib
from datetime import datetime, timezone

from fastapi import HTTPException, Request

from budgetbuddy.db.pool import db_conn


def hash_api_key(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def parse_bearer_token(req: Request) -> str:
    header = req.headers.get("authorization", "")
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Missing API key")
    return parts[1].strip()


def get_api_user_by_token(token: str) -> str:
    token_hash = hash_api_key(token)
    with db_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            SELECT k.username
            FROM api_keys k
            WHERE k.key_hash=%s AND k.revoked_at IS NULL
            """,
            (token_hash,),
        )
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=401, detail="Invalid API key")
        cur.execute(
            "UPDATE api_keys SET last_used_at=%s WHERE key_hash=%s",
            (datetime.now(timezone.utc), token_hash),
        )
        conn.commit()
        return row["username"]


def require_api_user(req: Request) -> str:
    return get_api_user_by_token(parse_bearer_token(req))
