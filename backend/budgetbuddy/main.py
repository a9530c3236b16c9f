import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from budgetbuddy.core.config import settings
from budgetbuddy.db.pool import close_db_pool, open_db_pool
from budgetbuddy.routers.transactions import router as transactions_router

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    open_db_pool()
    try:
        yield
    finally:
        close_db_pool()


app = FastAPI(title="BudgetBuddy", lifespan=lifespan)
app.include_router(transactions_router)


@app.exception_handler(HTTPException)
def http_exc_handler(_, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "detail": exc.detail})
