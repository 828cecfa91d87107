"""
backend/quantara/main.py

Purpose:
    Application entry point: lifespan (database, seed admin, leaderboard
    job), CORS and request logging, routers, and the mapping from library
    exceptions to JSON error responses.

Dependencies:
    - quantara.database
    - quantara.workers.leaderboard
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import quantara.database as _db
from quantara.config import settings
from quantara.middleware.logging import StructuredLoggingMiddleware, setup_logging
from quantara.routers.auth import router as auth_router
from quantara.routers.bankrolls import router as bankrolls_router
from quantara.routers.bets import router as bets_router
from quantara.routers.payments import router as payments_router
from quantara.seed import seed_initial_admin
from quantara.workers.leaderboard import materialize_leaderboard

logger = logging.getLogger("quantara")
scheduler = AsyncIOScheduler(timezone="UTC")

_UNAVAILABLE = "Service temporarily unavailable."
_INTERNAL = "An internal error occurred."


def _schedule_jobs() -> None:
    scheduler.add_job(
        materialize_leaderboard,
        "interval",
        minutes=settings.LEADERBOARD_REFRESH_MINUTES,
        id="leaderboard",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await _db.connect_db()
    await seed_initial_admin()

    _schedule_jobs()
    scheduler.start()
    logger.info("Leaderboard job scheduled every %d min", settings.LEADERBOARD_REFRESH_MINUTES)
    try:
        yield
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await _db.close_db()


app = FastAPI(
    title="Quantara",
    description="Bankroll tracking for sports bettors",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Stripe-Signature", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(StructuredLoggingMiddleware)

for _router in (auth_router, bankrolls_router, bets_router, payments_router):
    app.include_router(_router)


# ---------- Error mapping ----------

# exception type -> (status, detail, log level or None)
_ERROR_MAP = [
    (InvalidId, 400, "Invalid ID.", None),
    (DuplicateKeyError, 409, "Duplicate entry.", logging.WARNING),
    (ServerSelectionTimeoutError, 503, _UNAVAILABLE, logging.ERROR),
    (ConnectionFailure, 503, _UNAVAILABLE, logging.ERROR),
    (OperationFailure, 500, _INTERNAL, logging.ERROR),
    # a ValueError subclass, but raised by models built from stored data
    (ValidationError, 500, _INTERNAL, logging.ERROR),
    (ValueError, 400, "Invalid input.", logging.WARNING),
]


def _json_error(status_code: int, detail: str, level):
    async def handler(request: Request, exc: Exception):
        if level is not None:
            logger.log(
                level, "%s on %s %s: %s",
                type(exc).__name__, request.method, request.url.path, exc,
            )
        return JSONResponse(status_code=status_code, content={"detail": detail})
    return handler


for _exc_type, _status, _detail, _level in _ERROR_MAP:
    app.add_exception_handler(_exc_type, _json_error(_status, _detail, _level))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """422 with one ``{field, message}`` entry per failing input."""
    errors = []
    for err in exc.errors():
        # ("body", "stake") -> "stake"; a bare ("body",) stays "body"
        loc = [str(part) for part in err.get("loc", ())]
        field = ".".join(loc[1:] or loc) or "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_handler(request: Request, exc: Exception):
    """Everything else, including bets stored without a stake, ends here."""
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": _INTERNAL})


@app.get("/health")
async def health():
    try:
        ping = await _db.db.command("ping")
        database = "connected" if ping.get("ok") == 1.0 else "disconnected"
    except Exception:
        logger.warning("Health check: database ping failed", exc_info=True)
        database = "disconnected"

    job = scheduler.get_job("leaderboard") if scheduler.running else None
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "db": database,
        "scheduler": scheduler.running,
        "leaderboard_next_run": job.next_run_time if job else None,
    }
