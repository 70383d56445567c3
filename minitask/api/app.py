"""FastAPI web application for minitask."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request

from minitask.api import auth_routes, tasks_v1, tasks_v2, users
from minitask.api.errors import register_exception_handlers
from minitask.database.database import SessionLocal, init_db
from minitask.database.idempotency_repository import IdempotencyRepository

logger = logging.getLogger(__name__)


def purge_expired_idempotency_keys() -> int:
    db = SessionLocal()
    try:
        return IdempotencyRepository(db).purge_expired(datetime.utcnow())
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    purged = purge_expired_idempotency_keys()
    if purged:
        logger.info(f"Purged {purged} expired idempotency keys")
    yield


# Initialize FastAPI app
app = FastAPI(
    title="minitask API",
    description="Task service with idempotent creates, attribute-based access control and rate limits",
    version="0.1.0",
    lifespan=lifespan,
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log one line per request and attach the caller's rate-limit quota headers."""
    started = time.perf_counter()
    response = await call_next(request)
    for name, value in getattr(request.state, "rate_limit_headers", {}).items():
        response.headers.setdefault(name, value)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
    return response


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"ok": True}


app.include_router(auth_routes.router)
app.include_router(users.router)
app.include_router(tasks_v1.router)
app.include_router(tasks_v2.router)
