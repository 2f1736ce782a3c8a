"""
Order Modification Service – FastAPI entry point.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ordermod import database
from ordermod.config import get_settings
from ordermod.errors import (
    InvalidOutcomeError,
    OrderApiError,
    OrderNotFoundError,
    SessionStateError,
    StagingLockedError,
)
from ordermod.routers import admin, modifications

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s – %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Modification Service",
    version="1.0.0",
    description="Stage, preview and commit edits to placed orders.",
)

# ── Middleware ────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Exception handlers ────────────────────────────────────────────────────────


def _error(status_code: int, exc: Exception) -> JSONResponse:
    # KeyError repr-quotes its message
    detail = exc.args[0] if isinstance(exc, KeyError) and exc.args else str(exc)
    return JSONResponse(status_code=status_code, content={"detail": str(detail)})


@app.exception_handler(SessionStateError)
async def _session_state(request: Request, exc: SessionStateError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(StagingLockedError)
async def _staging_locked(request: Request, exc: StagingLockedError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(InvalidOutcomeError)
async def _invalid_outcome(request: Request, exc: InvalidOutcomeError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(ValueError)
async def _invalid_value(request: Request, exc: ValueError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(KeyError)
async def _unknown_key(request: Request, exc: KeyError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(IndexError)
async def _unknown_index(request: Request, exc: IndexError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(OrderNotFoundError)
async def _order_not_found(request: Request, exc: OrderNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(OrderApiError)
async def _order_api(request: Request, exc: OrderApiError):
    logger.error("Order API failure on %s: %s", request.url.path, exc)
    return _error(status.HTTP_502_BAD_GATEWAY, exc)

# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(admin.router)
app.include_router(modifications.router)


@app.on_event("startup")
async def _startup() -> None:
    await database.create_schema()
    logger.info(
        "Order modification service ready (order API %s).", settings.order_api_url
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    await database.engine.dispose()
