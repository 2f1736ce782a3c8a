"""
Admin / operational endpoints.

GET  /admin/health
GET  /admin/modifications            (?order_id=...&limit=...)
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ordermod.database import get_db
from ordermod.schemas import HealthResponse, ModificationRecordRow
from ordermod.services.audit import list_records

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        db_status = "error"
    return HealthResponse(status="ok", db=db_status)


@router.get("/modifications", response_model=List[ModificationRecordRow])
async def list_modifications(
    order_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> List[ModificationRecordRow]:
    rows = await list_records(db, order_id=order_id, limit=limit)
    return [
        ModificationRecordRow(
            id=r.id,
            order_id=r.order_id,
            action=r.action,
            dry_run=r.dry_run,
            outcome=r.outcome,
            price_delta=r.price_delta,
            order_state=r.order_state,
            error_code=r.error_code,
            message=r.message,
            note=r.note,
            created_at=r.created_at.isoformat(),
        )
        for r in rows
    ]
