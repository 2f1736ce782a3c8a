"""
Audit trail of modification sessions, stored through async SQLAlchemy.

Writes are best-effort: a database problem is logged and never aborts the
modification it describes.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ordermod.models import ModificationRecord
from ordermod.services.ports import AuditEntry

logger = logging.getLogger(__name__)


class SqlAuditSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            session.add(
                ModificationRecord(
                    order_id=entry.order_id,
                    action=entry.action,
                    dry_run=entry.dry_run,
                    outcome=entry.outcome,
                    price_delta=entry.price_delta,
                    order_state=entry.order_state,
                    error_code=entry.error_code,
                    message=entry.message,
                    note=entry.note,
                    created_at=entry.created_at,
                )
            )
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "Audit write failed order=%s action=%s: %s",
                    entry.order_id, entry.action, exc,
                )


async def list_records(
    session: AsyncSession,
    order_id: Optional[str] = None,
    limit: int = 100,
) -> List[ModificationRecord]:
    stmt = select(ModificationRecord).order_by(
        ModificationRecord.created_at.desc(), ModificationRecord.id.desc()
    )
    if order_id:
        stmt = stmt.where(ModificationRecord.order_id == order_id)
    return list((await session.execute(stmt.limit(limit))).scalars().all())
