"""
FastAPI dependency utilities: shop gateway, notifier, audit sink, session registry.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Optional

from fastapi import HTTPException, status

from ordermod.services.audit import SqlAuditSink
from ordermod.services.notifications import build_notifier
from ordermod.services.order_api import OrderApiClient
from ordermod.services.ports import AuditSink, NotificationSink, OrderGateway
from ordermod.services.session import ModificationSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """In-process store of open modification sessions, keyed by session id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ModificationSession] = {}

    def add(self, session: ModificationSession) -> None:
        self._sessions[session.id] = session

    def get(self, session_id: str) -> ModificationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Modification session {session_id!r} not found",
            )
        return session

    def discard(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.debug("Released modification session %s (%d open)", session_id, len(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)


_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _registry


@lru_cache(maxsize=1)
def get_gateway() -> OrderGateway:
    return OrderApiClient.from_settings()


@lru_cache(maxsize=1)
def get_notifier() -> NotificationSink:
    return build_notifier()


def get_audit() -> Optional[AuditSink]:
    from ordermod.database import AsyncSessionLocal
    return SqlAuditSink(AsyncSessionLocal)
