"""
Interfaces of the collaborators the modification engine talks to.

``OrderApiClient`` implements the four order-facing ports against the shop's
admin API; the notifier and audit sinks live in their own modules.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, Union

from ordermod.errors import ModifyOrderError, TransitionError
from ordermod.schemas import ModifyOrderInput, Order, Outcome, Preview


class OrderMutationService(Protocol):
    async def modify_order(self, request: ModifyOrderInput) -> Union[Order, ModifyOrderError]: ...


class StateTransitionService(Protocol):
    async def transition_to_state(self, order_id: str, state: str) -> Union[Order, TransitionError]: ...


class OrderHistoryReader(Protocol):
    async def get_previous_state(self, order_id: str) -> Optional[str]:
        """``from`` state of the most recent state-transition history entry."""
        ...


class OrderReader(Protocol):
    async def get_order(self, order_id: str) -> Order: ...


class DecisionSurface(Protocol):
    async def decide(self, preview: Preview) -> Outcome: ...


class NotificationSink(Protocol):
    async def error(self, message: str) -> None: ...


@dataclass
class AuditEntry:
    order_id: str
    action: str                      # dry_run | commit | cancel | transition | abandon
    dry_run: bool = False
    outcome: Optional[str] = None
    price_delta: Optional[int] = None
    order_state: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    note: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...


class OrderGateway(OrderMutationService, StateTransitionService, OrderHistoryReader, OrderReader, Protocol):
    """Everything the session needs from the shop in one object."""
