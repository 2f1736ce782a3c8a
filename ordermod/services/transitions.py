"""
State transition driver: after a committed modification, move the order to
the state its new total calls for.

  delta > 0   -> additional payment state
  delta <= 0  -> the state the order was in before modification began

A rejected transition is reported, never retried, and never undoes the
committed edits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ordermod.errors import OrderApiError, TransitionError, UnhandledResultError
from ordermod.schemas import Order
from ordermod.services.outcome import price_delta
from ordermod.services.ports import StateTransitionService

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    price_delta: int
    target_state: Optional[str]
    order: Optional[Order] = None
    error: Optional[TransitionError] = None
    transport_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class StateTransitionDriver:
    def __init__(self, transitions: StateTransitionService, additional_payment_state: str) -> None:
        self._transitions = transitions
        self.additional_payment_state = additional_payment_state

    def next_state(self, delta: int, previous_state: Optional[str]) -> Optional[str]:
        if delta > 0:
            return self.additional_payment_state
        return previous_state

    async def finalize(
        self,
        committed: Order,
        original_total_with_tax: int,
        previous_state: Optional[str],
    ) -> TransitionResult:
        # The committed total is authoritative even if it differs from the preview
        delta = price_delta(committed.total_with_tax, original_total_with_tax)
        target = self.next_state(delta, previous_state)

        if target is None:
            error = TransitionError(
                message=(
                    f"Cannot restore order {committed.id}: "
                    "its state before modification is unknown"
                ),
                from_state=committed.state,
            )
            logger.error(error.message)
            return TransitionResult(price_delta=delta, target_state=None, error=error)

        logger.info(
            "Transitioning order %s %s -> %s (delta %+d)",
            committed.id, committed.state, target, delta,
        )
        try:
            result = await self._transitions.transition_to_state(committed.id, target)
        except OrderApiError as exc:
            logger.error(
                "Transition of order %s to %s failed in transport: %s",
                committed.id, target, exc,
            )
            error = TransitionError(
                message=f"Could not transition order {committed.id} to {target}: {exc}",
                from_state=committed.state,
                to_state=target,
            )
            return TransitionResult(
                price_delta=delta, target_state=target, error=error, transport_failed=True,
            )

        if isinstance(result, Order):
            return TransitionResult(price_delta=delta, target_state=target, order=result)
        if isinstance(result, TransitionError):
            logger.error(
                "Transition of order %s to %s rejected: %s",
                committed.id, target, result.message,
            )
            return TransitionResult(price_delta=delta, target_state=target, error=result)
        raise UnhandledResultError(result)
