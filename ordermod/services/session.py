"""
Modification session: the dry-run -> decide -> commit -> transition flow for
one order.

States:

    STAGING -> PREVIEWING -> PREVIEWED -> COMMITTING -> COMMITTED
                   |             |             |
                   v             v             v
                 FAILED      CANCELLED       FAILED
                (retry)    (-> STAGING)    (terminal)

Dry run and commit are two separate calls to the shop with no transaction
spanning them. A committed modification is never rolled back, even when the
state transition that follows it is rejected.
"""
from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Optional, Union

from ordermod.config import get_settings
from ordermod.errors import (
    MODIFY_ORDER_ERRORS,
    ErrorResult,
    ModifyOrderError,
    OrderApiError,
    OrderModificationStateError,
    PreviewNotAllowedError,
    SessionStateError,
    TransitionError,
    UnhandledResultError,
    UnknownError,
)
from ordermod.schemas import ModifyOrderInput, Order, Outcome, OutcomeType, Preview
from ordermod.services.change_set import ChangeSetBuilder
from ordermod.services.outcome import build_preview, check_outcome, refund_input, resolve
from ordermod.services.ports import (
    AuditEntry,
    AuditSink,
    DecisionSurface,
    NotificationSink,
    OrderGateway,
)
from ordermod.services.transitions import StateTransitionDriver, TransitionResult

logger = logging.getLogger(__name__)

_MODIFY_ERROR_TYPES = tuple(MODIFY_ORDER_ERRORS.values()) + (UnknownError,)


class SessionState(str, Enum):
    STAGING = "staging"
    PREVIEWING = "previewing"
    PREVIEWED = "previewed"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ModificationSession:
    """
    One operator edit session against one order.

    Holds the staged change set, the last dry-run preview and the state the
    order was in before modification began (read once, when the session opens).
    """

    def __init__(
        self,
        order: Order,
        previous_state: Optional[str],
        gateway: OrderGateway,
        notifier: NotificationSink,
        additional_payment_state: str,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.order = order
        self.previous_state = previous_state
        self.builder = ChangeSetBuilder(order)
        self.state = SessionState.STAGING
        self.preview: Optional[Preview] = None
        self.original_total_with_tax: Optional[int] = None
        self.committed: Optional[Order] = None
        self.transition: Optional[TransitionResult] = None
        self.last_error: Optional[ErrorResult] = None
        self.stale = False
        self._commit_attempted = False
        self._gateway = gateway
        self._notifier = notifier
        self._audit = audit
        self._driver = StateTransitionDriver(gateway, additional_payment_state)

    @classmethod
    async def open(
        cls,
        order_id: str,
        gateway: OrderGateway,
        notifier: NotificationSink,
        audit: Optional[AuditSink] = None,
    ) -> "ModificationSession":
        """Enter modification mode for *order_id* and start a session."""
        settings = get_settings()
        order = await gateway.get_order(order_id)

        if order.state != settings.modifying_state:
            result = await gateway.transition_to_state(order_id, settings.modifying_state)
            if isinstance(result, TransitionError):
                await notifier.error(result.message)
                raise SessionStateError(
                    f"Order {order_id} cannot enter {settings.modifying_state}: {result.message}"
                )
            if not isinstance(result, Order):
                raise UnhandledResultError(result)
            order = result

        # Read after entering modification mode so the latest entry is the
        # transition *into* it and its "from" is the state to restore.
        previous_state = await gateway.get_previous_state(order_id)
        logger.info(
            "Opened modification session for order %s (previous state %s)",
            order_id, previous_state,
        )
        return cls(
            order=order,
            previous_state=previous_state,
            gateway=gateway,
            notifier=notifier,
            additional_payment_state=settings.additional_payment_state,
            audit=audit,
        )

    # ── Dry run ──────────────────────────────────────────────────────────────

    async def submit_dry_run(self) -> Union[Preview, ModifyOrderError]:
        retry_after_failure = self.state is SessionState.FAILED and not self._commit_attempted
        if self.state not in (SessionState.STAGING, SessionState.PREVIEWED) and not retry_after_failure:
            raise SessionStateError(f"Cannot preview in state {self.state.value}")
        if not self.builder.can_preview():
            raise PreviewNotAllowedError(
                "A note and at least one change are required before previewing"
            )

        if self.original_total_with_tax is None:
            self.original_total_with_tax = self.order.total_with_tax

        request = self.builder.build(dry_run=True)
        self.state = SessionState.PREVIEWING
        self.preview = None
        logger.info("Dry run for order %s", self.order.id)

        result = await self._submit(request)

        if isinstance(result, Order):
            self.preview = build_preview(
                request, self.order, result, self.original_total_with_tax
            )
            self.state = SessionState.PREVIEWED
            self.last_error = None
            logger.info(
                "Dry run for order %s: total %d -> %d (delta %+d)",
                self.order.id, self.original_total_with_tax,
                result.total_with_tax, self.preview.price_delta,
            )
            await self._record(
                "dry_run", dry_run=True, price_delta=self.preview.price_delta,
                order_state=self.order.state,
            )
            return self.preview

        # Staged edits are kept so the operator can correct and retry,
        # unless the order itself went stale
        await self._fail(result, "dry_run", dry_run=True)
        if isinstance(result, OrderModificationStateError):
            # The order left the modifiable state under us; the snapshot is stale
            await self._resync()
        return result

    # ── Commit ───────────────────────────────────────────────────────────────

    async def submit_commit(self, outcome: Outcome) -> Union[Order, ModifyOrderError, None]:
        """
        Commit the previewed change set. Returns the persisted order, the typed
        error, or None when *outcome* is a cancel.
        """
        if self.state is not SessionState.PREVIEWED or self._commit_attempted:
            raise SessionStateError(f"Cannot commit in state {self.state.value}")
        assert self.preview is not None

        if outcome.type is OutcomeType.CANCEL:
            await self.cancel()
            return None

        if self.builder.build().staged_content() != self.preview.request.staged_content():
            raise SessionStateError(
                f"Staged edits of order {self.order.id} changed after the preview; "
                "preview again before committing"
            )

        missing = check_outcome(outcome, self.preview)
        self._commit_attempted = True
        if missing is not None:
            await self._fail(missing, "commit", outcome=outcome.type.value)
            await self._resync()
            return missing

        request: ModifyOrderInput = self.preview.request.model_copy(
            update={"dry_run": False, "refund": refund_input(outcome)}
        )
        self.state = SessionState.COMMITTING
        logger.info("Committing modification of order %s (%s)", self.order.id, outcome.type.value)

        result = await self._submit(request)

        if isinstance(result, Order):
            self.committed = result
            self.state = SessionState.COMMITTED
            logger.info(
                "Committed modification of order %s: total_with_tax=%d",
                result.id, result.total_with_tax,
            )
            await self._record(
                "commit", outcome=outcome.type.value,
                price_delta=result.total_with_tax - self.original_total_with_tax,
                order_state=result.state,
            )
            return result

        await self._fail(result, "commit", outcome=outcome.type.value)
        if not isinstance(result, UnknownError):
            # Transport failures leave the order state unknown; don't guess.
            await self._resync()
        return result

    # ── Cancel / abandon ─────────────────────────────────────────────────────

    async def cancel(self) -> None:
        """Discard the preview and staged edits, re-read the order, back to staging."""
        if self.state is not SessionState.PREVIEWED:
            raise SessionStateError(f"Cannot cancel in state {self.state.value}")
        self.preview = None
        self.state = SessionState.CANCELLED
        logger.info("Modification of order %s cancelled after preview", self.order.id)
        await self._record("cancel", outcome=OutcomeType.CANCEL.value, order_state=self.order.state)
        await self._resync()
        self.state = SessionState.STAGING

    async def abandon(self) -> Union[Order, TransitionError]:
        """Leave modification mode without committing: restore the prior state."""
        leavable = (SessionState.STAGING, SessionState.PREVIEWED, SessionState.FAILED)
        if self.state not in leavable or self._commit_attempted:
            raise SessionStateError(f"Cannot abandon in state {self.state.value}")
        if self.previous_state is None:
            raise SessionStateError(
                f"State of order {self.order.id} before modification is unknown"
            )

        result = await self._gateway.transition_to_state(self.order.id, self.previous_state)
        if isinstance(result, Order):
            self.order = result
            self.builder = ChangeSetBuilder(result)
            self.preview = None
            self.state = SessionState.CANCELLED
            await self._record("abandon", order_state=result.state)
            return result
        if isinstance(result, TransitionError):
            self.last_error = result
            await self._notifier.error(result.message)
            await self._record(
                "abandon", error_code=result.error_code, message=result.message,
                order_state=self.order.state,
            )
            return result
        raise UnhandledResultError(result)

    # ── Transition ───────────────────────────────────────────────────────────

    async def finalize(self) -> TransitionResult:
        """Move the committed order to its next state, then re-read it."""
        if self.state is not SessionState.COMMITTED or self.transition is not None:
            raise SessionStateError(f"Cannot finalize in state {self.state.value}")
        assert self.committed is not None and self.original_total_with_tax is not None

        self.transition = await self._driver.finalize(
            self.committed, self.original_total_with_tax, self.previous_state
        )
        if self.transition.error is not None:
            self.last_error = self.transition.error
            await self._notifier.error(self.transition.error.message)

        await self._record(
            "transition",
            price_delta=self.transition.price_delta,
            order_state=self.transition.order.state if self.transition.order else self.committed.state,
            error_code=self.transition.error.error_code if self.transition.error else None,
            message=self.transition.error.message if self.transition.error else None,
        )
        if self.transition.transport_failed:
            self.stale = True
        else:
            await self._resync()
        return self.transition

    # ── Whole flow ───────────────────────────────────────────────────────────

    async def preview_and_modify(self, surface: DecisionSurface) -> Optional[TransitionResult]:
        """
        Dry run, ask *surface* for the outcome, then commit and transition.
        Returns the transition result, or None if nothing was committed.
        """
        preview = await self.submit_dry_run()
        if not isinstance(preview, Preview):
            return None
        outcome = await resolve(preview, surface)
        committed = await self.submit_commit(outcome)
        if not isinstance(committed, Order):
            return None
        return await self.finalize()

    # ── Internals ────────────────────────────────────────────────────────────

    async def _submit(self, request: ModifyOrderInput) -> Union[Order, ModifyOrderError]:
        """
        Send *request* with staging locked. Transport failures come back as
        ``UnknownError``; anything else that escapes leaves the session FAILED.
        """
        try:
            with self.builder.submitting():
                result = await self._gateway.modify_order(request)
        except OrderApiError as exc:
            logger.error(
                "modifyOrder transport failure for order %s (dry_run=%s): %s",
                request.order_id, request.dry_run, exc,
            )
            return UnknownError(message=f"Order modification failed: {exc}")
        except Exception:
            self.state = SessionState.FAILED
            logger.error(
                "modifyOrder for order %s (dry_run=%s) raised; session failed",
                request.order_id, request.dry_run,
            )
            raise

        if isinstance(result, Order):
            return result
        if isinstance(result, _MODIFY_ERROR_TYPES):
            return result
        self.state = SessionState.FAILED
        raise UnhandledResultError(result)

    async def _fail(self, error: ErrorResult, action: str, dry_run: bool = False, outcome: Optional[str] = None) -> None:
        self.state = SessionState.FAILED
        self.last_error = error
        logger.warning(
            "%s for order %s failed: %s (%s)",
            action, self.order.id, error.error_code, error.message,
        )
        await self._notifier.error(error.message)
        await self._record(
            action, dry_run=dry_run, outcome=outcome, error_code=error.error_code,
            message=error.message, order_state=self.order.state,
        )

    async def _resync(self) -> None:
        """Replace cached order and staged edits with the authoritative record."""
        self.order = await self._gateway.get_order(self.order.id)
        self.builder = ChangeSetBuilder(self.order)
        self.stale = False
        logger.debug(
            "Re-synchronised order %s: state=%s total_with_tax=%d",
            self.order.id, self.order.state, self.order.total_with_tax,
        )

    async def _record(self, action: str, **fields) -> None:
        if self._audit is None:
            return
        note = self.preview.request.note if self.preview else self.builder.note
        await self._audit.record(
            AuditEntry(order_id=self.order.id, action=action, note=note, **fields)
        )
