"""
Order modification endpoints.

POST   /orders/{order_id}/modification            open a session
GET    /modifications/{session_id}
POST   /modifications/{session_id}/items          stage a catalog variant
PUT    /modifications/{session_id}/items/{variant_id}
DELETE /modifications/{session_id}/items/{variant_id}
PUT    /modifications/{session_id}/lines/{line_id}
POST   /modifications/{session_id}/surcharges
DELETE /modifications/{session_id}/surcharges/{index}
PUT    /modifications/{session_id}/surcharge-draft   net/gross of the pending surcharge
PATCH  /modifications/{session_id}/shipping-address
PATCH  /modifications/{session_id}/billing-address
PUT    /modifications/{session_id}/note
PUT    /modifications/{session_id}/options
POST   /modifications/{session_id}/preview        dry run
POST   /modifications/{session_id}/commit         commit + state transition
POST   /modifications/{session_id}/cancel
POST   /modifications/{session_id}/abandon        leave modification mode
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from ordermod.deps import SessionRegistry, get_audit, get_gateway, get_notifier, get_registry
from ordermod.schemas import (
    Address,
    ModifyOrderOptions,
    NoteUpdate,
    Order,
    Outcome,
    QuantityUpdate,
    SessionView,
    StagedSurcharge,
    SurchargeDraft,
    SurchargeDraftView,
    SurchargeInput,
    TransitionView,
    VariantSnapshot,
)
from ordermod.services.ports import AuditSink, NotificationSink, OrderGateway
from ordermod.services.session import ModificationSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["modifications"])


def _view(session: ModificationSession) -> SessionView:
    builder = session.builder
    staged = builder.build()
    draft = builder.draft_prices
    transition = None
    if session.transition is not None:
        transition = TransitionView(
            price_delta=session.transition.price_delta,
            target_state=session.transition.target_state,
            error=session.transition.error.message if session.transition.error else None,
        )
    return SessionView(
        id=session.id,
        order_id=session.order.id,
        state=session.state.value,
        previous_state=session.previous_state,
        can_preview=builder.can_preview(),
        note=builder.note,
        recalculate_shipping=builder.recalculate_shipping,
        added_lines=builder.added_lines,
        adjust_order_lines=list(staged.adjust_order_lines),
        surcharges=[StagedSurcharge.from_input(i, s) for i, s in enumerate(builder.surcharges)],
        surcharge_draft=SurchargeDraftView(
            **builder.surcharge_draft,
            net=draft.net,
            gross=draft.gross,
        ),
        shipping_address_patch=staged.update_shipping_address,
        billing_address_patch=staged.update_billing_address,
        order=session.order,
        preview=session.preview,
        error_code=session.last_error.error_code if session.last_error else None,
        error_message=session.last_error.message if session.last_error else None,
        transition=transition,
    )


@router.post(
    "/orders/{order_id}/modification",
    response_model=SessionView,
    status_code=status.HTTP_201_CREATED,
)
async def open_modification(
    order_id: str,
    registry: SessionRegistry = Depends(get_registry),
    gateway: OrderGateway = Depends(get_gateway),
    notifier: NotificationSink = Depends(get_notifier),
    audit: Optional[AuditSink] = Depends(get_audit),
) -> SessionView:
    session = await ModificationSession.open(order_id, gateway, notifier, audit=audit)
    registry.add(session)
    return _view(session)


@router.get("/modifications/{session_id}", response_model=SessionView)
async def get_modification(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
) -> SessionView:
    return _view(registry.get(session_id))


# ── Staging ──────────────────────────────────────────────────────────────────

@router.post("/modifications/{session_id}/items", response_model=SessionView)
async def add_item(
    session_id: str,
    snapshot: VariantSnapshot,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.add_item(snapshot)
    return _view(session)


@router.put("/modifications/{session_id}/items/{variant_id}", response_model=SessionView)
async def set_added_item_quantity(
    session_id: str,
    variant_id: str,
    body: QuantityUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.set_added_item_quantity(variant_id, body.quantity)
    return _view(session)


@router.delete("/modifications/{session_id}/items/{variant_id}", response_model=SessionView)
async def remove_item(
    session_id: str,
    variant_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.remove_item(variant_id)
    return _view(session)


@router.put("/modifications/{session_id}/lines/{line_id}", response_model=SessionView)
async def set_line_quantity(
    session_id: str,
    line_id: str,
    body: QuantityUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.set_line_quantity(line_id, body.quantity)
    return _view(session)


@router.post("/modifications/{session_id}/surcharges", response_model=SessionView)
async def add_surcharge(
    session_id: str,
    surcharge: SurchargeInput,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.add_surcharge(surcharge)
    return _view(session)


@router.delete("/modifications/{session_id}/surcharges/{index}", response_model=SessionView)
async def remove_surcharge(
    session_id: str,
    index: int,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.remove_surcharge(index)
    return _view(session)


@router.put("/modifications/{session_id}/surcharge-draft", response_model=SessionView)
async def update_surcharge_draft(
    session_id: str,
    body: SurchargeDraft,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.update_surcharge_draft(**body.model_dump(exclude_unset=True))
    return _view(session)


@router.patch("/modifications/{session_id}/shipping-address", response_model=SessionView)
async def update_shipping_address(
    session_id: str,
    body: Address,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.update_shipping_address(**body.model_dump(exclude_unset=True))
    return _view(session)


@router.patch("/modifications/{session_id}/billing-address", response_model=SessionView)
async def update_billing_address(
    session_id: str,
    body: Address,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.update_billing_address(**body.model_dump(exclude_unset=True))
    return _view(session)


@router.put("/modifications/{session_id}/note", response_model=SessionView)
async def set_note(
    session_id: str,
    body: NoteUpdate,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.set_note(body.note)
    return _view(session)


@router.put("/modifications/{session_id}/options", response_model=SessionView)
async def set_options(
    session_id: str,
    body: ModifyOrderOptions,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    session.builder.set_recalculate_shipping(body.recalculate_shipping)
    return _view(session)


# ── Protocol ─────────────────────────────────────────────────────────────────

@router.post("/modifications/{session_id}/preview", response_model=SessionView)
async def preview(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
) -> SessionView:
    session = registry.get(session_id)
    await session.submit_dry_run()
    return _view(session)


@router.post("/modifications/{session_id}/commit", response_model=SessionView)
async def commit(
    session_id: str,
    outcome: Outcome,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    session = registry.get(session_id)
    result = await session.submit_commit(outcome)
    if isinstance(result, Order):
        await session.finalize()
    if result is not None:
        # Committed (and transitioned) or failed for good; nothing left to do here
        registry.discard(session.id)
    return _view(session)


@router.post("/modifications/{session_id}/cancel", response_model=SessionView)
async def cancel(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
) -> SessionView:
    session = registry.get(session_id)
    await session.cancel()
    return _view(session)


@router.post("/modifications/{session_id}/abandon", response_model=SessionView)
async def abandon(
    session_id: str, registry: SessionRegistry = Depends(get_registry)
) -> SessionView:
    session = registry.get(session_id)
    result = await session.abandon()
    if isinstance(result, Order):
        registry.discard(session.id)
    return _view(session)
