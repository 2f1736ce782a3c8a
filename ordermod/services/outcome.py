"""
Outcome resolution: turn a dry-run result into a preview, ask the operator
what to do with it, and check the answer against the previewed order.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from ordermod.errors import InvalidOutcomeError, RefundPaymentIdMissingError
from ordermod.schemas import (
    LineChange,
    LineDiff,
    ModifyOrderInput,
    Order,
    Outcome,
    OutcomeType,
    Preview,
    RefundInput,
)
from ordermod.services.ports import DecisionSurface

logger = logging.getLogger(__name__)


def price_delta(new_total_with_tax: int, original_total_with_tax: int) -> int:
    """Signed difference in minor units; positive means the customer owes more."""
    return new_total_with_tax - original_total_with_tax


def diff_lines(original: Order, projected: Order) -> List[LineDiff]:
    diffs: List[LineDiff] = []
    for line in original.lines:
        after = projected.line(line.id)
        qty_after = after.quantity if after else 0
        if qty_after == 0:
            change = LineChange.REMOVED
        elif qty_after != line.quantity:
            change = LineChange.MODIFIED
        else:
            change = LineChange.UNCHANGED
        diffs.append(
            LineDiff(
                order_line_id=line.id,
                product_variant_name=line.product_variant_name,
                change=change,
                quantity_before=line.quantity,
                quantity_after=qty_after,
                line_price_with_tax_before=line.line_price_with_tax,
                line_price_with_tax_after=after.line_price_with_tax if after else 0,
            )
        )
    known = {l.id for l in original.lines}
    for line in projected.lines:
        if line.id not in known:
            diffs.append(
                LineDiff(
                    order_line_id=line.id,
                    product_variant_name=line.product_variant_name,
                    change=LineChange.ADDED,
                    quantity_before=0,
                    quantity_after=line.quantity,
                    line_price_with_tax_before=0,
                    line_price_with_tax_after=line.line_price_with_tax,
                )
            )
    return diffs


def build_preview(
    request: ModifyOrderInput,
    original: Order,
    projected: Order,
    original_total_with_tax: int,
) -> Preview:
    return Preview(
        request=request,
        order=projected,
        original_total_with_tax=original_total_with_tax,
        price_delta=price_delta(projected.total_with_tax, original_total_with_tax),
        lines=diff_lines(original, projected),
    )


def check_outcome(outcome: Outcome, preview: Preview) -> Optional[RefundPaymentIdMissingError]:
    """
    Validate *outcome* against *preview*.

    A refund without a payment id is a reportable result (returned), anything
    else that cannot be committed is raised as ``InvalidOutcomeError``.
    """
    if outcome.type is not OutcomeType.REFUND:
        return None
    if not outcome.refund_payment_id:
        return RefundPaymentIdMissingError()
    if preview.price_delta >= 0:
        raise InvalidOutcomeError(
            f"Refund requested but order {preview.order.id} total does not decrease "
            f"(delta {preview.price_delta:+d})"
        )
    refundable = {p.id for p in preview.order.payments if p.refundable}
    if outcome.refund_payment_id not in refundable:
        raise InvalidOutcomeError(
            f"Payment {outcome.refund_payment_id} is not a settled or authorized "
            f"payment of order {preview.order.id}"
        )
    return None


def refund_input(outcome: Outcome) -> Optional[RefundInput]:
    if outcome.type is not OutcomeType.REFUND:
        return None
    return RefundInput(payment_id=outcome.refund_payment_id, reason=outcome.refund_note)


async def resolve(preview: Preview, surface: DecisionSurface) -> Outcome:
    outcome = await surface.decide(preview)
    logger.info(
        "Operator chose %s for order %s (delta %+d)",
        outcome.type.value, preview.order.id, preview.price_delta,
    )
    return outcome
