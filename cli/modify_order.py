#!/usr/bin/env python3
"""
CLI: Apply a JSON change set to a placed order.

Usage:
    # Preview, then choose apply / refund / cancel interactively
    python -m cli.modify_order --order 42 --changes changes.json

    # Preview only (order is returned to its previous state afterwards)
    python -m cli.modify_order --order 42 --changes changes.json --preview-only

    # Non-interactive; refund the difference to a payment
    python -m cli.modify_order --order 42 --changes changes.json --yes \\
        --refund-payment 7 --reason "customer request"

Change set file:
    {
      "note": "Customer swapped sizes",
      "add_items": [{"product_variant_id": "12", "product_variant_name": "Tee L",
                     "price": 500, "price_with_tax": 600, "quantity": 1}],
      "adjust_lines": {"31": 0},
      "surcharges": [{"description": "Restocking fee", "price": 300, "tax_rate": 20}],
      "shipping_address": {"city": "Berlin"},
      "recalculate_shipping": true
    }
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ordermod.config import get_settings
from ordermod.errors import ErrorResult, InvalidOutcomeError, OrderApiError, SessionStateError
from ordermod.schemas import Outcome, Preview, SurchargeInput, VariantSnapshot
from ordermod.services.change_set import ChangeSetBuilder
from ordermod.services.notifications import build_notifier
from ordermod.services.order_api import OrderApiClient
from ordermod.services.session import ModificationSession

logger = logging.getLogger("cli.modify_order")


def stage_changes(builder: ChangeSetBuilder, changes: Dict[str, Any]) -> None:
    for item in changes.get("add_items", []):
        quantity = int(item.pop("quantity", 1))
        snapshot = VariantSnapshot(**item)
        builder.add_item(snapshot)
        if quantity != 1:
            builder.set_added_item_quantity(snapshot.product_variant_id, quantity)
    for line_id, quantity in changes.get("adjust_lines", {}).items():
        builder.set_line_quantity(str(line_id), int(quantity))
    for surcharge in changes.get("surcharges", []):
        builder.add_surcharge(SurchargeInput(**surcharge))
    if changes.get("shipping_address"):
        builder.update_shipping_address(**changes["shipping_address"])
    if changes.get("billing_address"):
        builder.update_billing_address(**changes["billing_address"])
    if "recalculate_shipping" in changes:
        builder.set_recalculate_shipping(bool(changes["recalculate_shipping"]))
    builder.set_note(changes.get("note", ""))


def print_staged(builder: ChangeSetBuilder) -> None:
    """Staged surcharges as they will be submitted: entered price and net/gross."""
    for s in builder.surcharges:
        prices = s.prices
        basis = "incl." if s.price_includes_tax else "excl."
        print(
            f"Surcharge {s.description!r}: {s.price} {basis} {s.tax_rate}% tax "
            f"-> net {prices.net}, gross {prices.gross}"
        )


def print_preview(preview: Preview) -> None:
    print(f"\n{'LINE':<12} {'VARIANT':<30} {'CHANGE':<10} {'QTY':>9} {'PRICE':>16}")
    print("-" * 82)
    for d in preview.lines:
        qty = f"{d.quantity_before}->{d.quantity_after}"
        price = f"{d.line_price_with_tax_before}->{d.line_price_with_tax_after}"
        print(f"{d.order_line_id:<12} {d.product_variant_name:<30} {d.change.value:<10} {qty:>9} {price:>16}")
    for s in preview.order.surcharges:
        print(f"{'surcharge':<12} {s.description:<30} {'':<10} {'':>9} {s.price_with_tax:>16}")
    print("-" * 82)
    print(f"Total with tax: {preview.original_total_with_tax} -> {preview.order.total_with_tax} "
          f"(delta {preview.price_delta:+d})")


class ConsoleDecisionSurface:
    def __init__(self, assume_yes: bool, refund_payment: Optional[str], reason: str) -> None:
        self.assume_yes = assume_yes
        self.refund_payment = refund_payment
        self.reason = reason

    async def decide(self, preview: Preview) -> Outcome:
        print_preview(preview)
        if self.assume_yes:
            if self.refund_payment and preview.price_delta < 0:
                return Outcome.refund(self.refund_payment, self.reason)
            return Outcome.apply()

        prompt = "[a]pply, [r]efund, [c]ancel? " if preview.price_delta < 0 else "[a]pply, [c]ancel? "
        answer = (await asyncio.to_thread(input, prompt)).strip().lower()
        if answer.startswith("a"):
            return Outcome.apply()
        if answer.startswith("r") and preview.price_delta < 0:
            payment_id = self.refund_payment or (
                await asyncio.to_thread(input, "Payment id to refund: ")
            ).strip()
            reason = self.reason or (await asyncio.to_thread(input, "Refund reason: ")).strip()
            return Outcome.refund(payment_id or None, reason)
        return Outcome.cancel()


async def cmd_modify(args: argparse.Namespace) -> int:
    with open(args.changes, encoding="utf-8") as fh:
        changes = json.load(fh)

    gateway = OrderApiClient.from_settings()
    try:
        session = await ModificationSession.open(args.order, gateway, build_notifier())
    except (OrderApiError, SessionStateError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    stage_changes(session.builder, changes)
    print_staged(session.builder)
    if not session.builder.can_preview():
        print("ERROR: change set needs a note and at least one change", file=sys.stderr)
        return 1

    if args.preview_only:
        preview = await session.submit_dry_run()
        if isinstance(preview, Preview):
            print_preview(preview)
            await session.cancel()
        await session.abandon()
        return 0 if isinstance(preview, Preview) else 1

    surface = ConsoleDecisionSurface(args.yes, args.refund_payment, args.reason)
    try:
        transition = await session.preview_and_modify(surface)
    except InvalidOutcomeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if transition is None:
        if isinstance(session.last_error, ErrorResult):
            print(f"ERROR: {session.last_error.message}", file=sys.stderr)
            return 1
        print("Modification cancelled; order left in modification mode.")
        return 0

    if transition.ok:
        print(f"\n→ Order {session.order.id} is now {session.order.state} (delta {transition.price_delta:+d})")
        return 0
    print(f"ERROR: modification committed but {transition.error.message}", file=sys.stderr)
    return 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Order modification CLI")
    parser.add_argument("--order", required=True, metavar="ORDER_ID", help="Order to modify")
    parser.add_argument("--changes", required=True, metavar="FILE", help="JSON change set")
    parser.add_argument("--preview-only", action="store_true", help="Dry run, then leave the order as it was")
    parser.add_argument("--yes", action="store_true", help="Do not prompt; apply (or refund, see below)")
    parser.add_argument("--refund-payment", metavar="PAYMENT_ID", help="Payment to refund when the total drops")
    parser.add_argument("--reason", default="", help="Refund reason")
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s – %(message)s",
    )
    sys.exit(asyncio.run(cmd_modify(args)))


if __name__ == "__main__":
    main()
