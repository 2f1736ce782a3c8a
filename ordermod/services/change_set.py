"""
Change set builder: accumulates the staged edits of one modification session
and produces the immutable ``ModifyOrderInput`` submitted for dry run and commit.

A builder belongs to exactly one order snapshot. When the order is re-fetched
the session throws the builder away and starts a fresh one.
"""
from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from pydantic import ValidationError

from ordermod.errors import StagingLockedError
from ordermod.schemas import (
    AddedLine,
    Address,
    AddItemInput,
    AddressPatch,
    AdjustOrderLineInput,
    ModifyOrderInput,
    ModifyOrderOptions,
    Order,
    RefundInput,
    SurchargeInput,
    VariantSnapshot,
)
from ordermod.services.pricing import PricePair, reconcile

logger = logging.getLogger(__name__)

SURCHARGE_DRAFT_DEFAULTS: Dict[str, Any] = {
    "price": 0,
    "price_includes_tax": True,
    "tax_rate": 0,
}


def _staging(method):
    @functools.wraps(method)
    def wrapper(self: "ChangeSetBuilder", *args, **kwargs):
        if self._locked:
            raise StagingLockedError(
                f"Cannot {method.__name__} on order {self.order.id}: submission in flight"
            )
        return method(self, *args, **kwargs)
    return wrapper


class AddressEdit:
    """Tracks operator edits to one address against the order's current value."""

    _fields = tuple(Address.model_fields)

    def __init__(self, original: Address) -> None:
        self.original = original
        self._values: Dict[str, Optional[str]] = {}

    def update(self, **fields: Optional[str]) -> None:
        unknown = set(fields) - set(self._fields)
        if unknown:
            raise KeyError(f"Unknown address field(s): {', '.join(sorted(unknown))}")
        self._values.update(fields)

    def _changed(self) -> Dict[str, Optional[str]]:
        return {
            k: v for k, v in self._values.items()
            if v != getattr(self.original, k)
        }

    @property
    def dirty(self) -> bool:
        return bool(self._changed())

    @property
    def errors(self) -> List[str]:
        try:
            AddressPatch(**self._changed())
        except ValidationError as exc:
            return [
                f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
            ]
        return []

    @property
    def valid(self) -> bool:
        return not self.errors

    def patch(self) -> Optional[AddressPatch]:
        """The partial update to submit, or None unless dirty and valid."""
        if not (self.dirty and self.valid):
            return None
        return AddressPatch(**self._changed())


class ChangeSetBuilder:
    def __init__(self, order: Order) -> None:
        self.order = order
        self._add_items: Dict[str, int] = {}
        self._snapshots: Dict[str, VariantSnapshot] = {}
        self._adjustments: Dict[str, int] = {}
        self._surcharges: List[SurchargeInput] = []
        self.shipping_address = AddressEdit(order.shipping_address)
        self.billing_address = AddressEdit(order.billing_address)
        self.note = ""
        self.recalculate_shipping = True
        self.surcharge_draft: Dict[str, Any] = dict(SURCHARGE_DRAFT_DEFAULTS)
        self._locked = False

    # ── Added items ──────────────────────────────────────────────────────────

    @_staging
    def add_item(self, snapshot: VariantSnapshot) -> None:
        variant_id = snapshot.product_variant_id
        if variant_id in self._add_items:
            self._add_items[variant_id] += 1
        else:
            self._add_items[variant_id] = 1
            self._snapshots[variant_id] = snapshot

    @_staging
    def remove_item(self, product_variant_id: str) -> None:
        self._add_items.pop(product_variant_id, None)
        self._snapshots.pop(product_variant_id, None)

    @_staging
    def set_added_item_quantity(self, product_variant_id: str, quantity: int) -> None:
        if product_variant_id not in self._add_items:
            raise KeyError(f"Variant {product_variant_id} has not been added")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValueError(f"Quantity must be a positive integer, got {quantity!r}")
        self._add_items[product_variant_id] = quantity

    @property
    def added_lines(self) -> List[AddedLine]:
        return [
            AddedLine(
                product_variant_id=variant_id,
                product_variant_name=snap.product_variant_name,
                sku=snap.sku,
                price=snap.price,
                price_with_tax=snap.price_with_tax,
                quantity=self._add_items[variant_id],
            )
            for variant_id, snap in self._snapshots.items()
            if variant_id in self._add_items
        ]

    # ── Existing lines ───────────────────────────────────────────────────────

    @_staging
    def set_line_quantity(self, order_line_id: str, quantity: int) -> None:
        line = self.order.line(order_line_id)
        if line is None:
            raise KeyError(f"Order {self.order.id} has no line {order_line_id}")
        if quantity == line.quantity:
            # Back to the persisted quantity: drop the edit instead of submitting a no-op
            self._adjustments.pop(order_line_id, None)
        else:
            self._adjustments[order_line_id] = quantity

    def is_line_modified(self, order_line_id: str) -> bool:
        line = self.order.line(order_line_id)
        return (
            line is not None
            and order_line_id in self._adjustments
            and self._adjustments[order_line_id] != line.quantity
        )

    # ── Surcharges ───────────────────────────────────────────────────────────

    @_staging
    def add_surcharge(self, surcharge: SurchargeInput) -> None:
        self._surcharges.append(surcharge)
        self.surcharge_draft = dict(SURCHARGE_DRAFT_DEFAULTS)

    @_staging
    def remove_surcharge(self, index: int) -> None:
        del self._surcharges[index]

    @property
    def surcharges(self) -> List[SurchargeInput]:
        return list(self._surcharges)

    @_staging
    def update_surcharge_draft(self, **fields: Any) -> PricePair:
        """Edit the pending surcharge form and return its reconciled prices."""
        unknown = set(fields) - set(SURCHARGE_DRAFT_DEFAULTS)
        if unknown:
            raise KeyError(f"Unknown surcharge field(s): {', '.join(sorted(unknown))}")
        draft = {**self.surcharge_draft, **fields}
        prices = reconcile(draft["price"], draft["price_includes_tax"], draft["tax_rate"])
        self.surcharge_draft = draft
        return prices

    @property
    def draft_prices(self) -> PricePair:
        d = self.surcharge_draft
        return reconcile(d["price"], d["price_includes_tax"], d["tax_rate"])

    # ── Addresses, note, options ─────────────────────────────────────────────

    @_staging
    def update_shipping_address(self, **fields: Optional[str]) -> None:
        self.shipping_address.update(**fields)

    @_staging
    def update_billing_address(self, **fields: Optional[str]) -> None:
        self.billing_address.update(**fields)

    @_staging
    def set_note(self, note: str) -> None:
        self.note = note

    @_staging
    def set_recalculate_shipping(self, recalculate: bool) -> None:
        self.recalculate_shipping = recalculate

    # ── Gate and output ──────────────────────────────────────────────────────

    def has_changes(self) -> bool:
        return bool(
            self._add_items
            or self._surcharges
            or self._adjustments
            or (self.shipping_address.dirty and self.shipping_address.valid)
            or (self.billing_address.dirty and self.billing_address.valid)
        )

    def can_preview(self) -> bool:
        # A dirty address that fails validation would be dropped from the request
        invalid = any(a.dirty and not a.valid for a in (self.shipping_address, self.billing_address))
        return self.has_changes() and self.note != "" and not invalid

    def build(self, dry_run: bool = True, refund: Optional[RefundInput] = None) -> ModifyOrderInput:
        return ModifyOrderInput(
            order_id=self.order.id,
            dry_run=dry_run,
            add_items=tuple(
                AddItemInput(product_variant_id=v, quantity=q)
                for v, q in self._add_items.items()
            ),
            adjust_order_lines=tuple(
                AdjustOrderLineInput(order_line_id=l, quantity=q)
                for l, q in self._adjustments.items()
            ),
            surcharges=tuple(self._surcharges),
            update_shipping_address=self.shipping_address.patch(),
            update_billing_address=self.billing_address.patch(),
            note=self.note,
            options=ModifyOrderOptions(recalculate_shipping=self.recalculate_shipping),
            refund=refund,
        )

    @contextmanager
    def submitting(self) -> Iterator[None]:
        """Lock staging for the duration of a submission."""
        self._locked = True
        try:
            yield
        finally:
            self._locked = False
