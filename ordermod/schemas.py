"""
Pydantic schemas: order snapshots, modification inputs, operator outcomes.

All money values are integers in minor currency units.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ordermod.services.pricing import PricePair, reconcile


# ── Order snapshot (as returned by the shop API) ─────────────────────────────

class Address(BaseModel):
    full_name: Optional[str] = None
    company: Optional[str] = None
    street_line1: Optional[str] = None
    street_line2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = None
    phone_number: Optional[str] = None


class OrderLine(BaseModel):
    id: str
    product_variant_id: str
    product_variant_name: str = ""
    sku: str = ""
    quantity: int
    unit_price: int
    unit_price_with_tax: int
    line_price_with_tax: int = 0


class Surcharge(BaseModel):
    id: Optional[str] = None
    description: str
    sku: Optional[str] = None
    price: int
    price_with_tax: int
    tax_rate: Decimal = Decimal("0")


class Payment(BaseModel):
    id: str
    method: str = ""
    amount: int
    state: str

    @property
    def refundable(self) -> bool:
        return self.state in ("Settled", "Authorized")


class Order(BaseModel):
    id: str
    code: str = ""
    state: str
    total: int
    total_with_tax: int
    shipping_with_tax: int = 0
    lines: List[OrderLine] = []
    surcharges: List[Surcharge] = []
    payments: List[Payment] = []
    shipping_address: Address = Field(default_factory=Address)
    billing_address: Address = Field(default_factory=Address)

    def line(self, order_line_id: str) -> Optional[OrderLine]:
        return next((l for l in self.lines if l.id == order_line_id), None)


# ── Catalog snapshot captured when staging an added item ─────────────────────

class VariantSnapshot(BaseModel):
    product_variant_id: str
    product_variant_name: str
    sku: str = ""
    price: int
    price_with_tax: int
    product_asset: Optional[str] = None


class AddedLine(BaseModel):
    """A staged-but-uncommitted line, priced from its catalog snapshot."""
    product_variant_id: str
    product_variant_name: str
    sku: str
    price: int
    price_with_tax: int
    quantity: int


# ── Modification input ───────────────────────────────────────────────────────

class AddItemInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_variant_id: str
    quantity: int = Field(..., gt=0)


class AdjustOrderLineInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_line_id: str
    quantity: int


class SurchargeInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = Field(..., min_length=1)
    sku: Optional[str] = None
    price: int
    price_includes_tax: bool = True
    tax_rate: Decimal = Decimal("0")
    tax_description: Optional[str] = None

    @property
    def prices(self) -> PricePair:
        return reconcile(self.price, self.price_includes_tax, self.tax_rate)


class AddressPatch(BaseModel):
    """Partial address update; only the fields that were edited are set."""
    model_config = ConfigDict(frozen=True)

    full_name: Optional[str] = None
    company: Optional[str] = None
    street_line1: Optional[str] = None
    street_line2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = None
    phone_number: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def _iso_country(cls, v: Optional[str]) -> Optional[str]:
        # Runs only for fields present in the patch; None there means "clear"
        if v is None or len(v) != 2 or not v.isalpha():
            raise ValueError("country_code must be a two-letter ISO code")
        return v.upper()

    @field_validator("street_line1", "city")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            raise ValueError("must not be blank")
        return v


class ModifyOrderOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    recalculate_shipping: bool = True


class RefundInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    payment_id: Optional[str] = None
    reason: str = ""


class ModifyOrderInput(BaseModel):
    """
    One change set. The dry run and the commit of a session carry identical
    content; only ``dry_run`` and ``refund`` may differ between them.
    """
    model_config = ConfigDict(frozen=True)

    order_id: str
    dry_run: bool = True
    add_items: Tuple[AddItemInput, ...] = ()
    adjust_order_lines: Tuple[AdjustOrderLineInput, ...] = ()
    surcharges: Tuple[SurchargeInput, ...] = ()
    update_shipping_address: Optional[AddressPatch] = None
    update_billing_address: Optional[AddressPatch] = None
    note: str = ""
    options: ModifyOrderOptions = Field(default_factory=ModifyOrderOptions)
    refund: Optional[RefundInput] = None

    def staged_content(self) -> dict:
        return self.model_dump(exclude={"dry_run", "refund"})


# ── Operator outcome ─────────────────────────────────────────────────────────

class OutcomeType(str, Enum):
    CANCEL = "cancel"
    APPLY = "apply"
    REFUND = "refund"


class Outcome(BaseModel):
    type: OutcomeType
    refund_payment_id: Optional[str] = None
    refund_note: str = ""

    @classmethod
    def cancel(cls) -> "Outcome":
        return cls(type=OutcomeType.CANCEL)

    @classmethod
    def apply(cls) -> "Outcome":
        return cls(type=OutcomeType.APPLY)

    @classmethod
    def refund(cls, payment_id: Optional[str], reason: str = "") -> "Outcome":
        return cls(type=OutcomeType.REFUND, refund_payment_id=payment_id, refund_note=reason)


# ── Preview shown to the operator ────────────────────────────────────────────

class LineChange(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


class LineDiff(BaseModel):
    order_line_id: str
    product_variant_name: str
    change: LineChange
    quantity_before: int
    quantity_after: int
    line_price_with_tax_before: int
    line_price_with_tax_after: int


class Preview(BaseModel):
    """Projected (not persisted) result of a dry run."""
    request: ModifyOrderInput
    order: Order
    original_total_with_tax: int
    price_delta: int
    lines: List[LineDiff] = []


# ── HTTP request bodies / session view ───────────────────────────────────────

class QuantityUpdate(BaseModel):
    quantity: int


class NoteUpdate(BaseModel):
    note: str


class SurchargeDraft(BaseModel):
    price: int = 0
    price_includes_tax: bool = True
    tax_rate: Decimal = Decimal("0")


class SurchargeDraftView(SurchargeDraft):
    net: int
    gross: int


class StagedSurcharge(BaseModel):
    """A staged surcharge with its net/gross prices as they will be submitted."""
    index: int
    description: str
    sku: Optional[str] = None
    entered_price: int
    price_includes_tax: bool
    tax_rate: Decimal
    price: int
    price_with_tax: int

    @classmethod
    def from_input(cls, index: int, surcharge: SurchargeInput) -> "StagedSurcharge":
        prices = surcharge.prices
        return cls(
            index=index,
            description=surcharge.description,
            sku=surcharge.sku,
            entered_price=surcharge.price,
            price_includes_tax=surcharge.price_includes_tax,
            tax_rate=surcharge.tax_rate,
            price=prices.net,
            price_with_tax=prices.gross,
        )


class TransitionView(BaseModel):
    price_delta: int
    target_state: Optional[str]
    error: Optional[str] = None


class SessionView(BaseModel):
    id: str
    order_id: str
    state: str
    previous_state: Optional[str]
    can_preview: bool
    note: str
    recalculate_shipping: bool
    added_lines: List[AddedLine]
    adjust_order_lines: List[AdjustOrderLineInput]
    surcharges: List[StagedSurcharge]
    surcharge_draft: SurchargeDraftView
    shipping_address_patch: Optional[AddressPatch] = None
    billing_address_patch: Optional[AddressPatch] = None
    order: Order
    preview: Optional[Preview] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    transition: Optional[TransitionView] = None


# ── Admin / query responses ──────────────────────────────────────────────────

class ModificationRecordRow(BaseModel):
    id: int
    order_id: str
    action: str
    dry_run: bool
    outcome: Optional[str]
    price_delta: Optional[int]
    order_state: Optional[str]
    error_code: Optional[str]
    message: Optional[str]
    note: str
    created_at: str

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    db: str = "ok"
