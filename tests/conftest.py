"""
Shared pytest fixtures – in-memory SQLite for the audit store and an
in-memory shop standing in for the order API.
"""
from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator, Dict, List, Optional, Set, Tuple  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ordermod.errors import (  # noqa: E402
    ErrorResult,
    InsufficientStockError,
    NegativeQuantityError,
    NoChangesSpecifiedError,
    OrderLimitError,
    OrderModificationStateError,
    RefundPaymentIdMissingError,
    TransitionError,
)
from ordermod.models import Base  # noqa: E402
from ordermod.schemas import (  # noqa: E402
    Address,
    ModifyOrderInput,
    Order,
    OrderLine,
    Payment,
    Surcharge,
    VariantSnapshot,
)

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(TEST_DB_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── In-memory shop ───────────────────────────────────────────────────────────

CATALOG = {
    "v-hat": VariantSnapshot(
        product_variant_id="v-hat", product_variant_name="Hat", sku="HAT-1",
        price=500, price_with_tax=550,
    ),
    "v-scarf": VariantSnapshot(
        product_variant_id="v-scarf", product_variant_name="Scarf", sku="SCARF-1",
        price=200, price_with_tax=240,
    ),
    "v-rare": VariantSnapshot(
        product_variant_id="v-rare", product_variant_name="Rare Print", sku="RARE-1",
        price=1000, price_with_tax=1200,
    ),
}

STOCK = {"v-hat": 10, "v-scarf": 10, "v-rare": 1, "v-shirt": 10, "v-mug": 10}

TRANSITIONS: Set[Tuple[str, str]] = {
    ("PaymentSettled", "Modifying"),
    ("PartiallyShipped", "Modifying"),
    ("Modifying", "PaymentSettled"),
    ("Modifying", "PartiallyShipped"),
    ("Modifying", "ArrangingAdditionalPayment"),
}


class FakeShop:
    """
    Implements every order-facing port in memory.

    Dry runs compute the modified order on a copy and return it without
    storing it; commits replace the stored order.
    """

    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.history: Dict[str, List[Tuple[str, str]]] = {}
        self.transitions: Set[Tuple[str, str]] = set(TRANSITIONS)
        self.stock: Dict[str, int] = dict(STOCK)
        self.max_lines = 10
        self.modify_calls: List[ModifyOrderInput] = []
        self.transition_calls: List[Tuple[str, str]] = []
        self.refunds: List[Tuple[str, int, str]] = []
        self.force_error: Optional[ErrorResult] = None
        self.raise_on_modify: Optional[Exception] = None
        self.raise_on_transition: Optional[Exception] = None
        # Added to the committed total only, to simulate a price change between preview and commit
        self.commit_total_drift = 0
        self._line_seq = 100

    def add_order(self, order: Order, history: List[Tuple[str, str]]) -> None:
        self.orders[order.id] = order.model_copy(deep=True)
        self.history[order.id] = list(history)

    # ports

    async def get_order(self, order_id: str) -> Order:
        return self.orders[order_id].model_copy(deep=True)

    async def get_previous_state(self, order_id: str) -> Optional[str]:
        entries = self.history.get(order_id) or []
        return entries[-1][0] if entries else None

    async def transition_to_state(self, order_id: str, state: str):
        self.transition_calls.append((order_id, state))
        if self.raise_on_transition is not None:
            raise self.raise_on_transition
        order = self.orders[order_id]
        if (order.state, state) not in self.transitions:
            return TransitionError(
                message=f"Cannot transition Order from \"{order.state}\" to \"{state}\"",
                from_state=order.state,
                to_state=state,
            )
        self.history[order_id].append((order.state, state))
        order.state = state
        return order.model_copy(deep=True)

    async def modify_order(self, request: ModifyOrderInput):
        self.modify_calls.append(request)
        if self.raise_on_modify is not None:
            raise self.raise_on_modify
        if self.force_error is not None:
            return self.force_error

        original = self.orders[request.order_id]
        order = original.model_copy(deep=True)

        if order.state != "Modifying":
            return OrderModificationStateError(
                message="No modification allowed when Order is in this state"
            )
        if not (
            request.add_items or request.adjust_order_lines or request.surcharges
            or request.update_shipping_address or request.update_billing_address
        ):
            return NoChangesSpecifiedError(message="No changes were specified")

        for adj in request.adjust_order_lines:
            if adj.quantity < 0:
                return NegativeQuantityError(message="Quantity may not be negative")
            line = order.line(adj.order_line_id)
            extra = adj.quantity - line.quantity
            if extra > self.stock[line.product_variant_id]:
                return InsufficientStockError(
                    message=f"Only {self.stock[line.product_variant_id]} items were added "
                            "to the order due to insufficient stock",
                    quantity_available=self.stock[line.product_variant_id],
                )
            line.quantity = adj.quantity
        order.lines = [l for l in order.lines if l.quantity > 0]

        for item in request.add_items:
            if item.quantity > self.stock[item.product_variant_id]:
                return InsufficientStockError(
                    message=f"Only {self.stock[item.product_variant_id]} items were added "
                            "to the order due to insufficient stock",
                    quantity_available=self.stock[item.product_variant_id],
                )
            snap = CATALOG[item.product_variant_id]
            self._line_seq += 1
            order.lines.append(
                OrderLine(
                    id=f"L{self._line_seq}",
                    product_variant_id=snap.product_variant_id,
                    product_variant_name=snap.product_variant_name,
                    sku=snap.sku,
                    quantity=item.quantity,
                    unit_price=snap.price,
                    unit_price_with_tax=snap.price_with_tax,
                )
            )
        if len(order.lines) > self.max_lines:
            return OrderLimitError(message="Order may not contain more lines", max_items=self.max_lines)

        for s in request.surcharges:
            prices = s.prices
            order.surcharges.append(
                Surcharge(
                    description=s.description, sku=s.sku, price=prices.net,
                    price_with_tax=prices.gross, tax_rate=s.tax_rate,
                )
            )
        if request.update_shipping_address:
            order.shipping_address = order.shipping_address.model_copy(
                update=request.update_shipping_address.model_dump(exclude_unset=True)
            )
        if request.update_billing_address:
            order.billing_address = order.billing_address.model_copy(
                update=request.update_billing_address.model_dump(exclude_unset=True)
            )

        for l in order.lines:
            l.line_price_with_tax = l.unit_price_with_tax * l.quantity
        order.total = (
            sum(l.unit_price * l.quantity for l in order.lines)
            + sum(s.price for s in order.surcharges)
        )
        order.total_with_tax = (
            sum(l.line_price_with_tax for l in order.lines)
            + sum(s.price_with_tax for s in order.surcharges)
            + order.shipping_with_tax
        )
        if not request.dry_run:
            order.total_with_tax += self.commit_total_drift

        delta = order.total_with_tax - original.total_with_tax
        if request.refund is not None:
            if not request.refund.payment_id:
                return RefundPaymentIdMissingError()
            if not request.dry_run and delta < 0:
                self.refunds.append((request.refund.payment_id, -delta, request.refund.reason))

        if not request.dry_run:
            self.orders[order.id] = order
        return order.model_copy(deep=True)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: List[str] = []

    async def error(self, message: str) -> None:
        self.messages.append(message)


class ScriptedSurface:
    """Decision surface returning a fixed outcome and remembering what it saw."""

    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.seen = []

    async def decide(self, preview):
        self.seen.append(preview)
        return self.outcome


def make_order(state: str = "Modifying") -> Order:
    """Order 1: total with tax 1000 across two lines, settled by pay_1."""
    return Order(
        id="1",
        code="ORD-1",
        state=state,
        total=833,
        total_with_tax=1000,
        lines=[
            OrderLine(
                id="L1", product_variant_id="v-shirt", product_variant_name="Shirt",
                sku="SHIRT-1", quantity=1, unit_price=500, unit_price_with_tax=600,
                line_price_with_tax=600,
            ),
            OrderLine(
                id="L2", product_variant_id="v-mug", product_variant_name="Mug",
                sku="MUG-1", quantity=1, unit_price=333, unit_price_with_tax=400,
                line_price_with_tax=400,
            ),
        ],
        payments=[Payment(id="pay_1", method="card", amount=1000, state="Settled")],
        shipping_address=Address(
            full_name="Ada Lovelace", street_line1="1 Analytical Way",
            city="London", postal_code="N1", country_code="GB",
        ),
        billing_address=Address(
            full_name="Ada Lovelace", street_line1="1 Analytical Way",
            city="London", postal_code="N1", country_code="GB",
        ),
    )


@pytest.fixture
def shop() -> FakeShop:
    s = FakeShop()
    s.add_order(make_order(), history=[("PaymentSettled", "Modifying")])
    return s


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog() -> Dict[str, VariantSnapshot]:
    return CATALOG


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def surface():
    return ScriptedSurface
