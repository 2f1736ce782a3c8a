"""
Thin client for the shop's GraphQL admin API (no SDK dependency).

Implements every order-facing port of the modification engine:
modifyOrder, transitionOrderToState, order and order history.
Union results are mapped on ``__typename``; an unknown variant is an error,
never silently ignored.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Union

import httpx
from pydantic import ValidationError

from ordermod.config import Settings, get_settings
from ordermod.errors import (
    MODIFY_ORDER_ERRORS,
    InsufficientStockError,
    ModifyOrderError,
    OrderApiError,
    OrderLimitError,
    OrderNotFoundError,
    TransitionError,
    UnhandledResultError,
    UnknownError,
)
from ordermod.schemas import (
    Address,
    AddressPatch,
    ModifyOrderInput,
    Order,
    OrderLine,
    Payment,
    Surcharge,
)

logger = logging.getLogger(__name__)

_ADDRESS_FIELDS = """
    fullName company streetLine1 streetLine2 city province postalCode countryCode phoneNumber
"""

ORDER_FRAGMENT = f"""
fragment OrderDetail on Order {{
  id
  code
  state
  total
  totalWithTax
  shippingWithTax
  lines {{
    id
    quantity
    unitPrice
    unitPriceWithTax
    linePriceWithTax
    productVariant {{ id name sku }}
  }}
  surcharges {{ id description sku price priceWithTax taxRate }}
  payments {{ id method amount state }}
  shippingAddress {{ {_ADDRESS_FIELDS} }}
  billingAddress {{ {_ADDRESS_FIELDS} }}
}}
"""

GET_ORDER = ORDER_FRAGMENT + """
query GetOrder($id: ID!) {
  order(id: $id) { ...OrderDetail }
}
"""

GET_LATEST_STATE_TRANSITION = """
query GetOrderHistory($id: ID!) {
  order(id: $id) {
    id
    history(options: {
      take: 1
      sort: { createdAt: DESC }
      filter: { type: { eq: ORDER_STATE_TRANSITION } }
    }) {
      items { id type createdAt data }
    }
  }
}
"""

MODIFY_ORDER = ORDER_FRAGMENT + """
mutation ModifyOrder($input: ModifyOrderInput!) {
  modifyOrder(input: $input) {
    __typename
    ...OrderDetail
    ... on ErrorResult { errorCode message }
    ... on InsufficientStockError { quantityAvailable }
    ... on OrderLimitError { maxItems }
  }
}
"""

TRANSITION_ORDER = ORDER_FRAGMENT + """
mutation TransitionOrderToState($id: ID!, $state: String!) {
  transitionOrderToState(id: $id, state: $state) {
    __typename
    ...OrderDetail
    ... on OrderStateTransitionError {
      errorCode
      message
      transitionError
      fromState
      toState
    }
  }
}
"""


# ── Wire <-> schema mapping ──────────────────────────────────────────────────

_ADDRESS_MAP = {
    "full_name": "fullName",
    "company": "company",
    "street_line1": "streetLine1",
    "street_line2": "streetLine2",
    "city": "city",
    "province": "province",
    "postal_code": "postalCode",
    "country_code": "countryCode",
    "phone_number": "phoneNumber",
}


def _address(raw: Optional[Dict[str, Any]]) -> Address:
    raw = raw or {}
    return Address(**{ours: raw.get(theirs) for ours, theirs in _ADDRESS_MAP.items()})


def _address_patch(patch: Optional[AddressPatch]) -> Optional[Dict[str, Any]]:
    if patch is None:
        return None
    # A field set to None was cleared by the operator; the shop clears on ""
    return {
        _ADDRESS_MAP[k]: "" if v is None else v
        for k, v in patch.model_dump(exclude_unset=True).items()
    }


def order_from_graphql(raw: Dict[str, Any]) -> Order:
    return Order(
        id=str(raw["id"]),
        code=raw.get("code") or "",
        state=raw["state"],
        total=raw["total"],
        total_with_tax=raw["totalWithTax"],
        shipping_with_tax=raw.get("shippingWithTax") or 0,
        lines=[
            OrderLine(
                id=str(l["id"]),
                product_variant_id=str(l["productVariant"]["id"]),
                product_variant_name=l["productVariant"].get("name") or "",
                sku=l["productVariant"].get("sku") or "",
                quantity=l["quantity"],
                unit_price=l["unitPrice"],
                unit_price_with_tax=l["unitPriceWithTax"],
                line_price_with_tax=l.get("linePriceWithTax") or 0,
            )
            for l in raw.get("lines") or []
        ],
        surcharges=[
            Surcharge(
                id=str(s["id"]),
                description=s["description"],
                sku=s.get("sku"),
                price=s["price"],
                price_with_tax=s["priceWithTax"],
                tax_rate=str(s.get("taxRate") or 0),
            )
            for s in raw.get("surcharges") or []
        ],
        payments=[
            Payment(id=str(p["id"]), method=p.get("method") or "", amount=p["amount"], state=p["state"])
            for p in raw.get("payments") or []
        ],
        shipping_address=_address(raw.get("shippingAddress")),
        billing_address=_address(raw.get("billingAddress")),
    )


def modify_input_to_graphql(request: ModifyOrderInput) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "dryRun": request.dry_run,
        "orderId": request.order_id,
        "addItems": [
            {"productVariantId": i.product_variant_id, "quantity": i.quantity}
            for i in request.add_items
        ],
        "adjustOrderLines": [
            {"orderLineId": a.order_line_id, "quantity": a.quantity}
            for a in request.adjust_order_lines
        ],
        "surcharges": [
            {
                "description": s.description,
                "sku": s.sku,
                "price": s.price,
                "priceIncludesTax": s.price_includes_tax,
                "taxRate": float(s.tax_rate),
                "taxDescription": s.tax_description,
            }
            for s in request.surcharges
        ],
        "note": request.note,
        "options": {"recalculateShipping": request.options.recalculate_shipping},
    }
    shipping = _address_patch(request.update_shipping_address)
    if shipping:
        payload["updateShippingAddress"] = shipping
    billing = _address_patch(request.update_billing_address)
    if billing:
        payload["updateBillingAddress"] = billing
    if request.refund is not None:
        payload["refund"] = {
            "paymentId": request.refund.payment_id,
            "reason": request.refund.reason,
        }
    return payload


@contextmanager
def _parsing(field: str) -> Iterator[None]:
    """Turn a malformed result payload into ``OrderApiError``."""
    try:
        yield
    except (AttributeError, KeyError, TypeError, ValidationError) as exc:
        logger.error("Malformed %s result from order API: %r", field, exc)
        raise OrderApiError(f"Order API returned a malformed {field} result") from exc


def parse_modify_result(raw: Optional[Dict[str, Any]]) -> Union[Order, ModifyOrderError]:
    if raw is None:
        return UnknownError(message="The shop returned an empty modifyOrder result")
    typename = raw.get("__typename")
    if typename == "Order":
        return order_from_graphql(raw)
    error_cls = MODIFY_ORDER_ERRORS.get(typename)
    if error_cls is None:
        raise UnhandledResultError(raw)
    extra: Dict[str, Any] = {}
    if error_cls is InsufficientStockError:
        extra["quantity_available"] = raw.get("quantityAvailable") or 0
    elif error_cls is OrderLimitError:
        extra["max_items"] = raw.get("maxItems")
    return error_cls(message=raw.get("message") or typename, **extra)


def parse_transition_result(raw: Optional[Dict[str, Any]]) -> Union[Order, TransitionError]:
    typename = (raw or {}).get("__typename")
    if typename == "Order":
        return order_from_graphql(raw)
    if typename == "OrderStateTransitionError":
        return TransitionError(
            message=raw.get("transitionError") or raw.get("message") or typename,
            from_state=raw.get("fromState"),
            to_state=raw.get("toState"),
        )
    raise UnhandledResultError(raw)


# ── Client ───────────────────────────────────────────────────────────────────

class OrderApiClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self._token = token
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OrderApiClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.order_api_url,
            token=settings.order_api_token,
            timeout=settings.order_api_timeout_seconds,
        )

    def _headers(self) -> Dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self.base_url,
                    json={"query": query, "variables": variables},
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            raise OrderApiError(f"{exc.__class__.__name__}: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Order API error url=%s status=%d body=%s",
                self.base_url, resp.status_code, resp.text[:300],
            )
            raise OrderApiError(f"Order API returned HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            logger.error(
                "Order API returned a non-JSON body url=%s body=%s",
                self.base_url, resp.text[:300],
            )
            raise OrderApiError("Order API returned a response that is not JSON") from exc
        if not isinstance(body, dict):
            raise OrderApiError("Order API returned an unexpected response shape")
        if body.get("errors"):
            message = body["errors"][0].get("message", "unknown GraphQL error")
            logger.error("Order API GraphQL error: %s", message)
            raise OrderApiError(message)
        return body.get("data") or {}

    async def get_order(self, order_id: str) -> Order:
        data = await self._execute(GET_ORDER, {"id": order_id})
        if data.get("order") is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        with _parsing("order"):
            return order_from_graphql(data["order"])

    async def get_previous_state(self, order_id: str) -> Optional[str]:
        data = await self._execute(GET_LATEST_STATE_TRANSITION, {"id": order_id})
        order = data.get("order")
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        with _parsing("order.history"):
            items = order["history"]["items"]
            if not items:
                return None
            return (items[0].get("data") or {}).get("from")

    async def modify_order(self, request: ModifyOrderInput) -> Union[Order, ModifyOrderError]:
        logger.debug(
            "modifyOrder order=%s dry_run=%s refund=%s",
            request.order_id, request.dry_run, request.refund is not None,
        )
        data = await self._execute(MODIFY_ORDER, {"input": modify_input_to_graphql(request)})
        with _parsing("modifyOrder"):
            return parse_modify_result(data.get("modifyOrder"))

    async def transition_to_state(self, order_id: str, state: str) -> Union[Order, TransitionError]:
        data = await self._execute(TRANSITION_ORDER, {"id": order_id, "state": state})
        with _parsing("transitionOrderToState"):
            return parse_transition_result(data.get("transitionOrderToState"))
