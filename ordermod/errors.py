"""
Error taxonomy.

Two kinds live here:

* Typed *results* (pydantic models) returned by the shop API instead of an
  ``Order``. They are values, not exceptions: a submission either yields an
  ``Order`` or exactly one of these.
* Exceptions for programmer errors and transport failures.
"""
from __future__ import annotations

from typing import Dict, Literal, Optional, Type, Union

from pydantic import BaseModel


# ── Typed results ────────────────────────────────────────────────────────────

class ErrorResult(BaseModel):
    error_code: str
    message: str


class InsufficientStockError(ErrorResult):
    error_code: Literal["INSUFFICIENT_STOCK_ERROR"] = "INSUFFICIENT_STOCK_ERROR"
    quantity_available: int = 0


class NegativeQuantityError(ErrorResult):
    error_code: Literal["NEGATIVE_QUANTITY_ERROR"] = "NEGATIVE_QUANTITY_ERROR"


class NoChangesSpecifiedError(ErrorResult):
    error_code: Literal["NO_CHANGES_SPECIFIED_ERROR"] = "NO_CHANGES_SPECIFIED_ERROR"


class OrderLimitError(ErrorResult):
    error_code: Literal["ORDER_LIMIT_ERROR"] = "ORDER_LIMIT_ERROR"
    max_items: Optional[int] = None


class OrderModificationStateError(ErrorResult):
    error_code: Literal["ORDER_MODIFICATION_STATE_ERROR"] = "ORDER_MODIFICATION_STATE_ERROR"


class PaymentMethodMissingError(ErrorResult):
    error_code: Literal["PAYMENT_METHOD_MISSING_ERROR"] = "PAYMENT_METHOD_MISSING_ERROR"


class RefundPaymentIdMissingError(ErrorResult):
    error_code: Literal["REFUND_PAYMENT_ID_MISSING_ERROR"] = "REFUND_PAYMENT_ID_MISSING_ERROR"
    message: str = "No payment ID was specified for the refund"


class UnknownError(ErrorResult):
    """Transport failure or unexpected response; no order state may be assumed."""
    error_code: Literal["UNKNOWN_ERROR"] = "UNKNOWN_ERROR"


class TransitionError(ErrorResult):
    error_code: Literal["ORDER_STATE_TRANSITION_ERROR"] = "ORDER_STATE_TRANSITION_ERROR"
    from_state: Optional[str] = None
    to_state: Optional[str] = None


ModifyOrderError = Union[
    InsufficientStockError,
    NegativeQuantityError,
    NoChangesSpecifiedError,
    OrderLimitError,
    OrderModificationStateError,
    PaymentMethodMissingError,
    RefundPaymentIdMissingError,
    UnknownError,
]

# GraphQL __typename -> result class for the modifyOrder mutation
MODIFY_ORDER_ERRORS: Dict[str, Type[ErrorResult]] = {
    "InsufficientStockError": InsufficientStockError,
    "NegativeQuantityError": NegativeQuantityError,
    "NoChangesSpecifiedError": NoChangesSpecifiedError,
    "OrderLimitError": OrderLimitError,
    "OrderModificationStateError": OrderModificationStateError,
    "PaymentMethodMissingError": PaymentMethodMissingError,
    "RefundPaymentIdMissingError": RefundPaymentIdMissingError,
}


# ── Exceptions ───────────────────────────────────────────────────────────────

class OrderApiError(Exception):
    """The shop API could not be reached or answered with a non-GraphQL error."""


class OrderNotFoundError(OrderApiError):
    pass


class UnhandledResultError(RuntimeError):
    """A result variant arrived that no branch handles."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unhandled result variant: {value!r}")
        self.value = value


class SessionStateError(RuntimeError):
    """An operation was called in a session state that does not allow it."""


class PreviewNotAllowedError(SessionStateError):
    """Dry run requested without a note or without any staged change."""


class StagingLockedError(RuntimeError):
    """A staging mutation was attempted while a submission is in flight."""


class InvalidOutcomeError(ValueError):
    """The operator's outcome is inconsistent with the previewed order."""
