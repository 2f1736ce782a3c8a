"""
Surcharge price reconciliation: derive the (net, gross) pair from a single
entered amount, a tax-inclusion flag and a tax rate in percent.

Integer minor units in, integer minor units out, rounded half-up.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

_HUNDRED = Decimal(100)
_UNIT = Decimal(1)


@dataclass(frozen=True)
class PricePair:
    net: int
    gross: int


def _round(amount: Decimal) -> int:
    return int(amount.quantize(_UNIT, rounding=ROUND_HALF_UP))


def reconcile(
    price: int,
    includes_tax: bool,
    tax_rate: Union[Decimal, int, str, None] = None,
) -> PricePair:
    """
    Return the net and gross price for *price*.

    If *includes_tax* the entered price is the gross and the net is backed out;
    otherwise the entered price is the net and tax is added on top.
    A missing rate is treated as 0%.
    """
    rate = Decimal(str(tax_rate)) if tax_rate is not None else Decimal(0)
    if rate < 0:
        raise ValueError(f"tax rate must not be negative, got {rate}")
    factor = (_HUNDRED + rate) / _HUNDRED
    amount = Decimal(price)

    if includes_tax:
        return PricePair(net=_round(amount / factor), gross=price)
    return PricePair(net=price, gross=_round(amount * factor))
