# billing/products.py
"""
Subscription plan configuration.

The standard plan is a single Stripe price, configured by ID and fetched from
Stripe at startup so its amount can be shown to users.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import stripe

from billing.service import BillingError

_logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    "eur": "€",
    "usd": "$",
    "gbp": "£",
}


class PriceLookupError(BillingError):
    """The configured price could not be fetched from Stripe."""
    pass


@dataclass(frozen=True)
class Plan:
    """Subscription plan backed by a Stripe price."""
    price_id: str
    unit_amount_decimal: Decimal  # Minor currency units (cents)
    currency: str = "eur"
    interval: str = "month"

    @property
    def amount(self) -> Decimal:
        """Amount in major currency units."""
        return self.unit_amount_decimal / 100

    @property
    def display_price(self) -> str:
        return format_price(self.amount, self.currency)


def format_price(amount: Decimal, currency: str) -> str:
    """
    Format an amount for display in its currency.

    The euro sign follows the amount; dollar and pound signs precede it.
    Other currencies are shown as the amount followed by the upper-case ISO
    code. Whole amounts have no decimals, all others two.
    """
    if amount == amount.to_integral_value():
        value = f"{amount:.0f}"
    else:
        value = f"{amount:.2f}"

    symbol = CURRENCY_SYMBOLS.get(currency.lower())
    if symbol is None:
        return f"{value} {currency.upper()}"
    if symbol == "€":
        return f"{value} {symbol}"
    return f"{symbol}{value}"


def fetch_plan(price_id: str) -> Plan:
    """
    Retrieve a price from Stripe and wrap it as a Plan.

    Raises:
        PriceLookupError: If the price can't be fetched or has no amount
    """
    try:
        price = stripe.Price.retrieve(price_id)
    except stripe.StripeError as e:
        raise PriceLookupError(f"Failed to fetch stripe price {price_id}: {e}") from e

    raw_amount = getattr(price, "unit_amount_decimal", None)
    if raw_amount is None:
        raw_amount = getattr(price, "unit_amount", None)

    try:
        amount = Decimal(str(raw_amount))
    except (InvalidOperation, TypeError) as e:
        raise PriceLookupError(f"Stripe price {price_id} has no usable amount") from e

    recurring = getattr(price, "recurring", None)

    return Plan(
        price_id=price_id,
        unit_amount_decimal=amount,
        currency=getattr(price, "currency", None) or "eur",
        interval=getattr(recurring, "interval", None) or "month",
    )
