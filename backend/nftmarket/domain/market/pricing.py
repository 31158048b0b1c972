"""Ledger amount encoding for listing prices."""
from decimal import Decimal
from typing import Union

from nftmarket.domain.common.errors import DependencyUnavailableError, InvalidPriceError, ValidationError
from nftmarket.domain.market.models import Currency, xrp_to_drops
from nftmarket.settings import settings


def parse_currency(raw) -> Currency:
    """Currency from user input (case-insensitive)."""
    try:
        return Currency(str(raw).strip().upper())
    except ValueError:
        supported = ", ".join(c.value for c in Currency)
        raise ValidationError(f"Unsupported currency {raw!r}; expected one of {supported}")


def ledger_amount(listing_id: int, price: Decimal, currency: Currency) -> Union[str, dict]:
    """XRP as a drops string; RLUSD as an issued-currency amount object."""
    if currency is Currency.XRP:
        try:
            return xrp_to_drops(price)
        except ValueError:
            raise InvalidPriceError(listing_id, currency.value)

    issuer = settings.rlusd_issuer_account
    if not issuer:
        raise DependencyUnavailableError("signing gateway", "RLUSD issuer not configured")
    return {
        "currency": settings.rlusd_currency_code,
        "issuer": issuer,
        "value": format(price.normalize(), "f"),
    }
