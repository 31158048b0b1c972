"""Market domain models."""
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from nftmarket.domain.common.errors import ConflictError

DROPS_PER_XRP = Decimal(1_000_000)

_PRICE_JUNK = re.compile(r"[^0-9.]")


class Currency(str, Enum):
    """Settlement currencies. XRP is the primary (native) one, RLUSD the secondary (issued) one."""
    XRP = "XRP"
    RLUSD = "RLUSD"


class OfferStatus(str, Enum):
    """Sale offer status enum."""
    OPEN = "OPEN"
    USED = "USED"


class OrderStatus(str, Enum):
    """Order status enum."""
    PAID = "PAID"
    REDEEM_REQUESTED = "REDEEM_REQUESTED"
    FULFILLED = "FULFILLED"


def parse_price(raw) -> Optional[Decimal]:
    """Parse a price as sent by the creator backend.

    Accepts numbers and strings such as "12.5" or "12.5 XRP"; anything that is
    not a number once stray characters are removed yields None.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, (int, float)):
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            return None
        return value if value.is_finite() else None
    if isinstance(raw, str):
        cleaned = _PRICE_JUNK.sub("", raw)
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


def xrp_to_drops(amount: Decimal) -> str:
    """Convert an XRP amount to a drops string. Raises ValueError below drop precision."""
    drops = amount * DROPS_PER_XRP
    if drops != drops.to_integral_value():
        raise ValueError(f"{amount} XRP is not a whole number of drops")
    return str(int(drops))




@dataclass
class Listing:
    """Listing domain model."""
    id: int
    name: str
    quantity: int
    sold_count: int = 0
    price_xrp: Optional[Decimal] = None
    price_rlusd: Optional[Decimal] = None
    nft_token_id: Optional[str] = None
    creator_wallet: Optional[str] = None
    submission_id: Optional[int] = None
    description: Optional[str] = None
    image_cid: Optional[str] = None
    metadata_cid: Optional[str] = None
    terms: Optional[str] = None
    website: Optional[str] = None
    minted: bool = True
    delisted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def price_for(self, currency: Currency) -> Optional[Decimal]:
        """Positive price for the currency, or None when unset or not sellable at that price."""
        price = self.price_rlusd if currency is Currency.RLUSD else self.price_xrp
        if price is None or price <= 0:
            return None
        return price

    @property
    def sold_out(self) -> bool:
        return self.quantity <= 0


@dataclass
class SaleOffer:
    """Sale offer domain model."""
    id: str
    listing_id: int
    nft_token_id: str
    offer_index: str
    currency: Currency
    status: OfferStatus
    created_at: datetime
    updated_at: datetime


@dataclass
class Order:
    """Order domain model."""
    id: str
    listing_id: int
    buyer_account: Optional[str]
    price: Decimal
    currency: Currency
    status: OrderStatus
    created_at: datetime
    payload_uuid: Optional[str] = None
    tx_hash: Optional[str] = None
    offer_index: Optional[str] = None
    metadata: Optional[dict] = field(default=None)

    def request_redemption(self) -> None:
        """PAID -> REDEEM_REQUESTED is the only transition open to the redemption workflow."""
        if self.status != OrderStatus.PAID:
            raise ConflictError(f"Cannot request redemption for order with status: {self.status.value}")
        self.status = OrderStatus.REDEEM_REQUESTED
