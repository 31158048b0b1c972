"""Market domain services."""
import json
import logging
from datetime import datetime
from typing import List, Optional

from nftmarket.domain.common.errors import (
    DependencyUnavailableError,
    InvalidPriceError,
    NotFoundError,
    ValidationError,
)
from nftmarket.domain.market.cache import ListingCache
from nftmarket.domain.market.models import Currency, Listing, parse_price
from nftmarket.domain.market.pricing import ledger_amount
from nftmarket.infra.db.repositories.market_repo import MarketRepository
from nftmarket.infra.vendors.xumm_client import SigningGatewayClient
from nftmarket.settings import settings

logger = logging.getLogger(__name__)


def public_listing_view(listing: Listing) -> dict:
    """Public projection of a listing (what catalog browsers see)."""
    return {
        "id": listing.id,
        "submission_id": listing.submission_id,
        "name": listing.name,
        "description": listing.description,
        "image_cid": listing.image_cid,
        "metadata_cid": listing.metadata_cid,
        "creator_wallet": listing.creator_wallet,
        "terms": listing.terms,
        "website": listing.website,
        "price_xrp": str(listing.price_xrp) if listing.price_xrp is not None else None,
        "price_rlusd": str(listing.price_rlusd) if listing.price_rlusd is not None else None,
        "quantity_remaining": max(listing.quantity, 0),
        "sold_count": listing.sold_count,
        "sold_out": listing.sold_out,
    }


def render_catalog(listings: List[Listing]) -> bytes:
    return json.dumps([public_listing_view(l) for l in listings], separators=(",", ":")).encode("utf-8")


class MarketService:
    """Catalog and purchase-initiation logic."""

    def __init__(
        self,
        repo: MarketRepository,
        cache: ListingCache,
        gateway: Optional[SigningGatewayClient] = None,
    ):
        self.repo = repo
        self.cache = cache
        self.gateway = gateway

    # Listings
    async def add_listing(
        self,
        name: str,
        quantity: int,
        price_xrp=None,
        price_rlusd=None,
        submission_id: Optional[int] = None,
        description: Optional[str] = None,
        image_cid: Optional[str] = None,
        metadata_cid: Optional[str] = None,
        nft_token_id: Optional[str] = None,
        creator_wallet: Optional[str] = None,
        terms: Optional[str] = None,
        website: Optional[str] = None,
    ) -> Listing:
        """Publish a listing received from the creator backend."""
        if not name or not name.strip():
            raise ValidationError("Listing name is required")
        if quantity is None or quantity < 0:
            raise ValidationError("Quantity must be zero or more")

        now = datetime.utcnow()
        listing = Listing(
            id=0,
            submission_id=submission_id,
            name=name.strip(),
            description=description,
            image_cid=image_cid,
            metadata_cid=metadata_cid,
            nft_token_id=nft_token_id,
            creator_wallet=creator_wallet,
            terms=terms,
            website=website,
            price_xrp=parse_price(price_xrp),
            price_rlusd=parse_price(price_rlusd),
            quantity=quantity,
            sold_count=0,
            minted=True,
            delisted=False,
            created_at=now,
            updated_at=now,
        )
        created = await self.repo.create_listing(listing)
        self.cache.invalidate()
        logger.info("Listing %s published (%s, qty=%s)", created.id, created.name, created.quantity)
        return created

    async def get_listing(self, listing_id: int) -> Listing:
        listing = await self.repo.get_listing(listing_id)
        if not listing:
            raise NotFoundError("Listing", listing_id)
        return listing

    async def set_delisted(self, listing_id: int, delisted: bool) -> Listing:
        """Soft-remove (or restore) a listing. Listings are never hard-deleted."""
        listing = await self.repo.set_delisted(listing_id, delisted)
        if not listing:
            raise NotFoundError("Listing", listing_id)
        self.cache.invalidate()
        logger.info("Listing %s %s", listing_id, "delisted" if delisted else "relisted")
        return listing

    async def catalog_payload(self) -> bytes:
        """Serialized public catalog, served from the snapshot while it is fresh."""
        async def load() -> bytes:
            return render_catalog(await self.repo.list_public_listings())

        return await self.cache.get(load)

    # Purchases
    async def initiate_purchase(self, listing_id: int, currency: Currency) -> str:
        """Create a payment signing request for one unit. Returns the signing link."""
        listing = await self.get_listing(listing_id)
        if listing.delisted or not listing.minted:
            raise NotFoundError("Listing", listing_id)
        if listing.sold_out:
            raise ValidationError("This item is sold out")

        price = listing.price_for(currency)
        if price is None:
            raise InvalidPriceError(listing_id, currency.value)

        offer = await self.repo.get_open_offer(listing_id, currency)
        if not offer:
            raise NotFoundError(
                "SaleOffer",
                listing_id,
                message=(
                    f"No {currency.value} offer is available for this item right now. "
                    "Please retry listing setup and try again."
                ),
            )

        if not settings.pay_destination:
            raise DependencyUnavailableError("signing gateway", "payment destination not configured")
        if self.gateway is None:
            raise DependencyUnavailableError("signing gateway", "client not configured")

        txjson = {
            "TransactionType": "Payment",
            "Destination": settings.pay_destination,
            "Amount": ledger_amount(listing_id, price, currency),
        }
        await self.repo.end_read()
        sign_request = await self.gateway.submit_payload(
            txjson,
            custom_meta={
                "kind": "purchase",
                "nft_id": listing.id,
                "currency": currency.value,
                "offer_index": offer.offer_index,
            },
        )
        logger.info(
            "Purchase payload %s created for listing %s (%s %s)",
            sign_request.uuid, listing.id, price, currency.value,
        )
        return sign_request.link
