"""Market API routes."""
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from nftmarket.api.deps import (
    get_db,
    get_gateway_client,
    get_ledger_client,
    get_listing_cache,
    verify_ingest_key,
)
from nftmarket.domain.common.errors import DependencyUnavailableError, DomainError
from nftmarket.domain.market.cache import ListingCache
from nftmarket.domain.market.events import OfferConfirmation, parse_confirmation
from nftmarket.domain.market.models import Listing
from nftmarket.domain.market.offers import OfferTracker
from nftmarket.domain.market.pricing import parse_currency
from nftmarket.domain.market.services import MarketService
from nftmarket.domain.market.settlement import SettlementReconciler
from nftmarket.infra.db.repositories.market_repo import MarketRepositoryImpl
from nftmarket.infra.vendors.ledger_client import LedgerClient
from nftmarket.infra.vendors.xumm_client import SigningGatewayClient
from nftmarket.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()

RawPrice = Optional[Union[str, float, int]]


# Request/Response Models
class ListingRequest(BaseModel):
    """Listing pushed by the creator backend."""
    name: str
    quantity: int = Field(ge=0)
    price_xrp: RawPrice = None
    price_rlusd: RawPrice = None
    submission_id: Optional[int] = None
    description: Optional[str] = None
    image_cid: Optional[str] = None
    metadata_cid: Optional[str] = None
    nft_token_id: Optional[str] = None
    creator_wallet: Optional[str] = None
    terms: Optional[str] = None
    website: Optional[str] = None


class ListingResponse(BaseModel):
    """Listing response."""
    id: int
    name: str
    description: Optional[str]
    image_cid: Optional[str]
    metadata_cid: Optional[str]
    nft_token_id: Optional[str]
    creator_wallet: Optional[str]
    website: Optional[str]
    price_xrp: Optional[str]
    price_rlusd: Optional[str]
    quantity: int
    sold_count: int
    minted: bool
    delisted: bool


class DelistRequest(BaseModel):
    """Delist toggle."""
    delisted: bool = True


class OfferRequest(BaseModel):
    """Initiate a sale offer for a listing."""
    currency: str


class PurchaseRequest(BaseModel):
    """Initiate a purchase."""
    listing_id: int
    currency: str = "XRP"


class SigningLinkResponse(BaseModel):
    """Where the user signs."""
    link: str


def _listing_response(listing: Listing) -> ListingResponse:
    return ListingResponse(
        id=listing.id,
        name=listing.name,
        description=listing.description,
        image_cid=listing.image_cid,
        metadata_cid=listing.metadata_cid,
        nft_token_id=listing.nft_token_id,
        creator_wallet=listing.creator_wallet,
        website=listing.website,
        price_xrp=str(listing.price_xrp) if listing.price_xrp is not None else None,
        price_rlusd=str(listing.price_rlusd) if listing.price_rlusd is not None else None,
        quantity=listing.quantity,
        sold_count=listing.sold_count,
        minted=listing.minted,
        delisted=listing.delisted,
    )


def _service(
    db: AsyncSession,
    cache: ListingCache,
    gateway: Optional[SigningGatewayClient] = None,
) -> MarketService:
    return MarketService(MarketRepositoryImpl(db), cache, gateway)


# Catalog
@router.get("/listings")
async def list_catalog(
    db: AsyncSession = Depends(get_db),
    cache: ListingCache = Depends(get_listing_cache),
):
    """Public catalog (cached for a few seconds)."""
    payload = await _service(db, cache).catalog_payload()
    return Response(content=payload, media_type="application/json")


@router.get("/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    cache: ListingCache = Depends(get_listing_cache),
):
    """Get a single listing."""
    listing = await _service(db, cache).get_listing(listing_id)
    return _listing_response(listing)


@router.post(
    "/listings",
    response_model=ListingResponse,
    status_code=201,
    dependencies=[Depends(verify_ingest_key)],
)
async def add_listing(
    request: ListingRequest,
    db: AsyncSession = Depends(get_db),
    cache: ListingCache = Depends(get_listing_cache),
):
    """Receive a newly published listing from the creator backend."""
    listing = await _service(db, cache).add_listing(**request.model_dump())
    return _listing_response(listing)


@router.post(
    "/listings/{listing_id}/delist",
    response_model=ListingResponse,
    dependencies=[Depends(verify_ingest_key)],
)
async def set_delisted(
    listing_id: int,
    request: DelistRequest,
    db: AsyncSession = Depends(get_db),
    cache: ListingCache = Depends(get_listing_cache),
):
    """Delist (or relist) a listing."""
    listing = await _service(db, cache).set_delisted(listing_id, request.delisted)
    return _listing_response(listing)


# Offers and purchases
@router.post("/listings/{listing_id}/offers", response_model=SigningLinkResponse)
async def initiate_listing(
    listing_id: int,
    request: OfferRequest,
    db: AsyncSession = Depends(get_db),
    gateway: SigningGatewayClient = Depends(get_gateway_client),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    """Ask the owner to sign a sell offer for the listing in a currency."""
    currency = parse_currency(request.currency)
    tracker = OfferTracker(MarketRepositoryImpl(db), gateway, ledger)
    link = await tracker.create_offer(listing_id, currency)
    return SigningLinkResponse(link=link)


@router.post("/purchases", response_model=SigningLinkResponse)
async def initiate_purchase(
    request: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    cache: ListingCache = Depends(get_listing_cache),
    gateway: SigningGatewayClient = Depends(get_gateway_client),
):
    """Create a payment signing request for one unit of a listing."""
    currency = parse_currency(request.currency)
    link = await _service(db, cache, gateway).initiate_purchase(request.listing_id, currency)
    return SigningLinkResponse(link=link)


# Gateway callback
@router.post("/webhooks/xaman")
async def receive_confirmation(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: ListingCache = Depends(get_listing_cache),
    gateway: SigningGatewayClient = Depends(get_gateway_client),
    ledger: LedgerClient = Depends(get_ledger_client),
):
    """Confirmation sink for the signing gateway.

    Always acknowledges: the sender is untrusted and nothing about internal
    state is reported back. Only dependency failures surface (as 503) so the
    gateway re-delivers.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Discarding webhook with non-JSON body")
        return {"ok": True}

    event = parse_confirmation(body)

    if isinstance(event, OfferConfirmation):
        tracker = OfferTracker(
            MarketRepositoryImpl(db),
            gateway,
            ledger,
            poll_interval=settings.offer_poll_interval_seconds,
            max_attempts=settings.offer_poll_max_attempts,
        )
        try:
            await tracker.confirm_offer(event)
        except DependencyUnavailableError:
            raise
        except DomainError as e:
            logger.warning("Discarding offer confirmation for listing %s: %s", event.listing_id, e)
        return {"ok": True}

    reconciler = SettlementReconciler(db, on_recorded=cache.invalidate)
    await reconciler.handle_confirmation(event)
    return {"ok": True}
