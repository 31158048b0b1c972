"""API dependencies."""
from typing import Optional

from fastapi import Header, HTTPException, status

from nftmarket.domain.market.cache import ListingCache
from nftmarket.infra.db.session import get_db  # noqa: F401
from nftmarket.infra.vendors.ledger_client import LedgerClient
from nftmarket.infra.vendors.xumm_client import SigningGatewayClient
from nftmarket.settings import settings

_listing_cache: Optional[ListingCache] = None


def get_listing_cache() -> ListingCache:
    """Process-wide catalog snapshot."""
    global _listing_cache
    if _listing_cache is None:
        _listing_cache = ListingCache(ttl_seconds=settings.listing_cache_ttl_seconds)
    return _listing_cache


def get_gateway_client() -> SigningGatewayClient:
    return SigningGatewayClient()


def get_ledger_client() -> LedgerClient:
    return LedgerClient()


async def verify_ingest_key(x_ingest_key: Optional[str] = Header(default=None)) -> None:
    """Creator-backend shared secret, enforced only when INGEST_API_KEY is set."""
    expected = settings.ingest_api_key
    if expected and x_ingest_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid ingest key",
        )
