"""Sale offer lifecycle: create on the ledger, observe, persist."""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from nftmarket.domain.common.errors import (
    ConflictError,
    InvalidPriceError,
    NotFoundError,
    OfferNotObservedError,
    ValidationError,
)
from nftmarket.domain.common.types import generate_id
from nftmarket.domain.market.events import OfferConfirmation, classify_amount
from nftmarket.domain.market.models import Currency, Listing, OfferStatus, SaleOffer
from nftmarket.domain.market.pricing import ledger_amount
from nftmarket.infra.db.repositories.market_repo import MarketRepository
from nftmarket.infra.vendors.ledger_client import LedgerClient, created_offer_index
from nftmarket.infra.vendors.xumm_client import SigningGatewayClient

logger = logging.getLogger(__name__)

TF_SELL_NFTOKEN = 0x00000001


class PollStatus(str, Enum):
    FOUND = "found"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class PollOutcome:
    status: PollStatus
    attempts: int
    offer_index: Optional[str] = None


class OfferTracker:
    """Creates sell offers through the signing gateway and records them once the ledger shows them."""

    def __init__(
        self,
        repo: MarketRepository,
        gateway: SigningGatewayClient,
        ledger: LedgerClient,
        poll_interval: float = 2.0,
        max_attempts: int = 12,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.repo = repo
        self.gateway = gateway
        self.ledger = ledger
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._clock = clock

    async def _sellable_listing(self, listing_id: int) -> Listing:
        listing = await self.repo.get_listing(listing_id)
        if not listing:
            raise NotFoundError("Listing", listing_id)
        if not listing.nft_token_id:
            raise NotFoundError(
                "Asset",
                listing_id,
                message=f"Listing {listing_id} has no underlying asset id yet",
            )
        return listing

    async def create_offer(self, listing_id: int, currency: Currency) -> str:
        """Ask the listing owner to sign a sell offer. Returns the signing link right away."""
        listing = await self._sellable_listing(listing_id)
        price = listing.price_for(currency)
        if price is None:
            raise InvalidPriceError(listing_id, currency.value)

        txjson = {
            "TransactionType": "NFTokenCreateOffer",
            "NFTokenID": listing.nft_token_id,
            "Amount": ledger_amount(listing_id, price, currency),
            "Flags": TF_SELL_NFTOKEN,
        }
        if listing.creator_wallet:
            txjson["Account"] = listing.creator_wallet

        await self.repo.end_read()
        sign_request = await self.gateway.submit_payload(
            txjson,
            custom_meta={
                "kind": "offer",
                "nft_id": listing.id,
                "currency": currency.value,
                "nft_token_id": listing.nft_token_id,
            },
        )
        logger.info(
            "Requested %s sell offer for listing %s (payload %s)",
            currency.value, listing.id, sign_request.uuid,
        )
        return sign_request.link

    async def confirm_offer(self, event: OfferConfirmation) -> SaleOffer:
        """Resolve the ledger offer index for a confirmed offer and track it as OPEN.

        Safe to call repeatedly for the same confirmation. No database
        transaction is held while the ledger is queried.
        """
        listing = await self._sellable_listing(event.listing_id)
        if event.nft_token_id and event.nft_token_id != listing.nft_token_id:
            raise ValidationError(
                f"Offer confirmation asset {event.nft_token_id} does not match listing {listing.id}"
            )
        if event.currency is None:
            raise ValidationError(f"Offer confirmation for listing {listing.id} has no currency")

        existing = await self.repo.get_sale_offer(listing.id, listing.nft_token_id, event.currency)
        if existing:
            logger.info("Offer for listing %s (%s) already tracked: %s", listing.id, event.currency.value, existing.offer_index)
            return existing

        await self.repo.end_read()
        offer_index = await self.resolve_offer_index(listing.nft_token_id, event.currency, event.tx_hash, event.owner_account)

        now = datetime.utcnow()
        offer = SaleOffer(
            id=generate_id(),
            listing_id=listing.id,
            nft_token_id=listing.nft_token_id,
            offer_index=offer_index,
            currency=event.currency,
            status=OfferStatus.OPEN,
            created_at=now,
            updated_at=now,
        )
        if await self.repo.insert_sale_offer(offer):
            logger.info("Tracking %s offer %s for listing %s", offer.currency.value, offer_index, listing.id)
            return offer

        # Lost a race with a duplicate delivery, or this offer was already tracked (and possibly sold)
        existing = await self.repo.get_sale_offer(listing.id, listing.nft_token_id, event.currency)
        if existing:
            return existing
        existing = await self.repo.get_offer_by_index(offer_index)
        if existing and existing.listing_id == listing.id:
            logger.info("Offer %s for listing %s already tracked as %s", offer_index, listing.id, existing.status.value)
            return existing
        raise ConflictError(f"Offer {offer_index} is already tracked for another listing")

    async def resolve_offer_index(
        self,
        nft_token_id: str,
        currency: Currency,
        tx_hash: Optional[str],
        owner_account: Optional[str] = None,
    ) -> str:
        """Read the index from the transaction metadata, else poll the offer list."""
        if tx_hash:
            offer_index = created_offer_index(await self.ledger.query_transaction(tx_hash))
            if offer_index:
                return offer_index
            logger.info("Transaction %s has no offer index in metadata yet; polling offers", tx_hash)

        outcome = await self.poll_for_offer(nft_token_id, currency, owner_account)
        if outcome.status is PollStatus.TIMEOUT:
            logger.warning(
                "Offer for %s (%s) not observed after %s attempts",
                nft_token_id, currency.value, outcome.attempts,
            )
            raise OfferNotObservedError(nft_token_id, currency.value, outcome.attempts)
        return outcome.offer_index

    async def poll_for_offer(
        self,
        nft_token_id: str,
        currency: Currency,
        owner_account: Optional[str] = None,
    ) -> PollOutcome:
        """Bounded poll: at most max_attempts queries, never past interval * max_attempts."""
        deadline = self._clock() + self.poll_interval * self.max_attempts
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            for offer in await self.ledger.query_offers(nft_token_id):
                if classify_amount(offer.get("amount")) is not currency:
                    continue
                if owner_account and offer.get("owner") not in (None, owner_account):
                    continue
                if offer.get("nft_offer_index"):
                    return PollOutcome(PollStatus.FOUND, attempts, offer["nft_offer_index"])
            if attempts >= self.max_attempts or self._clock() + self.poll_interval > deadline:
                break
            await self._sleep(self.poll_interval)
        return PollOutcome(PollStatus.TIMEOUT, attempts)
