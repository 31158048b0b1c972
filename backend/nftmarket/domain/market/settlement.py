"""Settlement reconciler: turns payment confirmations into orders and inventory changes.

Each confirmed payment must produce exactly one order and exactly one
inventory decrement, however often and however concurrently the gateway
delivers it. Per (listing, external reference) the flow is

    Unseen -> Locked -> Recorded     (order + decrement + offer USED, committed)
    Unseen -> Rejected               (rolled back, nothing written)

The unique external references on ``orders`` are the only idempotency gate.
The order row is inserted before the listing is decremented, so a duplicate
delivery is stopped before it can touch inventory.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from nftmarket.domain.common.errors import DependencyUnavailableError
from nftmarket.domain.common.types import generate_id
from nftmarket.domain.market.events import ConfirmationEvent, IgnoredEvent, PaymentConfirmation
from nftmarket.domain.market.models import Order, OrderStatus
from nftmarket.infra.db.repositories.market_repo import MarketRepository, MarketRepositoryImpl

logger = logging.getLogger(__name__)


class SettlementOutcome(str, Enum):
    """How a confirmation was resolved. Only RECORDED changes state."""
    RECORDED = "RECORDED"
    DUPLICATE = "DUPLICATE"  # Already settled; the expected result of re-delivery
    IGNORED = "IGNORED"
    LISTING_NOT_FOUND = "LISTING_NOT_FOUND"
    SOLD_OUT = "SOLD_OUT"
    INVALID_PRICE = "INVALID_PRICE"
    FAILED = "FAILED"


class _Discard(Exception):
    """Abort the settlement transaction with a non-error outcome."""

    def __init__(self, outcome: SettlementOutcome, detail: str):
        self.outcome = outcome
        self.detail = detail
        super().__init__(detail)


class SettlementReconciler:
    """Settles one confirmation per call inside a single database transaction."""

    def __init__(
        self,
        session: AsyncSession,
        repo: Optional[MarketRepository] = None,
        on_recorded: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.repo = repo or MarketRepositoryImpl(session)
        self._on_recorded = on_recorded

    async def handle_confirmation(self, event: ConfirmationEvent) -> SettlementOutcome:
        """
        Settle a confirmation.

        Never raises for business reasons: rejections come back as outcomes.
        Raises DependencyUnavailableError when the store can't be reached so
        the sender retries the delivery.
        """
        if isinstance(event, IgnoredEvent):
            logger.info("Ignoring confirmation (listing=%s): %s", event.listing_id, event.reason)
            return SettlementOutcome.IGNORED
        if not isinstance(event, PaymentConfirmation):
            logger.info("Ignoring non-payment confirmation for listing %s", getattr(event, "listing_id", None))
            return SettlementOutcome.IGNORED

        try:
            await self._settle(event)
        except _Discard as discard:
            log = logger.info if discard.outcome is SettlementOutcome.DUPLICATE else logger.warning
            log(
                "Settlement %s for listing %s (payload=%s tx=%s): %s",
                discard.outcome.value, event.listing_id, event.payload_uuid, event.tx_hash, discard.detail,
            )
            return discard.outcome
        except (OperationalError, InterfaceError, TimeoutError) as e:
            logger.error("Database unavailable settling listing %s: %s", event.listing_id, e)
            raise DependencyUnavailableError("database", str(e)) from e
        except DependencyUnavailableError:
            raise
        except Exception:
            logger.exception(
                "Settlement failed for listing %s (payload=%s tx=%s); rolled back",
                event.listing_id, event.payload_uuid, event.tx_hash,
            )
            return SettlementOutcome.FAILED

        logger.info(
            "Settlement RECORDED for listing %s (payload=%s tx=%s buyer=%s %s)",
            event.listing_id, event.payload_uuid, event.tx_hash, event.buyer_account,
            event.currency.value if event.currency else None,
        )
        if self._on_recorded:
            self._on_recorded()
        return SettlementOutcome.RECORDED

    async def _settle(self, event: PaymentConfirmation) -> None:
        if self.session.in_transaction():
            # End the implicit transaction left open by earlier reads
            await self.session.commit()
        async with self.session.begin():
            # Serializes confirmations for this listing until commit/rollback
            listing = await self.repo.lock_listing(event.listing_id)
            if listing is None:
                raise _Discard(SettlementOutcome.LISTING_NOT_FOUND, "listing does not exist")

            if listing.quantity <= 0:
                raise _Discard(SettlementOutcome.SOLD_OUT, "no remaining quantity")

            if event.currency is None:
                raise _Discard(SettlementOutcome.INVALID_PRICE, "unrecognized delivered amount")
            price = listing.price_for(event.currency)
            if price is None:
                raise _Discard(
                    SettlementOutcome.INVALID_PRICE,
                    f"listing has no positive {event.currency.value} price",
                )

            order = Order(
                id=generate_id(),
                listing_id=listing.id,
                buyer_account=event.buyer_account,
                price=price,
                currency=event.currency,
                status=OrderStatus.PAID,
                payload_uuid=event.payload_uuid,
                tx_hash=event.tx_hash,
                offer_index=event.offer_index,
                metadata=event.blob or None,
                created_at=datetime.utcnow(),
            )
            if not await self.repo.insert_order(order):
                raise _Discard(SettlementOutcome.DUPLICATE, "external reference already settled")

            # Only reached with a freshly inserted order
            if not await self.repo.decrement_inventory(listing.id):
                raise _Discard(SettlementOutcome.SOLD_OUT, "quantity guard rejected decrement")

            if event.offer_index and not await self.repo.mark_offer_used(listing.id, event.offer_index):
                logger.warning(
                    "Offer %s for listing %s was not OPEN; order recorded without offer transition",
                    event.offer_index, listing.id,
                )
