"""Market repository implementation."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from nftmarket.domain.market.models import (
    Currency,
    Listing,
    OfferStatus,
    Order,
    SaleOffer,
)
from nftmarket.infra.db.models.market import ListingModel, OrderModel, SaleOfferModel

_CONFLICT_TOLERANT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class MarketRepository:
    """Market repository interface."""

    # Listings
    async def create_listing(self, listing: Listing) -> Listing:
        """Create a listing."""
        raise NotImplementedError

    async def get_listing(self, listing_id: int) -> Optional[Listing]:
        """Get listing by ID."""
        raise NotImplementedError

    async def list_public_listings(self) -> List[Listing]:
        """Listings open to discovery: minted, not delisted, quantity > 0."""
        raise NotImplementedError

    async def set_delisted(self, listing_id: int, delisted: bool) -> Optional[Listing]:
        """Soft-remove or restore a listing."""
        raise NotImplementedError

    # Sale offers
    async def insert_sale_offer(self, offer: SaleOffer) -> bool:
        """Insert unless an OPEN offer for (listing, asset, currency) or the offer index exists. True if a row was written."""
        raise NotImplementedError

    async def get_sale_offer(self, listing_id: int, nft_token_id: str, currency: Currency) -> Optional[SaleOffer]:
        """Get the OPEN offer for a (listing, asset, currency) triple."""
        raise NotImplementedError

    async def get_offer_by_index(self, offer_index: str) -> Optional[SaleOffer]:
        """Get a tracked offer, OPEN or USED, by its ledger index."""
        raise NotImplementedError

    async def get_open_offer(self, listing_id: int, currency: Currency) -> Optional[SaleOffer]:
        """Get an OPEN offer for the listing in a currency."""
        raise NotImplementedError

    # Settlement primitives. These never commit; the caller owns the transaction.
    async def lock_listing(self, listing_id: int) -> Optional[Listing]:
        """Read a listing under an exclusive row lock."""
        raise NotImplementedError

    async def insert_order(self, order: Order) -> bool:
        """Insert an order unless its external reference was already recorded."""
        raise NotImplementedError

    async def decrement_inventory(self, listing_id: int) -> bool:
        """quantity -= 1, sold_count += 1 when quantity > 0. True if applied."""
        raise NotImplementedError

    async def mark_offer_used(self, listing_id: int, offer_index: str) -> bool:
        """OPEN -> USED for the referenced offer. True if the transition happened."""
        raise NotImplementedError

    # Orders
    async def get_orders_for_listing(self, listing_id: int) -> List[Order]:
        """Get all orders for a listing, oldest first."""
        raise NotImplementedError

    async def end_read(self) -> None:
        """End the implicit read transaction so no connection is held across outbound calls."""
        raise NotImplementedError


class MarketRepositoryImpl(MarketRepository):
    """Market repository implementation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self, model):
        """INSERT construct for the bound dialect, supporting ON CONFLICT DO NOTHING."""
        dialect = self.session.get_bind().dialect.name
        try:
            return _CONFLICT_TOLERANT_INSERTS[dialect](model)
        except KeyError:
            raise NotImplementedError(f"Conflict-tolerant insert not supported on {dialect}")

    # Listings
    async def create_listing(self, listing: Listing) -> Listing:
        """Create a listing."""
        model = ListingModel.from_entity(listing)
        self.session.add(model)
        await self.session.commit()
        await self.session.refresh(model)
        return model.to_entity()

    async def get_listing(self, listing_id: int) -> Optional[Listing]:
        """Get listing by ID."""
        result = await self.session.execute(
            select(ListingModel)
            .where(ListingModel.id == listing_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def list_public_listings(self) -> List[Listing]:
        """Listings open to discovery, newest first."""
        result = await self.session.execute(
            select(ListingModel)
            .where(
                and_(
                    ListingModel.minted.is_(True),
                    ListingModel.delisted.is_(False),
                    ListingModel.quantity > 0,
                )
            )
            .order_by(ListingModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [model.to_entity() for model in result.scalars().all()]

    async def set_delisted(self, listing_id: int, delisted: bool) -> Optional[Listing]:
        """Soft-remove or restore a listing."""
        result = await self.session.execute(
            update(ListingModel)
            .where(ListingModel.id == listing_id)
            .values(delisted=delisted, updated_at=datetime.utcnow())
        )
        await self.session.commit()
        if result.rowcount == 0:
            return None
        return await self.get_listing(listing_id)

    # Sale offers
    async def insert_sale_offer(self, offer: SaleOffer) -> bool:
        """Conflict-tolerant insert on the OPEN (listing, asset, currency) index and offer_index."""
        stmt = (
            self._insert(SaleOfferModel)
            .values(
                id=offer.id,
                listing_id=offer.listing_id,
                nft_token_id=offer.nft_token_id,
                offer_index=offer.offer_index,
                currency=offer.currency,
                status=offer.status,
                created_at=offer.created_at,
                updated_at=offer.updated_at,
            )
            .on_conflict_do_nothing()
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def get_sale_offer(self, listing_id: int, nft_token_id: str, currency: Currency) -> Optional[SaleOffer]:
        """Get the OPEN offer for a (listing, asset, currency) triple."""
        result = await self.session.execute(
            select(SaleOfferModel).where(
                and_(
                    SaleOfferModel.listing_id == listing_id,
                    SaleOfferModel.nft_token_id == nft_token_id,
                    SaleOfferModel.currency == currency,
                    SaleOfferModel.status == OfferStatus.OPEN,
                )
            ).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_offer_by_index(self, offer_index: str) -> Optional[SaleOffer]:
        """Get a tracked offer by ledger index, whatever its status."""
        result = await self.session.execute(
            select(SaleOfferModel)
            .where(SaleOfferModel.offer_index == offer_index)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def get_open_offer(self, listing_id: int, currency: Currency) -> Optional[SaleOffer]:
        """Get the oldest OPEN offer for the listing in a currency."""
        result = await self.session.execute(
            select(SaleOfferModel)
            .where(
                and_(
                    SaleOfferModel.listing_id == listing_id,
                    SaleOfferModel.currency == currency,
                    SaleOfferModel.status == OfferStatus.OPEN,
                )
            )
            .order_by(SaleOfferModel.created_at)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    # Settlement primitives
    async def lock_listing(self, listing_id: int) -> Optional[Listing]:
        """SELECT ... FOR UPDATE on the listing row."""
        result = await self.session.execute(
            select(ListingModel)
            .where(ListingModel.id == listing_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return model.to_entity() if model else None

    async def insert_order(self, order: Order) -> bool:
        """Zero affected rows means a unique external reference collided: already settled."""
        stmt = (
            self._insert(OrderModel)
            .values(
                id=order.id,
                listing_id=order.listing_id,
                buyer_account=order.buyer_account,
                price=order.price,
                currency=order.currency,
                status=order.status,
                payload_uuid=order.payload_uuid,
                tx_hash=order.tx_hash,
                offer_index=order.offer_index,
                order_metadata=order.metadata,
                created_at=order.created_at,
            )
            .on_conflict_do_nothing()
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def decrement_inventory(self, listing_id: int) -> bool:
        """Guarded decrement; the quantity > 0 predicate backs up the row lock."""
        result = await self.session.execute(
            update(ListingModel)
            .where(and_(ListingModel.id == listing_id, ListingModel.quantity > 0))
            .values(
                quantity=ListingModel.quantity - 1,
                sold_count=ListingModel.sold_count + 1,
                updated_at=datetime.utcnow(),
            )
        )
        return result.rowcount == 1

    async def mark_offer_used(self, listing_id: int, offer_index: str) -> bool:
        """OPEN -> USED, never the other way."""
        result = await self.session.execute(
            update(SaleOfferModel)
            .where(
                and_(
                    SaleOfferModel.listing_id == listing_id,
                    SaleOfferModel.offer_index == offer_index,
                    SaleOfferModel.status == OfferStatus.OPEN,
                )
            )
            .values(status=OfferStatus.USED, updated_at=datetime.utcnow())
        )
        return result.rowcount == 1

    # Orders
    async def get_orders_for_listing(self, listing_id: int) -> List[Order]:
        """Get all orders for a listing, oldest first."""
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.listing_id == listing_id)
            .order_by(OrderModel.created_at)
        )
        return [model.to_entity() for model in result.scalars().all()]

    async def end_read(self) -> None:
        """Commit the implicit read transaction, if one was started."""
        if self.session.in_transaction():
            await self.session.commit()
