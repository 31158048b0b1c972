"""Market database models."""
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from nftmarket.domain.market.models import Currency, OfferStatus, OrderStatus
from nftmarket.infra.db.base import Base

PRICE = Numeric(20, 6)
CURRENCY = SAEnum(Currency, name="settlement_currency")


class ListingModel(Base):
    """Listing model - one sellable collectible with limited remaining quantity."""

    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(Integer, nullable=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_cid = Column(String, nullable=True)
    metadata_cid = Column(String, nullable=True)
    nft_token_id = Column(String, nullable=True)  # Underlying ledger asset
    creator_wallet = Column(String, nullable=True)
    terms = Column(Text, nullable=True)
    website = Column(String, nullable=True)
    price_xrp = Column(PRICE, nullable=True)
    price_rlusd = Column(PRICE, nullable=True)
    quantity = Column(Integer, default=0, nullable=False)
    sold_count = Column(Integer, default=0, nullable=False)
    minted = Column(Boolean, default=True, nullable=False)
    delisted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_listing_quantity_non_negative"),
        CheckConstraint("sold_count >= 0", name="ck_listing_sold_count_non_negative"),
        Index("ix_listings_public", "minted", "delisted", "quantity"),
    )

    def to_entity(self):
        """Convert to domain entity."""
        from nftmarket.domain.market.models import Listing
        return Listing(
            id=self.id,
            submission_id=self.submission_id,
            name=self.name,
            description=self.description,
            image_cid=self.image_cid,
            metadata_cid=self.metadata_cid,
            nft_token_id=self.nft_token_id,
            creator_wallet=self.creator_wallet,
            terms=self.terms,
            website=self.website,
            price_xrp=self.price_xrp,
            price_rlusd=self.price_rlusd,
            quantity=self.quantity,
            sold_count=self.sold_count,
            minted=self.minted,
            delisted=self.delisted,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_entity(cls, entity):
        """Create from domain entity. The id is left to the database when unset."""
        model = cls(
            submission_id=entity.submission_id,
            name=entity.name,
            description=entity.description,
            image_cid=entity.image_cid,
            metadata_cid=entity.metadata_cid,
            nft_token_id=entity.nft_token_id,
            creator_wallet=entity.creator_wallet,
            terms=entity.terms,
            website=entity.website,
            price_xrp=entity.price_xrp,
            price_rlusd=entity.price_rlusd,
            quantity=entity.quantity,
            sold_count=entity.sold_count,
            minted=entity.minted,
            delisted=entity.delisted,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
        if entity.id:
            model.id = entity.id
        return model


class SaleOfferModel(Base):
    """Sale offer model - a ledger-side sell offer for one asset in one currency."""

    __tablename__ = "sale_offers"

    id = Column(String, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="RESTRICT"), nullable=False)
    nft_token_id = Column(String, nullable=False)
    offer_index = Column(String, nullable=False)
    currency = Column(CURRENCY, nullable=False)
    status = Column(SAEnum(OfferStatus, name="offer_status"), default=OfferStatus.OPEN, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    listing = relationship("ListingModel", backref="sale_offers")

    __table_args__ = (
        # One OPEN offer per (listing, asset, currency); USED offers stay as history
        Index(
            "uq_sale_offers_open_listing_asset_currency",
            "listing_id",
            "nft_token_id",
            "currency",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
        UniqueConstraint("offer_index", name="uq_sale_offer_offer_index"),
        Index("ix_sale_offers_listing_id", "listing_id"),
    )

    def to_entity(self):
        """Convert to domain entity."""
        from nftmarket.domain.market.models import SaleOffer
        return SaleOffer(
            id=self.id,
            listing_id=self.listing_id,
            nft_token_id=self.nft_token_id,
            offer_index=self.offer_index,
            currency=self.currency,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class OrderModel(Base):
    """Order model - one settled purchase. The external references are the idempotency keys."""

    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="RESTRICT"), nullable=False)
    buyer_account = Column(String, nullable=True)
    price = Column(PRICE, nullable=False)
    currency = Column(CURRENCY, nullable=False)
    status = Column(SAEnum(OrderStatus, name="order_status"), default=OrderStatus.PAID, nullable=False)
    payload_uuid = Column(String, nullable=True)  # Gateway correlation id
    tx_hash = Column(String, nullable=True)  # Ledger transaction id
    offer_index = Column(String, nullable=True)
    order_metadata = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    listing = relationship("ListingModel", backref="orders")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_order_price_positive"),
        CheckConstraint(
            "payload_uuid IS NOT NULL OR tx_hash IS NOT NULL",
            name="ck_order_has_external_reference",
        ),
        Index(
            "uq_orders_payload_uuid",
            "payload_uuid",
            unique=True,
            postgresql_where=text("payload_uuid IS NOT NULL"),
            sqlite_where=text("payload_uuid IS NOT NULL"),
        ),
        Index(
            "uq_orders_tx_hash",
            "tx_hash",
            unique=True,
            postgresql_where=text("tx_hash IS NOT NULL"),
            sqlite_where=text("tx_hash IS NOT NULL"),
        ),
        Index("ix_orders_listing_id", "listing_id"),
        Index("ix_orders_created_at", "created_at"),
    )

    def to_entity(self):
        """Convert to domain entity."""
        from nftmarket.domain.market.models import Order
        return Order(
            id=self.id,
            listing_id=self.listing_id,
            buyer_account=self.buyer_account,
            price=self.price,
            currency=self.currency,
            status=self.status,
            payload_uuid=self.payload_uuid,
            tx_hash=self.tx_hash,
            offer_index=self.offer_index,
            metadata=self.order_metadata,
            created_at=self.created_at,
        )
