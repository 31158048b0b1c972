"""Database models."""
from nftmarket.infra.db.models.market import ListingModel, OrderModel, SaleOfferModel

__all__ = ["ListingModel", "OrderModel", "SaleOfferModel"]
