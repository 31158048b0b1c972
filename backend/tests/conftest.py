"""Pytest configuration and shared fixtures for tests directory."""
import sys
from decimal import Decimal
from pathlib import Path

# Add the backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from nftmarket.domain.market.models import Listing
from nftmarket.infra.db.base import Base
from nftmarket.infra.db.models import ListingModel, OrderModel, SaleOfferModel  # noqa: F401
from nftmarket.infra.db.repositories.market_repo import MarketRepositoryImpl
from nftmarket.settings import get_config_store

PAY_DESTINATION = "rMarketplaceDestination111111111"
CREATOR_WALLET = "rCreatorWallet2222222222222222222"
NFT_TOKEN_ID = "000800006203F49C21D5D6E022CB16DE3538F248662FC73C29ABA6A90000000A"


def pytest_configure(config):
    """Register markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that need live services (deselect with '-m \"not integration\"')"
    )


@pytest.fixture
def configured_settings():
    """Gateway credentials and payment destination set; restored after the test."""
    store = get_config_store()
    store.update({
        "xumm_api_key": "test-key",
        "xumm_api_secret": "test-secret",
        "pay_destination": PAY_DESTINATION,
        "ingest_api_key": "",
    })
    yield store.get_settings()
    store.clear_overrides()


# Test database setup
@pytest.fixture
async def db_session():
    """In-memory SQLite session with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path):
    """File-backed SQLite sessions for concurrent settlement.

    Every transaction starts with BEGIN IMMEDIATE, so a transaction holds the
    write lock from its first statement the way SELECT ... FOR UPDATE holds the
    listing row on Postgres.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'market.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


def build_listing(**overrides) -> Listing:
    """Listing entity with sellable defaults."""
    values = {
        "id": 0,
        "name": "Sunset Print",
        "quantity": 3,
        "price_xrp": Decimal("25"),
        "price_rlusd": Decimal("12.5"),
        "nft_token_id": NFT_TOKEN_ID,
        "creator_wallet": CREATOR_WALLET,
    }
    values.update(overrides)
    return Listing(**values)


@pytest.fixture
def make_listing(db_session: AsyncSession):
    """Persist a listing in the in-memory database."""
    async def _make(**overrides) -> Listing:
        return await MarketRepositoryImpl(db_session).create_listing(build_listing(**overrides))
    return _make


def gateway_webhook(
    listing_id,
    *,
    uuid="payload-0001",
    txid="A1B2C3D4",
    tx_type="Payment",
    delivered_amount="25000000",
    account="rBuyerAccount33333333333333333",
    signed=True,
    dispatched_result="tesSUCCESS",
    blob=None,
    request_json=None,
) -> dict:
    """Webhook body as the signing gateway posts it."""
    return {
        "payload": {
            "meta": {"uuid": uuid, "signed": signed},
            "payload": {"tx_type": tx_type, "request_json": request_json or {}},
            "response": {
                "txid": txid,
                "account": account,
                "dispatched_result": dispatched_result,
                "delivered_amount": delivered_amount,
            },
            "custom_meta": {"blob": blob if blob is not None else {"nft_id": listing_id, "kind": "purchase"}},
        }
    }


RLUSD_AMOUNT = {
    "currency": "524C555344000000000000000000000000000000",
    "issuer": PAY_DESTINATION,
    "value": "12.5",
}

