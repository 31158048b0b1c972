"""API tests for /v1/market (ASGI transport, SQLite session, fake gateway and ledger)."""
import pytest
from httpx import ASGITransport, AsyncClient

from conftest import NFT_TOKEN_ID, RLUSD_AMOUNT, gateway_webhook
from nftmarket.api.deps import get_db, get_gateway_client, get_ledger_client, get_listing_cache
from nftmarket.domain.common.errors import DependencyUnavailableError
from nftmarket.domain.market.cache import ListingCache
from nftmarket.domain.market.models import Currency
from nftmarket.infra.db.repositories.market_repo import MarketRepositoryImpl
from nftmarket.infra.vendors.xumm_client import SignRequest
from nftmarket.main import app


class FakeGateway:
    def __init__(self):
        self.requests = []

    async def submit_payload(self, txjson, custom_meta, return_url=None):
        self.requests.append((txjson, custom_meta))
        uuid = f"uuid-{len(self.requests)}"
        return SignRequest(uuid=uuid, link=f"https://xumm.app/sign/{uuid}")


class FakeLedger:
    def __init__(self, transaction=None, offers=None, fail=False):
        self.transaction = transaction
        self.offers = offers or []
        self.fail = fail

    async def query_transaction(self, tx_hash):
        if self.fail:
            raise DependencyUnavailableError("ledger", "tx timeout")
        return self.transaction

    async def query_offers(self, nft_token_id):
        if self.fail:
            raise DependencyUnavailableError("ledger", "nft_sell_offers timeout")
        return self.offers


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def ledger():
    return FakeLedger(transaction={"meta": {"offer_id": "IDX-FROM-META"}})


@pytest.fixture
async def client(db_session, gateway, ledger, configured_settings):
    cache = ListingCache(ttl_seconds=60.0)

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_listing_cache] = lambda: cache
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_ledger_client] = lambda: ledger
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def publish(client, **overrides):
    body = {
        "name": "Sunset Print",
        "quantity": 2,
        "price_xrp": "25",
        "price_rlusd": "12.5 RLUSD",
        "nft_token_id": NFT_TOKEN_ID,
        "creator_wallet": "rCreator",
    }
    body.update(overrides)
    response = await client.post("/v1/market/listings", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    """Liveness."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestListingRoutes:
    """Catalog and listing management."""

    async def test_publish_and_browse(self, client):
        created = await publish(client)
        assert created["price_rlusd"] == "12.500000"

        response = await client.get("/v1/market/listings")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        catalog = response.json()
        assert [item["id"] for item in catalog] == [created["id"]]
        assert catalog[0]["quantity_remaining"] == 2

    async def test_get_listing(self, client):
        created = await publish(client)
        response = await client.get(f"/v1/market/listings/{created['id']}")
        assert response.status_code == 200
        assert response.json()["name"] == "Sunset Print"

    async def test_get_missing_listing(self, client):
        response = await client.get("/v1/market/listings/999")
        assert response.status_code == 404

    async def test_publish_validation(self, client):
        response = await client.post("/v1/market/listings", json={"name": "x", "quantity": -1})
        assert response.status_code == 422

    async def test_ingest_key_enforced_when_set(self, client, configured_settings):
        from nftmarket.settings import get_config_store
        get_config_store().update({"ingest_api_key": "shh"})

        denied = await client.post("/v1/market/listings", json={"name": "x", "quantity": 1})
        allowed = await client.post(
            "/v1/market/listings", json={"name": "x", "quantity": 1}, headers={"X-Ingest-Key": "shh"}
        )

        assert denied.status_code == 401
        assert allowed.status_code == 201

    async def test_delist_hides_from_catalog(self, client):
        created = await publish(client)
        response = await client.post(f"/v1/market/listings/{created['id']}/delist", json={"delisted": True})

        assert response.status_code == 200
        assert response.json()["delisted"] is True
        assert (await client.get("/v1/market/listings")).json() == []


class TestPurchaseRoutes:
    """Offer and purchase initiation."""

    async def test_initiate_offer(self, client, gateway):
        created = await publish(client)
        response = await client.post(f"/v1/market/listings/{created['id']}/offers", json={"currency": "rlusd"})

        assert response.status_code == 200
        assert response.json()["link"].startswith("https://xumm.app/sign/")
        assert gateway.requests[0][0]["TransactionType"] == "NFTokenCreateOffer"

    async def test_unsupported_currency(self, client):
        created = await publish(client)
        response = await client.post("/v1/market/purchases", json={"listing_id": created["id"], "currency": "EUR"})
        assert response.status_code == 422

    async def test_purchase_without_offer_asks_for_setup(self, client, gateway):
        created = await publish(client)
        response = await client.post("/v1/market/purchases", json={"listing_id": created["id"], "currency": "RLUSD"})

        assert response.status_code == 404
        assert "retry listing setup" in response.json()["detail"]
        assert gateway.requests == []

    async def test_purchase_without_price(self, client):
        created = await publish(client, price_rlusd=None)
        response = await client.post("/v1/market/purchases", json={"listing_id": created["id"], "currency": "RLUSD"})
        assert response.status_code == 400

    async def test_gateway_unavailable(self, client, db_session):
        from nftmarket.settings import get_config_store
        created = await publish(client)
        await client.post("/v1/market/webhooks/xaman", json=offer_webhook(created["id"]))
        get_config_store().update({"pay_destination": ""})

        response = await client.post("/v1/market/purchases", json={"listing_id": created["id"], "currency": "XRP"})

        assert response.status_code == 503


def offer_webhook(listing_id, currency="XRP", uuid="uuid-offer", txid="TX-OFFER"):
    return gateway_webhook(
        listing_id,
        uuid=uuid,
        txid=txid,
        tx_type="NFTokenCreateOffer",
        delivered_amount=None,
        account="rCreator",
        request_json={"NFTokenID": NFT_TOKEN_ID, "Flags": 1},
        blob={"nft_id": listing_id, "kind": "offer", "currency": currency, "nft_token_id": NFT_TOKEN_ID},
    )


class TestWebhook:
    """Gateway confirmations end to end."""

    async def test_offer_then_purchase_then_settlement(self, client, db_session, gateway):
        created = await publish(client, quantity=1)
        listing_id = created["id"]

        ack = await client.post("/v1/market/webhooks/xaman", json=offer_webhook(listing_id))
        assert ack.json() == {"ok": True}

        purchase = await client.post("/v1/market/purchases", json={"listing_id": listing_id, "currency": "XRP"})
        assert purchase.status_code == 200
        assert gateway.requests[-1][1]["offer_index"] == "IDX-FROM-META"

        body = gateway_webhook(
            listing_id,
            uuid="uuid-pay",
            txid="TX-PAY",
            blob={"nft_id": listing_id, "kind": "purchase", "offer_index": "IDX-FROM-META"},
        )
        assert (await client.post("/v1/market/webhooks/xaman", json=body)).json() == {"ok": True}
        # Re-delivery is acknowledged the same way
        assert (await client.post("/v1/market/webhooks/xaman", json=body)).json() == {"ok": True}

        repo = MarketRepositoryImpl(db_session)
        listing = await repo.get_listing(listing_id)
        assert listing.quantity == 0
        assert listing.sold_count == 1
        assert len(await repo.get_orders_for_listing(listing_id)) == 1
        assert await repo.get_open_offer(listing_id, Currency.XRP) is None
        # Settlement invalidated the catalog snapshot; the sold-out listing is gone
        assert (await client.get("/v1/market/listings")).json() == []

    async def test_second_unit_sells_after_listing_setup_retry(self, client, db_session, gateway, ledger):
        created = await publish(client, quantity=2)
        listing_id = created["id"]

        await client.post("/v1/market/webhooks/xaman", json=offer_webhook(listing_id))
        first_pay = gateway_webhook(
            listing_id,
            uuid="uuid-pay-1",
            txid="TX-PAY-1",
            blob={"nft_id": listing_id, "kind": "purchase", "offer_index": "IDX-FROM-META"},
        )
        await client.post("/v1/market/webhooks/xaman", json=first_pay)

        blocked = await client.post("/v1/market/purchases", json={"listing_id": listing_id, "currency": "XRP"})
        assert blocked.status_code == 404

        ledger.transaction = {"meta": {"offer_id": "IDX-SECOND"}}
        retried = offer_webhook(listing_id, uuid="uuid-offer-2", txid="TX-OFFER-2")
        assert (await client.post("/v1/market/webhooks/xaman", json=retried)).json() == {"ok": True}

        purchase = await client.post("/v1/market/purchases", json={"listing_id": listing_id, "currency": "XRP"})
        assert purchase.status_code == 200
        assert gateway.requests[-1][1]["offer_index"] == "IDX-SECOND"

        second_pay = gateway_webhook(
            listing_id,
            uuid="uuid-pay-2",
            txid="TX-PAY-2",
            blob={"nft_id": listing_id, "kind": "purchase", "offer_index": "IDX-SECOND"},
        )
        await client.post("/v1/market/webhooks/xaman", json=second_pay)

        repo = MarketRepositoryImpl(db_session)
        listing = await repo.get_listing(listing_id)
        assert listing.quantity == 0
        assert listing.sold_count == 2
        assert len(await repo.get_orders_for_listing(listing_id)) == 2

    async def test_rlusd_settlement(self, client, db_session):
        created = await publish(client)
        body = gateway_webhook(created["id"], uuid="uuid-r", txid="TX-R", delivered_amount=RLUSD_AMOUNT)

        await client.post("/v1/market/webhooks/xaman", json=body)

        orders = await MarketRepositoryImpl(db_session).get_orders_for_listing(created["id"])
        assert orders[0].currency == Currency.RLUSD

    @pytest.mark.parametrize("body", [
        {},
        {"payload": {"meta": {"signed": False}}},
        gateway_webhook(987654),
    ])
    async def test_untrusted_bodies_acknowledged(self, client, body):
        response = await client.post("/v1/market/webhooks/xaman", json=body)
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    async def test_non_json_body_acknowledged(self, client):
        response = await client.post(
            "/v1/market/webhooks/xaman", content=b"not-json", headers={"Content-Type": "application/json"}
        )
        assert response.json() == {"ok": True}

    async def test_unobserved_offer_acknowledged(self, client, db_session, ledger):
        from nftmarket.settings import get_config_store
        get_config_store().update({"offer_poll_max_attempts": 1})
        ledger.transaction = None
        created = await publish(client)

        response = await client.post("/v1/market/webhooks/xaman", json=offer_webhook(created["id"]))

        assert response.json() == {"ok": True}
        assert await MarketRepositoryImpl(db_session).get_open_offer(created["id"], Currency.XRP) is None

    async def test_ledger_down_returns_503(self, client, ledger):
        ledger.fail = True
        created = await publish(client)

        response = await client.post("/v1/market/webhooks/xaman", json=offer_webhook(created["id"]))

        assert response.status_code == 503
