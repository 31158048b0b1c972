"""Ledger node client (XRPL JSON-RPC over HTTP)."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from nftmarket.domain.common.errors import DependencyUnavailableError
from nftmarket.infra.vendors.xumm_client import default_timeout
from nftmarket.settings import settings

logger = logging.getLogger(__name__)

LEDGER = "ledger"

# Error codes that mean "nothing there (yet)" rather than a failed call
_EMPTY_RESULTS = {"txnNotFound", "objectNotFound", "entryNotFound"}
_FINAL_REJECT_PREFIXES = ("tem", "tef", "tel")


@dataclass(frozen=True)
class SubmittedTransaction:
    """Outcome of submit_and_wait."""
    tx_hash: Optional[str]
    validated: bool
    result_code: Optional[str]
    meta: Optional[dict]


def created_offer_index(tx: Optional[dict]) -> Optional[str]:
    """Offer index an NFTokenCreateOffer produced, read from the transaction metadata."""
    if not tx:
        return None
    meta = tx.get("meta") or tx.get("metaData")
    if not isinstance(meta, dict):
        return None
    if meta.get("offer_id"):
        return meta["offer_id"]
    for node in meta.get("AffectedNodes") or []:
        created = node.get("CreatedNode") if isinstance(node, dict) else None
        if created and created.get("LedgerEntryType") == "NFTokenOffer":
            return created.get("LedgerIndex")
    return None


class LedgerClient:
    """Request/response access to a ledger node: query offers and transactions, submit."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url or settings.ledger_rpc_url
        self.timeout = timeout or default_timeout()
        self._transport = transport

    async def _call(self, method: str, params: dict) -> Optional[dict]:
        """Run one JSON-RPC method. Returns None for not-found style errors."""
        body = {"method": method, "params": [params]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.error("Ledger %s timed out: %s", method, e)
            raise DependencyUnavailableError(LEDGER, f"{method} timeout") from e
        except httpx.HTTPStatusError as e:
            logger.error("Ledger %s failed: HTTP %s", method, e.response.status_code)
            raise DependencyUnavailableError(LEDGER, f"{method} HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Ledger node unreachable at {self.rpc_url}: {e}")
            raise DependencyUnavailableError(LEDGER, str(e)) from e
        except ValueError as e:
            raise DependencyUnavailableError(LEDGER, f"{method} response was not JSON") from e

        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            raise DependencyUnavailableError(LEDGER, f"{method} response missing result")
        error = result.get("error")
        if error in _EMPTY_RESULTS:
            return None
        if error or result.get("status") == "error":
            raise DependencyUnavailableError(LEDGER, f"{method} error: {error or 'unknown'}")
        return result

    async def server_info(self) -> dict:
        return await self._call("server_info", {}) or {}

    async def query_transaction(self, tx_hash: str) -> Optional[dict]:
        """Transaction detail including metadata, or None if the node doesn't know it."""
        return await self._call("tx", {"transaction": tx_hash, "binary": False})

    async def query_offers(self, nft_token_id: str) -> list[dict[str, Any]]:
        """Open sell offers for an NFT. Each has nft_offer_index, amount, owner."""
        result = await self._call("nft_sell_offers", {"nft_id": nft_token_id, "ledger_index": "validated"})
        if not result:
            return []
        return list(result.get("offers") or [])

    async def submit_and_wait(
        self,
        tx_blob: str,
        poll_interval: float = 1.0,
        max_attempts: int = 20,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> SubmittedTransaction:
        """Submit a signed blob and wait (bounded) until the transaction is validated."""
        submitted = await self._call("submit", {"tx_blob": tx_blob})
        if not submitted:
            raise DependencyUnavailableError(LEDGER, "submit returned no result")
        engine_result = submitted.get("engine_result")
        tx_hash = (submitted.get("tx_json") or {}).get("hash")
        if engine_result and engine_result.startswith(_FINAL_REJECT_PREFIXES):
            logger.warning("Ledger rejected transaction %s: %s", tx_hash, engine_result)
            return SubmittedTransaction(tx_hash=tx_hash, validated=False, result_code=engine_result, meta=None)
        if not tx_hash:
            raise DependencyUnavailableError(LEDGER, "submit response missing transaction hash")

        for _ in range(max_attempts):
            tx = await self.query_transaction(tx_hash)
            if tx and tx.get("validated"):
                meta = tx.get("meta") or {}
                return SubmittedTransaction(
                    tx_hash=tx_hash,
                    validated=True,
                    result_code=meta.get("TransactionResult"),
                    meta=meta,
                )
            await sleep(poll_interval)
        raise DependencyUnavailableError(LEDGER, f"transaction {tx_hash} not validated in time")
