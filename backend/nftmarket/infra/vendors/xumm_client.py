"""Signing gateway (Xaman / XUMM platform API) client."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from nftmarket.domain.common.errors import DependencyUnavailableError
from nftmarket.settings import settings

logger = logging.getLogger(__name__)

GATEWAY = "signing gateway"


@dataclass(frozen=True)
class SignRequest:
    """A created signing payload: gateway correlation id plus the user-facing link."""
    uuid: str
    link: str


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.http_read_timeout, connect=settings.http_connect_timeout)


class SigningGatewayClient:
    """Client for the wallet-signing gateway.

    Only payload creation is outbound; confirmations come back through the
    webhook and are parsed by ``nftmarket.domain.market.events``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.xumm_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.xumm_api_key
        self.api_secret = api_secret if api_secret is not None else settings.xumm_api_secret
        self.timeout = timeout or default_timeout()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def submit_payload(
        self,
        txjson: dict,
        custom_meta: dict,
        return_url: Optional[str] = None,
    ) -> SignRequest:
        """
        Create a signing request.

        Args:
            txjson: Transaction template the wallet will sign and submit
            custom_meta: Correlation metadata echoed back in the confirmation webhook
            return_url: Where the wallet sends the user afterwards

        Returns:
            SignRequest with the payload uuid and the link to show the user
        """
        if not self.configured:
            raise DependencyUnavailableError(GATEWAY, "API credentials not configured")

        url = f"{self.base_url}/payload"
        return_to = return_url or settings.market_return_url
        body = {
            "txjson": txjson,
            "options": {
                "submit": True,
                "return_url": {"web": return_to, "app": return_to},
            },
            "custom_meta": {"blob": custom_meta},
        }
        headers = {
            "X-API-Key": self.api_key,
            "X-API-Secret": self.api_secret,
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.error("Signing gateway timed out creating %s payload: %s", txjson.get("TransactionType"), e)
            raise DependencyUnavailableError(GATEWAY, "timeout") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Signing gateway rejected %s payload: HTTP %s",
                txjson.get("TransactionType"),
                e.response.status_code,
            )
            raise DependencyUnavailableError(GATEWAY, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Signing gateway unreachable at {url}: {e}")
            raise DependencyUnavailableError(GATEWAY, str(e)) from e
        except ValueError as e:
            raise DependencyUnavailableError(GATEWAY, "response was not JSON") from e

        link = ((data.get("next") or {}).get("always")) if isinstance(data, dict) else None
        uuid = data.get("uuid") if isinstance(data, dict) else None
        if not link or not uuid:
            raise DependencyUnavailableError(GATEWAY, "response missing uuid or signing link")

        logger.info("Created %s signing payload %s", txjson.get("TransactionType"), uuid)
        return SignRequest(uuid=uuid, link=link)
