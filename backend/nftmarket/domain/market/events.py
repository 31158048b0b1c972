"""Confirmation events pushed by the signing gateway.

The webhook body is untrusted and loosely shaped. ``parse_confirmation`` is the
single place it is validated and classified: everything downstream works with
one of three variants.

- ``PaymentConfirmation``: a buyer's signed and dispatched payment.
- ``OfferConfirmation``: an owner's signed and dispatched sell offer.
- ``IgnoredEvent``: anything else, carrying the reason it was dropped.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from nftmarket.domain.market.models import Currency


SUCCESS_RESULT = "tesSUCCESS"
OFFER_TX_TYPES = {"NFTokenCreateOffer"}
PAYMENT_TX_TYPES = {"Payment", "NFTokenAcceptOffer"}


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GatewayMeta(_Lenient):
    uuid: Optional[str] = None
    signed: Optional[bool] = None


class GatewayTxPayload(_Lenient):
    tx_type: Optional[str] = None
    request_json: Optional[dict[str, Any]] = None


class GatewayResponse(_Lenient):
    txid: Optional[str] = None
    account: Optional[str] = None
    dispatched_result: Optional[str] = None
    delivered_amount: Any = None


class GatewayCustomMeta(_Lenient):
    blob: Any = None


class GatewayEnvelope(_Lenient):
    meta: GatewayMeta = GatewayMeta()
    payload: GatewayTxPayload = GatewayTxPayload()
    response: GatewayResponse = GatewayResponse()
    custom_meta: GatewayCustomMeta = GatewayCustomMeta()


class WebhookBody(_Lenient):
    payload: Optional[GatewayEnvelope] = None


@dataclass(frozen=True)
class PaymentConfirmation:
    listing_id: int
    payload_uuid: Optional[str]
    tx_hash: Optional[str]
    buyer_account: Optional[str]
    currency: Optional[Currency]  # None when the delivered amount has no recognizable shape
    offer_index: Optional[str] = None
    blob: dict = field(default_factory=dict)


@dataclass(frozen=True)
class OfferConfirmation:
    listing_id: int
    payload_uuid: Optional[str]
    tx_hash: Optional[str]
    owner_account: Optional[str]
    currency: Optional[Currency]
    nft_token_id: Optional[str]


@dataclass(frozen=True)
class IgnoredEvent:
    reason: str
    listing_id: Optional[int] = None


ConfirmationEvent = Union[PaymentConfirmation, OfferConfirmation, IgnoredEvent]


def classify_amount(amount: Any) -> Optional[Currency]:
    """Issued-amount objects settle in the secondary currency, bare drop counts in XRP."""
    if isinstance(amount, dict):
        return Currency.RLUSD if "value" in amount and "currency" in amount else None
    if isinstance(amount, bool):
        return None
    if isinstance(amount, int):
        return Currency.XRP if amount >= 0 else None
    if isinstance(amount, str) and amount.isdigit():
        return Currency.XRP
    return None


def _coerce_blob(blob: Any) -> dict:
    if isinstance(blob, dict):
        return blob
    if isinstance(blob, str):
        try:
            decoded = json.loads(blob)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _listing_id(blob: dict) -> Optional[int]:
    raw = blob.get("nft_id")
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
        return value if value > 0 else None
    return None


def _currency_hint(value: Any) -> Optional[Currency]:
    try:
        return Currency(str(value).upper())
    except ValueError:
        return None


def _is_offer(tx_type: Optional[str], blob: dict) -> bool:
    if tx_type in OFFER_TX_TYPES:
        return True
    return tx_type is None and blob.get("kind") == "offer"


def parse_confirmation(body: Any) -> ConfirmationEvent:
    """Validate and classify a webhook body. Never raises."""
    try:
        envelope = WebhookBody.model_validate(body).payload
    except PydanticValidationError as e:
        return IgnoredEvent(reason=f"malformed body ({e.error_count()} errors)")
    if envelope is None:
        return IgnoredEvent(reason="no payload")

    response = envelope.response
    if envelope.meta.signed is not True or response.dispatched_result != SUCCESS_RESULT:
        return IgnoredEvent(reason="not a signed successful dispatch")

    blob = _coerce_blob(envelope.custom_meta.blob)
    listing_id = _listing_id(blob)
    if listing_id is None:
        return IgnoredEvent(reason="no listing id in correlation metadata")

    tx_type = envelope.payload.tx_type
    request_json = envelope.payload.request_json or {}
    requested_amount = request_json.get("Amount")

    if _is_offer(tx_type, blob):
        currency = _currency_hint(blob.get("currency")) or classify_amount(requested_amount)
        return OfferConfirmation(
            listing_id=listing_id,
            payload_uuid=envelope.meta.uuid,
            tx_hash=response.txid,
            owner_account=response.account,
            currency=currency,
            nft_token_id=request_json.get("NFTokenID") or blob.get("nft_token_id"),
        )

    if tx_type is not None and tx_type not in PAYMENT_TX_TYPES:
        return IgnoredEvent(reason=f"unsupported transaction type {tx_type}", listing_id=listing_id)

    if not envelope.meta.uuid and not response.txid:
        return IgnoredEvent(reason="no external reference", listing_id=listing_id)

    delivered = response.delivered_amount if response.delivered_amount is not None else requested_amount
    offer_index = blob.get("offer_index") or request_json.get("NFTokenSellOffer")
    return PaymentConfirmation(
        listing_id=listing_id,
        payload_uuid=envelope.meta.uuid,
        tx_hash=response.txid,
        buyer_account=response.account,
        currency=classify_amount(delivered),
        offer_index=str(offer_index) if offer_index else None,
        blob=blob,
    )
