"""Domain error types."""
from typing import Optional


class DomainError(Exception):
    """Base domain error."""
    pass


class ValidationError(DomainError):
    """Missing or malformed input, rejected before any store access."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DomainError):
    """Referenced listing or asset is absent."""
    def __init__(self, resource: str, identifier, message: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        self.message = message or f"{resource} with id {identifier} not found"
        super().__init__(self.message)


class InvalidPriceError(DomainError):
    """Price missing or non-positive for the requested currency."""
    def __init__(self, listing_id: int, currency: str):
        self.listing_id = listing_id
        self.currency = currency
        self.message = f"Invalid {currency} price for listing {listing_id}"
        super().__init__(self.message)


class OfferNotObservedError(DomainError):
    """The ledger never showed the sale offer within the polling window."""
    def __init__(self, nft_token_id: str, currency: str, attempts: int):
        self.nft_token_id = nft_token_id
        self.currency = currency
        self.attempts = attempts
        self.message = (
            f"Sale offer for {nft_token_id} ({currency}) not observed on ledger "
            f"after {attempts} attempts; retry listing setup"
        )
        super().__init__(self.message)


class ConflictError(DomainError):
    """Idempotency constraint hit."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DependencyUnavailableError(DomainError):
    """Store, signing gateway or ledger unreachable or timed out."""
    def __init__(self, dependency: str, detail: str = ""):
        self.dependency = dependency
        self.detail = detail
        self.message = f"{dependency} unavailable" + (f": {detail}" if detail else "")
        super().__init__(self.message)
