"""Client for a vendor's catalog, quote, negotiation and cart endpoints."""

from __future__ import annotations

from typing import Optional

from .cart import Cart
from .catalog import CatalogItem, CatalogQuery
from .negotiation import CounterOffer, NegotiationResult
from .quote import Quote, QuoteRequest
from .transport import ServiceClient


class VendorClient(ServiceClient):
    """One vendor agent, addressed by display name and base URL."""

    def __init__(self, name: str, base_url: str, **kwargs):
        super().__init__(base_url, **kwargs)
        self.name = name

    async def query_catalog(self, query: Optional[CatalogQuery] = None) -> list[CatalogItem]:
        body = await self._request("POST", "/a2a/catalog.query", json=(query or CatalogQuery()).to_dict())
        return [CatalogItem.from_dict(item) for item in body.get("items", [])]

    async def create_quote(self, request: QuoteRequest) -> Quote:
        body = await self._request("POST", "/a2a/quote.create", json=request.to_dict())
        return Quote.from_dict(body)

    async def negotiate(self, quote_id: str, offer: CounterOffer) -> NegotiationResult:
        body = await self._request(
            "POST", "/a2a/negotiate", json={"quoteId": quote_id, "counterOffer": offer.to_dict()}
        )
        return NegotiationResult.from_dict(body)

    async def lock_cart(self, quote_id: str) -> Cart:
        body = await self._request("POST", "/a2a/cart.lock", json={"quoteId": quote_id})
        return Cart.from_dict(body)

    async def cart_status(self, cart_id: str) -> Cart:
        body = await self._request("GET", "/a2a/cart.status", params={"cartId": cart_id})
        return Cart.from_dict(body)

    async def release_cart(self, cart_id: str) -> Cart:
        body = await self._request("POST", "/a2a/cart.release", json={"cartId": cart_id})
        return Cart.from_dict(body)

    def __repr__(self) -> str:
        return f"VendorClient({self.name!r}, {self.base_url!r})"
