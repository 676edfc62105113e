"""
HTTP surfaces for the vendor, settlement and ordering services.

Each factory returns a FastAPI app. Bodies are parsed by the domain types'
``from_dict`` so validation lives with the types. Any ``PantryError`` becomes
``{"error", "message"}`` with its status code; anything else is logged and
reported as a generic 500.
"""

from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .cart import CartLocker
from .catalog import CatalogQuery
from .errors import InternalError, InvalidRequestError, PantryError
from .flow import OrderFlow
from .mandate import MandateIssuer, MandateRequest
from .negotiation import CounterOffer, NegotiationEngine
from .quote import QuoteEngine, QuoteRequest
from .settlement import PaymentRequest, PaymentSettlement
from .timestamps import Clock, to_iso, utcnow
from .vendor import VendorProfile

logger = logging.getLogger(__name__)


def _install_error_handler(app: FastAPI) -> None:
    @app.exception_handler(PantryError)
    async def pantry_error_handler(request: Request, exc: PantryError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def internal_errors(message: str) -> Callable:
    """Turn unexpected exceptions in a route into a logged, generic InternalError."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except PantryError:
                raise
            except Exception as e:
                logger.exception(message)
                raise InternalError(message) from e

        return wrapper

    return decorator


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequestError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


def _require_param(request: Request, name: str) -> str:
    value = request.query_params.get(name)
    if not value:
        raise InvalidRequestError(f"{name} query parameter is required")
    return value


def create_vendor_app(profile: VendorProfile, clock: Clock = utcnow) -> FastAPI:
    quotes = QuoteEngine(profile, clock=clock)
    negotiation = NegotiationEngine(quotes)
    carts = CartLocker(quotes)

    app = FastAPI(title=f"{profile.name} vendor agent", version=__version__)
    app.state.quotes = quotes
    app.state.negotiation = negotiation
    app.state.carts = carts
    _install_error_handler(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "vendor-agent", "vendor": profile.name}

    @app.post("/a2a/catalog.query")
    @internal_errors("Failed to query catalog")
    async def catalog_query(request: Request):
        query = CatalogQuery.from_dict(await _json_body(request))
        return {"vendor": profile.name, "items": [item.to_dict() for item in quotes.catalog.query(query)]}

    @app.post("/a2a/quote.create")
    @internal_errors("Failed to create quote")
    async def quote_create(request: Request):
        req = QuoteRequest.from_dict(await _json_body(request))
        return quotes.create_quote(req.items, req.delivery_date, req.headcount).to_dict()

    @app.post("/a2a/negotiate")
    @internal_errors("Failed to process negotiation")
    async def negotiate(request: Request):
        body = await _json_body(request)
        quote_id = body.get("quoteId")
        if not quote_id or "counterOffer" not in body:
            raise InvalidRequestError("quoteId and counterOffer are required")
        offer = CounterOffer.from_dict(body["counterOffer"])
        return negotiation.negotiate(str(quote_id), offer).to_dict()

    @app.post("/a2a/cart.lock")
    @internal_errors("Failed to lock cart")
    async def cart_lock(request: Request):
        body = await _json_body(request)
        return carts.lock_cart(str(body.get("quoteId") or "")).to_dict()

    @app.get("/a2a/cart.status")
    @internal_errors("Failed to get cart status")
    async def cart_status(request: Request):
        return carts.require_payable(_require_param(request, "cartId")).to_dict()

    @app.post("/a2a/cart.release")
    @internal_errors("Failed to release cart")
    async def cart_release(request: Request):
        body = await _json_body(request)
        cart_id = body.get("cartId")
        if not cart_id:
            raise InvalidRequestError("cartId is required")
        return carts.release(str(cart_id)).to_dict()

    return app


def create_settlement_app(settlement: Optional[PaymentSettlement] = None) -> FastAPI:
    settlement = settlement or PaymentSettlement(MandateIssuer())
    mandates = settlement.mandates

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await settlement.aclose()

    app = FastAPI(title="Payment acceptor", version=__version__, lifespan=lifespan)
    app.state.settlement = settlement
    _install_error_handler(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "ap2-acceptor"}

    @app.post("/ap2/mandate.create")
    @internal_errors("Failed to create mandate")
    async def mandate_create(request: Request):
        req = MandateRequest.from_dict(await _json_body(request))
        return mandates.create_mandate(req).to_dict()

    @app.post("/ap2/pay")
    @internal_errors("Failed to process payment")
    async def pay(request: Request):
        req = PaymentRequest.from_dict(await _json_body(request))
        payment = await settlement.process_payment(req)
        return payment.to_receipt()

    @app.get("/ap2/payment.status")
    @internal_errors("Failed to get payment status")
    async def payment_status(request: Request):
        return settlement.get_payment_status(_require_param(request, "paymentId")).to_dict()

    return app


def create_office_app(flow: OrderFlow) -> FastAPI:
    app = FastAPI(title="Office agent", version=__version__)
    app.state.flow = flow
    _install_error_handler(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": to_iso(utcnow())}

    @app.post("/order-snacks")
    @internal_errors("Failed to execute snack flow")
    async def order_snacks():
        result = await flow.run()
        return result.to_dict()

    return app
