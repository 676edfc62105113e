"""
Pantry: negotiated team purchasing with signed payment mandates.

Vendors quote, negotiate and lock carts; the payer signs a single-use
mandate challenge; settlement resolves asynchronously.
"""

__version__ = "0.1.0"

from .catalog import CatalogItem, CatalogQuery, CatalogStore
from .quote import DeliveryWindow, PaymentTerms, Quote, QuoteEngine, QuoteLineItem, QuoteRequest
from .negotiation import CounterOffer, NegotiationEngine, NegotiationResult
from .cart import Cart, CartLocker, CartStatus
from .mandate import Mandate, MandateIssuer, MandateRequest, MandateStatus
from .settlement import (
    Payment,
    PaymentRequest,
    PaymentSettlement,
    PaymentStatus,
    SettlementBackend,
    SimulatedSettlementBackend,
)
from .signing import MandateSigner, verify_signature
from .comparator import QuoteComparison, VendorComparator
from .payment_client import PaymentClient
from .vendor_client import VendorClient
from .vendor import PREMIUM_PROFILE, STANDARD_PROFILE, VendorProfile
from .flow import OrderFlow, OrderFlowResult

__all__ = [
    "CatalogItem", "CatalogQuery", "CatalogStore",
    "DeliveryWindow", "PaymentTerms", "Quote", "QuoteEngine", "QuoteLineItem", "QuoteRequest",
    "CounterOffer", "NegotiationEngine", "NegotiationResult",
    "Cart", "CartLocker", "CartStatus",
    "Mandate", "MandateIssuer", "MandateRequest", "MandateStatus",
    "Payment", "PaymentRequest", "PaymentSettlement", "PaymentStatus",
    "SettlementBackend", "SimulatedSettlementBackend",
    "MandateSigner", "verify_signature",
    "QuoteComparison", "VendorComparator",
    "PaymentClient", "VendorClient",
    "VendorProfile", "STANDARD_PROFILE", "PREMIUM_PROFILE",
    "OrderFlow", "OrderFlowResult",
]
