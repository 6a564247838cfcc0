"""
Module 'payments' (feature-first): point d'entrée public.
Réunit taux de change, construction de requête, client Paystack, stockage, réconciliation et services.
"""

from .exceptions import (
    PaymentError,
    ValidationError,
    MissingField,
    EmptyCart,
    InvalidRequest,
    GatewayUnavailable,
    NotFoundYet,
    GatewayFailed,
    AmountMismatch,
    SessionNotFound,
)
from .exchange_rate import ExchangeRateCache, JsDelivrRateSource
from .phone import normalize_phone
from .request_builder import build_payment_request, to_minor_units
from .paystack_client import PaystackGateway
from .pending import RedisPendingReferenceStore, InMemoryPendingReferenceStore
from .memory_store import InMemoryPaymentStore
from .repository import SupabasePaymentStore
from .reconciliation import ReconciliationEngine, abandon_stale_sessions
from .service import initiate_checkout, verify_payment, payment_status, plan_revenue_split

__all__ = [
    # errors
    "PaymentError",
    "ValidationError",
    "MissingField",
    "EmptyCart",
    "InvalidRequest",
    "GatewayUnavailable",
    "NotFoundYet",
    "GatewayFailed",
    "AmountMismatch",
    "SessionNotFound",
    # request
    "ExchangeRateCache",
    "JsDelivrRateSource",
    "normalize_phone",
    "build_payment_request",
    "to_minor_units",
    # gateway
    "PaystackGateway",
    # storage
    "RedisPendingReferenceStore",
    "InMemoryPendingReferenceStore",
    "InMemoryPaymentStore",
    "SupabasePaymentStore",
    # services
    "ReconciliationEngine",
    "abandon_stale_sessions",
    "initiate_checkout",
    "verify_payment",
    "payment_status",
    "plan_revenue_split",
]
