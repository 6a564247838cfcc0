"""
Dépendances FastAPI de la feature 'payments' (instances partagées par process).
Chaque fournisseur peut être remplacé via app.dependency_overrides (tests, développement).
- get_store: Supabase (PAYMENTS_STORE=supabase) ou mémoire (PAYMENTS_STORE=memory)
- get_pending_store: Redis (PENDING_STORE=redis) ou mémoire; fakeredis si USE_FAKE_REDIS_FOR_TESTS=1
- get_rate_cache, get_gateway, get_engine
"""
import logging
import os
from functools import lru_cache

import redis.asyncio as aioredis
from fastapi import Depends

from backend.config import PAYMENTS_STORE, PENDING_STORE, PENDING_REDIS_URL
from .exchange_rate import ExchangeRateCache, JsDelivrRateSource
from .memory_store import InMemoryPaymentStore
from .paystack_client import PaystackGateway
from .pending import InMemoryPendingReferenceStore, RedisPendingReferenceStore
from .reconciliation import ReconciliationEngine
from .repository import SupabasePaymentStore

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except Exception:
    FakeRedis = None

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_store():
    if PAYMENTS_STORE == "memory":
        logger.warning("payments.store in-memory (PAYMENTS_STORE=memory)")
        return InMemoryPaymentStore()
    return SupabasePaymentStore()


@lru_cache(maxsize=1)
def get_rate_cache() -> ExchangeRateCache:
    return ExchangeRateCache(JsDelivrRateSource())


@lru_cache(maxsize=1)
def get_gateway() -> PaystackGateway:
    return PaystackGateway()


@lru_cache(maxsize=1)
def get_pending_store():
    if PENDING_STORE == "memory":
        logger.warning("payments.pending in-memory (PENDING_STORE=memory)")
        return InMemoryPendingReferenceStore()
    if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
        if not FakeRedis:
            raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
        return RedisPendingReferenceStore(FakeRedis(decode_responses=True))
    return RedisPendingReferenceStore(aioredis.from_url(PENDING_REDIS_URL, encoding="utf-8", decode_responses=True))


def get_engine(store=Depends(get_store), gateway=Depends(get_gateway)) -> ReconciliationEngine:
    return ReconciliationEngine(store, gateway)
