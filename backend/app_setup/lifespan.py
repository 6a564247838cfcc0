"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Démarrage: FastAPILimiter (Redis, ou fakeredis en test) puis journalisation des backends de paiement.
- Arrêt: fermeture du client Redis du limiteur et de celui des références en attente.
Variables d’environnement:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: limiteur désactivé (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: fakeredis à la place de Redis
  - LOCAL_RATE_LIMIT_FALLBACK=1: fallback mémoire si l’init Redis échoue
"""
import os
import logging
import redis.asyncio as aioredis
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from backend.config import PAYMENTS_STORE, PENDING_STORE
from backend.payments.dependencies import get_pending_store

try:
    from fakeredis.aioredis import FakeRedis  # tests only
except Exception:
    FakeRedis = None


def _limiter_redis():
    if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
        if not FakeRedis:
            raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
        return FakeRedis(decode_responses=True)
    redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
    return aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)


async def _init_rate_limiter(app: FastAPI, logger: logging.Logger) -> None:
    try:
        await FastAPILimiter.init(_limiter_redis())
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled on /api/v1/payments/initialize")
    except Exception as e:
        # LOCAL_RATE_LIMIT_FALLBACK=1: optional_rate_limit bascule sur le compteur mémoire
        app.state.rate_limit_enabled = os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1"
        logger.warning("Rate limiting init failed (fallback=%s): %s", app.state.rate_limit_enabled, e)


async def _close_pending_store(logger: logging.Logger) -> None:
    """Ferme le client Redis des références en attente, seulement s’il a été créé."""
    if not get_pending_store.cache_info().currsize:
        return
    client = getattr(get_pending_store(), "redis", None)
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        logger.warning("Pending store close failed: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("uvicorn.error")
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
    else:
        await _init_rate_limiter(app, logger)
    logger.info("Payments backends: store=%s pending=%s", PAYMENTS_STORE, PENDING_STORE)

    yield

    if app.state.rate_limit_enabled and getattr(FastAPILimiter, "redis", None) is not None:
        await FastAPILimiter.close()
    await _close_pending_store(logger)
