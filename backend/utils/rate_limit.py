"""
Limitation de débit optionnelle pour les endpoints sensibles (initialisation de paiement).
- fastapi-limiter (Redis) si initialisé par le lifespan
- fallback mémoire par process si LOCAL_RATE_LIMIT_FALLBACK=1
- désactivé si app.state.rate_limit_enabled is False (tests)
Identité: jeton (Bearer ou cookie) hashé, sinon IP; toujours combinée au chemin.
"""
import hashlib
import logging
import os
import time
from typing import Any, Dict
from urllib.parse import urlparse

from fastapi import HTTPException, Request, Response

from backend.utils.security import COOKIE_NAME

logger = logging.getLogger(__name__)


def rate_limit_key(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else request.cookies.get(COOKIE_NAME)
    path = request.url.path
    if token:
        h = hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]
        return f"user:{h}:{path}"
    ip = request.client.host if request.client else "local"
    return f"ip:{ip}:{path}"


def optional_rate_limit(times: int, seconds: int):
    async def _dep(request: Request, response: Response):
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            now = time.time()
            key = rate_limit_key(request)
            store = getattr(request.app.state, "_rl_store", {})
            hits = [t for t in store.get(key, []) if now - t < seconds]
            if len(hits) >= times:
                raise HTTPException(status_code=429, detail="Trop de requêtes, réessayez plus tard")
            hits.append(now)
            store[key] = hits
            request.app.state._rl_store = store
            return

        if getattr(request.app.state, "rate_limit_enabled", None) is False:
            return

        try:
            from fastapi_limiter.depends import RateLimiter

            async def _identifier(req: Request) -> str:
                return rate_limit_key(req)
            return await RateLimiter(times=times, seconds=seconds, identifier=_identifier)(request, response)
        except HTTPException:
            raise
        except Exception as e:
            # Redis indisponible: pas de 429 en prod (activer LOCAL_RATE_LIMIT_FALLBACK=1 en dev)
            logger.warning("rate_limit.unavailable path=%s error=%s", request.url.path, e)
            return
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    enabled = getattr(request.app.state, "rate_limit_enabled", None)
    try:
        from fastapi_limiter import FastAPILimiter
        limiter_ready = getattr(FastAPILimiter, "redis", None) is not None
    except ImportError:
        limiter_ready = False

    info: Dict[str, Any] = {
        "enabled": (bool(enabled) if enabled is not None else None),
        "ready": limiter_ready,
        "backend": "redis" if limiter_ready else ("memory" if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1" else None),
    }
    redis_url = os.getenv("RATE_LIMIT_REDIS_URL")
    if limiter_ready and redis_url:
        p = urlparse(redis_url)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}
    return info
