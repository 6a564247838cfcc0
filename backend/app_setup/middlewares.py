"""
Middlewares transverses de l’API paiements.
- register_basic_middlewares: CORS et TrustedHost.
- register_security_middleware: double-submit CSRF pour les mutations authentifiées par cookie,
  puis en-têtes de sécurité sur toutes les réponses.
- register_no_cache_middleware: réponses panier/paiement jamais mises en cache
  (montants, références en attente et droits acquis changent d’une requête à l’autre).
Les appels Bearer ne portent pas de cookie implicite: pas de contrôle CSRF.
Le retour Paystack (/api/v1/payments/callback/...) est un GET.
"""
import secrets
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from backend.config import ALLOWED_HOSTS, COOKIE_SECURE, CORS_ORIGINS
from backend.utils.security import COOKIE_NAME

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_COOKIE_MAX_AGE = 60 * 60
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")
NO_CACHE_PREFIXES = ("/api/v1/payments", "/api/v1/cart")

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
}
HSTS_VALUE = "max-age=63072000; includeSubDomains; preload"


def register_basic_middlewares(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=ALLOWED_HOSTS + ["*"] if "*" in CORS_ORIGINS else ALLOWED_HOSTS,
    )


def _csrf_failure(request: Request) -> Optional[JSONResponse]:
    """403 si une mutation authentifiée par cookie ne renvoie pas le jeton CSRF du cookie dans l’en-tête."""
    if request.method.upper() not in MUTATING_METHODS:
        return None
    if not request.cookies.get(COOKIE_NAME):
        return None
    if request.headers.get("Authorization", "").startswith("Bearer "):
        return None
    expected = request.cookies.get(CSRF_COOKIE_NAME) or ""
    received = request.headers.get(CSRF_HEADER_NAME, "")
    if expected and received and secrets.compare_digest(received, expected):
        return None
    return JSONResponse(status_code=403, content={"detail": "CSRF verification failed"})


def register_security_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        rejected = _csrf_failure(request)
        if rejected is not None:
            return rejected

        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if COOKIE_SECURE:
            response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)

        # Jeton CSRF lisible par le front (double-submit)
        if not request.cookies.get(CSRF_COOKIE_NAME):
            response.set_cookie(
                key=CSRF_COOKIE_NAME,
                value=secrets.token_urlsafe(32),
                httponly=False,
                secure=COOKIE_SECURE,
                samesite="Lax",
                max_age=CSRF_COOKIE_MAX_AGE,
                path="/",
            )
        return response


def register_no_cache_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def no_cache_for_payments(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(NO_CACHE_PREFIXES):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
        return response
