import logging
from typing import Any, Dict
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from starlette.status import HTTP_303_SEE_OTHER

from backend.config import BASE_CURRENCY, CHECKOUT_RETURN_PATH, SETTLEMENT_CURRENCY
from backend.utils.rate_limit import optional_rate_limit
from backend.utils.security import require_admin, require_user

from .dependencies import get_engine, get_gateway, get_pending_store, get_rate_cache, get_store
from .exceptions import GatewayFailed, GatewayUnavailable, NotFoundYet, PaymentError
from .reconciliation import abandon_stale_sessions
from . import service as payments_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])


# module backend.payments.views
@router.post("/initialize", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def initialize_payment(
    user: Dict[str, Any] = Depends(require_user),
    store=Depends(get_store),
    gateway=Depends(get_gateway),
    rate_cache=Depends(get_rate_cache),
    pending_store=Depends(get_pending_store),
):
    """
    Initialise le paiement Paystack du panier de l'utilisateur authentifié.
    - Sécurité: require_user + rate limit (10 req / 60s)
    - Réponse: {status, data: {reference, authorization_url, access_code, amount, currency}}
    - Erreurs: 422 champ manquant, 400 panier vide / refus passerelle, 503 passerelle indisponible
    """
    data = await payments_service.initiate_checkout(
        user, store=store, gateway=gateway, rate_cache=rate_cache, pending_store=pending_store
    )
    return {"status": True, "message": "Paiement initialisé", "data": data}


@router.get("/verify/{reference}")
async def verify_payment(
    reference: str,
    user: Dict[str, Any] = Depends(require_user),
    store=Depends(get_store),
    engine=Depends(get_engine),
    pending_store=Depends(get_pending_store),
):
    """
    Vérification manuelle (« vérifier le paiement ») puis réconciliation.
    - 200: droits accordés (ou déjà accordés: already_reconciled=true)
    - 202: paiement encore en cours côté passerelle
    - 402 échoué, 409 montant divergent, 404 référence inconnue, 403 session d'un autre utilisateur
    """
    outcome = await payments_service.verify_payment(
        reference, store=store, engine=engine, pending_store=pending_store, current_user_id=user.get("id")
    )
    return {"status": True, "data": payments_service.outcome_to_dict(outcome)}


@router.get("/callback/{reference}", include_in_schema=False)
async def payment_callback(
    reference: str,
    store=Depends(get_store),
    engine=Depends(get_engine),
    pending_store=Depends(get_pending_store),
):
    """
    Retour navigateur depuis Paystack: réconcilie puis redirige vers la page panier
    avec ?payment=success|pending|failed|error&reference=...
    """
    try:
        await payments_service.verify_payment(reference, store=store, engine=engine, pending_store=pending_store)
        outcome = "success"
    except (NotFoundYet, GatewayUnavailable):
        outcome = "pending"
    except GatewayFailed:
        outcome = "failed"
    except PaymentError as e:
        logger.warning("payments.callback reference=%s code=%s", reference, e.code)
        outcome = "error"
    except Exception:
        logger.exception("Erreur payment_callback reference=%s", reference)
        outcome = "error"
    query = urlencode({"payment": outcome, "reference": reference})
    return RedirectResponse(url=f"{CHECKOUT_RETURN_PATH}?{query}", status_code=HTTP_303_SEE_OTHER)


@router.get("/status/{reference}")
def payment_status(reference: str, user: Dict[str, Any] = Depends(require_user), store=Depends(get_store)):
    """Statut enregistré d'une session (sans interroger la passerelle)."""
    return {"status": True, "data": payments_service.payment_status(reference, store=store, current_user_id=user.get("id"))}


@router.get("/pending")
async def pending_payment(user: Dict[str, Any] = Depends(require_user), pending_store=Depends(get_pending_store)):
    """Référence en attente de l'utilisateur (bouton « vérifier le paiement »), ou null."""
    reference = await pending_store.load(str(user.get("id") or ""))
    return {"status": True, "data": {"reference": reference}}


@router.get("/exchange-rate")
async def exchange_rate(rate_cache=Depends(get_rate_cache)):
    """Taux devise de base -> devise de règlement; source='fallback' si le flux est indisponible."""
    quote = await rate_cache.quote(BASE_CURRENCY, SETTLEMENT_CURRENCY)
    return {
        "base": quote.base,
        "display": quote.display,
        "rate": str(quote.rate),
        "source": "live" if quote.fetched_at else "fallback",
        "fetched_at": quote.fetched_at.isoformat() if quote.fetched_at else None,
    }


@router.post("/maintenance/abandon")
def abandon_stale(admin: Dict[str, Any] = Depends(require_admin), store=Depends(get_store)):
    """Admin: passe en 'abandoned' les sessions 'initiated' trop anciennes (PAYMENT_ABANDON_AFTER_HOURS)."""
    count = abandon_stale_sessions(store)
    logger.info("payments.maintenance.abandon admin=%s count=%s", admin.get("id"), count)
    return {"status": True, "abandoned": count}
