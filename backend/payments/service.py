"""
Cas d'usage 'payments': orchestre panier, construction de requête, Paystack, sessions et réconciliation.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from fastapi import HTTPException

from backend.config import PLATFORM_SHARE_PERCENT, PUBLIC_BASE_URL
from .exceptions import GatewayFailed, PaymentError, SessionNotFound
from .models import (
    AccountClass,
    ItemType,
    PaymentRequest,
    PaymentSession,
    ReconciliationOutcome,
    SessionStatus,
    SplitPlan,
)
from .pending import PendingReferenceStore
from .reconciliation import ReconciliationEngine
from .request_builder import build_payment_request
from .store import PaymentStore

logger = logging.getLogger(__name__)

SUBACCOUNT_PREFIX = "ACCT_"


def plan_revenue_split(request: PaymentRequest, store: PaymentStore) -> SplitPlan:
    """
    Répartition plateforme / école.
    Seul un panier viewer composé uniquement d'annuaires d'une même école disposant d'un
    sous-compte Paystack (ACCT_...) est partagé; tout le reste revient à la plateforme.
    """
    total = request.amount_minor_units
    if request.owner_class is not AccountClass.VIEWER:
        return SplitPlan(platform_amount=total)
    if not request.items or any(i.item_type is not ItemType.YEARBOOK_YEAR for i in request.items):
        return SplitPlan(platform_amount=total)
    school_ids = {i.school_id for i in request.items}
    if len(school_ids) != 1 or None in school_ids:
        return SplitPlan(platform_amount=total)

    school_id = school_ids.pop()
    subaccount = store.get_school_subaccount(school_id)
    if not subaccount or not subaccount.startswith(SUBACCOUNT_PREFIX):
        return SplitPlan(platform_amount=total, school_id=school_id)

    platform = int((Decimal(total) * PLATFORM_SHARE_PERCENT / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return SplitPlan(platform_amount=platform, school_amount=total - platform, subaccount=subaccount, school_id=school_id)


def callback_url_for(reference: str, base_url: str = PUBLIC_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/api/v1/payments/callback/{reference}"


async def initiate_checkout(
    profile: Dict[str, Any],
    *,
    store: PaymentStore,
    gateway,
    rate_cache,
    pending_store: PendingReferenceStore,
    base_url: str = PUBLIC_BASE_URL,
) -> Dict[str, Any]:
    """
    Prépare et initialise le paiement du panier de l'utilisateur.
    1) PaymentRequest (validation client, conversion de devise)
    2) session 'initiated' avec instantané du panier
    3) initialisation Paystack; en cas d'erreur la session passe 'failed', le panier reste intact
    4) référence en attente enregistrée AVANT de rendre l'URL de redirection
    """
    owner_id = str(profile.get("id") or "")
    items = store.list_cart_items(owner_id) if owner_id else []
    request = await build_payment_request(profile, items, rate_cache)

    session = PaymentSession(
        reference=request.reference,
        owner_id=request.owner_id,
        owner_class=request.owner_class,
        email=request.customer.email,
        amount_minor_units=request.amount_minor_units,
        settlement_currency=request.settlement_currency,
        exchange_rate=request.exchange_rate,
        cart_snapshot=request.items,
    )
    store.create_session(session)

    split = plan_revenue_split(request, store)
    try:
        initiation = await gateway.initialize(request, callback_url_for(request.reference, base_url), split)
    except PaymentError as e:
        store.update_session_status(request.reference, (SessionStatus.INITIATED,), SessionStatus.FAILED, gateway_response=e.code)
        logger.warning("payments.initiate failed reference=%s code=%s detail=%s", request.reference, e.code, e.detail)
        raise

    await pending_store.save(initiation.reference, owner_id)
    logger.info(
        "payments.initiate ok reference=%s owner=%s amount=%s %s items=%s",
        initiation.reference, owner_id, request.amount_minor_units, request.settlement_currency, len(request.items),
    )
    return {
        "reference": initiation.reference,
        "authorization_url": initiation.authorization_url,
        "access_code": initiation.access_code,
        "amount": request.amount_minor_units,
        "currency": request.settlement_currency,
    }


def outcome_to_dict(outcome: ReconciliationOutcome) -> Dict[str, Any]:
    return {
        "reference": outcome.reference,
        "status": SessionStatus.RECONCILED.value,
        "amount": outcome.amount_minor_units,
        "currency": outcome.currency,
        "already_reconciled": outcome.already_reconciled,
        "entitlements": [
            {
                "id": e.id,
                "kind": e.kind.value,
                "school_id": e.school_id,
                "year": e.year,
                "quantity": e.quantity,
            }
            for e in outcome.entitlements
        ],
    }


async def verify_payment(
    reference: str,
    *,
    store: PaymentStore,
    engine: ReconciliationEngine,
    pending_store: PendingReferenceStore,
    current_user_id: Optional[str] = None,
) -> ReconciliationOutcome:
    """
    Vérifie puis réconcilie une référence.
    - current_user_id fourni: la session doit lui appartenir (403 sinon).
    - Référence en attente effacée uniquement sur issue terminale (réconcilié, échoué, inconnu).
      En attente / passerelle indisponible: elle est conservée pour une nouvelle vérification.
    """
    session = store.get_session(reference)
    if session and current_user_id and session.owner_id != current_user_id:
        raise HTTPException(status_code=403, detail="Session appartenant à un autre utilisateur")
    owner_id = session.owner_id if session else current_user_id

    try:
        outcome = await engine.reconcile(reference)
    except (GatewayFailed, SessionNotFound):
        if owner_id:
            await pending_store.clear(owner_id, reference)
        raise

    if owner_id:
        await pending_store.clear(owner_id, reference)
    return outcome


def payment_status(reference: str, *, store: PaymentStore, current_user_id: str) -> Dict[str, Any]:
    """Statut enregistré, sans appel à la passerelle."""
    session = store.get_session(reference)
    if session is None:
        raise SessionNotFound(reference=reference)
    if session.owner_id != current_user_id:
        raise HTTPException(status_code=403, detail="Session appartenant à un autre utilisateur")
    data: Dict[str, Any] = {
        "reference": session.reference,
        "status": session.status.value,
        "amount": session.amount_minor_units,
        "currency": session.settlement_currency,
        "items": len(session.cart_snapshot),
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
    }
    if session.status is SessionStatus.RECONCILED:
        data["entitlements"] = [e.id for e in store.list_entitlements(reference)]
    return data
