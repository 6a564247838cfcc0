"""
Réconciliation: transforme une transaction vérifiée en droits acquis, exactement une fois.

Étapes de reconcile(reference):
1) session introuvable -> SessionNotFound (anomalie journalisée, jamais de création « au jugé »)
2) déjà 'reconciled' -> droits existants relus, already_reconciled=True, sans appel passerelle
   déjà 'failed' -> GatewayFailed, sans appel passerelle
3) vérification Paystack:
   - en attente -> NotFoundYet (statut inchangé)
   - échouée -> statut 'failed' puis GatewayFailed
   - montant ou devise différents (à l'unité près) -> AmountMismatch, rien n'est accordé
4) sinon: 'verified', puis commit atomique du store (statut 'reconciled' + droits + nettoyage panier).
   Une réconciliation concurrente perdante renvoie les droits du gagnant (already_reconciled=True).
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from backend.config import PAYMENT_ABANDON_AFTER_HOURS
from .exceptions import AmountMismatch, GatewayFailed, NotFoundYet, SessionNotFound
from .models import (
    Entitlement,
    GatewayStatus,
    GatewayVerification,
    PaymentSession,
    ReconciliationOutcome,
    SessionStatus,
    utcnow,
)
from .store import RECONCILABLE_STATUSES, PaymentStore, entitlements_for_session

logger = logging.getLogger(__name__)


def _outcome(session: PaymentSession, entitlements: List[Entitlement], already: bool) -> ReconciliationOutcome:
    return ReconciliationOutcome(
        reference=session.reference,
        entitlements=tuple(entitlements),
        already_reconciled=already,
        amount_minor_units=session.amount_minor_units,
        currency=session.settlement_currency,
    )


class ReconciliationEngine:
    def __init__(self, store: PaymentStore, gateway):
        self.store = store
        self.gateway = gateway

    def _require_session(self, reference: str) -> PaymentSession:
        session = self.store.get_session(reference)
        if session is None:
            logger.error("reconcile.session_not_found reference=%s", reference)
            raise SessionNotFound(reference=reference)
        return session

    def _check_amount(self, session: PaymentSession, verification: GatewayVerification) -> None:
        if (
            verification.amount_minor_units != session.amount_minor_units
            or verification.currency.upper() != session.settlement_currency.upper()
        ):
            logger.error(
                "reconcile.amount_mismatch reference=%s expected=%s %s got=%s %s",
                session.reference,
                session.amount_minor_units,
                session.settlement_currency,
                verification.amount_minor_units,
                verification.currency,
            )
            raise AmountMismatch(
                f"Montant attendu {session.amount_minor_units} {session.settlement_currency}, "
                f"reçu {verification.amount_minor_units} {verification.currency}",
                reference=session.reference,
            )

    async def reconcile(self, reference: str) -> ReconciliationOutcome:
        session = self._require_session(reference)

        if session.status is SessionStatus.RECONCILED:
            return _outcome(session, self.store.list_entitlements(reference), True)
        if session.status is SessionStatus.FAILED:
            raise GatewayFailed(session.gateway_response or None, reference=reference)

        verification = await self.gateway.verify(reference)

        if verification.status is GatewayStatus.PENDING:
            logger.info("reconcile.pending reference=%s gateway=%s", reference, verification.gateway_response)
            raise NotFoundYet(reference=reference)

        if verification.status is GatewayStatus.FAILED:
            self.store.update_session_status(
                reference, RECONCILABLE_STATUSES, SessionStatus.FAILED, gateway_response=verification.gateway_response
            )
            logger.info("reconcile.failed reference=%s gateway=%s", reference, verification.gateway_response)
            raise GatewayFailed(verification.gateway_response or None, reference=reference)

        self._check_amount(session, verification)

        self.store.update_session_status(
            reference,
            (SessionStatus.INITIATED, SessionStatus.ABANDONED),
            SessionStatus.VERIFIED,
            gateway_response=verification.gateway_response,
        )
        created, entitlements = self.store.commit_reconciliation(session, entitlements_for_session(session))
        if created:
            logger.info("reconcile.done reference=%s owner=%s entitlements=%s", reference, session.owner_id, len(entitlements))
            return _outcome(session, entitlements, False)

        current = self._require_session(reference)
        if current.status is not SessionStatus.RECONCILED:
            raise GatewayFailed(current.gateway_response or None, reference=reference)
        logger.info("reconcile.already_done reference=%s", reference)
        return _outcome(current, entitlements, True)


def abandon_stale_sessions(store: PaymentStore, *, older_than: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
    """
    Passe en 'abandoned' les sessions restées 'initiated' au-delà du délai.
    Une session abandonnée reste réconciliable si le paiement aboutit malgré tout.
    """
    older_than = older_than if older_than is not None else timedelta(hours=PAYMENT_ABANDON_AFTER_HOURS)
    cutoff = (now or utcnow()) - older_than
    count = store.abandon_stale(cutoff)
    logger.info("payments.abandon_stale cutoff=%s count=%s", cutoff.isoformat(), count)
    return count
