"""
Taxonomie d'erreurs de la feature 'payments'.
- Chaque erreur porte un code machine, un statut HTTP et un drapeau 'retryable'.
- Rendu JSON centralisé par backend.app_setup.exceptions (status=false, code, detail, retryable).
"""
from typing import Optional


class PaymentError(Exception):
    code = "payment_error"
    status_code = 400
    retryable = False
    default_detail = "Erreur de paiement"

    def __init__(self, detail: Optional[str] = None, *, reference: Optional[str] = None):
        self.detail = detail or self.default_detail
        self.reference = reference
        super().__init__(self.detail)


class ValidationError(PaymentError):
    """Champ manquant ou mal formé: corrigeable par l'utilisateur, avant tout appel réseau."""
    code = "validation_error"
    status_code = 422
    default_detail = "Requête de paiement invalide"


class MissingField(ValidationError):
    code = "missing_field"

    def __init__(self, field: str, detail: Optional[str] = None):
        self.field = field
        super().__init__(detail or f"Champ requis manquant: {field}")


class EmptyCart(ValidationError):
    code = "empty_cart"
    status_code = 400
    default_detail = "Panier vide"


class InvalidRequest(PaymentError):
    """La passerelle a refusé la requête d'initialisation (4xx ou status=false)."""
    code = "gateway_rejected"
    status_code = 400
    default_detail = "Requête refusée par la passerelle de paiement"


class GatewayUnavailable(PaymentError):
    code = "gateway_unavailable"
    status_code = 503
    retryable = True
    default_detail = "Service de paiement indisponible, veuillez réessayer"


class NotFoundYet(PaymentError):
    """Transaction inconnue ou non finalisée côté passerelle: à revérifier plus tard."""
    code = "payment_pending"
    status_code = 202
    retryable = True
    default_detail = "Paiement en cours de traitement, veuillez vérifier à nouveau dans un instant"


class GatewayFailed(PaymentError):
    code = "payment_failed"
    status_code = 402
    default_detail = "Paiement refusé ou échoué"


class AmountMismatch(PaymentError):
    code = "amount_mismatch"
    status_code = 409
    default_detail = "Montant réglé différent du montant initié"


class SessionNotFound(PaymentError):
    code = "session_not_found"
    status_code = 404
    default_detail = "Référence de paiement inconnue"
