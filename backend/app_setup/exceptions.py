"""
Gestionnaires d’exceptions de l’application.
- PaymentError (et sous-classes): JSON {status: false, code, detail, retryable} avec le statut HTTP de l’erreur.
- HTTPException: JSON FastAPI standard {detail}, utilisé par le panier et la sécurité.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from backend.payments.exceptions import PaymentError

logger = logging.getLogger(__name__)


def payment_error_body(exc: PaymentError) -> dict:
    body = {"status": False, "code": exc.code, "detail": exc.detail, "retryable": exc.retryable}
    if exc.reference:
        body["reference"] = exc.reference
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers PaymentError et HTTPException.
    - Les erreurs retryable (passerelle indisponible, paiement en attente) invitent le client à revérifier.
    """
    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        if exc.status_code >= 500:
            logger.warning("payments.error path=%s code=%s reference=%s", request.url.path, exc.code, exc.reference)
        return JSONResponse(status_code=exc.status_code, content=payment_error_body(exc))

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
