"""
Adaptateur Paystack: centralise les appels HTTP vers la passerelle.
- initialize(): POST /transaction/initialize -> référence + URL de redirection
- verify(): GET /transaction/verify/:reference -> statut, montant, devise
Sans état côté appelant au-delà de la référence. Appels asynchrones (httpx.AsyncClient).
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from backend.config import PAYSTACK_SECRET_KEY, PAYSTACK_BASE_URL, GATEWAY_TIMEOUT_SECONDS
from .exceptions import GatewayUnavailable, InvalidRequest, NotFoundYet
from .models import (
    GatewayInitiation,
    GatewayStatus,
    GatewayVerification,
    OrganizationCustomer,
    PaymentRequest,
    SplitPlan,
)

logger = logging.getLogger(__name__)

# module backend.payments.paystack_client
_STATUS_MAP = {
    "success": GatewayStatus.VERIFIED,
    "failed": GatewayStatus.FAILED,
    "reversed": GatewayStatus.FAILED,
    # 'abandoned' chez Paystack = client pas encore allé au bout: la transaction peut encore aboutir
    "abandoned": GatewayStatus.PENDING,
    "ongoing": GatewayStatus.PENDING,
    "pending": GatewayStatus.PENDING,
    "processing": GatewayStatus.PENDING,
    "queued": GatewayStatus.PENDING,
}


def _json(resp: httpx.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def build_initialize_payload(request: PaymentRequest, callback_url: str, split: Optional[SplitPlan] = None) -> Dict[str, Any]:
    """
    Sérialise la PaymentRequest au format Paystack.
    - Organisation: first_name = nom de l'école, last_name = "Account".
    - Paystack exige first_name et last_name non vides pour afficher le client.
    - metadata: propriétaire, lignes du panier figées, répartition des montants.
    """
    customer = request.customer
    if isinstance(customer, OrganizationCustomer):
        first_name, last_name = customer.name, "Account"
    else:
        first_name = customer.first_name or "Customer"
        last_name = customer.last_name or "Account"

    split = split or SplitPlan(platform_amount=request.amount_minor_units)
    payload: Dict[str, Any] = {
        "email": customer.email,
        "first_name": first_name,
        "last_name": last_name,
        "phone": customer.phone,
        "amount": request.amount_minor_units,
        "reference": request.reference,
        "currency": request.settlement_currency,
        "callback_url": callback_url,
        "metadata": {
            "user_id": request.owner_id,
            "owner_class": request.owner_class.value,
            "cart_items": len(request.items),
            "exchange_rate": str(request.exchange_rate),
            "school_id": split.school_id,
            "platform_amount": split.platform_amount,
            "school_amount": split.school_amount,
            "items": [
                {
                    "cart_item_id": item.cart_item_id,
                    "item_type": item.item_type.value,
                    "school_id": item.school_id,
                    "year": item.year,
                    "quantity": item.quantity,
                    "price": str(item.unit_price_base),
                }
                for item in request.items
            ],
        },
    }
    if split.subaccount:
        payload.update({
            "subaccount": split.subaccount,
            "transaction_charge": split.platform_amount,
            "bearer": "subaccount",
        })
    return payload


class PaystackGateway:
    def __init__(
        self,
        secret_key: str = PAYSTACK_SECRET_KEY,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.secret_key:
            logger.error("paystack.missing_secret_key")
            raise GatewayUnavailable("Passerelle de paiement non configurée")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    async def initialize(self, request: PaymentRequest, callback_url: str, split: Optional[SplitPlan] = None) -> GatewayInitiation:
        """
        Initialise la transaction Paystack.
        Erreurs:
        - GatewayUnavailable: réseau/timeout, 5xx, clé invalide (401/403)
        - InvalidRequest: 4xx ou status=false (message Paystack relayé)
        """
        payload = build_initialize_payload(request, callback_url, split)
        try:
            async with self._client() as client:
                resp = await client.post("/transaction/initialize", json=payload)
        except httpx.HTTPError as e:
            logger.warning("paystack.initialize network error reference=%s error=%s", request.reference, e)
            raise GatewayUnavailable(reference=request.reference) from e

        body = _json(resp)
        message = str(body.get("message") or "")
        if resp.status_code in (401, 403) or resp.status_code >= 500:
            logger.error("paystack.initialize unavailable reference=%s http=%s message=%s", request.reference, resp.status_code, message)
            raise GatewayUnavailable(reference=request.reference)
        if resp.status_code >= 400 or not body.get("status"):
            raise InvalidRequest(message or None, reference=request.reference)

        data = body.get("data") or {}
        url = data.get("authorization_url")
        if not url:
            raise InvalidRequest("Réponse Paystack sans authorization_url", reference=request.reference)
        if data.get("reference") and data["reference"] != request.reference:
            logger.warning("paystack.initialize reference echo differs sent=%s got=%s", request.reference, data["reference"])
        return GatewayInitiation(reference=request.reference, authorization_url=url, access_code=data.get("access_code"))

    async def verify(self, reference: str) -> GatewayVerification:
        """
        Vérifie la transaction par référence.
        - NotFoundYet: référence pas (encore) connue de Paystack -> revérifiable
        - GatewayUnavailable: réseau/5xx/configuration -> revérifiable
        - sinon: GatewayVerification(status=verified|pending|failed, montant, devise)
        """
        try:
            async with self._client() as client:
                resp = await client.get(f"/transaction/verify/{quote(reference, safe='')}")
        except httpx.HTTPError as e:
            logger.warning("paystack.verify network error reference=%s error=%s", reference, e)
            raise GatewayUnavailable(reference=reference) from e

        body = _json(resp)
        message = str(body.get("message") or "")
        if resp.status_code == 404 or (not body.get("status") and "not found" in message.lower()):
            raise NotFoundYet(reference=reference)
        if resp.status_code >= 400 or not body.get("status"):
            logger.error("paystack.verify failed reference=%s http=%s message=%s", reference, resp.status_code, message)
            raise GatewayUnavailable(reference=reference)

        data = body.get("data") or {}
        raw_status = str(data.get("status") or "").lower()
        status = _STATUS_MAP.get(raw_status, GatewayStatus.PENDING)
        try:
            amount = int(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = -1
        return GatewayVerification(
            reference=reference,
            status=status,
            amount_minor_units=amount,
            currency=str(data.get("currency") or "").upper(),
            gateway_response=data.get("gateway_response") or raw_status or None,
        )
