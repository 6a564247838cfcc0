"""
Construction de la requête de paiement à partir du panier et du profil utilisateur.
- Identité client résolue une seule fois en variante typée (organisation | particulier).
- Téléphone normalisé (backend.payments.phone).
- Montant converti en unités mineures de la devise de règlement, calculé une fois et figé.
"""
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Tuple
from uuid import uuid4

from backend.config import BASE_CURRENCY, SETTLEMENT_CURRENCY
from .exceptions import EmptyCart, MissingField
from .exchange_rate import ExchangeRateCache
from .models import (
    AccountClass,
    CartItem,
    IndividualCustomer,
    OrganizationCustomer,
    PaymentRequest,
    SnapshotItem,
)
from .phone import normalize_phone

MINOR_UNITS_PER_MAJOR = 100


def _clean(value: Any) -> str:
    return str(value or "").strip()


def account_class_of(profile: Dict[str, Any]) -> AccountClass:
    return AccountClass.SCHOOL if _clean(profile.get("user_type")).lower() == "school" else AccountClass.VIEWER


def customer_from_profile(profile: Dict[str, Any]) -> Tuple[AccountClass, Any, bool]:
    """
    Résout (classe de compte, client, téléphone reconnu) depuis le profil.
    - École: nom de l'établissement + téléphone de l'administrateur (profil, sinon fiche école).
    - Viewer: prénom, nom, téléphone, email.
    - Email et téléphone toujours requis; prénom/nom requis uniquement pour les particuliers.
    Lève MissingField(champ) sinon.
    """
    account_class = account_class_of(profile)
    email = _clean(profile.get("email"))
    if not email:
        raise MissingField("email", "Adresse email requise pour procéder au paiement")

    if account_class is AccountClass.SCHOOL:
        school = profile.get("school") or {}
        raw_phone = _clean(profile.get("phone_number")) or _clean(school.get("phone_number"))
        if not raw_phone:
            raise MissingField("phone", "Numéro de téléphone requis pour procéder au paiement")
        name = _clean(school.get("name"))
        if not name:
            raise MissingField("school_name", "Nom de l'établissement requis pour procéder au paiement")
        phone = normalize_phone(raw_phone)
        return account_class, OrganizationCustomer(name=name, email=email, phone=phone.number), phone.recognized

    raw_phone = _clean(profile.get("phone_number"))
    if not raw_phone:
        raise MissingField("phone", "Numéro de téléphone requis pour procéder au paiement")
    first_name = _clean(profile.get("first_name"))
    last_name = _clean(profile.get("last_name"))
    if not first_name:
        raise MissingField("first_name", "Prénom requis pour procéder au paiement")
    if not last_name:
        raise MissingField("last_name", "Nom requis pour procéder au paiement")
    phone = normalize_phone(raw_phone)
    customer = IndividualCustomer(first_name=first_name, last_name=last_name, email=email, phone=phone.number)
    return account_class, customer, phone.recognized


def cart_total_base(items: Iterable[CartItem]) -> Decimal:
    return sum((item.line_total for item in items), Decimal("0"))


def to_minor_units(total_base: Decimal, rate: Decimal) -> int:
    """Montant de base x taux x 100, arrondi à l'unité mineure la plus proche (demi vers le haut)."""
    minor = (Decimal(total_base) * Decimal(rate) * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def new_reference() -> str:
    """Référence distincte par tentative: yearbook_<epoch ms>_<10 hex>."""
    return f"yearbook_{int(time.time() * 1000)}_{uuid4().hex[:10]}"


async def build_payment_request(
    profile: Dict[str, Any],
    cart_items: Iterable[CartItem],
    rate_cache: ExchangeRateCache,
    *,
    base_currency: str = BASE_CURRENCY,
    settlement_currency: str = SETTLEMENT_CURRENCY,
    reference_factory=new_reference,
) -> PaymentRequest:
    """
    Construit la PaymentRequest prête pour la passerelle.
    - Valide le client avant tout appel réseau (taux de change compris).
    - Convertit le total du panier une seule fois via rate_cache.get_rate().
    """
    items = list(cart_items)
    if not items:
        raise EmptyCart()
    owner_id = _clean(profile.get("id"))
    if not owner_id:
        raise MissingField("id", "Utilisateur inconnu")

    account_class, customer, phone_recognized = customer_from_profile(profile)

    rate = await rate_cache.get_rate(base_currency, settlement_currency)
    amount = to_minor_units(cart_total_base(items), rate)

    return PaymentRequest(
        reference=reference_factory(),
        owner_id=owner_id,
        owner_class=account_class,
        customer=customer,
        phone_recognized=phone_recognized,
        amount_minor_units=amount,
        settlement_currency=settlement_currency,
        base_currency=base_currency,
        exchange_rate=rate,
        items=tuple(SnapshotItem.from_cart_item(item) for item in items),
    )
