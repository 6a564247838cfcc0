"""
Cas d'usage 'cart': ajout, lecture, suppression des articles du panier.
- Tarif choisi par type d'article et classe de compte (école / viewer), jamais fourni par le client.
- Un même annuaire (école, année) ne peut figurer qu'une fois dans le panier.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException

from backend.config import BADGE_SLOT_PRICE, SCHOOL_YEAR_PRICE, VIEWER_YEAR_PRICE
from backend.payments.models import AccountClass, CartItem, ItemType
from backend.payments.request_builder import account_class_of, cart_total_base
from backend.payments.store import PaymentStore

logger = logging.getLogger(__name__)

MAX_BADGE_SLOTS_PER_ITEM = 50


def unit_price_for(item_type: ItemType, account_class: AccountClass) -> Decimal:
    if item_type is ItemType.BADGE_SLOT:
        return BADGE_SLOT_PRICE
    return SCHOOL_YEAR_PRICE if account_class is AccountClass.SCHOOL else VIEWER_YEAR_PRICE


def add_item(
    profile: Dict[str, Any],
    *,
    item_type: ItemType,
    school_id: Optional[str],
    year: Optional[int],
    quantity: int,
    store: PaymentStore,
) -> CartItem:
    """
    Ajoute un article au panier de l'utilisateur.
    - Annuaire: école et année requises, quantité 1.
    - Emplacements de badge: quantité 1..50, sans école ni année.
    - Doublon (même type, école, année) -> 409.
    """
    owner_id = str(profile.get("id") or "")
    if item_type is ItemType.YEARBOOK_YEAR:
        if not school_id or year is None:
            raise HTTPException(status_code=400, detail="École et année requises pour un annuaire")
        if quantity != 1:
            raise HTTPException(status_code=400, detail="Un annuaire s'achète à l'unité")
    else:
        school_id, year = None, None
        if not 1 <= quantity <= MAX_BADGE_SLOTS_PER_ITEM:
            raise HTTPException(status_code=400, detail=f"Quantité invalide (1 à {MAX_BADGE_SLOTS_PER_ITEM})")

    if store.find_cart_item(owner_id, item_type, school_id, year):
        raise HTTPException(status_code=409, detail="Article déjà présent dans le panier")

    item = CartItem(
        id=str(uuid4()),
        owner_id=owner_id,
        item_type=item_type,
        school_id=school_id,
        year=year,
        quantity=quantity,
        unit_price_base=unit_price_for(item_type, account_class_of(profile)),
    )
    saved = store.add_cart_item(item)
    logger.info("cart.add owner=%s type=%s school=%s year=%s qty=%s", owner_id, item_type.value, school_id, year, quantity)
    return saved


def item_to_dict(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "item_type": item.item_type.value,
        "school_id": item.school_id,
        "year": item.year,
        "quantity": item.quantity,
        "unit_price": str(item.unit_price_base),
        "added_at": item.added_at.isoformat(),
    }


def list_items(owner_id: str, *, store: PaymentStore) -> Dict[str, Any]:
    items = store.list_cart_items(owner_id)
    return {"items": [item_to_dict(i) for i in items], "total": str(cart_total_base(items).quantize(Decimal("0.01")))}


def remove_item(owner_id: str, item_id: str, *, store: PaymentStore) -> None:
    if not store.remove_cart_item(owner_id, item_id):
        raise HTTPException(status_code=404, detail="Article introuvable dans le panier")


def clear(owner_id: str, *, store: PaymentStore) -> int:
    return store.clear_cart(owner_id)
