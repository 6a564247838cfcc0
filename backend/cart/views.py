from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from backend.payments.dependencies import get_store
from backend.payments.models import ItemType
from backend.utils.security import require_user
from . import service as cart_service

router = APIRouter(prefix="/api/v1/cart", tags=["Cart API"])


class AddCartItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_type: ItemType = Field(alias="itemType")
    school_id: Optional[str] = Field(default=None, alias="schoolId")
    year: Optional[int] = Field(default=None, ge=1900, le=2100)
    quantity: int = Field(default=1, ge=1)


# module backend.cart.views
@router.get("")
def get_cart(user: Dict[str, Any] = Depends(require_user), store=Depends(get_store)):
    """Panier de l'utilisateur authentifié: {items, total} (total en devise de base)."""
    return cart_service.list_items(str(user.get("id") or ""), store=store)


@router.post("", status_code=201)
def add_to_cart(req: AddCartItemRequest, user: Dict[str, Any] = Depends(require_user), store=Depends(get_store)):
    """
    Ajoute un article. Prix figé côté serveur selon la classe de compte.
    - 400: champs incohérents, 409: déjà présent, 422: année hors 1900..2100
    """
    item = cart_service.add_item(
        user,
        item_type=req.item_type,
        school_id=req.school_id,
        year=req.year,
        quantity=req.quantity,
        store=store,
    )
    return cart_service.item_to_dict(item)


@router.delete("/{item_id}")
def remove_from_cart(item_id: str, user: Dict[str, Any] = Depends(require_user), store=Depends(get_store)):
    cart_service.remove_item(str(user.get("id") or ""), item_id, store=store)
    return {"status": "ok"}


@router.delete("")
def clear_cart(user: Dict[str, Any] = Depends(require_user), store=Depends(get_store)):
    removed = cart_service.clear(str(user.get("id") or ""), store=store)
    return {"status": "ok", "removed": removed}
