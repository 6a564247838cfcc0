"""
Accès aux données pour la feature 'payments' (Supabase, client service-role).
Tables: cart_items, payment_sessions, entitlements, schools, users.
La réconciliation passe par la fonction SQL `reconcile_payment_session`
(supabase/migrations/0001_payments.sql) exécutée dans une seule transaction.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Import du module (et non des fonctions) pour permettre le monkeypatch en tests
import backend.infra.supabase_client as supabase_client
from .exceptions import SessionNotFound
from .models import CartItem, Entitlement, ItemType, PaymentSession, SessionStatus, SnapshotItem, utcnow

logger = logging.getLogger(__name__)


# module backend.payments.repository
def _rows(res) -> List[Dict[str, Any]]:
    data = getattr(res, "data", None) or []
    return data if isinstance(data, list) else [data]


def _cart_item_from_row(row: Dict[str, Any]) -> CartItem:
    return CartItem(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        item_type=row["item_type"],
        school_id=row.get("school_id"),
        year=row.get("year"),
        quantity=int(row.get("quantity") or 1),
        unit_price_base=str(row["unit_price_base"]),
        added_at=row.get("added_at") or utcnow(),
    )


def _session_from_row(row: Dict[str, Any]) -> PaymentSession:
    return PaymentSession(
        reference=row["reference"],
        owner_id=str(row["owner_id"]),
        owner_class=row["owner_class"],
        email=row.get("email") or "",
        amount_minor_units=int(row["amount_minor_units"]),
        settlement_currency=row["settlement_currency"],
        exchange_rate=str(row["exchange_rate"]),
        status=row["status"],
        cart_snapshot=tuple(SnapshotItem.model_validate(i) for i in (row.get("cart_snapshot") or [])),
        gateway_response=row.get("gateway_response"),
        created_at=row.get("created_at") or utcnow(),
        updated_at=row.get("updated_at") or utcnow(),
    )


def _entitlement_from_row(row: Dict[str, Any]) -> Entitlement:
    return Entitlement(
        id=str(row["id"]),
        kind=row["kind"],
        owner_id=str(row["owner_id"]),
        owner_class=row["owner_class"],
        school_id=row.get("school_id"),
        year=row.get("year"),
        quantity=int(row.get("quantity") or 1),
        unit_price_base=str(row["unit_price_base"]),
        payment_reference=row["payment_reference"],
        cart_item_id=str(row["cart_item_id"]),
        granted_at=row.get("granted_at") or utcnow(),
    )


class SupabasePaymentStore:
    def _client(self):
        return supabase_client.get_service_supabase()

    # --- panier ---
    def list_cart_items(self, owner_id: str) -> List[CartItem]:
        try:
            res = (
                self._client()
                .table("cart_items")
                .select("*")
                .eq("owner_id", owner_id)
                .order("added_at")
                .execute()
            )
        except Exception:
            logger.exception("payments.repository.list_cart_items failed owner_id=%s", owner_id)
            raise
        return [_cart_item_from_row(r) for r in _rows(res)]

    def find_cart_item(self, owner_id: str, item_type: ItemType, school_id: Optional[str], year: Optional[int]) -> Optional[CartItem]:
        query = (
            self._client()
            .table("cart_items")
            .select("*")
            .eq("owner_id", owner_id)
            .eq("item_type", ItemType(item_type).value)
        )
        query = query.eq("school_id", school_id) if school_id else query.is_("school_id", "null")
        query = query.eq("year", year) if year is not None else query.is_("year", "null")
        rows = _rows(query.limit(1).execute())
        return _cart_item_from_row(rows[0]) if rows else None

    def add_cart_item(self, item: CartItem) -> CartItem:
        row = item.model_dump(mode="json")
        try:
            res = self._client().table("cart_items").insert(row).execute()
        except Exception:
            logger.exception("payments.repository.add_cart_item failed owner_id=%s", item.owner_id)
            raise
        rows = _rows(res)
        return _cart_item_from_row(rows[0]) if rows else item

    def remove_cart_item(self, owner_id: str, item_id: str) -> bool:
        res = (
            self._client()
            .table("cart_items")
            .delete()
            .eq("id", item_id)
            .eq("owner_id", owner_id)
            .execute()
        )
        return bool(_rows(res))

    def clear_cart(self, owner_id: str) -> int:
        res = self._client().table("cart_items").delete().eq("owner_id", owner_id).execute()
        return len(_rows(res))

    # --- sessions ---
    def create_session(self, session: PaymentSession) -> PaymentSession:
        row = session.model_dump(mode="json")
        try:
            self._client().table("payment_sessions").insert(row).execute()
        except Exception:
            logger.exception("payments.repository.create_session failed reference=%s", session.reference)
            raise
        return session

    def get_session(self, reference: str) -> Optional[PaymentSession]:
        res = (
            self._client()
            .table("payment_sessions")
            .select("*")
            .eq("reference", reference)
            .limit(1)
            .execute()
        )
        rows = _rows(res)
        return _session_from_row(rows[0]) if rows else None

    def update_session_status(
        self,
        reference: str,
        expected: Iterable[SessionStatus],
        status: SessionStatus,
        gateway_response: Optional[str] = None,
    ) -> Optional[PaymentSession]:
        """
        Compare-and-swap sur le statut: UPDATE ... WHERE reference = ? AND status IN (expected).
        Retourne la session mise à jour, ou None si aucune ligne ne correspondait.
        """
        update: Dict[str, Any] = {"status": SessionStatus(status).value, "updated_at": utcnow().isoformat()}
        if gateway_response is not None:
            update["gateway_response"] = gateway_response
        res = (
            self._client()
            .table("payment_sessions")
            .update(update)
            .eq("reference", reference)
            .in_("status", [SessionStatus(s).value for s in expected])
            .execute()
        )
        rows = _rows(res)
        return _session_from_row(rows[0]) if rows else None

    def abandon_stale(self, older_than: datetime) -> int:
        res = (
            self._client()
            .table("payment_sessions")
            .update({"status": SessionStatus.ABANDONED.value, "updated_at": utcnow().isoformat()})
            .eq("status", SessionStatus.INITIATED.value)
            .lt("created_at", older_than.isoformat())
            .execute()
        )
        return len(_rows(res))

    # --- droits acquis ---
    def list_entitlements(self, reference: str) -> List[Entitlement]:
        res = (
            self._client()
            .table("entitlements")
            .select("*")
            .eq("payment_reference", reference)
            .execute()
        )
        return [_entitlement_from_row(r) for r in _rows(res)]

    def commit_reconciliation(self, session: PaymentSession, entitlements: List[Entitlement]) -> Tuple[bool, List[Entitlement]]:
        """
        Transition vers 'reconciled', insertion des droits, suppression des lignes du panier
        et incrément des emplacements de badge: une seule transaction côté Postgres.
        Les droits sont construits par la fonction SQL à partir du snapshot stocké de la session;
        `entitlements` n'est pas transmis (seule la référence l'est).
        Retour: (created, droits); created=False si une autre réconciliation a gagné.
        """
        try:
            res = self._client().rpc("reconcile_payment_session", {"p_reference": session.reference}).execute()
        except Exception:
            logger.exception("payments.repository.commit_reconciliation failed reference=%s", session.reference)
            raise
        payload = res.data or {}
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if payload.get("session_found") is False:
            raise SessionNotFound(reference=session.reference)
        rows = payload.get("entitlements") or []
        return bool(payload.get("created")), [_entitlement_from_row(r) for r in rows]

    # --- écoles ---
    def get_school_subaccount(self, school_id: str) -> Optional[str]:
        try:
            res = (
                self._client()
                .table("schools")
                .select("paystack_subaccount_code")
                .eq("id", school_id)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("payments.repository.get_school_subaccount failed school_id=%s", school_id)
            return None
        rows = _rows(res)
        return (rows[0].get("paystack_subaccount_code") if rows else None) or None
