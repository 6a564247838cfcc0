"""
Stockage en mémoire (développement local, tests).
Toutes les opérations passent par un verrou unique: la transition vers 'reconciled',
l'écriture des droits et le nettoyage du panier sont vus comme une seule étape.
"""
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from backend.config import DEFAULT_BADGE_SLOTS
from .exceptions import SessionNotFound
from .models import CartItem, Entitlement, EntitlementKind, ItemType, PaymentSession, SessionStatus
from .store import RECONCILABLE_STATUSES


class InMemoryPaymentStore:
    def __init__(self, schools: Optional[Dict[str, Dict]] = None):
        self._lock = threading.RLock()
        self.cart_items: Dict[str, CartItem] = {}
        self.sessions: Dict[str, PaymentSession] = {}
        self.entitlements: Dict[str, List[Entitlement]] = {}
        self.badge_slots: Dict[str, int] = {}
        self.schools: Dict[str, Dict] = dict(schools or {})

    # --- panier ---
    def list_cart_items(self, owner_id: str) -> List[CartItem]:
        with self._lock:
            items = [i for i in self.cart_items.values() if i.owner_id == owner_id]
        return sorted(items, key=lambda i: i.added_at)

    def find_cart_item(self, owner_id: str, item_type: ItemType, school_id: Optional[str], year: Optional[int]) -> Optional[CartItem]:
        with self._lock:
            for item in self.cart_items.values():
                if (item.owner_id, item.item_type, item.school_id, item.year) == (owner_id, item_type, school_id, year):
                    return item
        return None

    def add_cart_item(self, item: CartItem) -> CartItem:
        with self._lock:
            self.cart_items[item.id] = item
        return item

    def remove_cart_item(self, owner_id: str, item_id: str) -> bool:
        with self._lock:
            item = self.cart_items.get(item_id)
            if not item or item.owner_id != owner_id:
                return False
            del self.cart_items[item_id]
            return True

    def clear_cart(self, owner_id: str) -> int:
        with self._lock:
            ids = [k for k, v in self.cart_items.items() if v.owner_id == owner_id]
            for k in ids:
                del self.cart_items[k]
        return len(ids)

    # --- sessions ---
    def create_session(self, session: PaymentSession) -> PaymentSession:
        with self._lock:
            if session.reference in self.sessions:
                raise ValueError(f"référence déjà utilisée: {session.reference}")
            self.sessions[session.reference] = session
        return session

    def get_session(self, reference: str) -> Optional[PaymentSession]:
        with self._lock:
            return self.sessions.get(reference)

    def update_session_status(
        self,
        reference: str,
        expected: Iterable[SessionStatus],
        status: SessionStatus,
        gateway_response: Optional[str] = None,
    ) -> Optional[PaymentSession]:
        with self._lock:
            current = self.sessions.get(reference)
            if current is None or current.status not in tuple(expected):
                return None
            updated = current.with_status(status, gateway_response=gateway_response)
            self.sessions[reference] = updated
            return updated

    def abandon_stale(self, older_than: datetime) -> int:
        count = 0
        with self._lock:
            for ref, session in list(self.sessions.items()):
                if session.status is SessionStatus.INITIATED and session.created_at < older_than:
                    self.sessions[ref] = session.with_status(SessionStatus.ABANDONED)
                    count += 1
        return count

    # --- droits acquis ---
    def list_entitlements(self, reference: str) -> List[Entitlement]:
        with self._lock:
            return list(self.entitlements.get(reference, []))

    def commit_reconciliation(self, session: PaymentSession, entitlements: List[Entitlement]) -> Tuple[bool, List[Entitlement]]:
        with self._lock:
            current = self.sessions.get(session.reference)
            if current is None:
                raise SessionNotFound(reference=session.reference)
            if current.status not in RECONCILABLE_STATUSES:
                return False, list(self.entitlements.get(session.reference, []))

            self.sessions[session.reference] = current.with_status(SessionStatus.RECONCILED)
            self.entitlements[session.reference] = list(entitlements)
            for item in session.cart_snapshot:
                cart_item = self.cart_items.get(item.cart_item_id)
                if cart_item and cart_item.owner_id == session.owner_id:
                    del self.cart_items[item.cart_item_id]
            slots = sum(e.quantity for e in entitlements if e.kind is EntitlementKind.BADGE_SLOT_GRANT)
            if slots:
                self.badge_slots[session.owner_id] = self.badge_slots.get(session.owner_id, DEFAULT_BADGE_SLOTS) + slots
            return True, list(entitlements)

    # --- écoles ---
    def get_school_subaccount(self, school_id: str) -> Optional[str]:
        return (self.schools.get(school_id) or {}).get("paystack_subaccount_code")
