"""
Contrat de stockage de la feature 'payments' (panier, sessions, droits acquis).
Deux implémentations:
- backend.payments.repository.SupabasePaymentStore (production, fonction SQL atomique)
- backend.payments.memory_store.InMemoryPaymentStore (développement et tests, verrou)
"""
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Tuple
from uuid import uuid4

from .models import (
    CartItem,
    Entitlement,
    EntitlementKind,
    ItemType,
    PaymentSession,
    SessionStatus,
)

ENTITLEMENT_KIND_BY_ITEM = {
    ItemType.YEARBOOK_YEAR: EntitlementKind.YEAR_PURCHASE,
    ItemType.BADGE_SLOT: EntitlementKind.BADGE_SLOT_GRANT,
}

# Statuts depuis lesquels la réconciliation peut encore aboutir
RECONCILABLE_STATUSES = (SessionStatus.INITIATED, SessionStatus.VERIFIED, SessionStatus.ABANDONED)


class PaymentStore(Protocol):
    # panier
    def list_cart_items(self, owner_id: str) -> List[CartItem]: ...

    def find_cart_item(self, owner_id: str, item_type: ItemType, school_id: Optional[str], year: Optional[int]) -> Optional[CartItem]: ...

    def add_cart_item(self, item: CartItem) -> CartItem: ...

    def remove_cart_item(self, owner_id: str, item_id: str) -> bool: ...

    def clear_cart(self, owner_id: str) -> int: ...

    # sessions
    def create_session(self, session: PaymentSession) -> PaymentSession: ...

    def get_session(self, reference: str) -> Optional[PaymentSession]: ...

    def update_session_status(
        self,
        reference: str,
        expected: Iterable[SessionStatus],
        status: SessionStatus,
        gateway_response: Optional[str] = None,
    ) -> Optional[PaymentSession]: ...

    def abandon_stale(self, older_than: datetime) -> int: ...

    # droits acquis
    def list_entitlements(self, reference: str) -> List[Entitlement]: ...

    def commit_reconciliation(self, session: PaymentSession, entitlements: List[Entitlement]) -> Tuple[bool, List[Entitlement]]: ...

    # écoles
    def get_school_subaccount(self, school_id: str) -> Optional[str]: ...


def entitlements_for_session(session: PaymentSession) -> List[Entitlement]:
    """Un droit par ligne de l'instantané du panier, rattaché à la référence de paiement."""
    return [
        Entitlement(
            id=str(uuid4()),
            kind=ENTITLEMENT_KIND_BY_ITEM[item.item_type],
            owner_id=session.owner_id,
            owner_class=session.owner_class,
            school_id=item.school_id,
            year=item.year,
            quantity=item.quantity,
            unit_price_base=item.unit_price_base,
            payment_reference=session.reference,
            cart_item_id=item.cart_item_id,
        )
        for item in session.cart_snapshot
    ]
