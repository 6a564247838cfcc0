"""
Types du domaine paiements (valeurs immuables pydantic).
- Panier: CartItem (prix figé en devise de base au moment de l'ajout)
- Requête passerelle: PaymentRequest + client typé (OrganizationCustomer | IndividualCustomer)
- Session: PaymentSession avec instantané du panier (SnapshotItem) figé à l'initiation
- Résultats: GatewayInitiation, GatewayVerification, Entitlement, ReconciliationOutcome
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemType(str, Enum):
    YEARBOOK_YEAR = "yearbook_year"
    BADGE_SLOT = "badge_slot"


class AccountClass(str, Enum):
    SCHOOL = "school"
    VIEWER = "viewer"


class SessionStatus(str, Enum):
    INITIATED = "initiated"
    VERIFIED = "verified"
    RECONCILED = "reconciled"
    FAILED = "failed"
    ABANDONED = "abandoned"


class GatewayStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    FAILED = "failed"


class EntitlementKind(str, Enum):
    YEAR_PURCHASE = "year_purchase"
    BADGE_SLOT_GRANT = "badge_slot_grant"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class CartItem(_Frozen):
    id: str
    owner_id: str
    item_type: ItemType
    school_id: Optional[str] = None
    year: Optional[int] = None
    quantity: int = 1
    unit_price_base: Decimal
    added_at: datetime = Field(default_factory=utcnow)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price_base * self.quantity


class ExchangeRate(_Frozen):
    base: str
    display: str
    rate: Decimal
    # None => constante de secours, jamais considérée comme fraîche
    fetched_at: Optional[datetime] = None


class OrganizationCustomer(_Frozen):
    kind: Literal["organization"] = "organization"
    name: str
    email: str
    phone: str


class IndividualCustomer(_Frozen):
    kind: Literal["individual"] = "individual"
    first_name: str
    last_name: str
    email: str
    phone: str


Customer = Annotated[Union[OrganizationCustomer, IndividualCustomer], Field(discriminator="kind")]


class SnapshotItem(_Frozen):
    cart_item_id: str
    item_type: ItemType
    school_id: Optional[str] = None
    year: Optional[int] = None
    quantity: int = 1
    unit_price_base: Decimal

    @classmethod
    def from_cart_item(cls, item: CartItem) -> "SnapshotItem":
        return cls(
            cart_item_id=item.id,
            item_type=item.item_type,
            school_id=item.school_id,
            year=item.year,
            quantity=item.quantity,
            unit_price_base=item.unit_price_base,
        )


class PaymentRequest(_Frozen):
    reference: str
    owner_id: str
    owner_class: AccountClass
    customer: Customer
    phone_recognized: bool = True
    amount_minor_units: int
    settlement_currency: str
    base_currency: str
    exchange_rate: Decimal
    items: Tuple[SnapshotItem, ...]


class SplitPlan(_Frozen):
    platform_amount: int
    school_amount: int = 0
    subaccount: Optional[str] = None
    school_id: Optional[str] = None


class PaymentSession(_Frozen):
    reference: str
    owner_id: str
    owner_class: AccountClass
    email: str
    amount_minor_units: int
    settlement_currency: str
    exchange_rate: Decimal
    status: SessionStatus = SessionStatus.INITIATED
    cart_snapshot: Tuple[SnapshotItem, ...]
    gateway_response: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def with_status(self, status: SessionStatus, *, gateway_response: Optional[str] = None) -> "PaymentSession":
        update = {"status": status, "updated_at": utcnow()}
        if gateway_response is not None:
            update["gateway_response"] = gateway_response
        return self.model_copy(update=update)


class Entitlement(_Frozen):
    id: str
    kind: EntitlementKind
    owner_id: str
    owner_class: AccountClass
    school_id: Optional[str] = None
    year: Optional[int] = None
    quantity: int = 1
    unit_price_base: Decimal
    payment_reference: str
    cart_item_id: str
    granted_at: datetime = Field(default_factory=utcnow)


class GatewayInitiation(_Frozen):
    reference: str
    authorization_url: str
    access_code: Optional[str] = None


class GatewayVerification(_Frozen):
    reference: str
    status: GatewayStatus
    amount_minor_units: int
    currency: str
    gateway_response: Optional[str] = None


class ReconciliationOutcome(_Frozen):
    reference: str
    entitlements: Tuple[Entitlement, ...]
    already_reconciled: bool = False
    amount_minor_units: int
    currency: str
