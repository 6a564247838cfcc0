import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal

from backend.payments.exceptions import AmountMismatch, GatewayFailed, GatewayUnavailable, NotFoundYet, SessionNotFound
from backend.payments.models import (
    AccountClass,
    CartItem,
    EntitlementKind,
    GatewayStatus,
    ItemType,
    PaymentSession,
    SessionStatus,
    SnapshotItem,
    utcnow,
)
from backend.payments.reconciliation import ReconciliationEngine, abandon_stale_sessions

REF = "yearbook_1_0000000001"
AMOUNT = 2473350


def _seed(store, reference=REF, owner="test-user", created_at=None):
    items = [
        CartItem(id="c1", owner_id=owner, item_type=ItemType.YEARBOOK_YEAR, school_id="school-1", year=2019, unit_price_base=Decimal("14.99")),
        CartItem(id="c2", owner_id=owner, item_type=ItemType.BADGE_SLOT, quantity=2, unit_price_base=Decimal("0.99")),
    ]
    for item in items:
        store.add_cart_item(item)
    session = PaymentSession(
        reference=reference,
        owner_id=owner,
        owner_class=AccountClass.VIEWER,
        email="test@example.com",
        amount_minor_units=AMOUNT,
        settlement_currency="NGN",
        exchange_rate=Decimal("1650"),
        cart_snapshot=tuple(SnapshotItem.from_cart_item(i) for i in items),
        **({"created_at": created_at} if created_at else {}),
    )
    store.create_session(session)
    return session


@pytest.mark.asyncio
async def test_reconcile_grants_one_entitlement_per_snapshot_item(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT)

    outcome = await ReconciliationEngine(store, gateway).reconcile(REF)

    assert outcome.already_reconciled is False
    assert {e.cart_item_id for e in outcome.entitlements} == {"c1", "c2"}
    kinds = {e.cart_item_id: e.kind for e in outcome.entitlements}
    assert kinds == {"c1": EntitlementKind.YEAR_PURCHASE, "c2": EntitlementKind.BADGE_SLOT_GRANT}
    assert store.get_session(REF).status is SessionStatus.RECONCILED
    assert store.list_cart_items("test-user") == []
    assert store.badge_slots["test-user"] == 6


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT)
    engine = ReconciliationEngine(store, gateway)

    first = await engine.reconcile(REF)
    second = await engine.reconcile(REF)

    assert second.already_reconciled is True
    assert [e.id for e in second.entitlements] == [e.id for e in first.entitlements]
    assert len(store.list_entitlements(REF)) == 2
    # Une session déjà réconciliée ne réinterroge pas la passerelle
    assert gateway.verify_calls == [REF]


@pytest.mark.asyncio
async def test_concurrent_reconciliations_grant_once(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT)
    engine = ReconciliationEngine(store, gateway)

    results = await asyncio.gather(*[engine.reconcile(REF) for _ in range(5)])

    assert sum(1 for r in results if not r.already_reconciled) == 1
    assert len(store.list_entitlements(REF)) == 2
    assert len({tuple(sorted(e.id for e in r.entitlements)) for r in results}) == 1


@pytest.mark.parametrize("delta", [1, -1])
@pytest.mark.asyncio
async def test_amount_mismatch_grants_nothing(store, gateway, delta, caplog):
    _seed(store)
    gateway.settle(REF, AMOUNT + delta)

    with caplog.at_level("ERROR", logger="backend.payments.reconciliation"):
        with pytest.raises(AmountMismatch):
            await ReconciliationEngine(store, gateway).reconcile(REF)

    assert store.list_entitlements(REF) == []
    assert store.get_session(REF).status is SessionStatus.INITIATED
    assert len(store.list_cart_items("test-user")) == 2
    assert any("reconcile.amount_mismatch" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_currency_mismatch_grants_nothing(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT, currency="USD")
    with pytest.raises(AmountMismatch):
        await ReconciliationEngine(store, gateway).reconcile(REF)
    assert store.list_entitlements(REF) == []


@pytest.mark.asyncio
async def test_pending_gateway_keeps_session_initiated(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT, status=GatewayStatus.PENDING)
    with pytest.raises(NotFoundYet):
        await ReconciliationEngine(store, gateway).reconcile(REF)
    assert store.get_session(REF).status is SessionStatus.INITIATED


@pytest.mark.asyncio
async def test_unknown_to_gateway_is_not_found_yet(store, gateway):
    _seed(store)
    with pytest.raises(NotFoundYet):
        await ReconciliationEngine(store, gateway).reconcile(REF)


@pytest.mark.asyncio
async def test_gateway_unavailable_propagates(store, gateway):
    _seed(store)
    gateway.verifications[REF] = GatewayUnavailable(reference=REF)
    with pytest.raises(GatewayUnavailable):
        await ReconciliationEngine(store, gateway).reconcile(REF)
    assert store.get_session(REF).status is SessionStatus.INITIATED


@pytest.mark.asyncio
async def test_failed_payment_marks_session_failed_and_keeps_cart(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT, status=GatewayStatus.FAILED)
    engine = ReconciliationEngine(store, gateway)

    with pytest.raises(GatewayFailed):
        await engine.reconcile(REF)
    assert store.get_session(REF).status is SessionStatus.FAILED
    assert len(store.list_cart_items("test-user")) == 2

    # Statut terminal: pas de nouvel appel passerelle
    with pytest.raises(GatewayFailed):
        await engine.reconcile(REF)
    assert gateway.verify_calls == [REF]


@pytest.mark.asyncio
async def test_unknown_reference_is_session_not_found(store, gateway):
    with pytest.raises(SessionNotFound):
        await ReconciliationEngine(store, gateway).reconcile("yearbook_0_missing")
    assert gateway.verify_calls == []


@pytest.mark.asyncio
async def test_cart_items_added_after_initiation_survive(store, gateway):
    _seed(store)
    later = CartItem(id="c3", owner_id="test-user", item_type=ItemType.YEARBOOK_YEAR, school_id="school-1", year=2020, unit_price_base=Decimal("6.99"))
    store.add_cart_item(later)
    gateway.settle(REF, AMOUNT)

    outcome = await ReconciliationEngine(store, gateway).reconcile(REF)

    assert "c3" not in {e.cart_item_id for e in outcome.entitlements}
    assert [i.id for i in store.list_cart_items("test-user")] == ["c3"]


@pytest.mark.asyncio
async def test_abandoned_session_remains_reconcilable(store, gateway):
    _seed(store, created_at=utcnow() - timedelta(hours=30))
    assert abandon_stale_sessions(store, older_than=timedelta(hours=24)) == 1
    assert store.get_session(REF).status is SessionStatus.ABANDONED

    gateway.settle(REF, AMOUNT)
    outcome = await ReconciliationEngine(store, gateway).reconcile(REF)
    assert outcome.already_reconciled is False
    assert store.get_session(REF).status is SessionStatus.RECONCILED


def test_abandon_ignores_recent_and_terminal_sessions(store):
    _seed(store, reference="yearbook_1_recent")
    old = _seed(store, reference="yearbook_1_old", owner="other", created_at=utcnow() - timedelta(days=3))
    store.update_session_status(old.reference, (SessionStatus.INITIATED,), SessionStatus.FAILED)

    assert abandon_stale_sessions(store, older_than=timedelta(hours=24)) == 0
    assert store.get_session("yearbook_1_recent").status is SessionStatus.INITIATED
    assert store.get_session("yearbook_1_old").status is SessionStatus.FAILED


class _YieldingGateway:
    """Vérification qui rend la main à la boucle: les réconciliations concurrentes passent toutes le contrôle initial."""

    def __init__(self, inner):
        self.inner = inner

    async def verify(self, reference):
        await asyncio.sleep(0)
        return await self.inner.verify(reference)


@pytest.mark.asyncio
async def test_race_loser_returns_winner_entitlements(store, gateway):
    _seed(store)
    gateway.settle(REF, AMOUNT)
    engine = ReconciliationEngine(store, _YieldingGateway(gateway))

    results = await asyncio.gather(engine.reconcile(REF), engine.reconcile(REF), engine.reconcile(REF))

    assert len(gateway.verify_calls) == 3
    assert [r.already_reconciled for r in results].count(False) == 1
    winner_ids = sorted(e.id for e in store.list_entitlements(REF))
    assert all(sorted(e.id for e in r.entitlements) == winner_ids for r in results)
    assert len(winner_ids) == 2


def test_store_commit_twice_keeps_first_entitlements(store):
    from backend.payments.store import entitlements_for_session

    session = _seed(store)
    created, first = store.commit_reconciliation(session, entitlements_for_session(session))
    again, second = store.commit_reconciliation(session, entitlements_for_session(session))

    assert created is True and again is False
    assert [e.id for e in second] == [e.id for e in first]
