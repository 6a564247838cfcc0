import pytest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

from backend.payments import repository as payments_repo
from backend.payments.exceptions import SessionNotFound
from backend.payments.models import AccountClass, ItemType, PaymentSession, SessionStatus, SnapshotItem
from backend.payments.store import entitlements_for_session

SESSION_ROW = {
    "reference": "yearbook_1_aaaaaaaaaa",
    "owner_id": "u1",
    "owner_class": "viewer",
    "email": "a@b.c",
    "amount_minor_units": 2473350,
    "settlement_currency": "NGN",
    "exchange_rate": "1650.000000",
    "status": "initiated",
    "cart_snapshot": [
        {"cart_item_id": "c1", "item_type": "yearbook_year", "school_id": "s1", "year": 2019, "quantity": 1, "unit_price_base": "14.99"}
    ],
    "gateway_response": None,
    "created_at": "2024-01-01T12:00:00+00:00",
    "updated_at": "2024-01-01T12:00:00+00:00",
}


@pytest.fixture
def supa(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr("backend.infra.supabase_client.get_service_supabase", lambda: client)
    return client


def _query(client, data):
    """Chaîne PostgREST simulée: chaque méthode renvoie la même requête, execute() renvoie data."""
    query = MagicMock()
    for name in ("select", "eq", "in_", "lt", "is_", "order", "limit", "insert", "update", "delete"):
        getattr(query, name).return_value = query
    query.execute.return_value = SimpleNamespace(data=data)
    client.table.return_value = query
    return query


def test_get_session_maps_row(supa):
    query = _query(supa, [SESSION_ROW])
    session = payments_repo.SupabasePaymentStore().get_session("yearbook_1_aaaaaaaaaa")

    supa.table.assert_called_with("payment_sessions")
    query.eq.assert_called_with("reference", "yearbook_1_aaaaaaaaaa")
    assert session.status is SessionStatus.INITIATED
    assert session.exchange_rate == Decimal("1650")
    assert session.cart_snapshot[0].unit_price_base == Decimal("14.99")


def test_get_session_missing_returns_none(supa):
    _query(supa, [])
    assert payments_repo.SupabasePaymentStore().get_session("nope") is None


def test_update_status_is_compare_and_swap(supa):
    query = _query(supa, [])
    result = payments_repo.SupabasePaymentStore().update_session_status(
        "yearbook_1_aaaaaaaaaa", (SessionStatus.INITIATED, SessionStatus.ABANDONED), SessionStatus.VERIFIED
    )
    assert result is None
    query.in_.assert_called_with("status", ["initiated", "abandoned"])
    payload = query.update.call_args[0][0]
    assert payload["status"] == "verified"


def test_create_session_serializes_snapshot(supa):
    query = _query(supa, [SESSION_ROW])
    session = PaymentSession(
        reference="yearbook_1_bbbbbbbbbb",
        owner_id="u1",
        owner_class=AccountClass.VIEWER,
        email="a@b.c",
        amount_minor_units=100,
        settlement_currency="NGN",
        exchange_rate=Decimal("1650"),
        cart_snapshot=(SnapshotItem(cart_item_id="c1", item_type=ItemType.BADGE_SLOT, unit_price_base=Decimal("0.99")),),
    )
    payments_repo.SupabasePaymentStore().create_session(session)

    row = query.insert.call_args[0][0]
    assert row["status"] == "initiated"
    assert row["cart_snapshot"][0]["unit_price_base"] == "0.99"
    assert row["exchange_rate"] == "1650"


def test_commit_reconciliation_calls_sql_function(supa):
    session = payments_repo._session_from_row(SESSION_ROW)
    db_rows = [e.model_dump(mode="json") for e in entitlements_for_session(session)]
    supa.rpc.return_value.execute.return_value = SimpleNamespace(data={"session_found": True, "created": True, "entitlements": db_rows})

    client_side = entitlements_for_session(session)
    created, stored = payments_repo.SupabasePaymentStore().commit_reconciliation(session, client_side)

    # Seule la référence part vers Postgres: les droits viennent du snapshot stocké
    supa.rpc.assert_called_once_with("reconcile_payment_session", {"p_reference": "yearbook_1_aaaaaaaaaa"})
    assert created is True
    assert [e.id for e in stored] == [r["id"] for r in db_rows]
    assert stored[0].kind.value == "year_purchase"


def test_commit_reconciliation_lost_race_and_missing_session(supa):
    session = payments_repo._session_from_row(SESSION_ROW)
    supa.rpc.return_value.execute.return_value = SimpleNamespace(data={"session_found": True, "created": False, "entitlements": []})
    assert payments_repo.SupabasePaymentStore().commit_reconciliation(session, []) == (False, [])

    supa.rpc.return_value.execute.return_value = SimpleNamespace(data={"session_found": False, "created": False, "entitlements": []})
    with pytest.raises(SessionNotFound):
        payments_repo.SupabasePaymentStore().commit_reconciliation(session, [])


def test_write_errors_propagate(supa, caplog):
    query = _query(supa, [])
    query.execute.side_effect = RuntimeError("db down")
    session = payments_repo._session_from_row(SESSION_ROW)
    with caplog.at_level("ERROR", logger="backend.payments.repository"):
        with pytest.raises(RuntimeError):
            payments_repo.SupabasePaymentStore().create_session(session)
    assert any("create_session failed" in r.getMessage() for r in caplog.records)


def test_school_subaccount_lookup(supa):
    _query(supa, [{"paystack_subaccount_code": "ACCT_x"}])
    assert payments_repo.SupabasePaymentStore().get_school_subaccount("s1") == "ACCT_x"
    _query(supa, [])
    assert payments_repo.SupabasePaymentStore().get_school_subaccount("s1") is None
