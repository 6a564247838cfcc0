import re
from pathlib import Path

MIGRATION = Path(__file__).resolve().parents[2] / "supabase" / "migrations" / "0001_payments.sql"


def _sql() -> str:
    return re.sub(r"\s+", " ", MIGRATION.read_text(encoding="utf-8").lower())


def _function_body(sql: str) -> str:
    start = sql.index("create or replace function public.reconcile_payment_session")
    return sql[start:sql.index("$$;", start)]


def test_payment_tables_have_row_level_security():
    sql = _sql()
    for table in ("cart_items", "payment_sessions", "entitlements"):
        assert f"alter table public.{table} enable row level security" in sql


def test_reconcile_function_is_service_role_only():
    sql = _sql()
    assert "revoke execute on function public.reconcile_payment_session(text) from public, anon, authenticated" in sql
    assert "grant execute on function public.reconcile_payment_session(text) to service_role" in sql


def test_reconcile_function_pins_search_path_and_takes_only_reference():
    body = _function_body(_sql())
    assert "reconcile_payment_session(p_reference text) returns jsonb" in body
    assert "security definer set search_path = public" in body
    # Droits dérivés du snapshot stocké, pas d'un paramètre client
    assert "jsonb_array_elements(v_session.cart_snapshot)" in body
    assert "p_entitlements" not in body
