import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from decimal import Decimal
from typing import Generator, Dict, Any, List
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from backend.app import app as fastapi_app
from backend.utils.security import require_user, require_admin
from backend.payments.dependencies import get_store, get_gateway, get_rate_cache, get_pending_store
from backend.payments.exceptions import NotFoundYet
from backend.payments.exchange_rate import ExchangeRateCache
from backend.payments.memory_store import InMemoryPaymentStore
from backend.payments.models import GatewayInitiation, GatewayStatus, GatewayVerification
from backend.payments.pending import InMemoryPendingReferenceStore

SCHOOL_ID = "school-1"
OTHER_SCHOOL_ID = "school-2"


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class FakeGateway:
    """Passerelle Paystack simulée: enregistre les appels, issue de vérification configurable par référence."""

    def __init__(self):
        self.initialized: List[Any] = []
        self.verify_calls: List[str] = []
        self.verifications: Dict[str, Any] = {}
        self.initialize_error = None

    async def initialize(self, request, callback_url, split=None):
        self.initialized.append((request, callback_url, split))
        if self.initialize_error:
            raise self.initialize_error
        return GatewayInitiation(
            reference=request.reference,
            authorization_url=f"https://checkout.paystack.test/{request.reference}",
            access_code="ac_test",
        )

    def settle(self, reference: str, amount: int, currency: str = "NGN", status: GatewayStatus = GatewayStatus.VERIFIED):
        self.verifications[reference] = GatewayVerification(
            reference=reference,
            status=status,
            amount_minor_units=amount,
            currency=currency,
            gateway_response="Approved" if status is GatewayStatus.VERIFIED else str(status.value),
        )

    async def verify(self, reference: str):
        self.verify_calls.append(reference)
        outcome = self.verifications.get(reference)
        if outcome is None:
            raise NotFoundYet(reference=reference)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def fixed_rate_source(base: str, display: str) -> Decimal:
    return Decimal("1650")


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore(schools={
        SCHOOL_ID: {"name": "Kings College", "paystack_subaccount_code": "ACCT_kings"},
        OTHER_SCHOOL_ID: {"name": "Queens College", "paystack_subaccount_code": None},
    })


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def pending_store() -> InMemoryPendingReferenceStore:
    return InMemoryPendingReferenceStore()


@pytest.fixture()
def rate_cache() -> ExchangeRateCache:
    return ExchangeRateCache(fixed_rate_source)


@pytest.fixture()
def viewer_profile() -> Dict[str, Any]:
    return {
        "id": "test-user",
        "email": "test@example.com",
        "role": "user",
        "user_type": "viewer",
        "first_name": "Ada",
        "last_name": "Obi",
        "phone_number": "0803 123 4567",
        "school": None,
        "token": "fake-token",
    }


@pytest.fixture()
def school_profile() -> Dict[str, Any]:
    return {
        "id": "school-admin",
        "email": "admin@kings.example",
        "role": "user",
        "user_type": "school",
        "first_name": None,
        "last_name": None,
        "phone_number": None,
        "school": {"id": SCHOOL_ID, "name": "Kings College", "phone_number": "+2348012345678"},
        "token": "fake-token",
    }


# Dépendances paiements: stockage mémoire, fausse passerelle, taux fixe
@pytest.fixture(autouse=True)
def _override_payment_dependencies(app, store, gateway, rate_cache, pending_store):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_rate_cache] = lambda: rate_cache
    app.dependency_overrides[get_pending_store] = lambda: pending_store
    try:
        yield
    finally:
        for dep in (get_store, get_gateway, get_rate_cache, get_pending_store):
            app.dependency_overrides.pop(dep, None)


# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app, viewer_profile):
    app.dependency_overrides[require_user] = lambda: viewer_profile
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)


@pytest.fixture
def authenticated_admin_client(app, client):
    def _override_require_admin():
        return {"id": "admin-user-id", "role": "admin", "email": "admin@example.com"}
    app.dependency_overrides[require_admin] = _override_require_admin
    yield client
    app.dependency_overrides.pop(require_admin, None)


# Aucun accès Supabase réel pendant les tests
@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("backend.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("backend.infra.supabase_client.get_service_supabase", lambda: MagicMock())
