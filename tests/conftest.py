import os
from typing import Callable, Dict, Generator, List, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MOYASAR_SECRET_KEY", "sk_test_placeholder")
os.environ.setdefault("MOYASAR_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("EVENTS_ENABLED", "false")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.cache import unit_status_cache  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.payment_gateway import MoyasarClient, get_gateway_client  # noqa: E402
from services.billing.app import app as billing_app  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.guests.app import app as guests_app  # noqa: E402
from services.hotels.app import app as hotels_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

GATEWAY_URL = "https://api.sandbox.moyasar.com/v1/"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    unit_status_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def hotels_client() -> Generator[TestClient, None, None]:
    with TestClient(hotels_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def guests_client() -> Generator[TestClient, None, None]:
    with TestClient(guests_app) as client:
        yield client


@pytest.fixture()
def billing_client() -> Generator[TestClient, None, None]:
    with TestClient(billing_app) as client:
        yield client


@pytest.fixture()
def register_and_login(users_client) -> Callable[[str], Dict[str, str]]:
    def _login(email: str, password: str = "Passw0rd!") -> Dict[str, str]:
        users_client.post("/auth/register", json={"email": email, "password": password, "full_name": "Owner"})
        response = users_client.post(
            "/auth/login",
            data={"username": email, "password": password},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = response.json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _login


@pytest.fixture()
def owner_headers(register_and_login) -> Dict[str, str]:
    return register_and_login("owner@example.com")


@pytest.fixture()
def hotel(hotels_client, owner_headers) -> dict:
    response = hotels_client.post("/hotels", json={"name": "Palm Suites", "city": "Riyadh"}, headers=owner_headers)
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture()
def unit(hotels_client, owner_headers, hotel) -> dict:
    response = hotels_client.post("/units", json={"hotel_id": hotel["id"], "name": "101", "floor": 1}, headers=owner_headers)
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture()
def guest(guests_client, owner_headers, hotel) -> dict:
    response = guests_client.post(
        "/guests",
        json={"hotel_id": hotel["id"], "first_name": "Sara", "last_name": "Ali", "email": "sara@example.com"},
        headers=owner_headers,
    )
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture()
def gateway_calls() -> List[httpx.Request]:
    return []


@pytest.fixture()
def gateway_responses(gateway_calls) -> Generator[Dict[Tuple[str, str], Tuple[int, dict]], None, None]:
    """Canned gateway replies keyed by ``(method, path)``; the billing app talks to a MockTransport."""
    responses: Dict[Tuple[str, str], Tuple[int, dict]] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        gateway_calls.append(request)
        status_code, body = responses.get(
            (request.method, request.url.path),
            (404, {"type": "invalid_request_error", "message": "Object not found"}),
        )
        return httpx.Response(status_code, json=body)

    def _client() -> Generator[MoyasarClient, None, None]:
        client = MoyasarClient(
            secret_key="sk_test_placeholder",
            base_url=GATEWAY_URL,
            environment="test",
            transport=httpx.MockTransport(handler),
        )
        try:
            yield client
        finally:
            client.close()

    billing_app.dependency_overrides[get_gateway_client] = _client
    yield responses
    billing_app.dependency_overrides.pop(get_gateway_client, None)
