"""Общие фикстуры: in-memory SQLite, фейковый MercadoPago, пользователи."""
import os

# Настройки читаются при импорте storefront, поэтому окружение задаём до него
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = "redis://localhost:1/0"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-access-token"
os.environ["ENVIRONMENT"] = "test"

import itertools
import json
from decimal import Decimal

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool

from storefront.core.security import hash_password
from storefront.database import Base, get_db, make_engine, make_session_factory
from storefront.main import app
from storefront.models import User
from storefront.services.mercadopago_client import MercadoPagoClient, get_payment_client

MP_BASE_URL = "https://mp.test"


class FakeMercadoPago:
    """
    Минимальная эмуляция REST API MercadoPago.

    Платежи хранятся в памяти, статус платежа задаёт сам тест.
    """

    def __init__(self):
        self.payments: dict[str, dict] = {}
        self.preferences: list[dict] = []
        self.charges: list[dict] = []
        self.charge_status = "approved"
        self.charge_status_detail = "accredited"
        self.fail_with: int | None = None
        self._ids = itertools.count(1000)

    def add_payment(
        self,
        order_id: int,
        status: str,
        amount: Decimal | str | float = "0",
        payment_id: str | None = None,
        payment_type_id: str = "credit_card",
    ) -> str:
        payment_id = payment_id or str(next(self._ids))
        self.payments[payment_id] = {
            "id": int(payment_id),
            "status": status,
            "status_detail": "accredited" if status == "approved" else status,
            "transaction_amount": float(amount),
            "external_reference": str(order_id),
            "payment_type_id": payment_type_id,
        }
        return payment_id

    def set_status(self, payment_id: str, status: str) -> None:
        self.payments[payment_id]["status"] = status
        self.payments[payment_id]["status_detail"] = status

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "processor error"})

        path = request.url.path
        if request.method == "POST" and path == "/checkout/preferences":
            self.preferences.append(json.loads(request.content))
            pref_id = f"pref-{len(self.preferences)}"
            return httpx.Response(
                201,
                json={"id": pref_id, "init_point": f"{MP_BASE_URL}/checkout?pref_id={pref_id}"},
            )

        if request.method == "GET" and path == "/v1/payments/search":
            reference = request.url.params.get("external_reference")
            results = [p for p in self.payments.values() if p["external_reference"] == reference]
            return httpx.Response(200, json={"results": results})

        if request.method == "GET" and path.startswith("/v1/payments/"):
            payment = self.payments.get(path.rsplit("/", 1)[-1])
            if payment is None:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(200, json=payment)

        if request.method == "POST" and path == "/v1/card_tokens":
            return httpx.Response(201, json={"id": f"tok-{next(self._ids)}"})

        if request.method == "POST" and path == "/v1/payments":
            payload = json.loads(request.content)
            self.charges.append({"payload": payload, "headers": dict(request.headers)})
            payment_id = self.add_payment(
                order_id=int(payload["external_reference"]),
                status=self.charge_status,
                amount=payload["transaction_amount"],
            )
            self.payments[payment_id]["status_detail"] = self.charge_status_detail
            return httpx.Response(201, json=self.payments[payment_id])

        return httpx.Response(404, json={"message": f"unexpected {request.method} {path}"})


@pytest.fixture
def fake_mp() -> FakeMercadoPago:
    return FakeMercadoPago()


@pytest.fixture
def processor(fake_mp) -> MercadoPagoClient:
    return MercadoPagoClient(
        access_token="TEST-access-token",
        base_url=MP_BASE_URL,
        transport=httpx.MockTransport(fake_mp.handler),
    )


@pytest.fixture
async def engine():
    engine = make_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def _override_dependencies(session_factory, processor) -> None:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_client] = lambda: processor


@pytest.fixture
async def client(session_factory, processor):
    _override_dependencies(session_factory, processor)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def raw_client(session_factory, processor):
    """Клиент, который получает ответ 500 вместо исключения из приложения."""
    _override_dependencies(session_factory, processor)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(session_factory, email: str, role: str = "customer") -> int:
    async with session_factory() as session:
        user = User(email=email, password_hash=hash_password("secret123"), full_name="Test", role=role)
        session.add(user)
        await session.commit()
        return user.id


@pytest.fixture
async def user_id(session_factory) -> int:
    return await _create_user(session_factory, "cliente@example.com")


@pytest.fixture
async def other_user_id(session_factory) -> int:
    return await _create_user(session_factory, "otro@example.com")


@pytest.fixture
async def admin_id(session_factory) -> int:
    return await _create_user(session_factory, "admin@example.com", role="admin")


@pytest.fixture
async def user(db, user_id) -> User:
    return await db.get(User, user_id)
