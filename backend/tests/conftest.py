"""
Test Configuration — Fixtures for async DB, test client, and fake collaborators.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema. The mail
sender and payment gateway are replaced with in-memory fakes.
"""

from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_db, get_payment_gateway, get_restock_dispatcher, get_session_factory
from api.main import app
from core.errors import IntegrationFailure
from db.session import Base
from notifications.dispatcher import RestockDispatcher
from payments.mercadopago import PaymentDetails

# Use in-memory SQLite for tests.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeSender:
    """Restock sender double: records calls, fails or raises for chosen emails."""

    def __init__(self):
        self.calls: list[tuple[str, str, int]] = []
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()

    async def __call__(self, email: str, variant_label: str, quantity: int) -> bool:
        self.calls.append((email, variant_label, quantity))
        if email in self.raise_for:
            raise RuntimeError("mail provider unreachable")
        return email not in self.fail_for

    @property
    def recipients(self) -> list[str]:
        return [email for email, _, _ in self.calls]


class FakeGateway:
    """Payment gateway double with canned payments and preferences."""

    def __init__(self):
        self.payments: dict[str, PaymentDetails] = {}
        self.preferences: list[dict] = []
        self.fail_preferences = False

    def add_payment(self, payment_id: str, status: str, external_reference: str | None) -> None:
        self.payments[payment_id] = PaymentDetails(
            payment_id=payment_id,
            status=status,
            external_reference=external_reference,
            transaction_amount=75000.0,
            currency_id="ARS",
        )

    async def get_payment(self, payment_id: str) -> PaymentDetails:
        if payment_id not in self.payments:
            raise IntegrationFailure("mercadopago", f"GET /v1/payments/{payment_id} returned 404")
        return self.payments[payment_id]

    async def create_preference(self, *, items, payer, external_reference):
        if self.fail_preferences:
            raise IntegrationFailure("mercadopago", "POST /checkout/preferences returned 500")
        preference = {
            "id": f"pref-{len(self.preferences) + 1}",
            "init_point": f"https://mp.test/checkout?pref={len(self.preferences) + 1}",
            "items": items,
            "payer": payer,
            "external_reference": external_reference,
        }
        self.preferences.append(preference)
        return preference


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def session_factory(test_db):
    """Session factory that hands out the per-test session and never closes it."""

    @asynccontextmanager
    async def _factory():
        yield test_db

    return _factory


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher(session_factory, fake_sender):
    return RestockDispatcher(session_factory=session_factory, sender=fake_sender, max_concurrency=4)


@pytest.fixture
async def client(test_db, session_factory, dispatcher, fake_gateway):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_restock_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """Seed the test DB with one product and three variants (one sold out)."""
    from catalog.variants import create_product, create_variant

    product = await create_product(
        test_db,
        {"name": "Licuadora Portátil A11 PRO", "description": "700ml", "unit_price": 75000},
    )
    black = await create_variant(
        test_db,
        product.product_id,
        {"label": "Negro", "image_url": "/black.jpeg", "stock": 6, "sort_order": 1},
    )
    green = await create_variant(
        test_db,
        product.product_id,
        {"label": "Negro y Verde", "image_url": "/black&green.jpeg", "stock": 4, "sort_order": 2},
    )
    white = await create_variant(
        test_db,
        product.product_id,
        {
            "label": "Blanco",
            "image_url": "/white.jpeg",
            "stock": 0,
            "batch_status": "soldout",
            "sort_order": 3,
        },
    )
    await test_db.refresh(product)

    return {
        "product": product,
        "black": black,
        "green": green,
        "white": white,
    }


@pytest.fixture
def checkout_payload(seeded_db):
    """A valid checkout form for two black blenders."""
    return {
        "name": "Ana Pérez",
        "email": "ana@example.com",
        "phone": "+54 11 5555 0000",
        "address": "Av. Corrientes 1234",
        "city": "Buenos Aires",
        "zip_code": "C1043",
        "quantity": 2,
        "total": 150000,
        "product_id": str(seeded_db["product"].product_id),
        "items": [
            {
                "variant_id": str(seeded_db["black"].variant_id),
                "label": "Negro",
                "quantity": 2,
                "unit_price": 75000,
                "subtotal": 150000,
            }
        ],
        "batch_status": "available",
    }
