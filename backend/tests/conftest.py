"""
Pytest configuration and shared fixtures.

Every test gets its own file-backed SQLite database under tmp_path (several
connections must see the same data for the concurrency tests), a memory
mail transport and a fixed clock.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from database import build_engine, init_db
from domain.constants import ORDERS
from models import Order
from services.credit_service import CreditNoteService
from services.document_store import DocumentStore
from services.invoice_service import InvoiceOrchestrator
from services.mail_transport import MemoryTransport
from services.notification_service import Notifier
from services.order_service import OrderStateMachine
from services.sequence_service import SequenceGenerator

# ── Test Configuration ───────────────────────────────────────────────
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"

FIXED_NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)
ADMIN_EMAIL = "admin@example.com"
PAYMENT_TOKEN = "accounting-link-token"


def fixed_clock() -> datetime:
    return FIXED_NOW


# ── Database Fixtures ────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> DocumentStore:
    return DocumentStore(session_factory)


# ── Service Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def mail() -> MemoryTransport:
    return MemoryTransport()


@pytest.fixture
def notifier(mail) -> Notifier:
    return Notifier(mail, sender="AlloyGator <shop@example.com>", admin_recipient=ADMIN_EMAIL)


@pytest.fixture
def sequences(store) -> SequenceGenerator:
    return SequenceGenerator(store, clock=fixed_clock)


@pytest.fixture
def invoice_dir(tmp_path) -> str:
    return str(tmp_path / "invoices")


@pytest.fixture
def invoices(store, sequences, notifier, invoice_dir) -> InvoiceOrchestrator:
    return InvoiceOrchestrator(store, sequences, notifier, invoice_dir=invoice_dir, clock=fixed_clock)


@pytest.fixture
def machine(store, sequences, invoices, notifier) -> OrderStateMachine:
    return OrderStateMachine(store, sequences, invoices, notifier, clock=fixed_clock)


@pytest.fixture
def credits(store, sequences, invoice_dir) -> CreditNoteService:
    return CreditNoteService(store, sequences, invoice_dir=invoice_dir, clock=fixed_clock)


# ── Test Data Fixtures ───────────────────────────────────────────────


def order_document(**overrides) -> dict:
    """A stored order as the shop writes it (legacy field names included)."""
    doc = {
        "orderNumber": "AGO-05006",
        "status": "nieuw",
        "payment_status": "open",
        "payment_method": "invoice",
        "payment_terms_days": 14,
        "items": [
            {"productId": "p-1", "name": "AlloyGator Set", "price": 100.0, "quantity": 2, "vat_category": "standard"},
        ],
        "subtotal": 200.0,
        "shipping_cost": 10.0,
        "vat_amount": 44.1,
        "total": 254.1,
        "shipping_method": "PostNL",
        "customer": {
            "voornaam": "Jan",
            "achternaam": "Jansen",
            "email": "jan@example.com",
            "adres": "Dorpsstraat 1",
            "postcode": "1234 AB",
            "plaats": "Utrecht",
            "land": "Nederland",
        },
        "createdAt": "2025-01-01T09:00:00+00:00",
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def make_order(store):
    """Factory: store an order document and return it as a canonical Order."""
    async def _make(doc_id: str = "order-1", **overrides) -> Order:
        doc = await store.create(ORDERS, order_document(**overrides), doc_id=doc_id)
        return Order.from_document(doc.id, doc.data, doc.version)
    return _make


@pytest.fixture
def pickup_order(make_order):
    async def _make(doc_id: str = "pickup-1", **overrides) -> Order:
        fields = {
            "payment_method": "pin",
            "shipping_method": "Afhalen",
            "shipping_delivery_type": "pickup_local",
        }
        fields.update(overrides)
        return await make_order(doc_id, **fields)
    return _make


# ── API Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def admin_headers() -> dict:
    from middleware.auth import issue_access_token
    token = issue_access_token(subject=ADMIN_EMAIL)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(store, sequences, notifier, invoices, machine, credits, monkeypatch):
    """API client wired to the per-test service graph."""
    from deps import Services, get_services
    from main import app
    from middleware.rate_limit import limiter

    services = Services(store, sequences, notifier, invoices, machine, credits)
    app.dependency_overrides[get_services] = lambda: services
    monkeypatch.setattr(settings, "admin_payment_token", PAYMENT_TOKEN)
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    limiter.reset()
