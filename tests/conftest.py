"""
Test Suite Configuration
"""
import json
import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")

from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional
import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from checklistpro.config import get_settings
from checklistpro.database.connection import close_database, get_db, init_database
from checklistpro.database.models import Category, Product, User, UserRole
from checklistpro.errors import PaymentError
from checklistpro.serving.api.main import create_api_app
from checklistpro.services.auth import hash_password, issue_tokens
from checklistpro.services.payments import PaymentEvent, PaymentResult, PaymentStatus, get_payment_gateway

TEST_PASSWORD = "Secret123!"


class FakeGateway:
    """
    In-memory payment gateway.

    ``outcome`` is one of succeeded, requires_action, failed, error, explode.
    """

    def __init__(self, outcome: str = "succeeded"):
        self.outcome = outcome
        self.charges: List[Dict] = []
        self.intents: List[Dict] = []

    async def charge(self, amount, currency, payment_method, reference, metadata) -> PaymentResult:
        self.charges.append(
            {"amount": amount, "currency": currency, "payment_method": payment_method,
             "reference": reference, "metadata": metadata}
        )
        payment_id = f"pi_{len(self.charges)}"
        if self.outcome == "error":
            raise PaymentError("Payment provider error", declined=False)
        if self.outcome == "explode":
            raise RuntimeError("provider client crashed")
        if self.outcome == "failed":
            return PaymentResult(status=PaymentStatus.FAILED, payment_id=payment_id, failure_message="Card declined")
        if self.outcome == "requires_action":
            return PaymentResult(status=PaymentStatus.REQUIRES_ACTION, payment_id=payment_id, client_secret="secret")
        return PaymentResult(status=PaymentStatus.SUCCEEDED, payment_id=payment_id)

    async def create_intent(self, amount, currency, reference, metadata) -> PaymentResult:
        self.intents.append({"amount": amount, "reference": reference, "metadata": metadata})
        return PaymentResult(
            status=PaymentStatus.REQUIRES_ACTION,
            payment_id=f"pi_intent_{len(self.intents)}",
            client_secret=f"pi_intent_{len(self.intents)}_secret",
        )

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[PaymentEvent]:
        data = json.loads(payload)
        if data.get("type") not in ("succeeded", "failed"):
            return None
        return PaymentEvent(
            status=PaymentStatus.SUCCEEDED if data["type"] == "succeeded" else PaymentStatus.FAILED,
            payment_id=data["payment_id"],
            order_id=data.get("order_id"),
            payment_reference=data.get("payment_reference"),
            failure_message=data.get("message"),
        )


# =============================================================================
# INFRASTRUCTURE
# =============================================================================

@pytest.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory database per test"""
    await init_database("sqlite+aiosqlite:///:memory:")
    yield
    await close_database()


@pytest.fixture
async def file_database(tmp_path) -> AsyncGenerator[None, None]:
    """File-backed database with a real connection pool"""
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'checklistpro.db'}")
    yield
    await close_database()


@pytest.fixture
def storage(tmp_path, monkeypatch):
    """Point file storage at a temporary directory"""
    root = tmp_path / "files"
    root.mkdir()
    monkeypatch.setattr(get_settings().storage, "files_path", root)
    return root


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app(database, storage, gateway):
    application = create_api_app()
    application.dependency_overrides[get_payment_gateway] = lambda: gateway
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# =============================================================================
# FACTORIES
# =============================================================================

async def make_user(
    email: Optional[str] = None,
    role: UserRole = UserRole.CUSTOMER,
    password: str = TEST_PASSWORD,
    is_active: bool = True,
    name: str = "Test User",
) -> User:
    async with get_db() as db:
        user = User(
            name=name,
            email=email or f"user-{uuid.uuid4().hex[:8]}@checklistpro.io",
            password_hash=hash_password(password),
            role=role,
            is_active=is_active,
        )
        db.add(user)
    return user


async def make_category(name: str = "Food Service", slug: Optional[str] = None) -> Category:
    async with get_db() as db:
        category = Category(name=name, slug=slug or f"cat-{uuid.uuid4().hex[:8]}", is_active=True)
        db.add(category)
    return category


async def make_product(
    name: str = "Food Truck Business Checklist",
    price: str = "10.00",
    formats: Optional[Dict[str, str]] = None,
    category: Optional[Category] = None,
    is_active: bool = True,
    **extra,
) -> Product:
    fields = {
        "name": name,
        "slug": f"{uuid.uuid4().hex[:8]}-checklist",
        "description": f"{name} description",
        "price": Decimal(price),
        "category_id": category.id if category else None,
        "formats": formats if formats is not None else {"pdf": "guide.pdf", "markdown": "guide.md"},
        "features": ["150+ step checklist", "Permit templates"],
        "tags": ["business"],
        "version": "2.1",
        "is_active": is_active,
        "download_count": 0,
        "view_count": 0,
    }
    fields.update(extra)
    async with get_db() as db:
        product = Product(**fields)
        db.add(product)
    return product


async def get_product_row(product_id: uuid.UUID) -> Product:
    async with get_db() as db:
        return await db.get(Product, product_id)


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {issue_tokens(user).access_token}"}


@pytest.fixture
async def customer(database) -> User:
    return await make_user(email="customer@checklistpro.io", name="Casey Customer")


@pytest.fixture
async def admin(database) -> User:
    return await make_user(email="admin@checklistpro.io", role=UserRole.ADMIN, name="Avery Admin")


@pytest.fixture
async def product(database) -> Product:
    return await make_product()
