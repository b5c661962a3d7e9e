import os

# Настройки читаются при импорте storefront, поэтому окружение задаем до него
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FILE"] = ""
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["MARKETPLACE_BASE_URL"] = "https://marketplace.test/api2.0/v1"
os.environ.pop("MARKETPLACE_API_KEY", None)

import json
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.core.config import settings
from storefront.core.security import create_access_token
from storefront.crud import marketplace as marketplace_crud
from storefront.database import SessionLocal, create_tables, drop_tables, utcnow
from storefront.main import app
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.models.product import Product, ProductVariant
from storefront.models.user import User, UserRole
from storefront.services.integration import build_integration

API_PREFIX = httpx.URL(settings.MARKETPLACE_BASE_URL).path

def ok(data: Any = None, message: str = "Success") -> Dict[str, Any]:
    """Успешный конверт маркетплейса"""
    return {"code": 200, "result": True, "message": message, "data": data}

def fail(code: int, message: str = "Error") -> Dict[str, Any]:
    return {"code": code, "result": False, "message": message, "data": None}

def token_data(access: str = "AT-new", refresh: str = "RT-new", days: int = 15) -> Dict[str, Any]:
    return {
        "accessToken": access,
        "refreshToken": refresh,
        "accessTokenExpiryDate": (utcnow() + timedelta(days=days)).isoformat() + "Z",
    }

class FakeMarketplace:
    """
    Маркетплейс для httpx.MockTransport.

    Ответы регистрируются по (метод, endpoint); несколько ответов отдаются
    по очереди, последний повторяется. Все запросы записываются в calls.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def on(self, method: str, endpoint: str, *responses):
        self.routes[(method.upper(), endpoint)] = list(responses)
        return self

    def calls_to(self, endpoint: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["endpoint"] == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path[len(API_PREFIX):]
        body = json.loads(request.content) if request.content else None
        self.calls.append({
            "method": request.method,
            "endpoint": endpoint,
            "token": request.headers.get(settings.MARKETPLACE_TOKEN_HEADER),
            "params": dict(request.url.params),
            "json": body,
        })

        responses = self.routes.get((request.method, endpoint))
        if not responses:
            return httpx.Response(404, json=fail(404, f"No route for {request.method} {endpoint}"))

        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(response):
            response = response(request)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

@pytest.fixture(autouse=True)
def database():
    create_tables()
    yield
    drop_tables()

@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def marketplace():
    return FakeMarketplace()

@pytest.fixture
def integration(marketplace):
    integration = build_integration(settings, SessionLocal, transport=marketplace.transport, retry_backoff=0)
    integration.tokens.set_api_key("test-api-key")
    return integration

@pytest.fixture
def unconfigured_integration(marketplace):
    return build_integration(settings, SessionLocal, transport=marketplace.transport, retry_backoff=0)

@pytest.fixture
def stored_token(db):
    """Действующий токен в БД"""
    return marketplace_crud.replace_credential(
        db,
        access_token="AT-stored",
        refresh_token="RT-stored",
        expires_at=utcnow() + timedelta(days=5),
    )

@pytest.fixture
def expired_token(db):
    return marketplace_crud.replace_credential(
        db,
        access_token="AT-expired",
        refresh_token="RT-expired",
        expires_at=utcnow() - timedelta(minutes=1),
    )

def make_user(db, username: str, role: str = UserRole.CUSTOMER.value) -> User:
    user = User(email=f"{username}@example.com", username=username, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

@pytest.fixture
def admin_user(db):
    return make_user(db, "admin", UserRole.ADMIN.value)

@pytest.fixture
def customer(db):
    return make_user(db, "customer")

def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.username)}"}

@pytest.fixture
def client(integration):
    app.state.integration = integration
    return TestClient(app)

def make_product(
    db,
    remote_product_id: str = "PID-1",
    variants: Optional[List[Dict[str, Any]]] = None,
    **fields
) -> Product:
    product = Product(
        remote_product_id=remote_product_id,
        name=fields.pop("name", "Local product"),
        price=fields.pop("price", 20.0),
        cost_price=fields.pop("cost_price", 10.0),
        is_in_store=fields.pop("is_in_store", True),
        **fields
    )
    for variant in variants or []:
        product.variants.append(ProductVariant(**variant))
    db.add(product)
    db.commit()
    db.refresh(product)
    return product

def make_order(db, user: Optional[User] = None, **fields) -> Order:
    order = Order(
        order_number=fields.pop("order_number", "ORD-1001"),
        user_id=user.id if user else None,
        email=fields.pop("email", "buyer@example.com"),
        items=fields.pop("items", [
            {"remote_product_id": "PID-1", "variant_id": "VID-1", "product_name": "Pan", "quantity": 2, "price": 25.0}
        ]),
        shipping_address=fields.pop("shipping_address", {
            "first_name": "Ann",
            "last_name": "Lee",
            "street": "1 Main St",
            "city": "Austin",
            "state": "TX",
            "zip_code": "73301",
            "country": "US",
            "phone": "+15550100",
        }),
        total=fields.pop("total", 50.0),
        status=fields.pop("status", OrderStatus.PENDING.value),
        payment_status=fields.pop("payment_status", PaymentStatus.PAID.value),
        **fields
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order
