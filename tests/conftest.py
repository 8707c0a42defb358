# tests/conftest.py
import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from storefront.config import Settings
from storefront.core import CategoryIn, ProductIn, RegisterIn
from storefront.events import InMemoryPublisher
from storefront.main import build_services, create_app
from storefront.models import User, UserRole
from storefront.storage import LocalStorage

SECRET = "test-secret-key-long-enough-for-hs256-signing"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'store.db'}",
        jwt_secret=SECRET,
        bcrypt_rounds=4,
        upload_path=str(tmp_path / "uploads"),
        event_publisher="memory",
    )


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"))


@pytest.fixture
def services(settings, publisher, storage):
    s = build_services(settings, publisher=publisher, storage=storage)
    s.db.create_all()
    yield s
    s.db.dispose()


@pytest.fixture
def category(services):
    return services.catalog.create_category(CategoryIn(name="general"))


@pytest.fixture
def make_product(services, category):
    skus = itertools.count(1)

    def _make(name="Widget", price="10.00", stock=5):
        return services.catalog.create_product(ProductIn(
            category_id=category.id,
            name=name,
            price=Decimal(price),
            stock=stock,
            sku=f"SKU-{next(skus)}",
        ))

    return _make


@pytest.fixture
def register(services):
    ids = itertools.count(1)

    def _register(email=None, password="secret123"):
        email = email or f"user{next(ids)}@example.com"
        return services.auth.register(RegisterIn(email=email, password=password))

    return _register


@pytest.fixture
def stock_of(services):
    def _stock(product_id):
        return services.catalog.get_product(product_id).stock

    return _stock


# ---------------------------
# HTTP
# ---------------------------
@pytest.fixture
def app(settings, publisher, storage):
    return create_app(settings, publisher=publisher, storage=storage)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def promote_to_admin(app, email):
    with app.state.services.db.transaction() as session:
        session.execute(update(User).where(User.email == email).values(role=UserRole.admin))


@pytest.fixture
def admin_headers(app, client):
    client.post("/api/v1/auth/register", json={"email": "admin@example.com", "password": "admin-pass"})
    promote_to_admin(app, "admin@example.com")
    r = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "admin-pass"})
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def customer_headers(client):
    def _headers(email="alice@example.com", password="secret123"):
        r = client.post("/api/v1/auth/register", json={"email": email, "password": password})
        assert r.status_code == 201, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _headers


@pytest.fixture
def http_product(client, admin_headers):
    skus = itertools.count(1)
    cat = client.post("/api/v1/categories", json={"name": "electronics"}, headers=admin_headers).json()

    def _make(name="Laptop", price="10.00", stock=5):
        r = client.post("/api/v1/products", json={
            "category_id": cat["id"], "name": name, "price": price, "stock": stock, "sku": f"HTTP-{next(skus)}",
        }, headers=admin_headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _make
