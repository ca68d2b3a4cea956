import os
import tempfile
from decimal import Decimal

os.environ["DATABASE_URL"] = "memory://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="ecommerce-uploads-")
os.environ["JWT_SECRET"] = "test-access-secret-0123456789abcdef0123456789"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-0123456789abcdef012345678"

import pytest
from fastapi.testclient import TestClient

from auth import RefreshTokenRegistry, create_access_token, get_refresh_tokens, hash_password
from config import get_settings
from database import get_store
from main import app
from memory_store import MemoryStore
from schemas import Caller


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def tokens():
    return RefreshTokenRegistry()


@pytest.fixture
def client(store, tokens):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_refresh_tokens] = lambda: tokens
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(store, name, email, role, password="secret"):
    return store.create_user({
        "name": name,
        "email": email,
        "password_hash": hash_password(password),
        "role": role,
    })


@pytest.fixture
def customer(store):
    return _make_user(store, "Alice", "alice@example.com", "customer")


@pytest.fixture
def other_customer(store):
    return _make_user(store, "Bob", "bob@example.com", "customer")


@pytest.fixture
def admin(store):
    return _make_user(store, "Admin", "admin@example.com", "admin")


def _caller(user):
    return Caller(id=user["id"], email=user["email"], role=user["role"])


@pytest.fixture
def customer_caller(customer):
    return _caller(customer)


@pytest.fixture
def other_caller(other_customer):
    return _caller(other_customer)


@pytest.fixture
def admin_caller(admin):
    return _caller(admin)


def _bearer(user):
    return {"Authorization": f"Bearer {create_access_token(user, get_settings())}"}


@pytest.fixture
def customer_headers(customer):
    return _bearer(customer)


@pytest.fixture
def other_headers(other_customer):
    return _bearer(other_customer)


@pytest.fixture
def admin_headers(admin):
    return _bearer(admin)


@pytest.fixture
def add_product(store):
    def _add(price="10.00", stock=5, is_active=True, name="Widget"):
        return store.create_product({
            "name": name,
            "description": None,
            "price": Decimal(price),
            "stock": stock,
            "image_url": None,
            "is_active": is_active,
        })
    return _add
