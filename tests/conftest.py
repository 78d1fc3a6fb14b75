import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
from config import Settings
from database import Database
from main import create_app


@pytest.fixture()
def settings():
    return Settings(jwt_secret="test-secret", bcrypt_rounds=4, database_name="shop_test")


@pytest.fixture()
def db(settings):
    database = Database("mongodb://test", settings.database_name, client=mongomock.MongoClient())
    database.open()
    database.ensure_indexes()
    yield database
    database.close()


@pytest.fixture()
def client(settings, db):
    app = create_app(settings=settings, database=db)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def user(db, settings):
    """A registered customer: dict with id, email, password, token and auth headers."""
    return make_user(db, settings, "Jane Doe", "jane@example.com", "secret123")


@pytest.fixture()
def admin(db, settings):
    return make_user(db, settings, "Admin", "admin@example.com", "admin123", is_admin=True)


@pytest.fixture()
def product(db):
    return make_product(db, "Trail Shoes", price=89.5, count_in_stock=12)


def make_user(db, settings, name, email, password, is_admin=False):
    result = auth.register(db, settings, name=name, email=email, password=password, is_admin=is_admin)
    return {
        "id": result["userId"],
        "email": email,
        "password": password,
        "token": result["token"],
        "headers": {"Authorization": f"Bearer {result['token']}"},
    }


def make_product(db, name, price=10.0, count_in_stock=5, description="A product"):
    res = db["product"].insert_one(
        {
            "name": name,
            "description": description,
            "price": price,
            "countInStock": count_in_stock,
            "imageUrl": "https://cdn.example.com/img.png",
        }
    )
    return str(res.inserted_id)
