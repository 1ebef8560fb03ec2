"""Pytest fixtures for brisons tests."""

import mongomock
import pytest

from brisons import create_app
from brisons.auth import Role, create_user, session_payload
from brisons.db import utc_now

PASSWORD = "secret123"


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test",
            "MONGO_DBNAME": "brisons_test",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "ADMIN_EMAIL": "admin@test.com",
            "ADMIN_PASSWORD": PASSWORD,
            "PROMO_CODES": {"HEALTH10": 10.0},
        },
        client=mongomock.MongoClient(),
    )
    return app


@pytest.fixture
def db(app):
    """The app's database with an application context pushed."""
    with app.app_context():
        yield app.db


def _account(db, name, role):
    user = create_user(db, name.title(), f"{name}@test.com", PASSWORD, role=role)
    return session_payload(user)


@pytest.fixture
def customer(db):
    return _account(db, "alice", Role.CUSTOMER)


@pytest.fixture
def other_customer(db):
    return _account(db, "bob", Role.CUSTOMER)


@pytest.fixture
def pharmacist(db):
    return _account(db, "phil", Role.PHARMACIST)


@pytest.fixture
def admin(db):
    return session_payload(db.users.find_one({"email": "admin@test.com"}))


def login(app, user):
    client = app.test_client()
    response = client.post("/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def customer_client(app, customer):
    return login(app, customer)


@pytest.fixture
def pharmacist_client(app, pharmacist):
    return login(app, pharmacist)


@pytest.fixture
def admin_client(app, admin):
    return login(app, admin)


@pytest.fixture
def make_medicine(db):
    def factory(name="Paracetamol", price=10.0, stock=100, **kw):
        doc = {
            "name": name,
            "generic_name": kw.pop("generic_name", name),
            "category": kw.pop("category", "Pain Relief"),
            "manufacturer": kw.pop("manufacturer", "Acme Pharma"),
            "description": "",
            "price": price,
            "original_price": kw.pop("original_price", price),
            "stock_quantity": stock,
            "prescription_required": kw.pop("prescription_required", False),
            "rating": kw.pop("rating", 4.0),
            "is_active": kw.pop("is_active", True),
            "is_featured": kw.pop("is_featured", False),
            "image": None,
            "image_storage_id": None,
            "created_at": utc_now(),
            "updated_at": utc_now(),
        }
        doc.update(kw)
        doc["_id"] = db.medicines.insert_one(doc).inserted_id
        return doc

    return factory


@pytest.fixture
def make_agent(db):
    from brisons.agents import create_agent

    counter = {"n": 0}

    def factory(name=None, lat=None, lng=None, rating=5, **kw):
        counter["n"] += 1
        n = counter["n"]
        data = {
            "name": name or f"Agent {n}",
            "phone": f"+91 90000 0000{n}",
            "email": f"agent{n}@test.com",
            "vehicle": {"type": "Bike", "number": f"MH12AB{1000 + n}"},
            "rating": rating,
        }
        if lat is not None:
            data["location"] = {"lat": lat, "lng": lng, "address": kw.pop("address", f"Spot {n}")}
        data.update(kw)
        return create_agent(db, data)

    return factory


ADDRESS = {
    "name": "Alice",
    "phone": "9999999999",
    "address": "12 Hill Road",
    "city": "Mumbai",
    "state": "MH",
    "pincode": "400050",
}


@pytest.fixture
def place(db, app):
    """Fill the user's cart with (medicine, quantity) pairs and check out."""
    from brisons.cart import add_item
    from brisons.auth import user_oid
    from brisons.orders import place_order

    def factory(user, lines, **payload):
        for med, qty in lines:
            add_item(db, user_oid(user), med["_id"], qty)
        payload.setdefault("shipping_address", dict(ADDRESS))
        return place_order(db, user, payload, app.config)

    return factory


def assert_tracking_consistent(order):
    updates = order["tracking_updates"]
    assert updates, "order has no tracking updates"
    stamps = [u["timestamp"] for u in updates]
    assert stamps == sorted(stamps)
    assert updates[-1]["status"] == order["status"]
