from datetime import datetime, timezone

from bson.objectid import ObjectId
from bson.errors import InvalidId
from flask import current_app
from pymongo import ASCENDING, DESCENDING

from .errors import ValidationError


def get_db():
    return current_app.db


def utc_now():
    """Naive UTC now, truncated to the millisecond precision MongoDB stores."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def parse_oid(value, what="resource"):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {what} id")


def to_json(value):
    """Make a Mongo document JSON-safe (ObjectIds and datetimes to strings)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value


def ensure_indexes(db):
    db.users.create_index([("email", ASCENDING)], unique=True)
    db.users.create_index([("role", ASCENDING)])
    db.carts.create_index([("user_id", ASCENDING)], unique=True)
    db.medicines.create_index([("name", ASCENDING)])
    db.medicines.create_index([("category", ASCENDING)])
    db.medicines.create_index([("price", ASCENDING)])
    db.orders.create_index([("order_number", ASCENDING)], unique=True)
    db.orders.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db.orders.create_index([("status", ASCENDING)])
    db.delivery_agents.create_index([("email", ASCENDING)], unique=True)
    db.delivery_agents.create_index([("status", ASCENDING)])
    db.prescriptions.create_index([("user_id", ASCENDING)])
    db.prescriptions.create_index([("status", ASCENDING)])
