"""Delivery-agent registry: courier documents and their availability flag.

An agent's ``status`` is the only lock in the system. Every change to it goes
through a conditional update so that concurrent requests, possibly served by
different processes, cannot both take the same agent.
"""
from enum import Enum

from flask import current_app
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .db import parse_oid, utc_now
from .errors import Conflict, NotFound, ValidationError
from .geo import validate_coordinates


class AgentStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    BUSY = "busy"
    OFFLINE = "offline"


VEHICLE_TYPES = ["Bike", "Car", "Scooter", "Bicycle"]


def get_agent(db, agent_id):
    agent = db.delivery_agents.find_one({"_id": parse_oid(agent_id, "agent")})
    if not agent:
        raise NotFound("Delivery agent", str(agent_id))
    return agent


def list_agents(db):
    return list(db.delivery_agents.find({"is_active": True}).sort("name", 1))


def available_agents(db):
    return list(db.delivery_agents.find({"status": AgentStatus.AVAILABLE.value, "is_active": True}))


def create_agent(db, data):
    missing = [f for f in ("name", "phone", "email") if not (data.get(f) or "").strip()]
    vehicle = data.get("vehicle") or {}
    if not vehicle.get("type") or not vehicle.get("number"):
        missing.append("vehicle")
    if missing:
        raise ValidationError("Missing required fields: %s" % ", ".join(missing))
    if vehicle["type"] not in VEHICLE_TYPES:
        raise ValidationError("Vehicle type must be one of %s" % ", ".join(VEHICLE_TYPES))

    location = None
    if data.get("location"):
        loc = data["location"]
        try:
            lat, lng = validate_coordinates(loc.get("lat"), loc.get("lng"))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid location: {e}")
        location = {"lat": lat, "lng": lng, "address": loc.get("address", ""), "updated_at": utc_now()}

    try:
        rating = float(data.get("rating", 5))
    except (TypeError, ValueError):
        raise ValidationError("Invalid rating")
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")

    doc = {
        "name": data["name"].strip(),
        "phone": data["phone"].strip(),
        "email": data["email"].strip().lower(),
        "vehicle": {"type": vehicle["type"], "number": vehicle["number"], "model": vehicle.get("model", "")},
        "location": location,
        "status": AgentStatus.AVAILABLE.value,
        "rating": rating,
        "total_deliveries": 0,
        "is_active": True,
        "current_order": None,
        "working_hours": data.get("working_hours") or {"start": "09:00", "end": "21:00"},
        "joined_at": utc_now(),
        "updated_at": utc_now(),
    }
    try:
        doc["_id"] = db.delivery_agents.insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ValidationError("An agent with this email already exists")
    current_app.logger.info("Delivery agent %s created", doc["_id"])
    return doc


def set_agent_status(db, agent_id, status):
    """Toggle an idle agent between available and offline."""
    if status not in (AgentStatus.AVAILABLE.value, AgentStatus.OFFLINE.value):
        raise ValidationError("Status must be 'available' or 'offline'")
    agent = get_agent(db, agent_id)
    updated = db.delivery_agents.find_one_and_update(
        {
            "_id": agent["_id"],
            "current_order": None,
            "status": {"$in": [AgentStatus.AVAILABLE.value, AgentStatus.OFFLINE.value]},
        },
        {"$set": {"status": status, "updated_at": utc_now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict(f"Agent {agent['name']} is on a delivery")
    return updated


def claim_agent(db, agent_id, order_id):
    """Atomically flip an available agent to assigned; None if someone else won."""
    return db.delivery_agents.find_one_and_update(
        {"_id": agent_id, "status": AgentStatus.AVAILABLE.value, "is_active": True},
        {"$set": {
            "status": AgentStatus.ASSIGNED.value,
            "current_order": order_id,
            "updated_at": utc_now(),
        }},
        return_document=ReturnDocument.AFTER,
    )


def mark_busy(db, agent_id, order_id):
    db.delivery_agents.update_one(
        {"_id": agent_id, "current_order": order_id},
        {"$set": {"status": AgentStatus.BUSY.value, "updated_at": utc_now()}},
    )


def release_agent(db, agent_id, order_id, delivered=False):
    """Return an agent holding ``order_id`` to available."""
    update = {"$set": {
        "status": AgentStatus.AVAILABLE.value,
        "current_order": None,
        "updated_at": utc_now(),
    }}
    if delivered:
        update["$inc"] = {"total_deliveries": 1}
    agent = db.delivery_agents.find_one_and_update(
        {"_id": agent_id, "current_order": order_id},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if agent is None:
        current_app.logger.warning("Agent %s was not holding order %s", agent_id, order_id)
    return agent


def move_agent(db, agent_id, lat, lng, address=None):
    try:
        lat, lng = validate_coordinates(lat, lng)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid location: {e}")
    location = {"lat": lat, "lng": lng, "address": address or "", "updated_at": utc_now()}
    agent = db.delivery_agents.find_one_and_update(
        {"_id": parse_oid(agent_id, "agent")},
        {"$set": {"location": location, "updated_at": location["updated_at"]}},
        return_document=ReturnDocument.AFTER,
    )
    if agent is None:
        raise NotFound("Delivery agent", str(agent_id))
    return agent
