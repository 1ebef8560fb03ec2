"""Binding delivery agents to orders and following them to the door."""
from flask import Blueprint, current_app, jsonify, request

from . import agents
from .auth import Role, login_required, roles_required
from .db import get_db, to_json, utc_now
from .errors import Conflict, NoAgentsAvailable, PreconditionFailed, ValidationError
from .geo import by_rating, coordinates, nearest_first
from .orders import DEFAULT_MESSAGES, TERMINAL, OrderStatus, get_order, transition

bp = Blueprint("delivery", __name__, url_prefix="/delivery")


def default_ranker(order_location):
    """Nearest-first around a known location, otherwise best rated first."""
    return nearest_first if coordinates(order_location) else by_rating


def list_available_agents(db, origin=None, ranker=None):
    ranker = ranker or default_ranker(origin)
    return ranker(agents.available_agents(db), origin)


def agent_snapshot(agent, now, estimated_delivery=None):
    return {
        "id": agent["_id"],
        "name": agent["name"],
        "phone": agent["phone"],
        "vehicle": dict(agent.get("vehicle") or {}),
        "assigned_at": now,
        "estimated_delivery": estimated_delivery,
    }


def assign_agent_to_order(db, order_id, agent_id):
    order = get_order(db, order_id)
    if order["status"] in TERMINAL:
        raise PreconditionFailed("Order %s is already %s" % (order["order_number"], order["status"]))
    if order.get("delivery_agent"):
        raise Conflict("Order %s already has a delivery agent" % order["order_number"])

    agent = agents.get_agent(db, agent_id)
    claimed = agents.claim_agent(db, agent["_id"], order["_id"])
    if claimed is None:
        raise Conflict("Agent %s is not available" % agent["name"])

    if order["status"] == OrderStatus.PLACED.value:
        new_status, message = OrderStatus.CONFIRMED, DEFAULT_MESSAGES[OrderStatus.CONFIRMED]
    else:
        new_status, message = order["status"], "Delivery agent %s assigned" % claimed["name"]

    now = utc_now()
    snapshot = agent_snapshot(claimed, now, order.get("estimated_delivery"))
    location = (claimed.get("location") or {}).get("address") or None
    try:
        updated = transition(db, order, new_status, message, location,
                             extra_set={"delivery_agent": snapshot},
                             extra_filter={"delivery_agent": None})
    except Exception:
        agents.release_agent(db, claimed["_id"], order["_id"])
        raise

    current_app.logger.info("Agent %s assigned to order %s", claimed["_id"], order["order_number"])
    return updated, claimed


def auto_assign_agent(db, order_id, ranker=None):
    order = get_order(db, order_id)
    if order["status"] in TERMINAL:
        raise PreconditionFailed("Order %s is already %s" % (order["order_number"], order["status"]))
    if order.get("delivery_agent"):
        raise Conflict("Order %s already has a delivery agent" % order["order_number"])

    candidates = list_available_agents(db, order.get("pharmacy_location"), ranker)
    for candidate in candidates:
        try:
            return assign_agent_to_order(db, order["_id"], candidate["_id"])
        except Conflict:
            # Lost this agent to a concurrent assignment
            fresh = get_order(db, order["_id"])
            if fresh.get("delivery_agent") or fresh["status"] in TERMINAL:
                raise
    raise NoAgentsAvailable(order["order_number"])


def update_agent_location(db, agent_id, lat, lng, address=None):
    agent = agents.move_agent(db, agent_id, lat, lng, address)
    order = None
    if agent.get("current_order"):
        order = db.orders.find_one({"_id": agent["current_order"]})
    if order and order["status"] not in TERMINAL:
        loc = agent["location"]
        order = transition(
            db, order, order["status"], "Delivery agent location updated",
            loc["address"] or "%.6f,%.6f" % (loc["lat"], loc["lng"]),
            extra_set={"current_location": {"lat": loc["lat"], "lng": loc["lng"], "last_updated": loc["updated_at"]}},
        )
    current_app.logger.info("Agent %s moved to %s,%s", agent["_id"], agent["location"]["lat"], agent["location"]["lng"])
    return agent, order


def complete_delivery(db, order_id):
    order = get_order(db, order_id)
    if order["status"] != OrderStatus.OUT_FOR_DELIVERY.value:
        raise PreconditionFailed("Order %s is '%s', not out for delivery" % (order["order_number"], order["status"]))

    now = utc_now()
    extra = {"delivered_at": now}
    if order.get("payment_method") == "cod":
        extra["payment_status"] = "Paid"
    location = order.get("delivery_location", {}).get("address")
    updated = transition(db, order, OrderStatus.DELIVERED, DEFAULT_MESSAGES[OrderStatus.DELIVERED],
                         location, extra_set=extra)

    agent = None
    if order.get("delivery_agent"):
        agent = agents.release_agent(db, order["delivery_agent"]["id"], order["_id"], delivered=True)
    return updated, agent


def _json():
    return request.get_json(silent=True) or {}


@bp.route("/agents")
@login_required
def agents_index():
    return jsonify({"ok": True, "agents": to_json(agents.list_agents(get_db()))})


@bp.route("/agents/available")
@login_required
def agents_available():
    db = get_db()
    origin = None
    if request.args.get("order_id"):
        origin = get_order(db, request.args["order_id"]).get("pharmacy_location")
    return jsonify({"ok": True, "agents": to_json(list_available_agents(db, origin))})


@bp.route("/agents", methods=["POST"])
@roles_required(Role.ADMIN)
def agents_create():
    agent = agents.create_agent(get_db(), _json())
    return jsonify({"ok": True, "msg": "Delivery agent created successfully", "agent": to_json(agent)}), 201


@bp.route("/agents/<agent_id>")
@login_required
def agent_detail(agent_id):
    return jsonify({"ok": True, "agent": to_json(agents.get_agent(get_db(), agent_id))})


@bp.route("/agents/<agent_id>/status", methods=["PUT"])
@roles_required(Role.PHARMACIST, Role.ADMIN)
def agent_status(agent_id):
    agent = agents.set_agent_status(get_db(), agent_id, _json().get("status"))
    return jsonify({"ok": True, "agent": to_json(agent)})


@bp.route("/agents/<agent_id>/location", methods=["PUT"])
@roles_required(Role.PHARMACIST, Role.ADMIN)
def agent_location(agent_id):
    data = _json()
    if data.get("lat") is None or data.get("lng") is None:
        raise ValidationError("lat and lng are required")
    agent, order = update_agent_location(get_db(), agent_id, data["lat"], data["lng"], data.get("address"))
    return jsonify({"ok": True, "msg": "Location updated successfully", "agent": to_json(agent),
                    "order": to_json(order) if order else None})


@bp.route("/assign", methods=["POST"])
@roles_required(Role.PHARMACIST, Role.ADMIN)
def assign():
    data = _json()
    if not data.get("order_id") or not data.get("agent_id"):
        raise ValidationError("order_id and agent_id are required")
    order, agent = assign_agent_to_order(get_db(), data["order_id"], data["agent_id"])
    return jsonify({"ok": True, "msg": "Agent assigned successfully",
                    "order": to_json(order), "agent": to_json(agent)})


@bp.route("/auto-assign", methods=["POST"])
@roles_required(Role.PHARMACIST, Role.ADMIN)
def auto_assign():
    data = _json()
    if not data.get("order_id"):
        raise ValidationError("order_id is required")
    order, agent = auto_assign_agent(get_db(), data["order_id"])
    return jsonify({"ok": True, "msg": "Agent assigned successfully",
                    "order": to_json(order), "agent": to_json(agent)})


@bp.route("/complete", methods=["POST"])
@roles_required(Role.PHARMACIST, Role.ADMIN)
def complete():
    data = _json()
    if not data.get("order_id"):
        raise ValidationError("order_id is required")
    order, agent = complete_delivery(get_db(), data["order_id"])
    return jsonify({"ok": True, "msg": "Delivery completed successfully", "order": to_json(order),
                    "agent": to_json(agent) if agent else None})
