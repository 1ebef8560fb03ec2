"""Order workflow.

An order is created from a snapshot of the user's cart and then only moves
forward through ``FLOW``. Every status change goes through ``transition``,
which appends exactly one tracking update and is conditioned on the status
the caller saw, so two concurrent transitions cannot both apply.
"""
import uuid
from datetime import timedelta
from enum import Enum

from flask import Blueprint, current_app, jsonify, request
from pymongo import DESCENDING, ReturnDocument

from . import agents
from .auth import Role, current_user, is_staff, login_required, roles_required, user_oid, user_role
from .cart import clear_cart, load_cart
from .config import pharmacy_details, pharmacy_location
from .db import get_db, parse_oid, to_json, utc_now
from .errors import Conflict, Forbidden, InvalidTransition, NotFound, PreconditionFailed, ValidationError
from .pricing import money, price_order


class OrderStatus(str, Enum):
    PLACED = "Placed"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    PACKED = "Packed"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


FLOW = [
    OrderStatus.PLACED, OrderStatus.CONFIRMED, OrderStatus.PROCESSING,
    OrderStatus.PACKED, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED,
]
TERMINAL = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
CANCELLABLE = {OrderStatus.PLACED.value, OrderStatus.CONFIRMED.value, OrderStatus.PROCESSING.value}

DEFAULT_MESSAGES = {
    OrderStatus.PLACED: "Order Placed",
    OrderStatus.CONFIRMED: "Order Confirmed",
    OrderStatus.PROCESSING: "Your order is being processed by the pharmacy",
    OrderStatus.PACKED: "Your order has been packed",
    OrderStatus.OUT_FOR_DELIVERY: "Your order is out for delivery",
    OrderStatus.DELIVERED: "Order Delivered",
    OrderStatus.CANCELLED: "Order Cancelled",
}

PAYMENT_METHODS = {"cod", "razorpay", "wallet"}
ADDRESS_FIELDS = ["name", "phone", "address", "city", "state", "pincode"]

# Fields exposed by the public tracking lookup
TRACKING_FIELDS = [
    "order_number", "status", "tracking_updates", "estimated_delivery", "total_amount",
    "created_at", "items", "delivery_agent", "pharmacy_details", "pharmacy_location",
    "delivery_location", "current_location", "delivered_at",
]

bp = Blueprint("orders", __name__, url_prefix="/orders")


def new_order_number(now):
    return "BRS%d%s" % (int(now.timestamp() * 1000), uuid.uuid4().hex[:5].upper())


def tracking_update(status, message, timestamp, location=None):
    return {"status": status, "message": message, "timestamp": timestamp, "location": location}


def get_order(db, order_id):
    order = db.orders.find_one({"_id": parse_oid(order_id, "order")})
    if not order:
        raise NotFound("Order", str(order_id))
    return order


def check_order_access(order, user):
    if order["user_id"] != user_oid(user) and not is_staff(user):
        raise Forbidden("Not authorized to view this order")


def transition(db, order, new_status, message, location=None, extra_set=None, extra_filter=None):
    """Move ``order`` to ``new_status`` and append exactly one tracking update.

    ``new_status`` may equal the current status for updates that only add to
    the tracking log (agent assignment on a processed order, location pings).
    Returns the updated document.
    """
    current = order["status"]
    new_status = OrderStatus(new_status).value
    if current in TERMINAL:
        raise InvalidTransition(current, new_status)

    now = utc_now()
    history = order.get("tracking_updates") or []
    if history and history[-1]["timestamp"] > now:
        now = history[-1]["timestamp"]

    fields = {"status": new_status, "updated_at": now}
    fields.update(extra_set or {})
    # The log must still be the one `now` was checked against
    query = {"_id": order["_id"], "status": current, "tracking_updates": {"$size": len(history)}}
    query.update(extra_filter or {})

    updated = db.orders.find_one_and_update(
        query,
        {"$set": fields, "$push": {"tracking_updates": tracking_update(new_status, message, now, location)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        fresh = get_order(db, order["_id"])
        if fresh["status"] in TERMINAL:
            raise InvalidTransition(fresh["status"], new_status)
        raise Conflict("Order %s was modified concurrently" % order["order_number"])

    if new_status != current:
        current_app.logger.info("Order %s: %s -> %s", order["order_number"], current, new_status)
    return updated


def _shipping_address(db, user_id, payload):
    if payload.get("address_id"):
        aid = parse_oid(payload["address_id"], "address")
        user = db.users.find_one({"_id": user_id}, {"addresses": 1}) or {}
        for addr in user.get("addresses", []):
            if addr.get("_id") == aid:
                return {f: addr.get(f, "") for f in ADDRESS_FIELDS}
        raise NotFound("Address", payload["address_id"])

    address = payload.get("shipping_address") or {}
    missing = [f for f in ADDRESS_FIELDS if not str(address.get(f) or "").strip()]
    if missing:
        raise ValidationError("Shipping address missing: %s" % ", ".join(missing))
    return {f: str(address[f]).strip() for f in ADDRESS_FIELDS}


def _approved_prescription(db, user_id, prescription_id, names):
    if not prescription_id:
        raise ValidationError("A prescription is required for: %s" % ", ".join(names))
    rx = db.prescriptions.find_one({"_id": parse_oid(prescription_id, "prescription"), "user_id": user_id})
    if not rx:
        raise NotFound("Prescription", prescription_id)
    if rx["status"] != "Approved":
        raise ValidationError("Prescription has not been approved")
    return rx


def _restore_stock(db, lines):
    for line in lines:
        db.medicines.update_one({"_id": line["medicine_id"]}, {"$inc": {"stock_quantity": line["quantity"]}})


def _reserve_stock(db, lines):
    reserved = []
    for line in lines:
        result = db.medicines.update_one(
            {"_id": line["medicine_id"], "stock_quantity": {"$gte": line["quantity"]}},
            {"$inc": {"stock_quantity": -line["quantity"]}},
        )
        if result.modified_count != 1:
            _restore_stock(db, reserved)
            raise ValidationError(f"Insufficient stock for {line['name']}")
        reserved.append(line)


def place_order(db, user, payload, config):
    uid = user_oid(user)
    cart = load_cart(db, uid)
    if not cart["items"]:
        raise ValidationError("Cart is empty")

    lines = []
    needs_prescription = []
    for item in cart["items"]:
        med = db.medicines.find_one({"_id": item["medicine_id"]})
        if not med or not med.get("is_active", True):
            raise NotFound("Medicine", str(item["medicine_id"]))
        qty = item["quantity"]
        if med.get("stock_quantity", 0) < qty:
            raise ValidationError(f"Insufficient stock for {med['name']}")
        lines.append({
            "medicine_id": med["_id"],
            "name": med["name"],
            "image": med.get("image"),
            "quantity": qty,
            "unit_price": money(med["price"]),
            "line_total": money(med["price"] * qty),
        })
        if med.get("prescription_required"):
            needs_prescription.append(med["name"])

    prescription = None
    if needs_prescription:
        prescription = _approved_prescription(db, uid, payload.get("prescription_id"), needs_prescription)

    payment_method = payload.get("payment_method") or "cod"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Payment method must be one of %s" % ", ".join(sorted(PAYMENT_METHODS)))
    payment_id = payload.get("payment_id")

    shipping_address = _shipping_address(db, uid, payload)
    totals = price_order([line["line_total"] for line in lines], config, payload.get("promo_code"))

    _reserve_stock(db, lines)

    now = utc_now()
    origin = pharmacy_location(config)
    order = {
        "order_number": new_order_number(now),
        "user_id": uid,
        "items": lines,
        **totals,
        "promo_code": (payload.get("promo_code") or "").strip().upper() or None,
        "shipping_address": shipping_address,
        "status": OrderStatus.PLACED.value,
        "payment_method": payment_method,
        "payment_status": "Paid" if payment_method != "cod" and payment_id else "Pending",
        "payment_id": payment_id,
        "delivery_agent": None,
        "prescription_id": prescription["_id"] if prescription else None,
        "estimated_delivery": now + timedelta(days=config["DELIVERY_DAYS"]),
        "pharmacy_details": pharmacy_details(config),
        "pharmacy_location": origin,
        "delivery_location": {
            "address": "%s, %s, %s" % (shipping_address["address"], shipping_address["city"], shipping_address["state"]),
        },
        "current_location": None,
        "tracking_updates": [
            tracking_update(OrderStatus.PLACED.value, DEFAULT_MESSAGES[OrderStatus.PLACED], now,
                            origin["address"] if origin else None),
        ],
        "customer_notes": payload.get("notes", ""),
        "delivered_at": None,
        "cancelled_at": None,
        "cancellation_reason": None,
        "created_at": now,
        "updated_at": now,
    }
    try:
        order["_id"] = db.orders.insert_one(order).inserted_id
    except Exception:
        _restore_stock(db, lines)
        raise

    clear_cart(db, uid)
    if prescription:
        db.prescriptions.update_one({"_id": prescription["_id"]}, {"$set": {"order_id": order["_id"]}})

    current_app.logger.info("Order %s placed by user %s (total %.2f)",
                            order["order_number"], uid, order["total_amount"])
    return order


def advance_order(db, order_id, new_status, message=None, location=None):
    """Staff-driven forward move along ``FLOW``."""
    order = get_order(db, order_id)
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Invalid status '{new_status}'")

    if target is OrderStatus.DELIVERED:
        raise PreconditionFailed("Deliveries are completed through the delivery endpoint")
    if target is OrderStatus.CANCELLED:
        raise PreconditionFailed("Orders are cancelled through the cancel endpoint")
    if order["status"] in TERMINAL:
        raise InvalidTransition(order["status"], target.value)
    if FLOW.index(target) <= FLOW.index(OrderStatus(order["status"])):
        raise InvalidTransition(order["status"], target.value)

    agent = order.get("delivery_agent")
    if target is OrderStatus.OUT_FOR_DELIVERY and not agent:
        raise PreconditionFailed("No delivery agent assigned to order %s" % order["order_number"])

    updated = transition(db, order, target, message or DEFAULT_MESSAGES[target], location)
    if target is OrderStatus.OUT_FOR_DELIVERY:
        agents.mark_busy(db, agent["id"], order["_id"])
    return updated


def cancel_order(db, order_id, user, reason=None):
    order = get_order(db, order_id)
    if order["user_id"] != user_oid(user) and user_role(user) is not Role.ADMIN:
        raise Forbidden("You can only cancel your own orders")
    if order["status"] not in CANCELLABLE:
        raise PreconditionFailed("Order cannot be cancelled once it is '%s'" % order["status"])

    now = utc_now()
    message = DEFAULT_MESSAGES[OrderStatus.CANCELLED]
    if reason:
        message = f"{message}: {reason}"
    updated = transition(db, order, OrderStatus.CANCELLED, message, extra_set={
        "cancelled_at": now,
        "cancellation_reason": reason,
    })

    _restore_stock(db, order["items"])
    if order.get("delivery_agent"):
        agents.release_agent(db, order["delivery_agent"]["id"], order["_id"])
    return updated


def list_orders(db, user, args):
    query = {}
    if not is_staff(user):
        query["user_id"] = user_oid(user)
    elif args.get("status"):
        query["status"] = args["status"]
    try:
        page = max(1, int(args.get("page", 1)))
        limit = min(50, max(1, int(args.get("limit", 10))))
    except ValueError:
        raise ValidationError("page and limit must be integers")
    total = db.orders.count_documents(query)
    orders = db.orders.find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return {
        "items": [to_json(o) for o in orders],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


def track_order(db, order_number):
    order = db.orders.find_one({"order_number": order_number}, {f: 1 for f in TRACKING_FIELDS})
    if not order:
        raise NotFound("Order", order_number)
    order.pop("_id", None)
    return order


@bp.route("", methods=["POST"])
@login_required
def create():
    order = place_order(get_db(), current_user(), request.get_json(silent=True) or {}, current_app.config)
    return jsonify({"ok": True, "msg": "Order created successfully", "order": to_json(order)}), 201


@bp.route("")
@login_required
def orders_list():
    return jsonify({"ok": True, **list_orders(get_db(), current_user(), request.args)})


@bp.route("/track/<order_number>")
def track(order_number):
    return jsonify({"ok": True, "order": to_json(track_order(get_db(), order_number))})


@bp.route("/<order_id>")
@login_required
def order_detail(order_id):
    order = get_order(get_db(), order_id)
    check_order_access(order, current_user())
    return jsonify({"ok": True, "order": to_json(order)})


@bp.route("/<order_id>/status", methods=["POST"])
@roles_required(Role.PHARMACIST, Role.ADMIN)
def order_update_status(order_id):
    data = request.get_json(silent=True) or {}
    order = advance_order(get_db(), order_id, data.get("status"), data.get("message"), data.get("location"))
    return jsonify({"ok": True, "status": order["status"], "order": to_json(order)})


@bp.route("/<order_id>/cancel", methods=["POST"])
@login_required
def cancel(order_id):
    data = request.get_json(silent=True) or {}
    order = cancel_order(get_db(), order_id, current_user(), data.get("reason"))
    return jsonify({"ok": True, "msg": "Order cancelled successfully. Stock has been restored.",
                    "order": to_json(order)})
