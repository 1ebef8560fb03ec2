from flask import Blueprint, current_app, jsonify, request

from .auth import current_user, login_required, user_oid
from .catalog import get_medicine, serialize_medicine
from .db import get_db, parse_oid, utc_now
from .errors import NotFound, ValidationError
from .pricing import money

bp = Blueprint("cart", __name__, url_prefix="/cart")


def _quantity(value, default=None):
    if value is None and default is not None:
        return default
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number")
    if qty < 1:
        raise ValidationError("Quantity must be at least 1")
    return qty


def load_cart(db, user_id):
    cart = db.carts.find_one({"user_id": user_id})
    return cart or {"user_id": user_id, "items": []}


def _save(db, user_id, items):
    db.carts.update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": utc_now()}},
        upsert=True,
    )


def cart_summary(db, user_id, tax_rate):
    """Cart lines populated with current catalog data; vanished medicines are skipped."""
    lines = []
    subtotal = 0.0
    for item in load_cart(db, user_id)["items"]:
        med = db.medicines.find_one({"_id": item["medicine_id"]})
        if not med:
            continue
        line_total = med["price"] * item["quantity"]
        subtotal += line_total
        lines.append({
            "medicine": serialize_medicine(med),
            "quantity": item["quantity"],
            "line_total": money(line_total),
        })
    tax = money(subtotal * tax_rate)
    return {
        "items": lines,
        "total_items": sum(line["quantity"] for line in lines),
        "subtotal": money(subtotal),
        "tax": tax,
        "total": money(subtotal + tax),
    }


def add_item(db, user_id, medicine_id, quantity=1):
    med = get_medicine(db, medicine_id, active_only=True)
    items = load_cart(db, user_id)["items"]
    for item in items:
        if item["medicine_id"] == med["_id"]:
            wanted = item["quantity"] + quantity
            break
    else:
        item = None
        wanted = quantity

    if med.get("stock_quantity", 0) < wanted:
        raise ValidationError(f"Insufficient stock for {med['name']}")

    if item is not None:
        item["quantity"] = wanted
    else:
        items.append({"medicine_id": med["_id"], "quantity": quantity})
    _save(db, user_id, items)


def update_item(db, user_id, medicine_id, quantity):
    mid = parse_oid(medicine_id, "medicine")
    cart = db.carts.find_one({"user_id": user_id})
    if not cart:
        raise NotFound("Cart")
    for item in cart["items"]:
        if item["medicine_id"] == mid:
            break
    else:
        raise NotFound("Cart item", str(medicine_id))
    med = get_medicine(db, mid, active_only=True)
    if med.get("stock_quantity", 0) < quantity:
        raise ValidationError(f"Insufficient stock for {med['name']}")
    item["quantity"] = quantity
    _save(db, user_id, cart["items"])


def remove_item(db, user_id, medicine_id):
    mid = parse_oid(medicine_id, "medicine")
    cart = db.carts.find_one({"user_id": user_id})
    if not cart:
        raise NotFound("Cart")
    _save(db, user_id, [i for i in cart["items"] if i["medicine_id"] != mid])


def clear_cart(db, user_id):
    db.carts.update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utc_now()}})


def _respond(message=None):
    uid = user_oid(current_user())
    body = {"ok": True, "cart": cart_summary(get_db(), uid, current_app.config["TAX_RATE"])}
    if message:
        body["msg"] = message
    return jsonify(body)


@bp.route("")
@login_required
def cart_view():
    return _respond()


@bp.route("/add", methods=["POST"])
@login_required
def cart_add():
    data = request.get_json(silent=True) or {}
    add_item(get_db(), user_oid(current_user()), data.get("medicine_id"), _quantity(data.get("quantity"), 1))
    return _respond("Item added to cart")


@bp.route("/update", methods=["PUT"])
@login_required
def cart_update():
    data = request.get_json(silent=True) or {}
    update_item(get_db(), user_oid(current_user()), data.get("medicine_id"), _quantity(data.get("quantity")))
    return _respond("Cart updated")


@bp.route("/remove/<medicine_id>", methods=["DELETE"])
@login_required
def cart_remove(medicine_id):
    remove_item(get_db(), user_oid(current_user()), medicine_id)
    return _respond("Item removed from cart")


@bp.route("/clear", methods=["DELETE"])
@login_required
def cart_clear():
    clear_cart(get_db(), user_oid(current_user()))
    return _respond("Cart cleared")
