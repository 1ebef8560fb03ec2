import re

from flask import Blueprint, current_app, jsonify, request
from pymongo import ASCENDING, DESCENDING

from .auth import Role, roles_required
from .db import get_db, parse_oid, to_json, utc_now
from .errors import NotFound, ValidationError
from .storage import get_store

CATEGORIES = [
    "Pain Relief", "Allergy", "Supplements", "Digestive Health",
    "Antibiotics", "Cold & Flu", "Vitamins", "Skin Care",
    "Baby Care", "Diabetes", "Heart Health", "Mental Health",
]

REQUIRED_FIELDS = ["name", "generic_name", "category", "manufacturer", "price"]

SORTS = {
    "name": [("name", ASCENDING)],
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
    "rating": [("rating", DESCENDING)],
    "newest": [("created_at", DESCENDING)],
}

bp = Blueprint("medicines", __name__, url_prefix="/medicines")
admin_bp = Blueprint("admin_medicines", __name__, url_prefix="/admin/medicines")


def serialize_medicine(med):
    out = to_json(med)
    stock = med.get("stock_quantity", 0)
    out["in_stock"] = bool(med.get("is_active", True)) and stock > 0
    original = med.get("original_price")
    if original and med.get("price") is not None and original > 0:
        out["discount_percentage"] = round((original - med["price"]) / original * 100)
    else:
        out["discount_percentage"] = 0
    return out


def _number(data, key, cast, minimum=0):
    try:
        value = cast(data[key])
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key}")
    if value < minimum:
        raise ValidationError(f"{key} cannot be negative")
    return value


def get_medicine(db, medicine_id, active_only=False):
    query = {"_id": parse_oid(medicine_id, "medicine")}
    if active_only:
        query["is_active"] = True
    med = db.medicines.find_one(query)
    if not med:
        raise NotFound("Medicine", str(medicine_id))
    return med


def list_medicines(db, args):
    filt = {"is_active": True}

    q = (args.get("q") or "").strip()
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"generic_name": pattern}, {"category": pattern}]

    category = (args.get("category") or "").strip()
    if category and category != "all":
        filt["category"] = category

    price_query = {}
    for arg, op in (("min_price", "$gte"), ("max_price", "$lte")):
        raw = args.get(arg)
        if raw not in (None, ""):
            try:
                price_query[op] = float(raw)
            except ValueError:
                raise ValidationError(f"Invalid {arg}")
    if price_query:
        filt["price"] = price_query

    if str(args.get("in_stock", "")).lower() == "true":
        filt["stock_quantity"] = {"$gt": 0}

    sort = SORTS.get(args.get("sort") or "name")
    if sort is None:
        raise ValidationError("Unknown sort '%s'" % args.get("sort"))

    try:
        page = max(1, int(args.get("page", 1)))
        limit = min(100, max(1, int(args.get("limit", 20))))
    except ValueError:
        raise ValidationError("page and limit must be integers")

    total = db.medicines.count_documents(filt)
    meds = db.medicines.find(filt).sort(sort).skip((page - 1) * limit).limit(limit)
    return {
        "items": [serialize_medicine(m) for m in meds],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


def create_medicine(db, data, image=None):
    missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
    if missing:
        raise ValidationError("Missing required fields: %s" % ", ".join(missing))
    if data["category"] not in CATEGORIES:
        raise ValidationError("Unknown category '%s'" % data["category"])

    price = _number(data, "price", float)
    doc = {
        "name": str(data["name"]).strip(),
        "generic_name": str(data["generic_name"]).strip(),
        "category": data["category"],
        "manufacturer": str(data["manufacturer"]).strip(),
        "description": data.get("description", ""),
        "price": price,
        "original_price": _number(data, "original_price", float) if data.get("original_price") not in (None, "") else price,
        "stock_quantity": _number(data, "stock_quantity", int) if data.get("stock_quantity") not in (None, "") else 0,
        "prescription_required": str(data.get("prescription_required", "")).lower() in {"true", "1"},
        "rating": 0.0,
        "is_active": True,
        "is_featured": str(data.get("is_featured", "")).lower() in {"true", "1"},
        "image": data.get("image"),
        "image_storage_id": None,
        "created_at": utc_now(),
        "updated_at": utc_now(),
    }
    if image:
        stored = get_store().upload(image, "medicines")
        doc["image"], doc["image_storage_id"] = stored["url"], stored["storage_id"]

    doc["_id"] = db.medicines.insert_one(doc).inserted_id
    current_app.logger.info("Medicine %s created", doc["_id"])
    return doc


def update_medicine(db, medicine_id, data, image=None):
    med = get_medicine(db, medicine_id)
    updates = {}
    for key in ("name", "generic_name", "manufacturer", "description"):
        if key in data:
            updates[key] = str(data[key]).strip()
    if "category" in data:
        if data["category"] not in CATEGORIES:
            raise ValidationError("Unknown category '%s'" % data["category"])
        updates["category"] = data["category"]
    if "price" in data:
        updates["price"] = _number(data, "price", float)
    if "original_price" in data:
        updates["original_price"] = _number(data, "original_price", float)
    if "stock_quantity" in data:
        updates["stock_quantity"] = _number(data, "stock_quantity", int)
    for flag in ("is_active", "is_featured", "prescription_required"):
        if flag in data:
            updates[flag] = str(data[flag]).lower() in {"true", "1"}

    if image:
        store = get_store()
        stored = store.upload(image, "medicines")
        updates["image"], updates["image_storage_id"] = stored["url"], stored["storage_id"]
        if med.get("image_storage_id"):
            store.destroy(med["image_storage_id"])

    if not updates:
        raise ValidationError("No changes provided")
    updates["updated_at"] = utc_now()
    db.medicines.update_one({"_id": med["_id"]}, {"$set": updates})
    med.update(updates)
    return med


def update_stock(db, medicine_id, stock):
    med = get_medicine(db, medicine_id)
    value = _number({"stock_quantity": stock}, "stock_quantity", int)
    db.medicines.update_one({"_id": med["_id"]}, {"$set": {"stock_quantity": value, "updated_at": utc_now()}})
    med["stock_quantity"] = value
    return med


@bp.route("")
def medicines_index():
    return jsonify({"ok": True, **list_medicines(get_db(), request.args)})


@bp.route("/featured")
def featured():
    meds = get_db().medicines.find({"is_active": True, "is_featured": True}).sort("rating", DESCENDING).limit(8)
    return jsonify({"ok": True, "items": [serialize_medicine(m) for m in meds]})


@bp.route("/categories")
def categories():
    used = set(get_db().medicines.distinct("category", {"is_active": True}))
    return jsonify({"ok": True, "categories": [c for c in CATEGORIES if c in used]})


@bp.route("/<medicine_id>")
def medicine_detail(medicine_id):
    med = get_medicine(get_db(), medicine_id, active_only=True)
    return jsonify({"ok": True, "medicine": serialize_medicine(med)})


@admin_bp.route("", methods=["POST"])
@roles_required(Role.ADMIN)
def admin_create():
    data = request.form.to_dict() if request.form else (request.get_json(silent=True) or {})
    med = create_medicine(get_db(), data, request.files.get("image"))
    return jsonify({"ok": True, "medicine": serialize_medicine(med)}), 201


@admin_bp.route("/<medicine_id>", methods=["PUT"])
@roles_required(Role.ADMIN)
def admin_update(medicine_id):
    data = request.form.to_dict() if request.form else (request.get_json(silent=True) or {})
    med = update_medicine(get_db(), medicine_id, data, request.files.get("image"))
    return jsonify({"ok": True, "medicine": serialize_medicine(med)})


@admin_bp.route("/<medicine_id>/stock", methods=["PUT"])
@roles_required(Role.ADMIN, Role.PHARMACIST)
def admin_update_stock(medicine_id):
    data = request.get_json(silent=True) or {}
    if data.get("stock_quantity") is None:
        raise ValidationError("Stock value required")
    med = update_stock(get_db(), medicine_id, data["stock_quantity"])
    return jsonify({"ok": True, "medicine": serialize_medicine(med)})


@admin_bp.route("/<medicine_id>", methods=["DELETE"])
@roles_required(Role.ADMIN)
def admin_deactivate(medicine_id):
    med = update_medicine(get_db(), medicine_id, {"is_active": "false"})
    return jsonify({"ok": True, "medicine": serialize_medicine(med)})
