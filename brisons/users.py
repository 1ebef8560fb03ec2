from bson.objectid import ObjectId
from flask import Blueprint, jsonify, request

from .auth import current_user, login_required, user_oid
from .catalog import get_medicine, serialize_medicine
from .db import get_db, parse_oid, to_json
from .errors import NotFound, ValidationError
from .orders import ADDRESS_FIELDS

ADDRESS_TYPES = ["Home", "Work", "Other"]

bp = Blueprint("users", __name__, url_prefix="/users/me")


def get_user(db, user_id):
    user = db.users.find_one({"_id": user_id}, {"password": 0})
    if not user:
        raise NotFound("User", str(user_id))
    return user


def add_address(db, user_id, data):
    missing = [f for f in ADDRESS_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError("Address missing: %s" % ", ".join(missing))
    kind = data.get("type", "Home")
    if kind not in ADDRESS_TYPES:
        raise ValidationError("Address type must be one of %s" % ", ".join(ADDRESS_TYPES))

    addresses = get_user(db, user_id).get("addresses", [])
    address = {f: str(data[f]).strip() for f in ADDRESS_FIELDS}
    address.update({"_id": ObjectId(), "type": kind, "is_default": False})
    # First address, or an explicit request, becomes the default
    make_default = not addresses or str(data.get("is_default", "")).lower() in {"true", "1"}
    if make_default:
        for a in addresses:
            a["is_default"] = False
        address["is_default"] = True
    addresses.append(address)
    db.users.update_one({"_id": user_id}, {"$set": {"addresses": addresses}})
    return addresses


def set_default_address(db, user_id, address_id):
    aid = parse_oid(address_id, "address")
    addresses = get_user(db, user_id).get("addresses", [])
    if not any(a["_id"] == aid for a in addresses):
        raise NotFound("Address", address_id)
    for a in addresses:
        a["is_default"] = a["_id"] == aid
    db.users.update_one({"_id": user_id}, {"$set": {"addresses": addresses}})
    return addresses


def remove_address(db, user_id, address_id):
    aid = parse_oid(address_id, "address")
    addresses = get_user(db, user_id).get("addresses", [])
    remaining = [a for a in addresses if a["_id"] != aid]
    if len(remaining) == len(addresses):
        raise NotFound("Address", address_id)
    if remaining and not any(a["is_default"] for a in remaining):
        remaining[0]["is_default"] = True
    db.users.update_one({"_id": user_id}, {"$set": {"addresses": remaining}})
    return remaining


def wishlist(db, user_id):
    ids = get_user(db, user_id).get("wishlist", [])
    meds = {m["_id"]: m for m in db.medicines.find({"_id": {"$in": ids}})}
    return [serialize_medicine(meds[i]) for i in ids if i in meds]


def add_to_wishlist(db, user_id, medicine_id):
    med = get_medicine(db, medicine_id)
    db.users.update_one({"_id": user_id}, {"$addToSet": {"wishlist": med["_id"]}})


def remove_from_wishlist(db, user_id, medicine_id):
    db.users.update_one({"_id": user_id}, {"$pull": {"wishlist": parse_oid(medicine_id, "medicine")}})


@bp.route("")
@login_required
def profile():
    return jsonify({"ok": True, "user": to_json(get_user(get_db(), user_oid(current_user())))})


@bp.route("/addresses", methods=["POST"])
@login_required
def address_add():
    addresses = add_address(get_db(), user_oid(current_user()), request.get_json(silent=True) or {})
    return jsonify({"ok": True, "addresses": to_json(addresses)}), 201


@bp.route("/addresses/<address_id>/default", methods=["PUT"])
@login_required
def address_default(address_id):
    addresses = set_default_address(get_db(), user_oid(current_user()), address_id)
    return jsonify({"ok": True, "addresses": to_json(addresses)})


@bp.route("/addresses/<address_id>", methods=["DELETE"])
@login_required
def address_remove(address_id):
    addresses = remove_address(get_db(), user_oid(current_user()), address_id)
    return jsonify({"ok": True, "addresses": to_json(addresses)})


@bp.route("/wishlist")
@login_required
def wishlist_view():
    return jsonify({"ok": True, "items": wishlist(get_db(), user_oid(current_user()))})


@bp.route("/wishlist/<medicine_id>", methods=["POST"])
@login_required
def wishlist_add(medicine_id):
    db, uid = get_db(), user_oid(current_user())
    add_to_wishlist(db, uid, medicine_id)
    return jsonify({"ok": True, "items": wishlist(db, uid)})


@bp.route("/wishlist/<medicine_id>", methods=["DELETE"])
@login_required
def wishlist_remove(medicine_id):
    db, uid = get_db(), user_oid(current_user())
    remove_from_wishlist(db, uid, medicine_id)
    return jsonify({"ok": True, "items": wishlist(db, uid)})
