from enum import Enum
from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session
from pymongo.errors import DuplicateKeyError
from werkzeug.security import check_password_hash, generate_password_hash

from .db import get_db, parse_oid, utc_now
from .errors import Forbidden, Unauthorized, ValidationError


class Role(str, Enum):
    CUSTOMER = "customer"
    PHARMACIST = "pharmacist"
    ADMIN = "admin"


STAFF_ROLES = {Role.PHARMACIST, Role.ADMIN}

bp = Blueprint("auth", __name__, url_prefix="/auth")


def current_user():
    """Session payload of the logged in user, or None."""
    return session.get("user")


def user_role(user):
    try:
        return Role(user.get("role"))
    except ValueError:
        return Role.CUSTOMER


def user_oid(user):
    return parse_oid(user["_id"], "user")


def is_staff(user):
    return user is not None and user_role(user) in STAFF_ROLES


def login_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user():
            raise Unauthorized()
        return f(*args, **kwargs)
    return wrapper


def roles_required(*roles):
    allowed = {Role(r) for r in roles}

    def deco(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            user = current_user()
            if not user:
                raise Unauthorized()
            if user_role(user) not in allowed:
                raise Forbidden("Access denied for role '%s'" % user.get("role"))
            return f(*args, **kwargs)
        return wrapper
    return deco


def create_user(db, name, email, password, role=Role.CUSTOMER, phone=""):
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email or not password:
        raise ValidationError("Name, email and password are required")
    doc = {
        "name": name,
        "email": email,
        "phone": (phone or "").strip(),
        "password": generate_password_hash(password),
        "role": Role(role).value,
        "addresses": [],
        "wishlist": [],
        "is_active": True,
        "created_at": utc_now(),
    }
    try:
        doc["_id"] = db.users.insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    return doc


def session_payload(user):
    return {
        "_id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "role": user["role"],
    }


def create_default_admin(db, config):
    admin_user = db.users.find_one({"email": config["ADMIN_EMAIL"]})
    if admin_user:
        current_app.logger.debug("Admin user already exists: %s", admin_user["email"])
        return admin_user
    admin = create_user(db, "System Administrator", config["ADMIN_EMAIL"],
                        config["ADMIN_PASSWORD"], role=Role.ADMIN)
    current_app.logger.info("Default admin user created: %s", admin["email"])
    return admin


@bp.route("/register", methods=["POST"])
def register():
    data = request.get_json(silent=True) or {}
    # Staff accounts are created with `flask create-user`
    if data.get("role") not in (None, Role.CUSTOMER.value):
        raise Forbidden("Only customer accounts can be registered")
    user = create_user(get_db(), data.get("name"), data.get("email"),
                       data.get("password"), phone=data.get("phone"))
    session["user"] = session_payload(user)
    current_app.logger.info("Registered customer %s", user["_id"])
    return jsonify({"ok": True, "user": session["user"]}), 201


@bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    user = get_db().users.find_one({"email": email, "is_active": True})
    if not user or not check_password_hash(user["password"], password):
        raise Unauthorized("Invalid credentials")
    session["user"] = session_payload(user)
    return jsonify({"ok": True, "user": session["user"]})


@bp.route("/logout", methods=["POST"])
def logout():
    session.pop("user", None)
    return jsonify({"ok": True})


@bp.route("/me")
@login_required
def me():
    return jsonify({"ok": True, "user": current_user()})
