from enum import Enum

from flask import Blueprint, current_app, jsonify, request
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .auth import Role, current_user, is_staff, login_required, roles_required, user_oid, user_role
from .db import get_db, parse_oid, to_json, utc_now
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .storage import get_store


class PrescriptionStatus(str, Enum):
    UPLOADED = "Uploaded"
    UNDER_REVIEW = "Under Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"


PENDING = [PrescriptionStatus.UPLOADED.value, PrescriptionStatus.UNDER_REVIEW.value]
DECISIONS = {PrescriptionStatus.APPROVED.value, PrescriptionStatus.REJECTED.value}
METADATA_FIELDS = ["patient_name", "doctor_name", "hospital_name", "notes"]

bp = Blueprint("prescriptions", __name__, url_prefix="/prescriptions")


def get_prescription(db, prescription_id):
    rx = db.prescriptions.find_one({"_id": parse_oid(prescription_id, "prescription")})
    if not rx:
        raise NotFound("Prescription", str(prescription_id))
    return rx


def check_prescription_access(rx, user):
    if rx["user_id"] != user_oid(user) and not is_staff(user):
        raise Forbidden("Not authorized to view this prescription")


def upload(db, store, user_id, files, metadata, config):
    files = [f for f in files if f and f.filename]
    if not files:
        raise ValidationError("Please upload at least one prescription image")
    if len(files) > config["MAX_PRESCRIPTION_FILES"]:
        raise ValidationError("At most %d files can be uploaded" % config["MAX_PRESCRIPTION_FILES"])

    allowed = config["ALLOWED_PRESCRIPTION_EXTENSIONS"]
    images = []
    try:
        for f in files:
            images.append(store.upload(f, "prescriptions", allowed=allowed))
    except Exception:
        for stored in images:
            store.destroy(stored["storage_id"])
        raise

    now = utc_now()
    rx = {
        "user_id": user_id,
        "images": images,
        **{f: (metadata.get(f) or "").strip() for f in METADATA_FIELDS},
        "status": PrescriptionStatus.UPLOADED.value,
        "claimed_by": None,
        "reviewed_by": None,
        "reviewed_at": None,
        "pharmacist_notes": None,
        "detected_medicines": [],
        "order_id": None,
        "created_at": now,
        "updated_at": now,
    }
    rx["_id"] = db.prescriptions.insert_one(rx).inserted_id
    current_app.logger.info("Prescription %s uploaded by user %s (%d files)", rx["_id"], user_id, len(images))
    return rx


def _clean_detected(detected):
    if detected is None:
        return []
    if not isinstance(detected, list):
        raise ValidationError("detected_medicines must be a list")
    cleaned = []
    for entry in detected:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ValidationError("Each detected medicine needs a name")
        cleaned.append({
            "name": entry["name"],
            "confidence": entry.get("confidence"),
            "dosage": entry.get("dosage"),
            "duration": entry.get("duration"),
        })
    return cleaned


def start_review(db, prescription_id, reviewer):
    if not is_staff(reviewer):
        raise Forbidden("Only pharmacists can review prescriptions")
    rx = get_prescription(db, prescription_id)
    updated = db.prescriptions.find_one_and_update(
        {"_id": rx["_id"], "status": PrescriptionStatus.UPLOADED.value},
        {"$set": {
            "status": PrescriptionStatus.UNDER_REVIEW.value,
            "claimed_by": user_oid(reviewer),
            "updated_at": utc_now(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict("Prescription is already '%s'" % get_prescription(db, rx["_id"])["status"])
    return updated


def review(db, prescription_id, reviewer, status, notes=None, detected_medicines=None):
    if not is_staff(reviewer):
        raise Forbidden("Only pharmacists can review prescriptions")
    if status not in DECISIONS:
        raise ValidationError("Review status must be 'Approved' or 'Rejected'")

    rx = get_prescription(db, prescription_id)
    if rx["status"] in DECISIONS:
        raise Conflict("Prescription has already been reviewed")

    reviewer_id = user_oid(reviewer)
    if (rx["status"] == PrescriptionStatus.UNDER_REVIEW.value and rx.get("claimed_by") != reviewer_id
            and user_role(reviewer) is not Role.ADMIN):
        raise Forbidden("Prescription is being reviewed by another pharmacist")

    now = utc_now()
    updated = db.prescriptions.find_one_and_update(
        {"_id": rx["_id"], "status": rx["status"], "reviewed_by": None},
        {"$set": {
            "status": status,
            "pharmacist_notes": notes,
            "detected_medicines": _clean_detected(detected_medicines),
            "reviewed_by": reviewer_id,
            "reviewed_at": now,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise Conflict("Prescription has already been reviewed")
    current_app.logger.info("Prescription %s %s by %s", rx["_id"], status.lower(), reviewer_id)
    return updated


@bp.route("/upload", methods=["POST"])
@login_required
def upload_prescription():
    user = current_user()
    rx = upload(get_db(), get_store(), user_oid(user), request.files.getlist("images"),
                request.form, current_app.config)
    return jsonify({"ok": True, "msg": "Prescription uploaded successfully", "prescription": to_json(rx)}), 201


@bp.route("")
@login_required
def prescriptions_index():
    items = get_db().prescriptions.find({"user_id": user_oid(current_user())}).sort("created_at", DESCENDING)
    return jsonify({"ok": True, "prescriptions": to_json(list(items))})


@bp.route("/review")
@roles_required(Role.PHARMACIST, Role.ADMIN)
def review_queue():
    status = request.args.get("status", PrescriptionStatus.UPLOADED.value)
    if status not in {s.value for s in PrescriptionStatus}:
        raise ValidationError(f"Invalid status '{status}'")
    # Oldest first
    items = get_db().prescriptions.find({"status": status}).sort("created_at", ASCENDING)
    return jsonify({"ok": True, "prescriptions": to_json(list(items))})


@bp.route("/<prescription_id>")
@login_required
def prescription_detail(prescription_id):
    rx = get_prescription(get_db(), prescription_id)
    check_prescription_access(rx, current_user())
    return jsonify({"ok": True, "prescription": to_json(rx)})


@bp.route("/<prescription_id>/start-review", methods=["POST"])
@login_required
def prescription_start_review(prescription_id):
    rx = start_review(get_db(), prescription_id, current_user())
    return jsonify({"ok": True, "prescription": to_json(rx)})


@bp.route("/<prescription_id>/review", methods=["PUT"])
@login_required
def prescription_review(prescription_id):
    data = request.get_json(silent=True) or {}
    rx = review(get_db(), prescription_id, current_user(), data.get("status"),
                data.get("pharmacist_notes"), data.get("detected_medicines"))
    return jsonify({"ok": True, "msg": "Prescription reviewed successfully", "prescription": to_json(rx)})
