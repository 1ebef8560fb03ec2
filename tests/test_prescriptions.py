"""Tests for prescription upload and pharmacist review."""

import io
import os

import pytest

from brisons.auth import user_oid
from brisons.errors import Conflict, Forbidden, ValidationError
from brisons.prescriptions import get_prescription, review, start_review
from conftest import login


def upload_files(client, *names, **form):
    data = dict(form)
    data["images"] = [(io.BytesIO(b"fake image bytes"), name) for name in names]
    return client.post("/prescriptions/upload", data=data, content_type="multipart/form-data")


@pytest.fixture
def rx(db, customer):
    now_id = db.prescriptions.insert_one({
        "user_id": user_oid(customer),
        "images": [{"url": "/static/uploads/prescriptions/x.png", "storage_id": "prescriptions/x.png"}],
        "patient_name": "Alice",
        "status": "Uploaded",
        "claimed_by": None,
        "reviewed_by": None,
        "reviewed_at": None,
        "pharmacist_notes": None,
        "detected_medicines": [],
    }).inserted_id
    return get_prescription(db, now_id)


class TestUpload:
    def test_upload(self, app, customer_client):
        response = upload_files(customer_client, "rx.png", "rx-page2.pdf",
                                patient_name="Alice", doctor_name="Dr. Rao")
        assert response.status_code == 201
        rx = response.get_json()["prescription"]
        assert rx["status"] == "Uploaded"
        assert rx["doctor_name"] == "Dr. Rao"
        assert len(rx["images"]) == 2
        for image in rx["images"]:
            assert image["url"].startswith("/static/uploads/prescriptions/")
            assert os.path.exists(os.path.join(app.config["UPLOAD_FOLDER"], image["storage_id"]))

    def test_upload_requires_files(self, customer_client):
        response = customer_client.post("/prescriptions/upload", data={"patient_name": "Alice"},
                                        content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["code"] == "validation_error"

    def test_upload_rejects_other_types(self, app, customer_client):
        response = upload_files(customer_client, "rx.png", "notes.exe")
        assert response.status_code == 400
        # The file stored before the bad one is cleaned up
        folder = os.path.join(app.config["UPLOAD_FOLDER"], "prescriptions")
        assert not os.path.isdir(folder) or os.listdir(folder) == []

    def test_upload_limit(self, customer_client):
        response = upload_files(customer_client, *[f"page{i}.png" for i in range(6)])
        assert response.status_code == 400

    def test_upload_requires_login(self, app):
        response = upload_files(app.test_client(), "rx.png")
        assert response.status_code == 401


class TestReview:
    def test_approve(self, db, rx, pharmacist):
        reviewed = review(db, rx["_id"], pharmacist, "Approved", "Looks valid",
                          [{"name": "Amoxicillin", "dosage": "500mg"}, "Paracetamol"])
        assert reviewed["status"] == "Approved"
        assert reviewed["pharmacist_notes"] == "Looks valid"
        assert reviewed["reviewed_by"] == user_oid(pharmacist)
        assert reviewed["reviewed_at"] is not None
        assert [m["name"] for m in reviewed["detected_medicines"]] == ["Amoxicillin", "Paracetamol"]

    @pytest.mark.parametrize("first", ["Approved", "Rejected"])
    def test_re_review_conflicts(self, db, rx, pharmacist, admin, first):
        review(db, rx["_id"], pharmacist, first, "first pass")
        with pytest.raises(Conflict):
            review(db, rx["_id"], admin, "Approved", "second pass")
        stored = get_prescription(db, rx["_id"])
        assert stored["pharmacist_notes"] == "first pass"
        assert stored["reviewed_by"] == user_oid(pharmacist)

    def test_customer_cannot_review(self, db, rx, customer):
        with pytest.raises(Forbidden):
            review(db, rx["_id"], customer, "Approved")
        assert get_prescription(db, rx["_id"])["reviewed_by"] is None

    def test_decision_must_be_final(self, db, rx, pharmacist):
        with pytest.raises(ValidationError):
            review(db, rx["_id"], pharmacist, "Under Review")

    def test_claimed_prescription(self, db, rx, pharmacist, admin):
        claimed = start_review(db, rx["_id"], pharmacist)
        assert claimed["status"] == "Under Review"
        assert claimed["claimed_by"] == user_oid(pharmacist)
        assert claimed["reviewed_by"] is None

        with pytest.raises(Conflict):
            start_review(db, rx["_id"], admin)

        reviewed = review(db, rx["_id"], pharmacist, "Rejected", "Illegible")
        assert reviewed["status"] == "Rejected"

    def test_other_pharmacist_cannot_decide_claimed(self, db, rx, pharmacist):
        from brisons.auth import Role, create_user, session_payload

        colleague = session_payload(create_user(db, "Carol", "carol@test.com", "pw", role=Role.PHARMACIST))
        start_review(db, rx["_id"], pharmacist)
        with pytest.raises(Forbidden):
            review(db, rx["_id"], colleague, "Approved")

    def test_admin_can_decide_claimed(self, db, rx, pharmacist, admin):
        start_review(db, rx["_id"], pharmacist)
        assert review(db, rx["_id"], admin, "Approved")["reviewed_by"] == user_oid(admin)


class TestPrescriptionRoutes:
    def test_owner_and_staff_can_read(self, rx, customer_client, pharmacist_client):
        assert customer_client.get(f"/prescriptions/{rx['_id']}").status_code == 200
        assert pharmacist_client.get(f"/prescriptions/{rx['_id']}").status_code == 200

    def test_other_customer_forbidden(self, app, rx, other_customer):
        response = login(app, other_customer).get(f"/prescriptions/{rx['_id']}")
        assert response.status_code == 403
        assert response.get_json()["code"] == "forbidden"

    def test_review_route(self, rx, pharmacist_client):
        response = pharmacist_client.put(f"/prescriptions/{rx['_id']}/review",
                                         json={"status": "Approved", "pharmacist_notes": "ok"})
        assert response.status_code == 200
        assert response.get_json()["prescription"]["status"] == "Approved"

        again = pharmacist_client.put(f"/prescriptions/{rx['_id']}/review", json={"status": "Rejected"})
        assert again.status_code == 409

    def test_customer_review_forbidden(self, rx, customer_client):
        response = customer_client.put(f"/prescriptions/{rx['_id']}/review", json={"status": "Approved"})
        assert response.status_code == 403

    def test_review_queue_oldest_first(self, customer_client, pharmacist_client):
        upload_files(customer_client, "first.png")
        upload_files(customer_client, "second.png")
        queue = pharmacist_client.get("/prescriptions/review").get_json()["prescriptions"]
        assert len(queue) == 2
        assert queue[0]["created_at"] <= queue[1]["created_at"]
        assert customer_client.get("/prescriptions/review").status_code == 403

    def test_list_own(self, customer_client, other_customer, app):
        upload_files(customer_client, "mine.png")
        upload_files(login(app, other_customer), "theirs.png")
        mine = customer_client.get("/prescriptions").get_json()["prescriptions"]
        assert len(mine) == 1
