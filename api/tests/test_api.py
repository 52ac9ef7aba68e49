"""API tests: intake, approval, member auth, payments, admin accounts, content, bookings and backups."""

from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest
from sqlalchemy import func, select

from bspcp import main, models
from bspcp.core.auth import ActionPurpose, create_action_token
from bspcp.services.backup import BackupError
from conftest import (
    ADMIN_PASSWORD,
    MEMBER_PASSWORD,
    PDF,
    PNG,
    active_member,
    admin_login,
    application_fields,
    approve,
    create_admin,
    sent_subjects,
    sent_to,
    submit_application,
)


async def count(db, model, *conditions) -> int:
    """Row count read in its own short transaction so the app's writers are not blocked."""
    value = await db.scalar(select(func.count()).select_from(model).where(*conditions))
    await db.rollback()
    return value


def future_day(days: int = 7) -> date:
    return date.today() + timedelta(days=days)


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_app_is_built_only_by_the_factory():
    assert not hasattr(main, "app")


@pytest.mark.asyncio
async def test_validation_errors_are_400(client):
    resp = await client.post("/api/member/login", json={})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert {f["field"] for f in body["fields"]} == {"identifier", "password"}


# ---------------------------------------------------------------------------
# Application intake
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_submit_application(client, admin_headers, smtp):
    resp = await client.post(
        "/api/admin/notification-recipients", json={"email": "office@example.org"}, headers=admin_headers
    )
    assert resp.status_code == 201

    member_id = await submit_application(
        client, files=[("idDocument", PDF), ("profileImage", PNG), ("certificates", PDF), ("certificates", PDF)]
    )

    assert "thabo@example.com" in sent_to(smtp)
    assert "office@example.org" in sent_to(smtp)

    resp = await client.get("/api/applications", headers=admin_headers)
    assert resp.status_code == 200
    [application] = resp.json()
    assert application["id"] == member_id
    assert application["applicationStatus"] == "pending"
    assert application["memberStatus"] == "pending"
    assert application["paymentStatus"] == "not_requested"
    assert application["specializations"] == ["Trauma", "Family"]
    assert application["languages"] == ["English", "Setswana"]
    assert application["documents"]["idDocument"].startswith("/uploads/")
    assert application["documents"]["profileImage"].endswith("photo.png")
    assert len(application["documents"]["certificates"]) == 2


@pytest.mark.asyncio
async def test_student_application_defaults(client, admin_headers):
    await submit_application(
        client, membershipType="student", institutionName="University of Botswana", occupation="", yearsExperience=""
    )
    [application] = (await client.get("/api/applications", headers=admin_headers)).json()
    assert application["membershipType"] == "student"
    assert application["occupation"] == "Student Counsellor"
    assert application["organization"] == "Gaborone Wellness Centre"
    assert application["experience"] == "0"


@pytest.mark.asyncio
async def test_duplicate_email_and_id_rejected(client):
    await submit_application(client)

    resp = await client.post("/api/membership", data=application_fields(idNumber="987654321"))
    assert resp.status_code == 409
    assert resp.json()["error"] == "Email already registered"

    resp = await client.post("/api/membership", data=application_fields(email="other@example.com"))
    assert resp.status_code == 409
    assert resp.json()["error"] == "ID number already registered"


@pytest.mark.asyncio
async def test_missing_fields_rejected(client):
    fields = application_fields()
    del fields["firstName"]
    resp = await client.post("/api/membership", data=fields)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation failed"


@pytest.mark.asyncio
async def test_invalid_upload_leaves_nothing_behind(client, settings):
    resp = await client.post(
        "/api/membership",
        data=application_fields(),
        files=[("idDocument", PDF), ("certificates", ("cv.zip", b"PK\x03\x04", "application/zip"))],
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid file type"
    assert list(settings.upload_dir.iterdir()) == []

    resp = await client.post("/api/check-email", json={"email": "thabo@example.com"})
    assert resp.json()["available"] is True


@pytest.mark.asyncio
async def test_same_named_files_in_one_submission_are_all_kept(client, admin_headers, settings):
    id_document = ("document.pdf", b"%PDF-1.4 ID CONTENT", "application/pdf")
    certificate = ("document.pdf", b"%PDF-1.4 CERT CONTENT", "application/pdf")
    with patch("bspcp.services.uploads.time.time", return_value=1700000000.0):
        await submit_application(client, files=[("idDocument", id_document), ("certificates", certificate)])

    stored = sorted(settings.upload_dir.iterdir())
    assert [p.name for p in stored] == ["1700000000000-document.pdf", "1700000000001-document.pdf"]
    assert {p.read_bytes() for p in stored} == {b"%PDF-1.4 ID CONTENT", b"%PDF-1.4 CERT CONTENT"}

    [application] = (await client.get("/api/applications", headers=admin_headers)).json()
    assert application["documents"]["idDocument"] != application["documents"]["certificates"][0]["url"]


@pytest.mark.asyncio
async def test_oversized_upload_rejected(client, settings):
    settings.max_upload_bytes = 8
    resp = await client.post("/api/membership", data=application_fields(), files=[("idDocument", PDF)])
    assert resp.status_code == 400
    assert resp.json()["error"] == "File too large"


@pytest.mark.asyncio
async def test_availability_checks(client):
    await submit_application(client)

    resp = await client.post("/api/check-email", json={"email": "THABO@example.com"})
    assert resp.json() == {"available": False, "message": "This email address is already registered"}
    resp = await client.post("/api/check-id-number", json={"idNumber": "123456789"})
    assert resp.json()["available"] is False
    resp = await client.post("/api/check-phone", json={"phone": "+26779999999"})
    assert resp.json()["available"] is True

    resp = await client.post("/api/check-id-number", json={"idNumber": "123"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_applications_require_admin(client):
    resp = await client.get("/api/applications")
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Review and approval
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_approval_assigns_number_and_username(client, admin_headers, smtp, db):
    member_id = await submit_application(client)
    smtp.reset_mock()

    body = await approve(client, admin_headers, member_id)

    application = body["application"]
    assert body["usernameGenerated"] is True
    assert application["membershipNumber"] == f"BSPCP{datetime.now(UTC):%y}{member_id:04d}"
    assert application["username"] == "tmokoena"
    assert application["applicationStatus"] == "approved"
    assert application["memberStatus"] == "pending_password_setup"
    assert sent_subjects(smtp) == ["Your BSPCP membership application has been approved"]

    audit_rows = await count(db, models.AdminAuditLog, models.AdminAuditLog.action == "application_status_update")
    assert audit_rows == 1


@pytest.mark.asyncio
async def test_reapproval_is_idempotent(client, admin_headers, db):
    member_id = await submit_application(client)
    first = await approve(client, admin_headers, member_id)
    second = await approve(client, admin_headers, member_id)

    assert second["application"]["username"] == first["application"]["username"]
    assert second["application"]["membershipNumber"] == first["application"]["membershipNumber"]
    assert await count(db, models.Credential, models.Credential.member_id == member_id) == 1


@pytest.mark.asyncio
async def test_same_name_applicants_get_distinct_usernames(client, admin_headers):
    first_id = await submit_application(client)
    second_id = await submit_application(client, email="thabo2@example.com", idNumber="555555555")

    first = await approve(client, admin_headers, first_id)
    second = await approve(client, admin_headers, second_id)

    assert first["application"]["username"] == "tmokoena"
    assert second["application"]["username"] == "tmokoena2"


@pytest.mark.asyncio
async def test_rejection_emails_applicant(client, admin_headers, smtp):
    member_id = await submit_application(client)
    smtp.reset_mock()

    resp = await client.put(
        f"/api/applications/{member_id}/status",
        json={"status": "rejected", "reviewComment": "Incomplete documents"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["usernameGenerated"] is False
    assert resp.json()["application"]["memberStatus"] == "pending"
    assert sent_subjects(smtp) == ["Update on your BSPCP membership application"]


@pytest.mark.asyncio
async def test_activation_requires_password(client, admin_headers):
    member_id = await submit_application(client)
    await approve(client, admin_headers, member_id)

    resp = await client.put(f"/api/members/{member_id}/status", json={"status": "active"}, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["currentStatus"] == "pending_password_setup"


@pytest.mark.asyncio
async def test_delete_application_cascades(client, admin_headers, settings, db):
    member_id = await submit_application(
        client,
        files=[("idDocument", PDF), ("profileImage", PNG), ("certificates", PDF), ("proofOfPayment", PDF)],
    )
    await approve(client, admin_headers, member_id)
    assert len(list(settings.upload_dir.iterdir())) == 4

    resp = await client.delete(f"/api/applications/{member_id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["deletedFiles"] == 4
    assert list(settings.upload_dir.iterdir()) == []

    for model in (models.ProfessionalDetails, models.ContactDetails, models.PersonalDocuments, models.Certificate):
        assert await count(db, model, model.member_id == member_id) == 0
    assert await count(db, models.Credential, models.Credential.member_id == member_id) == 0

    resp = await client.delete(f"/api/applications/{member_id}", headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_applicant_email(client, admin_headers, smtp):
    payload = {
        "applicantEmail": "thabo@example.com",
        "applicantName": "Thabo",
        "subject": "Missing document",
        "body": "Please upload a certified copy of your ID.",
    }
    resp = await client.post("/api/send-applicant-email", json=payload, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["accepted"] == ["thabo@example.com"]

    smtp.side_effect = aiosmtplib.SMTPException("relay down")
    resp = await client.post("/api/send-applicant-email", json=payload, headers=admin_headers)
    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to send email"


# ---------------------------------------------------------------------------
# Member authentication
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_end_to_end_setup_and_login(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)

    resp = await client.get("/api/member/profile", headers=member["headers"])
    assert resp.status_code == 200
    profile = resp.json()
    assert profile["username"] == member["username"]
    assert profile["memberStatus"] == "active"
    assert profile["membershipNumber"] == f"BSPCP{datetime.now(UTC):%y}{member['id']:04d}"
    assert profile["contact"]["email"] == "thabo@example.com"

    resp = await client.post("/api/member/login", json={"identifier": "THABO@example.com", "password": MEMBER_PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["accountActivated"] is False


@pytest.mark.asyncio
async def test_login_failures(client, admin_headers, settings):
    member_id = await submit_application(client)
    await approve(client, admin_headers, member_id)

    # Approved but no password yet.
    resp = await client.post("/api/member/login", json={"identifier": "tmokoena", "password": MEMBER_PASSWORD})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid credentials"

    resp = await client.post("/api/member/login", json={"identifier": "nobody", "password": MEMBER_PASSWORD})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_discriminators_in_order(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)
    credentials = {"identifier": member["username"], "password": MEMBER_PASSWORD}

    resp = await client.put(
        f"/api/members/{member['id']}/status", json={"status": "inactive"}, headers=admin_headers
    )
    assert resp.status_code == 200
    resp = await client.post("/api/member/login", json=credentials)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Account Access Restricted"

    # Application status is checked before member status.
    await client.put(f"/api/applications/{member['id']}/status", json={"status": "pending"}, headers=admin_headers)
    resp = await client.post("/api/member/login", json=credentials)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Application Under Review"
    assert resp.json()["applicationStatus"] == "under_review"

    await client.put(f"/api/applications/{member['id']}/status", json={"status": "rejected"}, headers=admin_headers)
    resp = await client.post("/api/member/login", json=credentials)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Application Denied"

    resp = await client.post("/api/member/login", json={**credentials, "password": "wrong-password"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_first_login_activates_member(client, admin_headers, settings):
    member_id = await submit_application(client)
    await approve(client, admin_headers, member_id)

    token = create_action_token(settings, member_id, ActionPurpose.PASSWORD_RESET)
    resp = await client.post("/api/member/reset-password", json={"token": token, "newPassword": MEMBER_PASSWORD})
    assert resp.status_code == 200

    # A reset alone does not activate the account.
    [application] = (await client.get("/api/applications", headers=admin_headers)).json()
    assert application["memberStatus"] == "pending_password_setup"

    resp = await client.post("/api/member/login", json={"identifier": "tmokoena", "password": MEMBER_PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["accountActivated"] is True

    [application] = (await client.get("/api/applications", headers=admin_headers)).json()
    assert application["memberStatus"] == "active"


@pytest.mark.asyncio
async def test_setup_password_errors(client, admin_headers, settings):
    member_id = await submit_application(client)
    await approve(client, admin_headers, member_id)

    expired = create_action_token(
        settings.model_copy(update={"password_setup_expire_hours": -1}), member_id, ActionPurpose.PASSWORD_SETUP
    )
    resp = await client.post("/api/member/setup-password", json={"token": expired, "password": MEMBER_PASSWORD})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Password setup link has expired."

    resp = await client.post("/api/member/setup-password", json={"token": "garbage", "password": MEMBER_PASSWORD})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid password setup link."

    token = create_action_token(settings, member_id, ActionPurpose.PASSWORD_SETUP)
    resp = await client.post("/api/member/setup-password", json={"token": token, "password": "short"})
    assert resp.status_code == 400

    resp = await client.post("/api/member/setup-password", json={"token": token, "password": MEMBER_PASSWORD})
    assert resp.status_code == 200
    resp = await client.post("/api/member/setup-password", json={"token": token, "password": MEMBER_PASSWORD})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Password has already been set"


@pytest.mark.asyncio
async def test_reset_token_cannot_be_replayed(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)
    token = create_action_token(settings, member["id"], ActionPurpose.PASSWORD_RESET)

    resp = await client.post("/api/member/reset-password", json={"token": token, "newPassword": "another-pass-1"})
    assert resp.status_code == 200
    resp = await client.post("/api/member/reset-password", json={"token": token, "newPassword": "third-pass-12"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Token already used"

    resp = await client.post(
        "/api/member/login", json={"identifier": member["username"], "password": "another-pass-1"}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_forgot_password(client, admin_headers, settings, smtp):
    await active_member(client, admin_headers, settings)
    smtp.reset_mock()

    resp = await client.post("/api/member/forgot-password", json={"email": "unknown@example.com"})
    assert resp.status_code == 200
    assert smtp.await_count == 0

    resp = await client.post("/api/member/forgot-password", json={"email": "Thabo@Example.com"})
    assert resp.status_code == 200
    assert sent_subjects(smtp) == ["Reset your BSPCP password"]


# ---------------------------------------------------------------------------
# Member self-service
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_profile_updates_are_self_only(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)

    resp = await client.put(
        f"/api/member/profile/{member['id']}",
        json={"bio": "Family therapist", "specializations": ["Grief"]},
        headers=member["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["professional"]["bio"] == "Family therapist"
    assert resp.json()["professional"]["specializations"] == ["Grief"]

    resp = await client.put(f"/api/member/contact/{member['id'] + 1}", json={"city": "Maun"}, headers=member["headers"])
    assert resp.status_code == 403

    resp = await client.put(f"/api/member/contact/{member['id']}", json={"city": "Maun"}, headers=member["headers"])
    assert resp.json()["city"] == "Maun"


@pytest.mark.asyncio
async def test_cpd_records(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)

    resp = await client.post(
        "/api/member/cpd",
        data={"title": "Trauma workshop", "points": "5", "completionDate": "2025-05-01"},
        files={"document": PDF},
        headers=member["headers"],
    )
    assert resp.status_code == 201
    record = resp.json()
    assert record["documentUrl"].startswith("/uploads/")

    resp = await client.get("/api/member/cpd", headers=member["headers"])
    assert resp.json()["totalPoints"] == 5

    resp = await client.delete(f"/api/member/cpd/{record['id']}", headers=member["headers"])
    assert resp.status_code == 200
    resp = await client.get("/api/member/cpd", headers=member["headers"])
    assert resp.json() == {"records": [], "totalPoints": 0}


@pytest.mark.asyncio
async def test_profile_photo_must_be_image(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)

    resp = await client.post("/api/member/profile-photo", files={"profileImage": PDF}, headers=member["headers"])
    assert resp.status_code == 400

    resp = await client.post("/api/member/profile-photo", files={"profileImage": PNG}, headers=member["headers"])
    assert resp.status_code == 200
    assert resp.json()["profileImage"].endswith("photo.png")


@pytest.mark.asyncio
async def test_member_routes_require_session(client):
    resp = await client.get("/api/member/profile")
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_payment_reject_and_reupload(client, admin_headers, settings, smtp, db):
    member = await active_member(client, admin_headers, settings)

    resp = await client.post(f"/api/admin/request-payment/{member['id']}", headers=admin_headers)
    assert resp.status_code == 200
    token = resp.json()["uploadToken"]

    resp = await client.get(f"/api/member/payment-token/{token}")
    assert resp.json()["isValid"] is True
    assert resp.json()["member"]["paymentStatus"] == "requested"

    resp = await client.post("/api/member/payment-proof", data={"token": token}, files={"proofOfPayment": PDF})
    assert resp.status_code == 200
    assert resp.json()["paymentStatus"] == "uploaded"
    assert await count(db, models.PaymentUploadLog, models.PaymentUploadLog.member_id == member["id"]) == 1

    smtp.reset_mock()
    resp = await client.post(
        f"/api/admin/payment-records/{member['id']}/reject",
        json={"reviewComment": "Amount does not match"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["paymentStatus"] == "rejected"
    assert sent_subjects(smtp) == ["Your BSPCP proof of payment needs attention"]

    # The first link was spent on the first upload.
    resp = await client.post("/api/member/payment-proof", data={"token": token}, files={"proofOfPayment": PDF})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Token already used"

    resp = await client.post("/api/member/payment-proof", files={"proofOfPayment": PDF}, headers=member["headers"])
    assert resp.status_code == 200
    assert resp.json()["paymentStatus"] == "uploaded"

    resp = await client.post(f"/api/admin/payment-records/{member['id']}/verify", headers=admin_headers)
    assert resp.json()["paymentStatus"] == "verified"

    resp = await client.get(f"/api/admin/payment-records/{member['id']}/audit", headers=admin_headers)
    assert [row["newStatus"] for row in resp.json()] == ["requested", "uploaded", "rejected", "uploaded", "verified"]
    assert [row["actorType"] for row in resp.json()] == ["admin", "token", "admin", "member", "admin"]

    resp = await client.get("/api/admin/payments", headers=admin_headers)
    assert resp.json()["count"] == 1
    assert float(resp.json()["totalAmount"]) == float(settings.application_fee)


@pytest.mark.asyncio
async def test_payment_edges(client, admin_headers, settings):
    member = await active_member(client, admin_headers, settings)

    resp = await client.post("/api/member/payment-proof", files={"proofOfPayment": PDF})
    assert resp.status_code == 401

    resp = await client.post("/api/member/payment-proof", files={"proofOfPayment": PDF}, headers=member["headers"])
    assert resp.status_code == 409
    assert resp.json()["currentStatus"] == "not_requested"

    resp = await client.post(f"/api/admin/payment-records/{member['id']}/verify", headers=admin_headers)
    assert resp.status_code == 409

    await client.post(f"/api/admin/request-payment/{member['id']}", headers=admin_headers)
    resp = await client.post(
        "/api/member/payment-proof",
        files={"proofOfPayment": ("proof.txt", b"paid", "text/plain")},
        headers=member["headers"],
    )
    assert resp.status_code == 400

    await client.post("/api/member/payment-proof", files={"proofOfPayment": PDF}, headers=member["headers"])
    resp = await client.post(
        f"/api/admin/payment-records/{member['id']}/reject", json={"reviewComment": " "}, headers=admin_headers
    )
    assert resp.status_code == 400

    resp = await client.get("/api/admin/payment-records?status=uploaded", headers=admin_headers)
    page = resp.json()
    assert page["pagination"]["totalRecords"] == 1
    assert page["paymentRecords"][0]["member"]["name"] == "Thabo Mokoena"


@pytest.mark.asyncio
async def test_payment_token_rejected_when_invalid(client):
    resp = await client.get("/api/member/payment-token/not-a-token")
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Admin accounts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_admin_login_by_email_and_logout(client, super_admin):
    headers = await admin_login(client, identifier="SUPER@example.com")

    resp = await client.get("/api/admin/profile", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["role"] == "super_admin"

    resp = await client.post("/api/admin/logout", headers=headers)
    assert resp.status_code == 200
    resp = await client.get("/api/admin/profile", headers=headers)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_admin_lockout(client, super_admin, settings):
    for _ in range(settings.admin_max_login_attempts):
        resp = await client.post("/api/admin/login", json={"identifier": "superadmin", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid credentials"

    resp = await client.post("/api/admin/login", json={"identifier": "superadmin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 429
    assert resp.json()["error"] == "Account is temporarily locked"
    assert "retryAfter" in resp.json()


@pytest.mark.asyncio
async def test_admin_change_password_revokes_sessions(client, admin_headers):
    resp = await client.put(
        "/api/admin/change-password",
        json={"currentPassword": "wrong-password", "newPassword": "new-admin-pass"},
        headers=admin_headers,
    )
    assert resp.status_code == 401

    resp = await client.put(
        "/api/admin/change-password",
        json={"currentPassword": ADMIN_PASSWORD, "newPassword": "new-admin-pass"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    resp = await client.get("/api/admin/profile", headers=admin_headers)
    assert resp.status_code == 401

    await admin_login(client, password="new-admin-pass")


@pytest.mark.asyncio
async def test_super_admin_manages_admins(client, admin_headers, super_admin, smtp):
    resp = await client.post(
        "/api/admins",
        json={
            "username": "officer",
            "email": "officer@example.com",
            "password": "officer-pass-1",
            "role": "admin",
            "firstName": "Office",
            "lastName": "Clerk",
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201
    officer_id = resp.json()["admin"]["id"]
    assert "officer@example.com" in sent_to(smtp)

    officer_headers = await admin_login(client, identifier="officer", password="officer-pass-1")
    resp = await client.get("/api/admins", headers=officer_headers)
    assert resp.status_code == 403

    for method, path, payload in (
        ("delete", f"/api/admins/{super_admin.id}", None),
        ("put", f"/api/admins/{super_admin.id}/status", {"isActive": False}),
        ("post", f"/api/admins/{super_admin.id}/reset-password", None),
    ):
        kwargs = {"headers": admin_headers}
        if payload is not None:
            kwargs["json"] = payload
        resp = await getattr(client, method)(path, **kwargs)
        assert resp.status_code == 403, path

    smtp.reset_mock()
    resp = await client.post(f"/api/admins/{officer_id}/reset-password", headers=admin_headers)
    assert resp.status_code == 200
    assert sent_to(smtp) == ["officer@example.com"]

    smtp.side_effect = aiosmtplib.SMTPException("relay down")
    resp = await client.post(f"/api/admins/{officer_id}/reset-password", headers=admin_headers)
    assert resp.status_code == 500
    smtp.side_effect = None

    resp = await client.put(f"/api/admins/{officer_id}/status", json={"isActive": False}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["isActive"] is False
    resp = await client.get("/api/admin/profile", headers=officer_headers)
    assert resp.status_code == 401

    resp = await client.delete(f"/api/admins/{officer_id}", headers=admin_headers)
    assert resp.status_code == 200
    resp = await client.get("/api/admins", headers=admin_headers)
    assert [a["username"] for a in resp.json()] == ["superadmin"]


@pytest.mark.asyncio
async def test_admin_password_reset_link(client, super_admin, settings, smtp):
    resp = await client.post("/api/admin/forgot-password", json={"email": "super@example.com"})
    assert resp.status_code == 200
    assert sent_to(smtp) == ["super@example.com"]

    token = create_action_token(settings, super_admin.id, ActionPurpose.ADMIN_PASSWORD_RESET)
    resp = await client.post("/api/admin/reset-password", json={"token": token, "newPassword": "reset-admin-pass"})
    assert resp.status_code == 200
    resp = await client.post("/api/admin/reset-password", json={"token": token, "newPassword": "again-admin-pass"})
    assert resp.status_code == 401

    await admin_login(client, password="reset-admin-pass")


@pytest.mark.asyncio
async def test_regular_admin_cannot_create_admins(client, db):
    await create_admin(db, username="clerk", email="clerk@example.com", role=models.AdminRole.ADMIN)
    headers = await admin_login(client, identifier="clerk")

    resp = await client.post(
        "/api/admins",
        json={"username": "another", "email": "another@example.com", "password": "another-pass"},
        headers=headers,
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_dashboard_and_activities(client, admin_headers):
    await submit_application(client)
    await client.post(
        "/api/content",
        data={"title": "AGM", "type": "Event", "status": "Published", "eventDate": "2099-06-01"},
        headers=admin_headers,
    )

    resp = await client.get("/api/admin/dashboard-stats", headers=admin_headers)
    assert resp.json() == {
        "totalMembers": 1,
        "activeMembers": 0,
        "pendingApplications": 1,
        "activeNews": 0,
        "upcomingEvents": 1,
        "pendingPayments": 0,
    }

    resp = await client.get("/api/admin/activities", headers=admin_headers)
    [activity] = resp.json()
    assert activity["type"] == "new_application"
    assert activity["isRead"] is False

    resp = await client.put(f"/api/admin/activities/{activity['id']}/read", headers=admin_headers)
    assert resp.json()["isRead"] is True
    resp = await client.get("/api/admin/activities?unread=true", headers=admin_headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_notification_recipients(client, admin_headers, smtp):
    resp = await client.post(
        "/api/admin/notification-recipients", json={"email": "office@example.org"}, headers=admin_headers
    )
    recipient_id = resp.json()["id"]
    resp = await client.post(
        "/api/admin/notification-recipients", json={"email": "OFFICE@example.org"}, headers=admin_headers
    )
    assert resp.status_code == 409

    resp = await client.put(
        "/api/admin/notification-settings", json={"notificationsEnabled": False}, headers=admin_headers
    )
    assert resp.status_code == 200
    resp = await client.get("/api/admin/notification-recipients", headers=admin_headers)
    assert resp.json()["notificationsEnabled"] is False

    await submit_application(client)
    assert "office@example.org" not in sent_to(smtp)

    resp = await client.delete(f"/api/admin/notification-recipients/{recipient_id}", headers=admin_headers)
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Content and testimonials
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_content_flow(client, admin_headers):
    resp = await client.post(
        "/api/content",
        data={"title": "Annual General Meeting 2025!", "type": "Event", "status": "Published", "location": "Gaborone"},
        files={"image": PNG},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    event = resp.json()["content"]
    assert event["slug"] == "annual-general-meeting-2025"
    assert event["featuredImageUrl"].endswith("photo.png")

    resp = await client.post("/api/content", data={"title": "Draft article", "type": "Article"}, headers=admin_headers)
    draft = resp.json()["content"]
    assert draft["status"] == "Draft"

    resp = await client.get("/api/public-content")
    assert [item["id"] for item in resp.json()] == [event["id"]]

    resp = await client.get("/api/content-stats", headers=admin_headers)
    assert resp.json() == {"total": 2, "published": 1, "draft": 1}

    resp = await client.put(f"/api/content/{draft['id']}/status", json={"status": "Published"}, headers=admin_headers)
    assert resp.json()["content"]["status"] == "Published"

    resp = await client.get("/api/content?search=draft", headers=admin_headers)
    assert [item["id"] for item in resp.json()] == [draft["id"]]

    resp = await client.delete(f"/api/content/{event['id']}", headers=admin_headers)
    assert resp.status_code == 200
    resp = await client.delete(f"/api/content/{event['id']}", headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_content_requires_admin(client):
    resp = await client.post("/api/content", data={"title": "Sneaky", "type": "News"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_testimonials(client, admin_headers):
    payload = {"name": "Neo", "email": "neo@example.com", "content": "Very supportive counsellor.", "rating": 5}

    resp = await client.post("/api/testimonials", json={**payload, "rating": 6})
    assert resp.status_code == 400

    resp = await client.post("/api/testimonials", json=payload)
    assert resp.status_code == 201
    testimonial = resp.json()["testimonial"]
    assert testimonial["status"] == "pending"

    resp = await client.get("/api/testimonials?status=pending", headers=admin_headers)
    assert [t["id"] for t in resp.json()] == [testimonial["id"]]

    resp = await client.put(
        f"/api/testimonials/{testimonial['id']}/status", json={"status": "approved"}, headers=admin_headers
    )
    assert resp.json()["testimonial"]["status"] == "approved"

    resp = await client.delete(f"/api/testimonials/{testimonial['id']}", headers=admin_headers)
    assert resp.status_code == 200
    resp = await client.get("/api/testimonials", headers=admin_headers)
    assert resp.json() == []


# ---------------------------------------------------------------------------
# Counsellors and bookings
# ---------------------------------------------------------------------------


def booking_payload(counsellor_id: int, day: date, at: str = "10:00") -> dict:
    return {
        "counsellorId": counsellor_id,
        "clientName": "Lesego",
        "phoneNumber": "71112222",
        "email": "lesego@example.com",
        "sessionType": "online",
        "supportUrgency": "soon",
        "bookingDate": day.isoformat(),
        "bookingTime": at,
    }


@pytest.mark.asyncio
async def test_counsellor_directory(client, admin_headers, settings):
    counsellor = await active_member(client, admin_headers, settings)
    await submit_application(client, firstName="Pending", email="pending@example.com", idNumber="777777777")

    resp = await client.get("/api/counsellors")
    [listed] = resp.json()
    assert listed["id"] == counsellor["id"]
    assert listed["email"] == "thabo@example.com"
    assert listed["sessionTypes"] == ["in-person", "online"]

    assert len((await client.get("/api/counsellors?sessionType=both")).json()) == 1
    assert (await client.get("/api/counsellors?sessionType=group")).json() == []


@pytest.mark.asyncio
async def test_booking_flow(client, admin_headers, settings, smtp):
    counsellor = await active_member(client, admin_headers, settings)
    day = future_day()
    smtp.reset_mock()

    resp = await client.post("/api/bookings", json=booking_payload(counsellor["id"], day))
    assert resp.status_code == 201
    booking = resp.json()["booking"]
    assert booking["status"] == "pending"
    assert sent_subjects(smtp) == ["New session request from Lesego"]

    resp = await client.post("/api/bookings", json=booking_payload(counsellor["id"], day))
    assert resp.status_code == 409
    assert resp.json()["violations"][0]["rule"] == "slot_conflict"

    resp = await client.post("/api/bookings", json=booking_payload(counsellor["id"], date.today() - timedelta(days=1)))
    assert resp.status_code == 400
    assert resp.json()["violations"][0]["rule"] == "past_booking"

    resp = await client.get(f"/api/counsellors/{counsellor['id']}/bookings/date?date={day.isoformat()}")
    assert resp.json() == [{"time": "10:00", "status": "pending"}]

    resp = await client.put(
        f"/api/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=counsellor["headers"]
    )
    assert resp.status_code == 200
    assert resp.json()["booking"]["status"] == "confirmed"
    assert "lesego@example.com" in sent_to(smtp)

    resp = await client.put(
        f"/api/bookings/{booking['id']}",
        json={"bookingDate": future_day(8).isoformat(), "bookingTime": "11:00", "notes": "Moved at client request"},
        headers=counsellor["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["booking"]["status"] == "rescheduled"
    assert resp.json()["booking"]["notes"] == "Moved at client request"

    resp = await client.put(
        f"/api/bookings/{booking['id']}/status", json={"status": "cancelled"}, headers=counsellor["headers"]
    )
    assert resp.status_code == 200
    resp = await client.put(
        f"/api/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=counsellor["headers"]
    )
    assert resp.status_code == 409
    assert resp.json()["currentStatus"] == "cancelled"

    resp = await client.get("/api/member/bookings", headers=counsellor["headers"])
    assert [b["id"] for b in resp.json()] == [booking["id"]]

    # A cancelled booking frees its slot.
    resp = await client.post("/api/bookings", json=booking_payload(counsellor["id"], future_day(8), "11:00"))
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_booking_requires_active_counsellor(client):
    member_id = await submit_application(client)
    resp = await client.post("/api/bookings", json=booking_payload(member_id, future_day()))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_booking_notifications_can_be_turned_off(client, admin_headers, settings, smtp):
    counsellor = await active_member(client, admin_headers, settings)
    resp = await client.put(
        "/api/member/notification-preferences", json={"bookingNotifications": False}, headers=counsellor["headers"]
    )
    assert resp.json() == {"bookingNotifications": False}
    smtp.reset_mock()

    resp = await client.post("/api/bookings", json=booking_payload(counsellor["id"], future_day()))
    assert resp.status_code == 201
    assert smtp.await_count == 0


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_backup_lifecycle(client, admin_headers):
    with patch("bspcp.services.backup.run_command", new_callable=AsyncMock):
        resp = await client.post("/api/backup", headers=admin_headers)
    assert resp.status_code == 201
    created = resp.json()["backup"]
    assert created["download_url"] == f"/backup/{created['filename']}"
    assert created["created_by"] == "superadmin"

    resp = await client.get("/api/backups", headers=admin_headers)
    assert [b["id"] for b in resp.json()] == [created["id"]]

    resp = await client.get(f"/api/backups/{created['id']}/download", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/zip"

    resp = await client.get("/api/backups/stats", headers=admin_headers)
    assert resp.json()["active_backups"] == 1

    resp = await client.put(f"/api/backups/{created['id']}/delete", headers=admin_headers)
    assert resp.json()["status"] == "deleted"
    assert resp.json()["download_url"] is None
    resp = await client.put(f"/api/backups/{created['id']}/delete", headers=admin_headers)
    assert resp.status_code == 409
    resp = await client.get(f"/api/backups/{created['id']}/download", headers=admin_headers)
    assert resp.status_code == 404

    resp = await client.put(f"/api/backups/{created['id']}/restore", headers=admin_headers)
    assert resp.json()["status"] == "active"
    resp = await client.get("/api/backups?status=deleted", headers=admin_headers)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_backup_failure_is_reported(client, admin_headers):
    with patch("bspcp.services.backup.run_command", new_callable=AsyncMock) as run:
        run.side_effect = BackupError("pg_dump exited with 1: connection refused")
        resp = await client.post("/api/backup", headers=admin_headers)
    assert resp.status_code == 500
    assert resp.json()["error"] == "Backup failed"
    assert "connection refused" in resp.json()["details"]


@pytest.mark.asyncio
async def test_backups_require_admin(client):
    resp = await client.get("/api/backups")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_counsellor_detail_and_todays_bookings(client, admin_headers, settings):
    counsellor = await active_member(client, admin_headers, settings)

    resp = await client.get(f"/api/counsellors/{counsellor['id']}")
    assert resp.json()["name"] == "Thabo Mokoena"
    resp = await client.get("/api/counsellors/9999")
    assert resp.status_code == 404

    resp = await client.get("/api/member/notification-preferences", headers=counsellor["headers"])
    assert resp.json() == {"bookingNotifications": True}

    await client.post("/api/bookings", json=booking_payload(counsellor["id"], future_day()))
    resp = await client.get("/api/member/bookings/today", headers=counsellor["headers"])
    assert resp.json() == []
    resp = await client.get("/api/member/bookings?status=pending", headers=counsellor["headers"])
    assert len(resp.json()) == 1


# ---------------------------------------------------------------------------
# Admin email and roles
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bulk_email_reports_rejections(client, admin_headers, smtp):
    smtp.side_effect = [None, aiosmtplib.SMTPException("mailbox full")]
    resp = await client.post(
        "/api/send-email",
        json={"recipients": ["a@example.com", "b@example.com"], "subject": "AGM", "body": "See you there"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["accepted"] == ["a@example.com"]
    assert resp.json()["rejected"] == ["b@example.com"]


@pytest.mark.asyncio
async def test_role_change(client, admin_headers, super_admin, db):
    clerk = await create_admin(db, username="clerk", email="clerk@example.com", role=models.AdminRole.ADMIN)

    resp = await client.put(f"/api/admins/{clerk.id}/role", json={"role": "super_admin"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["role"] == "super_admin"

    resp = await client.put(f"/api/admins/{super_admin.id}/role", json={"role": "admin"}, headers=admin_headers)
    assert resp.status_code == 403
