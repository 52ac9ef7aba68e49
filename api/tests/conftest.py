"""Shared test fixtures.

Every test gets its own app built by ``create_app`` against a throwaway SQLite
file, with uploads and backups under ``tmp_path`` and SMTP patched out.
"""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from bspcp.core.auth import ActionPurpose, create_action_token, hash_password
from bspcp.core.config import Settings
from bspcp.main import create_app
from bspcp.models import Admin, AdminRole

ADMIN_PASSWORD = "admin-pass-123"
MEMBER_PASSWORD = "member-pass-123"

PDF = ("document.pdf", b"%PDF-1.4 test document", "application/pdf")
PNG = ("photo.png", b"\x89PNG\r\n\x1a\n fake image", "image/png")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        upload_dir=tmp_path / "uploads",
        backup_dir=tmp_path / "backup",
        secret_key="test-secret",
        log_level="WARNING",
        frontend_url="http://portal.test",
    )


@pytest.fixture
async def app(settings):
    application = create_app(settings)
    await application.state.db.create_all()
    yield application
    await application.state.db.dispose()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db(app):
    async with app.state.db.session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def smtp():
    """Capture outgoing mail instead of talking to an SMTP relay."""
    with patch("bspcp.services.email.aiosmtplib.send", new_callable=AsyncMock) as send:
        yield send


def sent_to(smtp_mock) -> list[str]:
    return [call.args[0]["To"] for call in smtp_mock.await_args_list]


def sent_subjects(smtp_mock) -> list[str]:
    return [call.args[0]["Subject"] for call in smtp_mock.await_args_list]


async def create_admin(db, username="superadmin", email="super@example.com", role=AdminRole.SUPER_ADMIN) -> Admin:
    # rounds=4: verification reads the work factor from the hash.
    admin = Admin(
        username=username,
        email=email,
        password_hash=hash_password(ADMIN_PASSWORD, rounds=4),
        role=role,
        first_name="Test",
        last_name="Admin",
    )
    db.add(admin)
    await db.commit()
    return admin


async def admin_login(client, identifier="superadmin", password=ADMIN_PASSWORD) -> dict:
    resp = await client.post("/api/admin/login", json={"identifier": identifier, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
async def super_admin(db):
    return await create_admin(db)


@pytest.fixture
async def admin_headers(client, super_admin):
    return await admin_login(client)


def application_fields(**overrides) -> dict:
    fields = {
        "membershipType": "professional",
        "firstName": "Thabo",
        "lastName": "Mokoena",
        "idNumber": "123456789",
        "dateOfBirth": "1988-04-12",
        "gender": "Male",
        "nationality": "Motswana",
        "email": "thabo@example.com",
        "phone": "+26771234567",
        "occupation": "Counsellor",
        "organizationName": "Gaborone Wellness Centre",
        "highestQualification": "MA Counselling Psychology",
        "yearsExperience": "6",
        "specializations": '["Trauma", "Family"]',
        "languages": "English, Setswana",
        "sessionTypes": '["in-person", "online"]',
        "city": "Gaborone",
    }
    fields.update(overrides)
    return fields


async def submit_application(client, files=None, **overrides) -> int:
    if files is None:
        files = [("idDocument", PDF), ("certificates", PDF)]
    resp = await client.post("/api/membership", data=application_fields(**overrides), files=files)
    assert resp.status_code == 201, resp.text
    return resp.json()["memberId"]


async def approve(client, admin_headers, member_id: int) -> dict:
    resp = await client.put(
        f"/api/applications/{member_id}/status",
        json={"status": "approved", "reviewComment": "Welcome"},
        headers=admin_headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def active_member(client, admin_headers, settings, **overrides) -> dict:
    """Submit, approve and set a password; return ids, username and auth headers."""
    member_id = await submit_application(client, **overrides)
    approved = await approve(client, admin_headers, member_id)
    token = create_action_token(settings, member_id, ActionPurpose.PASSWORD_SETUP)
    resp = await client.post("/api/member/setup-password", json={"token": token, "password": MEMBER_PASSWORD})
    assert resp.status_code == 200, resp.text

    username = approved["application"]["username"]
    resp = await client.post("/api/member/login", json={"identifier": username, "password": MEMBER_PASSWORD})
    assert resp.status_code == 200, resp.text
    return {
        "id": member_id,
        "username": username,
        "headers": {"Authorization": f"Bearer {resp.json()['token']}"},
    }
