"""
Auth API: registration, login (with and without a second factor), profile
and role change requests
"""
import time

import pytest

from conftest import DEFAULT_PASSWORD
from educonnect.core.security import create_pending_2fa_token
from educonnect.core.totp import generate_secret, totp_at
from educonnect.models.user import TwoFactorMethod, UserRole


def registration_payload(**overrides) -> dict:
    payload = {
        "name": "Asha Rao",
        "email": "Asha.Rao@x.edu",
        "password": "secret123",
        "confirm_password": "secret123",
        "requested_role": "student",
        "branch": "Engineering",
        "course": "B.Tech",
        "program": "CS",
    }
    payload.update(overrides)
    return payload


# ---------------------------
# Registration
# ---------------------------

class TestRegister:
    async def test_creates_pending_account(self, client):
        response = await client.post(
            "/api/auth/register",
            json={"name": "New Person", "email": "New@x.edu", "password": "secret123"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["kind"] == "no_challenge"
        assert body["user"]["email"] == "new@x.edu"
        assert body["user"]["role"] == "pending"
        assert body["user"]["is_verified"] is False

    async def test_duplicate_email(self, client, make_user):
        await make_user(email="dup@x.edu")
        response = await client.post(
            "/api/auth/register",
            json={"name": "Dup", "email": "DUP@x.edu", "password": "secret123"},
        )
        assert response.status_code == 400
        assert response.json() == {"kind": "validation_error", "detail": "User already exists"}

    async def test_pending_account_cannot_password_login(self, client):
        await client.post(
            "/api/auth/register",
            json={"name": "New Person", "email": "new@x.edu", "password": "secret123"},
        )
        response = await client.post("/api/auth/login", json={"email": "new@x.edu", "password": "secret123"})
        assert response.status_code == 403
        assert response.json()["kind"] == "account_state"


class TestRequestRegistration:
    async def test_stages_request_without_account(self, client):
        response = await client.post("/api/auth/request-registration", json=registration_payload())

        assert response.status_code == 201
        request = response.json()["request"]
        assert request["status"] == "pending"
        assert request["email"] == "asha.rao@x.edu"
        assert request["user_id"] is None
        assert request["current_role"] == "none"
        assert "password_hash" not in request

        login = await client.post("/api/auth/login", json={"email": "asha.rao@x.edu", "password": "secret123"})
        assert login.status_code == 401

    async def test_passwords_must_match(self, client):
        response = await client.post(
            "/api/auth/request-registration", json=registration_payload(confirm_password="other123")
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Passwords do not match"

    @pytest.mark.parametrize("role", ["student", "faculty", "placement"])
    async def test_branch_and_course_required(self, client, role):
        response = await client.post(
            "/api/auth/request-registration",
            json=registration_payload(requested_role=role, branch=None, course=" "),
        )
        assert response.status_code == 400
        assert "Branch and course are required" in response.json()["detail"]

    async def test_library_needs_no_branch(self, client):
        response = await client.post(
            "/api/auth/request-registration",
            json=registration_payload(requested_role="library", branch=None, course=None, program=None),
        )
        assert response.status_code == 201

    async def test_short_password(self, client):
        response = await client.post(
            "/api/auth/request-registration",
            json=registration_payload(password="abc", confirm_password="abc"),
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("role", ["pending", "parent"])
    async def test_role_not_requestable(self, client, role):
        response = await client.post(
            "/api/auth/request-registration", json=registration_payload(requested_role=role)
        )
        assert response.status_code == 400

    async def test_one_pending_request_per_email(self, client):
        await client.post("/api/auth/request-registration", json=registration_payload())
        response = await client.post("/api/auth/request-registration", json=registration_payload())

        assert response.status_code == 400
        assert response.json()["detail"] == "Registration request already pending for this email"

    async def test_existing_account(self, client, make_user):
        await make_user(email="asha.rao@x.edu")
        response = await client.post("/api/auth/request-registration", json=registration_payload())
        assert response.status_code == 400
        assert response.json()["detail"] == "User with this email already exists"

    async def test_rejected_email_may_apply_again(self, client, super_admin, auth_headers):
        first = await client.post(
            "/api/auth/request-registration", json=registration_payload(requested_role="library", program=None)
        )
        request_id = first.json()["request"]["id"]
        await client.post(
            f"/api/verification/requests/{request_id}/decision",
            json={"status": "rejected"},
            headers=auth_headers(super_admin),
        )

        again = await client.post(
            "/api/auth/request-registration", json=registration_payload(requested_role="library", program=None)
        )
        assert again.status_code == 201
        assert again.json()["request"]["id"] != request_id

    async def test_course_scopes_request_without_program(self, client, make_user, auth_headers):
        faculty = await make_user(UserRole.FACULTY, program="CS")

        response = await client.post(
            "/api/auth/request-registration", json=registration_payload(course="CS", program=None)
        )
        assert response.status_code == 201
        assert response.json()["request"]["program"] == "CS"

        listing = await client.get("/api/verification/requests", headers=auth_headers(faculty))
        assert [r["id"] for r in listing.json()] == [response.json()["request"]["id"]]


# ---------------------------
# Login
# ---------------------------

class TestLogin:
    async def test_no_challenge(self, client, make_user):
        user = await make_user(UserRole.STUDENT)
        response = await client.post("/api/auth/login", json={"email": user.email, "password": DEFAULT_PASSWORD})

        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "no_challenge"
        assert body["token_type"] == "bearer"
        assert body["user"]["id"] == user.id

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["last_login_at"] is not None

    async def test_wrong_password_and_unknown_email_look_the_same(self, client, make_user):
        user = await make_user()
        wrong = await client.post("/api/auth/login", json={"email": user.email, "password": "nope-nope"})
        unknown = await client.post("/api/auth/login", json={"email": "ghost@x.edu", "password": "nope-nope"})

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {
            "kind": "invalid_credentials",
            "detail": "Invalid email or password",
        }

    async def test_totp_challenge_round_trip(self, client, make_user, db_session):
        user = await make_user(UserRole.FACULTY)
        user.totp_secret = generate_secret()
        user.two_factor_method = TwoFactorMethod.TOTP
        user.two_factor_enabled = True
        await db_session.commit()

        response = await client.post("/api/auth/login", json={"email": user.email, "password": DEFAULT_PASSWORD})
        body = response.json()
        assert body["kind"] == "challenge_pending"
        assert body["method"] == "totp"
        assert "access_token" not in body

        pending = body["pending_token"]
        blocked = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {pending}"})
        assert blocked.status_code == 401

        verified = await client.post(
            "/api/auth/2fa/verify-login",
            json={"pending_token": pending, "code": totp_at(user.totp_secret, time.time())},
        )
        assert verified.status_code == 200
        session = verified.json()
        assert session["kind"] == "no_challenge"

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {session['access_token']}"})
        assert me.status_code == 200

    async def test_sms_challenge_issues_fresh_code(self, client, make_user, db_session, notifier):
        user = await make_user(UserRole.STUDENT)
        user.sms_phone = "+15551234567"
        user.two_factor_method = TwoFactorMethod.SMS
        user.two_factor_enabled = True
        await db_session.commit()

        response = await client.post("/api/auth/login", json={"email": user.email, "password": DEFAULT_PASSWORD})
        body = response.json()
        assert body["kind"] == "challenge_pending"
        assert body["method"] == "sms"
        assert body["masked_contact"] == "********4567"
        assert notifier.last("two_factor_code")["data"]["code"] == body["dev_code"]

        wrong = await client.post(
            "/api/auth/2fa/verify-login", json={"pending_token": body["pending_token"], "code": "000000"}
        )
        assert wrong.status_code == 400
        assert wrong.json()["kind"] == "invalid_code"

        ok = await client.post(
            "/api/auth/2fa/verify-login", json={"pending_token": body["pending_token"], "code": body["dev_code"]}
        )
        assert ok.status_code == 200

        replay = await client.post(
            "/api/auth/2fa/verify-login", json={"pending_token": body["pending_token"], "code": body["dev_code"]}
        )
        assert replay.status_code == 400

    async def test_pending_token_cannot_resend(self, client, make_user):
        user = await make_user(UserRole.STUDENT)
        response = await client.post(
            "/api/auth/2fa/resend",
            headers={"Authorization": f"Bearer {create_pending_2fa_token(user)}"},
        )
        assert response.status_code == 401
        assert response.json()["kind"] == "not_authenticated"


# ---------------------------
# Session surface
# ---------------------------

class TestProfile:
    async def test_me_requires_token(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_garbage_token(self, client):
        response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401

    async def test_update_profile(self, client, make_user, auth_headers):
        user = await make_user()
        response = await client.put(
            "/api/auth/profile",
            json={"name": "  Renamed  ", "email": "Renamed@x.edu", "branch": "Science"},
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["name"] == "Renamed"
        assert body["email"] == "renamed@x.edu"
        assert body["branch"] == "Science"

    async def test_profile_email_must_be_unique(self, client, make_user, auth_headers):
        await make_user(email="taken@x.edu")
        user = await make_user()
        response = await client.put(
            "/api/auth/profile", json={"email": "taken@x.edu"}, headers=auth_headers(user)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Email already exists"

    async def test_logout(self, client):
        response = await client.post("/api/auth/logout")
        assert response.status_code == 200


class TestRoleChange:
    async def test_request_and_duplicate(self, client, make_user, auth_headers):
        user = await make_user(UserRole.STUDENT, program="CS")
        payload = {"requested_role": "faculty", "reason": "promotion", "program": "CS"}

        first = await client.post("/api/auth/request-verification", json=payload, headers=auth_headers(user))
        assert first.status_code == 201
        request = first.json()["request"]
        assert request["user_id"] == user.id
        assert request["current_role"] == "student"
        assert request["user"]["email"] == user.email

        second = await client.post("/api/auth/request-verification", json=payload, headers=auth_headers(user))
        assert second.status_code == 400
        assert second.json()["detail"] == "You already have a pending role change request"

    async def test_same_role(self, client, make_user, auth_headers):
        user = await make_user(UserRole.FACULTY)
        response = await client.post(
            "/api/auth/request-verification",
            json={"requested_role": "faculty", "reason": "again"},
            headers=auth_headers(user),
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "You already have this role"

    async def test_registered_account_reaches_verified_state(self, client, super_admin, auth_headers):
        registered = await client.post(
            "/api/auth/register",
            json={"name": "Newcomer", "email": "newcomer@x.edu", "password": "secret123"},
        )
        token = registered.json()["access_token"]

        filed = await client.post(
            "/api/auth/request-verification",
            json={"requested_role": "student", "reason": "joining"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert filed.status_code == 201

        decided = await client.post(
            f"/api/verification/requests/{filed.json()['request']['id']}/decision",
            json={"status": "approved"},
            headers=auth_headers(super_admin),
        )
        assert decided.status_code == 200

        login = await client.post("/api/auth/login", json={"email": "newcomer@x.edu", "password": "secret123"})
        assert login.status_code == 200
        assert login.json()["user"]["role"] == "student"
