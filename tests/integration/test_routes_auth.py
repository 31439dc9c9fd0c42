"""End-to-end tests for the /api/auth routes over ASGI."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from tenantgate.exceptions import StorageError
from tenantgate.storage.repositories.verifications import DatabaseVerificationStore
from tenantgate.web.auth.credentials import CredentialEngine
from tenantgate.web.auth.session import SESSION_COOKIE

APP_A = {"x-application-name": "app-a"}
APP_B = {"x-application-name": "app-b"}
PASSWORD = "password123"


async def _sign_up(client, email: str = "alice@example.com", headers=APP_A, **extra):
    body = {"email": email, "password": PASSWORD, "name": "Alice", **extra}
    return await client.post("/api/auth/sign-up/email", json=body, headers=headers)


@pytest.mark.integration
class TestApplicationHeader:
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("POST", "/api/auth/send-otp"),
            ("POST", "/api/auth/verify-otp"),
            ("POST", "/api/auth/resend-otp"),
            ("POST", "/api/auth/sign-up/email"),
            ("POST", "/api/auth/sign-in/email"),
            ("POST", "/api/auth/sign-out"),
            ("GET", "/api/auth/session"),
        ],
    )
    async def test_missing_header_rejected(self, client, method: str, path: str) -> None:
        resp = await client.request(method, path, json={"email": "alice@example.com"})
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "BAD_REQUEST",
            "message": "x-application-name header is required",
        }

    async def test_blank_header_rejected(self, client) -> None:
        resp = await client.post(
            "/api/auth/send-otp",
            json={"email": "alice@example.com"},
            headers={"x-application-name": "   "},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "BAD_REQUEST"

    async def test_missing_header_sends_nothing(self, client, sender) -> None:
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"})
        assert sender.sent == []


@pytest.mark.integration
class TestSendOtp:
    async def test_sends_code(self, client, sender, make_user) -> None:
        await make_user()
        resp = await client.post(
            "/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "message": "OTP sent successfully",
            "data": {"expiresIn": 600},
        }
        assert len(sender.sent) == 1
        assert sender.sent[0].to == "alice@example.com"
        assert sender.sent[0].subject == "Your OTP for app-a"

    async def test_unknown_user(self, client, sender) -> None:
        resp = await client.post(
            "/api/auth/send-otp", json={"email": "ghost@example.com"}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "message": "User not found for this application",
        }
        assert sender.sent == []

    async def test_user_of_other_application_not_found(self, client, make_user) -> None:
        await make_user(application="app-a")
        resp = await client.post(
            "/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_B
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "User not found for this application"

    async def test_already_verified(self, client, make_user) -> None:
        await make_user(verified=True)
        resp = await client.post(
            "/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Email is already verified"

    async def test_invalid_email(self, client) -> None:
        resp = await client.post("/api/auth/send-otp", json={"email": "nope"}, headers=APP_A)
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Invalid email address"}

    async def test_non_json_body(self, client) -> None:
        resp = await client.post("/api/auth/send-otp", content=b"not json", headers=APP_A)
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid email address"

    async def test_delivery_failure_leaves_nothing_pending(self, client, sender, make_user) -> None:
        await make_user()
        sender.fail = True
        resp = await client.post(
            "/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Failed to send OTP"

        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": "123456"},
            headers=APP_A,
        )
        assert resp.json()["message"] == "No OTP found. Please request a new one."

    async def test_storage_failure_is_structured(
        self, client, sender, make_user, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await make_user()

        async def broken_replace(self, *args, **kwargs):
            raise StorageError("Could not store verification code")

        monkeypatch.setattr(DatabaseVerificationStore, "replace", broken_replace)
        resp = await client.post(
            "/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Failed to send OTP"}

        resp = await client.post(
            "/api/auth/resend-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Failed to resend OTP"}
        assert sender.sent == []

    async def test_database_failure_on_verify_is_structured(
        self, client, make_user, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await make_user()

        async def broken_get(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(DatabaseVerificationStore, "get", broken_get)
        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": "123456"},
            headers=APP_A,
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Failed to verify OTP"}


@pytest.mark.integration
class TestVerifyOtp:
    async def test_verifies_email(self, client, sender, directory, make_user) -> None:
        user = await make_user()
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A)

        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": sender.last_code},
            headers=APP_A,
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Email verified successfully"}

        refreshed = await directory.get_by_id(user.id)
        assert refreshed.email_verified is True

    async def test_code_is_single_use(self, client, sender, make_user) -> None:
        await make_user()
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A)
        body = {"email": "alice@example.com", "otp": sender.last_code}

        first = await client.post("/api/auth/verify-otp", json=body, headers=APP_A)
        second = await client.post("/api/auth/verify-otp", json=body, headers=APP_A)
        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["message"] == "No OTP found. Please request a new one."

    async def test_wrong_code(self, client, sender, make_user) -> None:
        await make_user()
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A)
        wrong = "000000" if sender.last_code != "000000" else "111111"

        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": wrong},
            headers=APP_A,
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid OTP"

        # The pending code survives a wrong guess
        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": sender.last_code},
            headers=APP_A,
        )
        assert resp.status_code == 200

    async def test_code_from_other_application_rejected(self, client, sender, make_user) -> None:
        await make_user(application="app-a")
        await make_user(application="app-b")
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A)

        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": sender.last_code},
            headers=APP_B,
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "No OTP found. Please request a new one."

    async def test_malformed_otp(self, client) -> None:
        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": "12ab"},
            headers=APP_A,
        )
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "OTP must be 6 digits"}


@pytest.mark.integration
class TestResendOtp:
    async def test_resend_invalidates_previous_code(self, client, sender, make_user) -> None:
        await make_user()
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A)
        old_code = sender.last_code

        resp = await client.post(
            "/api/auth/resend-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"expiresIn": 600}
        new_code = sender.last_code
        assert len(sender.sent) == 2

        if old_code != new_code:
            resp = await client.post(
                "/api/auth/verify-otp",
                json={"email": "alice@example.com", "otp": old_code},
                headers=APP_A,
            )
            assert resp.json()["message"] == "Invalid OTP"

        resp = await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": new_code},
            headers=APP_A,
        )
        assert resp.status_code == 200

    async def test_resend_for_verified_user(self, client, make_user) -> None:
        await make_user(verified=True)
        resp = await client.post(
            "/api/auth/resend-otp", json={"email": "alice@example.com"}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "Email is already verified"


@pytest.mark.integration
class TestSignUp:
    async def test_sign_up_stamps_application(self, client) -> None:
        resp = await _sign_up(client, application="app-evil")
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["application"] == "app-a"
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["emailVerified"] is False
        assert data["token"]
        assert resp.cookies.get(SESSION_COOKIE) == data["token"]

    async def test_duplicate_in_same_application(self, client) -> None:
        await _sign_up(client)
        resp = await _sign_up(client)
        assert resp.status_code == 422
        assert resp.json()["error"] == "USER_ALREADY_EXISTS"

    async def test_same_email_in_two_applications(self, client) -> None:
        first = await _sign_up(client, headers=APP_A)
        second = await _sign_up(client, headers=APP_B)
        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["user"]["id"] != second.json()["user"]["id"]

    async def test_short_password(self, client) -> None:
        resp = await client.post(
            "/api/auth/sign-up/email",
            json={"email": "alice@example.com", "password": "short"},
            headers=APP_A,
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "BAD_REQUEST",
            "message": "Password must be at least 8 characters",
        }


@pytest.mark.integration
class TestSignIn:
    async def test_sign_in(self, client) -> None:
        await _sign_up(client)
        resp = await client.post(
            "/api/auth/sign-in/email",
            json={"email": "alice@example.com", "password": PASSWORD},
            headers=APP_A,
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["application"] == "app-a"
        assert resp.cookies.get(SESSION_COOKIE)

    async def test_application_mismatch_skips_credential_check(
        self, client, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await _sign_up(client, headers=APP_A)
        calls: list[str] = []
        original = CredentialEngine.sign_in

        async def spy(self, *args, **kwargs):
            calls.append("sign_in")
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(CredentialEngine, "sign_in", spy)

        resp = await client.post(
            "/api/auth/sign-in/email",
            json={"email": "alice@example.com", "password": PASSWORD},
            headers=APP_B,
        )
        assert resp.status_code == 403
        assert resp.json() == {
            "error": "APPLICATION_MISMATCH",
            "message": "User is not registered for this application",
        }
        assert calls == []
        assert SESSION_COOKIE not in resp.cookies

    async def test_unknown_user_is_mismatch(self, client) -> None:
        resp = await client.post(
            "/api/auth/sign-in/email",
            json={"email": "ghost@example.com", "password": PASSWORD},
            headers=APP_A,
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "APPLICATION_MISMATCH"

    async def test_wrong_password(self, client) -> None:
        await _sign_up(client)
        resp = await client.post(
            "/api/auth/sign-in/email",
            json={"email": "alice@example.com", "password": "not-the-password"},
            headers=APP_A,
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "INVALID_CREDENTIALS"

    async def test_missing_email(self, client) -> None:
        resp = await client.post(
            "/api/auth/sign-in/email", json={"password": PASSWORD}, headers=APP_A
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "BAD_REQUEST",
            "message": "email is required for sign-in",
        }

    async def test_email_case_is_ignored(self, client) -> None:
        await _sign_up(client)
        resp = await client.post(
            "/api/auth/sign-in/email",
            json={"email": "ALICE@example.com", "password": PASSWORD},
            headers=APP_A,
        )
        assert resp.status_code == 200


@pytest.mark.integration
class TestSession:
    async def test_session_with_bearer_token(self, client) -> None:
        token = (await _sign_up(client)).json()["token"]
        resp = await client.get(
            "/api/auth/session",
            headers={**APP_A, "Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["email"] == "alice@example.com"
        assert data["session"]["token"] == token

    async def test_session_not_visible_to_other_application(self, client) -> None:
        token = (await _sign_up(client)).json()["token"]
        resp = await client.get(
            "/api/auth/session",
            headers={**APP_B, "Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 404
        assert resp.json() == {"message": "No session found"}

    async def test_no_session(self, client) -> None:
        resp = await client.get("/api/auth/session", headers=APP_A)
        assert resp.status_code == 404

    async def test_sign_out(self, client) -> None:
        token = (await _sign_up(client)).json()["token"]
        auth = {**APP_A, "Authorization": f"Bearer {token}"}

        resp = await client.post("/api/auth/sign-out", headers=auth)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        resp = await client.get("/api/auth/session", headers=auth)
        assert resp.status_code == 404

    async def test_session_reflects_verification(self, client, sender) -> None:
        token = (await _sign_up(client)).json()["token"]
        auth = {**APP_A, "Authorization": f"Bearer {token}"}
        await client.post("/api/auth/send-otp", json={"email": "alice@example.com"}, headers=APP_A)
        await client.post(
            "/api/auth/verify-otp",
            json={"email": "alice@example.com", "otp": sender.last_code},
            headers=APP_A,
        )

        resp = await client.get("/api/auth/session", headers=auth)
        assert resp.json()["user"]["emailVerified"] is True
