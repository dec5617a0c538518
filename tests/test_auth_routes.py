"""Endpoint tests for the OTP-gated signup and password-reset flows."""

from __future__ import annotations

import asyncio
from typing import Any

from httpx import AsyncClient
from sqlalchemy import func, select

from storefront_auth.core.security import verify_password
from storefront_auth.db.models import OtpCode, User
from storefront_auth.db.session import async_session_factory

NEW_PASSWORD = "Fresh2Password"


def _signup_body(code: str, **overrides: Any) -> dict[str, Any]:
    body = {
        "email": "a@x.com",
        "password": "Secret1Pass",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "otpCode": code,
    }
    body.update(overrides)
    return body


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


async def _user_count() -> int:
    async with async_session_factory() as session:
        return await session.scalar(select(func.count()).select_from(User))


async def _stored_hash(email: str) -> str:
    async with async_session_factory() as session:
        return await session.scalar(select(User.hashed_password).where(User.email == email))


async def _code_count(email: str) -> int:
    async with async_session_factory() as session:
        return await session.scalar(select(func.count()).select_from(OtpCode).where(OtpCode.email == email))


async def _send(client: AsyncClient, email: str = "a@x.com", purpose: str = "signup") -> dict[str, Any]:
    response = await client.post("/auth/send-otp", json={"email": email, "purpose": purpose})
    assert response.status_code == 200, response.text
    return response.json()


async def test_healthcheck(async_client: AsyncClient) -> None:
    response = await async_client.get("/")
    assert response.status_code == 200


async def test_signup_scenario(async_client: AsyncClient, sender) -> None:
    """Issue, reject a wrong code, accept the right one once, then reject the replay."""

    sent = await _send(async_client)
    assert sent["success"] is True
    assert sent["expiresIn"] == 300
    assert sent["devOtp"] == sender.last_code("a@x.com")
    code = sent["devOtp"]

    wrong = await async_client.post("/auth/signup-with-otp", json=_signup_body(_wrong(code)))
    assert wrong.status_code == 400
    assert wrong.json() == {
        "success": False,
        "error": "InvalidOrExpiredCode",
        "message": "The code is invalid or has expired. Please request a new one.",
    }
    assert await _user_count() == 0

    created = await async_client.post("/auth/signup-with-otp", json=_signup_body(code))
    assert created.status_code == 201, created.text
    payload = created.json()
    assert payload["success"] is True
    assert payload["user"]["email"] == "a@x.com"
    assert payload["user"]["firstName"] == "Ada"
    assert "storefront_session" in created.cookies
    assert await _user_count() == 1

    replay = await async_client.post("/auth/signup-with-otp", json=_signup_body(code))
    assert replay.status_code == 400
    assert replay.json()["error"] == "InvalidOrExpiredCode"
    assert await _user_count() == 1


async def test_concurrent_signups_with_one_code_create_one_user(async_client: AsyncClient) -> None:
    code = (await _send(async_client))["devOtp"]

    responses = await asyncio.gather(
        async_client.post("/auth/signup-with-otp", json=_signup_body(code)),
        async_client.post("/auth/signup-with-otp", json=_signup_body(code)),
    )

    statuses = [response.status_code for response in responses]
    assert statuses.count(201) == 1, [response.text for response in responses]
    assert await _user_count() == 1


async def test_signup_session_cookie_identifies_user(async_client: AsyncClient) -> None:
    code = (await _send(async_client))["devOtp"]
    await async_client.post("/auth/signup-with-otp", json=_signup_body(code))

    me = await async_client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "a@x.com"

    await async_client.post("/auth/logout")
    async_client.cookies.clear()
    assert (await async_client.get("/auth/me")).status_code == 401


async def test_signup_with_expired_code_creates_nothing(async_client: AsyncClient, clock) -> None:
    code = (await _send(async_client))["devOtp"]
    clock.advance(301)

    response = await async_client.post("/auth/signup-with-otp", json=_signup_body(code))
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidOrExpiredCode"
    assert "expired" in response.json()["message"]
    assert await _user_count() == 0


async def test_signup_rejects_code_issued_for_reset(async_client: AsyncClient, existing_user) -> None:
    reset = await async_client.post("/auth/forgot-password", json={"email": existing_user["email"]})
    code = reset.json()["devOtp"]

    response = await async_client.post(
        "/auth/signup-with-otp", json=_signup_body(code, email="other@x.com")
    )
    assert response.status_code == 400
    assert await _user_count() == 1


async def test_signup_with_superseded_code_fails(async_client: AsyncClient, clock) -> None:
    first = (await _send(async_client))["devOtp"]
    clock.advance(10)
    second = (await _send(async_client))["devOtp"]

    if first != second:
        stale = await async_client.post("/auth/signup-with-otp", json=_signup_body(first))
        assert stale.status_code == 400
        assert await _user_count() == 0

    fresh = await async_client.post("/auth/signup-with-otp", json=_signup_body(second))
    assert fresh.status_code == 201


async def test_send_signup_otp_for_registered_email_conflicts(async_client: AsyncClient, existing_user, sender) -> None:
    response = await async_client.post(
        "/auth/send-otp", json={"email": existing_user["email"].upper(), "purpose": "signup"}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "EmailAlreadyRegistered"
    assert sender.sent == []


async def test_signup_validation_runs_before_code_is_touched(async_client: AsyncClient, sender) -> None:
    code = (await _send(async_client))["devOtp"]

    cases = [
        (_signup_body(code, firstName=""), "MissingFields"),
        ({"email": "a@x.com", "otpCode": code}, "MissingFields"),
        (_signup_body(code, email="not-an-email"), "InvalidEmail"),
        (_signup_body(code, password="weakpass"), "WeakPassword"),
        (_signup_body(code, confirmPassword="Different1Pass"), "PasswordMismatch"),
    ]
    for body, error in cases:
        response = await async_client.post("/auth/signup-with-otp", json=body)
        assert response.status_code == 400, body
        assert response.json()["error"] == error

    async with async_session_factory() as session:
        row = await session.scalar(select(OtpCode).where(OtpCode.email == "a@x.com"))
        assert row.attempt_count == 0
        assert row.consumed is False

    assert (await async_client.post("/auth/signup-with-otp", json=_signup_body(code))).status_code == 201


async def test_send_otp_validates_input(async_client: AsyncClient, sender) -> None:
    missing = await async_client.post("/auth/send-otp", json={"purpose": "signup"})
    assert missing.json()["error"] == "MissingFields"

    bad_email = await async_client.post("/auth/send-otp", json={"email": "nope", "purpose": "signup"})
    assert bad_email.json()["error"] == "InvalidEmail"

    bad_purpose = await async_client.post("/auth/send-otp", json={"email": "a@x.com", "purpose": "login"})
    assert bad_purpose.json()["error"] == "InvalidPurpose"

    assert sender.sent == []


async def test_malformed_bodies_get_typed_error(async_client: AsyncClient, sender) -> None:
    wrong_type = await async_client.post("/auth/send-otp", json={"email": 123, "purpose": "signup"})
    assert wrong_type.status_code == 400
    assert wrong_type.json()["success"] is False
    assert wrong_type.json()["error"] == "InvalidRequest"

    not_json = await async_client.post(
        "/auth/reset-password", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert not_json.status_code == 400
    assert not_json.json() == {
        "success": False,
        "error": "InvalidRequest",
        "message": "The request could not be read. Please check the submitted fields.",
    }

    assert sender.sent == []


async def test_dev_otp_is_never_returned_in_production(
    async_client: AsyncClient, override_app_settings, existing_user
) -> None:
    override_app_settings(ENVIRONMENT="production")

    sent = await _send(async_client)
    assert sent["success"] is True
    assert sent["expiresIn"] == 300
    assert "devOtp" not in sent

    reset = await async_client.post("/auth/forgot-password", json={"email": existing_user["email"]})
    assert "devOtp" not in reset.json()


async def test_send_reports_email_failure_but_keeps_code(async_client: AsyncClient, sender) -> None:
    sender.fail = True
    sent = await _send(async_client)
    assert sent["emailSent"] is False

    response = await async_client.post("/auth/signup-with-otp", json=_signup_body(sent["devOtp"]))
    assert response.status_code == 201


async def test_forgot_password_unknown_email_is_success_shaped(async_client: AsyncClient, sender) -> None:
    response = await async_client.post("/auth/forgot-password", json={"email": "ghost@x.com"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "expiresIn": 300, "emailSent": False}
    assert sender.sent == []
    assert await _code_count("ghost@x.com") == 0


async def test_send_otp_forgot_purpose_follows_anti_enumeration(async_client: AsyncClient) -> None:
    response = await async_client.post("/auth/send-otp", json={"email": "ghost@x.com", "purpose": "forgot_password"})
    assert response.status_code == 200
    assert response.json()["emailSent"] is False


async def test_password_reset_flow(async_client: AsyncClient, existing_user, sender) -> None:
    email = existing_user["email"]
    reset = await async_client.post("/auth/forgot-password", json={"email": email})
    body = reset.json()
    assert body["success"] is True
    assert body["emailSent"] is True
    code = body["devOtp"]
    assert code == sender.last_code(email)

    check = await async_client.post("/auth/verify-otp", json={"email": email, "code": code, "purpose": "forgot_password"})
    assert check.status_code == 200
    assert check.json() == {"success": True}

    done = await async_client.post(
        "/auth/reset-password", json={"email": email, "otpCode": code, "newPassword": NEW_PASSWORD}
    )
    assert done.status_code == 200, done.text
    assert done.json()["success"] is True
    assert "storefront_session" not in done.cookies
    assert verify_password(NEW_PASSWORD, await _stored_hash(email))

    old_login = await async_client.post("/auth/login", json={"email": email, "password": existing_user["password"]})
    assert old_login.status_code == 401
    new_login = await async_client.post("/auth/login", json={"email": email, "password": NEW_PASSWORD})
    assert new_login.status_code == 200
    assert new_login.json()["user"]["email"] == email

    replay = await async_client.post(
        "/auth/reset-password", json={"email": email, "otpCode": code, "newPassword": "Another3Password"}
    )
    assert replay.status_code == 400
    assert replay.json()["error"] == "InvalidOrExpiredCode"
    assert verify_password(NEW_PASSWORD, await _stored_hash(email))


async def test_reset_password_with_wrong_code_keeps_hash(async_client: AsyncClient, existing_user) -> None:
    email = existing_user["email"]
    code = (await async_client.post("/auth/forgot-password", json={"email": email})).json()["devOtp"]

    response = await async_client.post(
        "/auth/reset-password", json={"email": email, "otpCode": _wrong(code), "newPassword": NEW_PASSWORD}
    )
    assert response.status_code == 400
    assert await _stored_hash(email) == existing_user["hashed_password"]


async def test_reset_password_rejects_signup_code(async_client: AsyncClient, existing_user) -> None:
    email = existing_user["email"]
    async with async_session_factory() as session:
        user = await session.scalar(select(User).where(User.email == email))
        await session.delete(user)
        await session.commit()
    code = (await _send(async_client, email=email))["devOtp"]

    async with async_session_factory() as session:
        session.add(
            User(email=email, hashed_password=existing_user["hashed_password"], first_name="Sam", last_name="Shopper")
        )
        await session.commit()

    response = await async_client.post(
        "/auth/reset-password", json={"email": email, "otpCode": code, "newPassword": NEW_PASSWORD}
    )
    assert response.status_code == 400
    assert await _stored_hash(email) == existing_user["hashed_password"]


async def test_reset_password_weak_password_is_rejected_first(async_client: AsyncClient, existing_user) -> None:
    email = existing_user["email"]
    code = (await async_client.post("/auth/forgot-password", json={"email": email})).json()["devOtp"]

    weak = await async_client.post("/auth/reset-password", json={"email": email, "otpCode": code, "newPassword": "short"})
    assert weak.json()["error"] == "WeakPassword"

    ok = await async_client.post(
        "/auth/reset-password", json={"email": email, "otpCode": code, "newPassword": NEW_PASSWORD}
    )
    assert ok.status_code == 200


async def test_verify_otp_reports_invalid_and_expired(async_client: AsyncClient, clock) -> None:
    code = (await _send(async_client))["devOtp"]

    wrong = await async_client.post("/auth/verify-otp", json={"email": "a@x.com", "code": _wrong(code), "purpose": "signup"})
    assert wrong.status_code == 400
    assert wrong.json()["error"] == "InvalidOrExpiredCode"

    short = await async_client.post("/auth/verify-otp", json={"email": "a@x.com", "code": "123", "purpose": "signup"})
    assert short.json()["error"] == "InvalidOrExpiredCode"

    clock.advance(400)
    expired = await async_client.post("/auth/verify-otp", json={"email": "a@x.com", "code": code, "purpose": "signup"})
    assert expired.status_code == 400
    assert "expired" in expired.json()["message"]


async def test_otp_status_supports_countdown_resume(async_client: AsyncClient, clock) -> None:
    before = await async_client.get("/auth/otp-status", params={"email": "a@x.com", "purpose": "signup"})
    assert before.json() == {"success": True, "active": False}

    await _send(async_client)
    clock.advance(100)

    after = await async_client.get("/auth/otp-status", params={"email": "A@x.com", "purpose": "signup"})
    assert after.json() == {"success": True, "active": True, "expiresIn": 200}


async def test_login_rejects_unknown_user(async_client: AsyncClient) -> None:
    response = await async_client.post("/auth/login", json={"email": "ghost@x.com", "password": "Whatever1"})
    assert response.status_code == 401
    assert response.json()["error"] == "InvalidCredentials"
