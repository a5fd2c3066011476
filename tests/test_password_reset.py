from datetime import timedelta

import pytest

from Models.auth_models import PasswordResetToken
from services import reset_cooldown, session_manager
from utils.date_utils import utcnow
from utils.errors import InvalidOrExpiredToken, RateLimited, WeakPassword

from conftest import PASSWORD, bearer, login


def _reset_token_from_mail(mailer, email):
    sent = mailer.to(email, "password_reset")
    assert sent, "no reset mail was sent"
    url = sent[-1].data["reset_url"]
    assert url.startswith("http://portal.test/reset-password?token=")
    return url.split("token=", 1)[1]


def test_forgot_password_is_success_shaped_for_unknown_email(client, mailer):
    response = client.post("/api/auth/forgot-password", json={"email": "nobody@college.edu"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert mailer.sent == []


def test_forgot_password_ignores_inactive_accounts(client, make_user, mailer):
    user = make_user(is_active=False)

    response = client.post("/api/auth/forgot-password", json={"email": user.email})

    assert response.status_code == 200
    assert mailer.to(user.email) == []


def test_reset_flow(client, make_user, mailer, db):
    user = make_user(force_password_change=True)
    old_headers = bearer(login(client, user.email))

    assert client.post("/api/auth/forgot-password", json={"email": user.email}).status_code == 200
    token = _reset_token_from_mail(mailer, user.email)

    # only the digest is stored
    stored = db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.user_id).one()
    assert stored.token_hash != token and len(stored.token_hash) == 64

    response = client.post("/api/auth/reset-password", json={
        "token": token, "newPassword": "Reset#Pass1", "confirmPassword": "Reset#Pass1",
    })
    assert response.status_code == 200

    # existing sessions end, the new password works and the forced change is cleared
    assert client.get("/api/auth/verify", headers=old_headers).status_code == 401
    relogin = client.post("/api/auth/login", json={"email": user.email, "password": "Reset#Pass1"})
    assert relogin.status_code == 200
    assert relogin.json()["data"]["requirePasswordChange"] is False

    # single use
    again = client.post("/api/auth/reset-password", json={
        "token": token, "newPassword": "Other#Pass2", "confirmPassword": "Other#Pass2",
    })
    assert again.status_code == 400
    assert again.json()["code"] == "InvalidOrExpiredToken"


def test_reset_rejects_mismatch_and_weak_password(client, make_user, mailer):
    user = make_user()
    client.post("/api/auth/forgot-password", json={"email": user.email})
    token = _reset_token_from_mail(mailer, user.email)

    mismatch = client.post("/api/auth/reset-password", json={
        "token": token, "newPassword": "Reset#Pass1", "confirmPassword": "Reset#Pass2",
    })
    assert mismatch.json()["code"] == "InvalidOrExpiredToken"

    weak = client.post("/api/auth/reset-password", json={
        "token": token, "newPassword": "weakpass", "confirmPassword": "weakpass",
    })
    assert weak.json()["code"] == "WeakPassword"

    # the failed attempts did not consume the token
    ok = client.post("/api/auth/reset-password", json={
        "token": token, "newPassword": "Reset#Pass1", "confirmPassword": "Reset#Pass1",
    })
    assert ok.status_code == 200


def test_reset_unknown_token(client):
    response = client.post("/api/auth/reset-password", json={
        "token": "not-a-real-token", "newPassword": "Reset#Pass1", "confirmPassword": "Reset#Pass1",
    })

    assert response.status_code == 400
    assert response.json()["code"] == "InvalidOrExpiredToken"


def test_expired_reset_token(db, make_user):
    user = make_user()
    raw = session_manager.request_reset(db, user.email)

    later = utcnow() + timedelta(minutes=session_manager.RESET_TOKEN_MINUTES + 1)
    with pytest.raises(InvalidOrExpiredToken):
        session_manager.reset_password(db, raw, "Reset#Pass1", "Reset#Pass1", now=later)


def test_newer_reset_link_supersedes_older(db, make_user):
    user = make_user()
    first = session_manager.request_reset(db, user.email)
    second = session_manager.request_reset(db, user.email)

    with pytest.raises(InvalidOrExpiredToken):
        session_manager.reset_password(db, first, "Reset#Pass1", "Reset#Pass1")
    session_manager.reset_password(db, second, "Reset#Pass1", "Reset#Pass1")


def test_weak_password_is_checked_before_token(db):
    with pytest.raises(WeakPassword):
        session_manager.reset_password(db, "whatever", "short", "short")


def test_cooldown_blocks_after_threshold(client, make_user):
    user = make_user()

    for _ in range(reset_cooldown.FORGOT_MAX_REQUESTS):
        assert client.post("/api/auth/forgot-password", json={"email": user.email}).status_code == 200

    status = client.post("/api/auth/check-forgot-cooldown", json={"email": user.email})
    assert status.json()["data"]["isBlocked"] is True
    assert status.json()["data"]["remainingSeconds"] > 0

    blocked = client.post("/api/auth/forgot-password", json={"email": user.email})
    assert blocked.status_code == 429
    body = blocked.json()
    assert body["kind"] == "RateLimited"
    assert body["remainingSeconds"] > 0
    assert blocked.headers["Retry-After"] == str(body["remainingSeconds"])


def test_cooldown_is_keyed_by_email_not_account(client):
    """Unknown emails count too, so the response never reveals which accounts exist"""
    for _ in range(reset_cooldown.FORGOT_MAX_REQUESTS):
        client.post("/api/auth/forgot-password", json={"email": "ghost@college.edu"})

    assert client.post("/api/auth/forgot-password", json={"email": "ghost@college.edu"}).status_code == 429
    assert client.post("/api/auth/forgot-password", json={"email": "other@college.edu"}).status_code == 200


def test_check_cooldown_has_no_side_effects(db):
    now = utcnow()
    for _ in range(5):
        status = reset_cooldown.check_cooldown(db, "quiet@college.edu", now)
        assert status.is_blocked is False
        assert status.remaining_seconds == 0

    reset_cooldown.register_request(db, "quiet@college.edu", now)
    assert reset_cooldown.check_cooldown(db, "quiet@college.edu", now).is_blocked is False


def test_cooldown_window_elapses(db):
    start = utcnow()
    email = "Window@College.edu "
    for _ in range(reset_cooldown.FORGOT_MAX_REQUESTS):
        reset_cooldown.register_request(db, email, start)

    with pytest.raises(RateLimited) as exc:
        reset_cooldown.register_request(db, email, start + timedelta(seconds=60))
    assert exc.value.remaining_seconds == reset_cooldown.FORGOT_WINDOW_SECONDS - 60

    after = start + timedelta(seconds=reset_cooldown.FORGOT_WINDOW_SECONDS + 1)
    assert reset_cooldown.check_cooldown(db, email, after).is_blocked is False
    reset_cooldown.register_request(db, email, after)
    status = reset_cooldown.check_cooldown(db, email, after)
    assert status.is_blocked is False
