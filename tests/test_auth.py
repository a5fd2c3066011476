from Models.auth_models import AuthAudit, User, UserRole

from conftest import PASSWORD, bearer, login


def test_login_success(client, make_user, db):
    """Login returns a token, the user and the password-change flag"""
    user = make_user(role=UserRole.STUDENT, department="Cardiology")

    response = client.post("/api/auth/login", json={"email": user.email.upper(), "password": PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["token"]
    assert data["requirePasswordChange"] is False
    assert data["user"]["email"] == user.email
    assert data["user"]["role"] == "STUDENT"
    assert "passwordHash" not in data["user"]

    db.expire_all()
    assert db.get(User, user.user_id).last_login is not None
    events = [a.event for a in db.query(AuthAudit).filter(AuthAudit.user_id == user.user_id)]
    assert "LOGIN_SUCCESS" in events


def test_login_wrong_password(client, make_user):
    user = make_user()

    response = client.post("/api/auth/login", json={"email": user.email, "password": "Wrong#pass1"})

    assert response.status_code == 401
    body = response.json()
    assert body == {
        "success": False,
        "kind": "Unauthenticated",
        "code": "InvalidCredentials",
        "message": "Invalid email or password",
    }


def test_login_unknown_email_looks_like_wrong_password(client):
    response = client.post("/api/auth/login", json={"email": "ghost@college.edu", "password": PASSWORD})

    assert response.status_code == 401
    assert response.json()["code"] == "InvalidCredentials"


def test_login_inactive_account(client, make_user):
    user = make_user(is_active=False)

    response = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})

    assert response.status_code == 401
    assert response.json()["code"] == "InvalidCredentials"
    assert "deactivated" in response.json()["message"]


def test_login_body_validation(client):
    response = client.post("/api/auth/login", json={"email": "not-an-email"})

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "ValidationError"
    fields = {e["field"] for e in body["errors"]}
    assert {"email", "password"} <= fields


def test_verify_and_me(client, make_user):
    user = make_user(role=UserRole.EMPLOYEE, department="Radiology")
    headers = bearer(login(client, user.email))

    verify = client.get("/api/auth/verify", headers=headers)
    me = client.get("/api/auth/me", headers=headers)

    assert verify.status_code == 200
    assert verify.json()["data"]["user"]["userId"] == user.user_id
    assert me.status_code == 200
    assert me.json()["data"]["department"] == "Radiology"


def test_verify_rejects_missing_and_tampered_tokens(client, make_user):
    user = make_user()
    token = login(client, user.email)

    assert client.get("/api/auth/verify").status_code == 401
    tampered = token[:-3] + ("aaa" if not token.endswith("aaa") else "bbb")
    response = client.get("/api/auth/verify", headers=bearer(tampered))
    assert response.status_code == 401
    assert response.json()["kind"] == "Unauthenticated"


def test_token_accepted_from_cookie(client, make_user):
    user = make_user()
    token = login(client, user.email)

    client.cookies.set("token", token)
    response = client.get("/api/auth/me")
    client.cookies.clear()

    assert response.status_code == 200


def test_logout_invalidates_token(client, make_user):
    user = make_user()
    headers = bearer(login(client, user.email))

    assert client.post("/api/auth/logout", headers=headers).status_code == 200

    response = client.get("/api/auth/verify", headers=headers)
    assert response.status_code == 401


def test_change_password_rotates_token(client, make_user, mailer):
    user = make_user()
    old_headers = bearer(login(client, user.email))

    response = client.post("/api/auth/change-password", headers=old_headers, json={
        "currentPassword": PASSWORD,
        "newPassword": "Brand#New99",
        "confirmPassword": "Brand#New99",
    })

    assert response.status_code == 200
    new_token = response.json()["data"]["token"]
    assert client.get("/api/auth/verify", headers=old_headers).status_code == 401
    assert client.get("/api/auth/verify", headers=bearer(new_token)).status_code == 200
    login(client, user.email, "Brand#New99")
    assert mailer.to(user.email, "password_changed")


def test_change_password_failures(client, make_user):
    user = make_user()
    headers = bearer(login(client, user.email))

    def change(current, new, confirm):
        return client.post("/api/auth/change-password", headers=headers, json={
            "currentPassword": current, "newPassword": new, "confirmPassword": confirm,
        })

    mismatch = change(PASSWORD, "Brand#New99", "Brand#New98")
    assert mismatch.status_code == 400
    assert mismatch.json()["errors"][0]["field"] == "confirmPassword"

    weak = change(PASSWORD, "nospecial1", "nospecial1")
    assert weak.status_code == 400
    assert weak.json()["code"] == "WeakPassword"

    short = change(PASSWORD, "a#1", "a#1")
    assert short.json()["code"] == "WeakPassword"

    wrong = change("Not#mine99", "Brand#New99", "Brand#New99")
    assert wrong.status_code == 400
    assert wrong.json()["code"] == "InvalidCredentials"

    reuse = change(PASSWORD, PASSWORD, PASSWORD)
    assert reuse.status_code == 400
    assert reuse.json()["code"] == "PasswordReuse"

    # nothing above rotated the session
    assert client.get("/api/auth/verify", headers=headers).status_code == 200


def test_forced_password_change_gate(client, make_user):
    """Until the password is changed only change-password, verify, me and logout work"""
    user = make_user(role=UserRole.STUDENT, force_password_change=True)

    response = client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
    assert response.json()["data"]["requirePasswordChange"] is True
    headers = bearer(response.json()["data"]["token"])

    blocked = client.get("/api/student/complaints", headers=headers)
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "PasswordChangeRequired"
    assert blocked.json()["requirePasswordChange"] is True
    assert client.get("/api/student/profile", headers=headers).status_code == 403

    assert client.get("/api/auth/verify", headers=headers).status_code == 200
    assert client.get("/api/auth/me", headers=headers).status_code == 200

    changed = client.post("/api/auth/change-password", headers=headers, json={
        "currentPassword": PASSWORD, "newPassword": "Fresh#Start1", "confirmPassword": "Fresh#Start1",
    })
    assert changed.status_code == 200
    assert changed.json()["data"]["user"]["forcePasswordChange"] is False
    new_headers = bearer(changed.json()["data"]["token"])

    assert client.get("/api/student/complaints", headers=new_headers).status_code == 200
    # the pre-change token stays dead
    assert client.get("/api/student/complaints", headers=headers).status_code == 401

    relogin = client.post("/api/auth/login", json={"email": user.email, "password": "Fresh#Start1"})
    assert relogin.json()["data"]["requirePasswordChange"] is False


def test_role_guard(client, make_user):
    student = make_user(role=UserRole.STUDENT)
    headers = bearer(login(client, student.email))

    response = client.get("/api/admin/complaints", headers=headers)

    assert response.status_code == 403
    assert response.json()["kind"] == "Forbidden"
