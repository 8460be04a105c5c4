from datetime import datetime, timedelta

import jwt

from models.base_model import utcnow
from models.user import User

from conftest import PASSWORD, bearer, register_and_verify

API = "/api/v1/auth"


def login(client, username="camper", password=PASSWORD):
    return client.post(f"{API}/login", json={"username": username, "password": password})


def test_registration_to_first_session(client, notifier):
    resp = client.post(f"{API}/register", json={
        "username": "camper", "email": "Camper@Example.com", "password": PASSWORD,
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["user"]["email"] == "camper@example.com"
    assert body["user"]["isEmailVerified"] is False
    assert "password" not in body["user"]
    assert len(notifier.sent) == 1

    # unverified: refused, and a fresh verification mail goes out
    resp = login(client)
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "ACCOUNT_NOT_VERIFIED"
    assert len(notifier.sent) == 2

    token = notifier.last_token("camper@example.com")
    resp = client.get(f"{API}/verify-email?token={token}")
    assert resp.status_code == 200
    assert resp.get_json()["user"]["isEmailVerified"] is True

    resp = login(client)
    assert resp.status_code == 200
    body = resp.get_json()
    claims = jwt.decode(body["accessToken"], options={"verify_signature": False})
    assert claims["exp"] - claims["iat"] == 15 * 60
    expires_at = datetime.fromisoformat(body["expiresAt"].rstrip("Z"))
    assert timedelta(days=6, hours=23) < expires_at - utcnow() <= timedelta(days=7)
    assert body["user"]["username"] == "camper"


def test_verify_email_twice(client, notifier):
    client.post(f"{API}/register", json={"username": "camper", "email": "camper@example.com", "password": PASSWORD})
    token = notifier.last_token()
    assert client.get(f"{API}/verify-email?token={token}").status_code == 200
    resp = client.get(f"{API}/verify-email?token={token}")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "TOKEN_ALREADY_USED"


def test_verify_email_without_token(client):
    resp = client.get(f"{API}/verify-email")
    assert resp.status_code == 422


def test_duplicate_registration(client, notifier):
    register_and_verify(client, notifier)
    resp = client.post(f"{API}/register", json={"username": "camper", "email": "other@example.com", "password": PASSWORD})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "CONFLICT"


def test_registration_validation(client):
    resp = client.post(f"{API}/register", json={"username": "camper", "email": "camper@example.com", "password": "weakpass"})
    assert resp.status_code == 422
    assert resp.get_json()["error"] == "VALIDATION_ERROR"

    resp = client.post(f"{API}/register", json={"username": "camper", "email": "not-an-email", "password": PASSWORD})
    assert resp.status_code == 422
    assert "email" in resp.get_json()["details"]


def test_registration_survives_mail_outage(client, notifier, storage):
    notifier.fail = True
    resp = client.post(f"{API}/register", json={"username": "camper", "email": "camper@example.com", "password": PASSWORD})
    assert resp.status_code == 201
    assert storage.find_user_by_email("camper@example.com") is not None


def test_login_by_email(client, notifier):
    register_and_verify(client, notifier)
    resp = client.post(f"{API}/login", json={"email": "camper@example.com", "password": PASSWORD})
    assert resp.status_code == 200


def test_invalid_credentials_do_not_reveal_existence(client, notifier):
    register_and_verify(client, notifier)
    wrong_password = login(client, password="Wrong#Pass1")
    unknown_user = login(client, username="ghost")
    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.get_json() == unknown_user.get_json()


def test_lockout_after_repeated_failures(client, notifier, storage):
    register_and_verify(client, notifier)
    for _ in range(5):
        assert login(client, password="Wrong#Pass1").status_code == 401
    resp = login(client)
    assert resp.status_code == 423
    assert resp.get_json()["error"] == "ACCOUNT_LOCKED"
    assert "lockUntil" in resp.get_json()["details"]


def test_successful_login_resets_failure_count(client, notifier, storage):
    register_and_verify(client, notifier)
    for _ in range(4):
        login(client, password="Wrong#Pass1")
    assert login(client).status_code == 200
    assert storage.find_user_by_username("camper").failed_login_attempts == 0


def test_refresh_rotation_over_http(client, notifier):
    register_and_verify(client, notifier)
    first = login(client).get_json()["refreshToken"]

    resp = client.post(f"{API}/refresh", json={"refreshToken": first})
    assert resp.status_code == 200
    assert resp.get_json()["refreshToken"] != first

    resp = client.post(f"{API}/refresh", json={"token": first})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "TOKEN_INVALID"


def test_logout_revokes_both_tokens(client, notifier):
    register_and_verify(client, notifier)
    pair = login(client).get_json()

    resp = client.post(f"{API}/logout", json={"token": pair["refreshToken"]}, headers=bearer(pair["accessToken"]))
    assert resp.status_code == 200

    resp = client.post(f"{API}/logout-all", headers=bearer(pair["accessToken"]))
    assert resp.status_code == 401
    assert resp.get_json()["message"] == "Token has been revoked"
    assert client.post(f"{API}/refresh", json={"token": pair["refreshToken"]}).status_code == 401


def test_logout_needs_something_to_revoke(client):
    resp = client.post(f"{API}/logout", json={})
    assert resp.status_code == 422


def test_logout_all(client, notifier):
    register_and_verify(client, notifier)
    first = login(client).get_json()
    second = login(client).get_json()
    assert client.post(f"{API}/logout-all", headers=bearer(first["accessToken"])).status_code == 200
    assert client.post(f"{API}/refresh", json={"token": second["refreshToken"]}).status_code == 401


def test_status(client, notifier):
    resp = client.get(f"{API}/status")
    assert resp.get_json()["isAuthenticated"] is False

    register_and_verify(client, notifier)
    access = login(client).get_json()["accessToken"]
    body = client.get(f"{API}/status", headers=bearer(access)).get_json()
    assert body["isAuthenticated"] is True
    assert body["emailVerified"] is True
    assert body["user"]["username"] == "camper"


def test_protected_route_requires_token(client):
    resp = client.post(f"{API}/logout-all")
    assert resp.status_code == 401
    assert set(resp.get_json()) >= {"error", "message", "status"}


def test_resend_verification(client, notifier, storage):
    client.post(f"{API}/register", json={"username": "camper", "email": "camper@example.com", "password": PASSWORD})
    user_id = storage.find_user_by_email("camper@example.com").id
    access = client.application.extensions["auth"].issuer.issue_access(storage.get(User, user_id))
    first = notifier.last_token()

    resp = client.post(f"{API}/resend-verification", headers=bearer(access))
    assert resp.status_code == 200
    assert resp.get_json()["emailSent"] is True
    assert notifier.last_token() != first
    assert client.get(f"{API}/verify-email?token={first}").status_code == 401


def test_password_reset_over_http(client, notifier):
    register_and_verify(client, notifier)
    before = len(notifier.sent)
    resp = client.post(f"{API}/forgot-password", json={"email": "ghost@example.com"})
    assert resp.status_code == 200
    assert len(notifier.sent) == before

    client.post(f"{API}/forgot-password", json={"email": "camper@example.com"})
    token = notifier.last_token("camper@example.com")
    resp = client.post(f"{API}/reset-password", json={"token": token, "password": "Lantern&Tent99"})
    assert resp.status_code == 200

    resp = client.post(f"{API}/reset-password", json={"token": token, "password": "Lantern&Tent99"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "TOKEN_ALREADY_USED"
    assert login(client, password="Lantern&Tent99").status_code == 200


def test_change_password(client, notifier, storage):
    register_and_verify(client, notifier)
    pair = login(client).get_json()
    headers = bearer(pair["accessToken"])

    resp = client.post(f"{API}/change-password", json={"currentPassword": "Wrong#Pass1", "newPassword": "Lantern&Tent99"}, headers=headers)
    assert resp.status_code == 401

    resp = client.post(f"{API}/change-password", json={"currentPassword": PASSWORD, "newPassword": PASSWORD}, headers=headers)
    assert resp.status_code == 422

    resp = client.post(f"{API}/change-password", json={"currentPassword": PASSWORD, "newPassword": "Lantern&Tent99"}, headers=headers)
    assert resp.status_code == 200
    assert login(client).status_code == 401
    assert login(client, password="Lantern&Tent99").status_code == 200
    history = storage.find_user_by_username("camper").password_history
    assert [entry["reason"] for entry in history] == ["change"]


def test_suspended_user_is_refused_everywhere(client, notifier, storage):
    register_and_verify(client, notifier)
    pair = login(client).get_json()
    user_id = storage.find_user_by_username("camper").id
    storage.update_where(User, (User.id == user_id,), {"is_suspended": True})
    storage.close()

    assert login(client).status_code == 403
    assert client.post(f"{API}/refresh", json={"token": pair["refreshToken"]}).get_json()["error"] == "ACCOUNT_SUSPENDED"
    assert client.post(f"{API}/logout-all", headers=bearer(pair["accessToken"])).status_code == 403


def test_oauth_over_http(client, notifier):
    resp = client.post(f"{API}/oauth/google", json={"code": "auth-code", "redirectUri": "http://localhost:5173/cb"})
    assert resp.status_code == 200
    assert resp.get_json()["refreshToken"]

    resp = client.post(f"{API}/oauth/google", json={"code": "bad-code", "redirectUri": "http://localhost:5173/cb"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "OAUTH_ERROR"


def test_oauth_conflict_over_http(client, notifier):
    client.post(f"{API}/register", json={"username": "trail", "email": "trailblazer@example.com", "password": PASSWORD})
    resp = client.post(f"{API}/oauth/google", json={"code": "auth-code", "redirectUri": "http://localhost:5173/cb"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "OAUTH_CONFLICT"


def test_health(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.get_json()["database"] == "ok"


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "NOT_FOUND"
