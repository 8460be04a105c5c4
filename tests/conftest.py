from __future__ import annotations

import re

import pytest
import requests

from api import create_app
from models.user import User
from services.notifier import Notifier
from services.oauth import OAuthProfile, OAuthProvider
from services.settings import RequestMeta

PASSWORD = "Campfire#2024"
META = RequestMeta(ip_address="203.0.113.7", user_agent="pytest")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, text, html=None):
        if self.fail:
            raise ConnectionError("mail server unreachable")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return f"delivery-{len(self.sent)}"

    def last_token(self, to=None):
        for message in reversed(self.sent):
            if to is None or message["to"] == to:
                match = re.search(r"token=([0-9a-f]+)", message["text"])
                if match:
                    return match.group(1)
        return None


class FakeProvider(OAuthProvider):
    def __init__(self, name, profile):
        self.name = name
        self.profile = profile

    def exchange_code(self, code, redirect_uri):
        if code == "bad-code":
            raise requests.HTTPError("400 Client Error: invalid_grant")
        return "provider-access-token"

    def fetch_profile(self, access_token):
        return self.profile


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def providers():
    return {
        "google": FakeProvider("google", OAuthProfile(subject_id="g-1001", email="trailblazer@example.com", name="Trail Blazer")),
        "facebook": FakeProvider("facebook", OAuthProfile(subject_id="fb-2002", email="trailblazer@example.com", name="Trail Blazer")),
    }


@pytest.fixture
def app(tmp_path, notifier, providers):
    app = create_app(
        "testing",
        config_overrides={
            "DATABASE_URL": f"sqlite:///{tmp_path / 'auth.db'}",
            "CLIENT_URL": "http://localhost:5173",
        },
        notifier=notifier,
        oauth_providers=providers,
    )
    yield app
    app.extensions["storage"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth(app):
    return app.extensions["auth"]


@pytest.fixture
def storage(app):
    return app.extensions["storage"]


@pytest.fixture
def make_user(auth, storage):
    """Register a user through the orchestrator and return the ORM row."""
    def _make(username="camper", email=None, password=PASSWORD, verified=True, **fields):
        email = email or f"{username}@example.com"
        auth.register({"username": username, "email": email, "password": password}, META)
        user = storage.find_user_by_email(email)
        values = dict(fields)
        if verified:
            values["is_email_verified"] = True
        if values:
            storage.update_where(User, (User.id == user.id,), values)
        return storage.get(User, user.id)
    return _make


def register_and_verify(client, notifier, username="camper", password=PASSWORD):
    email = f"{username}@example.com"
    resp = client.post("/api/v1/auth/register", json={"username": username, "email": email, "password": password})
    assert resp.status_code == 201
    token = notifier.last_token(email)
    assert client.get(f"/api/v1/auth/verify-email?token={token}").status_code == 200
    return email


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
