"""
OAuth account linking.

Providers turn an authorization code into a profile {subject_id, email, name};
OAuthLinker maps that profile onto a local account:
1. provider subject id already linked -> that account
2. email matches an account with a password -> OAuthConflict (nothing changes)
3. email matches an OAuth-only account -> link the subject id to it
4. no match -> new account, email trusted as verified, unusable password
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from models.base_model import utcnow
from models.user import User
from services.exceptions import OAuthConflict, OAuthProviderError, ValidationError
from utils.security import PasswordHasher, generate_token

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


@dataclass(frozen=True)
class OAuthProfile:
    subject_id: str
    email: Optional[str]
    name: Optional[str] = None
    picture: Optional[str] = None


class OAuthProvider:
    name = ""

    def exchange_code(self, code: str, redirect_uri: str) -> str:
        raise NotImplementedError

    def fetch_profile(self, access_token: str) -> OAuthProfile:
        raise NotImplementedError

    def authenticate(self, code: str, redirect_uri: str) -> OAuthProfile:
        try:
            return self.fetch_profile(self.exchange_code(code, redirect_uri))
        except requests.RequestException as exc:
            logger.warning("%s OAuth request failed: %s", self.name, exc)
            raise OAuthProviderError(f"Failed to authenticate with {self.name.capitalize()}")
        except (KeyError, ValueError) as exc:
            logger.warning("%s OAuth returned an unexpected payload: %s", self.name, exc)
            raise OAuthProviderError(f"Failed to authenticate with {self.name.capitalize()}")


class GoogleOAuthProvider(OAuthProvider):
    name = "google"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://www.googleapis.com/oauth2/v3/userinfo"

    def __init__(self, client_id: str, client_secret: str, session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = session or requests.Session()

    def exchange_code(self, code, redirect_uri):
        resp = self.http.post(
            self.token_url,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def fetch_profile(self, access_token):
        resp = self.http.get(
            self.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
        return OAuthProfile(
            subject_id=str(data["sub"]),
            email=data.get("email"),
            name=data.get("name"),
            picture=data.get("picture"),
        )


class FacebookOAuthProvider(OAuthProvider):
    name = "facebook"
    token_url = "https://graph.facebook.com/v12.0/oauth/access_token"
    profile_url = "https://graph.facebook.com/me"

    def __init__(self, app_id: str, app_secret: str, session: Optional[requests.Session] = None):
        self.app_id = app_id
        self.app_secret = app_secret
        self.http = session or requests.Session()

    def exchange_code(self, code, redirect_uri):
        resp = self.http.get(
            self.token_url,
            params={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def fetch_profile(self, access_token):
        resp = self.http.get(
            self.profile_url,
            params={"fields": "id,name,email,picture", "access_token": access_token},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
        picture = ((data.get("picture") or {}).get("data") or {}).get("url")
        return OAuthProfile(subject_id=str(data["id"]), email=data.get("email"), name=data.get("name"), picture=picture)


def providers_from_config(config) -> Dict[str, OAuthProvider]:
    providers = {}
    if config.get("GOOGLE_CLIENT_ID") and config.get("GOOGLE_CLIENT_SECRET"):
        providers["google"] = GoogleOAuthProvider(config["GOOGLE_CLIENT_ID"], config["GOOGLE_CLIENT_SECRET"])
    if config.get("FACEBOOK_APP_ID") and config.get("FACEBOOK_APP_SECRET"):
        providers["facebook"] = FacebookOAuthProvider(config["FACEBOOK_APP_ID"], config["FACEBOOK_APP_SECRET"])
    return providers


class OAuthLinker:
    def __init__(self, storage, hasher: PasswordHasher):
        self.storage = storage
        self.hasher = hasher

    def _username_for(self, provider: str, profile: OAuthProfile) -> str:
        base = profile.email.split("@")[0] if profile.email else f"{provider}_user"
        for _ in range(10):
            candidate = f"{base}_{random.randint(0, 9999):04d}"
            if self.storage.find_user_by_username(candidate) is None:
                return candidate
        return f"{base}_{generate_token(4)}"

    def resolve(self, provider: str, profile: OAuthProfile) -> User:
        """Find, link or create the local account for a provider identity."""
        if not profile.subject_id:
            raise ValidationError("Identity provider returned no subject id")
        column = f"{provider}_id"
        if not hasattr(User, column):
            raise ValidationError(f"Unsupported provider: {provider}")

        user = self.storage.find_user_by_provider(provider, profile.subject_id)
        if user is not None:
            return user

        email = profile.email.strip().lower() if profile.email else None
        if email:
            user = self.storage.find_user_by_email(email)
            if user is not None:
                if user.has_password:
                    logger.warning("OAuth %s login refused: %s belongs to a password account", provider, user.id)
                    raise OAuthConflict()
                setattr(user, column, profile.subject_id)
                self.storage.new(user)
                self.storage.save()
                logger.info("Linked %s identity to user %s", provider, user.id)
                return user

        user = User(
            username=self._username_for(provider, profile),
            email=email or f"{provider}_{profile.subject_id}@placeholder.invalid",
            # random secret nobody learns; has_password=False marks it unusable
            password_hash=self.hasher.hash(generate_token(16)),
            has_password=False,
            password_history=[],
            is_email_verified=bool(email),
            email_verified_at=utcnow() if email else None,
        )
        setattr(user, column, profile.subject_id)
        self.storage.new(user)
        self.storage.save()
        logger.info("Created user %s from %s identity", user.id, provider)
        return user
