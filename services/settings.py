"""
Plain value objects shared by the services.

AuthSettings is built once from the Flask config by the application factory, so
the services never read current_app or module globals.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class AuthSettings:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "campground-auth"
    access_token_ttl: timedelta = timedelta(minutes=15)
    two_factor_token_ttl: timedelta = timedelta(minutes=10)
    refresh_token_ttl: timedelta = timedelta(days=7)
    email_verification_ttl: timedelta = timedelta(hours=24)
    password_reset_ttl: timedelta = timedelta(hours=1)
    two_factor_issuer: str = "MyanCamp"
    backup_code_count: int = 10
    max_failed_logins: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)
    client_url: str = "http://localhost:5173"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AuthSettings":
        return cls(
            jwt_secret=config["JWT_SECRET"],
            jwt_algorithm=config.get("JWT_ALGORITHM", "HS256"),
            jwt_issuer=config.get("JWT_ISSUER", "campground-auth"),
            access_token_ttl=config.get("ACCESS_TOKEN_EXPIRES", timedelta(minutes=15)),
            two_factor_token_ttl=config.get("TWO_FACTOR_TOKEN_EXPIRES", timedelta(minutes=10)),
            refresh_token_ttl=config.get("REFRESH_TOKEN_EXPIRES", timedelta(days=7)),
            email_verification_ttl=config.get("EMAIL_VERIFICATION_EXPIRES", timedelta(hours=24)),
            password_reset_ttl=config.get("PASSWORD_RESET_EXPIRES", timedelta(hours=1)),
            two_factor_issuer=config.get("TWO_FACTOR_ISSUER", "MyanCamp"),
            backup_code_count=int(config.get("BACKUP_CODE_COUNT", 10)),
            max_failed_logins=int(config.get("MAX_FAILED_LOGINS", 5)),
            lockout_duration=config.get("LOCKOUT_DURATION", timedelta(minutes=30)),
            client_url=(config.get("CLIENT_URL") or "http://localhost:5173").rstrip("/"),
        )


@dataclass(frozen=True)
class RequestMeta:
    """Where a request came from; recorded on issued and revoked tokens."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.refresh_expires_at.isoformat() + "Z",
        }


@dataclass
class AuthResult:
    """
    Outcome of authenticating a bearer token. Callers branch on `ok`; on failure
    `error` holds the AuthError to report.
    """
    ok: bool
    user: Any = None
    claims: Optional[dict] = None
    token: Optional[str] = None
    error: Any = None

    @property
    def is_pending_two_factor(self) -> bool:
        return bool(self.claims) and self.claims.get("scope") == "2fa_pending"

    @classmethod
    def success(cls, user, claims, token) -> "AuthResult":
        return cls(ok=True, user=user, claims=claims, token=token)

    @classmethod
    def failure(cls, error) -> "AuthResult":
        return cls(ok=False, error=error)
