"""
TokenIssuer:
- Access tokens are JWTs signed with PyJWT (HS256 by default). They are
  self-verifying; revocation before exp goes through the blacklist.
- Refresh tokens are opaque random strings (320 bits) persisted in the
  refresh_tokens table. Their validity is decided only by a store lookup.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from models.base_model import utcnow
from models.refresh_token import RefreshToken
from services.exceptions import TokenExpired, TokenInvalid
from services.settings import AuthSettings, RequestMeta, TokenPair
from utils.security import generate_jti, generate_token

logger = logging.getLogger(__name__)

PENDING_TWO_FACTOR_SCOPE = "2fa_pending"
REFRESH_TOKEN_BYTES = 40


class TokenIssuer:
    def __init__(self, storage, settings: AuthSettings):
        self.storage = storage
        self.settings = settings

    # ---- access tokens -------------------------------------------------------

    def issue_access(self, user, ttl: Optional[timedelta] = None, scope: Optional[str] = None) -> str:
        """Signed access token for user; ttl defaults to ACCESS_TOKEN_EXPIRES."""
        now = datetime.now(timezone.utc)
        exp = now + (ttl if ttl is not None else self.settings.access_token_ttl)
        payload = {
            "iss": self.settings.jwt_issuer,
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "isAdmin": bool(user.is_admin),
            "isOwner": bool(user.is_owner),
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
            "jti": generate_jti(),
        }
        if scope:
            payload["scope"] = scope
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def issue_pending(self, user) -> str:
        """Short-lived token that only proves the password step of a 2FA login."""
        return self.issue_access(user, ttl=self.settings.two_factor_token_ttl, scope=PENDING_TWO_FACTOR_SCOPE)

    def decode_access(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate an access JWT. Raises TokenExpired past exp and
        TokenInvalid on any other defect (signature, issuer, type).
        """
        try:
            decoded = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
                issuer=self.settings.jwt_issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired("Access token has expired")
        except jwt.InvalidTokenError as exc:
            raise TokenInvalid(f"Invalid token: {exc}")

        if decoded.get("type") != "access":
            raise TokenInvalid("Wrong token type")
        return decoded

    @staticmethod
    def peek_expiry(token: str) -> Optional[datetime]:
        """exp claim as naive UTC, read without verifying the signature."""
        try:
            decoded = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
        except jwt.InvalidTokenError:
            return None
        exp = decoded.get("exp")
        if not isinstance(exp, (int, float)):
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None)

    # ---- refresh tokens ------------------------------------------------------

    def issue_refresh(self, user, meta: Optional[RequestMeta] = None) -> RefreshToken:
        meta = meta or RequestMeta()
        rt = RefreshToken(
            user_id=str(user.id),
            token=generate_token(REFRESH_TOKEN_BYTES),
            expires_at=utcnow() + self.settings.refresh_token_ttl,
            is_revoked=False,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.storage.new(rt)
        self.storage.save()
        return rt

    def issue_pair(self, user, meta: Optional[RequestMeta] = None) -> TokenPair:
        access = self.issue_access(user)
        rt = self.issue_refresh(user, meta)
        return TokenPair(access_token=access, refresh_token=rt.token, refresh_expires_at=rt.expires_at)

    def find_valid_refresh(self, value: str) -> Optional[RefreshToken]:
        """Row for value if it is neither revoked nor expired."""
        if not value:
            return None
        session = self.storage.get_session()
        return (
            session.query(RefreshToken)
            .filter(
                RefreshToken.token == value,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > utcnow(),
            )
            .first()
        )
