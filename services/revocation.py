"""
RevocationService: refresh-token rotation and revocation, access-token blacklist.

Rotation is revoke-then-issue. The revoke step is a conditional UPDATE on
is_revoked, so two callers presenting the same refresh token cannot both win.
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from models.base_model import utcnow
from models.blacklisted_token import BlacklistedToken
from models.refresh_token import RefreshToken
from models.user import User
from services.exceptions import AccountSuspended, TokenInvalid
from services.settings import RequestMeta, TokenPair
from services.tokens import TokenIssuer
from utils.security import token_digest

logger = logging.getLogger(__name__)


class RevocationService:
    def __init__(self, storage, issuer: TokenIssuer):
        self.storage = storage
        self.issuer = issuer

    def _mark_revoked(self, value: str) -> bool:
        """Flip one refresh token to revoked; True only for the caller that flipped it."""
        changed = self.storage.update_where(
            RefreshToken,
            (RefreshToken.token == value, RefreshToken.is_revoked.is_(False)),
            {"is_revoked": True, "revoked_at": utcnow()},
        )
        return changed == 1

    def rotate(self, value: str, meta: Optional[RequestMeta] = None) -> Tuple[User, TokenPair]:
        """Exchange a refresh token for a new access/refresh pair."""
        try:
            rt = self.issuer.find_valid_refresh(value)
            if rt is None:
                raise TokenInvalid("Invalid refresh token")

            user = self.storage.get(User, rt.user_id)
            if user is None:
                self._mark_revoked(value)
                raise TokenInvalid("User not found")

            if user.account_suspended:
                self._mark_revoked(value)
                logger.warning("Refresh attempted by suspended user %s", user.id)
                raise AccountSuspended()

            if not self._mark_revoked(value):
                # someone else rotated or revoked it between lookup and update
                raise TokenInvalid("Invalid refresh token")

            pair = self.issuer.issue_pair(user, meta)
        except SQLAlchemyError:
            self.storage.rollback()
            logger.exception("Store failure during refresh token rotation")
            raise TokenInvalid("Invalid refresh token")

        logger.info("Refresh token rotated for user %s", user.id)
        return user, pair

    def revoke_refresh_token(self, value: str) -> bool:
        """Idempotent; absent or already-revoked tokens are a no-op."""
        if not value:
            return False
        return self._mark_revoked(value)

    def revoke_all_user_tokens(self, user_id: str) -> int:
        count = self.storage.update_where(
            RefreshToken,
            (RefreshToken.user_id == str(user_id), RefreshToken.is_revoked.is_(False)),
            {"is_revoked": True, "revoked_at": utcnow()},
        )
        logger.info("Revoked %d refresh tokens for user %s", count, user_id)
        return count

    # ---- access-token blacklist ---------------------------------------------

    def blacklist_access(self, token: str, user, reason: str = "logout",
                         meta: Optional[RequestMeta] = None) -> Optional[BlacklistedToken]:
        """
        Record an access token as revoked until its own exp. The token is decoded
        without verification, only to recover exp.
        """
        entry, _ = self._record_access(token, user, reason, meta)
        return entry

    def claim_access(self, token: str, user, reason: str,
                     meta: Optional[RequestMeta] = None) -> bool:
        """
        Blacklist token and report whether this call did it. Of several
        concurrent callers holding the same token, exactly one gets True.
        """
        _, created = self._record_access(token, user, reason, meta)
        return created

    def _record_access(self, token, user, reason, meta) -> Tuple[Optional[BlacklistedToken], bool]:
        expires_at = self.issuer.peek_expiry(token)
        if expires_at is None:
            raise TokenInvalid("Invalid token")
        if expires_at <= utcnow():
            # already dead on its own
            return None, False

        digest = token_digest(token)
        session = self.storage.get_session()
        existing = session.query(BlacklistedToken).filter(BlacklistedToken.token_hash == digest).first()
        if existing is not None:
            return existing, False

        meta = meta or RequestMeta()
        entry = BlacklistedToken(
            token_hash=digest,
            user_id=str(user.id),
            token_type="access",
            expires_at=expires_at,
            reason=reason,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.storage.new(entry)
        try:
            self.storage.save()
        except SQLAlchemyError:
            # lost an insert race on the unique digest; the token is blacklisted either way
            if not self.is_blacklisted(token):
                raise
            return None, False
        return entry, True

    def is_blacklisted(self, token: str) -> bool:
        session = self.storage.get_session()
        digest = token_digest(token)
        return (
            session.query(BlacklistedToken.id)
            .filter(BlacklistedToken.token_hash == digest)
            .first()
            is not None
        )

    def prune_expired(self) -> dict:
        result = self.storage.prune_expired()
        logger.info(
            "Pruned %d blacklisted and %d refresh tokens",
            result["blacklisted_tokens"], result["refresh_tokens"],
        )
        return result
