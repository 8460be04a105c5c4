import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models.base_model import utcnow
from models.blacklisted_token import BlacklistedToken
from models.refresh_token import RefreshToken
from models.user import OwnerProfile, User
from services.exceptions import AccountSuspended, TokenInvalid, TwoFactorRequired, Unauthenticated

from conftest import META, PASSWORD


def login(auth, username="camper"):
    return auth.login(username, PASSWORD, META)


def test_refresh_rotates_exactly_once(auth, make_user):
    make_user()
    first = login(auth)
    second = auth.refresh(first["refreshToken"], META)
    assert second["refreshToken"] != first["refreshToken"]
    assert second["accessToken"] != first["accessToken"]

    with pytest.raises(TokenInvalid):
        auth.refresh(first["refreshToken"], META)
    # the successor stays usable
    assert auth.refresh(second["refreshToken"], META)["refreshToken"]


def test_refresh_of_unknown_token(auth):
    with pytest.raises(TokenInvalid):
        auth.refresh("deadbeef", META)


def test_refresh_of_expired_token(auth, make_user, storage):
    make_user()
    pair = login(auth)
    storage.update_where(
        RefreshToken,
        (RefreshToken.token == pair["refreshToken"],),
        {"expires_at": utcnow() - timedelta(seconds=1)},
    )
    with pytest.raises(TokenInvalid):
        auth.refresh(pair["refreshToken"], META)


def test_concurrent_refresh_has_one_winner(auth, make_user, storage):
    make_user()
    value = login(auth)["refreshToken"]
    storage.close()

    attempts = 6
    barrier = threading.Barrier(attempts)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            outcome = auth.refresh(value, META)["refreshToken"]
        except TokenInvalid:
            outcome = None
        finally:
            storage.close()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(attempts)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    winners = [r for r in results if r]
    assert len(results) == attempts
    assert len(winners) == 1
    session = storage.get_session()
    assert session.query(RefreshToken).filter(RefreshToken.is_revoked.is_(False)).count() == 1


def test_rotation_lost_between_lookup_and_update(auth, make_user, storage, monkeypatch):
    make_user()
    value = login(auth)["refreshToken"]
    original = auth.issuer.find_valid_refresh

    def find_then_race(token):
        row = original(token)
        # a competing request revokes the row right after our lookup
        storage.update_where(RefreshToken, (RefreshToken.token == token,), {"is_revoked": True})
        return row

    monkeypatch.setattr(auth.issuer, "find_valid_refresh", find_then_race)
    with pytest.raises(TokenInvalid):
        auth.refresh(value, META)
    monkeypatch.undo()
    session = storage.get_session()
    assert session.query(RefreshToken).count() == 1


def test_refresh_store_failure_is_token_invalid(auth, make_user, monkeypatch):
    make_user()
    value = login(auth)["refreshToken"]

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE refresh_tokens", {}, Exception("database is locked"))

    monkeypatch.setattr(auth.storage, "update_where", broken)
    with pytest.raises(TokenInvalid):
        auth.refresh(value, META)


def test_suspended_user_cannot_refresh(auth, make_user, storage):
    user = make_user()
    value = login(auth)["refreshToken"]
    storage.update_where(User, (User.id == user.id,), {"is_suspended": True})
    with pytest.raises(AccountSuspended):
        auth.refresh(value, META)
    # the token is revoked on the way out
    assert auth.issuer.find_valid_refresh(value) is None


def test_suspended_owner_profile_blocks_refresh(auth, make_user, storage):
    user = make_user(is_owner=True)
    value = login(auth)["refreshToken"]
    user.owner_profile = OwnerProfile(business_name="Pine Hollow", is_suspended=True)
    storage.new(user)
    storage.save()
    with pytest.raises(AccountSuspended):
        auth.refresh(value, META)


def test_revoke_refresh_token_is_idempotent(auth, make_user):
    make_user()
    value = login(auth)["refreshToken"]
    assert auth.revocation.revoke_refresh_token(value) is True
    assert auth.revocation.revoke_refresh_token(value) is False
    assert auth.revocation.revoke_refresh_token("missing") is False
    assert auth.revocation.revoke_refresh_token("") is False


def test_revoke_all_user_tokens(auth, make_user):
    make_user()
    make_user("ranger")
    sessions = [login(auth) for _ in range(3)]
    other = login(auth, "ranger")

    user_id = auth.authenticate(sessions[0]["accessToken"]).user.id
    assert auth.revocation.revoke_all_user_tokens(user_id) == 3
    for pair in sessions:
        with pytest.raises(TokenInvalid):
            auth.refresh(pair["refreshToken"], META)
    assert auth.refresh(other["refreshToken"], META)


def test_logout_blacklists_access_token(auth, make_user):
    make_user()
    pair = login(auth)
    result = auth.authenticate(pair["accessToken"])
    assert result.ok

    auth.logout(pair["refreshToken"], result, META)

    # still cryptographically valid, but revoked
    assert auth.issuer.decode_access(pair["accessToken"])
    after = auth.authenticate(pair["accessToken"])
    assert not after.ok
    assert isinstance(after.error, Unauthenticated)
    assert after.error.message == "Token has been revoked"
    with pytest.raises(TokenInvalid):
        auth.refresh(pair["refreshToken"], META)


def test_blacklist_entry_mirrors_token_expiry(auth, make_user, storage):
    user = make_user()
    token = auth.issuer.issue_access(user)
    entry = auth.revocation.blacklist_access(token, user, "logout", META)
    assert entry.expires_at == auth.issuer.peek_expiry(token)
    assert entry.token_hash != token
    assert entry.reason == "logout"
    # second call returns the existing row
    again = auth.revocation.blacklist_access(token, user, "logout", META)
    assert again.id == entry.id
    assert storage.count(BlacklistedToken) == 1


def test_blacklisting_an_expired_token_is_a_no_op(auth, make_user, storage):
    user = make_user()
    token = auth.issuer.issue_access(user, ttl=timedelta(seconds=-5))
    assert auth.revocation.blacklist_access(token, user) is None
    assert storage.count(BlacklistedToken) == 0


def test_blacklisting_garbage_is_rejected(auth, make_user):
    with pytest.raises(TokenInvalid):
        auth.revocation.blacklist_access("garbage", make_user())


def test_claim_access_is_true_only_for_the_first_caller(auth, make_user, storage):
    user = make_user()
    token = auth.issuer.issue_pending(user)
    assert auth.revocation.claim_access(token, user, "two_factor_complete", META) is True
    assert auth.revocation.claim_access(token, user, "two_factor_complete", META) is False
    assert storage.count(BlacklistedToken) == 1


def test_logout_all_revokes_every_session(auth, make_user):
    make_user()
    first = login(auth)
    second = login(auth)
    auth.logout_all(auth.authenticate(first["accessToken"]), META)

    assert not auth.authenticate(first["accessToken"]).ok
    for pair in (first, second):
        with pytest.raises(TokenInvalid):
            auth.refresh(pair["refreshToken"], META)


def test_prune_removes_only_dead_rows(auth, make_user, storage):
    user = make_user()
    live = auth.issuer.issue_access(user)
    auth.revocation.blacklist_access(live, user)
    storage.new(BlacklistedToken(
        token_hash="0" * 64, user_id=user.id, token_type="access",
        expires_at=utcnow() - timedelta(minutes=1), reason="logout",
    ))
    login(auth)
    stale = auth.issuer.issue_refresh(user, META)
    stale.expires_at = utcnow() - timedelta(days=1)
    storage.new(stale)
    storage.save()

    assert auth.prune_expired() == {"blacklisted_tokens": 1, "refresh_tokens": 1}
    # pruning never resurrects a revoked token
    assert auth.revocation.is_blacklisted(live)


def test_authenticate_fails_closed_on_store_error(auth, make_user, monkeypatch):
    make_user()
    token = login(auth)["accessToken"]

    def broken(token):
        raise OperationalError("SELECT blacklisted_tokens", {}, Exception("no connection"))

    monkeypatch.setattr(auth.revocation, "is_blacklisted", broken)
    result = auth.authenticate(token)
    assert not result.ok
    assert isinstance(result.error, Unauthenticated)


def test_authenticate_rejects_expired_and_missing(auth, make_user):
    user = make_user()
    expired = auth.authenticate(auth.issuer.issue_access(user, ttl=timedelta(seconds=-1)))
    assert isinstance(expired.error, Unauthenticated)
    assert expired.error.details == {"reason": "TOKEN_EXPIRED"}
    assert isinstance(auth.authenticate(None).error, Unauthenticated)
    assert isinstance(auth.authenticate("abc.def.ghi").error, Unauthenticated)


def test_authenticate_rejects_suspended_user(auth, make_user, storage):
    user = make_user()
    token = login(auth)["accessToken"]
    storage.update_where(User, (User.id == user.id,), {"is_suspended": True})
    assert isinstance(auth.authenticate(token).error, AccountSuspended)


def test_pending_token_only_where_allowed(auth, make_user):
    user = make_user(is_two_factor_enabled=True, two_factor_secret="JBSWY3DPEHPK3PXP")
    pending = auth.issuer.issue_pending(user)
    assert isinstance(auth.authenticate(pending).error, TwoFactorRequired)
    result = auth.authenticate(pending, allow_pending=True)
    assert result.ok and result.is_pending_two_factor
