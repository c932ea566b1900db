"""
tests/test_logout.py -- Unit tests for logout, refresh and the token blacklist.
"""

from __future__ import annotations

import pytest

from auth.errors import BadRequest, StoreUnavailable, Unauthorized
from auth.models import User
from auth.revocation import TokenBlacklist
from auth.tokens import hash_password


@pytest.fixture
def alice(user_store) -> User:
    uid = user_store.create_user(
        User(username="alice", email="alice@example.com", hashed_password=hash_password("alice-password", rounds=4))
    )
    return user_store.get_by_id(uid)


# ---------------------------------------------------------------------------
# TokenBlacklist
# ---------------------------------------------------------------------------


def test_revoke_and_check(blacklist, counter_store, clock):
    assert blacklist.revoke("jti-1", 60) is True
    assert blacklist.is_revoked("jti-1")
    assert counter_store.ttl("blacklist:token:jti-1") == 60
    clock.advance(60)
    assert not blacklist.is_revoked("jti-1")


def test_revoke_with_no_lifetime_left_is_noop(blacklist, counter_store):
    assert blacklist.revoke("jti-2", 0) is False
    assert blacklist.revoke("jti-3", -5) is False
    assert not counter_store.exists("blacklist:token:jti-2")


def test_blacklist_store_failure(failing_store):
    with pytest.raises(StoreUnavailable):
        TokenBlacklist(failing_store).is_revoked("jti")


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


def test_logout_revokes_access_and_refresh(auth_service, issuer, blacklist, bob):
    pair = issuer.issue_pair(bob.id)
    auth_service.logout(pair.access.claims, pair.refresh.token)
    assert blacklist.is_revoked(pair.access.claims.jti)
    assert blacklist.is_revoked(pair.refresh.claims.jti)


def test_logout_blacklist_entry_lives_as_long_as_token(auth_service, issuer, counter_store, settings, bob):
    pair = issuer.issue_pair(bob.id)
    auth_service.logout(pair.access.claims, pair.refresh.token)
    access_ttl = counter_store.ttl(f"blacklist:token:{pair.access.claims.jti}")
    refresh_ttl = counter_store.ttl(f"blacklist:token:{pair.refresh.claims.jti}")
    assert 0 < access_ttl <= settings.access_token_expire_seconds
    assert settings.access_token_expire_seconds < refresh_ttl <= settings.refresh_token_expire_seconds


def test_logout_with_invalid_refresh_token_still_revokes_access(auth_service, issuer, blacklist, bob):
    pair = issuer.issue_pair(bob.id)
    auth_service.logout(pair.access.claims, "garbage")
    assert blacklist.is_revoked(pair.access.claims.jti)
    assert not blacklist.is_revoked(pair.refresh.claims.jti)


def test_logout_with_someone_elses_refresh_token(auth_service, issuer, blacklist, bob, alice):
    bob_pair = issuer.issue_pair(bob.id)
    alice_pair = issuer.issue_pair(alice.id)
    with pytest.raises(BadRequest, match="Token mismatch"):
        auth_service.logout(bob_pair.access.claims, alice_pair.refresh.token)
    # The access token is revoked before the refresh token is looked at.
    assert blacklist.is_revoked(bob_pair.access.claims.jti)
    assert not blacklist.is_revoked(alice_pair.refresh.claims.jti)


def test_logout_with_access_token_in_refresh_slot(auth_service, issuer, blacklist, bob):
    pair = issuer.issue_pair(bob.id)
    auth_service.logout(pair.access.claims, pair.access.token)
    assert blacklist.is_revoked(pair.access.claims.jti)


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


def test_refresh_issues_new_pair(auth_service, issuer, bob):
    pair = issuer.issue_pair(bob.id)
    new_pair = auth_service.refresh(pair.refresh.token)
    assert new_pair.access.claims.jti != pair.access.claims.jti
    assert new_pair.refresh.claims.jti != pair.refresh.claims.jti
    assert issuer.verify_access_token(new_pair.access.token).user_id == bob.id


def test_refresh_does_not_revoke_previous_refresh_token(auth_service, issuer, bob):
    pair = issuer.issue_pair(bob.id)
    auth_service.refresh(pair.refresh.token)
    assert auth_service.refresh(pair.refresh.token).access.claims.subject == str(bob.id)


def test_refresh_rejects_access_token(auth_service, issuer, bob):
    pair = issuer.issue_pair(bob.id)
    with pytest.raises(Unauthorized):
        auth_service.refresh(pair.access.token)


def test_refresh_rejects_logged_out_token(auth_service, issuer, bob):
    pair = issuer.issue_pair(bob.id)
    auth_service.logout(pair.access.claims, pair.refresh.token)
    with pytest.raises(Unauthorized, match="logged out"):
        auth_service.refresh(pair.refresh.token)


def test_refresh_rejects_inactive_or_deleted_user(auth_service, issuer, user_store, bob):
    pair = issuer.issue_pair(bob.id)
    user_store.set_active(bob.id, False)
    with pytest.raises(Unauthorized):
        auth_service.refresh(pair.refresh.token)

    ghost = issuer.issue_pair(9999)
    with pytest.raises(Unauthorized):
        auth_service.refresh(ghost.refresh.token)
