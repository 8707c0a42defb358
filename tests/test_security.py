# tests/test_security.py
from datetime import timedelta

import jwt
import pytest

from storefront.models import utcnow
from storefront.security import ACCESS, REFRESH, CredentialIssuer, PasswordHasher, TokenError, TokenSigner

SECRET = "unit-test-secret-that-is-at-least-32-bytes"


@pytest.fixture
def issuer():
    return CredentialIssuer(TokenSigner(SECRET), access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=7))


def test_password_hash_roundtrip():
    hasher = PasswordHasher(rounds=4)
    hashed = hasher.hash("hunter22")
    assert hashed != "hunter22"
    assert hasher.verify("hunter22", hashed)
    assert not hasher.verify("hunter23", hashed)
    assert not hasher.verify("hunter22", "not-a-bcrypt-hash")


def test_issued_claims(issuer):
    now = utcnow()
    pair = issuer.issue(7, "a@example.com", "admin", now=now)

    access = jwt.decode(pair.access_token, SECRET, algorithms=["HS256"])
    refresh = jwt.decode(pair.refresh_token, SECRET, algorithms=["HS256"])
    assert access["sub"] == "7"
    assert access["email"] == "a@example.com"
    assert access["role"] == "admin"
    assert access["type"] == ACCESS
    assert refresh["type"] == REFRESH
    assert "email" not in refresh
    assert access["jti"] != refresh["jti"]
    assert refresh["exp"] - refresh["iat"] == int(timedelta(days=7).total_seconds())
    assert pair.refresh_expires_at == now + timedelta(days=7)


def test_pairs_issued_in_the_same_instant_differ(issuer):
    now = utcnow()
    a = issuer.issue(1, "a@example.com", "customer", now=now)
    b = issuer.issue(1, "a@example.com", "customer", now=now)
    assert a.refresh_token != b.refresh_token


def test_verify_access(issuer):
    pair = issuer.issue(3, "c@example.com", "customer")
    user = issuer.verify_access(pair.access_token)
    assert (user.user_id, user.email, user.role, user.is_admin) == (3, "c@example.com", "customer", False)


def test_token_types_are_not_interchangeable(issuer):
    pair = issuer.issue(3, "c@example.com", "customer")
    with pytest.raises(TokenError):
        issuer.verify_access(pair.refresh_token)
    with pytest.raises(TokenError):
        issuer.verify_refresh(pair.access_token)


def test_wrong_secret_is_rejected(issuer):
    other = CredentialIssuer(TokenSigner("another-secret-that-is-also-32-bytes-long"),
                             access_ttl=timedelta(minutes=1), refresh_ttl=timedelta(minutes=1))
    pair = other.issue(1, "a@example.com", "customer")
    with pytest.raises(TokenError):
        issuer.verify_access(pair.access_token)


def test_expired_token_is_rejected():
    expired = CredentialIssuer(TokenSigner(SECRET), access_ttl=timedelta(seconds=-5), refresh_ttl=timedelta(seconds=-5))
    pair = expired.issue(1, "a@example.com", "customer")
    with pytest.raises(TokenError):
        expired.verify_access(pair.access_token)
    with pytest.raises(TokenError):
        expired.verify_refresh(pair.refresh_token)
