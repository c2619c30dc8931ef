"""Tests for bearer token verification."""

from datetime import timedelta

import pytest

from donchat.core import firebase
from donchat.core.errors import AuthenticationError
from donchat.core.security import JWTIdentityVerifier, build_identity_verifier


def test_jwt_round_trip():
    verifier = JWTIdentityVerifier("secret")
    token = verifier.create_access_token("alice")
    assert verifier.verify(token) == "alice"


def test_jwt_rejects_wrong_secret():
    token = JWTIdentityVerifier("secret").create_access_token("alice")
    with pytest.raises(AuthenticationError):
        JWTIdentityVerifier("other-secret").verify(token)


def test_jwt_rejects_expired_token():
    verifier = JWTIdentityVerifier("secret")
    token = verifier.create_access_token("alice", expires_delta=timedelta(minutes=-1))
    with pytest.raises(AuthenticationError):
        verifier.verify(token)


def test_jwt_rejects_garbage():
    with pytest.raises(AuthenticationError):
        JWTIdentityVerifier("secret").verify("not-a-jwt")


def test_default_provider_is_jwt(settings):
    verifier = build_identity_verifier(settings)
    assert isinstance(verifier, JWTIdentityVerifier)
    assert verifier.verify(verifier.create_access_token("bob")) == "bob"


def test_firebase_verifier_returns_uid(settings, monkeypatch):
    monkeypatch.setattr(firebase.firebase_admin, "get_app", lambda: "default-app")
    monkeypatch.setattr(firebase.auth, "verify_id_token", lambda token, app=None: {"uid": "alice", "email": "a@example.com"})

    service = firebase.FirebaseService(settings)
    assert service.app == "default-app"
    assert service.verify("id-token") == "alice"
    assert service.verify_token("id-token")["email"] == "a@example.com"


def test_firebase_verifier_rejects_invalid_token(settings, monkeypatch):
    def reject(token, app=None):
        raise ValueError("Illegal ID token provided")

    monkeypatch.setattr(firebase.firebase_admin, "get_app", lambda: "default-app")
    monkeypatch.setattr(firebase.auth, "verify_id_token", reject)

    with pytest.raises(AuthenticationError):
        firebase.FirebaseService(settings).verify("bad")
