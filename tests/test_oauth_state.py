"""Tests for OAuth state signing and PKCE helpers."""

import base64
import hashlib
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest

from workblock.core.oauth_state import OAuthStateSigner, generate_pkce_pair
from workblock.errors import AuthError


class TestPkce:
    def test_challenge_is_s256_of_verifier(self):
        verifier, challenge = generate_pkce_pair()
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert challenge == expected
        assert 43 <= len(verifier) <= 128

    def test_pairs_are_unique(self):
        assert generate_pkce_pair()[0] != generate_pkce_pair()[0]


class TestStateSigner:
    def test_roundtrip_keeps_user_provider_and_nonce(self):
        signer = OAuthStateSigner(secret="s3cret", ttl_seconds=600)
        user_id = uuid4()
        token, payload = signer.sign(user_id, "google")

        verified = signer.verify(token, "google")
        assert verified.user_id == user_id
        assert verified.provider == "google"
        assert verified.nonce == payload.nonce

    def test_expired_state_is_rejected(self):
        signer = OAuthStateSigner(secret="s3cret", ttl_seconds=600)
        issued = datetime.now(timezone.utc) - timedelta(minutes=11)
        token, _ = signer.sign(uuid4(), "google", now=issued)

        with pytest.raises(AuthError, match="expired"):
            signer.verify(token)

    def test_tampered_state_is_rejected(self):
        token, _ = OAuthStateSigner(secret="s3cret").sign(uuid4(), "google")
        with pytest.raises(AuthError):
            OAuthStateSigner(secret="other-secret").verify(token)

    def test_provider_mismatch_is_rejected(self):
        signer = OAuthStateSigner(secret="s3cret")
        token, _ = signer.sign(uuid4(), "google")
        with pytest.raises(AuthError):
            signer.verify(token, "outlook")

    def test_token_for_another_audience_is_rejected(self):
        forged = jwt.encode(
            {"sub": str(uuid4()), "nonce": "n", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "s3cret",
            algorithm="HS256",
        )
        with pytest.raises(AuthError):
            OAuthStateSigner(secret="s3cret").verify(forged)

    def test_garbage_is_rejected(self):
        with pytest.raises(AuthError):
            OAuthStateSigner(secret="s3cret").verify("not-a-jwt")
