"""Tests for session token decoding."""

import jwt
import pytest

from filerelay.core.errors import AuthenticationError
from filerelay.platform.session import decode_session

SECRET = "signing-secret-for-session-tests-0001"


class TestDecodeSession:
    def test_uid_claim(self):
        token = jwt.encode({"uid": 7, "aid": 3}, SECRET, algorithm="HS256")

        session = decode_session(token, SECRET)

        assert session.user_id == "7"
        assert session.account_id == "3"
        assert session.claims["uid"] == 7

    def test_dat_claims(self):
        token = jwt.encode({"dat": {"user_id": 8, "account_id": 4}}, SECRET, algorithm="HS256")

        session = decode_session(token, SECRET)

        assert session.user_id == "8"
        assert session.account_id == "4"

    def test_bearer_prefix(self):
        token = jwt.encode({"uid": 7}, SECRET, algorithm="HS256")
        assert decode_session(f"Bearer {token}", SECRET).user_id == "7"

    def test_unverified_without_secret(self):
        token = jwt.encode({"uid": 7}, "another-secret-for-session-tests-0002", algorithm="HS256")
        assert decode_session(token).user_id == "7"

    def test_bad_signature(self):
        token = jwt.encode({"uid": 7}, "another-secret-for-session-tests-0002", algorithm="HS256")
        with pytest.raises(AuthenticationError, match="Invalid authorization token"):
            decode_session(token, SECRET)

    def test_malformed(self):
        with pytest.raises(AuthenticationError):
            decode_session("not-a-jwt")

    def test_missing(self):
        with pytest.raises(AuthenticationError, match="Missing authorization token"):
            decode_session(None)

    def test_no_user_id(self):
        token = jwt.encode({"aid": 3}, SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError, match="no user id"):
            decode_session(token, SECRET)
