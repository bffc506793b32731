"""
Tests for user tokens.
"""

import pytest

from auth.jwt import InvalidTokenError, create_token, decode_token


class TestUserTokens:
    def test_round_trip(self):
        assert decode_token(create_token("alice", secret="k"), secret="k") == "alice"

    def test_wrong_secret(self):
        with pytest.raises(InvalidTokenError):
            decode_token(create_token("alice", secret="k"), secret="other")

    def test_expired(self):
        with pytest.raises(InvalidTokenError):
            decode_token(create_token("alice", expires_in=-5, secret="k"), secret="k")

    @pytest.mark.parametrize("token", ["", "garbage", "abc.def"])
    def test_malformed(self, token):
        with pytest.raises(InvalidTokenError):
            decode_token(token, secret="k")
