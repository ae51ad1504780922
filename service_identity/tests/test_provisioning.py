"""
Unit tests for username and display name derivation.
"""

import re

import pytest

from service_identity.app.models import TokenClaims
from service_identity.app.provisioning import (
    email_local_part,
    generate_display_name,
    generate_username,
    normalize_username,
)


class TestNormalizeUsername:

    @pytest.mark.parametrize("raw,expected", [
        ("John.Doe", "johndoe"),
        ("jane_doe-2", "jane_doe-2"),
        ("  Spaced Out  ", "spacedout"),
        ("a", ""),
        ("", ""),
        (None, ""),
        ("!!!", ""),
        ("x" * 64, ""),
        ("x" * 63, "x" * 63),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_username(raw) == expected


class TestGenerateUsername:

    def test_prefers_preferred_username(self):
        claims = TokenClaims(subject="s1", preferred_username="Jane.Doe", email="jd@254carbon.com")
        assert generate_username(claims) == "janedoe"

    def test_falls_back_to_email_local_part(self):
        claims = TokenClaims(subject="s1", preferred_username="!", email="Trader.One@254carbon.com")
        assert generate_username(claims) == "traderone"

    def test_random_handle_as_last_resort(self):
        claims = TokenClaims(subject="s1")
        assert re.fullmatch(r"user_[0-9a-f]{8}", generate_username(claims))


class TestGenerateDisplayName:

    def test_preferred_username_kept_verbatim(self):
        claims = TokenClaims(subject="s1", preferred_username="Jane.Doe")
        assert generate_display_name(claims) == "Jane.Doe"

    def test_email_local_part(self):
        claims = TokenClaims(subject="s1", email="trader@254carbon.com")
        assert generate_display_name(claims) == "trader"

    def test_default(self):
        assert generate_display_name(TokenClaims(subject="s1")) == "User"


def test_email_local_part_without_at_sign():
    assert email_local_part("plain") == "plain"
    assert email_local_part("") == ""
