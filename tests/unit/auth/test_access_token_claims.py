"""
Tests for access token claim helpers.
"""

import pytest

from m365broker.auth.access_token import (
    decode_claims,
    get_tenant_id_from_access_token,
    get_user_name_from_access_token,
)


class TestGetUserName:
    """Test user name extraction order."""

    def test_upn_preferred(self, jwt_factory):
        token = jwt_factory(upn="user@contoso.com", unique_name="other", appid="app")
        assert get_user_name_from_access_token(token) == "user@contoso.com"

    @pytest.mark.parametrize("claims,expected", [
        ({"unique_name": "live.com#user@outlook.com"}, "live.com#user@outlook.com"),
        ({"preferred_username": "user@outlook.com"}, "user@outlook.com"),
        ({"app_displayname": "Contoso Daemon", "appid": "1234"}, "Contoso Daemon"),
        ({"appid": "1234"}, "1234"),
    ])
    def test_fallbacks(self, jwt_factory, claims, expected):
        assert get_user_name_from_access_token(jwt_factory(**claims)) == expected

    def test_no_known_claim(self, jwt_factory):
        assert get_user_name_from_access_token(jwt_factory(sub="x")) is None

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_undecodable(self, token):
        assert get_user_name_from_access_token(token) is None
        assert decode_claims(token) == {}

    def test_expired_token_still_decoded(self, jwt_factory):
        """Test expiry is not checked since nothing is trusted."""
        token = jwt_factory(upn="user@contoso.com", exp=1)
        assert get_user_name_from_access_token(token) == "user@contoso.com"


class TestGetTenantId:
    def test_tid(self, user_token):
        assert get_tenant_id_from_access_token(user_token) == "tenant-id"
