"""
Tests for the m365broker command-line interface.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from m365broker import __version__
from m365broker.auth.broker import Auth
from m365broker.auth.models import AccessToken, AuthType, Session
from m365broker.cli import cli
from m365broker.core.config_manager import BrokerConfig
from m365broker.state import InMemoryTokenStorage

GRAPH = "https://graph.microsoft.com"


def _future():
    return datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def client():
    client = MagicMock()
    client.get_accounts.return_value = []
    client.acquire_token_for_client.return_value = {"access_token": "new-token", "expires_in": 3599}
    return client


@pytest.fixture
def token_storage():
    return InMemoryTokenStorage()


@pytest.fixture
def auth(token_storage, client):
    factory = MagicMock()
    factory.get_client.return_value = client
    return Auth(
        BrokerConfig(),
        token_storage=token_storage,
        msal_cache_storage=InMemoryTokenStorage(),
        client_factory=factory,
        device_code_callback=AsyncMock(),
    )


@pytest.fixture
def use_auth(auth):
    with patch("m365broker.cli._make_auth", return_value=auth):
        yield auth


def _connected_blob(user_token):
    return Session(
        connected=True,
        auth_type=AuthType.SECRET,
        secret="s3cr3t",
        app_id="app",
        tenant="contoso",
        access_tokens={GRAPH: AccessToken(access_token=user_token, expires_on=_future())},
    ).to_json()


class TestCli:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("login", "logout", "status", "accesstoken", "config"):
            assert command in result.output

    def test_malformed_yaml_config_reported(self, runner, tmp_path):
        config_file = tmp_path / "broker.yaml"
        config_file.write_text("settings:\n  output: [json\n")

        result = runner.invoke(cli, ["--config", str(config_file), "status"])

        assert result.exit_code == 1
        assert "[ERROR] Invalid configuration" in result.output
        assert not isinstance(result.exception, yaml.YAMLError)


class TestLoginCommand:
    def test_secret_login(self, runner, use_auth, client, token_storage):
        result = runner.invoke(cli, ["login", "--auth-type", "secret", "--secret", "s3cr3t", "--app-id", "app"])

        assert result.exit_code == 0, result.output
        assert "authType" in result.output
        assert "secret" in result.output
        client.acquire_token_for_client.assert_called_once_with(scopes=[f"{GRAPH}/.default"])
        assert use_auth.session.connected is True

    def test_missing_required_option(self, runner, use_auth, client):
        result = runner.invoke(cli, ["login", "--auth-type", "password", "--user-name", "user@contoso.com"])

        assert result.exit_code == 1
        assert "[ERROR] Required option password missing" in result.output
        client.acquire_token_by_username_password.assert_not_called()

    def test_invalid_auth_type_rejected_by_click(self, runner, use_auth):
        result = runner.invoke(cli, ["login", "--auth-type", "kerberos"])

        assert result.exit_code == 2

    def test_acquisition_failure(self, runner, use_auth, client):
        client.acquire_token_for_client.return_value = {"error": "invalid_client", "error_description": "Bad secret"}

        result = runner.invoke(cli, ["login", "--auth-type", "secret", "--secret", "wrong"])

        assert result.exit_code == 1
        assert "[ERROR] Bad secret" in result.output


class TestLogoutCommand:
    def test_logout(self, runner, use_auth, token_storage, user_token):
        token_storage._value = _connected_blob(user_token)

        result = runner.invoke(cli, ["logout"])

        assert result.exit_code == 0
        assert use_auth.session == Session()


class TestStatusCommand:
    def test_logged_out(self, runner, use_auth):
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Logged out" in result.output

    def test_connected_text(self, runner, use_auth, token_storage, user_token):
        token_storage._value = _connected_blob(user_token)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "connectedAs: user@contoso.onmicrosoft.com" in result.output
        assert "appTenant  : contoso" in result.output

    def test_connected_json(self, runner, use_auth, token_storage, user_token, tmp_path):
        token_storage._value = _connected_blob(user_token)
        config_file = tmp_path / "broker.yaml"
        config_file.write_text(yaml.dump({"settings": {"output": "json"}}))

        result = runner.invoke(cli, ["--config", str(config_file), "status"])

        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "connectedAs": "user@contoso.onmicrosoft.com",
            "authType": "secret",
            "appId": "app",
            "appTenant": "contoso",
            "cloudType": "Public",
        }


class TestAccessTokenCommand:
    def test_requires_login(self, runner, use_auth):
        result = runner.invoke(cli, ["accesstoken", "get", "--resource", "graph"])

        assert result.exit_code == 1
        assert "Log in to Microsoft 365 first" in result.output

    def test_graph_alias_returns_cached_token(self, runner, use_auth, token_storage, user_token, client):
        token_storage._value = _connected_blob(user_token)

        result = runner.invoke(cli, ["accesstoken", "get", "--resource", "graph"])

        assert result.exit_code == 0
        assert result.output.strip() == user_token
        client.acquire_token_for_client.assert_not_called()

    def test_url_normalized_and_acquired(self, runner, use_auth, token_storage, user_token, client):
        token_storage._value = _connected_blob(user_token)

        result = runner.invoke(
            cli, ["accesstoken", "get", "--resource", "https://contoso.sharepoint.com/sites/team"]
        )

        assert result.exit_code == 0
        assert result.output.strip() == "new-token"
        client.acquire_token_for_client.assert_called_once_with(
            scopes=["https://contoso.sharepoint.com/.default"]
        )

    def test_new_forces_refresh(self, runner, use_auth, token_storage, user_token, client):
        token_storage._value = _connected_blob(user_token)

        result = runner.invoke(cli, ["accesstoken", "get", "--resource", "graph", "--new"])

        assert result.exit_code == 0
        assert result.output.strip() == "new-token"

    def test_failure_reported(self, runner, use_auth, token_storage, user_token, client):
        token_storage._value = _connected_blob(user_token)
        client.acquire_token_for_client.return_value = None

        result = runner.invoke(cli, ["accesstoken", "get", "--resource", "graph", "--new"])

        assert result.exit_code == 1
        assert "Failed to retrieve an access token. Please try again" in result.output


class TestConfigCommands:
    def test_set_then_get(self, runner):
        result = runner.invoke(cli, ["config", "set", "--key", "copy_device_code_to_clipboard", "--value", "true"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(cli, ["config", "get", "--key", "copy_device_code_to_clipboard"])

        assert result.exit_code == 0
        assert result.output.strip() == "true"

    def test_get_default_output(self, runner):
        result = runner.invoke(cli, ["config", "get", "--key", "output"])

        assert result.output.strip() == "text"

    def test_set_unknown_key(self, runner):
        result = runner.invoke(cli, ["config", "set", "--key", "colour", "--value", "blue"])

        assert result.exit_code == 1
        assert "colour is not a valid setting" in result.output
