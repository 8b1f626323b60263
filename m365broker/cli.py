"""
m365broker Command-Line Interface

Log in, log out, show the connection status and hand out access tokens.
"""

import sys
import json
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from pydantic import ValidationError

from m365broker import __version__
from m365broker.auth.broker import Auth
from m365broker.auth.exceptions import AuthError, CommandError
from m365broker.auth.models import AuthType, CloudType
from m365broker.core.config_manager import BrokerConfig, ConfigManager
from m365broker.core.logging_config import setup_logging

logger = logging.getLogger("m365broker.cli")


def _print_output(config: BrokerConfig, data: Dict[str, Any]) -> None:
    if config.settings.output == "json":
        click.echo(json.dumps(data, indent=2))
        return
    width = max(len(key) for key in data)
    for key, value in data.items():
        click.echo(f"{key.ljust(width)}: {value}")


def _fail(message: str) -> None:
    click.echo(f"[ERROR] {message}", err=True)
    sys.exit(1)


def _make_auth(config: BrokerConfig) -> Auth:
    return Auth(config)


@click.group()
@click.version_option(version=__version__, prog_name="m365broker")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Show diagnostic output, including identity provider responses",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], debug: bool):
    """
    m365broker - sign in to Microsoft 365 and get access tokens.
    """
    ctx.ensure_object(dict)

    manager = ConfigManager()
    try:
        config = manager.load(config_file=str(config_file) if config_file else None)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")

    logging_config = config.logging
    setup_logging(
        level="DEBUG" if debug else logging_config.level,
        format_type=logging_config.format,
        log_file=logging_config.file,
        rotation_size=logging_config.rotation_size,
        rotation_count=logging_config.rotation_count,
        module_levels=logging_config.module_levels,
    )

    ctx.obj["config_manager"] = manager
    ctx.obj["config"] = config
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--auth-type",
    "-t",
    type=click.Choice([t.value for t in AuthType]),
    help="Method of authentication (default: configured auth_type, deviceCode)",
)
@click.option("--user-name", "-u", help="Name of the user, or the id of a user-assigned managed identity")
@click.option("--password", "-p", help="Password for the user or the certificate")
@click.option("--certificate-file", "-c", help="Path to the file with the login certificate")
@click.option("--certificate-base64-encoded", help="Base64-encoded string with the login certificate")
@click.option("--thumbprint", help="Certificate thumbprint, calculated when omitted")
@click.option("--app-id", help="Application id of the app registration to use")
@click.option("--tenant", help="Tenant id or name to log in to")
@click.option("--secret", "-s", help="Client secret of the app registration")
@click.option(
    "--cloud",
    type=click.Choice([c.value for c in CloudType]),
    help="Cloud to log in to (default: Public)",
)
@click.pass_context
def login(
    ctx,
    auth_type: Optional[str],
    user_name: Optional[str],
    password: Optional[str],
    certificate_file: Optional[str],
    certificate_base64_encoded: Optional[str],
    thumbprint: Optional[str],
    app_id: Optional[str],
    tenant: Optional[str],
    secret: Optional[str],
    cloud: Optional[str],
):
    """
    Log in to Microsoft 365.

    Examples:
        m365broker login
        m365broker login --auth-type password --user-name user@contoso.com --password pass@word1
        m365broker login --auth-type certificate --certificate-file cert.pfx --app-id <id> --tenant <id>
        m365broker login --auth-type identity --user-name <client id>
    """
    config: BrokerConfig = ctx.obj["config"]
    debug: bool = ctx.obj["debug"]
    auth = _make_auth(config)

    async def _login():
        await auth.restore_auth()
        await auth.login(
            auth_type=auth_type,
            user_name=user_name,
            password=password,
            certificate_file=certificate_file,
            certificate_base64_encoded=certificate_base64_encoded,
            thumbprint=thumbprint,
            app_id=app_id,
            tenant=tenant,
            secret=secret,
            cloud=cloud,
            debug=debug,
        )

    try:
        asyncio.run(_login())
    except AuthError as e:
        _fail(e.message)

    _print_output(config, auth.connection_status())


@cli.command()
@click.pass_context
def logout(ctx):
    """Log out from Microsoft 365 and remove the persisted connection."""
    config: BrokerConfig = ctx.obj["config"]
    debug: bool = ctx.obj["debug"]
    auth = _make_auth(config)

    async def _logout():
        await auth.restore_auth()
        await auth.logout(debug)

    asyncio.run(_logout())
    if debug:
        click.echo("Logged out", err=True)


@cli.command()
@click.pass_context
def status(ctx):
    """Show who is logged in and how."""
    config: BrokerConfig = ctx.obj["config"]
    auth = _make_auth(config)

    asyncio.run(auth.restore_auth())
    connection = auth.connection_status()
    if connection is None:
        click.echo("Logged out")
        return

    _print_output(config, connection)


@cli.group()
def accesstoken():
    """Work with access tokens."""
    pass


@accesstoken.command("get")
@click.option(
    "--resource",
    "-r",
    required=True,
    help="Resource to get the token for, e.g. https://contoso.sharepoint.com, or 'graph'",
)
@click.option("--new", "fetch_new", is_flag=True, help="Retrieve a new token instead of the cached one")
@click.pass_context
def accesstoken_get(ctx, resource: str, fetch_new: bool):
    """
    Print an access token for a resource.

    Examples:
        m365broker accesstoken get --resource graph
        m365broker accesstoken get --resource https://contoso.sharepoint.com --new
    """
    config: BrokerConfig = ctx.obj["config"]
    debug: bool = ctx.obj["debug"]
    auth = _make_auth(config)

    async def _get() -> str:
        await auth.restore_auth()
        if not auth.session.connected:
            raise CommandError("Log in to Microsoft 365 first")

        if resource.lower() == "graph":
            target = auth.default_resource
        else:
            target = Auth.get_resource_from_url(resource)

        try:
            return await auth.ensure_access_token(target, debug, fetch_new)
        except CommandError:
            raise
        except AuthError as e:
            raise CommandError(e.message) from e

    try:
        token = asyncio.run(_get())
    except CommandError as e:
        _fail(e.message)

    click.echo(token)


@cli.group("config")
def config_group():
    """Manage user settings."""
    pass


@config_group.command("get")
@click.option("--key", "-k", required=True, type=click.Choice(ConfigManager.setting_names()))
@click.pass_context
def config_get(ctx, key: str):
    """Show the value of a setting."""
    config: BrokerConfig = ctx.obj["config"]
    value = getattr(config.settings, key)
    click.echo(json.dumps(value) if isinstance(value, bool) else str(getattr(value, "value", value)))


@config_group.command("set")
@click.option("--key", "-k", required=True, help="Name of the setting")
@click.option("--value", "-v", required=True, help="New value of the setting")
@click.pass_context
def config_set(ctx, key: str, value: str):
    """
    Change a setting.

    Examples:
        m365broker config set --key copy_device_code_to_clipboard --value true
        m365broker config set --key output --value json
    """
    manager: ConfigManager = ctx.obj["config_manager"]
    try:
        manager.set_setting(key, value)
    except ValueError as e:
        _fail(str(e))


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
