"""
Token acquisition strategies.

Each strategy is a coroutine taking a StrategyContext and returning an
AccessToken, or None when the identity library produced nothing. The
broker picks one through the STRATEGIES table keyed by AuthType.

MSAL is synchronous, so its calls run in the default executor.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import msal

from m365broker.auth.auth_server import AuthServer
from m365broker.auth.certificate import CertificateResolver
from m365broker.auth.client import ClientApplication, ClientFactory
from m365broker.auth.exceptions import AcquisitionError
from m365broker.auth.interactive import DeviceCodeInfo
from m365broker.auth.managed_identity import ManagedIdentityResolver
from m365broker.auth.models import AccessToken, AuthType, Session

logger = logging.getLogger(__name__)

DeviceCodeCallback = Callable[[DeviceCodeInfo, bool], Awaitable[None]]


@dataclass
class StrategyContext:
    """Everything one acquisition needs, assembled by the broker per call."""

    session: Session
    resource: str
    client: Optional[ClientApplication]
    clients: ClientFactory
    cache: msal.SerializableTokenCache
    debug: bool = False
    fetch_new: bool = False
    device_code_callback: Optional[DeviceCodeCallback] = None
    auth_server_factory: Optional[Callable[[], AuthServer]] = None
    certificate_resolver: Optional[CertificateResolver] = None
    managed_identity: Optional[ManagedIdentityResolver] = None

    @property
    def scopes(self) -> List[str]:
        return [f"{self.resource}/.default"]


async def _run(func: Callable[..., Any], *args, **kwargs) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def _to_access_token(result: Optional[Dict[str, Any]], debug: bool = False) -> Optional[AccessToken]:
    """Convert an MSAL result dict into an AccessToken."""
    if not result:
        return None
    if "error" in result:
        if debug:
            logger.debug(f"Token request failed: {result}")
        raise AcquisitionError.from_result(result)
    if not result.get("access_token"):
        return None

    if result.get("expires_in") is not None:
        expires_on = datetime.now(timezone.utc) + timedelta(seconds=int(result["expires_in"]))
    elif result.get("expires_on") is not None:
        expires_on = datetime.fromtimestamp(int(result["expires_on"]), tz=timezone.utc)
    else:
        expires_on = None

    return AccessToken(access_token=result["access_token"], expires_on=expires_on)


async def has_cached_accounts(client: Optional[ClientApplication]) -> bool:
    if client is None:
        return False
    return len(await _run(client.get_accounts)) > 0


async def acquire_silent(ctx: StrategyContext) -> Optional[AccessToken]:
    """
    Use the first cached account, refreshing only when forced or expired.

    Refresh failures come back as an error result and raise AcquisitionError.
    """
    accounts = await _run(ctx.client.get_accounts)
    if ctx.debug:
        logger.debug(f"Attempting to retrieve a token silently for {accounts[0].get('username')}")

    result = await _run(
        ctx.client.acquire_token_silent_with_error,
        ctx.scopes,
        account=accounts[0],
        force_refresh=ctx.fetch_new,
    )
    return _to_access_token(result, ctx.debug)


async def acquire_by_device_code(ctx: StrategyContext) -> Optional[AccessToken]:
    if ctx.debug:
        logger.debug("Starting device code flow...")

    flow = await _run(ctx.client.initiate_device_flow, scopes=ctx.scopes)
    if "user_code" not in flow:
        raise AcquisitionError.from_result(flow)

    if ctx.device_code_callback is not None:
        await ctx.device_code_callback(DeviceCodeInfo.from_flow(flow), ctx.debug)

    result = await _run(ctx.client.acquire_token_by_device_flow, flow)
    return _to_access_token(result, ctx.debug)


async def acquire_by_password(ctx: StrategyContext) -> Optional[AccessToken]:
    if ctx.debug:
        logger.debug(f"Retrieving a token using user name {ctx.session.user_name}...")

    result = await _run(
        ctx.client.acquire_token_by_username_password,
        ctx.session.user_name,
        ctx.session.password,
        scopes=ctx.scopes,
    )
    return _to_access_token(result, ctx.debug)


async def acquire_by_certificate(ctx: StrategyContext) -> Optional[AccessToken]:
    """Resolve the certificate, then build the confidential client from it."""
    resolver = ctx.certificate_resolver or CertificateResolver()
    resolved = resolver.resolve(ctx.session, ctx.debug)

    if ctx.debug:
        logger.debug(
            f"Retrieving a token using certificate with thumbprint {resolved.thumbprint} "
            f"({ctx.session.certificate_type.value})"
        )

    ctx.client = ctx.clients.confidential_client(
        ctx.session,
        ctx.cache,
        thumbprint=resolved.thumbprint,
        private_key=resolved.private_key,
    )
    result = await _run(ctx.client.acquire_token_for_client, scopes=ctx.scopes)
    return _to_access_token(result, ctx.debug)


async def acquire_by_secret(ctx: StrategyContext) -> Optional[AccessToken]:
    if ctx.debug:
        logger.debug("Retrieving a token using client secret...")

    result = await _run(ctx.client.acquire_token_for_client, scopes=ctx.scopes)
    return _to_access_token(result, ctx.debug)


async def acquire_by_browser(ctx: StrategyContext) -> Optional[AccessToken]:
    if ctx.auth_server_factory is None:
        auth_server = AuthServer()
    else:
        auth_server = ctx.auth_server_factory()

    response = await auth_server.get_authorization_code(ctx.session, ctx.resource, ctx.debug)
    if ctx.debug:
        logger.debug(f"Received authorization code via {response.redirect_uri}")

    result = await _run(
        ctx.client.acquire_token_by_authorization_code,
        response.code,
        scopes=ctx.scopes,
        redirect_uri=response.redirect_uri,
    )
    return _to_access_token(result, ctx.debug)


async def acquire_by_identity(ctx: StrategyContext) -> Optional[AccessToken]:
    resolver = ctx.managed_identity or ManagedIdentityResolver()
    return await resolver.get_token(ctx.resource, ctx.session.user_name, ctx.debug)


STRATEGIES: Dict[AuthType, Callable[[StrategyContext], Awaitable[Optional[AccessToken]]]] = {
    AuthType.DEVICE_CODE: acquire_by_device_code,
    AuthType.PASSWORD: acquire_by_password,
    AuthType.CERTIFICATE: acquire_by_certificate,
    AuthType.SECRET: acquire_by_secret,
    AuthType.BROWSER: acquire_by_browser,
    AuthType.IDENTITY: acquire_by_identity,
}
