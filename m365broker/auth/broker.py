"""
Credential broker.

``Auth`` owns the Session: it restores it from storage, hands out cached
tokens while they are valid, runs the active strategy when they are not,
and persists the result. Commands only ever ask it for a token.
"""

import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from m365broker.auth.access_token import (
    get_tenant_id_from_access_token,
    get_user_name_from_access_token,
)
from m365broker.auth.auth_server import AuthServer
from m365broker.auth.certificate import CertificateResolver
from m365broker.auth.client import ClientFactory, MsalCache
from m365broker.auth.cloud import GRAPH, get_endpoint_for_resource
from m365broker.auth.exceptions import CommandError, TokenRetrievalError
from m365broker.auth.interactive import DeviceCodePrompt
from m365broker.auth.managed_identity import ManagedIdentityResolver
from m365broker.auth.models import AccessToken, AuthType, CloudType, Session
from m365broker.auth.resource import get_resource_from_url
from m365broker.auth.strategies import (
    STRATEGIES,
    DeviceCodeCallback,
    StrategyContext,
    acquire_silent,
    has_cached_accounts,
)
from m365broker.core.config_manager import BrokerConfig
from m365broker.core.logging_config import log_with_context
from m365broker.state import FileTokenStorage, StorageError, TokenStorage

logger = logging.getLogger(__name__)


def validate_login_options(
    auth_type: str,
    user_name: Optional[str] = None,
    password: Optional[str] = None,
    certificate_file: Optional[str] = None,
    certificate_base64_encoded: Optional[str] = None,
    secret: Optional[str] = None,
    cloud: Optional[str] = None,
) -> Optional[str]:
    """Return an error message for an invalid option combination, else None."""
    allowed_auth_types = [t.value for t in AuthType]
    if auth_type not in allowed_auth_types:
        return (
            f"'{auth_type}' is not a valid authentication type. "
            f"Allowed authentication types are {', '.join(allowed_auth_types)}"
        )

    if auth_type == AuthType.PASSWORD.value:
        if not user_name:
            return "Required option userName missing"
        if not password:
            return "Required option password missing"

    if auth_type == AuthType.CERTIFICATE.value:
        if certificate_file and certificate_base64_encoded:
            return "Specify either certificateFile or certificateBase64Encoded, but not both."
        if not certificate_file and not certificate_base64_encoded:
            return "Specify either certificateFile or certificateBase64Encoded"
        if certificate_file and not Path(certificate_file).exists():
            return f"File '{certificate_file}' does not exist"

    if auth_type == AuthType.SECRET.value and not secret:
        return "Required option secret missing"

    allowed_clouds = [c.value for c in CloudType]
    if cloud and cloud not in allowed_clouds:
        return f"{cloud} is not a valid value for cloud. Valid options are {', '.join(allowed_clouds)}"

    return None


class Auth:
    """
    Obtains, caches and refreshes access tokens for the current Session.

    Collaborators are injectable so tests and embedding hosts can replace
    storage, the identity library, and the interactive pieces.
    """

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        token_storage: Optional[TokenStorage] = None,
        msal_cache_storage: Optional[TokenStorage] = None,
        client_factory: Optional[ClientFactory] = None,
        certificate_resolver: Optional[CertificateResolver] = None,
        managed_identity: Optional[ManagedIdentityResolver] = None,
        device_code_callback: Optional[DeviceCodeCallback] = None,
        auth_server_factory: Optional[Callable[[], AuthServer]] = None,
    ):
        self._config = config or BrokerConfig()
        self._token_storage = token_storage or FileTokenStorage(
            self._config.storage.connection_info_path()
        )
        self._msal_cache = MsalCache(
            msal_cache_storage or FileTokenStorage(self._config.storage.msal_cache_path())
        )
        self._clients = client_factory or ClientFactory()
        self._certificate_resolver = certificate_resolver or CertificateResolver()
        self._managed_identity = managed_identity or ManagedIdentityResolver(
            timeout=self._config.auth.http_timeout
        )
        self._device_code_callback = device_code_callback or DeviceCodePrompt(self._config.settings)
        self._auth_server_factory = auth_server_factory or (
            lambda: AuthServer(timeout=self._config.auth.browser_timeout)
        )

        self._session = Session(app_id=self._config.auth.app_id, tenant=self._config.auth.tenant)
        self._restored = False
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def session(self) -> Session:
        return self._session

    @session.setter
    def session(self, value: Session) -> None:
        self._session = value

    @property
    def default_resource(self) -> str:
        return get_endpoint_for_resource(GRAPH, self._session.cloud_type)

    @staticmethod
    def get_resource_from_url(url: str) -> str:
        return get_resource_from_url(url)

    @staticmethod
    def get_endpoint_for_resource(resource: str, cloud_type: CloudType) -> str:
        return get_endpoint_for_resource(resource, cloud_type)

    async def restore_auth(self) -> None:
        """
        Merge the persisted Session over the in-memory one.

        Runs once per process and is a no-op when already connected. A
        missing or unreadable blob leaves the defaults in place.
        """
        if self._restored or self._session.connected:
            return
        self._restored = True

        try:
            persisted = json.loads(await self._token_storage.get())
            merged = {**self._session.model_dump(by_alias=True), **persisted}
            self._session = Session.model_validate(merged)
        except (StorageError, TypeError, ValueError) as e:
            logger.debug(f"No connection info restored: {e}")

    def _get_cached_token(self, resource: str, debug: bool) -> Optional[str]:
        access_token = self._session.access_tokens.get(resource)
        if access_token is None:
            if debug:
                logger.debug(f"No token found for resource {resource}")
            return None

        if access_token.is_valid():
            if debug:
                logger.debug(f"Existing access token for {resource} still valid. Returning...")
            return access_token.access_token

        if debug:
            logger.debug(f"Access token for {resource} expired at {access_token.expires_on}")
        return None

    async def ensure_access_token(
        self, resource: str, debug: bool = False, fetch_new: bool = False
    ) -> str:
        """
        Return a valid access token for a resource.

        Args:
            resource: Resource URL the token is for
            debug: Emit diagnostic log records
            fetch_new: Ignore any cached token and force a refresh

        Returns:
            The access token string

        Raises:
            TokenRetrievalError: Strategy produced no token
            AuthError: Any other failure raised by the active strategy
        """
        if not fetch_new:
            token = self._get_cached_token(resource, debug)
            if token is not None:
                return token

        lock = self._locks.setdefault(resource, asyncio.Lock())
        async with lock:
            if not fetch_new:
                # another caller may have finished while we waited
                cached = self._session.access_tokens.get(resource)
                if cached is not None and cached.is_valid():
                    return cached.access_token

            access_token = await self._acquire(resource, debug, fetch_new)
            if access_token is None:
                if debug:
                    logger.debug("Authentication result is empty")
                raise TokenRetrievalError()

            self._session.access_tokens[resource] = access_token
            self._session.connected = True
            if debug:
                log_with_context(
                    logger,
                    logging.DEBUG,
                    "Access token stored",
                    resource=resource,
                    expires_on=str(access_token.expires_on),
                    auth_type=self._session.auth_type.value,
                )

            try:
                await self.store_connection_info()
            except StorageError as e:
                # persisting must not fail an acquisition that succeeded
                if debug:
                    logger.debug(f"Failed to persist connection info: {e}")

            return access_token.access_token

    async def _acquire(self, resource: str, debug: bool, fetch_new: bool) -> Optional[AccessToken]:
        cache = await self._msal_cache.load()
        client = None
        strategy = STRATEGIES[self._session.auth_type]

        # certificate clients are built only after the certificate is resolved
        if self._session.auth_type != AuthType.CERTIFICATE:
            client = self._clients.get_client(self._session, cache)
            if await has_cached_accounts(client):
                strategy = acquire_silent

        if debug:
            logger.debug(f"Acquiring token for {resource} using {strategy.__name__}")

        ctx = StrategyContext(
            session=self._session,
            resource=resource,
            client=client,
            clients=self._clients,
            cache=cache,
            debug=debug,
            fetch_new=fetch_new,
            device_code_callback=self._device_code_callback,
            auth_server_factory=self._auth_server_factory,
            certificate_resolver=self._certificate_resolver,
            managed_identity=self._managed_identity,
        )
        access_token = await strategy(ctx)

        try:
            await self._msal_cache.save(cache)
        except StorageError as e:
            if debug:
                logger.debug(f"Failed to persist MSAL token cache: {e}")

        return access_token

    async def store_connection_info(self) -> None:
        await self._token_storage.set(self._session.to_json())

    async def clear_connection_info(self) -> None:
        """Remove the persisted Session and the MSAL cache blob."""
        await self._token_storage.remove()
        # MSAL has no logout for certificate sessions, so its cache goes too
        await self._msal_cache.remove()

    async def logout(self, debug: bool = False) -> None:
        try:
            await self.clear_connection_info()
        except StorageError as e:
            if debug:
                logger.debug(f"Failed to clear connection info: {e}")
        self._session.logout(app_id=self._config.auth.app_id, tenant=self._config.auth.tenant)

    async def login(
        self,
        auth_type: Optional[str] = None,
        user_name: Optional[str] = None,
        password: Optional[str] = None,
        certificate_file: Optional[str] = None,
        certificate_base64_encoded: Optional[str] = None,
        thumbprint: Optional[str] = None,
        app_id: Optional[str] = None,
        tenant: Optional[str] = None,
        secret: Optional[str] = None,
        cloud: Optional[str] = None,
        debug: bool = False,
    ) -> Session:
        """
        Replace the current Session with a fresh login.

        Raises:
            CommandError: Invalid options, or the first token request failed
        """
        auth_type = auth_type or self._config.auth.auth_type
        error = validate_login_options(
            auth_type, user_name, password, certificate_file,
            certificate_base64_encoded, secret, cloud,
        )
        if error:
            raise CommandError(error)

        if debug:
            logger.debug("Logging out...")
        await self.logout(debug)

        session = self._session
        session.app_id = app_id or self._config.auth.app_id
        session.tenant = tenant or self._config.auth.tenant
        session.auth_type = AuthType(auth_type)
        session.cloud_type = CloudType(cloud) if cloud else CloudType.PUBLIC

        if session.auth_type == AuthType.PASSWORD:
            session.user_name = user_name
            session.password = password
        elif session.auth_type == AuthType.CERTIFICATE:
            if certificate_base64_encoded:
                session.certificate = certificate_base64_encoded
            else:
                session.certificate = base64.b64encode(Path(certificate_file).read_bytes()).decode("ascii")
            session.thumbprint = thumbprint
            session.password = password
        elif session.auth_type == AuthType.IDENTITY:
            session.user_name = user_name
        elif session.auth_type == AuthType.SECRET:
            session.secret = secret

        try:
            await self.ensure_access_token(self.default_resource, debug)
        except Exception as e:
            if debug:
                logger.debug(f"Login failed: {e!r}")
            raise CommandError(getattr(e, "message", None) or str(e)) from e

        session.connected = True
        access_token = session.access_tokens.get(self.default_resource)
        if access_token is not None:
            session.tenant_id = get_tenant_id_from_access_token(access_token.access_token)
            try:
                await self.store_connection_info()
            except StorageError as e:
                if debug:
                    logger.debug(f"Failed to persist connection info: {e}")

        return session

    def connection_status(self) -> Optional[Dict[str, Any]]:
        """Summary of the current login, or None when logged out."""
        if not self._session.connected:
            return None

        access_token = self._session.access_tokens.get(self.default_resource)
        return {
            "connectedAs": get_user_name_from_access_token(access_token.access_token) if access_token else None,
            "authType": self._session.auth_type.value,
            "appId": self._session.app_id,
            "appTenant": self._session.tenant,
            "cloudType": self._session.cloud_type.value,
        }
