"""
Managed identity token acquisition.

Managed identity does not go through the identity library: the token is
requested with a plain HTTP GET from a metadata endpoint exposed by the
hosting platform. Which endpoint, and in which shape, depends on the
environment variables the platform sets:

1. ``IDENTITY_ENDPOINT`` + ``IDENTITY_HEADER``: App Service / Functions
2. ``MSI_ENDPOINT`` + ``MSI_SECRET``: same, legacy variable names
3. ``IDENTITY_ENDPOINT`` alone: Cloud Shell
4. ``MSI_ENDPOINT`` alone: Cloud Shell, legacy variable name
5. nothing: Instance Metadata Service on a virtual machine

A user-assigned identity is selected with ``client_id``. The caller may
have given a principal (object) id instead, so a "not found" answer is
retried once with ``principal_id``.
"""

import errno
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx

from m365broker.auth.exceptions import (
    CloudShellUserIdentityError,
    ManagedIdentityError,
    ManagedIdentityNotAssignedError,
)
from m365broker.auth.models import AccessToken

logger = logging.getLogger(__name__)

IMDS_ENDPOINT = "http://169.254.169.254/metadata/identity/oauth2/token"
IMDS_API_VERSION = "2018-02-01"
APP_SERVICE_API_VERSION = "2019-08-01"
CLOUD_SHELL_MARKER = "ACC_CLOUD"

FUNCTIONS_NOT_FOUND = "No Managed Identity found"
VM_NOT_FOUND = "Identity not found"


class EndpointKind(str, Enum):
    """Shape of the metadata endpoint request."""

    APP_SERVICE = "app_service"
    CLOUD_SHELL = "cloud_shell"
    IMDS = "imds"


@dataclass
class IdentityRequest:
    """A fully described managed identity token request."""

    kind: EndpointKind
    url: str
    params: Dict[str, str]
    headers: Dict[str, str] = field(default_factory=dict)

    def with_principal_id(self) -> "IdentityRequest":
        """Same request with ``client_id`` renamed to ``principal_id``, order kept."""
        params = {
            ("principal_id" if key == "client_id" else key): value
            for key, value in self.params.items()
        }
        return IdentityRequest(self.kind, self.url, params, dict(self.headers))


def is_not_found(error: ManagedIdentityError) -> bool:
    """Whether a failure means the identity selector matched nothing."""
    body = error.body
    if not isinstance(body, dict):
        return False
    if body.get("Message"):
        return FUNCTIONS_NOT_FOUND in str(body["Message"])
    if body.get("error_description"):
        return body["error_description"] == VM_NOT_FOUND
    return False


def _is_access_denied(exc: BaseException) -> bool:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and current.errno == errno.EACCES:
            return True
        current = current.__cause__ or current.__context__
    return False


class ManagedIdentityResolver:
    """Requests managed identity tokens from the platform metadata endpoint."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the resolver.

        Args:
            timeout: Timeout in seconds for each HTTP call
            transport: Optional httpx transport (tests inject a MockTransport)
            environ: Environment to read signals from, defaults to os.environ
        """
        self._timeout = timeout
        self._transport = transport
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def build_request(self, resource: str, user_name: Optional[str] = None) -> IdentityRequest:
        """
        Pick the endpoint shape from the environment.

        Args:
            resource: Resource to request a token for
            user_name: Client id or principal id of a user-assigned identity

        Returns:
            Request description; ``client_id`` is appended when user_name is set

        Raises:
            CloudShellUserIdentityError: user_name given inside Cloud Shell
        """
        env = self.environ
        identity_endpoint = env.get("IDENTITY_ENDPOINT")
        identity_header = env.get("IDENTITY_HEADER")
        msi_endpoint = env.get("MSI_ENDPOINT")
        msi_secret = env.get("MSI_SECRET")
        headers = {"Accept": "application/json", "Metadata": "true"}

        if identity_endpoint and identity_header:
            logger.debug("IDENTITY_ENDPOINT and IDENTITY_HEADER found: App Service or Functions")
            request = IdentityRequest(
                EndpointKind.APP_SERVICE,
                identity_endpoint,
                {"resource": resource, "api-version": APP_SERVICE_API_VERSION},
                {**headers, "X-IDENTITY-HEADER": identity_header},
            )
        elif msi_endpoint and msi_secret:
            logger.debug("MSI_ENDPOINT and MSI_SECRET found: App Service or Functions (legacy names)")
            request = IdentityRequest(
                EndpointKind.APP_SERVICE,
                msi_endpoint,
                {"resource": resource, "api-version": APP_SERVICE_API_VERSION},
                {**headers, "X-IDENTITY-HEADER": msi_secret},
            )
        elif identity_endpoint or msi_endpoint:
            logger.debug("Identity endpoint without secret header: Cloud Shell")
            if user_name and env.get(CLOUD_SHELL_MARKER):
                raise CloudShellUserIdentityError()
            request = IdentityRequest(
                EndpointKind.CLOUD_SHELL,
                identity_endpoint or msi_endpoint,
                {"resource": resource},
                headers,
            )
        else:
            logger.debug("No identity endpoint variables: using Instance Metadata Service")
            request = IdentityRequest(
                EndpointKind.IMDS,
                IMDS_ENDPOINT,
                {"resource": resource, "api-version": IMDS_API_VERSION},
                headers,
            )

        if user_name:
            request.params["client_id"] = user_name

        return request

    async def get_token(
        self, resource: str, user_name: Optional[str] = None, debug: bool = False
    ) -> AccessToken:
        """
        Acquire a managed identity token for a resource.

        Args:
            resource: Resource to request a token for
            user_name: Optional user-assigned identity selector
            debug: Emit diagnostic log records

        Returns:
            Access token with its expiry

        Raises:
            CloudShellUserIdentityError: user-assigned identity inside Cloud Shell
            ManagedIdentityNotAssignedError: access denied after principal_id retry
            ManagedIdentityError: any other endpoint failure
        """
        if debug:
            logger.debug("Will try to retrieve access token using identity...")

        request = self.build_request(resource, user_name)

        try:
            return await self._send(request)
        except ManagedIdentityError as e:
            if not user_name or not is_not_found(e):
                raise
            if debug:
                logger.debug("client_id not found, retrying with principal_id (object id)")

        try:
            return await self._send(request.with_principal_id())
        except ManagedIdentityError as e:
            # msi_res_id is not tried: App Service does not accept it
            if e.access_denied:
                raise ManagedIdentityNotAssignedError() from e
            raise

    async def _send(self, request: IdentityRequest) -> AccessToken:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(request.url, params=request.params, headers=request.headers)
        except httpx.TransportError as e:
            raise ManagedIdentityError(
                f"Managed identity endpoint request failed: {e}",
                access_denied=_is_access_denied(e),
            ) from e

        if response.status_code >= 400:
            raise ManagedIdentityError(
                f"Managed identity endpoint returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=self._parse_body(response),
                access_denied=response.status_code == 403,
            )

        data = self._parse_body(response)
        try:
            return AccessToken(
                access_token=data["access_token"],
                expires_on=datetime.fromtimestamp(int(data["expires_on"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ManagedIdentityError(
                f"Unexpected managed identity response: {e}",
                status_code=response.status_code,
                body=data,
            ) from e

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text
