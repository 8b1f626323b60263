"""
Identity library client construction.

Builds MSAL public and confidential clients for the session's strategy,
cloud, application and tenant, and persists MSAL's own token cache
through a TokenStorage so accounts survive between invocations.
"""

import logging
from typing import Optional, Union

import msal

from m365broker.auth.cloud import get_authority
from m365broker.auth.models import AuthType, Session
from m365broker.state import StorageError, TokenNotFoundError, TokenStorage

logger = logging.getLogger(__name__)

ClientApplication = Union[msal.PublicClientApplication, msal.ConfidentialClientApplication]


class MsalCache:
    """Loads and saves the MSAL token cache blob."""

    def __init__(self, storage: TokenStorage):
        self._storage = storage

    async def load(self) -> msal.SerializableTokenCache:
        """
        Read the cache blob; a missing or unreadable blob gives an empty cache.
        """
        cache = msal.SerializableTokenCache()
        try:
            cache.deserialize(await self._storage.get())
        except TokenNotFoundError:
            pass
        except (StorageError, ValueError) as e:
            logger.debug(f"Ignoring unreadable MSAL cache: {e}")
        return cache

    async def save(self, cache: msal.SerializableTokenCache) -> None:
        """Write the cache blob if MSAL changed it."""
        if cache.has_state_changed:
            await self._storage.set(cache.serialize())

    async def remove(self) -> None:
        await self._storage.remove()


class ClientFactory:
    """Creates MSAL clients configured from the session."""

    def get_client(
        self, session: Session, cache: msal.SerializableTokenCache
    ) -> Optional[ClientApplication]:
        """
        Build the client matching the session's authentication type.

        Managed identity does not use MSAL, and certificate clients can only
        be built once the certificate has been resolved, so both return None.
        """
        if session.auth_type in (AuthType.DEVICE_CODE, AuthType.PASSWORD, AuthType.BROWSER):
            return self.public_client(session, cache)
        if session.auth_type == AuthType.SECRET:
            return self.confidential_client(session, cache, secret=session.secret)
        return None

    def public_client(
        self, session: Session, cache: msal.SerializableTokenCache
    ) -> msal.PublicClientApplication:
        if session.auth_type == AuthType.PASSWORD and session.tenant == "common":
            # the password grant rejects "common"
            session.tenant = "organizations"

        return msal.PublicClientApplication(
            session.app_id,
            authority=get_authority(session.tenant, session.cloud_type),
            token_cache=cache,
        )

    def confidential_client(
        self,
        session: Session,
        cache: msal.SerializableTokenCache,
        thumbprint: Optional[str] = None,
        private_key: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> msal.ConfidentialClientApplication:
        if thumbprint:
            credential = {"thumbprint": thumbprint, "private_key": private_key}
        else:
            credential = secret

        return msal.ConfidentialClientApplication(
            session.app_id,
            client_credential=credential,
            authority=get_authority(session.tenant, session.cloud_type),
            token_cache=cache,
        )
