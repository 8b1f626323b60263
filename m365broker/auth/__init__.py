"""
Authentication Module.

The ``Auth`` broker and the pieces it dispatches to: strategies, cloud
endpoint map, certificate and managed identity resolvers.
"""

from m365broker.auth.exceptions import (
    AuthError,
    AcquisitionError,
    TokenRetrievalError,
    CertificateError,
    ManagedIdentityError,
    CloudShellUserIdentityError,
    ManagedIdentityNotAssignedError,
    AuthorizationCodeError,
    CommandError,
)
from m365broker.auth.models import (
    AccessToken,
    AuthType,
    CertificateType,
    CloudType,
    Session,
)
from m365broker.auth.cloud import get_authority, get_endpoint_for_resource
from m365broker.auth.resource import get_resource_from_url
from m365broker.auth.certificate import CertificateResolver, ResolvedCertificate
from m365broker.auth.managed_identity import ManagedIdentityResolver
from m365broker.auth.broker import Auth, validate_login_options

__all__ = [
    # Exceptions
    "AuthError",
    "AcquisitionError",
    "TokenRetrievalError",
    "CertificateError",
    "ManagedIdentityError",
    "CloudShellUserIdentityError",
    "ManagedIdentityNotAssignedError",
    "AuthorizationCodeError",
    "CommandError",
    # Models
    "AccessToken",
    "AuthType",
    "CertificateType",
    "CloudType",
    "Session",
    # Endpoints
    "get_authority",
    "get_endpoint_for_resource",
    "get_resource_from_url",
    # Resolvers
    "CertificateResolver",
    "ResolvedCertificate",
    "ManagedIdentityResolver",
    # Broker
    "Auth",
    "validate_login_options",
]
