"""Cloud-specific endpoint mapping.

Translates the public-cloud URLs of the well-known services the broker
authenticates against into their sovereign and government cloud hosts.
The public cloud has no table: every lookup there returns its input.

Example:
    >>> get_endpoint_for_resource("https://graph.microsoft.com", CloudType.CHINA)
    'https://microsoftgraph.chinacloudapi.cn'
"""

from types import MappingProxyType
from typing import Mapping

from m365broker.auth.models import CloudType

GRAPH = "https://graph.microsoft.com"
AAD_GRAPH = "https://graph.windows.net"
ARM = "https://management.azure.com/"
LOGIN = "https://login.microsoftonline.com"

_US_GOV_ARM = "https://management.usgovcloudapi.net/"

CLOUD_ENDPOINTS: Mapping[CloudType, Mapping[str, str]] = MappingProxyType({
    CloudType.US_GOV: MappingProxyType({
        GRAPH: "https://graph.microsoft.com",
        AAD_GRAPH: "https://graph.windows.net",
        ARM: _US_GOV_ARM,
        LOGIN: "https://login.microsoftonline.com",
    }),
    CloudType.US_GOV_HIGH: MappingProxyType({
        GRAPH: "https://graph.microsoft.us",
        AAD_GRAPH: "https://graph.windows.net",
        ARM: _US_GOV_ARM,
        LOGIN: "https://login.microsoftonline.us",
    }),
    CloudType.US_GOV_DOD: MappingProxyType({
        GRAPH: "https://dod-graph.microsoft.us",
        AAD_GRAPH: "https://graph.windows.net",
        ARM: _US_GOV_ARM,
        LOGIN: "https://login.microsoftonline.us",
    }),
    CloudType.CHINA: MappingProxyType({
        GRAPH: "https://microsoftgraph.chinacloudapi.cn",
        AAD_GRAPH: "https://graph.chinacloudapi.cn",
        ARM: "https://management.chinacloudapi.cn",
        LOGIN: "https://login.chinacloudapi.cn",
    }),
})


def get_endpoint_for_resource(resource: str, cloud_type: CloudType) -> str:
    """Return the cloud-specific URL for a logical resource URL.

    Unmapped resources, and every resource in the public cloud, are
    returned unchanged.

    Args:
        resource: Public-cloud URL of the service (e.g., "https://graph.microsoft.com")
        cloud_type: Cloud the session is signed in to

    Returns:
        Physical URL to use in that cloud
    """
    return CLOUD_ENDPOINTS.get(cloud_type, {}).get(resource, resource)


def get_authority(tenant: str, cloud_type: CloudType) -> str:
    """Build the login authority URL for a tenant in a cloud."""
    return f"{get_endpoint_for_resource(LOGIN, cloud_type)}/{tenant}"
