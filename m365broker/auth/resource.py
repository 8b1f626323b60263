"""Resource URL normalization.

Callers hand in arbitrary request URLs; the identity provider expects the
audience (origin) of the service, and rejects a few aliases outright.
"""

POWER_APPS_RESOURCE = "https://service.powerapps.com/"
POWER_BI_RESOURCE = "https://analysis.windows.net/powerbi/api"

_POWER_APPS_ALIASES = ("https://api.bap.microsoft.com", "https://api.powerapps.com")
_BAP_SUFFIX = ".api.bap.microsoft.com"
_POWER_BI_ALIAS = "https://api.powerbi.com"


def get_resource_from_url(url: str) -> str:
    """Return the resource (token audience) for a request URL.

    The URL is cut at the first slash after the scheme, then the Power
    Platform and Power BI aliases are replaced with the resources the
    identity provider issues tokens for. Applying this twice gives the
    same result as applying it once.

    Example:
        >>> get_resource_from_url("https://contoso.sharepoint.com/sites/team/_api/web")
        'https://contoso.sharepoint.com'
        >>> get_resource_from_url("https://api.powerbi.com/v1.0/myorg/groups")
        'https://analysis.windows.net/powerbi/api'
    """
    # Canonical resources carry a path of their own and must survive re-normalization
    if url in (POWER_APPS_RESOURCE, POWER_BI_RESOURCE):
        return url

    resource = url
    # Skip past "https://" before looking for the path separator
    pos = resource.find("/", 8)
    if pos > -1:
        resource = resource[:pos]

    if resource in _POWER_APPS_ALIASES or resource.endswith(_BAP_SUFFIX):
        return POWER_APPS_RESOURCE

    if resource == _POWER_BI_ALIAS:
        return POWER_BI_RESOURCE

    return resource
