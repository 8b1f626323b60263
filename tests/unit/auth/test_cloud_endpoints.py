"""
Tests for cloud endpoint mapping and resource normalization.
"""

import pytest

from m365broker.auth.cloud import (
    AAD_GRAPH,
    ARM,
    CLOUD_ENDPOINTS,
    GRAPH,
    LOGIN,
    get_authority,
    get_endpoint_for_resource,
)
from m365broker.auth.models import CloudType
from m365broker.auth.resource import (
    POWER_APPS_RESOURCE,
    POWER_BI_RESOURCE,
    get_resource_from_url,
)


class TestGetEndpointForResource:
    """Test the cloud endpoint table."""

    @pytest.mark.parametrize("resource", [GRAPH, AAD_GRAPH, ARM, LOGIN, "https://contoso.sharepoint.com"])
    def test_public_is_identity(self, resource):
        """Test the public cloud never rewrites."""
        assert get_endpoint_for_resource(resource, CloudType.PUBLIC) == resource

    @pytest.mark.parametrize("cloud_type,expected", [
        (CloudType.US_GOV, "https://graph.microsoft.com"),
        (CloudType.US_GOV_HIGH, "https://graph.microsoft.us"),
        (CloudType.US_GOV_DOD, "https://dod-graph.microsoft.us"),
        (CloudType.CHINA, "https://microsoftgraph.chinacloudapi.cn"),
    ])
    def test_graph_per_cloud(self, cloud_type, expected):
        """Test Graph resolves to each cloud's host."""
        assert get_endpoint_for_resource(GRAPH, cloud_type) == expected

    @pytest.mark.parametrize("cloud_type,expected", [
        (CloudType.US_GOV, "https://management.usgovcloudapi.net/"),
        (CloudType.US_GOV_HIGH, "https://management.usgovcloudapi.net/"),
        (CloudType.US_GOV_DOD, "https://management.usgovcloudapi.net/"),
        (CloudType.CHINA, "https://management.chinacloudapi.cn"),
    ])
    def test_arm_per_cloud(self, cloud_type, expected):
        assert get_endpoint_for_resource(ARM, cloud_type) == expected

    def test_china_legacy_graph_and_login(self):
        assert get_endpoint_for_resource(AAD_GRAPH, CloudType.CHINA) == "https://graph.chinacloudapi.cn"
        assert get_endpoint_for_resource(LOGIN, CloudType.CHINA) == "https://login.chinacloudapi.cn"

    @pytest.mark.parametrize("cloud_type", list(CloudType))
    def test_unmapped_resource_unchanged(self, cloud_type):
        """Test misses return the input instead of failing."""
        url = "https://contoso.sharepoint.com"
        assert get_endpoint_for_resource(url, cloud_type) == url

    def test_every_sovereign_cloud_maps_four_endpoints(self):
        """Test the table is fully populated at import time."""
        assert CloudType.PUBLIC not in CLOUD_ENDPOINTS
        for cloud_type in (CloudType.US_GOV, CloudType.US_GOV_HIGH, CloudType.US_GOV_DOD, CloudType.CHINA):
            assert set(CLOUD_ENDPOINTS[cloud_type]) == {GRAPH, AAD_GRAPH, ARM, LOGIN}

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            CLOUD_ENDPOINTS[CloudType.CHINA][GRAPH] = "https://example.com"


class TestGetAuthority:
    """Test authority URL construction."""

    def test_public(self):
        assert get_authority("common", CloudType.PUBLIC) == "https://login.microsoftonline.com/common"

    def test_us_gov_high(self):
        assert get_authority("contoso.onmicrosoft.us", CloudType.US_GOV_HIGH) == (
            "https://login.microsoftonline.us/contoso.onmicrosoft.us"
        )


class TestGetResourceFromUrl:
    """Test resource URL normalization."""

    @pytest.mark.parametrize("url,expected", [
        ("https://contoso.sharepoint.com/sites/team/_api/web", "https://contoso.sharepoint.com"),
        ("https://graph.microsoft.com/v1.0/me", "https://graph.microsoft.com"),
        ("https://graph.microsoft.com", "https://graph.microsoft.com"),
        ("https://api.powerbi.com", POWER_BI_RESOURCE),
        ("https://api.powerbi.com/v1.0/myorg/groups", POWER_BI_RESOURCE),
        ("https://api.bap.microsoft.com/providers/x", POWER_APPS_RESOURCE),
        ("https://api.powerapps.com/providers", POWER_APPS_RESOURCE),
        ("https://service.contoso.api.bap.microsoft.com/foo", POWER_APPS_RESOURCE),
    ])
    def test_normalize(self, url, expected):
        assert get_resource_from_url(url) == expected

    @pytest.mark.parametrize("url", [
        "https://contoso.sharepoint.com/sites/team",
        "https://api.powerbi.com/v1.0/myorg",
        "https://service.contoso.api.bap.microsoft.com/foo",
        "https://api.powerapps.com",
        "https://management.azure.com/subscriptions",
        POWER_APPS_RESOURCE,
        POWER_BI_RESOURCE,
    ])
    def test_idempotent(self, url):
        """Test normalizing twice equals normalizing once."""
        once = get_resource_from_url(url)
        assert get_resource_from_url(once) == once
