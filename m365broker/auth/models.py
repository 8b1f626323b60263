"""
Session and token models for the credential broker.

The Session is the single mutable identity of the current login. It is
persisted as JSON (camelCase keys) and restored on the next invocation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from m365broker.core.config_manager import DEFAULT_APP_ID, DEFAULT_TENANT


class AuthType(str, Enum):
    """Mutually exclusive authentication strategies."""

    DEVICE_CODE = "deviceCode"
    PASSWORD = "password"
    CERTIFICATE = "certificate"
    IDENTITY = "identity"
    BROWSER = "browser"
    SECRET = "secret"


class CloudType(str, Enum):
    """Cloud environments the broker can authenticate against."""

    PUBLIC = "Public"
    US_GOV = "USGov"
    US_GOV_HIGH = "USGovHigh"
    US_GOV_DOD = "USGovDoD"
    CHINA = "China"


class CertificateType(str, Enum):
    """Container format of the login certificate, discovered on first use."""

    UNKNOWN = "Unknown"
    BASE64 = "Base64"
    BINARY = "Binary"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AccessToken(_CamelModel):
    """A token for one resource and the instant it stops being usable."""

    access_token: str
    expires_on: Optional[datetime] = None

    @field_validator("expires_on")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Restored values may be naive ISO strings; fresh ones are aware
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if self.expires_on is None:
            return False
        return self.expires_on > (now or datetime.now(timezone.utc))


class Session(_CamelModel):
    """Current login state: strategy, credentials, cached tokens and cloud."""

    connected: bool = False
    auth_type: AuthType = AuthType.DEVICE_CODE
    user_name: Optional[str] = None
    password: Optional[str] = None
    secret: Optional[str] = None
    certificate_type: CertificateType = CertificateType.UNKNOWN
    certificate: Optional[str] = None
    thumbprint: Optional[str] = None
    access_tokens: Dict[str, AccessToken] = Field(default_factory=dict)
    spo_url: Optional[str] = None
    tenant_id: Optional[str] = None
    app_id: str = DEFAULT_APP_ID
    tenant: str = DEFAULT_TENANT
    cloud_type: CloudType = CloudType.PUBLIC

    def logout(self, app_id: str = DEFAULT_APP_ID, tenant: str = DEFAULT_TENANT) -> None:
        """Reset everything except the application and tenant defaults."""
        self.connected = False
        self.access_tokens = {}
        self.auth_type = AuthType.DEVICE_CODE
        self.user_name = None
        self.password = None
        self.secret = None
        self.certificate_type = CertificateType.UNKNOWN
        self.certificate = None
        self.thumbprint = None
        self.spo_url = None
        self.tenant_id = None
        self.app_id = app_id
        self.tenant = tenant
        self.cloud_type = CloudType.PUBLIC

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str) -> "Session":
        return cls.model_validate_json(data)
