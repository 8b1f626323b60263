"""
Shared fixtures: isolated configuration, self-signed certificates, tokens.
"""

import base64
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

CERT_PASSWORD = "pass@word1"

_ENV_VARS = (
    "M365BROKER_APP_ID",
    "M365BROKER_TENANT",
    "M365BROKER_AUTH_TYPE",
    "M365BROKER_LOG_LEVEL",
    "M365BROKER_LOG_FILE",
    "M365BROKER_AUTO_OPEN_LINKS_IN_BROWSER",
    "M365BROKER_COPY_DEVICE_CODE_TO_CLIPBOARD",
    "IDENTITY_ENDPOINT",
    "IDENTITY_HEADER",
    "MSI_ENDPOINT",
    "MSI_SECRET",
    "ACC_CLOUD",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from the real user config and platform variables."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("M365BROKER_CONFIG_DIR", str(tmp_path / "config"))
    yield


@pytest.fixture(scope="session")
def key_and_certificate():
    """RSA key and a self-signed certificate for it."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "m365broker-test")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return key, certificate


@pytest.fixture(scope="session")
def certificate_thumbprint(key_and_certificate):
    _, certificate = key_and_certificate
    return certificate.fingerprint(hashes.SHA1()).hex()


@pytest.fixture(scope="session")
def pem_certificate_base64(key_and_certificate):
    """Base64 of a PEM file holding the unencrypted key then the certificate."""
    key, certificate = key_and_certificate
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ) + certificate.public_bytes(serialization.Encoding.PEM)
    return base64.b64encode(pem).decode("ascii")


@pytest.fixture(scope="session")
def pfx_certificate_base64(key_and_certificate):
    """Base64 of a password-protected PKCS#12 container."""
    key, certificate = key_and_certificate
    pfx = pkcs12.serialize_key_and_certificates(
        b"m365broker",
        key,
        certificate,
        None,
        serialization.BestAvailableEncryption(CERT_PASSWORD.encode("utf-8")),
    )
    return base64.b64encode(pfx).decode("ascii")


def make_jwt(**claims) -> str:
    """Unsigned-for-trust test token carrying the given claims."""
    return jwt.encode(claims, "test-signing-key-that-is-long-enough", algorithm="HS256")


@pytest.fixture
def user_token():
    return make_jwt(upn="user@contoso.onmicrosoft.com", tid="tenant-id")


@pytest.fixture
def jwt_factory():
    return make_jwt
