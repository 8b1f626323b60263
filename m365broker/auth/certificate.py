"""
Certificate resolution for certificate-based login.

The login certificate arrives as base64 of the raw file bytes, in either
PEM or PKCS#12 (PFX) form, and nothing says which. The first resolution
tries PEM and falls back to PKCS#12; the outcome is recorded on the
session (``certificate_type``) together with the computed thumbprint, so
later invocations go straight to the right parser.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from m365broker.auth.exceptions import CertificateError
from m365broker.auth.models import CertificateType, Session

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(
    r"-----BEGIN (?P<type>[A-Z0-9 ]+)-----\r?\n(?P<body>.*?)-----END (?P=type)-----",
    re.DOTALL,
)


@dataclass
class PemBlock:
    """One ``-----BEGIN ...-----`` section of a PEM document."""

    type: str
    body: str
    text: str

    @property
    def encrypted(self) -> bool:
        return self.type == "ENCRYPTED PRIVATE KEY" or "Proc-Type: 4,ENCRYPTED" in self.body


@dataclass
class ResolvedCertificate:
    """Material a confidential client needs to present a certificate."""

    thumbprint: str
    private_key: str


def parse_pem_blocks(text: str) -> List[PemBlock]:
    """
    Split a PEM document into its blocks.

    Args:
        text: PEM text, possibly holding a key, a certificate and a chain

    Returns:
        Blocks in document order

    Raises:
        ValueError: If the text holds no PEM block at all
    """
    blocks = [
        PemBlock(type=m.group("type"), body=m.group("body"), text=m.group(0) + "\n")
        for m in _PEM_BLOCK.finditer(text)
    ]
    if not blocks:
        raise ValueError("No PEM blocks found")
    return blocks


def calculate_thumbprint(certificate: x509.Certificate) -> str:
    """Return the hex SHA-1 of the certificate's DER encoding."""
    return certificate.fingerprint(hashes.SHA1()).hex()


def _key_to_pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


class CertificateResolver:
    """Resolves the session certificate into a thumbprint and private key."""

    def resolve(self, session: Session, debug: bool = False) -> ResolvedCertificate:
        """
        Parse the session certificate, updating format and thumbprint on it.

        Args:
            session: Session holding ``certificate`` (base64), optional
                     ``thumbprint`` and ``password``, and the format hint
            debug: Emit diagnostic log records

        Returns:
            Thumbprint and unencrypted PKCS#8 PEM private key

        Raises:
            CertificateError: If the certificate cannot be decoded, parsed,
                              decrypted, or holds no private key
        """
        if not session.certificate:
            raise CertificateError("No certificate specified")

        # base64 tools wrap their output, line breaks are not part of the data
        encoded = "".join(session.certificate.split())
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CertificateError(f"Certificate is not valid base64: {e}") from e

        password = session.password.encode("utf-8") if session.password else None
        blocks: Optional[List[PemBlock]] = None

        if session.certificate_type in (CertificateType.UNKNOWN, CertificateType.BASE64):
            try:
                blocks = self._read_pem(raw, session)
                session.certificate_type = CertificateType.BASE64
            except (UnicodeDecodeError, ValueError) as e:
                if session.certificate_type == CertificateType.BASE64:
                    raise CertificateError(f"Failed to parse PEM certificate: {e}") from e
                if debug:
                    logger.debug(f"Certificate is not PEM ({e}), trying PKCS#12")
                session.certificate_type = CertificateType.BINARY

        if session.certificate_type == CertificateType.BINARY:
            private_key = self._read_pkcs12(raw, password, session, debug)
        else:
            private_key = self._private_key_from_pem(blocks or [], password)

        return ResolvedCertificate(thumbprint=session.thumbprint, private_key=private_key)

    def _read_pem(self, raw: bytes, session: Session) -> List[PemBlock]:
        blocks = parse_pem_blocks(raw.decode("utf-8"))

        if session.thumbprint is None:
            cert_block = next((b for b in blocks if b.type == "CERTIFICATE"), None)
            if cert_block is None:
                raise ValueError("PEM does not contain a CERTIFICATE block")
            certificate = x509.load_pem_x509_certificate(cert_block.text.encode("ascii"))
            session.thumbprint = calculate_thumbprint(certificate)

        return blocks

    def _private_key_from_pem(self, blocks: List[PemBlock], password: Optional[bytes]) -> str:
        key_block = next((b for b in blocks if b.type.endswith("PRIVATE KEY")), None)
        if key_block is None:
            raise CertificateError("PEM certificate does not contain a private key")

        try:
            private_key = serialization.load_pem_private_key(
                key_block.text.encode("ascii"),
                password=password if key_block.encrypted else None,
            )
        except (ValueError, TypeError) as e:
            raise CertificateError(f"Failed to load private key from PEM certificate: {e}") from e

        return _key_to_pem(private_key)

    def _read_pkcs12(
        self, raw: bytes, password: Optional[bytes], session: Session, debug: bool
    ) -> str:
        try:
            private_key, certificate, additional = pkcs12.load_key_and_certificates(raw, password)
        except ValueError as e:
            raise CertificateError(f"Failed to parse PKCS#12 certificate: {e}") from e

        if debug:
            logger.debug(
                f"PKCS#12 container: private key={'yes' if private_key else 'no'}, "
                f"certificate={'yes' if certificate else 'no'}, additional certificates={len(additional)}"
            )

        if private_key is None:
            raise CertificateError("The certificate must include its private key")

        if session.thumbprint is None:
            if certificate is None:
                raise CertificateError("PKCS#12 container does not contain a certificate")
            session.thumbprint = calculate_thumbprint(certificate)

        return _key_to_pem(private_key)
