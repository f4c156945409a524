"""
Shared helpers for building certificates and fake TLS objects in tests.
"""

import ssl
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def make_certificate_der(
    common_name: str = "pyroscope.example.com",
    issuer_name: str = "Canary Test CA",
    dns_names: Optional[List[str]] = None,
    not_after: Optional[datetime] = None,
) -> bytes:
    """Create a DER encoded certificate signed by a throwaway key."""
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    not_after = not_after or now + timedelta(days=30)

    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_name)]))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(not_after)
    )
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in dns_names]),
            critical=False,
        )

    cert = builder.sign(key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.DER)


class FakeSSLObject:
    """Stands in for ``ssl.SSLObject`` on interpreters without chain accessors."""

    class _Context:
        verify_mode = ssl.CERT_REQUIRED

    def __init__(self, leaf_der: Optional[bytes], version: str = "TLSv1.3"):
        self._leaf_der = leaf_der
        self._version = version
        self.context = self._Context()

    def getpeercert(self, binary_form=False):
        return self._leaf_der

    def version(self):
        return self._version


class FakeChainSSLObject(FakeSSLObject):
    """``ssl.SSLObject`` with the Python 3.13 chain accessors."""

    def __init__(self, unverified: List[bytes], verified: List[bytes], version: str = "TLSv1.2"):
        super().__init__(unverified[0] if unverified else None, version)
        self._unverified = unverified
        self._verified = verified

    def get_unverified_chain(self):
        return list(self._unverified)

    def get_verified_chain(self):
        return list(self._verified)


class FakeNetworkStream:
    """Network stream extension exposing an SSL object"""

    def __init__(self, ssl_object):
        self._ssl_object = ssl_object

    def get_extra_info(self, name):
        if name == "ssl_object":
            return self._ssl_object
        return None

