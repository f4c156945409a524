"""
TLS Inspector Module

Turns the state of a completed TLS connection into the certificate facts
exported by the canary: leaf fingerprint, subject, issuer, SANs, earliest
expiry of the presented chain, expiry of the last verified chain and the
negotiated protocol version.

Everything except the ``ssl`` adapters at the bottom is a pure function over
:class:`TLSConnectionState`.
"""

import logging
import ssl
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from .schemas import CertificateInfo, CertificateSnapshot, TLSConnectionState

logger = logging.getLogger(__name__)


TLS_VERSION_LABELS = {
    "TLSv1": "TLS 1.0",
    "TLSv1.0": "TLS 1.0",
    "TLSv1.1": "TLS 1.1",
    "TLSv1.2": "TLS 1.2",
    "TLSv1.3": "TLS 1.3",
}

UNKNOWN_TLS_VERSION = "unknown"

# Raised by cryptography for certificates it cannot parse
CERTIFICATE_ERRORS = (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType)


def _earliest(certs: Iterable[CertificateInfo]) -> Optional[datetime]:
    earliest = None
    for cert in certs:
        if cert.not_after is None:
            continue
        if earliest is None or cert.not_after < earliest:
            earliest = cert.not_after
    return earliest


def earliest_leaf_expiry(state: TLSConnectionState) -> Optional[datetime]:
    """Earliest ``not_after`` of the presented peer chain, ignoring certificates without one."""
    return _earliest(state.peer_certificates)


def last_chain_expiry(state: TLSConnectionState) -> Optional[datetime]:
    """
    Expiry of the last verified chain to expire.

    Each chain is only as valid as its earliest expiring certificate, so
    this is the maximum over chains of the per-chain minimum.
    """
    last = None
    for chain in state.verified_chains:
        chain_expiry = _earliest(chain)
        if chain_expiry is None:
            continue
        if last is None or chain_expiry > last:
            last = chain_expiry
    return last


def _leaf(state: TLSConnectionState) -> Optional[CertificateInfo]:
    if not state.peer_certificates:
        return None
    return state.peer_certificates[0]


def fingerprint(state: TLSConnectionState) -> Optional[str]:
    leaf = _leaf(state)
    return leaf.fingerprint_sha256 if leaf else None


def subject(state: TLSConnectionState) -> Optional[str]:
    leaf = _leaf(state)
    return leaf.subject if leaf else None


def issuer(state: TLSConnectionState) -> Optional[str]:
    leaf = _leaf(state)
    return leaf.issuer if leaf else None


def dns_names(state: TLSConnectionState) -> Optional[str]:
    leaf = _leaf(state)
    return ",".join(leaf.dns_names) if leaf else None


def tls_version_label(version: Optional[str]) -> str:
    """Map an OpenSSL protocol name (``TLSv1.3``) to its exported label."""
    if not version:
        return UNKNOWN_TLS_VERSION
    return TLS_VERSION_LABELS.get(version, UNKNOWN_TLS_VERSION)


def inspect(state: TLSConnectionState) -> CertificateSnapshot:
    """Compute the certificate snapshot for one TLS round trip."""
    if not state.peer_certificates:
        logger.warning("TLS peer presented no certificates, skipping certificate facts")

    return CertificateSnapshot(
        earliest_leaf_expiry=earliest_leaf_expiry(state),
        last_verified_chain_expiry=last_chain_expiry(state),
        fingerprint_sha256=fingerprint(state),
        subject=subject(state),
        issuer=issuer(state),
        san_list=dns_names(state),
        negotiated_version=tls_version_label(state.version),
    )


# ---------------------------------------------------------------------------
# Adapters from the ssl module
# ---------------------------------------------------------------------------

def certificate_info_from_der(cert_der: bytes) -> CertificateInfo:
    """Parse a DER encoded X.509 certificate"""
    cert = x509.load_der_x509_certificate(cert_der)

    not_after = cert.not_valid_after_utc if hasattr(cert, "not_valid_after_utc") else cert.not_valid_after
    if not_after.tzinfo is None:
        not_after = not_after.replace(tzinfo=timezone.utc)

    sans: List[str] = []
    try:
        san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        sans = san_ext.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        pass

    return CertificateInfo(
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        dns_names=sans,
        not_after=not_after,
    )


def _parse_chain(chain) -> List[CertificateInfo]:
    # ssl returns each certificate DER encoded
    return [certificate_info_from_der(bytes(der)) for der in chain or []]


def connection_state_from_ssl_object(ssl_object) -> TLSConnectionState:
    """
    Build a :class:`TLSConnectionState` from an ``ssl.SSLObject``/``SSLSocket``.

    Full chains are only exposed by ``get_unverified_chain`` and
    ``get_verified_chain`` on Python 3.13+. On older interpreters only the
    leaf is available, and it stands in for the verified chain when the
    context required verification (the handshake would have failed
    otherwise).
    """
    get_unverified = getattr(ssl_object, "get_unverified_chain", None)
    get_verified = getattr(ssl_object, "get_verified_chain", None)

    if get_unverified is not None and get_verified is not None:
        peer = _parse_chain(get_unverified())
        verified = _parse_chain(get_verified())
        verified_chains = [verified] if verified else []
    else:
        leaf_der = ssl_object.getpeercert(binary_form=True)
        peer = [certificate_info_from_der(leaf_der)] if leaf_der else []
        verify_mode = getattr(getattr(ssl_object, "context", None), "verify_mode", ssl.CERT_NONE)
        verified_chains = [list(peer)] if peer and verify_mode == ssl.CERT_REQUIRED else []

    return TLSConnectionState(
        version=ssl_object.version(),
        peer_certificates=peer,
        verified_chains=verified_chains,
    )
