"""Certificate matching, chain walking and trust verification utilities."""

from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import ipaddress
import logging

import certifi
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from .formats import FormatConverter
from .input_guard import (
    MAX_KEY_PAIR_LENGTH,
    InputValidationError,
    SecurityRejectionError,
)
from .x509_utils import X509Utils

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 20
KEY_MATCH_PLAINTEXT = b"test-data-for-key-matching"
SUPPORTED_KEY_TYPES = ("rsa", "ec", "ed25519", "ed448")


class CertificateVerificationError(Exception):
    """Exception raised when certificate verification fails."""
    pass


class CertificateChainError(CertificateVerificationError):
    """Raised when a presented chain cannot be walked within the depth cap."""
    pass


@dataclass
class DomainMatchResult:
    """Whether a certificate covers a hostname, and through which name."""

    matches: bool
    matched_with: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class ChainEntry:
    """One certificate visited while walking a chain."""

    subject: Dict[str, str]
    issuer: Dict[str, str]
    valid_from: str
    valid_to: str
    fingerprint: str
    serial_number: str


@dataclass
class KeyCompatibility:
    key_type: str
    supported: bool
    algorithm: str


@dataclass
class KeyMatchReport:
    """Outcome of pairing a certificate with a private key."""

    matches: bool
    match_details: str
    certificate: Dict[str, object]
    private_key: Dict[str, str]
    compatibility: KeyCompatibility


@dataclass
class TrustResult:
    authorized: bool
    authorization_error: Optional[str] = None
    verified_chain: List[x509.Certificate] = field(default_factory=list)


@lru_cache(maxsize=1)
def _system_trust_store() -> Store:
    with open(certifi.where(), "rb") as bundle:
        roots = x509.load_pem_x509_certificates(bundle.read())
    logger.info(f"Loaded {len(roots)} trusted root certificates")
    return Store(roots)


def _wildcard_covers(pattern: str, hostname: str) -> bool:
    if not pattern.startswith("*."):
        return False
    wildcard_domain = pattern[2:]
    hostname_parts = hostname.split(".")
    if len(hostname_parts) != len(wildcard_domain.split(".")) + 1:
        return False
    return ".".join(hostname_parts[1:]) == wildcard_domain


class CertificateVerifier:
    """Utility class for certificate verification."""

    @staticmethod
    def match_hostname(
        common_name: Optional[str],
        alt_names: Sequence[str],
        hostname: str,
    ) -> DomainMatchResult:
        """
        Check whether a certificate's CN or SANs cover a hostname.

        The CN is tried first (exact, then single-label wildcard), then each
        SAN in order. Comparison is case-sensitive.

        Args:
            common_name: Subject CN, if any
            alt_names: SAN DNS names
            hostname: Hostname that was connected to

        Returns:
            DomainMatchResult
        """
        if not common_name:
            return DomainMatchResult(matches=False, reason="Certificate has no Common Name (CN)")

        if common_name == hostname or _wildcard_covers(common_name, hostname):
            return DomainMatchResult(matches=True, matched_with=common_name)

        for alt_name in alt_names:
            if alt_name == hostname or _wildcard_covers(alt_name, hostname):
                return DomainMatchResult(matches=True, matched_with=alt_name)

        return DomainMatchResult(
            matches=False,
            reason=(
                f"Domain '{hostname}' does not match certificate CN '{common_name}' "
                f"or any Subject Alternative Names"
            ),
        )

    @staticmethod
    def presented_issuer_lookup(
        presented: Sequence[x509.Certificate],
    ) -> Callable[[x509.Certificate], Optional[x509.Certificate]]:
        """Resolve issuers against the certificates a peer presented."""
        def lookup(cert: x509.Certificate) -> Optional[x509.Certificate]:
            for candidate in presented:
                if candidate.subject == cert.issuer:
                    return candidate
            return None
        return lookup

    @staticmethod
    def walk_chain(
        leaf: x509.Certificate,
        issuer_lookup: Callable[[x509.Certificate], Optional[x509.Certificate]],
        max_depth: int = MAX_CHAIN_DEPTH,
    ) -> List[ChainEntry]:
        """
        Walk from the leaf towards the root.

        Stops at a self-issued certificate or when no issuer can be found.

        Args:
            leaf: End-entity certificate
            issuer_lookup: Returns the issuer of a certificate, or None
            max_depth: Maximum number of certificates to visit

        Returns:
            Chain entries, leaf first

        Raises:
            CertificateChainError: If the chain is longer than max_depth
        """
        chain: List[ChainEntry] = []
        current: Optional[x509.Certificate] = leaf

        while current is not None:
            if len(chain) >= max_depth:
                logger.error(f"Certificate chain exceeds {max_depth} certificates")
                raise CertificateChainError(
                    f"Certificate chain exceeds maximum depth of {max_depth}"
                )

            fingerprint = X509Utils.fingerprint(current, "sha1")
            chain.append(ChainEntry(
                subject=X509Utils.name_components(current.subject),
                issuer=X509Utils.name_components(current.issuer),
                valid_from=X509Utils.format_validity_time(current.not_valid_before_utc),
                valid_to=X509Utils.format_validity_time(current.not_valid_after_utc),
                fingerprint=fingerprint,
                serial_number=X509Utils.serial_hex(current.serial_number),
            ))

            issuer = issuer_lookup(current)
            if issuer is None or X509Utils.fingerprint(issuer, "sha1") == fingerprint:
                break
            current = issuer

        return chain

    @staticmethod
    def verify_trust(
        leaf: x509.Certificate,
        intermediates: Sequence[x509.Certificate],
        hostname: str,
        now: Optional[datetime] = None,
    ) -> TrustResult:
        """
        Verify a presented chain and hostname against the system trust store.

        Args:
            leaf: Peer certificate
            intermediates: Other certificates the peer presented
            hostname: Name (or IP literal) the client asked for

        Returns:
            TrustResult with the failure reason when not authorized
        """
        try:
            subject = x509.IPAddress(ipaddress.ip_address(hostname))
        except ValueError:
            subject = x509.DNSName(hostname)

        try:
            builder = PolicyBuilder().store(_system_trust_store()).max_chain_depth(MAX_CHAIN_DEPTH)
            if now is not None:
                builder = builder.time(now)
            verifier = builder.build_server_verifier(subject)
            verified_chain = verifier.verify(leaf, list(intermediates))
        except (VerificationError, ValueError) as e:
            logger.warning(f"Certificate for {hostname} is not trusted: {e}")
            return TrustResult(authorized=False, authorization_error=str(e))

        return TrustResult(authorized=True, verified_chain=list(verified_chain))

    @staticmethod
    def load_trust_store() -> Store:
        """Load (once) the root store used by verify_trust."""
        return _system_trust_store()

    @staticmethod
    def load_private_key(pem: str):
        """
        Load an unencrypted PEM private key.

        Raises:
            InputValidationError: If the key cannot be parsed
        """
        try:
            return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise InputValidationError("Invalid private key format", details=str(e))

    @staticmethod
    def _sign(private_key, data: bytes) -> bytes:
        if isinstance(private_key, rsa.RSAPrivateKey):
            return private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        if isinstance(private_key, ec.EllipticCurvePrivateKey):
            return private_key.sign(data, ec.ECDSA(hashes.SHA256()))
        if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
            return private_key.sign(data)
        if isinstance(private_key, dsa.DSAPrivateKey):
            return private_key.sign(data, hashes.SHA256())
        raise TypeError(f"Key type cannot sign: {X509Utils.key_type_name(private_key)}")

    @staticmethod
    def _verify(public_key, signature: bytes, data: bytes):
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
            public_key.verify(signature, data)
        elif isinstance(public_key, dsa.DSAPublicKey):
            public_key.verify(signature, data, hashes.SHA256())
        else:
            raise InvalidSignature("Unsupported public key type")

    @staticmethod
    def match_private_key(cert: x509.Certificate, private_key) -> bool:
        """
        Check that a private key belongs to a certificate.

        Signs a fixed plaintext with the private key and verifies the signature
        with the certificate's public key.

        Returns:
            True if the key pair matches
        """
        public_key = cert.public_key()
        if X509Utils.key_type_name(public_key) != X509Utils.key_type_name(private_key):
            return False

        try:
            signature = CertificateVerifier._sign(private_key, KEY_MATCH_PLAINTEXT)
        except TypeError as e:
            logger.warning(f"Key matching not possible: {e}")
            return False

        try:
            CertificateVerifier._verify(public_key, signature, KEY_MATCH_PLAINTEXT)
        except InvalidSignature:
            return False
        return True

    @staticmethod
    def match_certificate_and_key(
        certificate: Optional[str],
        private_key: Optional[str],
        now: Optional[datetime] = None,
    ) -> KeyMatchReport:
        """
        Validate, parse and pair a PEM certificate with a PEM private key.

        Raises:
            InputValidationError: On missing, oversized or malformed input
        """
        if not certificate or not private_key or not certificate.strip() or not private_key.strip():
            raise InputValidationError("Both certificate and private key are required")

        cert_pem = certificate.strip()
        key_pem = private_key.strip()
        if len(cert_pem) > MAX_KEY_PAIR_LENGTH or len(key_pem) > MAX_KEY_PAIR_LENGTH:
            raise SecurityRejectionError("Certificate or private key too large")

        if not FormatConverter.has_pem_envelope(cert_pem, "CERTIFICATE"):
            raise InputValidationError("Invalid certificate format. Expected PEM format.")
        if "-----BEGIN" not in key_pem or "PRIVATE KEY-----" not in key_pem:
            raise InputValidationError("Invalid private key format. Expected PEM format.")

        try:
            cert = X509Utils.load_certificate(cert_pem)
        except ValueError as e:
            raise InputValidationError("Invalid certificate format", details=str(e))
        key = CertificateVerifier.load_private_key(key_pem)

        matches = CertificateVerifier.match_private_key(cert, key)
        key_type = X509Utils.key_type_name(key)
        key_size = X509Utils.key_size(key)
        logger.info(f"Certificate/key match check ({key_type}): {matches}")

        return KeyMatchReport(
            matches=matches,
            match_details=(
                "Private key matches the certificate public key" if matches
                else "Private key does NOT match the certificate public key"
            ),
            certificate={
                "subject": X509Utils.name_to_string(cert.subject),
                "issuer": X509Utils.name_to_string(cert.issuer),
                "valid_from": X509Utils.format_validity_time(cert.not_valid_before_utc),
                "valid_to": X509Utils.format_validity_time(cert.not_valid_after_utc),
                "serial_number": X509Utils.serial_hex(cert.serial_number),
                "fingerprint": X509Utils.fingerprint(cert, "sha1"),
                "fingerprint256": X509Utils.fingerprint(cert, "sha256"),
                "days_until_expiration": X509Utils.days_until_expiration(cert.not_valid_after_utc, now),
            },
            private_key={
                "type": key_type,
                "size": f"{key_size} bits" if key_size else "Unknown",
                "format": "PEM",
            },
            compatibility=KeyCompatibility(
                key_type=key_type,
                supported=key_type in SUPPORTED_KEY_TYPES,
                algorithm=f"SHA256 with {key_type}",
            ),
        )


def split_presented_chain(certificates: Sequence[x509.Certificate]) -> Tuple[x509.Certificate, List[x509.Certificate]]:
    """Split a peer-presented list into leaf and the remaining certificates."""
    if not certificates:
        raise CertificateVerificationError("Peer presented no certificate")
    return certificates[0], list(certificates[1:])
