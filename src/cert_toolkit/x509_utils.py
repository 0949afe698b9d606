"""X.509 certificate and CSR decoding utilities."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union
import logging
import re

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.x509.oid import ExtensionOID, NameOID, SignatureAlgorithmOID
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dh, dsa, ec, ed448, ed25519, rsa, x448, x25519

from .formats import FormatConverter
from .input_guard import (
    MAX_CERTIFICATE_LENGTH,
    MAX_CSR_LENGTH,
    InputValidationError,
    enforce_size_limit,
    require_text,
)

logger = logging.getLogger(__name__)

NAME_ATTRIBUTE_LABELS = {
    NameOID.COMMON_NAME: "CN",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.COUNTRY_NAME: "C",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.LOCALITY_NAME: "L",
    NameOID.EMAIL_ADDRESS: "emailAddress",
}

EC_CURVE_SIZES = {
    "secp256r1": 256,
    "prime256v1": 256,
    "secp384r1": 384,
    "secp521r1": 521,
    "secp256k1": 256,
}

SIGNATURE_ALGORITHM_NAMES = {
    SignatureAlgorithmOID.RSA_WITH_MD5: "MD5withRSA",
    SignatureAlgorithmOID.RSA_WITH_SHA1: "SHA1withRSA",
    SignatureAlgorithmOID.RSA_WITH_SHA224: "SHA224withRSA",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "SHA256withRSA",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "SHA384withRSA",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "SHA512withRSA",
    SignatureAlgorithmOID.RSASSA_PSS: "RSASSA-PSS",
    SignatureAlgorithmOID.ECDSA_WITH_SHA1: "SHA1withECDSA",
    SignatureAlgorithmOID.ECDSA_WITH_SHA224: "SHA224withECDSA",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "SHA256withECDSA",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "SHA384withECDSA",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "SHA512withECDSA",
    SignatureAlgorithmOID.DSA_WITH_SHA1: "SHA1withDSA",
    SignatureAlgorithmOID.DSA_WITH_SHA256: "SHA256withDSA",
    SignatureAlgorithmOID.ED25519: "Ed25519",
    SignatureAlgorithmOID.ED448: "Ed448",
}

EXTENSION_NAMES = {
    ExtensionOID.SUBJECT_ALTERNATIVE_NAME: "Subject Alternative Name",
    ExtensionOID.KEY_USAGE: "Key Usage",
    ExtensionOID.EXTENDED_KEY_USAGE: "Extended Key Usage",
    ExtensionOID.BASIC_CONSTRAINTS: "Basic Constraints",
    ExtensionOID.SUBJECT_KEY_IDENTIFIER: "Subject Key Identifier",
    ExtensionOID.AUTHORITY_KEY_IDENTIFIER: "Authority Key Identifier",
    ExtensionOID.CRL_DISTRIBUTION_POINTS: "CRL Distribution Points",
    ExtensionOID.AUTHORITY_INFORMATION_ACCESS: "Authority Information Access",
    ExtensionOID.CERTIFICATE_POLICIES: "Certificate Policies",
    ExtensionOID.PRECERT_SIGNED_CERTIFICATE_TIMESTAMPS: "Signed Certificate Timestamps",
}

KEY_USAGE_LABELS = [
    ("digital_signature", "Digital Signature"),
    ("content_commitment", "Non Repudiation"),
    ("key_encipherment", "Key Encipherment"),
    ("data_encipherment", "Data Encipherment"),
    ("key_agreement", "Key Agreement"),
    ("key_cert_sign", "Certificate Sign"),
    ("crl_sign", "CRL Sign"),
]

# DER encoding of OID 2.5.29.17 (subjectAltName)
SAN_OID_HEX = "551d11"

_HEURISTIC_DOMAIN = re.compile(r"(?:\*\.)?[a-zA-Z0-9][a-zA-Z0-9.-]{1,60}\.[a-zA-Z]{2,6}")
_HEURISTIC_DOMAIN_FULL = re.compile(r"^(?:\*\.)?[a-zA-Z0-9][a-zA-Z0-9.-]*\.[a-zA-Z]{2,6}$")
HEURISTIC_SAN_LIMIT = 10

# Raised while loading a certificate or lazily while reading its fields
CERTIFICATE_PARSE_ERRORS = (
    ValueError,
    x509.DuplicateExtension,
    x509.InvalidVersion,
    UnsupportedAlgorithm,
)


@dataclass
class PublicKeyInfo:
    """Public key algorithm, size and algorithm-specific details."""

    algorithm: str
    size_bits: Optional[int] = None
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def size(self) -> str:
        return f"{self.size_bits} bits" if self.size_bits else "Unknown"


@dataclass
class ExtensionInfo:
    """Human-readable view of a single X.509 extension."""

    name: str
    critical: bool
    value: str
    alt_names: Optional[List[str]] = None


@dataclass
class CertificateDetails:
    """Decoded certificate at a position in a pasted bundle."""

    position: int
    total_certificates: int
    cert_level: str
    version: int
    serial_number: str
    subject: Dict[str, str]
    issuer: Dict[str, str]
    subject_text: str
    issuer_text: str
    valid_from: str
    valid_to: str
    not_before: datetime
    not_after: datetime
    days_until_expiration: int
    is_expired: bool
    is_not_yet_valid: bool
    fingerprint: str
    fingerprint256: str
    subject_alt_names: List[str]
    public_key_algorithm: str
    public_key_info: PublicKeyInfo
    signature_algorithm: str
    extensions: List[ExtensionInfo]
    status: str = "decoded"


@dataclass
class CertificateDecodeFailure:
    """Parse failure for one block of a pasted bundle."""

    position: int
    total_certificates: int
    error: str
    cert_level: str = "Invalid Certificate"
    status: str = "failed"


@dataclass
class CSRAttribute:
    """A PKCS#10 request attribute."""

    type: str
    name: str
    values: List[str]


@dataclass
class CSRDetails:
    """Decoded certificate signing request."""

    subject_text: str
    subject: Dict[str, str]
    common_name: str
    subject_alt_names: List[str]
    san_source: Optional[str]
    accuracy: str
    public_key_algorithm: str
    public_key_info: PublicKeyInfo
    signature_algorithm: str
    signature_valid: bool
    attributes: List[CSRAttribute]
    extensions: List[ExtensionInfo]
    size: int
    base64_length: int
    raw_pem: str
    format: str = "PEM"
    type: str = "Certificate Signing Request"
    parsing_method: str = "cryptography X.509 parser"


def _oid_name(oid: x509.ObjectIdentifier) -> str:
    name = getattr(oid, "_name", None)
    if not name or name == "Unknown OID":
        return oid.dotted_string
    return name


def _hex_colon(data: bytes) -> str:
    return ":".join(f"{b:02X}" for b in data)


class X509Utils:
    """Utility class for decoding X.509 certificates and CSRs."""

    @staticmethod
    def utcnow() -> datetime:
        """Current time as an aware UTC datetime."""
        return datetime.now(timezone.utc)

    @staticmethod
    def name_components(name: x509.Name) -> Dict[str, str]:
        """
        Map a distinguished name to its short-label components.

        Only CN, O, OU, C, ST, L and emailAddress are reported; repeated
        attributes are joined with ", ".
        """
        components: Dict[str, str] = {}
        for attribute in name:
            label = NAME_ATTRIBUTE_LABELS.get(attribute.oid)
            if label is None:
                continue
            value = str(attribute.value)
            components[label] = f"{components[label]}, {value}" if label in components else value
        return components

    @staticmethod
    def name_to_string(name: x509.Name) -> str:
        """Render a distinguished name as ``CN=..., O=...`` in attribute order."""
        parts = []
        for attribute in name:
            label = NAME_ATTRIBUTE_LABELS.get(attribute.oid) or _oid_name(attribute.oid)
            parts.append(f"{label}={attribute.value}")
        return ", ".join(parts) or "Unknown"

    @staticmethod
    def common_name(name: x509.Name) -> Optional[str]:
        """Return the first CN of a name, or None."""
        attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
        return str(attributes[0].value) if attributes else None

    @staticmethod
    def san_dns_names(extensions: x509.Extensions) -> List[str]:
        """Return SAN DNS names in extension order (empty when absent)."""
        try:
            san = extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return []
        return san.get_values_for_type(x509.DNSName)

    @staticmethod
    def fingerprint(cert: x509.Certificate, algorithm: str = "sha1") -> str:
        """
        Get certificate fingerprint as colon-separated uppercase hex.

        Args:
            cert: Certificate
            algorithm: Hash algorithm (sha1 or sha256)
        """
        if algorithm == "sha256":
            digest = cert.fingerprint(hashes.SHA256())
        elif algorithm == "sha1":
            digest = cert.fingerprint(hashes.SHA1())
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

        return _hex_colon(digest)

    @staticmethod
    def serial_hex(serial_number: int) -> str:
        """Uppercase hex serial, padded to whole bytes."""
        text = format(serial_number, "X")
        return text if len(text) % 2 == 0 else f"0{text}"

    @staticmethod
    def format_validity_time(moment: datetime) -> str:
        """Format a validity bound as OpenSSL does, e.g. ``Mar  4 08:00:00 2025 GMT``."""
        moment = moment.astimezone(timezone.utc)
        return f"{moment:%b} {moment.day:2d} {moment:%H:%M:%S} {moment.year} GMT"

    @staticmethod
    def days_until_expiration(not_after: datetime, now: Optional[datetime] = None) -> int:
        """
        Whole days until expiry, rounded up.

        ceil((notAfter - now) / 1 day); negative when already expired.
        """
        now = now or X509Utils.utcnow()
        remaining = (not_after - now) // timedelta(microseconds=1)
        day = 86_400_000_000
        return -(-remaining // day)

    @staticmethod
    def key_type_name(key) -> str:
        """Name a public or private key's family (rsa, ec, ed25519, ...)."""
        if isinstance(key, (rsa.RSAPublicKey, rsa.RSAPrivateKey)):
            return "rsa"
        if isinstance(key, (ec.EllipticCurvePublicKey, ec.EllipticCurvePrivateKey)):
            return "ec"
        if isinstance(key, (ed25519.Ed25519PublicKey, ed25519.Ed25519PrivateKey)):
            return "ed25519"
        if isinstance(key, (ed448.Ed448PublicKey, ed448.Ed448PrivateKey)):
            return "ed448"
        if isinstance(key, (dsa.DSAPublicKey, dsa.DSAPrivateKey)):
            return "dsa"
        if isinstance(key, (x25519.X25519PublicKey, x25519.X25519PrivateKey)):
            return "x25519"
        if isinstance(key, (x448.X448PublicKey, x448.X448PrivateKey)):
            return "x448"
        if isinstance(key, (dh.DHPublicKey, dh.DHPrivateKey)):
            return "dh"
        return "unknown"

    @staticmethod
    def key_size(key) -> Optional[int]:
        """
        Nominal key size in bits.

        RSA and DSA report their modulus size; EC maps well-known named curves
        to their size. Anything else is unknown (None).
        """
        if isinstance(key, (rsa.RSAPublicKey, rsa.RSAPrivateKey, dsa.DSAPublicKey, dsa.DSAPrivateKey)):
            return key.key_size
        if isinstance(key, (ec.EllipticCurvePublicKey, ec.EllipticCurvePrivateKey)):
            return EC_CURVE_SIZES.get(key.curve.name)
        return None

    @staticmethod
    def public_key_info(public_key) -> PublicKeyInfo:
        """Describe a public key's algorithm, size and parameters."""
        info = PublicKeyInfo(
            algorithm=X509Utils.key_type_name(public_key),
            size_bits=X509Utils.key_size(public_key),
        )

        if isinstance(public_key, rsa.RSAPublicKey):
            numbers = public_key.public_numbers()
            info.details = {
                "modulus": format(numbers.n, "x")[:32] + "...",
                "exponent": str(numbers.e),
            }
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            info.details = {"curve": public_key.curve.name}

        return info

    @staticmethod
    def signature_algorithm_name(oid: x509.ObjectIdentifier) -> str:
        """Friendly signature algorithm name, e.g. SHA256withRSA."""
        return SIGNATURE_ALGORITHM_NAMES.get(oid, _oid_name(oid))

    @staticmethod
    def describe_extension(extension: x509.Extension) -> ExtensionInfo:
        """Render one extension as name/critical/value."""
        value = extension.value
        name = EXTENSION_NAMES.get(extension.oid, _oid_name(extension.oid))
        alt_names = None

        if isinstance(value, x509.SubjectAlternativeName):
            entries = [f"DNS:{n}" for n in value.get_values_for_type(x509.DNSName)]
            entries += [f"IP Address:{ip}" for ip in value.get_values_for_type(x509.IPAddress)]
            entries += [f"email:{e}" for e in value.get_values_for_type(x509.RFC822Name)]
            entries += [f"URI:{u}" for u in value.get_values_for_type(x509.UniformResourceIdentifier)]
            text = ", ".join(entries)
            alt_names = value.get_values_for_type(x509.DNSName)
        elif isinstance(value, x509.KeyUsage):
            usages = [label for attr, label in KEY_USAGE_LABELS if getattr(value, attr)]
            if value.key_agreement:
                if value.encipher_only:
                    usages.append("Encipher Only")
                if value.decipher_only:
                    usages.append("Decipher Only")
            text = ", ".join(usages)
        elif isinstance(value, x509.ExtendedKeyUsage):
            text = ", ".join(_oid_name(oid) for oid in value)
        elif isinstance(value, x509.BasicConstraints):
            text = "CA:TRUE" if value.ca else "CA:FALSE"
            if value.path_length is not None:
                text += f", pathlen:{value.path_length}"
        elif isinstance(value, x509.SubjectKeyIdentifier):
            text = _hex_colon(value.digest)
        elif isinstance(value, x509.AuthorityKeyIdentifier):
            text = _hex_colon(value.key_identifier) if value.key_identifier else ""
        elif isinstance(value, x509.CRLDistributionPoints):
            uris = []
            for point in value:
                for general_name in point.full_name or []:
                    uris.append(f"URI:{general_name.value}")
            text = ", ".join(uris)
        elif isinstance(value, x509.AuthorityInformationAccess):
            text = ", ".join(
                f"{_oid_name(desc.access_method)} - URI:{desc.access_location.value}"
                for desc in value
            )
        elif isinstance(value, x509.CertificatePolicies):
            text = ", ".join(policy.policy_identifier.dotted_string for policy in value)
        elif isinstance(value, x509.UnrecognizedExtension):
            text = value.value.hex()
        else:
            text = _oid_name(extension.oid)

        return ExtensionInfo(name=name, critical=extension.critical, value=text, alt_names=alt_names)

    @staticmethod
    def certificate_level(index: int, total: int) -> str:
        """Classify a bundle position: End Entity, Intermediate CA or Root CA."""
        if index == total - 1 and total > 1:
            return "Root CA"
        if index > 0:
            return "Intermediate CA"
        return "End Entity"

    @staticmethod
    def describe_certificate(
        cert: x509.Certificate,
        index: int = 0,
        total: int = 1,
        now: Optional[datetime] = None,
    ) -> CertificateDetails:
        """
        Extract display fields from a certificate.

        Args:
            cert: Parsed certificate
            index: Zero-based position in the bundle
            total: Number of certificates in the bundle
            now: Reference time for expiry computation

        Returns:
            CertificateDetails
        """
        now = now or X509Utils.utcnow()
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc
        public_key = cert.public_key()
        key_info = X509Utils.public_key_info(public_key)

        return CertificateDetails(
            position=index + 1,
            total_certificates=total,
            cert_level=X509Utils.certificate_level(index, total),
            version=cert.version.value + 1,
            serial_number=X509Utils.serial_hex(cert.serial_number),
            subject=X509Utils.name_components(cert.subject),
            issuer=X509Utils.name_components(cert.issuer),
            subject_text=X509Utils.name_to_string(cert.subject),
            issuer_text=X509Utils.name_to_string(cert.issuer),
            valid_from=X509Utils.format_validity_time(not_before),
            valid_to=X509Utils.format_validity_time(not_after),
            not_before=not_before,
            not_after=not_after,
            days_until_expiration=X509Utils.days_until_expiration(not_after, now),
            is_expired=now > not_after,
            is_not_yet_valid=now < not_before,
            fingerprint=X509Utils.fingerprint(cert, "sha1"),
            fingerprint256=X509Utils.fingerprint(cert, "sha256"),
            subject_alt_names=X509Utils.san_dns_names(cert.extensions),
            public_key_algorithm=key_info.algorithm,
            public_key_info=key_info,
            signature_algorithm=X509Utils.signature_algorithm_name(cert.signature_algorithm_oid),
            extensions=[X509Utils.describe_extension(ext) for ext in cert.extensions],
        )

    @staticmethod
    def load_certificate(pem: str) -> x509.Certificate:
        """Parse a single PEM certificate."""
        return x509.load_pem_x509_certificate(pem.encode("utf-8"))

    @staticmethod
    def decode_certificate_bundle(
        text: Optional[str],
        now: Optional[datetime] = None,
    ) -> List[Union[CertificateDetails, CertificateDecodeFailure]]:
        """
        Decode one or more concatenated PEM certificates.

        Each block is parsed independently; a block that fails to parse is
        reported at its position without affecting the others.

        Raises:
            InputValidationError: If the input is missing, oversized or holds no
                PEM certificate
        """
        pem_text = require_text(text, "Certificate")
        enforce_size_limit(pem_text, MAX_CERTIFICATE_LENGTH, "Certificate too large (max 100KB)")

        if not FormatConverter.has_pem_envelope(pem_text, "CERTIFICATE"):
            raise InputValidationError("Invalid certificate format. Expected PEM format.")

        blocks = FormatConverter.split_pem_blocks(pem_text, "CERTIFICATE")
        if not blocks:
            raise InputValidationError("No valid certificates found in input")

        logger.info(f"Decoding {len(blocks)} certificate(s)")
        now = now or X509Utils.utcnow()
        results: List[Union[CertificateDetails, CertificateDecodeFailure]] = []

        for index, block in enumerate(blocks):
            try:
                cert = X509Utils.load_certificate(block)
                results.append(X509Utils.describe_certificate(cert, index, len(blocks), now))
            except CERTIFICATE_PARSE_ERRORS as e:
                logger.warning(f"Failed to parse certificate {index + 1}: {e}")
                results.append(
                    CertificateDecodeFailure(
                        position=index + 1,
                        total_certificates=len(blocks),
                        error=f"Failed to parse certificate {index + 1}: {e}",
                    )
                )

        return results

    @staticmethod
    def scan_der_for_domains(der: bytes, common_name: Optional[str]) -> List[str]:
        """
        Heuristically pull domain-shaped strings out of raw DER bytes.

        Low-confidence fallback for requests whose extensions cannot be parsed:
        it can both miss names and report binary noise as names.
        """
        if SAN_OID_HEX not in der.hex():
            return []

        candidates = _HEURISTIC_DOMAIN.findall(der.decode("latin-1"))
        domains: List[str] = []
        for candidate in dict.fromkeys(candidates):
            if not _HEURISTIC_DOMAIN_FULL.match(candidate):
                continue
            if not 4 < len(candidate) < 64 or candidate == common_name:
                continue
            domains.append(candidate)

        return domains[:HEURISTIC_SAN_LIMIT]

    @staticmethod
    def _csr_attributes(csr: x509.CertificateSigningRequest) -> List[CSRAttribute]:
        attributes = []
        try:
            raw_attributes = list(csr.attributes)
        except ValueError as e:
            logger.warning(f"CSR attributes could not be parsed: {e}")
            return attributes

        for attribute in raw_attributes:
            if attribute.oid.dotted_string == "1.2.840.113549.1.9.14":
                values = ["Extension request (see extensions)"]
            else:
                values = [attribute.value.decode("utf-8", errors="replace")]
            attributes.append(
                CSRAttribute(
                    type=attribute.oid.dotted_string,
                    name=_oid_name(attribute.oid),
                    values=values,
                )
            )
        return attributes

    @staticmethod
    def decode_csr(text: Optional[str]) -> CSRDetails:
        """
        Decode a single PEM certificate signing request.

        SANs come from the parsed extension request; the byte-scanning
        heuristic is used only when the extensions cannot be parsed.

        Raises:
            InputValidationError: On missing, oversized, multiple or unparsable CSRs
        """
        pem_text = require_text(text, "CSR")
        enforce_size_limit(pem_text, MAX_CSR_LENGTH, "CSR too large (max 100KB)")

        if not FormatConverter.has_pem_envelope(pem_text, "CERTIFICATE REQUEST"):
            raise InputValidationError(
                "Invalid CSR format. Expected PEM format with CERTIFICATE REQUEST headers."
            )

        blocks = FormatConverter.split_pem_blocks(pem_text, "CERTIFICATE REQUEST")
        if not blocks:
            raise InputValidationError("No valid CSR found in input")
        if len(blocks) > 1:
            raise InputValidationError("Multiple CSRs detected. Please submit one CSR at a time.")

        csr_pem = blocks[0]
        try:
            csr = x509.load_pem_x509_csr(csr_pem.encode("utf-8"))
        except ValueError as e:
            raise InputValidationError("Invalid CSR format", details=f"Unable to parse CSR: {e}")

        der = FormatConverter.pem_to_der(csr_pem)
        base64_content = FormatConverter.pem_body(csr_pem)
        common_name = X509Utils.common_name(csr.subject)
        public_key = csr.public_key()
        key_info = X509Utils.public_key_info(public_key)

        try:
            parsed_extensions = csr.extensions
            extensions = [X509Utils.describe_extension(ext) for ext in parsed_extensions]
            san_names = X509Utils.san_dns_names(parsed_extensions)
            san_source = "extension" if san_names else None
            accuracy = "High"
        except (ValueError, x509.DuplicateExtension) as e:
            logger.warning(f"CSR extensions could not be parsed, scanning DER instead: {e}")
            san_names = X509Utils.scan_der_for_domains(der, common_name)
            san_source = "heuristic" if san_names else None
            accuracy = "Limited"
            extensions = [ExtensionInfo(
                name="Extension Request",
                critical=False,
                value="Extensions present but parsing failed",
            )]
            if san_names:
                extensions.append(ExtensionInfo(
                    name="Subject Alternative Name",
                    critical=False,
                    value=f"{len(san_names)} domains detected: {', '.join(san_names)}",
                    alt_names=san_names,
                ))

        logger.info(f"Decoded CSR for: {common_name or 'unknown subject'}")

        return CSRDetails(
            subject_text=X509Utils.name_to_string(csr.subject) if len(csr.subject) else "No subject found",
            subject=X509Utils.name_components(csr.subject),
            common_name=common_name or "Unknown",
            subject_alt_names=san_names,
            san_source=san_source,
            accuracy=accuracy,
            public_key_algorithm=key_info.algorithm.upper() if key_info.algorithm in ("rsa", "ec", "dsa") else key_info.algorithm,
            public_key_info=key_info,
            signature_algorithm=X509Utils.signature_algorithm_name(csr.signature_algorithm_oid),
            signature_valid=csr.is_signature_valid,
            attributes=X509Utils._csr_attributes(csr),
            extensions=extensions,
            size=len(der),
            base64_length=len(base64_content),
            raw_pem=csr_pem,
        )
