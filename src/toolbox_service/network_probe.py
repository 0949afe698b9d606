"""Network probes: TLS certificate check, TCP port scan and DNS lookup.

Every probe is a single coroutine bounded by ``asyncio.wait_for``; nothing
is retried.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
import asyncio
import errno
import ipaddress
import logging
import ssl
import time

import dns.asyncresolver
import dns.exception
import dns.resolver
from cryptography import x509

from cert_toolkit.epoch import format_iso_time
from cert_toolkit.input_guard import (
    MAX_HOSTNAME_LENGTH,
    MAX_URL_LENGTH,
    InputValidationError,
    SecurityRejectionError,
    ensure_public_address,
    extract_hostname,
    require_text,
    validate_dns_domain,
    validate_hostname,
    validate_port,
)
from cert_toolkit.verification import (
    CertificateVerifier,
    ChainEntry,
    DomainMatchResult,
    split_presented_chain,
)
from cert_toolkit.x509_utils import X509Utils

from . import config

logger = logging.getLogger(__name__)

COMMON_PORTS = {
    20: "FTP Data",
    21: "FTP Control",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    465: "SMTPS",
    587: "SMTP",
    993: "IMAPS",
    995: "POP3S",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    5900: "VNC",
    8080: "HTTP Proxy",
    8443: "HTTPS Alt",
    27017: "MongoDB",
}

DNS_RECORD_TYPES = ("A", "AAAA", "MX", "TXT", "CNAME", "NS", "SOA")
# Record types counted in the lookup summary
SUMMARY_RECORD_TYPES = ("A", "AAAA", "MX", "TXT", "NS")


class NetworkError(Exception):
    """Raised when a network operation fails; ``code`` is the failure category."""

    def __init__(self, code: str, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


@dataclass
class PeerHandshake:
    certificates: List[x509.Certificate]
    protocol: Optional[str]
    cipher: Dict[str, Any]


@dataclass
class PeerCertificate:
    """Leaf certificate fields reported by the SSL check."""

    subject: Dict[str, str]
    issuer: Dict[str, str]
    subjectaltname: List[str]
    valid_from: str
    valid_to: str
    days_until_expiration: int
    fingerprint: str
    fingerprint256: str
    serial_number: str
    protocol: str
    cipher: Dict[str, Any]


@dataclass
class SSLCheckResult:
    hostname: str
    ip_address: str
    port: int
    valid: bool
    authorized: bool
    authorization_error: Optional[str]
    domain_match: bool
    domain_match_info: DomainMatchResult
    certificate: PeerCertificate
    certificate_chain: List[ChainEntry]
    chain_length: int


@dataclass
class PortScanResult:
    host: str
    ip_address: str
    port: int
    is_open: bool
    service_name: str
    response_time: Optional[int] = None
    error_type: Optional[str] = None


@dataclass
class RecordLookupError:
    """Failure of a single DNS record-type query."""

    error: str
    message: str


@dataclass
class DNSSummary:
    total_records: int
    record_types: List[str]
    has_ipv4: bool
    has_ipv6: bool
    has_mail: bool


@dataclass
class DNSLookupResult:
    domain: str
    timestamp: str
    records: Dict[str, Any]
    ip_address: Optional[str]
    summary: DNSSummary
    queried_at: str = field(default_factory=lambda: format_iso_time(datetime.now(timezone.utc)))


def make_resolver() -> dns.asyncresolver.Resolver:
    """Build an async resolver using the system configuration."""
    resolver = dns.asyncresolver.Resolver()
    resolver.timeout = config.settings.dns_timeout
    resolver.lifetime = config.settings.dns_timeout
    return resolver


def classify_connection_error(error: BaseException) -> NetworkError:
    """Translate a socket, TLS or timeout failure into a NetworkError."""
    if isinstance(error, NetworkError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return NetworkError("ETIMEDOUT", "Connection timeout", "The connection attempt timed out")
    if isinstance(error, ConnectionRefusedError):
        return NetworkError("ECONNREFUSED", "Connection refused", "The server refused the connection")
    if isinstance(error, ssl.SSLError):
        return NetworkError("EHANDSHAKE", "TLS handshake failed", str(error))
    if isinstance(error, OSError) and error.errno == errno.ETIMEDOUT:
        return NetworkError("ETIMEDOUT", "Connection timeout", "The connection attempt timed out")
    return NetworkError("ECONNERROR", "Failed to connect to server", str(error))


async def resolve_hostname(hostname: str, resolver=None) -> str:
    """
    Resolve a hostname to its first IPv4 address, falling back to IPv6.

    IP literals are returned unchanged.

    Raises:
        NetworkError: ENOTFOUND when neither A nor AAAA resolves
    """
    try:
        return str(ipaddress.ip_address(hostname.strip("[]")))
    except ValueError:
        pass

    resolver = resolver or make_resolver()
    try:
        answer = await asyncio.wait_for(resolver.resolve(hostname, "A"), config.settings.dns_timeout)
        return answer[0].address
    except (dns.exception.DNSException, asyncio.TimeoutError) as ipv4_error:
        logger.info(f"No IPv4 address for {hostname}, trying IPv6: {ipv4_error}")
        try:
            answer = await asyncio.wait_for(resolver.resolve(hostname, "AAAA"), config.settings.dns_timeout)
            return answer[0].address
        except (dns.exception.DNSException, asyncio.TimeoutError):
            raise NetworkError(
                "ENOTFOUND",
                "Host not found",
                f"Unable to resolve hostname: {ipv4_error}",
            )


async def resolve_public_address(hostname: str, resolver=None) -> str:
    """Resolve a hostname and apply the SSRF guard to the resulting address."""
    ip_address = await resolve_hostname(hostname, resolver)
    return ensure_public_address(ip_address)


def _insecure_client_context() -> ssl.SSLContext:
    # Trust is evaluated separately so invalid certificates can still be inspected
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def _close_writer(writer: asyncio.StreamWriter):
    writer.close()
    try:
        await writer.wait_closed()
    except (OSError, ssl.SSLError) as e:
        logger.debug(f"Error while closing connection: {e}")


async def fetch_peer_certificates(ip_address: str, port: int, hostname: str) -> PeerHandshake:
    """
    Perform one TLS handshake and collect what the peer presented.

    Args:
        ip_address: Address to connect to (already SSRF-checked)
        port: TCP port
        hostname: Name sent via SNI

    Returns:
        PeerHandshake with the presented certificates, leaf first
    """
    server_hostname = None if _is_ip_literal(hostname) else hostname
    _, writer = await asyncio.open_connection(
        ip_address,
        port,
        ssl=_insecure_client_context(),
        server_hostname=server_hostname,
    )
    try:
        ssl_object = writer.get_extra_info("ssl_object")
        if hasattr(ssl_object, "get_unverified_chain"):
            der_chain = ssl_object.get_unverified_chain() or []
        else:
            der_chain = [ssl_object.getpeercert(binary_form=True)]

        certificates = [x509.load_der_x509_certificate(der) for der in der_chain if der]
        cipher = ssl_object.cipher()
        return PeerHandshake(
            certificates=certificates,
            protocol=ssl_object.version(),
            cipher={"name": cipher[0], "version": cipher[1], "bits": cipher[2]} if cipher else {},
        )
    finally:
        await _close_writer(writer)


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname.strip("[]"))
        return True
    except ValueError:
        return False


async def check_ssl(
    url: Optional[str],
    port: Union[int, str, None] = None,
    resolver=None,
    now: Optional[datetime] = None,
) -> SSLCheckResult:
    """
    Retrieve and assess the certificate served by a host.

    Args:
        url: URL or bare hostname
        port: TLS port, defaults to 443
        resolver: DNS resolver override
        now: Reference time for expiry and trust checks

    Returns:
        SSLCheckResult

    Raises:
        InputValidationError: On invalid or forbidden targets
        NetworkError: When resolution, connection or handshake fails
    """
    target = require_text(url, "URL")
    if len(target) > MAX_URL_LENGTH:
        raise SecurityRejectionError("URL too long")

    target_port = validate_port(port, default=config.DEFAULT_TLS_PORT)
    hostname = validate_hostname(extract_hostname(target))
    ip_address = await resolve_public_address(hostname, resolver)

    logger.info(f"Checking SSL certificate for {hostname}:{target_port} ({ip_address})")
    try:
        handshake = await asyncio.wait_for(
            fetch_peer_certificates(ip_address, target_port, hostname),
            timeout=config.settings.tls_timeout,
        )
    except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
        error = classify_connection_error(e)
        logger.warning(f"SSL check for {hostname}:{target_port} failed ({error.code}): {e}")
        raise error

    if not handshake.certificates:
        raise NetworkError("ECONNERROR", "Failed to retrieve certificate", "The server presented no certificate")

    leaf, intermediates = split_presented_chain(handshake.certificates)
    now = now or X509Utils.utcnow()
    alt_names = X509Utils.san_dns_names(leaf.extensions)

    trust = CertificateVerifier.verify_trust(leaf, intermediates, hostname, now)
    domain_match = CertificateVerifier.match_hostname(
        X509Utils.common_name(leaf.subject), alt_names, hostname
    )
    chain = CertificateVerifier.walk_chain(
        leaf, CertificateVerifier.presented_issuer_lookup(handshake.certificates)
    )

    return SSLCheckResult(
        hostname=hostname,
        ip_address=ip_address,
        port=target_port,
        valid=trust.authorized,
        authorized=trust.authorized,
        authorization_error=trust.authorization_error,
        domain_match=domain_match.matches,
        domain_match_info=domain_match,
        certificate=PeerCertificate(
            subject=X509Utils.name_components(leaf.subject),
            issuer=X509Utils.name_components(leaf.issuer),
            subjectaltname=alt_names,
            valid_from=X509Utils.format_validity_time(leaf.not_valid_before_utc),
            valid_to=X509Utils.format_validity_time(leaf.not_valid_after_utc),
            days_until_expiration=X509Utils.days_until_expiration(leaf.not_valid_after_utc, now),
            fingerprint=X509Utils.fingerprint(leaf, "sha1"),
            fingerprint256=X509Utils.fingerprint(leaf, "sha256"),
            serial_number=X509Utils.serial_hex(leaf.serial_number),
            protocol=handshake.protocol or "N/A",
            cipher=handshake.cipher,
        ),
        certificate_chain=chain,
        chain_length=len(chain),
    )


async def probe_port(ip_address: str, port: int, timeout: float):
    """
    Attempt a TCP connection.

    Returns:
        Tuple of (is_open, response_time_ms, error_type)
    """
    started = time.monotonic()
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(ip_address, port), timeout)
    except asyncio.TimeoutError:
        return False, None, "ETIMEDOUT"
    except OSError as e:
        return False, None, errno.errorcode.get(e.errno, "ECONNERROR") if e.errno else "ECONNERROR"

    response_time = round((time.monotonic() - started) * 1000)
    await _close_writer(writer)
    return True, response_time, None


async def scan_port(
    host: Optional[str],
    port: Union[int, str, None],
    resolver=None,
) -> PortScanResult:
    """
    Report whether a TCP port accepts connections.

    Closed and filtered ports are results, not errors.

    Raises:
        InputValidationError: On invalid or forbidden targets
        NetworkError: When the host cannot be resolved
    """
    if host is None or port is None or not str(host).strip():
        raise InputValidationError("Host and port are required")

    target = str(host).strip()
    if len(target) > MAX_HOSTNAME_LENGTH:
        raise SecurityRejectionError("Hostname too long")

    target_port = validate_port(port)
    hostname = validate_hostname(target)
    ip_address = await resolve_public_address(hostname, resolver)

    logger.info(f"Scanning port {target_port} on {hostname} ({ip_address})")
    is_open, response_time, error_type = await probe_port(
        ip_address, target_port, config.settings.port_scan_timeout
    )

    return PortScanResult(
        host=target,
        ip_address=ip_address,
        port=target_port,
        is_open=is_open,
        service_name=COMMON_PORTS.get(target_port, "Unknown Service"),
        response_time=response_time,
        error_type=error_type,
    )


def _dns_error_code(error: BaseException) -> str:
    if isinstance(error, dns.resolver.NXDOMAIN):
        return "ENOTFOUND"
    if isinstance(error, dns.resolver.NoAnswer):
        return "ENODATA"
    if isinstance(error, (dns.exception.Timeout, asyncio.TimeoutError)):
        return "ETIMEOUT"
    if isinstance(error, dns.resolver.NoNameservers):
        return "ESERVFAIL"
    return "EDNS"


def _name_text(name) -> str:
    return name.to_text(omit_final_dot=True)


def format_records(record_type: str, answer) -> Union[List[Any], Dict[str, Any]]:
    """Convert resolver answers into JSON-friendly values."""
    if record_type in ("A", "AAAA"):
        return [record.address for record in answer]
    if record_type == "MX":
        return [
            {"exchange": _name_text(record.exchange), "priority": record.preference}
            for record in answer
        ]
    if record_type == "TXT":
        return [
            "".join(chunk.decode("utf-8", errors="replace") for chunk in record.strings)
            for record in answer
        ]
    if record_type in ("CNAME", "NS"):
        return [_name_text(record.target) for record in answer]
    if record_type == "SOA":
        soa = answer[0]
        return {
            "nsname": _name_text(soa.mname),
            "hostmaster": _name_text(soa.rname),
            "serial": soa.serial,
            "refresh": soa.refresh,
            "retry": soa.retry,
            "expire": soa.expire,
            "minttl": soa.minimum,
        }
    raise ValueError(f"Unsupported record type: {record_type}")


async def _lookup_records(resolver, domain: str, record_type: str):
    try:
        answer = await asyncio.wait_for(resolver.resolve(domain, record_type), config.settings.dns_timeout)
    except (dns.exception.DNSException, asyncio.TimeoutError) as e:
        return RecordLookupError(error=_dns_error_code(e), message=str(e) or type(e).__name__)
    return format_records(record_type, answer)


async def dns_lookup(domain: Optional[str], resolver=None) -> DNSLookupResult:
    """
    Query A, AAAA, MX, TXT, CNAME, NS and SOA records concurrently.

    Each record type succeeds or fails on its own; all seven slots are
    always present in the result.
    """
    clean_domain = validate_dns_domain(domain)
    resolver = resolver or make_resolver()

    logger.info(f"DNS lookup for {clean_domain}")
    answers = await asyncio.gather(
        *(_lookup_records(resolver, clean_domain, record_type) for record_type in DNS_RECORD_TYPES)
    )
    records = dict(zip(DNS_RECORD_TYPES, answers))

    counts = {
        record_type: len(records[record_type]) if isinstance(records[record_type], list) else 0
        for record_type in SUMMARY_RECORD_TYPES
    }
    ipv4 = records["A"]

    return DNSLookupResult(
        domain=clean_domain,
        timestamp=format_iso_time(datetime.now(timezone.utc)),
        records=records,
        ip_address=ipv4[0] if isinstance(ipv4, list) and ipv4 else None,
        summary=DNSSummary(
            total_records=sum(counts.values()),
            record_types=[record_type for record_type, count in counts.items() if count > 0],
            has_ipv4=counts["A"] > 0,
            has_ipv6=counts["AAAA"] > 0,
            has_mail=counts["MX"] > 0,
        ),
    )
