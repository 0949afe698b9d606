"""Input validation and SSRF guards applied before any parsing or network call."""

import ipaddress
import logging
import re
from typing import Optional, Union
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

# Size limits (characters, after trimming)
MAX_CERTIFICATE_LENGTH = 100_000
MAX_CSR_LENGTH = 100_000
MAX_KEY_PAIR_LENGTH = 50_000
MAX_JWT_LENGTH = 8192
MAX_DOMAIN_LENGTH = 255
MAX_URL_LENGTH = 2000
MAX_HOSTNAME_LENGTH = 253
MAX_EPOCH_LENGTH = 20
MAX_PLAIN_TEXT_LENGTH = 50_000
MAX_BASE64_LENGTH = 75_000

PRIVATE_NETWORK_MESSAGE = "Access to private/internal networks is not allowed"

_HOSTNAME_CHARS = re.compile(r"^[a-zA-Z0-9.-]+$")
_DOMAIN_PATTERN = re.compile(
    r"^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*"
    r"[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)
_SCHEME_PATTERN = re.compile(r"^[a-zA-Z]+://")


class InputValidationError(ValueError):
    """Raised when request input is malformed or out of bounds."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class SecurityRejectionError(InputValidationError):
    """Raised when input targets a forbidden destination or exceeds a hard limit."""
    pass


def require_text(value: Optional[str], field: str) -> str:
    """Return the trimmed value or raise if it is missing or blank."""
    if value is None or not str(value).strip():
        raise InputValidationError(f"{field} is required")
    return str(value).strip()


def enforce_size_limit(value: str, limit: int, message: str) -> str:
    """Reject values longer than ``limit`` characters."""
    if len(value) > limit:
        logger.warning(f"Rejected oversized input ({len(value)} > {limit})")
        raise SecurityRejectionError(message)
    return value


def validate_port(port: Union[int, str, None], default: Optional[int] = None) -> int:
    """
    Parse and range-check a TCP port.

    Args:
        port: Port as int or numeric string, or None
        default: Value used when port is None

    Returns:
        Port number in 1..65535

    Raises:
        InputValidationError: If the port is missing or invalid
    """
    if port is None or port == "":
        if default is None:
            raise InputValidationError("Port is required")
        return default

    try:
        port_number = int(str(port).strip())
    except ValueError:
        raise InputValidationError("Invalid port number")

    if port_number < 1 or port_number > 65535:
        raise InputValidationError("Invalid port number")
    return port_number


def extract_hostname(url: str) -> str:
    """
    Extract the hostname from a URL or bare host string.

    A scheme is assumed (https) when the input has none.
    """
    candidate = url if _SCHEME_PATTERN.match(url) else f"https://{url}"
    try:
        hostname = urlsplit(candidate).hostname
    except ValueError:
        raise InputValidationError("Invalid URL format")

    if not hostname:
        raise InputValidationError("Invalid URL format")
    return hostname


def is_forbidden_address(address: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> bool:
    """Return True for loopback, private, link-local, multicast and reserved ranges."""
    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


def validate_hostname(hostname: str) -> str:
    """
    Validate a hostname or IP literal and apply the SSRF guard.

    Args:
        hostname: Host name, IPv4 or IPv6 literal

    Returns:
        The hostname unchanged

    Raises:
        InputValidationError: If the hostname is malformed
        SecurityRejectionError: If it targets a private/internal destination
    """
    if not hostname:
        raise InputValidationError("Hostname is required")

    try:
        address = ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        address = None

    if address is not None:
        if is_forbidden_address(address):
            logger.warning(f"SSRF guard rejected address: {hostname}")
            raise SecurityRejectionError(PRIVATE_NETWORK_MESSAGE)
        return hostname

    if not _HOSTNAME_CHARS.match(hostname):
        raise InputValidationError("Hostname contains invalid characters")

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        raise InputValidationError("Hostname too long")

    # Dotted-quad lookalikes that failed to parse as IPv4
    if re.match(r"^(\d{1,3}\.){3}\d{1,3}$", hostname):
        raise InputValidationError("Invalid IPv4 address")

    if not _DOMAIN_PATTERN.match(hostname):
        raise InputValidationError("Invalid hostname format")

    if "localhost" in hostname.lower():
        logger.warning(f"SSRF guard rejected hostname: {hostname}")
        raise SecurityRejectionError("Access to localhost is not allowed")

    return hostname


def ensure_public_address(ip_address: str) -> str:
    """Re-check a resolved address against the SSRF guard before connecting."""
    address = ipaddress.ip_address(ip_address)
    if is_forbidden_address(address):
        logger.warning(f"SSRF guard rejected resolved address: {ip_address}")
        raise SecurityRejectionError(
            PRIVATE_NETWORK_MESSAGE,
            details=f"Hostname resolves to a private/internal address ({ip_address})",
        )
    return ip_address


def validate_dns_domain(domain: Optional[str]) -> str:
    """
    Normalise and validate a domain for DNS lookups.

    Returns:
        Lower-cased, trimmed domain
    """
    if domain is None or not isinstance(domain, str):
        raise InputValidationError(
            "Domain is required",
            details="Please provide a valid domain name (e.g., google.com)",
        )

    clean_domain = domain.strip().lower()
    if len(clean_domain) == 0 or len(clean_domain) > MAX_DOMAIN_LENGTH:
        raise InputValidationError(
            "Invalid domain length",
            details="Domain must be between 1 and 255 characters",
        )

    blocked = (
        clean_domain == "localhost"
        or clean_domain.endswith(".local")
        or clean_domain.endswith(".internal")
    )
    if not blocked:
        try:
            blocked = is_forbidden_address(ipaddress.ip_address(clean_domain))
        except ValueError:
            pass

    if blocked:
        logger.warning(f"Rejected private or reserved domain: {clean_domain}")
        raise SecurityRejectionError(
            "Private or reserved domain not allowed",
            details="Please use a public domain name",
        )

    return clean_domain
