"""Data models for the toolbox service."""

from typing import Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ToolboxModel(BaseModel):
    """Base model: camelCase on the wire, populated from core dataclasses."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Requests
# ============================================================================

class CheckSSLRequest(ToolboxModel):
    """Request model for the SSL certificate check."""

    url: Optional[str] = Field(None, description="URL or hostname to check")
    port: Optional[Union[int, str]] = Field(None, description="TLS port (default 443)")


class ScanPortRequest(ToolboxModel):
    """Request model for a single-port TCP scan."""

    host: Optional[str] = Field(None, description="Hostname or IP address")
    port: Optional[Union[int, str]] = Field(None, description="TCP port")


class MatchCertKeyRequest(ToolboxModel):
    certificate: Optional[str] = Field(None, description="PEM-encoded certificate")
    private_key: Optional[str] = Field(None, description="PEM-encoded private key")


class DecodeCertificateRequest(ToolboxModel):
    certificate: Optional[str] = Field(None, description="One or more PEM certificates")


class DecodeCSRRequest(ToolboxModel):
    csr: Optional[str] = Field(None, description="PEM-encoded certificate signing request")


class DNSLookupRequest(ToolboxModel):
    domain: Optional[str] = Field(None, description="Domain name to query")


class DecodeJWTRequest(ToolboxModel):
    token: Optional[str] = Field(None, description="Compact serialized JWT")


class EpochToHumanRequest(ToolboxModel):
    timestamp: Optional[Union[str, int]] = Field(None, description="Epoch value (s, ms, us or ns)")
    timezone: Optional[str] = Field(None, description="'local', 'utc' or an IANA zone name")


class HumanToEpochRequest(ToolboxModel):
    date: Optional[str] = Field(None, description="Date, e.g. 2024-03-04")
    time: Optional[str] = Field(None, description="Time, e.g. 08:30 or 08:30:15")
    timezone: Optional[str] = Field(None, description="'local', 'utc' or an IANA zone name")


class Base64EncodeRequest(ToolboxModel):
    text: Optional[str] = Field(None, description="Plain text to encode")
    url_safe: bool = Field(False, description="Use the URL-safe alphabet")


class Base64DecodeRequest(ToolboxModel):
    data: Optional[str] = Field(None, description="Base64 data to decode")
    url_safe: bool = Field(False, description="Treat input as URL-safe Base64")


# ============================================================================
# Shared
# ============================================================================

class ErrorResponse(ToolboxModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    details: Optional[str] = Field(None, description="Detailed error information")
    code: Optional[str] = Field(None, description="Network error category")


class HealthResponse(ToolboxModel):
    """Health check response model."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current server time")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")


class PublicKeyInfo(ToolboxModel):
    algorithm: str
    size: str = Field(..., description="Key size, e.g. '2048 bits'")
    size_bits: Optional[int] = None
    details: Dict[str, str] = Field(default_factory=dict)


class ExtensionInfo(ToolboxModel):
    name: str
    critical: bool
    value: str
    alt_names: Optional[List[str]] = None


# ============================================================================
# SSL check / port scan
# ============================================================================

class DomainMatchInfo(ToolboxModel):
    matches: bool
    matched_with: Optional[str] = None
    reason: Optional[str] = None


class ChainEntry(ToolboxModel):
    subject: Dict[str, str]
    issuer: Dict[str, str]
    valid_from: str
    valid_to: str
    fingerprint: str
    serial_number: str


class PeerCertificate(ToolboxModel):
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


class SSLCheckResponse(ToolboxModel):
    """Response model for the SSL certificate check."""

    hostname: str
    ip_address: str
    port: int
    valid: bool
    authorized: bool
    authorization_error: Optional[str] = None
    domain_match: bool
    domain_match_info: DomainMatchInfo
    certificate: PeerCertificate
    certificate_chain: List[ChainEntry]
    chain_length: int


class PortScanResponse(ToolboxModel):
    """Response model for a port scan; a closed port is a normal result."""

    host: str
    ip_address: str
    port: int
    is_open: bool
    service_name: str
    response_time: Optional[int] = Field(None, description="Connect time in ms (open ports)")
    error_type: Optional[str] = Field(None, description="Socket error code (closed ports)")


# ============================================================================
# Certificate / key / CSR
# ============================================================================

class KeyMatchCertificate(ToolboxModel):
    subject: str
    issuer: str
    valid_from: str
    valid_to: str
    serial_number: str
    fingerprint: str
    fingerprint256: str
    days_until_expiration: int


class PrivateKeySummary(ToolboxModel):
    type: str
    size: str
    format: str


class KeyCompatibility(ToolboxModel):
    key_type: str
    supported: bool
    algorithm: str


class KeyMatchResponse(ToolboxModel):
    """Response model for certificate/private key matching."""

    matches: bool
    match_details: str
    certificate: KeyMatchCertificate
    private_key: PrivateKeySummary
    compatibility: KeyCompatibility


class DecodedCertificate(ToolboxModel):
    """A successfully decoded certificate within a bundle."""

    status: Literal["decoded"] = "decoded"
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


class FailedCertificate(ToolboxModel):
    """A bundle entry that could not be parsed."""

    status: Literal["failed"] = "failed"
    position: int
    total_certificates: int
    error: str
    cert_level: str = "Invalid Certificate"


# Tagged by ``status``; entries come from core dataclasses, matched by attributes
CertificateItem = Union[DecodedCertificate, FailedCertificate]


class DecodeCertificateResponse(ToolboxModel):
    """Response model for certificate decoding."""

    certificates_found: int
    certificates: List[CertificateItem]
    is_chain: bool
    decoded_at: str


class CSRAttribute(ToolboxModel):
    type: str
    name: str
    values: List[str]


class DecodeCSRResponse(ToolboxModel):
    """Response model for CSR decoding."""

    format: str
    type: str
    subject: str = Field(..., description="Subject distinguished name")
    subject_components: Dict[str, str]
    common_name: str
    subject_alt_names: List[str]
    san_source: Optional[str] = Field(None, description="'extension' or 'heuristic'")
    accuracy: str
    public_key_algorithm: str
    public_key_info: PublicKeyInfo
    key_size: str
    signature_algorithm: str
    signature_valid: bool
    attributes: List[CSRAttribute]
    extensions: List[ExtensionInfo]
    size: int
    base64_length: int
    raw_pem: str = Field(..., alias="rawPEM")
    parsing_method: str
    recommendation: str
    decoded_at: str


# ============================================================================
# DNS
# ============================================================================

class RecordLookupError(ToolboxModel):
    error: str
    message: str


class MXRecord(ToolboxModel):
    exchange: str
    priority: int


class SOARecord(ToolboxModel):
    nsname: str
    hostmaster: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minttl: int


class DNSRecords(BaseModel):
    """One slot per record type: either the records or that lookup's error."""

    model_config = ConfigDict(from_attributes=True)

    A: Union[List[str], RecordLookupError]
    AAAA: Union[List[str], RecordLookupError]
    MX: Union[List[MXRecord], RecordLookupError]
    TXT: Union[List[str], RecordLookupError]
    CNAME: Union[List[str], RecordLookupError]
    NS: Union[List[str], RecordLookupError]
    SOA: Union[SOARecord, RecordLookupError]


class DNSSummary(ToolboxModel):
    total_records: int
    record_types: List[str]
    has_ipv4: bool = Field(..., alias="hasIPv4")
    has_ipv6: bool = Field(..., alias="hasIPv6")
    has_mail: bool


class DNSResults(ToolboxModel):
    domain: str
    timestamp: str
    records: DNSRecords
    ip_address: Optional[str] = None
    summary: DNSSummary


class DNSLookupResponse(ToolboxModel):
    """Response model for DNS lookups."""

    success: bool = True
    domain: str
    results: DNSResults
    queried_at: str


# ============================================================================
# JWT / epoch / Base64
# ============================================================================

class JWTHeader(ToolboxModel):
    alg: str
    typ: str
    kid: Optional[str] = None
    raw: str


class CustomClaim(ToolboxModel):
    key: str
    value: str


class JWTPayload(ToolboxModel):
    iss: Any = None
    sub: Any = None
    aud: Any = None
    exp: Any = None
    iat: Any = None
    nbf: Any = None
    jti: Any = None
    exp_formatted: Optional[str] = None
    iat_formatted: Optional[str] = None
    nbf_formatted: Optional[str] = None
    custom_claims: List[CustomClaim]
    has_standard_claims: bool
    has_custom_claims: bool
    raw: str


class JWTSignature(ToolboxModel):
    algorithm: str
    length: int
    base64: str


class JWTSecurity(ToolboxModel):
    algorithm_secure: bool
    algorithm_assessment: str
    not_expired: bool
    expiration_status: str
    recommendations: List[str]


class DecodeJWTResponse(ToolboxModel):
    """Response model for JWT decoding (signature not verified)."""

    format: str
    parts: int
    length: int
    is_expired: bool
    header: JWTHeader
    payload: JWTPayload
    signature: JWTSignature
    security: JWTSecurity


class EpochToHumanResponse(ToolboxModel):
    input: str
    format: str = Field(..., description="Detected timestamp format")
    local_time: str
    utc_time: str
    iso_time: str
    unix_timestamp: int
    js_timestamp: int
    micro_timestamp: int
    nano_timestamp: int
    timezone: str
    warning: Optional[str] = None


class HumanToEpochResponse(ToolboxModel):
    input_date_time: str
    timezone: str
    iso_time: str
    unix_timestamp: int
    js_timestamp: int
    micro_timestamp: int
    nano_timestamp: int


class Base64Response(ToolboxModel):
    output: str
    input_length: int
    output_length: int
    encoding_type: str
