"""JWT decoding and security assessment.

Tokens are decoded for inspection only; signatures are never verified.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import json
import logging
import math
import re

from .epoch import format_local_time
from .formats import FormatConverter
from .input_guard import MAX_JWT_LENGTH, InputValidationError, SecurityRejectionError

logger = logging.getLogger(__name__)

STANDARD_CLAIMS = ("iss", "sub", "aud", "exp", "iat", "nbf", "jti")
SECONDS_PER_DAY = 86400

_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+$")
_SIGNATURE_SEGMENT = re.compile(r"^[A-Za-z0-9_-]*$")


@dataclass
class JWTHeader:
    alg: str
    typ: str
    kid: Optional[str]
    raw: str


@dataclass
class CustomClaim:
    key: str
    value: str


@dataclass
class JWTPayload:
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
    custom_claims: List[CustomClaim] = field(default_factory=list)
    has_standard_claims: bool = False
    has_custom_claims: bool = False
    raw: str = "{}"


@dataclass
class JWTSignature:
    algorithm: str
    length: int
    base64: str


@dataclass
class SecurityAssessment:
    """Algorithm and expiry assessment with advisory recommendations."""

    algorithm_secure: bool
    algorithm_assessment: str
    not_expired: bool
    expiration_status: str
    recommendations: List[str]


@dataclass
class JWTAnalysis:
    header: JWTHeader
    payload: JWTPayload
    signature: JWTSignature
    security: SecurityAssessment
    is_expired: bool
    length: int
    parts: int = 3
    format: str = "JWT (JSON Web Token)"


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _claim_text(value: Any) -> str:
    return json.dumps(value) if isinstance(value, (dict, list)) else str(value)


def _format_claim_time(value: Any) -> Optional[str]:
    if not _is_numeric(value) or not value:
        return None
    try:
        moment = datetime.fromtimestamp(value, tz=timezone.utc).astimezone()
    except (OverflowError, OSError, ValueError):
        return None
    return format_local_time(moment)


def _decode_segment(segment: str, name: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(FormatConverter.b64url_decode(segment).decode("utf-8"))
    except (InputValidationError, UnicodeDecodeError, ValueError) as e:
        raise InputValidationError(f"Invalid JWT {name}", details=str(e))
    if not isinstance(decoded, dict):
        raise InputValidationError(f"Invalid JWT {name}", details=f"JWT {name} must be a JSON object")
    return decoded


def split_token(token: Optional[str]) -> List[str]:
    """
    Validate the compact JWS shape and return its three segments.

    Raises:
        InputValidationError: If the token is missing or malformed
    """
    if token is None or not token.strip():
        raise InputValidationError("JWT token is required")

    token = token.strip()
    if len(token) > MAX_JWT_LENGTH:
        raise SecurityRejectionError("JWT token is too long (max 8192 characters)")

    parts = token.split(".")
    if len(parts) != 3:
        raise InputValidationError(
            "Invalid JWT format",
            details="JWT must have exactly 3 parts separated by dots (header.payload.signature)",
        )

    header, payload, signature = parts
    if not _SEGMENT.match(header) or not _SEGMENT.match(payload) or not _SIGNATURE_SEGMENT.match(signature):
        raise InputValidationError(
            "Invalid JWT format",
            details="JWT parts must be base64url encoded",
        )
    return parts


def analyze_jwt_security(
    header: Dict[str, Any],
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
) -> SecurityAssessment:
    """
    Assess the signing algorithm and expiry of a decoded token.

    Args:
        header: Decoded JOSE header
        payload: Decoded claims
        now: Reference time, defaults to the current time

    Returns:
        SecurityAssessment
    """
    recommendations: List[str] = []
    algorithm = header.get("alg")
    algorithm_secure = True

    if algorithm == "none":
        algorithm_secure = False
        assessment = "Insecure (No signature)"
        recommendations.append("'none' algorithm means no signature verification - highly insecure")
    elif algorithm == "HS256":
        assessment = "Secure (HMAC SHA-256)"
        recommendations.append("Ensure secret key is strong and properly managed")
    elif isinstance(algorithm, str) and algorithm.startswith("RS"):
        assessment = "Secure (RSA with SHA)"
        recommendations.append("RSA signature provides good security")
    elif isinstance(algorithm, str) and algorithm.startswith("ES"):
        assessment = "Secure (ECDSA)"
        recommendations.append("ECDSA provides excellent security with smaller keys")
    else:
        assessment = "Unknown algorithm"
        recommendations.append("Verify that the algorithm is supported and secure")

    current_time = math.floor((now or datetime.now(timezone.utc)).timestamp())
    expiry = payload.get("exp")
    not_expired = True

    if expiry is None:
        expiration_status = "No expiration set"
        recommendations.append("Consider setting an expiration time (exp) for better security")
    elif not _is_numeric(expiry):
        not_expired = False
        expiration_status = "Invalid expiration (exp is not a number)"
        recommendations.append("Expiration time (exp) must be a numeric date in seconds")
    elif current_time > expiry:
        not_expired = False
        expiration_status = "EXPIRED"
        recommendations.append("Token has expired and should not be accepted")
    else:
        days_until_expiry = math.floor((expiry - current_time) / SECONDS_PER_DAY)
        if days_until_expiry < 1:
            expiration_status = "Expires soon (less than 1 day)"
            recommendations.append("Token expires soon - consider refreshing")
        else:
            expiration_status = f"Valid (expires in {days_until_expiry} days)"

    if not payload.get("iss"):
        recommendations.append("Consider adding issuer (iss) claim for better token validation")
    if not payload.get("aud"):
        recommendations.append("Consider adding audience (aud) claim to specify intended recipients")

    return SecurityAssessment(
        algorithm_secure=algorithm_secure,
        algorithm_assessment=assessment,
        not_expired=not_expired,
        expiration_status=expiration_status,
        recommendations=recommendations,
    )


def _describe_payload(payload: Dict[str, Any]) -> JWTPayload:
    audience = payload.get("aud")
    if isinstance(audience, list):
        audience = ", ".join(str(item) for item in audience)

    custom_claims = [
        CustomClaim(
            key=key,
            value=_claim_text(value),
        )
        for key, value in payload.items()
        if key not in STANDARD_CLAIMS
    ]

    return JWTPayload(
        iss=payload.get("iss"),
        sub=payload.get("sub"),
        aud=audience,
        exp=payload.get("exp"),
        iat=payload.get("iat"),
        nbf=payload.get("nbf"),
        jti=payload.get("jti"),
        exp_formatted=_format_claim_time(payload.get("exp")),
        iat_formatted=_format_claim_time(payload.get("iat")),
        nbf_formatted=_format_claim_time(payload.get("nbf")),
        custom_claims=custom_claims,
        has_standard_claims=any(payload.get(key) is not None for key in STANDARD_CLAIMS),
        has_custom_claims=bool(custom_claims),
        raw=json.dumps(payload, indent=2),
    )


def decode_jwt(token: Optional[str], now: Optional[datetime] = None) -> JWTAnalysis:
    """
    Decode a JWT without verifying its signature and assess it.

    Args:
        token: Compact serialized JWT
        now: Reference time for expiry checks

    Returns:
        JWTAnalysis

    Raises:
        InputValidationError: If the token is malformed
    """
    header_segment, payload_segment, signature = split_token(token)
    header = _decode_segment(header_segment, "header")
    payload = _decode_segment(payload_segment, "payload")

    now = now or datetime.now(timezone.utc)
    security = analyze_jwt_security(header, payload, now)
    expiry = payload.get("exp")
    algorithm = str(header.get("alg") or "Unknown")

    logger.info(f"Decoded JWT (alg={algorithm})")

    return JWTAnalysis(
        header=JWTHeader(
            alg=algorithm,
            typ=str(header.get("typ") or "Unknown"),
            kid=_claim_text(header["kid"]) if header.get("kid") is not None else None,
            raw=json.dumps(header, indent=2),
        ),
        payload=_describe_payload(payload),
        signature=JWTSignature(
            algorithm=algorithm,
            length=len(signature),
            base64=signature or "No signature",
        ),
        security=security,
        is_expired=bool(expiry) and _is_numeric(expiry) and now.timestamp() > expiry,
        length=len(token.strip()),
    )
