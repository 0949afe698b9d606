"""FastAPI toolbox service - Main application."""

from datetime import datetime, timezone
import logging

from fastapi import FastAPI, HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from cert_toolkit import epoch, jwt_analyzer
from cert_toolkit.formats import FormatConverter
from cert_toolkit.input_guard import (
    MAX_BASE64_LENGTH,
    MAX_PLAIN_TEXT_LENGTH,
    InputValidationError,
    enforce_size_limit,
)
from cert_toolkit.verification import CertificateVerifier
from cert_toolkit.x509_utils import X509Utils

from . import config, network_probe
from .network_probe import NetworkError
from .models import (
    Base64DecodeRequest,
    Base64EncodeRequest,
    Base64Response,
    CheckSSLRequest,
    DecodeCertificateRequest,
    DecodeCertificateResponse,
    DecodeCSRRequest,
    DecodeCSRResponse,
    DecodeJWTRequest,
    DecodeJWTResponse,
    DNSLookupRequest,
    DNSLookupResponse,
    EpochToHumanRequest,
    EpochToHumanResponse,
    ErrorResponse,
    HealthResponse,
    HumanToEpochRequest,
    HumanToEpochResponse,
    KeyMatchResponse,
    MatchCertKeyRequest,
    PortScanResponse,
    ScanPortRequest,
    SSLCheckResponse,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CSR_RECOMMENDATION = (
    "Cross-check these results with: openssl req -in your-csr.pem -text -noout"
)

# Initialize FastAPI app
app = FastAPI(
    title=config.SERVICE_NAME,
    description="Certificate, TLS, DNS and token diagnostic utilities",
    version=config.SERVICE_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.settings.cors_origin_list,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Load the trust store before the first request needs it."""
    try:
        logger.info("Initializing toolbox service...")
        CertificateVerifier.load_trust_store()
        logger.info("Toolbox service initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize toolbox service: {e}")
        raise


def _error_response(status_code: int, error: str, details=None, code=None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details, code=code)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))


def _internal_error(message: str, error: Exception) -> HTTPException:
    logger.error(f"{message}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": message, "details": str(error)},
    )


def _now_iso() -> str:
    return epoch.format_iso_time(datetime.now(timezone.utc))


# ============================================================================
# Middleware and error handlers
# ============================================================================

@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    """Reject request bodies larger than the configured limit."""
    limit = config.settings.max_body_bytes
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit():
        size = int(content_length)
    elif request.method in ("POST", "PUT", "PATCH"):
        # Chunked bodies carry no length header; buffer them so the limit still applies.
        # The buffered body is replayed to the endpoint.
        size = len(await request.body())
    else:
        size = 0

    if size > limit:
        logger.warning(f"Rejected request body of {size} bytes on {request.url.path}")
        return _error_response(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "Request entity too large",
            f"Maximum request size is {limit} bytes",
        )
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers; API responses are never cached."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
        response.headers["Pragma"] = "no-cache"
        response.headers["Expires"] = "0"
    return response


@app.exception_handler(InputValidationError)
async def input_validation_handler(request: Request, exc: InputValidationError):
    logger.warning(f"Rejected input on {request.url.path}: {exc.message}")
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message, exc.details)


@app.exception_handler(NetworkError)
async def network_error_handler(request: Request, exc: NetworkError):
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message, exc.details, exc.code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.warning(f"Malformed request body on {request.url.path}: {problems}")
    return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body", problems)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        return _error_response(exc.status_code, exc.detail.get("error", "Error"), exc.detail.get("details"))
    return _error_response(exc.status_code, str(exc.detail))


# ============================================================================
# Service endpoints
# ============================================================================

@app.get("/", response_model=dict)
async def root():
    """Root endpoint."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "status": "operational"
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="UP",
        timestamp=datetime.now(timezone.utc),
        service=config.SERVICE_NAME,
        version=config.SERVICE_VERSION,
    )


# ============================================================================
# Network tools
# ============================================================================

@app.post("/api/check-ssl", response_model=SSLCheckResponse)
async def check_ssl(request: CheckSSLRequest):
    """
    Check the TLS certificate served by a host.

    Invalid or untrusted certificates are still reported; trust and domain
    match are fields of the result.
    """
    try:
        result = await network_probe.check_ssl(request.url, request.port)
        return SSLCheckResponse.model_validate(result)

    except (InputValidationError, NetworkError):
        raise
    except Exception as e:
        raise _internal_error("Error processing certificate data", e)


@app.post("/api/scan-port", response_model=PortScanResponse)
async def scan_port(request: ScanPortRequest):
    """Check whether a single TCP port is open."""
    try:
        result = await network_probe.scan_port(request.host, request.port)
        return PortScanResponse.model_validate(result)

    except (InputValidationError, NetworkError):
        raise
    except Exception as e:
        raise _internal_error("Failed to scan port", e)


@app.post("/api/dns-lookup", response_model=DNSLookupResponse)
async def dns_lookup(request: DNSLookupRequest):
    """Query common DNS record types for a domain."""
    try:
        result = await network_probe.dns_lookup(request.domain)
        return DNSLookupResponse(
            domain=result.domain,
            results=result,
            queried_at=result.queried_at,
        )

    except (InputValidationError, NetworkError):
        raise
    except Exception as e:
        raise _internal_error("DNS lookup failed", e)


# ============================================================================
# Certificate tools
# ============================================================================

@app.post("/api/match-cert-key", response_model=KeyMatchResponse)
async def match_cert_key(request: MatchCertKeyRequest):
    """Check whether a private key belongs to a certificate."""
    try:
        report = CertificateVerifier.match_certificate_and_key(request.certificate, request.private_key)
        return KeyMatchResponse.model_validate(report)

    except InputValidationError:
        raise
    except Exception as e:
        raise _internal_error("Failed to process certificate and key", e)


@app.post("/api/decode-certificate", response_model=DecodeCertificateResponse)
async def decode_certificate(request: DecodeCertificateRequest):
    """Decode one or more PEM certificates; bad entries are reported in place."""
    try:
        items = X509Utils.decode_certificate_bundle(request.certificate)
        return DecodeCertificateResponse(
            certificates_found=len(items),
            certificates=items,
            is_chain=len(items) > 1,
            decoded_at=_now_iso(),
        )

    except InputValidationError:
        raise
    except Exception as e:
        raise _internal_error("Failed to decode certificate", e)


@app.post("/api/decode-csr", response_model=DecodeCSRResponse)
async def decode_csr(request: DecodeCSRRequest):
    """Decode a single PEM certificate signing request."""
    try:
        csr = X509Utils.decode_csr(request.csr)
        return DecodeCSRResponse(
            format=csr.format,
            type=csr.type,
            subject=csr.subject_text,
            subject_components=csr.subject,
            common_name=csr.common_name,
            subject_alt_names=csr.subject_alt_names,
            san_source=csr.san_source,
            accuracy=csr.accuracy,
            public_key_algorithm=csr.public_key_algorithm,
            public_key_info=csr.public_key_info,
            key_size=csr.public_key_info.size,
            signature_algorithm=csr.signature_algorithm,
            signature_valid=csr.signature_valid,
            attributes=csr.attributes,
            extensions=csr.extensions,
            size=csr.size,
            base64_length=csr.base64_length,
            raw_pem=csr.raw_pem,
            parsing_method=csr.parsing_method,
            recommendation=CSR_RECOMMENDATION,
            decoded_at=_now_iso(),
        )

    except InputValidationError:
        raise
    except Exception as e:
        raise _internal_error("Failed to decode CSR", e)


# ============================================================================
# Converters
# ============================================================================

@app.post("/api/decode-jwt", response_model=DecodeJWTResponse)
async def decode_jwt(request: DecodeJWTRequest):
    """Decode a JWT and assess it; the signature is not verified."""
    try:
        analysis = jwt_analyzer.decode_jwt(request.token)
        return DecodeJWTResponse.model_validate(analysis)

    except InputValidationError:
        raise
    except Exception as e:
        raise _internal_error("Failed to decode JWT", e)


@app.post("/api/epoch/to-human", response_model=EpochToHumanResponse)
async def epoch_to_human(request: EpochToHumanRequest):
    """Convert an epoch timestamp to human-readable forms."""
    try:
        timestamp = None if request.timestamp is None else str(request.timestamp)
        conversion = epoch.epoch_to_human(timestamp, request.timezone)
        return EpochToHumanResponse.model_validate(conversion)

    except InputValidationError:
        raise
    except Exception as e:
        raise _internal_error("Failed to convert epoch timestamp", e)


@app.post("/api/epoch/from-human", response_model=HumanToEpochResponse)
async def epoch_from_human(request: HumanToEpochRequest):
    """Convert a date and time to epoch values."""
    try:
        conversion = epoch.human_to_epoch(request.date, request.time, request.timezone)
        return HumanToEpochResponse.model_validate(conversion)

    except InputValidationError:
        raise
    except Exception as e:
        raise _internal_error("Failed to convert date/time", e)


@app.post("/api/base64/encode", response_model=Base64Response)
async def base64_encode(request: Base64EncodeRequest):
    """Encode UTF-8 text as Base64."""
    if request.text is None or request.text == "":
        raise InputValidationError("Text is required")
    enforce_size_limit(request.text, MAX_PLAIN_TEXT_LENGTH, "Text too large (max 50,000 characters)")

    result = FormatConverter.encode_base64(request.text, request.url_safe)
    return Base64Response.model_validate(result)


@app.post("/api/base64/decode", response_model=Base64Response)
async def base64_decode(request: Base64DecodeRequest):
    """Decode Base64 to text."""
    if request.data is None or not request.data.strip():
        raise InputValidationError("Base64 data is required")
    enforce_size_limit(request.data, MAX_BASE64_LENGTH, "Base64 data too large (max 75,000 characters)")

    result = FormatConverter.decode_base64(request.data, request.url_safe)
    return Base64Response.model_validate(result)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "toolbox_service.main:app",
        host=config.settings.host,
        port=config.settings.port,
        log_level=config.settings.log_level.lower()
    )
