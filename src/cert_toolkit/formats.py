"""PEM envelope and Base64 format utilities."""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import List

from .input_guard import InputValidationError

logger = logging.getLogger(__name__)

_STANDARD_ALPHABET = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_URL_SAFE_ALPHABET = re.compile(r"^[A-Za-z0-9\-_]*={0,2}$")


@dataclass
class EncodingResult:
    """Outcome of a Base64 encode or decode operation."""

    output: str
    input_length: int
    output_length: int
    encoding_type: str


class FormatConverter:
    """Convert between PEM, DER and Base64 representations."""

    @staticmethod
    def split_pem_blocks(text: str, label: str = "CERTIFICATE") -> List[str]:
        """
        Extract every PEM block with the given label.

        Args:
            text: Input that may hold several concatenated PEM blocks
            label: PEM label, e.g. "CERTIFICATE" or "CERTIFICATE REQUEST"

        Returns:
            PEM blocks in input order, including their BEGIN/END lines
        """
        pattern = re.compile(
            rf"-----BEGIN {re.escape(label)}-----[\s\S]*?-----END {re.escape(label)}-----"
        )
        return pattern.findall(text)

    @staticmethod
    def has_pem_envelope(text: str, label: str) -> bool:
        """Return True when both BEGIN and END markers for ``label`` are present."""
        return f"-----BEGIN {label}-----" in text and f"-----END {label}-----" in text

    @staticmethod
    def pem_body(pem: str) -> str:
        """Return the base64 payload of a single PEM block, whitespace removed."""
        body = re.sub(r"-----(BEGIN|END) [A-Z0-9 ]+-----", "", pem)
        return re.sub(r"\s", "", body)

    @staticmethod
    def pem_to_der(pem: str) -> bytes:
        """Decode the payload of a single PEM block to DER bytes."""
        return base64.b64decode(FormatConverter.pem_body(pem))

    @staticmethod
    def b64url_decode(segment: str) -> bytes:
        """
        Decode a base64url segment, restoring any stripped padding.

        Raises:
            InputValidationError: If the segment is not valid base64url
        """
        padded = segment + "=" * (-len(segment) % 4)
        try:
            return base64.urlsafe_b64decode(padded.encode("ascii"))
        except (binascii.Error, ValueError) as e:
            raise InputValidationError("Invalid base64url data", details=str(e))

    @staticmethod
    def encode_base64(text: str, url_safe: bool = False) -> EncodingResult:
        """
        Encode UTF-8 text to Base64.

        Args:
            text: Plain text
            url_safe: Use the URL-safe alphabet and strip padding

        Returns:
            EncodingResult with the encoded string
        """
        raw = text.encode("utf-8")
        if url_safe:
            encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
            encoding_type = "URL-Safe Base64 (UTF-8)"
        else:
            encoded = base64.b64encode(raw).decode("ascii")
            encoding_type = "Standard Base64 (UTF-8)"

        return EncodingResult(
            output=encoded,
            input_length=len(text),
            output_length=len(encoded),
            encoding_type=encoding_type,
        )

    @staticmethod
    def validate_base64(data: str) -> str:
        """
        Check Base64 alphabet and padding.

        Returns:
            The input with whitespace removed

        Raises:
            InputValidationError: On invalid characters, length or padding
        """
        clean = re.sub(r"\s", "", data)

        standard = bool(_STANDARD_ALPHABET.match(clean))
        url_safe = bool(_URL_SAFE_ALPHABET.match(clean))
        if not standard and not url_safe:
            raise InputValidationError("Contains invalid Base64 characters")

        if not url_safe and len(clean) % 4 != 0:
            raise InputValidationError("Invalid Base64 length (must be multiple of 4)")

        return clean

    @staticmethod
    def decode_base64(data: str, url_safe: bool = False) -> EncodingResult:
        """
        Decode Base64 to text.

        Bytes are decoded as UTF-8 when possible, otherwise as Latin-1.

        Args:
            data: Base64 string (whitespace is ignored)
            url_safe: Treat input as URL-safe Base64 with optional padding

        Returns:
            EncodingResult with the decoded text
        """
        clean = FormatConverter.validate_base64(data)

        try:
            if url_safe:
                translated = clean.replace("-", "+").replace("_", "/")
                translated += "=" * (-len(translated) % 4)
                raw = base64.b64decode(translated, validate=True)
                encoding_type = "URL-Safe Base64"
            else:
                raw = base64.b64decode(clean, validate=True)
                encoding_type = "Standard Base64"
        except (binascii.Error, ValueError) as e:
            raise InputValidationError("Failed to decode Base64 string", details=str(e))

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.info("Decoded Base64 is not UTF-8, falling back to Latin-1")
            text = raw.decode("latin-1")

        return EncodingResult(
            output=text,
            input_length=len(data),
            output_length=len(text),
            encoding_type=encoding_type,
        )
