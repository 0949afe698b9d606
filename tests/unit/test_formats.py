"""Unit tests for PEM and Base64 helpers."""

import pytest
from cryptography.hazmat.primitives import serialization

from cert_toolkit.formats import FormatConverter
from cert_toolkit.input_guard import InputValidationError

from ..utils.test_helpers import TestCertificateFactory


class TestPEMHelpers:
    """Test PEM block handling."""

    def test_split_bundle(self, chain_setup):
        blocks = FormatConverter.split_pem_blocks(chain_setup.bundle_pem())
        assert len(blocks) == 3
        assert all(block.endswith("-----END CERTIFICATE-----") for block in blocks)

    def test_split_ignores_other_labels(self, chain_setup):
        text = chain_setup.bundle_pem() + TestCertificateFactory.key_to_pem(chain_setup.leaf_key)
        assert len(FormatConverter.split_pem_blocks(text, "CERTIFICATE")) == 3
        assert len(FormatConverter.split_pem_blocks(text, "PRIVATE KEY")) == 1

    def test_pem_to_der(self, chain_setup):
        pem = TestCertificateFactory.to_pem(chain_setup.leaf_cert)
        expected = chain_setup.leaf_cert.public_bytes(serialization.Encoding.DER)
        assert FormatConverter.pem_to_der(pem) == expected

    def test_envelope_check(self):
        assert FormatConverter.has_pem_envelope(
            "-----BEGIN CERTIFICATE-----\nAA\n-----END CERTIFICATE-----", "CERTIFICATE"
        )
        assert not FormatConverter.has_pem_envelope("-----BEGIN CERTIFICATE-----", "CERTIFICATE")

    def test_b64url_restores_padding(self):
        assert FormatConverter.b64url_decode("eyJhIjoxfQ") == b'{"a":1}'


class TestBase64Encoding:
    """Test Base64 encoding of text."""

    def test_standard(self):
        result = FormatConverter.encode_base64("Hello, World!")

        assert result.output == "SGVsbG8sIFdvcmxkIQ=="
        assert result.input_length == 13
        assert result.output_length == 20
        assert result.encoding_type == "Standard Base64 (UTF-8)"

    def test_url_safe_strips_padding(self):
        result = FormatConverter.encode_base64("??>", url_safe=True)

        assert result.output == "Pz8-"
        assert result.encoding_type == "URL-Safe Base64 (UTF-8)"

    def test_utf8_text(self):
        assert FormatConverter.encode_base64("é").output == "w6k="


class TestBase64Decoding:
    """Test Base64 decoding to text."""

    def test_standard(self):
        result = FormatConverter.decode_base64("SGVsbG8sIFdvcmxkIQ==")

        assert result.output == "Hello, World!"
        assert result.encoding_type == "Standard Base64"
        assert result.input_length == 20
        assert result.output_length == 13

    def test_whitespace_ignored(self):
        assert FormatConverter.decode_base64("SGVs\nbG8=").output == "Hello"

    def test_url_safe_without_padding(self):
        result = FormatConverter.decode_base64("Pz8-", url_safe=True)
        assert result.output == "??>"
        assert result.encoding_type == "URL-Safe Base64"

    def test_latin1_fallback(self):
        assert FormatConverter.decode_base64("//4=").output == "\xff\xfe"

    def test_invalid_characters(self):
        with pytest.raises(InputValidationError, match="invalid Base64 characters"):
            FormatConverter.decode_base64("abc$")

    def test_invalid_length(self):
        with pytest.raises(InputValidationError, match="multiple of 4"):
            FormatConverter.decode_base64("ab+cd")

    def test_url_safe_input_in_standard_mode(self):
        with pytest.raises(InputValidationError, match="Failed to decode Base64 string"):
            FormatConverter.decode_base64("Pz8-")
