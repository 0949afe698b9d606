"""Certificate, token and timestamp inspection utilities."""

from .x509_utils import X509Utils
from .verification import CertificateVerifier, CertificateVerificationError, CertificateChainError
from .formats import FormatConverter
from .input_guard import InputValidationError, SecurityRejectionError

__all__ = [
    'X509Utils',
    'CertificateVerifier',
    'CertificateVerificationError',
    'CertificateChainError',
    'FormatConverter',
    'InputValidationError',
    'SecurityRejectionError',
]
