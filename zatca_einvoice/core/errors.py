"""
Error types raised by the e-invoice core.
Every error carries the offending field plus expected/actual values so
callers can log it and halt the issuance workflow.
"""
from typing import Any, Optional


class EInvoiceError(Exception):
    """Base class for all e-invoice errors"""

    def __init__(self, message: str, field: Optional[str] = None,
                 expected: Any = None, actual: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict:
        return {
            'error': type(self).__name__,
            'message': self.message,
            'field': self.field,
            'expected': None if self.expected is None else str(self.expected),
            'actual': None if self.actual is None else str(self.actual),
        }


class InvalidAmountError(EInvoiceError):
    """Raised when a monetary amount is not a positive finite number"""
    pass


class InvalidRateError(EInvoiceError):
    """Raised when a VAT rate is negative or not finite"""
    pass


class TruncatedRecordError(EInvoiceError):
    """Raised when a TLV record runs past the end of the buffer"""
    pass


class FieldTooLongError(EInvoiceError):
    """Raised when a TLV value exceeds 255 bytes once UTF-8 encoded"""
    pass


class ChainBreakError(EInvoiceError):
    """Raised when an invoice does not link to the previous invoice hash"""
    pass


class LineTotalMismatchError(EInvoiceError):
    """Raised when line-level amounts do not reconcile with invoice totals"""
    pass


class CurrencyMismatchError(EInvoiceError):
    """Raised when an invoice mixes currencies"""
    pass


class CertificateMismatchError(EInvoiceError):
    """Raised when the signing certificate belongs to another VAT number"""
    pass


class MissingFieldError(EInvoiceError):
    """Raised when a legally required field is absent"""
    pass


class ParserError(EInvoiceError):
    """Raised when invoice parsing fails"""
    pass
