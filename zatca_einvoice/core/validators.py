"""
ZATCA compliance validators.
Collects every rule violation instead of stopping at the first one, for
reporting over invoice data before it is built.
"""
import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from zatca_einvoice.config import EInvoiceConfig
from zatca_einvoice.core.amounts import compute_totals
from zatca_einvoice.core.chain import content_hash
from zatca_einvoice.core.errors import EInvoiceError
from zatca_einvoice.core.models import (
    DocumentType,
    Invoice,
    TaxCategory,
    ValidationResult,
    ValidationViolation,
)
from zatca_einvoice.utils.decorators import audit_log, measure_performance


class ZATCAValidator:
    """
    Core validator for ZATCA compliance.
    Checks invoice data against the business rules the builder relies on.
    """

    # Saudi VAT number pattern: 15 digits, starts with 3, ends with 3
    VAT_PATTERN = re.compile(r'^3\d{13}3$')

    MAX_AGE_DAYS = 730

    def __init__(self, strict_mode: bool = True,
                 config: Optional[EInvoiceConfig] = None):
        """
        Initialize validator.

        Args:
            strict_mode: If True, warnings are treated as errors
            config: VAT rate and rounding tolerance
        """
        self.strict_mode = strict_mode
        self.config = config or EInvoiceConfig()

    @measure_performance
    @audit_log
    def validate(self, invoice: Invoice) -> ValidationResult:
        """
        Run all validation checks on an invoice.

        Args:
            invoice: Invoice to validate

        Returns:
            ValidationResult with list of violations
        """
        result = ValidationResult(
            invoice_id=invoice.id,
            is_compliant=True
        )

        self._check_vat_numbers(invoice, result)
        self._check_dates(invoice, result)
        self._check_line_items(invoice, result)
        self._check_currency(invoice, result)
        self._check_buyer(invoice, result)
        self._check_calculations(invoice, result)
        self._check_previous_hash(invoice, result)

        if self.strict_mode and any(v.severity == 'WARNING' for v in result.violations):
            result.is_compliant = False

        return result

    def _check_vat_numbers(self, invoice: Invoice, result: ValidationResult):
        """Validate VAT registration numbers"""
        if not self.VAT_PATTERN.match(invoice.seller.vat_number):
            result.add_violation(
                code='VAT_001',
                field='seller.vat_number',
                message=f'Invalid seller VAT number format: {invoice.seller.vat_number}',
                severity='ERROR',
                rule='BR-KSA-39'
            )

        buyer_vat = invoice.buyer.vat_number if invoice.buyer else None
        if buyer_vat and not self.VAT_PATTERN.match(buyer_vat):
            result.add_violation(
                code='VAT_002',
                field='buyer.vat_number',
                message=f'Invalid buyer VAT number format: {buyer_vat}',
                severity='ERROR',
                rule='BR-KSA-44'
            )

    def _check_dates(self, invoice: Invoice, result: ValidationResult):
        """Validate issue timestamp"""
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        issued_at = datetime.combine(invoice.issue_date, invoice.issue_time)

        if issued_at > now:
            result.add_violation(
                code='DATE_001',
                field='issue_date',
                message='Invoice date cannot be in the future',
                severity='ERROR',
                rule='BR-KSA-04'
            )

        age = (now - issued_at).days
        if age > self.MAX_AGE_DAYS:
            result.add_violation(
                code='DATE_002',
                field='issue_date',
                message=f'Invoice is too old: {age} days',
                severity='WARNING',
                rule='BR-KSA-04'
            )

    def _check_line_items(self, invoice: Invoice, result: ValidationResult):
        """Validate line item completeness"""
        for idx, line in enumerate(invoice.line_items):
            if line.tax_category is not TaxCategory.STANDARD and not line.exemption_reason_code:
                result.add_violation(
                    code='LINE_001',
                    field=f'line_items[{idx}].exemption_reason_code',
                    message=f'Line {line.id}: category {line.tax_category.value} needs an exemption reason',
                    severity='ERROR',
                    rule='BR-KSA-69'
                )

            if line.unit_price == 0:
                result.add_violation(
                    code='LINE_002',
                    field=f'line_items[{idx}].unit_price',
                    message=f'Line {line.id}: Unit price is zero',
                    severity='WARNING',
                    rule='BR-KSA-F-04'
                )

    def _check_currency(self, invoice: Invoice, result: ValidationResult):
        for idx, line in enumerate(invoice.line_items):
            if line.currency and line.currency.upper() != invoice.currency:
                result.add_violation(
                    code='CURR_001',
                    field=f'line_items[{idx}].currency',
                    message=f'Line {line.id}: currency {line.currency} differs from {invoice.currency}',
                    severity='ERROR',
                    rule='BR-KSA-CL-02'
                )

    def _check_buyer(self, invoice: Invoice, result: ValidationResult):
        """Standard invoices need an identified buyer"""
        if invoice.document_type is not DocumentType.STANDARD:
            return

        buyer = invoice.buyer
        required = {
            'buyer.name': buyer.name if buyer else None,
            'buyer.vat_number': buyer.vat_number if buyer else None,
            'buyer.address': buyer.address if buyer else None,
        }
        for field, value in required.items():
            if not value:
                result.add_violation(
                    code='BUYER_001',
                    field=field,
                    message=f'Standard invoice requires {field}',
                    severity='ERROR',
                    rule='BR-KSA-42'
                )

    def _check_calculations(self, invoice: Invoice, result: ValidationResult):
        """Verify the inclusive total reconciles with the line items"""
        try:
            compute_totals(invoice, self.config.vat_rate, self.config.minor_unit)
        except EInvoiceError as e:
            result.add_violation(
                code='CALC_001',
                field=e.field or 'total_amount_inclusive_of_tax',
                message=f'{e.message} (expected={e.expected}, actual={e.actual})',
                severity='ERROR',
                rule='BR-CO-15'
            )

    def _check_previous_hash(self, invoice: Invoice, result: ValidationResult):
        """PIH must be a base64 value"""
        try:
            base64.b64decode(invoice.previous_invoice_hash, validate=True)
        except (binascii.Error, ValueError):
            result.add_violation(
                code='HASH_001',
                field='previous_invoice_hash',
                message='Previous invoice hash is not valid base64',
                severity='ERROR',
                rule='BR-KSA-61'
            )


class InvoiceChainValidator:
    """
    Validates invoice chain integrity using PIH (Previous Invoice Hash).
    Works on Invoice values and on summaries read back from documents.
    """

    def __init__(self, genesis_hash: Optional[str] = None):
        self.genesis_hash = genesis_hash or EInvoiceConfig().genesis_hash

    def validate_chain(self, invoices: Iterable) -> List[ValidationViolation]:
        """Validate a sequence of invoices from one device"""
        return [violation for _, violation in self.chain_breaks(invoices)]

    def chain_breaks(self, invoices: Iterable) -> List[Tuple]:
        """
        Find linkage problems, paired with the invoice they concern.

        Invoices are ordered by counter value. A sequence starting at
        counter 1 must link to the genesis hash; later ones are checked
        from their first element on.

        Returns:
            (invoice, ValidationViolation) pairs
        """
        violations = []
        ordered = sorted(invoices, key=lambda inv: inv.counter_value)

        prev = None
        for invoice in ordered:
            if prev is None:
                if invoice.counter_value == 1 and invoice.previous_invoice_hash != self.genesis_hash:
                    violations.append((invoice, self._violation(
                        'CHAIN_001',
                        f'Invoice {invoice.id}: first invoice does not link to the genesis hash'
                    )))
                prev = invoice
                continue

            if invoice.counter_value == prev.counter_value:
                violations.append((invoice, self._violation(
                    'CHAIN_003',
                    f'Invoice {invoice.id}: counter {invoice.counter_value} used twice',
                    field='counter_value'
                )))
            elif invoice.counter_value != prev.counter_value + 1:
                violations.append((invoice, self._violation(
                    'CHAIN_002',
                    f'Invoice {invoice.id}: counter jumps from {prev.counter_value} '
                    f'to {invoice.counter_value}',
                    field='counter_value'
                )))
            elif invoice.previous_invoice_hash != content_hash(prev):
                violations.append((invoice, self._violation(
                    'CHAIN_001',
                    f'Invoice {invoice.id}: Hash chain broken'
                )))

            prev = invoice

        return violations

    @staticmethod
    def _violation(code: str, message: str,
                   field: str = 'previous_invoice_hash') -> ValidationViolation:
        return ValidationViolation(
            code=code,
            severity='ERROR',
            field=field,
            message=message,
            rule='BR-KSA-26' if field == 'previous_invoice_hash' else 'BR-KSA-33'
        )


class InvoiceValidator:
    """
    Main validator interface.
    Combines all validation strategies.
    """

    def __init__(self, strict_mode: bool = True,
                 config: Optional[EInvoiceConfig] = None):
        config = config or EInvoiceConfig()
        self.zatca_validator = ZATCAValidator(strict_mode, config)
        self.chain_validator = InvoiceChainValidator(config.genesis_hash)

    def validate(self, invoice: Invoice) -> ValidationResult:
        """
        Validate a single invoice.

        Args:
            invoice: Invoice to validate

        Returns:
            ValidationResult
        """
        return self.zatca_validator.validate(invoice)

    def validate_batch(self, invoices: List[Invoice]) -> List[ValidationResult]:
        """
        Validate multiple invoices, then their linkage as one sequence.
        Chain violations are attached to the result of the invoice they
        concern.
        """
        results = [self.validate(inv) for inv in invoices]
        by_id = {result.invoice_id: result for result in results}

        for invoice, violation in self.chain_validator.chain_breaks(invoices):
            result = by_id[invoice.id]
            result.violations.append(violation)
            result.is_compliant = False

        return results

