"""
Monetary calculations for VAT-inclusive invoice totals.

Amounts are Decimal throughout and rounded to two places with
ROUND_HALF_UP. The VAT amount is always derived by subtraction so that
``taxable + vat == total`` holds exactly.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Tuple, Union

from zatca_einvoice.config import DEFAULT_VAT_RATE
from zatca_einvoice.core.errors import (
    InvalidAmountError,
    InvalidRateError,
    LineTotalMismatchError,
)
from zatca_einvoice.core.models import (
    Invoice,
    InvoiceTotals,
    LineAmounts,
    LineItem,
    TaxCategory,
    TaxSubtotal,
)

Number = Union[Decimal, int, float, str]

TWO_PLACES = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0.00')


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, bool):
        raise TypeError('bool is not an amount')
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def _check_total(total: Number) -> Decimal:
    try:
        value = _as_decimal(total)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError(
            f'Amount is not a number: {total!r}', field='total', actual=total
        )
    # Amounts below one minor unit round to zero and are rejected too
    if not value.is_finite() or round_amount(value) <= 0:
        raise InvalidAmountError(
            f'Amount must be a positive finite number, got {value}',
            field='total', expected='>= 0.01', actual=value
        )
    return round_amount(value)


def _check_rate(vat_rate_percent: Number) -> Decimal:
    try:
        rate = _as_decimal(vat_rate_percent)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRateError(
            f'VAT rate is not a number: {vat_rate_percent!r}',
            field='vat_rate', actual=vat_rate_percent
        )
    if not rate.is_finite() or rate < 0:
        raise InvalidRateError(
            f'VAT rate must be a non-negative finite percentage, got {rate}',
            field='vat_rate', expected='>= 0', actual=rate
        )
    return rate


def round_amount(value: Number) -> Decimal:
    """Round to two decimal places, half up"""
    return _as_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(value: Number) -> str:
    """Render an amount the way it appears in documents and QR codes"""
    return f"{round_amount(value):.2f}"


def taxable_amount(total: Number, vat_rate_percent: Number = DEFAULT_VAT_RATE) -> Decimal:
    """
    Amount exclusive of VAT for a VAT-inclusive total.

    Args:
        total: Total inclusive of VAT, must be > 0
        vat_rate_percent: VAT rate in percent, must be >= 0

    Returns:
        ``total / (1 + rate/100)`` rounded to 2 dp

    Raises:
        InvalidAmountError: total <= 0 or not finite
        InvalidRateError: rate < 0 or not finite
    """
    value = _check_total(total)
    rate = _check_rate(vat_rate_percent)
    return round_amount(value / (1 + rate / HUNDRED))


def vat_amount(total: Number, vat_rate_percent: Number = DEFAULT_VAT_RATE) -> Decimal:
    """VAT part of a VAT-inclusive total (total minus taxable amount)"""
    value = _check_total(total)
    return value - taxable_amount(value, vat_rate_percent)


def line_net_amount(item: LineItem) -> Decimal:
    return round_amount(item.quantity * item.unit_price)


def line_vat_amount(net: Decimal, percent: Number) -> Decimal:
    rate = _check_rate(percent)
    return round_amount(net * rate / HUNDRED)


def line_percent(item: LineItem, vat_rate_percent: Decimal) -> Decimal:
    if item.tax_category is TaxCategory.STANDARD:
        return vat_rate_percent
    return Decimal('0')


def compute_totals(invoice: Invoice,
                   vat_rate_percent: Number = DEFAULT_VAT_RATE,
                   minor_unit: Decimal = TWO_PLACES) -> InvoiceTotals:
    """
    Derive invoice-level amounts and reconcile them with the line items.

    Non-standard lines contribute their net amount unchanged. The remaining
    standard-rated part of the total is split into taxable and VAT amounts.
    Recomputed line amounts must match within one minor unit per line.

    Raises:
        InvalidAmountError: total is not positive or has more than two decimals
        LineTotalMismatchError: line amounts do not add up to the total
    """
    rate = _check_rate(vat_rate_percent)
    total = _check_total(invoice.total_amount_inclusive_of_tax)
    if total != invoice.total_amount_inclusive_of_tax:
        raise InvalidAmountError(
            f'Invoice total {invoice.total_amount_inclusive_of_tax} has more than two decimals',
            field='total_amount_inclusive_of_tax', expected=total,
            actual=invoice.total_amount_inclusive_of_tax
        )

    lines: List[LineAmounts] = []
    for item in invoice.line_items:
        percent = line_percent(item, rate)
        net = line_net_amount(item)
        lines.append(LineAmounts(
            line_id=item.id,
            tax_category=item.tax_category,
            percent=percent,
            net_amount=net,
            vat_amount=line_vat_amount(net, percent),
        ))

    standard = [line for line in lines if line.tax_category is TaxCategory.STANDARD]
    other_net = sum((line.net_amount for line in lines if line.tax_category is not TaxCategory.STANDARD), ZERO)
    standard_inclusive = total - other_net

    if standard_inclusive < 0:
        raise LineTotalMismatchError(
            'Non-standard lines exceed the invoice total',
            field='total_amount_inclusive_of_tax',
            expected=f'>= {other_net}', actual=total
        )

    # zero-priced standard lines leave nothing to split
    if standard and standard_inclusive > 0:
        standard_taxable = taxable_amount(standard_inclusive, rate)
        vat = standard_inclusive - standard_taxable
    else:
        standard_taxable = ZERO
        vat = ZERO

    taxable = total - vat
    line_extension = sum((line.net_amount for line in lines), ZERO)
    line_vat = sum((line.vat_amount for line in standard), ZERO)
    tolerance = minor_unit * len(lines)

    if abs(line_vat - vat) > tolerance:
        raise LineTotalMismatchError(
            f'Line VAT {line_vat} does not reconcile with invoice VAT {vat}',
            field='vat_amount', expected=vat, actual=line_vat
        )
    if abs(line_extension - taxable) > tolerance:
        raise LineTotalMismatchError(
            f'Line net amounts {line_extension} do not reconcile with '
            f'taxable amount {taxable}',
            field='taxable_amount', expected=taxable, actual=line_extension
        )

    return InvoiceTotals(
        total=total,
        taxable_amount=taxable,
        vat_amount=vat,
        line_extension_amount=line_extension,
        lines=lines,
        subtotals=_subtotals(invoice, lines, standard_taxable, vat),
    )


def _subtotals(invoice: Invoice, lines: List[LineAmounts],
               standard_taxable: Decimal, vat: Decimal) -> List[TaxSubtotal]:
    """Group lines by (category, percent), keeping first-appearance order"""
    groups: Dict[Tuple[TaxCategory, Decimal], TaxSubtotal] = {}
    items = {item.id: item for item in invoice.line_items}

    for amounts in lines:
        key = (amounts.tax_category, amounts.percent)
        item = items[amounts.line_id]
        group = groups.get(key)
        if group is None:
            groups[key] = TaxSubtotal(
                tax_category=amounts.tax_category,
                percent=amounts.percent,
                taxable_amount=amounts.net_amount,
                tax_amount=ZERO,
                exemption_reason_code=item.exemption_reason_code,
                exemption_reason=item.exemption_reason,
            )
            continue
        group.taxable_amount += amounts.net_amount
        if group.exemption_reason_code is None:
            group.exemption_reason_code = item.exemption_reason_code
        if group.exemption_reason is None:
            group.exemption_reason = item.exemption_reason

    for (category, _), group in groups.items():
        if category is TaxCategory.STANDARD:
            group.taxable_amount = standard_taxable
            group.tax_amount = vat

    return list(groups.values())
