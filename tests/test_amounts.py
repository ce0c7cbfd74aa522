"""
Unit tests for VAT-inclusive amount calculations.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from zatca_einvoice.core.amounts import (
    compute_totals,
    format_amount,
    round_amount,
    taxable_amount,
    vat_amount,
)
from zatca_einvoice.core.errors import (
    InvalidAmountError,
    InvalidRateError,
    LineTotalMismatchError,
)
from zatca_einvoice.core.models import LineItem, TaxCategory


class TestTaxableAmount:
    """Splitting a VAT-inclusive total"""

    def test_hundred_at_fifteen_percent(self):
        assert taxable_amount(Decimal("100")) == Decimal("86.96")
        assert vat_amount(Decimal("100")) == Decimal("13.04")

    def test_exact_split(self):
        assert taxable_amount("115.00") == Decimal("100.00")
        assert vat_amount("115.00") == Decimal("15.00")

    def test_zero_rate_keeps_total(self):
        assert taxable_amount("50.00", 0) == Decimal("50.00")
        assert vat_amount("50.00", 0) == Decimal("0.00")

    def test_smallest_amount(self):
        assert taxable_amount("0.01") == Decimal("0.01")
        assert vat_amount("0.01") == Decimal("0.00")

    def test_accepts_float_and_int(self):
        assert taxable_amount(100.0) == Decimal("86.96")
        assert taxable_amount(100) == Decimal("86.96")

    @pytest.mark.parametrize("total", ["0.01", "1", "10.50", "99.99", "1234.56", "999999.99"])
    @pytest.mark.parametrize("rate", ["0", "5", "15"])
    def test_parts_sum_to_total(self, total, rate):
        assert taxable_amount(total, rate) + vat_amount(total, rate) == Decimal(total).quantize(Decimal("0.01"))

    @pytest.mark.parametrize("total", ["0", "-5", "0.004", "abc", Decimal("NaN"), Decimal("Infinity")])
    def test_invalid_total(self, total):
        with pytest.raises(InvalidAmountError):
            taxable_amount(total)

    @pytest.mark.parametrize("rate", ["-1", Decimal("NaN"), "fifteen"])
    def test_invalid_rate(self, rate):
        with pytest.raises(InvalidRateError):
            taxable_amount("100", rate)

    def test_error_carries_field(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            vat_amount("-1")
        assert exc_info.value.field == "total"


class TestRounding:
    """Half-up rounding to two places"""

    def test_half_up(self):
        assert round_amount("0.005") == Decimal("0.01")
        assert round_amount("2.675") == Decimal("2.68")
        assert round_amount("0.0049") == Decimal("0.00")

    def test_format_always_two_decimals(self):
        assert format_amount(Decimal("13")) == "13.00"
        assert format_amount(Decimal("86.9565")) == "86.96"


class TestComputeTotals:
    """Invoice-level totals reconciled with line items"""

    def test_single_line(self, simplified_invoice):
        totals = compute_totals(simplified_invoice)

        assert totals.total == Decimal("100.00")
        assert totals.taxable_amount == Decimal("86.96")
        assert totals.vat_amount == Decimal("13.04")
        assert totals.line_extension_amount == Decimal("86.96")
        assert totals.lines[0].vat_amount == Decimal("13.04")
        assert len(totals.subtotals) == 1
        assert totals.subtotals[0].tax_amount == Decimal("13.04")

    def test_mixed_categories(self, make_invoice):
        invoice = make_invoice(
            total_amount_inclusive_of_tax=Decimal("165.00"),
            line_items=[
                LineItem(id="1", name="Laptop bag", quantity=Decimal("1"), unit_price=Decimal("100")),
                LineItem(id="2", name="Export service", quantity=Decimal("1"), unit_price=Decimal("50"),
                         tax_category=TaxCategory.ZERO_RATED,
                         exemption_reason_code="VATEX-SA-32",
                         exemption_reason="Export of goods"),
            ]
        )

        totals = compute_totals(invoice)

        assert totals.vat_amount == Decimal("15.00")
        assert totals.taxable_amount == Decimal("150.00")
        assert totals.taxable_amount + totals.vat_amount == totals.total
        assert [s.tax_category for s in totals.subtotals] == [TaxCategory.STANDARD, TaxCategory.ZERO_RATED]
        zero = totals.subtotals[1]
        assert zero.taxable_amount == Decimal("50")
        assert zero.tax_amount == Decimal("0.00")
        assert zero.percent == Decimal("0")
        assert zero.exemption_reason_code == "VATEX-SA-32"

    def test_only_zero_rated(self, make_invoice):
        invoice = make_invoice(
            total_amount_inclusive_of_tax=Decimal("50.00"),
            line_items=[
                LineItem(id="1", name="Medicine", quantity=Decimal("2"), unit_price=Decimal("25"),
                         tax_category=TaxCategory.ZERO_RATED, exemption_reason_code="VATEX-SA-35"),
            ]
        )

        totals = compute_totals(invoice)

        assert totals.vat_amount == Decimal("0.00")
        assert totals.taxable_amount == Decimal("50.00")

    def test_rounding_within_one_unit_per_line(self, make_invoice):
        # Three lines of 0.33: nets 0.99 against taxable 0.98
        invoice = make_invoice(
            total_amount_inclusive_of_tax=Decimal("1.13"),
            line_items=[
                LineItem(id=str(i), name="Sticker", quantity=Decimal("1"), unit_price=Decimal("0.33"))
                for i in range(1, 4)
            ]
        )

        totals = compute_totals(invoice)

        assert totals.taxable_amount == Decimal("0.98")
        assert totals.line_extension_amount == Decimal("0.99")

    def test_lines_do_not_match_total(self, make_invoice):
        invoice = make_invoice(total_amount_inclusive_of_tax=Decimal("200.00"))

        with pytest.raises(LineTotalMismatchError) as exc_info:
            compute_totals(invoice)

        assert exc_info.value.field == "vat_amount"
        assert exc_info.value.expected == Decimal("26.09")
        assert exc_info.value.actual == Decimal("13.04")

    def test_exempt_lines_exceed_total(self, make_invoice):
        invoice = make_invoice(
            total_amount_inclusive_of_tax=Decimal("100.00"),
            line_items=[
                LineItem(id="1", name="Standard", quantity=Decimal("1"), unit_price=Decimal("10")),
                LineItem(id="2", name="Exempt", quantity=Decimal("1"), unit_price=Decimal("200"),
                         tax_category=TaxCategory.EXEMPT, exemption_reason_code="VATEX-SA-29"),
            ]
        )

        with pytest.raises(LineTotalMismatchError):
            compute_totals(invoice)

    def test_zero_priced_standard_line(self, make_invoice):
        invoice = make_invoice(
            total_amount_inclusive_of_tax=Decimal("50.00"),
            line_items=[
                LineItem(id="1", name="Sample", quantity=Decimal("1"), unit_price=Decimal("0")),
                LineItem(id="2", name="Exempt", quantity=Decimal("1"), unit_price=Decimal("50"),
                         tax_category=TaxCategory.EXEMPT, exemption_reason_code="VATEX-SA-29"),
            ]
        )

        totals = compute_totals(invoice)

        assert totals.vat_amount == Decimal("0.00")
        assert totals.taxable_amount == Decimal("50.00")
        assert totals.line_extension_amount == Decimal("50.00")
        assert [(s.tax_category, s.taxable_amount, s.tax_amount) for s in totals.subtotals] == [
            (TaxCategory.STANDARD, Decimal("0.00"), Decimal("0.00")),
            (TaxCategory.EXEMPT, Decimal("50.00"), Decimal("0.00")),
        ]

    def test_total_with_three_decimals_rejected(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(total_amount_inclusive_of_tax=Decimal("100.005"))

    def test_unrounded_total_not_silently_rounded(self, simplified_invoice):
        invoice = simplified_invoice.model_copy(
            update={"total_amount_inclusive_of_tax": Decimal("100.005")}
        )

        with pytest.raises(InvalidAmountError) as exc_info:
            compute_totals(invoice)

        assert exc_info.value.field == "total_amount_inclusive_of_tax"
        assert exc_info.value.expected == Decimal("100.01")
