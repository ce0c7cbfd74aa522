"""
UBL 2.1 invoice document builder.

Maps an Invoice onto the ZATCA UBL layout with fixed element order, so the
same Invoice always yields byte-identical XML. Every check runs before the
first element is created.
"""
import logging
from decimal import Decimal
from typing import Optional

from lxml import etree
from pydantic import BaseModel, ConfigDict

from zatca_einvoice.config import EInvoiceConfig
from zatca_einvoice.core.amounts import TWO_PLACES, compute_totals, format_amount
from zatca_einvoice.core.chain import require_link
from zatca_einvoice.core.errors import CurrencyMismatchError, MissingFieldError
from zatca_einvoice.core.models import (
    Address,
    DocumentType,
    Invoice,
    InvoiceTotals,
    LineAmounts,
    LineItem,
    Seller,
    TaxCategory,
)
from zatca_einvoice.core.tlv import QRPayload, encode_tlv
from zatca_einvoice.utils.decorators import audit_log, measure_performance

logger = logging.getLogger(__name__)

# UBL namespaces
INVOICE_NS = 'urn:oasis:names:specification:ubl:schema:xsd:Invoice-2'
CAC = 'urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2'
CBC = 'urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2'
EXT = 'urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2'

NSMAP = {
    None: INVOICE_NS,
    'cac': CAC,
    'cbc': CBC,
    'ext': EXT,
}

XADES_EXTENSION_URI = 'urn:oasis:names:specification:ubl:dsig:enveloped:xades'
SIGNATURE_ID = 'urn:oasis:names:specification:ubl:signature:Invoice'
INVOICE_TYPE_CODE = '388'
NOT_APPLICABLE = 'Not Applicable'


class BuiltDocument(BaseModel):
    """Unsigned document plus the values derived while building it"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    root: etree._Element
    totals: InvoiceTotals
    qr: QRPayload
    qr_code: str

    def to_bytes(self) -> bytes:
        return serialize(self.root)


def serialize(root: etree._Element) -> bytes:
    """UTF-8 bytes with XML declaration"""
    return etree.tostring(root, xml_declaration=True, encoding='UTF-8')


def _sub(parent: etree._Element, tag: str, text: Optional[str] = None, **attribs: str) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = text
    # Sorted so attribute order never depends on call sites
    for key in sorted(attribs):
        el.set(key, attribs[key])
    return el


def _cbc(parent: etree._Element, local: str, text: Optional[str] = None, **attribs: str) -> etree._Element:
    return _sub(parent, f"{{{CBC}}}{local}", text, **attribs)


def _cac(parent: etree._Element, local: str) -> etree._Element:
    return _sub(parent, f"{{{CAC}}}{local}")


def _amount(parent: etree._Element, local: str, value: Decimal, currency: str) -> etree._Element:
    return _cbc(parent, local, format_amount(value), currencyID=currency)


def _plain_decimal(value: Decimal) -> str:
    """Fixed-point text without trailing zeros (2.0 and 2 render alike)"""
    return format(value.normalize(), 'f')


def _price(value: Decimal) -> str:
    if value == value.quantize(TWO_PLACES):
        return format_amount(value)
    return _plain_decimal(value)


def _percent(value: Decimal) -> str:
    return f"{value.quantize(TWO_PLACES)}"


class DocumentBuilder:
    """
    Builds simplified and standard invoice documents.

    Args:
        config: VAT rate, profile id and rounding unit
    """

    def __init__(self, config: Optional[EInvoiceConfig] = None):
        self.config = config or EInvoiceConfig()

    @measure_performance
    @audit_log
    def build(self, invoice: Invoice,
              expected_previous_hash: Optional[str] = None) -> BuiltDocument:
        """
        Build the unsigned document tree.

        Args:
            invoice: Invoice to render
            expected_previous_hash: chain head the invoice must link to

        Returns:
            BuiltDocument

        Raises:
            ChainBreakError: PIH differs from expected_previous_hash
            CurrencyMismatchError: a line uses another currency
            MissingFieldError: standard invoice without full buyer
            LineTotalMismatchError: lines do not reconcile with the total
        """
        if expected_previous_hash is not None:
            require_link(invoice, expected_previous_hash)
        self._check_currency(invoice)
        self._check_buyer(invoice)

        totals = compute_totals(invoice, self.config.vat_rate, self.config.minor_unit)
        qr = QRPayload.from_invoice(invoice, totals)
        qr_code = encode_tlv(qr)

        root = etree.Element(f"{{{INVOICE_NS}}}Invoice", nsmap=NSMAP)
        self._populate(root, invoice, totals, qr_code)

        logger.debug(f"Built {invoice.document_type.value} invoice {invoice.id}")
        return BuiltDocument(root=root, totals=totals, qr=qr, qr_code=qr_code)

    def render(self, invoice: Invoice,
               expected_previous_hash: Optional[str] = None) -> bytes:
        """Build and serialize in one step"""
        return self.build(invoice, expected_previous_hash).to_bytes()

    @staticmethod
    def _check_currency(invoice: Invoice):
        for idx, line in enumerate(invoice.line_items):
            if line.currency is not None and line.currency.upper() != invoice.currency:
                raise CurrencyMismatchError(
                    f'Line {line.id} is in {line.currency}, invoice is in {invoice.currency}',
                    field=f'line_items[{idx}].currency',
                    expected=invoice.currency,
                    actual=line.currency
                )

    @staticmethod
    def _check_buyer(invoice: Invoice):
        if invoice.document_type is not DocumentType.STANDARD:
            return
        buyer = invoice.buyer
        if buyer is None:
            raise MissingFieldError('Standard invoices require a buyer', field='buyer')
        for name in ('name', 'vat_number', 'address'):
            if getattr(buyer, name) is None:
                raise MissingFieldError(
                    f'Standard invoices require buyer.{name}',
                    field=f'buyer.{name}'
                )

    def _populate(self, root: etree._Element, invoice: Invoice,
                  totals: InvoiceTotals, qr_code: str):
        """Populate UBL elements in ZATCA-required order"""
        currency = invoice.currency

        # Signature extension point, filled by the signing step
        ext_root = _sub(root, f"{{{EXT}}}UBLExtensions")
        ext_el = _sub(ext_root, f"{{{EXT}}}UBLExtension")
        _sub(ext_el, f"{{{EXT}}}ExtensionURI", XADES_EXTENSION_URI)
        _sub(ext_el, f"{{{EXT}}}ExtensionContent")

        _cbc(root, 'ProfileID', self.config.profile_id)
        _cbc(root, 'ID', invoice.id)
        _cbc(root, 'UUID', str(invoice.uuid))
        _cbc(root, 'IssueDate', invoice.issue_date_text)
        _cbc(root, 'IssueTime', invoice.issue_time_text)
        _cbc(root, 'InvoiceTypeCode', INVOICE_TYPE_CODE,
             name=invoice.document_type.subtype_code)
        _cbc(root, 'DocumentCurrencyCode', currency)
        _cbc(root, 'TaxCurrencyCode', currency)

        # Invoice counter value
        adr_icv = _cac(root, 'AdditionalDocumentReference')
        _cbc(adr_icv, 'ID', 'ICV')
        _cbc(adr_icv, 'UUID', str(invoice.counter_value))

        # Previous invoice hash
        adr_pih = _cac(root, 'AdditionalDocumentReference')
        _cbc(adr_pih, 'ID', 'PIH')
        attach_pih = _cac(adr_pih, 'Attachment')
        _cbc(attach_pih, 'EmbeddedDocumentBinaryObject',
             invoice.previous_invoice_hash, mimeCode='text/plain')

        # QR code
        adr_qr = _cac(root, 'AdditionalDocumentReference')
        _cbc(adr_qr, 'ID', 'QR')
        attach_qr = _cac(adr_qr, 'Attachment')
        _cbc(attach_qr, 'EmbeddedDocumentBinaryObject', qr_code, mimeCode='text/plain')

        sig_block = _cac(root, 'Signature')
        _cbc(sig_block, 'ID', SIGNATURE_ID)
        _cbc(sig_block, 'SignatureMethod', XADES_EXTENSION_URI)

        self._supplier_party(root, invoice.seller)
        self._customer_party(root, invoice)

        if invoice.delivery_date is not None:
            delivery = _cac(root, 'Delivery')
            _cbc(delivery, 'ActualDeliveryDate', invoice.delivery_date.isoformat())

        payment = _cac(root, 'PaymentMeans')
        _cbc(payment, 'PaymentMeansCode', invoice.payment_means)

        self._tax_totals(root, totals, currency)
        self._monetary_total(root, totals, currency)

        amounts = {line.line_id: line for line in totals.lines}
        for item in invoice.line_items:
            self._line(root, item, amounts[item.id], currency)

    @staticmethod
    def _postal_address(party: etree._Element, address: Address):
        addr = _cac(party, 'PostalAddress')
        _cbc(addr, 'StreetName', address.street)
        if address.building_number:
            _cbc(addr, 'BuildingNumber', address.building_number)
        if address.additional_number:
            _cbc(addr, 'PlotIdentification', address.additional_number)
        if address.district:
            _cbc(addr, 'CitySubdivisionName', address.district)
        _cbc(addr, 'CityName', address.city)
        _cbc(addr, 'PostalZone', address.postal_code)
        country = _cac(addr, 'Country')
        _cbc(country, 'IdentificationCode', address.country_code)

    @staticmethod
    def _tax_scheme(party: etree._Element, vat_number: str):
        pts = _cac(party, 'PartyTaxScheme')
        _cbc(pts, 'CompanyID', vat_number)
        ts = _cac(pts, 'TaxScheme')
        _cbc(ts, 'ID', 'VAT')

    def _supplier_party(self, root: etree._Element, seller: Seller):
        supplier = _cac(root, 'AccountingSupplierParty')
        party = _cac(supplier, 'Party')

        if seller.crn:
            pid = _cac(party, 'PartyIdentification')
            _cbc(pid, 'ID', seller.crn, schemeID='CRN')

        self._postal_address(party, seller.address)
        self._tax_scheme(party, seller.vat_number)

        ple = _cac(party, 'PartyLegalEntity')
        _cbc(ple, 'RegistrationName', seller.name)

    def _customer_party(self, root: etree._Element, invoice: Invoice):
        customer = _cac(root, 'AccountingCustomerParty')
        party = _cac(customer, 'Party')
        buyer = invoice.buyer

        if invoice.document_type is DocumentType.STANDARD:
            pid = _cac(party, 'PartyIdentification')
            _cbc(pid, 'ID', buyer.crn or buyer.vat_number, schemeID='CRN')
            self._postal_address(party, buyer.address)
            self._tax_scheme(party, buyer.vat_number)
            ple = _cac(party, 'PartyLegalEntity')
            _cbc(ple, 'RegistrationName', buyer.name)
            return

        # Simplified: buyer details are optional
        pid = _cac(party, 'PartyIdentification')
        buyer_vat = buyer.vat_number if buyer is not None else None
        _cbc(pid, 'ID', buyer_vat or NOT_APPLICABLE, schemeID='NAT')
        if buyer is not None and buyer.name:
            ple = _cac(party, 'PartyLegalEntity')
            _cbc(ple, 'RegistrationName', buyer.name)

    @staticmethod
    def _tax_totals(root: etree._Element, totals: InvoiceTotals, currency: str):
        # With VAT breakdown per category
        tt1 = _cac(root, 'TaxTotal')
        _amount(tt1, 'TaxAmount', totals.vat_amount, currency)
        for subtotal in totals.subtotals:
            sub = _cac(tt1, 'TaxSubtotal')
            _amount(sub, 'TaxableAmount', subtotal.taxable_amount, currency)
            _amount(sub, 'TaxAmount', subtotal.tax_amount, currency)
            cat = _cac(sub, 'TaxCategory')
            _cbc(cat, 'ID', subtotal.tax_category.value)
            _cbc(cat, 'Percent', _percent(subtotal.percent))
            if subtotal.tax_category is not TaxCategory.STANDARD:
                if subtotal.exemption_reason_code:
                    _cbc(cat, 'TaxExemptionReasonCode', subtotal.exemption_reason_code)
                if subtotal.exemption_reason:
                    _cbc(cat, 'TaxExemptionReason', subtotal.exemption_reason)
            scheme = _cac(cat, 'TaxScheme')
            _cbc(scheme, 'ID', 'VAT')

        # Amount only, in tax currency
        tt2 = _cac(root, 'TaxTotal')
        _amount(tt2, 'TaxAmount', totals.vat_amount, currency)

    @staticmethod
    def _monetary_total(root: etree._Element, totals: InvoiceTotals, currency: str):
        lmt = _cac(root, 'LegalMonetaryTotal')
        _amount(lmt, 'LineExtensionAmount', totals.line_extension_amount, currency)
        _amount(lmt, 'TaxExclusiveAmount', totals.taxable_amount, currency)
        _amount(lmt, 'TaxInclusiveAmount', totals.total, currency)
        _amount(lmt, 'PayableAmount', totals.total, currency)

    @staticmethod
    def _line(root: etree._Element, item: LineItem, amounts: LineAmounts, currency: str):
        line_el = _cac(root, 'InvoiceLine')
        _cbc(line_el, 'ID', item.id)
        _cbc(line_el, 'InvoicedQuantity', _plain_decimal(item.quantity),
             unitCode=item.unit_of_measure)
        _amount(line_el, 'LineExtensionAmount', amounts.net_amount, currency)

        tt = _cac(line_el, 'TaxTotal')
        _amount(tt, 'TaxAmount', amounts.vat_amount, currency)
        _amount(tt, 'RoundingAmount', amounts.amount_inclusive, currency)

        it = _cac(line_el, 'Item')
        _cbc(it, 'Name', item.name)
        ct = _cac(it, 'ClassifiedTaxCategory')
        _cbc(ct, 'ID', item.tax_category.value)
        _cbc(ct, 'Percent', _percent(amounts.percent))
        ts = _cac(ct, 'TaxScheme')
        _cbc(ts, 'ID', 'VAT')

        price = _cac(line_el, 'Price')
        _cbc(price, 'PriceAmount', _price(item.unit_price), currencyID=currency)
