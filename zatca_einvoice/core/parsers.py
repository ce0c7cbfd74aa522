"""
Invoice parsers.

JSON files hold invoice data to be built; XML files are UBL documents
already produced by the builder, read back into a DocumentSummary.
Uses generators for memory-efficient batch processing.
"""
import json
import logging
from datetime import date, time
from decimal import Decimal
from pathlib import Path
from typing import Generator, List, Optional, Union
from xml.parsers.expat import ExpatError

import xmltodict
from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, ValidationError

from zatca_einvoice.core.builder import CAC, CBC, EXT, INVOICE_NS
from zatca_einvoice.core.errors import MissingFieldError, ParserError
from zatca_einvoice.core.models import DocumentType, Invoice
from zatca_einvoice.core.signing import SIG
from zatca_einvoice.utils.decorators import audit_log, measure_performance

logger = logging.getLogger(__name__)

# Namespace URI -> key prefix in xmltodict output
XML_NAMESPACES = {
    INVOICE_NS: None,
    CAC: 'cac',
    CBC: 'cbc',
    EXT: 'ext',
    SIG: 'sig',
}

FORCE_LIST = ('cac:AdditionalDocumentReference', 'cac:InvoiceLine')


class DocumentSummary(BaseModel):
    """Identity, linkage and totals read back from a UBL document"""
    model_config = ConfigDict(frozen=True)

    id: str
    uuid: str
    document_type: Optional[DocumentType] = None
    issue_date: date
    issue_time: time
    counter_value: int
    previous_invoice_hash: str
    qr_code: Optional[str] = None
    seller_vat: Optional[str] = None
    currency: Optional[str] = None
    total_amount_inclusive_of_tax: Optional[Decimal] = None
    line_count: int = 0
    is_signed: bool = False
    source: Optional[str] = None

    @property
    def issue_date_text(self) -> str:
        return self.issue_date.isoformat()

    @property
    def issue_time_text(self) -> str:
        return self.issue_time.strftime('%H:%M:%S') + 'Z'


def _text(node) -> Optional[str]:
    """Element text from xmltodict output (plain or with attributes)"""
    if isinstance(node, dict):
        return node.get('#text')
    return node


def _path(node, *keys):
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _reference(root: dict, ref_id: str) -> Optional[dict]:
    for ref in root.get('cac:AdditionalDocumentReference') or []:
        if _text(ref.get('cbc:ID')) == ref_id:
            return ref
    return None


class XMLDocumentReader:
    """
    Reader for UBL 2.1 invoice documents.
    Pulls out what chain verification and QR checks need.
    """

    @staticmethod
    def _required(value: Optional[str], field: str) -> str:
        if not value:
            raise MissingFieldError(f'Document has no {field}', field=field)
        return value

    def read_bytes(self, data: bytes, source: Optional[str] = None) -> DocumentSummary:
        """
        Summarize one document.

        Raises:
            ParserError: not XML or not a UBL invoice
            MissingFieldError: identity or linkage element absent
        """
        try:
            doc = xmltodict.parse(
                data,
                process_namespaces=True,
                namespaces=XML_NAMESPACES,
                force_list=FORCE_LIST,
                disable_entities=True,
            )
        except ExpatError as e:
            raise ParserError(f"Failed to parse XML document: {e}", field='document') from e

        root = doc.get('Invoice')
        if not isinstance(root, dict):
            raise ParserError('Document root is not a UBL Invoice', field='document')

        issue_date = self._required(_text(root.get('cbc:IssueDate')), 'cbc:IssueDate')
        issue_time = self._required(_text(root.get('cbc:IssueTime')), 'cbc:IssueTime')
        try:
            issued_at = isoparse(f"{issue_date}T{issue_time}")
        except ValueError as e:
            raise ParserError(f"Invalid issue timestamp: {e}", field='cbc:IssueTime') from e

        icv = self._required(_text(_path(_reference(root, 'ICV'), 'cbc:UUID')), 'ICV')
        pih = self._required(
            _text(_path(_reference(root, 'PIH'), 'cac:Attachment', 'cbc:EmbeddedDocumentBinaryObject')),
            'PIH'
        )
        qr = _text(_path(_reference(root, 'QR'), 'cac:Attachment', 'cbc:EmbeddedDocumentBinaryObject'))

        type_code = root.get('cbc:InvoiceTypeCode')
        subtype = type_code.get('@name') if isinstance(type_code, dict) else None
        document_type = None
        for candidate in DocumentType:
            if candidate.subtype_code == subtype:
                document_type = candidate

        monetary = root.get('cac:LegalMonetaryTotal') or {}
        total = _text(monetary.get('cbc:TaxInclusiveAmount'))

        content = _path(root, 'ext:UBLExtensions', 'ext:UBLExtension', 'ext:ExtensionContent')

        try:
            return DocumentSummary(
                id=self._required(_text(root.get('cbc:ID')), 'cbc:ID'),
                uuid=self._required(_text(root.get('cbc:UUID')), 'cbc:UUID'),
                document_type=document_type,
                issue_date=issued_at.date(),
                issue_time=issued_at.time(),
                counter_value=int(icv),
                previous_invoice_hash=pih,
                qr_code=qr,
                seller_vat=_text(_path(
                    root, 'cac:AccountingSupplierParty', 'cac:Party',
                    'cac:PartyTaxScheme', 'cbc:CompanyID'
                )),
                currency=_text(root.get('cbc:DocumentCurrencyCode')),
                total_amount_inclusive_of_tax=Decimal(total) if total else None,
                line_count=len(root.get('cac:InvoiceLine') or []),
                is_signed=isinstance(content, dict) and 'sig:UBLDocumentSignatures' in content,
                source=source,
            )
        except (ValueError, ArithmeticError) as e:
            raise ParserError(f"Invalid document value: {e}", field='document') from e

    @measure_performance
    def parse(self, file_path: Union[str, Path]) -> DocumentSummary:
        with open(file_path, 'rb') as f:
            return self.read_bytes(f.read(), source=str(file_path))


class JSONInvoiceParser:
    """Parser for JSON-formatted invoice data"""

    @measure_performance
    @audit_log
    def parse(self, file_path: Union[str, Path]) -> Invoice:
        """
        Parse single JSON invoice file.

        Args:
            file_path: Path to JSON file

        Returns:
            Invoice object

        Raises:
            ParserError: If parsing fails
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ParserError(f"Failed to read JSON invoice: {str(e)}") from e

        return self.parse_data(data)

    @staticmethod
    def parse_data(data: dict) -> Invoice:
        try:
            # Direct mapping from JSON to model
            return Invoice.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            field = '.'.join(str(part) for part in first['loc'])
            raise ParserError(
                f"Invalid invoice data: {e.error_count()} error(s), first at {field}: {first['msg']}",
                field=field or None
            ) from e


def load_invoice(file_path: Union[str, Path]) -> Invoice:
    """
    Load invoice data from a JSON file.

    Raises:
        FileNotFoundError: path does not exist
        ParserError: unreadable or invalid invoice data
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Invoice file not found: {file_path}")
    if path.suffix.lower() != '.json':
        raise ParserError(f"Unsupported invoice data format: {path.suffix}", field='file')
    return JSONInvoiceParser().parse(path)


def read_document(file_path: Union[str, Path]) -> DocumentSummary:
    """Read back a UBL XML document"""
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Document not found: {file_path}")
    return XMLDocumentReader().parse(path)


def invoice_generator(directory: Union[str, Path],
                      pattern: str = "*.json") -> Generator[Invoice, None, None]:
    """
    Generator that yields parsed invoices from a directory.
    Files that fail to parse are logged and skipped.

    Example:
        for invoice in invoice_generator('invoices/'):
            validator.validate(invoice)
    """
    dir_path = Path(directory)

    if not dir_path.exists():
        raise FileNotFoundError(f"Directory not found: {directory}")

    for file_path in sorted(dir_path.glob(pattern)):
        if file_path.is_file():
            try:
                yield load_invoice(file_path)
            except ParserError as e:
                logger.error(f"Failed to parse {file_path}: {e}")
                continue


def document_generator(directory: Union[str, Path],
                       pattern: str = "*.xml") -> Generator[DocumentSummary, None, None]:
    """Yield summaries of every UBL document in a directory"""
    dir_path = Path(directory)

    if not dir_path.exists():
        raise FileNotFoundError(f"Directory not found: {directory}")

    for file_path in sorted(dir_path.glob(pattern)):
        if file_path.is_file():
            yield read_document(file_path)


def batch_invoice_generator(directory: Union[str, Path],
                            batch_size: int = 100,
                            pattern: str = "*.json") -> Generator[List[Invoice], None, None]:
    """
    Generator that yields batches of invoices.
    Useful for bulk processing with threading pools.
    """
    batch = []

    for invoice in invoice_generator(directory, pattern):
        batch.append(invoice)

        if len(batch) >= batch_size:
            yield batch
            batch = []

    # Yield remaining invoices
    if batch:
        yield batch
