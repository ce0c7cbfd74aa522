"""
Invoice issuance workflow.

Ties the core together for one device: chain check, document build,
canonicalization, external signing, signature embedding and chain
extension. Submission to the clearance service goes through an injected
transport; nothing here retries.
"""
import logging
import threading
from typing import List, Optional, Protocol

from pydantic import BaseModel

from zatca_einvoice.config import EInvoiceConfig
from zatca_einvoice.core.builder import DocumentBuilder
from zatca_einvoice.core.chain import ChainLink, ChainStateStore, HashChain
from zatca_einvoice.core.errors import CertificateMismatchError
from zatca_einvoice.core.models import DocumentType, Invoice, InvoiceTotals
from zatca_einvoice.core.signing import (
    ECDSA_SHA256,
    Certificate,
    Signer,
    SigningEnvelope,
    embed_signature,
    prepare_envelope,
)
from zatca_einvoice.core.tlv import QRPayload
from zatca_einvoice.utils.decorators import audit_log, measure_performance

logger = logging.getLogger(__name__)


class ClearanceResult(BaseModel):
    """Outcome reported by the clearance/reporting service"""
    status: str
    cleared_uuid: Optional[str] = None
    warnings: List[str] = []
    errors: List[str] = []

    @property
    def is_cleared(self) -> bool:
        return not self.errors and self.status.upper() in ('CLEARED', 'REPORTED')


class ClearanceTransport(Protocol):
    """Network collaborator; owns timeouts, retry and backoff"""

    def submit(self, signed_document: bytes, document_type: DocumentType,
               compliance_id: str) -> ClearanceResult:
        ...


class IssuedInvoice(BaseModel):
    """Signed invoice ready for clearance"""
    invoice: Invoice
    signed_document: bytes
    envelope: SigningEnvelope
    totals: InvoiceTotals
    qr: QRPayload
    qr_code: str
    content_hash: str

    @property
    def counter_value(self) -> int:
        return self.invoice.counter_value


class InvoiceIssuer:
    """
    Issues invoices for one device.

    Args:
        store: chain head persistence for this device
        signer: external signing collaborator
        certificate: certificate matching the signer's key
        config: shared settings
    """

    def __init__(self, store: ChainStateStore, signer: Signer,
                 certificate: Certificate,
                 config: Optional[EInvoiceConfig] = None):
        self.config = config or EInvoiceConfig()
        self.chain = HashChain(store, self.config.genesis_hash)
        self.builder = DocumentBuilder(self.config)
        self.signer = signer
        self.certificate = certificate
        # One writer per device sequence
        self._lock = threading.Lock()

    def next_linkage(self) -> ChainLink:
        """PIH and counter to put on the next invoice"""
        return self.chain.expected_link()

    @measure_performance
    @audit_log
    def issue(self, invoice: Invoice) -> IssuedInvoice:
        """
        Build, sign and chain one invoice.

        The chain head only moves once the signed document exists, so a
        failure at any step leaves the device state untouched.

        Raises:
            ChainBreakError: PIH or counter does not follow the chain head
            CertificateMismatchError: certificate is not the seller's
            EInvoiceError: any document construction failure
        """
        with self._lock:
            link = self.chain.check(invoice)
            if self.certificate.subject_vat != invoice.seller.vat_number:
                raise CertificateMismatchError(
                    f'Certificate issued to {self.certificate.subject_vat}, '
                    f'seller is {invoice.seller.vat_number}',
                    field='certificate.subject_vat',
                    expected=invoice.seller.vat_number,
                    actual=self.certificate.subject_vat
                )
            built = self.builder.build(invoice, expected_previous_hash=link.previous_invoice_hash)

            envelope = prepare_envelope(built.root)
            signature = self.signer.sign(envelope.canonical_bytes)
            envelope = envelope.with_signature(signature, self.certificate)

            signed = embed_signature(
                built.root, signature, self.certificate,
                signature_method=getattr(self.signer, 'signature_method', ECDSA_SHA256)
            )

            new_hash = self.chain.extend(invoice)

        logger.info(
            f"Issued invoice {invoice.id} (ICV {invoice.counter_value}, "
            f"total {built.totals.total} {invoice.currency})"
        )

        return IssuedInvoice(
            invoice=invoice,
            signed_document=signed,
            envelope=envelope,
            totals=built.totals,
            qr=built.qr,
            qr_code=built.qr_code,
            content_hash=new_hash,
        )

    @audit_log
    def submit(self, issued: IssuedInvoice, transport: ClearanceTransport,
               compliance_id: str) -> ClearanceResult:
        """
        Hand a signed invoice to the clearance transport.
        Only IssuedInvoice values get here, so unvalidated documents are
        never submitted.
        """
        result = transport.submit(
            issued.signed_document, issued.invoice.document_type, compliance_id
        )

        for warning in result.warnings:
            logger.warning(f"Clearance warning for {issued.invoice.id}: {warning}")
        if result.errors:
            logger.error(
                f"Clearance rejected {issued.invoice.id}: {'; '.join(result.errors)}"
            )
        else:
            logger.info(f"Invoice {issued.invoice.id} clearance status: {result.status}")

        return result
