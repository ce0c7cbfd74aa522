"""ZATCA e-invoice - Core Package"""

from zatca_einvoice.core.errors import EInvoiceError
from zatca_einvoice.core.models import (
    Address,
    Buyer,
    DocumentType,
    Invoice,
    LineItem,
    Seller,
    TaxCategory,
    ValidationResult,
    BatchResult,
)
from zatca_einvoice.core.amounts import compute_totals, taxable_amount, vat_amount
from zatca_einvoice.core.tlv import QRPayload, decode_tlv, encode_tlv
from zatca_einvoice.core.chain import HashChain, InMemoryChainStateStore, content_hash, verify_chain
from zatca_einvoice.core.builder import DocumentBuilder
from zatca_einvoice.core.signing import (
    Certificate,
    PrivateKeySigner,
    canonicalize,
    embed_signature,
    prepare_envelope,
)
from zatca_einvoice.core.issuer import InvoiceIssuer, IssuedInvoice
from zatca_einvoice.core.parsers import load_invoice, invoice_generator, read_document
from zatca_einvoice.core.validators import InvoiceValidator

__all__ = [
    'EInvoiceError',
    'Address',
    'Buyer',
    'DocumentType',
    'Invoice',
    'LineItem',
    'Seller',
    'TaxCategory',
    'ValidationResult',
    'BatchResult',
    'compute_totals',
    'taxable_amount',
    'vat_amount',
    'QRPayload',
    'decode_tlv',
    'encode_tlv',
    'HashChain',
    'InMemoryChainStateStore',
    'content_hash',
    'verify_chain',
    'DocumentBuilder',
    'Certificate',
    'PrivateKeySigner',
    'canonicalize',
    'embed_signature',
    'prepare_envelope',
    'InvoiceIssuer',
    'IssuedInvoice',
    'load_invoice',
    'invoice_generator',
    'read_document',
    'InvoiceValidator',
]
