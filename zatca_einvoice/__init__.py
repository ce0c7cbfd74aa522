"""
ZATCA e-invoice core

Builds, chains and prepares for signing Saudi ZATCA Phase 2 e-invoices.
"""

__version__ = '1.0.0'

from zatca_einvoice.config import GENESIS_HASH, EInvoiceConfig, load_config

from zatca_einvoice.core import (
    Invoice,
    Seller,
    Buyer,
    Address,
    LineItem,
    DocumentType,
    TaxCategory,
    EInvoiceError,
    taxable_amount,
    vat_amount,
    encode_tlv,
    decode_tlv,
    content_hash,
    HashChain,
    InMemoryChainStateStore,
    DocumentBuilder,
    canonicalize,
    prepare_envelope,
    embed_signature,
    InvoiceIssuer,
    load_invoice,
    InvoiceValidator,
)

from zatca_einvoice.processing import ConcurrentValidator

__all__ = [
    'GENESIS_HASH',
    'EInvoiceConfig',
    'load_config',
    'Invoice',
    'Seller',
    'Buyer',
    'Address',
    'LineItem',
    'DocumentType',
    'TaxCategory',
    'EInvoiceError',
    'taxable_amount',
    'vat_amount',
    'encode_tlv',
    'decode_tlv',
    'content_hash',
    'HashChain',
    'InMemoryChainStateStore',
    'DocumentBuilder',
    'canonicalize',
    'prepare_envelope',
    'embed_signature',
    'InvoiceIssuer',
    'load_invoice',
    'InvoiceValidator',
    'ConcurrentValidator',
]
