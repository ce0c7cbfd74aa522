"""
Signature preparation for UBL invoice documents.

The signing input is the inclusive C14N form of the document without its
UBLExtensions block, so embedding the signature later does not change what
was signed. The asymmetric operation itself is delegated to a Signer.
"""
import base64
import hashlib
import logging
import re
from typing import Optional, Protocol, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import NameOID
from lxml import etree
from pydantic import BaseModel, ConfigDict

from zatca_einvoice.core.builder import CAC, CBC, EXT, SIGNATURE_ID, serialize
from zatca_einvoice.core.errors import (
    CertificateMismatchError,
    EInvoiceError,
    MissingFieldError,
    ParserError,
)
from zatca_einvoice.utils.decorators import audit_log, performance_context

logger = logging.getLogger(__name__)

DS = 'http://www.w3.org/2000/09/xmldsig#'
SIG = 'urn:oasis:names:specification:ubl:schema:xsd:CommonSignatureComponents-2'
SAC = 'urn:oasis:names:specification:ubl:schema:xsd:SignatureAggregateComponents-2'
SBC = 'urn:oasis:names:specification:ubl:schema:xsd:SignatureBasicComponents-2'

NAMESPACES = {
    'cac': CAC,
    'cbc': CBC,
    'ext': EXT,
    'ds': DS,
    'sig': SIG,
}

C14N_ALGORITHM = 'http://www.w3.org/TR/2001/REC-xml-c14n-20010315'
ENVELOPED_TRANSFORM = 'http://www.w3.org/2000/09/xmldsig#enveloped-signature'
DIGEST_ALGORITHM = 'http://www.w3.org/2001/04/xmlenc#sha256'
ECDSA_SHA256 = 'http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256'
RSA_SHA256 = 'http://www.w3.org/2001/04/xmldsig-more#rsa-sha256'

SIGNATURE_INFORMATION_ID = 'urn:oasis:names:specification:ubl:signature:1'
SELLER_VAT_PATH = 'cac:AccountingSupplierParty/cac:Party/cac:PartyTaxScheme/cbc:CompanyID'
EXTENSION_CONTENT_PATH = 'ext:UBLExtensions/ext:UBLExtension/ext:ExtensionContent'

# organizationIdentifier (2.5.4.97) carries the VAT number in ZATCA certificates
ORGANIZATION_IDENTIFIER = x509.ObjectIdentifier('2.5.4.97')

Document = Union[bytes, str, etree._Element]


class Certificate(BaseModel):
    """Signing certificate as seen by the core: subject VAT plus PEM"""
    model_config = ConfigDict(frozen=True)

    subject_vat: str
    pem_bytes: bytes

    @classmethod
    def from_pem(cls, pem_bytes: bytes) -> 'Certificate':
        """
        Load an X.509 certificate and read the VAT number from its subject.

        Raises:
            ParserError: not a PEM certificate
            MissingFieldError: no VAT number in subject or SAN
        """
        try:
            cert = x509.load_pem_x509_certificate(pem_bytes)
        except ValueError as e:
            raise ParserError(f'Invalid certificate: {e}', field='certificate') from e

        vat = _certificate_vat(cert)
        if vat is None:
            raise MissingFieldError(
                'Certificate subject carries no VAT number',
                field='certificate.subject'
            )
        return cls(subject_vat=vat, pem_bytes=pem_bytes)

    @property
    def der_base64(self) -> str:
        """Base64 DER body of the PEM, as embedded in ds:X509Certificate"""
        text = self.pem_bytes.decode('ascii')
        lines = [
            line.strip() for line in text.splitlines()
            if line.strip() and not line.startswith('-----')
        ]
        return ''.join(lines)


def _certificate_vat(cert: x509.Certificate) -> Optional[str]:
    for oid in (ORGANIZATION_IDENTIFIER, NameOID.USER_ID):
        attrs = cert.subject.get_attributes_for_oid(oid)
        if attrs:
            return attrs[0].value

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return None
    for name in san.value.get_values_for_type(x509.DirectoryName):
        attrs = name.get_attributes_for_oid(NameOID.USER_ID)
        if attrs:
            return attrs[0].value
    return None


class Signer(Protocol):
    """External signing collaborator"""

    def sign(self, data: bytes) -> bytes:
        ...


class PrivateKeySigner:
    """
    Signs with a key held in process: ECDSA or RSA PKCS#1 v1.5, SHA-256.
    """

    def __init__(self, private_key):
        if not isinstance(private_key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
            raise TypeError(f'Unsupported key type: {type(private_key).__name__}')
        self.private_key = private_key

    @classmethod
    def from_pem(cls, pem_bytes: bytes, password: Optional[bytes] = None) -> 'PrivateKeySigner':
        return cls(serialization.load_pem_private_key(pem_bytes, password=password))

    @property
    def signature_method(self) -> str:
        if isinstance(self.private_key, rsa.RSAPrivateKey):
            return RSA_SHA256
        return ECDSA_SHA256

    def sign(self, data: bytes) -> bytes:
        if isinstance(self.private_key, rsa.RSAPrivateKey):
            return self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        return self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))


class SigningEnvelope(BaseModel):
    """Canonical signing input and, once signed, its signature"""
    model_config = ConfigDict(frozen=True)

    canonical_bytes: bytes
    digest: str
    signature: Optional[bytes] = None
    certificate: Optional[Certificate] = None

    @property
    def is_signed(self) -> bool:
        return self.signature is not None

    def with_signature(self, signature: bytes, certificate: Certificate) -> 'SigningEnvelope':
        return self.model_copy(update={'signature': signature, 'certificate': certificate})


def _to_bytes(document: Document) -> bytes:
    if isinstance(document, etree._Element):
        return etree.tostring(document)
    if isinstance(document, str):
        return document.encode('utf-8')
    return document


def _parse(document: Document, remove_blank_text: bool) -> etree._Element:
    parser = etree.XMLParser(
        remove_blank_text=remove_blank_text,
        resolve_entities=False,
        no_network=True,
    )
    try:
        return etree.fromstring(_to_bytes(document), parser)
    except etree.XMLSyntaxError as e:
        raise ParserError(f'Document is not well-formed XML: {e}', field='document') from e


def canonicalize(document: Document) -> bytes:
    """
    Canonical signing input: blank text dropped, UBLExtensions removed
    (enveloped signature), inclusive C14N 1.0 without comments.

    Idempotent: canonicalize(canonicalize(doc)) == canonicalize(doc).
    """
    root = _parse(document, remove_blank_text=True)
    for extensions in root.findall('ext:UBLExtensions', NAMESPACES):
        root.remove(extensions)
    return etree.tostring(root, method='c14n', exclusive=False, with_comments=False)


def digest(canonical_bytes: bytes) -> str:
    return base64.b64encode(hashlib.sha256(canonical_bytes).digest()).decode('ascii')


def prepare_envelope(document: Document) -> SigningEnvelope:
    """Canonicalize the document and hash the result"""
    with performance_context("canonicalization"):
        canonical = canonicalize(document)
    return SigningEnvelope(canonical_bytes=canonical, digest=digest(canonical))


def _splice(original: bytes, content: etree._Element, block: bytes) -> bytes:
    """Replace the empty extension content element in the raw document bytes"""
    qname = f'{content.prefix}:ExtensionContent' if content.prefix else 'ExtensionContent'
    tag = re.escape(qname.encode('ascii'))
    pattern = re.compile(rb'<' + tag + rb'(\s[^>]*?)?\s*(?:/>|>[^<]*</' + tag + rb'\s*>)')

    match = pattern.search(original)
    if match is None:
        raise MissingFieldError('Document has no signature extension point',
                                field='ext:ExtensionContent')

    start_tag = b'<' + qname.encode('ascii') + (match.group(1) or b'') + b'>'
    end_tag = b'</' + qname.encode('ascii') + b'>'
    return original[:match.start()] + start_tag + block + end_tag + original[match.end():]


@audit_log
def embed_signature(document: Document, signature_bytes: bytes,
                    certificate: Certificate,
                    signature_method: str = ECDSA_SHA256) -> bytes:
    """
    Insert the signature block at the UBL extension point.

    The block is spliced into the document bytes: only ext:ExtensionContent
    changes, everything before and after it is returned byte for byte.
    An element is serialized with an XML declaration first.

    Raises:
        CertificateMismatchError: certificate VAT differs from seller VAT
        MissingFieldError: no seller VAT or no extension point
    """
    original = serialize(document) if isinstance(document, etree._Element) else _to_bytes(document)
    root = _parse(original, remove_blank_text=False)

    vat = root.findtext(SELLER_VAT_PATH, namespaces=NAMESPACES)
    if not vat:
        raise MissingFieldError('Document has no seller VAT number', field='seller.vat_number')
    if certificate.subject_vat != vat:
        raise CertificateMismatchError(
            f'Certificate issued to {certificate.subject_vat}, seller is {vat}',
            field='certificate.subject_vat',
            expected=vat,
            actual=certificate.subject_vat
        )

    content = root.find(EXTENSION_CONTENT_PATH, NAMESPACES)
    if content is None:
        raise MissingFieldError('Document has no signature extension point',
                                field='ext:ExtensionContent')
    if len(content):
        raise EInvoiceError('Document already carries a signature', field='ext:ExtensionContent')

    document_digest = digest(canonicalize(root))

    signatures = etree.Element(
        f"{{{SIG}}}UBLDocumentSignatures",
        nsmap={'sig': SIG, 'sac': SAC, 'sbc': SBC, 'cbc': CBC}
    )
    info = etree.SubElement(signatures, f"{{{SAC}}}SignatureInformation")
    etree.SubElement(info, f"{{{CBC}}}ID").text = SIGNATURE_INFORMATION_ID
    etree.SubElement(info, f"{{{SBC}}}ReferencedSignatureID").text = SIGNATURE_ID

    signature = etree.SubElement(info, f"{{{DS}}}Signature", nsmap={'ds': DS})
    signature.set('Id', 'signature')

    signed_info = etree.SubElement(signature, f"{{{DS}}}SignedInfo")
    etree.SubElement(signed_info, f"{{{DS}}}CanonicalizationMethod").set('Algorithm', C14N_ALGORITHM)
    etree.SubElement(signed_info, f"{{{DS}}}SignatureMethod").set('Algorithm', signature_method)

    reference = etree.SubElement(signed_info, f"{{{DS}}}Reference")
    reference.set('Id', 'invoiceSignedData')
    reference.set('URI', '')
    transforms = etree.SubElement(reference, f"{{{DS}}}Transforms")
    etree.SubElement(transforms, f"{{{DS}}}Transform").set('Algorithm', ENVELOPED_TRANSFORM)
    etree.SubElement(transforms, f"{{{DS}}}Transform").set('Algorithm', C14N_ALGORITHM)
    etree.SubElement(reference, f"{{{DS}}}DigestMethod").set('Algorithm', DIGEST_ALGORITHM)
    etree.SubElement(reference, f"{{{DS}}}DigestValue").text = document_digest

    etree.SubElement(signature, f"{{{DS}}}SignatureValue").text = \
        base64.b64encode(signature_bytes).decode('ascii')
    key_info = etree.SubElement(signature, f"{{{DS}}}KeyInfo")
    x509_data = etree.SubElement(key_info, f"{{{DS}}}X509Data")
    etree.SubElement(x509_data, f"{{{DS}}}X509Certificate").text = certificate.der_base64

    logger.debug(f"Embedded signature for seller {vat}")
    return _splice(original, content, etree.tostring(signatures))
