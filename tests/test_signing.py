"""
Unit tests for canonicalization, certificates and signature embedding.
"""
import base64

import pytest
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import NameOID
from lxml import etree

from zatca_einvoice.core.builder import DocumentBuilder
from zatca_einvoice.core.errors import (
    CertificateMismatchError,
    EInvoiceError,
    MissingFieldError,
    ParserError,
)
from zatca_einvoice.core.signing import (
    ECDSA_SHA256,
    NAMESPACES,
    RSA_SHA256,
    Certificate,
    PrivateKeySigner,
    canonicalize,
    digest,
    embed_signature,
    prepare_envelope,
)

from conftest import SELLER_VAT

EXTENSIONS_END = b"</ext:UBLExtensions>"


@pytest.fixture
def document(simplified_invoice):
    return DocumentBuilder().render(simplified_invoice)


@pytest.fixture
def signed(document, signer, certificate):
    envelope = prepare_envelope(document)
    return embed_signature(document, signer.sign(envelope.canonical_bytes), certificate)


class TestCanonicalize:
    """C14N signing input"""

    def test_idempotent(self, document):
        once = canonicalize(document)
        assert canonicalize(once) == once

    def test_ignores_whitespace(self, document):
        pretty = etree.tostring(etree.fromstring(document), pretty_print=True)
        assert canonicalize(pretty) == canonicalize(document)

    def test_attribute_order(self):
        a = b'<root xmlns="urn:test"><item b="2" a="1">x</item></root>'
        b = b'<root xmlns="urn:test"><item a="1" b="2">x</item></root>'
        assert canonicalize(a) == canonicalize(b)

    def test_excludes_extensions(self, document):
        canonical = canonicalize(document)
        assert b"UBLExtensions" not in canonical
        assert b"<cbc:ProfileID>" in canonical

    def test_accepts_element_and_text(self, simplified_invoice, document):
        root = DocumentBuilder().build(simplified_invoice).root
        assert canonicalize(root) == canonicalize(document)
        assert canonicalize(document.decode("utf-8").split("?>", 1)[1]) == canonicalize(document)

    def test_malformed(self):
        with pytest.raises(ParserError):
            canonicalize(b"<Invoice><unclosed></Invoice>")


class TestEnvelope:

    def test_digest_is_base64_sha256(self, document):
        envelope = prepare_envelope(document)

        assert len(base64.b64decode(envelope.digest)) == 32
        assert envelope.digest == digest(envelope.canonical_bytes)
        assert not envelope.is_signed

    def test_with_signature(self, document, certificate):
        envelope = prepare_envelope(document).with_signature(b"sig", certificate)
        assert envelope.is_signed
        assert envelope.certificate.subject_vat == SELLER_VAT


class TestEmbedSignature:
    """Signature block at the extension point"""

    def test_canonical_form_unchanged_by_signing(self, document, signed):
        assert canonicalize(signed) == canonicalize(document)

    def test_outside_extensions_unchanged(self, document, signed):
        assert signed.split(EXTENSIONS_END)[1] == document.split(EXTENSIONS_END)[1]
        assert signed.split(b"<ext:UBLExtensions>")[0] == document.split(b"<ext:UBLExtensions>")[0]

    def test_signature_block(self, document, signed, certificate):
        root = etree.fromstring(signed)
        sig = root.find(
            'ext:UBLExtensions/ext:UBLExtension/ext:ExtensionContent/'
            'sig:UBLDocumentSignatures/{*}SignatureInformation/ds:Signature',
            NAMESPACES
        )

        assert sig is not None
        assert sig.findtext('ds:SignedInfo/ds:Reference/ds:DigestValue', namespaces=NAMESPACES) == \
            prepare_envelope(document).digest
        assert sig.find('ds:SignedInfo/ds:SignatureMethod', NAMESPACES).get('Algorithm') == ECDSA_SHA256
        assert sig.findtext('ds:KeyInfo/ds:X509Data/ds:X509Certificate', namespaces=NAMESPACES) == \
            certificate.der_base64

    def test_signature_verifies(self, document, signed, private_key):
        root = etree.fromstring(signed)
        value = root.findtext('.//ds:SignatureValue', namespaces=NAMESPACES)

        private_key.public_key().verify(
            base64.b64decode(value), canonicalize(document), ec.ECDSA(hashes.SHA256())
        )

    def test_keeps_original_serialization(self, document, certificate):
        body = document.split(b"?>", 1)[1].replace(
            b"<cbc:ProfileID>", b"<cbc:Note></cbc:Note><cbc:ProfileID>"
        )
        source = b'<?xml version="1.0" encoding="UTF-8"?>' + body

        signed = embed_signature(source, b"sig", certificate)

        assert signed.startswith(b'<?xml version="1.0" encoding="UTF-8"?>')
        assert b"<cbc:Note></cbc:Note>" in signed
        assert signed.split(EXTENSIONS_END)[1] == source.split(EXTENSIONS_END)[1]
        assert canonicalize(signed) == canonicalize(source)

    def test_text_and_element_input(self, document, certificate):
        expected = embed_signature(document, b"sig", certificate)

        assert embed_signature(document.decode("utf-8"), b"sig", certificate) == expected
        assert embed_signature(etree.fromstring(document), b"sig", certificate) == expected

    def test_certificate_mismatch(self, document, certificate_pem):
        other = Certificate(subject_vat="399999999999993", pem_bytes=certificate_pem)

        with pytest.raises(CertificateMismatchError) as exc_info:
            embed_signature(document, b"sig", other)

        assert exc_info.value.expected == SELLER_VAT
        assert exc_info.value.actual == "399999999999993"

    def test_already_signed(self, signed, certificate):
        with pytest.raises(EInvoiceError):
            embed_signature(signed, b"sig", certificate)

    def test_missing_extension_point(self, document, certificate):
        root = etree.fromstring(document)
        root.remove(root.find('ext:UBLExtensions', NAMESPACES))

        with pytest.raises(MissingFieldError):
            embed_signature(etree.tostring(root), b"sig", certificate)


class TestCertificate:

    def test_vat_from_organization_identifier(self, certificate):
        assert certificate.subject_vat == SELLER_VAT

    def test_der_base64(self, certificate, certificate_pem):
        cert = x509.load_pem_x509_certificate(certificate_pem)
        assert base64.b64decode(certificate.der_base64) == cert.public_bytes(serialization.Encoding.DER)

    def test_vat_from_user_id(self, private_key, self_signed):
        pem = self_signed(private_key, [
            x509.NameAttribute(NameOID.COMMON_NAME, "EGS1"),
            x509.NameAttribute(NameOID.USER_ID, SELLER_VAT),
        ])
        assert Certificate.from_pem(pem).subject_vat == SELLER_VAT

    def test_no_vat(self, private_key, self_signed):
        pem = self_signed(private_key, [x509.NameAttribute(NameOID.COMMON_NAME, "EGS1")])
        with pytest.raises(MissingFieldError):
            Certificate.from_pem(pem)

    def test_not_a_certificate(self):
        with pytest.raises(ParserError):
            Certificate.from_pem(b"-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----\n")


class TestPrivateKeySigner:

    def test_ecdsa(self, signer, private_key):
        signature = signer.sign(b"data")
        private_key.public_key().verify(signature, b"data", ec.ECDSA(hashes.SHA256()))
        assert signer.signature_method == ECDSA_SHA256

    def test_ecdsa_rejects_other_data(self, signer, private_key):
        signature = signer.sign(b"data")
        with pytest.raises(InvalidSignature):
            private_key.public_key().verify(signature, b"other", ec.ECDSA(hashes.SHA256()))

    def test_rsa(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        signer = PrivateKeySigner(key)
        assert signer.signature_method == RSA_SHA256
        assert len(signer.sign(b"data")) == 256

    def test_from_pem(self, private_key):
        pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption()
        )
        assert PrivateKeySigner.from_pem(pem).signature_method == ECDSA_SHA256

    def test_unsupported_key(self):
        with pytest.raises(TypeError):
            PrivateKeySigner(ed25519.Ed25519PrivateKey.generate())
