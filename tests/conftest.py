"""
Shared fixtures: parties, invoices, keys and certificates.
"""
from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from zatca_einvoice.config import GENESIS_HASH
from zatca_einvoice.core.models import Address, Buyer, DocumentType, Invoice, LineItem, Seller
from zatca_einvoice.core.signing import ORGANIZATION_IDENTIFIER, Certificate, PrivateKeySigner

SELLER_VAT = "310122393500003"
BUYER_VAT = "300075588700003"
INVOICE_UUID = UUID("3cf5ee18-ee25-44ea-a444-2c37ba7f28be")


@pytest.fixture
def seller_address():
    """Create a valid Saudi address"""
    return Address(
        street="King Fahd Road",
        building_number="1234",
        district="Al Olaya",
        city="Riyadh",
        postal_code="12345",
        country_code="SA"
    )


@pytest.fixture
def seller(seller_address):
    return Seller(
        name="Test Company",
        vat_number=SELLER_VAT,
        address=seller_address,
        crn="1010010000"
    )


@pytest.fixture
def buyer():
    return Buyer(
        name="Buyer Trading Est.",
        vat_number=BUYER_VAT,
        address=Address(
            street="Prince Sultan Street",
            building_number="5678",
            city="Jeddah",
            postal_code="23521"
        )
    )


@pytest.fixture
def make_invoice(seller):
    """Factory for invoices; keyword arguments override the defaults"""
    def _make(**overrides):
        data = dict(
            id="INV-001",
            uuid=INVOICE_UUID,
            document_type=DocumentType.SIMPLIFIED,
            issue_date=date(2024, 1, 1),
            issue_time=time(10, 0, 0),
            seller=seller,
            total_amount_inclusive_of_tax=Decimal("100.00"),
            line_items=[
                LineItem(id="1", name="Coffee beans 1kg",
                         quantity=Decimal("1"), unit_price=Decimal("86.96"))
            ],
            previous_invoice_hash=GENESIS_HASH,
            counter_value=1,
        )
        data.update(overrides)
        return Invoice(**data)
    return _make


@pytest.fixture
def simplified_invoice(make_invoice):
    """100.00 SAR inclusive, single standard-rated line"""
    return make_invoice()


@pytest.fixture
def standard_invoice(make_invoice, buyer):
    return make_invoice(id="INV-002", document_type=DocumentType.STANDARD, buyer=buyer)


def _self_signed(private_key, subject_attrs):
    name = x509.Name(subject_attrs)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime(2024, 1, 1))
        .not_valid_after(datetime(2034, 1, 1))
        .sign(private_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def certificate_pem(private_key):
    cert = _self_signed(private_key, [
        x509.NameAttribute(NameOID.COMMON_NAME, "EGS1-886431145"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Company"),
        x509.NameAttribute(ORGANIZATION_IDENTIFIER, SELLER_VAT),
    ])
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def certificate(certificate_pem):
    return Certificate.from_pem(certificate_pem)


@pytest.fixture(scope="session")
def signer(private_key):
    return PrivateKeySigner(private_key)


@pytest.fixture
def self_signed():
    """Build a PEM certificate for the given key and subject attributes"""
    def _build(key, attrs):
        return _self_signed(key, attrs).public_bytes(serialization.Encoding.PEM)
    return _build
