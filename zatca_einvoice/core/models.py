"""
Data models for ZATCA e-invoice representation.
Using Pydantic for validation and type safety.
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DocumentType(str, Enum):
    """Invoice classification: B2C (simplified) or B2B/B2G (standard)"""
    SIMPLIFIED = 'simplified'
    STANDARD = 'standard'

    @property
    def subtype_code(self) -> str:
        # KSA-2 transaction code: 01 standard, 02 simplified
        return '0100000' if self is DocumentType.STANDARD else '0200000'

    @property
    def default_payment_means(self) -> str:
        # UNTDID 4461: 10 cash, 30 credit transfer
        return '30' if self is DocumentType.STANDARD else '10'


class TaxCategory(str, Enum):
    """UNCL5305 VAT category codes"""
    STANDARD = 'S'
    ZERO_RATED = 'Z'
    EXEMPT = 'E'
    OUT_OF_SCOPE = 'O'


def _check_vat_number(v: Optional[str]) -> Optional[str]:
    # Saudi VAT numbers are 15 digits
    if v is None:
        return v
    if len(v) != 15 or not v.isascii() or not v.isdigit():
        raise ValueError('VAT number must be exactly 15 digits')
    return v


class Address(BaseModel):
    """Physical address representation"""
    model_config = ConfigDict(frozen=True)

    street: str = Field(..., min_length=1)
    building_number: Optional[str] = None
    additional_number: Optional[str] = None
    district: Optional[str] = None
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country_code: str = "SA"

    @field_validator('country_code')
    @classmethod
    def validate_country(cls, v):
        if len(v) != 2:
            raise ValueError('Country code must be 2 characters')
        return v.upper()


class Seller(BaseModel):
    """Seller party; VAT number and address are mandatory"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    vat_number: str
    address: Address
    crn: Optional[str] = None

    @field_validator('vat_number')
    @classmethod
    def validate_vat(cls, v):
        return _check_vat_number(v)


class Buyer(BaseModel):
    """Buyer party; only the name is known for most simplified invoices"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    vat_number: Optional[str] = None
    address: Optional[Address] = None
    crn: Optional[str] = None

    @field_validator('vat_number')
    @classmethod
    def validate_vat(cls, v):
        return _check_vat_number(v)


class LineItem(BaseModel):
    """Single line item in invoice"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    unit_of_measure: str = 'PCE'
    tax_category: TaxCategory = TaxCategory.STANDARD
    currency: Optional[str] = None
    exemption_reason_code: Optional[str] = None
    exemption_reason: Optional[str] = None


class Invoice(BaseModel):
    """
    Complete invoice representation.

    ``uuid``, ``issue_date`` and ``issue_time`` are assigned once when the
    invoice is created and never change afterwards.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    uuid: UUID
    document_type: DocumentType
    issue_date: date
    issue_time: time

    seller: Seller
    buyer: Optional[Buyer] = None

    currency: str = 'SAR'
    total_amount_inclusive_of_tax: Decimal = Field(..., gt=0, decimal_places=2)
    line_items: List[LineItem] = Field(..., min_length=1)

    # Hash chain linkage
    previous_invoice_hash: str = Field(..., min_length=1)
    counter_value: int = Field(..., ge=1)

    payment_means_code: Optional[str] = None
    delivery_date: Optional[date] = None

    @model_validator(mode='before')
    @classmethod
    def stamp_creation(cls, data):
        """Assign uuid and issue timestamp when the caller did not"""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get('uuid') is None:
            data['uuid'] = uuid4()
        if data.get('issue_date') is None and data.get('issue_time') is None:
            now = datetime.now(timezone.utc).replace(microsecond=0)
            data['issue_date'] = now.date()
            data['issue_time'] = now.time()
        return data

    @field_validator('issue_time')
    @classmethod
    def validate_utc(cls, v: time) -> time:
        offset = v.utcoffset()
        if offset is not None and offset != timedelta(0):
            raise ValueError('Issue time must be expressed in UTC')
        return v.replace(tzinfo=None, microsecond=0)

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if len(v) != 3 or not v.isalpha():
            raise ValueError('Currency must be a 3-letter ISO 4217 code')
        return v.upper()

    @field_validator('line_items')
    @classmethod
    def validate_line_ids(cls, v: List[LineItem]) -> List[LineItem]:
        ids = [line.id for line in v]
        if len(set(ids)) != len(ids):
            raise ValueError('Line item ids must be unique within an invoice')
        return v

    @property
    def issue_date_text(self) -> str:
        return self.issue_date.isoformat()

    @property
    def issue_time_text(self) -> str:
        return self.issue_time.strftime('%H:%M:%S') + 'Z'

    @property
    def timestamp(self) -> str:
        """ISO-8601 issue timestamp as printed in the QR code"""
        return f"{self.issue_date_text}T{self.issue_time_text}"

    @property
    def payment_means(self) -> str:
        return self.payment_means_code or self.document_type.default_payment_means


class LineAmounts(BaseModel):
    """Amounts recomputed for one line"""
    line_id: str
    tax_category: TaxCategory
    percent: Decimal
    net_amount: Decimal
    vat_amount: Decimal

    @property
    def amount_inclusive(self) -> Decimal:
        return self.net_amount + self.vat_amount


class TaxSubtotal(BaseModel):
    """VAT breakdown for one (category, percent) group"""
    tax_category: TaxCategory
    percent: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    exemption_reason_code: Optional[str] = None
    exemption_reason: Optional[str] = None


class InvoiceTotals(BaseModel):
    """Invoice-level amounts derived from the inclusive total"""
    total: Decimal
    taxable_amount: Decimal
    vat_amount: Decimal
    line_extension_amount: Decimal
    lines: List[LineAmounts] = []
    subtotals: List[TaxSubtotal] = []


class ValidationViolation(BaseModel):
    """Represents a single compliance violation"""
    code: str
    severity: str  # ERROR, WARNING
    field: str
    message: str
    rule: str


class ValidationResult(BaseModel):
    """Result of invoice validation"""
    invoice_id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    is_compliant: bool
    violations: List[ValidationViolation] = []
    processing_time_ms: Optional[float] = None

    def add_violation(self, code: str, field: str, message: str,
                      severity: str = "ERROR", rule: str = ""):
        """Helper to add violation"""
        violation = ValidationViolation(
            code=code,
            severity=severity,
            field=field,
            message=message,
            rule=rule
        )
        self.violations.append(violation)
        if severity == "ERROR":
            self.is_compliant = False


class BatchResult(BaseModel):
    """Result of batch processing"""
    total: int = 0
    compliant_count: int = 0
    failed_count: int = 0
    processing_time_seconds: float = 0.0
    results: List[ValidationResult] = []

    def add_result(self, result: ValidationResult):
        self.results.append(result)
        self.total += 1
        if result.is_compliant:
            self.compliant_count += 1
        else:
            self.failed_count += 1
