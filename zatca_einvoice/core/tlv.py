"""
TLV (Tag-Length-Value) codec for the e-invoice QR code.

Each record is ``tag (1 byte) || length (1 byte) || value``; the records
are concatenated and base64 encoded. Values longer than 255 bytes are an
error, never truncated.
"""
import base64
import binascii
import re
import struct
from typing import Iterable, List, Tuple

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from zatca_einvoice.core.amounts import format_amount
from zatca_einvoice.core.errors import (
    FieldTooLongError,
    MissingFieldError,
    ParserError,
    TruncatedRecordError,
)
from zatca_einvoice.core.models import Invoice, InvoiceTotals

MAX_VALUE_LENGTH = 255

# Tag number -> QRPayload field, in emission order
QR_TAGS = {
    1: 'seller_name',
    2: 'vat_number',
    3: 'timestamp',
    4: 'total_with_vat',
    5: 'vat_amount',
}

AMOUNT_PATTERN = re.compile(r'^\d+\.\d{2}$')
VAT_PATTERN = re.compile(r'^[0-9]{15}$')

Record = Tuple[int, bytes]


class QRPayload(BaseModel):
    """Fields carried by the QR code, regenerable from the invoice"""
    model_config = ConfigDict(frozen=True)

    seller_name: str
    vat_number: str
    timestamp: str
    total_with_vat: str
    vat_amount: str
    # Tags outside 1-5, kept verbatim in the order they were read
    extra_tags: Tuple[Tuple[int, bytes], ...] = ()

    @field_validator('vat_number')
    @classmethod
    def validate_vat(cls, v: str) -> str:
        if not VAT_PATTERN.match(v):
            raise ValueError('VAT number must be 15 ASCII digits')
        return v

    @field_validator('timestamp')
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        isoparse(v)
        return v

    @field_validator('total_with_vat', 'vat_amount')
    @classmethod
    def validate_amount(cls, v: str) -> str:
        if not AMOUNT_PATTERN.match(v):
            raise ValueError(f'Amount must have exactly two decimals: {v}')
        return v

    @field_validator('extra_tags')
    @classmethod
    def validate_extra_tags(cls, v):
        for tag, _ in v:
            if tag in QR_TAGS or not 0 <= tag <= 255:
                raise ValueError(f'Invalid extra tag {tag}')
        return v

    @classmethod
    def from_invoice(cls, invoice: Invoice, totals: InvoiceTotals) -> 'QRPayload':
        return cls(
            seller_name=invoice.seller.name,
            vat_number=invoice.seller.vat_number,
            timestamp=invoice.timestamp,
            total_with_vat=format_amount(totals.total),
            vat_amount=format_amount(totals.vat_amount),
        )

    def records(self) -> List[Record]:
        """(tag, value) pairs in tag order, unknown tags last"""
        pairs = [
            (tag, getattr(self, name).encode('utf-8'))
            for tag, name in QR_TAGS.items()
        ]
        pairs.extend(self.extra_tags)
        return pairs


def encode_record(tag: int, value: bytes) -> bytes:
    """Encode one TLV record"""
    if len(value) > MAX_VALUE_LENGTH:
        raise FieldTooLongError(
            f'TLV value for tag {tag} is {len(value)} bytes (max {MAX_VALUE_LENGTH})',
            field=QR_TAGS.get(tag, f'tag{tag}'),
            expected=f'<= {MAX_VALUE_LENGTH} bytes',
            actual=len(value)
        )
    return struct.pack('BB', tag, len(value)) + value


def encode_records(records: Iterable[Record]) -> bytes:
    return b''.join(encode_record(tag, value) for tag, value in records)


def decode_records(data: bytes) -> List[Record]:
    """
    Walk a TLV buffer from offset 0 to its end.

    Raises:
        TruncatedRecordError: a header or value runs past the buffer end
    """
    records = []
    offset = 0
    size = len(data)

    while offset < size:
        if offset + 2 > size:
            raise TruncatedRecordError(
                f'Record header at offset {offset} is incomplete',
                field='length', expected=offset + 2, actual=size
            )
        tag, length = data[offset], data[offset + 1]
        end = offset + 2 + length
        if end > size:
            raise TruncatedRecordError(
                f'Tag {tag} declares {length} bytes but only '
                f'{size - offset - 2} remain',
                field=QR_TAGS.get(tag, f'tag{tag}'), expected=end, actual=size
            )
        records.append((tag, data[offset + 2:end]))
        offset = end

    return records


def encode_tlv(payload: QRPayload) -> str:
    """Encode the QR payload as base64 TLV"""
    return base64.b64encode(encode_records(payload.records())).decode('ascii')


def decode_tlv(encoded: str) -> QRPayload:
    """
    Decode a base64 TLV string back into its fields.

    Raises:
        ParserError: input is not base64, a known tag is not UTF-8 or a
            field value is malformed
        TruncatedRecordError: a record runs past the buffer end
        MissingFieldError: one of tags 1-5 is absent
    """
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParserError(f'QR payload is not valid base64: {e}', field='qr') from e

    fields = {}
    extra = []
    for tag, value in decode_records(raw):
        name = QR_TAGS.get(tag)
        if name is None:
            extra.append((tag, value))
            continue
        if name in fields:
            raise ParserError(f'Tag {tag} appears more than once', field=name)
        try:
            fields[name] = value.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ParserError(f'Tag {tag} is not valid UTF-8', field=name) from e

    missing = [name for name in QR_TAGS.values() if name not in fields]
    if missing:
        raise MissingFieldError(
            f'QR payload is missing required tags: {", ".join(missing)}',
            field=missing[0]
        )

    try:
        return QRPayload(**fields, extra_tags=tuple(extra))
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else "qr"
        raise ParserError(f'Invalid QR field {field}: {first["msg"]}', field=field) from e
