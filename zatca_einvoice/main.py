"""
ZATCA e-invoice - Main Entry Point
Command-line interface for building, validating and inspecting invoices.
"""
import argparse
import logging
import sys
from pathlib import Path

from zatca_einvoice.config import load_config
from zatca_einvoice.core.builder import DocumentBuilder
from zatca_einvoice.core.errors import EInvoiceError
from zatca_einvoice.core.models import BatchResult, ValidationResult
from zatca_einvoice.core.parsers import document_generator, load_invoice, read_document
from zatca_einvoice.core.tlv import QRPayload, decode_tlv
from zatca_einvoice.core.validators import InvoiceChainValidator, InvoiceValidator
from zatca_einvoice.processing.concurrent import ConcurrentValidator

logger = logging.getLogger('zatca_einvoice')


def setup_logging(verbose: bool = False, log_file: str = 'zatca_einvoice.log'):
    """Configure application logging"""
    level = logging.DEBUG if verbose else logging.INFO

    # stdout carries command output (documents, reports)
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _print_result(result: ValidationResult):
    print("\n" + "=" * 60)
    print(f"Invoice: {result.invoice_id}")
    print("=" * 60)

    if result.is_compliant:
        print("✓ COMPLIANT")
    else:
        print("✗ NON-COMPLIANT")

    if result.violations:
        print(f"\nFound {len(result.violations)} violation(s):\n")
        for i, violation in enumerate(result.violations, 1):
            print(f"{i}. [{violation.code}] {violation.message}")
            print(f"   Field: {violation.field}")
            print(f"   Rule: {violation.rule}")
            print(f"   Severity: {violation.severity}\n")

    if result.processing_time_ms:
        print(f"Processing time: {result.processing_time_ms:.2f}ms")


def _print_summary(result: BatchResult):
    print("\n" + "=" * 60)
    print("ZATCA COMPLIANCE VALIDATION SUMMARY")
    print("=" * 60)
    print(f"Total Invoices:    {result.total}")
    print(f"Compliant:         {result.compliant_count}")
    print(f"Non-Compliant:     {result.failed_count}")
    print(f"Processing Time:   {result.processing_time_seconds:.2f}s")
    print("=" * 60)


def _print_qr(payload: QRPayload):
    print(f"Seller name:       {payload.seller_name}")
    print(f"VAT number:        {payload.vat_number}")
    print(f"Timestamp:         {payload.timestamp}")
    print(f"Total with VAT:    {payload.total_with_vat}")
    print(f"VAT amount:        {payload.vat_amount}")
    for tag, value in payload.extra_tags:
        print(f"Tag {tag}:            {value.hex()}")


def build_command(args) -> int:
    """Handle build command: JSON invoice data to UBL XML"""
    config = load_config()
    invoice = load_invoice(args.file)

    built = DocumentBuilder(config).build(invoice, expected_previous_hash=args.previous_hash)
    document = built.to_bytes()

    if args.output:
        Path(args.output).write_bytes(document)
        logger.info(f"Wrote {args.output} ({len(document)} bytes)")
    else:
        sys.stdout.buffer.write(document)
        sys.stdout.buffer.write(b"\n")
        sys.stdout.flush()

    return 0


def validate_command(args) -> int:
    """Handle validate command over one or more JSON invoice files"""
    config = load_config()

    if args.concurrent or len(args.files) > 1:
        processor = ConcurrentValidator(
            max_workers=args.workers if args.concurrent else 1,
            strict_mode=args.strict,
            config=config
        )
        result = processor.validate_files(args.files)
        for item in sorted(result.results, key=lambda r: r.invoice_id):
            if not item.is_compliant:
                _print_result(item)
        _print_summary(result)
        return 0 if result.failed_count == 0 else 1

    invoice = load_invoice(args.files[0])
    result = InvoiceValidator(strict_mode=args.strict, config=config).validate(invoice)
    _print_result(result)
    return 0 if result.is_compliant else 1


def qr_command(args) -> int:
    """Handle qr decode / qr invoice"""
    if args.qr_command == 'decode':
        _print_qr(decode_tlv(args.value))
        return 0

    path = Path(args.file)
    if path.suffix.lower() == '.json':
        qr_code = DocumentBuilder(load_config()).build(load_invoice(path)).qr_code
    else:
        qr_code = read_document(path).qr_code

    if not qr_code:
        logger.error(f"No QR code in {path}")
        return 1

    print(qr_code)
    _print_qr(decode_tlv(qr_code))
    return 0


def chain_command(args) -> int:
    """Handle chain command: PIH/ICV linkage across a directory of documents"""
    config = load_config()
    documents = list(document_generator(args.directory, args.pattern))

    if not documents:
        logger.warning(f"No documents found in {args.directory} matching {args.pattern}")
        return 1

    violations = InvoiceChainValidator(config.genesis_hash).validate_chain(documents)

    print(f"Checked {len(documents)} document(s), "
          f"counters {min(d.counter_value for d in documents)}"
          f"-{max(d.counter_value for d in documents)}")

    if not violations:
        print("✓ Chain intact")
        return 0

    for violation in violations:
        print(f"[{violation.code}] {violation.message}")
    return 1


def main(argv=None):
    """Main entry point"""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    common.add_argument('--log-file', default='zatca_einvoice.log',
                        help='Log file path (empty to disable)')

    parser = argparse.ArgumentParser(
        description='ZATCA e-invoice - build and check Saudi ZATCA Phase 2 e-invoices'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    build_parser = subparsers.add_parser('build', parents=[common],
                                         help='Build a UBL XML document from JSON invoice data')
    build_parser.add_argument('file', help='Path to JSON invoice file')
    build_parser.add_argument('--output', '-o', help='Output XML path (default: stdout)')
    build_parser.add_argument('--previous-hash', help='Expected PIH; build fails if the invoice differs')

    validate_parser = subparsers.add_parser('validate', parents=[common],
                                            help='Validate JSON invoice files')
    validate_parser.add_argument('files', nargs='+', help='Paths to JSON invoice files')
    validate_parser.add_argument('--strict', action='store_true', help='Use strict validation mode')
    validate_parser.add_argument('--concurrent', '-c', action='store_true', help='Use concurrent processing')
    validate_parser.add_argument('--workers', '-w', type=int, default=None, help='Number of worker threads')

    qr_parser = subparsers.add_parser('qr', help='Inspect QR codes')
    qr_subparsers = qr_parser.add_subparsers(dest='qr_command')
    decode_parser = qr_subparsers.add_parser('decode', parents=[common], help='Decode a base64 QR payload')
    decode_parser.add_argument('value', help='Base64 TLV string')
    invoice_parser = qr_subparsers.add_parser('invoice', parents=[common],
                                              help='Show the QR code of an invoice (JSON or XML)')
    invoice_parser.add_argument('file', help='Invoice data or document path')

    chain_parser = subparsers.add_parser('chain', parents=[common],
                                         help='Verify PIH/ICV linkage of XML documents')
    chain_parser.add_argument('directory', help='Directory of XML documents from one device')
    chain_parser.add_argument('--pattern', '-p', default='*.xml', help='File pattern (default: *.xml)')

    args = parser.parse_args(argv)

    if not args.command or (args.command == 'qr' and not args.qr_command):
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.log_file)

    commands = {
        'build': build_command,
        'validate': validate_command,
        'qr': qr_command,
        'chain': chain_command,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 130
    except EInvoiceError as e:
        details = e.to_dict()
        logger.error(
            f"{details['error']}: {details['message']} "
            f"(field={details['field']}, expected={details['expected']}, actual={details['actual']})"
        )
        return 1
    except FileNotFoundError as e:
        logger.error(f"FileNotFoundError: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
