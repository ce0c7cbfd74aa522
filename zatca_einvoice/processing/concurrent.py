"""
Concurrent validation processing using ThreadPoolExecutor.
Validation is read-only, so invoices from different devices (or many
invoices from one) can be checked in parallel. Issuance stays sequential
per device.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from zatca_einvoice.config import EInvoiceConfig
from zatca_einvoice.core.errors import EInvoiceError
from zatca_einvoice.core.models import BatchResult, Invoice, ValidationResult
from zatca_einvoice.core.parsers import load_invoice
from zatca_einvoice.core.validators import InvoiceValidator
from zatca_einvoice.utils.decorators import measure_performance

logger = logging.getLogger(__name__)


def _failed_result(source: str, error: Exception) -> ValidationResult:
    result = ValidationResult(invoice_id=source, is_compliant=False)
    result.add_violation(
        code='SYS_001',
        field=getattr(error, 'field', None) or 'file',
        message=f'Processing error: {error}',
        severity='ERROR'
    )
    return result


class ConcurrentValidator:
    """
    Validates invoices on a thread pool.
    Validators hold no per-call state, so one instance is shared by all
    workers.
    """

    def __init__(self, max_workers: Optional[int] = None, strict_mode: bool = True,
                 config: Optional[EInvoiceConfig] = None):
        """
        Initialize concurrent validator.

        Args:
            max_workers: Maximum number of worker threads (default: executor's)
            strict_mode: Whether to use strict validation rules
        """
        self.max_workers = max_workers
        self.validator = InvoiceValidator(strict_mode, config)

    def validate_one(self, invoice: Invoice) -> ValidationResult:
        return self.validator.validate(invoice)

    @measure_performance
    def validate_batch(self, invoices: Iterable[Invoice]) -> List[ValidationResult]:
        """
        Validate multiple invoices concurrently.

        Returns:
            Results in input order
        """
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(self.validate_one, invoices))

    def _validate_file(self, path: Path) -> ValidationResult:
        try:
            invoice = load_invoice(path)
        except (EInvoiceError, OSError) as e:
            logger.error(f"Failed to load {path}: {e}")
            return _failed_result(str(path), e)
        return self.validate_one(invoice)

    @measure_performance
    def validate_files(self, paths: Iterable[Union[str, Path]],
                       callback: Optional[Callable[[ValidationResult], None]] = None) -> BatchResult:
        """
        Load and validate invoice files concurrently.
        Files that cannot be loaded count as failed results.

        Args:
            paths: JSON invoice files
            callback: called with each result as it completes

        Returns:
            BatchResult with aggregated statistics
        """
        start_time = time.time()
        batch_result = BatchResult()
        paths = [Path(p) for p in paths]

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self._validate_file, path) for path in paths]

            for future in as_completed(futures):
                result = future.result()
                batch_result.add_result(result)
                if callback:
                    callback(result)

                if batch_result.total % 100 == 0:
                    logger.info(
                        f"Progress: {batch_result.total}/{len(paths)} "
                        f"({batch_result.compliant_count} compliant)"
                    )

        batch_result.processing_time_seconds = time.time() - start_time

        logger.info(
            f"Validation complete: {batch_result.compliant_count}/{batch_result.total} "
            f"compliant in {batch_result.processing_time_seconds:.2f}s"
        )

        return batch_result

    def validate_directory(self, directory: Union[str, Path],
                           pattern: str = "*.json",
                           callback: Optional[Callable[[ValidationResult], None]] = None) -> BatchResult:
        """Validate every matching invoice file in a directory"""
        dir_path = Path(directory)
        if not dir_path.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")

        paths = sorted(p for p in dir_path.glob(pattern) if p.is_file())
        if not paths:
            logger.warning(f"No invoices found in {directory} matching {pattern}")
        return self.validate_files(paths, callback)
