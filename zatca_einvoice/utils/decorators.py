"""
Decorators for audit logging and performance monitoring.
"""
import functools
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable

# Configure audit logger separately from main app logger
audit_logger = logging.getLogger('zatca.audit')
perf_logger = logging.getLogger('zatca.performance')


def _invoice_id(args, kwargs) -> str:
    """Find the invoice among call arguments (methods get self first)"""
    for value in list(args) + list(kwargs.values()):
        if hasattr(value, 'counter_value') and hasattr(value, 'uuid'):
            return f"{value.id} (ICV {value.counter_value})"
    return "N/A"


def audit_log(func: Callable) -> Callable:
    """
    Decorator that logs calls touching an invoice, with outcome.
    Every build, sign and issue step leaves an audit record.

    Usage:
        @audit_log
        def build(self, invoice):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        func_name = func.__qualname__
        invoice_id = _invoice_id(args, kwargs)

        audit_logger.info(
            f"CALL | {func_name} | Invoice: {invoice_id} | "
            f"Timestamp: {datetime.now().isoformat()}"
        )

        try:
            result = func(*args, **kwargs)

            status = "COMPLIANT" if getattr(result, 'is_compliant', False) else "PROCESSED"
            audit_logger.info(
                f"SUCCESS | {func_name} | Invoice: {invoice_id} | "
                f"Status: {status}"
            )

            return result

        except Exception as e:
            audit_logger.error(
                f"FAILURE | {func_name} | Invoice: {invoice_id} | "
                f"Error: {type(e).__name__}: {e}"
            )
            raise

    return wrapper


def measure_performance(func: Callable) -> Callable:
    """
    Decorator to measure and log function execution time.
    Attaches ``processing_time_ms`` to results that have that field.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)

            elapsed_ms = (time.perf_counter() - start_time) * 1000

            if hasattr(result, 'processing_time_ms'):
                result.processing_time_ms = elapsed_ms

            perf_logger.debug(
                f"{func.__qualname__} completed in {elapsed_ms:.2f}ms"
            )

            return result

        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            perf_logger.warning(
                f"{func.__qualname__} failed after {elapsed_ms:.2f}ms: {str(e)}"
            )
            raise

    return wrapper


@contextmanager
def performance_context(operation_name: str):
    """
    Context manager for measuring code block performance.

    Usage:
        with performance_context("canonicalization"):
            canonicalize(document)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.debug(f"{operation_name}: {elapsed:.2f}ms")
