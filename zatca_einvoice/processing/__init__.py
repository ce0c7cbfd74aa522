"""ZATCA e-invoice - Processing Package"""

from zatca_einvoice.processing.concurrent import ConcurrentValidator

__all__ = [
    'ConcurrentValidator',
]
