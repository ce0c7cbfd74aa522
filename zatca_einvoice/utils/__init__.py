"""ZATCA e-invoice - Utilities Package"""

from zatca_einvoice.utils.decorators import (
    audit_log,
    measure_performance,
    performance_context
)

__all__ = [
    'audit_log',
    'measure_performance',
    'performance_context',
]
