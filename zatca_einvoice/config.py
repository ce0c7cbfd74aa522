"""
Runtime configuration for invoice construction.
Values come from the environment, optionally seeded from a .env file.
"""
import os
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Protocol constant: base64 of the hex SHA-256 digest of "0"
GENESIS_HASH = 'NWZlY2ViNjZmZmM4NmYzOGQ5NTI3ODZjNmQ2OTZjNzljMmRiYzIzOWRkNGU5MWI0NjcyOWQ3M2EyN2ZiNTdlOQ=='

DEFAULT_VAT_RATE = Decimal('15')


class EInvoiceConfig(BaseModel):
    """Settings shared by the builder, validators and issuer"""
    vat_rate: Decimal = Field(default=DEFAULT_VAT_RATE, ge=0)
    genesis_hash: str = GENESIS_HASH
    profile_id: str = 'reporting:1.0'
    # One minor currency unit; reconciliation tolerance is counted in these
    minor_unit: Decimal = Field(default=Decimal('0.01'), gt=0)


def load_config(env_file: Optional[str] = '.env') -> EInvoiceConfig:
    """
    Build configuration from ZATCA_* environment variables.

    Args:
        env_file: dotenv file loaded first; existing variables win

    Returns:
        EInvoiceConfig
    """
    if env_file:
        load_dotenv(env_file)

    values = {}
    env_map = {
        'ZATCA_VAT_RATE': 'vat_rate',
        'ZATCA_GENESIS_HASH': 'genesis_hash',
        'ZATCA_PROFILE_ID': 'profile_id',
    }
    for env_name, field in env_map.items():
        value = os.getenv(env_name)
        if value:
            values[field] = value

    return EInvoiceConfig(**values)
