"""
Invoice hash chain.

Every invoice carries the hash of the invoice issued before it on the same
device (PIH). The first invoice of a device links to GENESIS_HASH.
"""
import base64
import hashlib
import logging
import threading
from typing import Optional, Protocol

from pydantic import BaseModel

from zatca_einvoice.config import GENESIS_HASH
from zatca_einvoice.core.errors import ChainBreakError
from zatca_einvoice.core.models import Invoice

logger = logging.getLogger(__name__)


class ChainState(BaseModel):
    """Head of a device's invoice chain"""
    last_hash: Optional[str] = None
    last_counter: int = 0

    @property
    def is_empty(self) -> bool:
        return self.last_counter == 0


class ChainLink(BaseModel):
    """Linkage the next invoice of a device must carry"""
    previous_invoice_hash: str
    counter_value: int


class ChainStateStore(Protocol):
    """Persistence seam for the chain head of one device"""

    def load(self) -> ChainState:
        ...

    def save(self, last_hash: str, last_counter: int) -> None:
        ...


class InMemoryChainStateStore:
    """Process-local store, mostly useful for tests and single runs"""

    def __init__(self, state: Optional[ChainState] = None):
        self._state = state or ChainState()
        self._lock = threading.Lock()

    def load(self) -> ChainState:
        with self._lock:
            return self._state.model_copy()

    def save(self, last_hash: str, last_counter: int) -> None:
        with self._lock:
            self._state = ChainState(last_hash=last_hash, last_counter=last_counter)


def content_hash(invoice: Invoice) -> str:
    """
    Compute the hash that the next invoice must carry as its PIH.

    SHA-256 over ``uuid || issueDate || issueTime``, base64 encoded.
    These fields are fixed at creation, so the hash can be taken before
    amounts are finalized.
    """
    data = f"{invoice.uuid}{invoice.issue_date_text}{invoice.issue_time_text}"
    digest = hashlib.sha256(data.encode('utf-8')).digest()
    return base64.b64encode(digest).decode('ascii')


def verify_chain(invoice: Invoice, prior_invoice_hash: str) -> bool:
    """True iff the invoice links to the given prior hash"""
    return invoice.previous_invoice_hash == prior_invoice_hash


def require_link(invoice: Invoice, prior_invoice_hash: str):
    """
    Raise ChainBreakError unless the invoice links to the prior hash.
    A break is reported, never repaired.
    """
    if not verify_chain(invoice, prior_invoice_hash):
        logger.error(
            f"Chain break on invoice {invoice.id}: expected PIH "
            f"{prior_invoice_hash}, got {invoice.previous_invoice_hash}"
        )
        raise ChainBreakError(
            f'Invoice {invoice.id}: previous invoice hash does not match chain head',
            field='previous_invoice_hash',
            expected=prior_invoice_hash,
            actual=invoice.previous_invoice_hash
        )


class HashChain:
    """
    Extends one device's chain through an injected ChainStateStore.
    Callers must keep a single writer per device.
    """

    def __init__(self, store: ChainStateStore, genesis_hash: str = GENESIS_HASH):
        self.store = store
        self.genesis_hash = genesis_hash

    def expected_link(self) -> ChainLink:
        """PIH and counter the next invoice must carry"""
        state = self.store.load()
        if state.is_empty:
            return ChainLink(previous_invoice_hash=self.genesis_hash, counter_value=1)
        return ChainLink(
            previous_invoice_hash=state.last_hash,
            counter_value=state.last_counter + 1
        )

    def check(self, invoice: Invoice) -> ChainLink:
        """
        Verify PIH and counter of the next invoice.

        Returns:
            The link the invoice matched

        Raises:
            ChainBreakError: PIH or counter does not follow the chain head
        """
        expected = self.expected_link()
        require_link(invoice, expected.previous_invoice_hash)
        if invoice.counter_value != expected.counter_value:
            raise ChainBreakError(
                f'Invoice {invoice.id}: counter {invoice.counter_value} does '
                f'not follow {expected.counter_value - 1}',
                field='counter_value',
                expected=expected.counter_value,
                actual=invoice.counter_value
            )
        return expected

    def extend(self, invoice: Invoice) -> str:
        """Check the invoice against the head, then make it the new head"""
        self.check(invoice)
        new_hash = content_hash(invoice)
        self.store.save(new_hash, invoice.counter_value)
        logger.debug(f"Chain extended to counter {invoice.counter_value}")
        return new_hash
