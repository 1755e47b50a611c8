"""
Code Store
==========

Persistence collaborator contract and an in-memory reference store.

The acquisition pipeline only reads snapshots (get_existing_codes);
writes happen outside the controller (the service shell forwards
accepted codes when auto_submit is on).

Soft delete:
    Deleted codes move to a recycle bin and stop counting as existing.
    Adding a code that sits in the recycle bin restores it instead of
    creating a new entry.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol


logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"[^0-9]")


class AddCodeOutcome(str, Enum):
    """Result of adding a code to a product."""

    ACCEPTED = "ACCEPTED"
    RESTORED = "RESTORED"
    REJECTED_DUPLICATE = "REJECTED_DUPLICATE"


class CodeStore(Protocol):
    """Persistence collaborator used by the acquisition pipeline."""

    def get_existing_codes(self, product_id: str) -> List[str]:
        ...

    def add_code(self, product_id: str, code: str) -> AddCodeOutcome:
        ...


@dataclass
class StoredCode:
    """A code stored for a product."""

    code: str
    created_at: float
    deleted: bool = False
    deleted_at: Optional[float] = None


class InMemoryCodeStore:
    """
    Thread-safe in-memory CodeStore with a recycle bin.

    Codes are kept per product in insertion order.

    Example:
        store = InMemoryCodeStore()
        store.add_code("p1", "SN-001")      # ACCEPTED, stored as "001"
        store.add_code("p1", "001")         # REJECTED_DUPLICATE
        store.delete_code("p1", "001")
        store.add_code("p1", "001")         # RESTORED
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._products: Dict[str, Dict[str, StoredCode]] = {}

    @staticmethod
    def clean(code: str) -> str:
        """
        Keep digits only: every non-digit is stripped and all digit runs
        are joined.

        Unlike extract(), which keeps only the trailing digit run, a raw
        label such as "HTSM1/3SN69801" becomes "1369801", not "69801".
        Submit extracted codes when the label format is known.
        """
        return _NON_DIGITS.sub("", code or "")

    def get_existing_codes(self, product_id: str) -> List[str]:
        """Active (not deleted) codes of a product, in insertion order."""
        with self._lock:
            codes = self._products.get(product_id, {})
            return [c.code for c in codes.values() if not c.deleted]

    def get_deleted_codes(self, product_id: str) -> List[str]:
        """Codes of a product currently in the recycle bin."""
        with self._lock:
            codes = self._products.get(product_id, {})
            return [c.code for c in codes.values() if c.deleted]

    def add_code(self, product_id: str, code: str) -> AddCodeOutcome:
        """
        Add a code to a product.

        Returns:
            ACCEPTED for a new code, RESTORED when it came back from the
            recycle bin, REJECTED_DUPLICATE when it is already active

        Raises:
            ValueError: If the code holds no digits
        """
        cleaned = self.clean(code)
        if not cleaned:
            raise ValueError(f"Code {code!r} holds no digits")

        with self._lock:
            codes = self._products.setdefault(product_id, {})
            existing = codes.get(cleaned)

            if existing is None:
                codes[cleaned] = StoredCode(code=cleaned, created_at=time.time())
                logger.info(f"Code {cleaned} added to product {product_id}")
                return AddCodeOutcome.ACCEPTED

            if existing.deleted:
                existing.deleted = False
                existing.deleted_at = None
                logger.info(f"Code {cleaned} restored for product {product_id}")
                return AddCodeOutcome.RESTORED

        return AddCodeOutcome.REJECTED_DUPLICATE

    def delete_code(self, product_id: str, code: str) -> bool:
        """Move a code to the recycle bin. Returns False if it is not active."""
        with self._lock:
            stored = self._products.get(product_id, {}).get(code)
            if stored is None or stored.deleted:
                return False
            stored.deleted = True
            stored.deleted_at = time.time()
            return True

    def restore_code(self, product_id: str, code: str) -> bool:
        """Bring a code back from the recycle bin. Returns False if it is not there."""
        with self._lock:
            stored = self._products.get(product_id, {}).get(code)
            if stored is None or not stored.deleted:
                return False
            stored.deleted = False
            stored.deleted_at = None
            return True

    def purge_code(self, product_id: str, code: str) -> bool:
        """Permanently remove a code, active or deleted."""
        with self._lock:
            return self._products.get(product_id, {}).pop(code, None) is not None
