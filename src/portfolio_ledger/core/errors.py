"""Error taxonomy raised by ledger and order operations."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the ledger package."""


class NotFoundError(LedgerError, KeyError):
    """Unknown position or order id."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class InvalidStateError(LedgerError):
    """Operation not allowed in the entity's current state (e.g. already closed)."""


class ValidationError(LedgerError, ValueError):
    """Rejected input: non-positive quantity/price, unknown type, missing fields."""


class LedgerIOError(LedgerError, OSError):
    """Local storage or remote call failure."""
