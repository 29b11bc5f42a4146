"""Custom exception hierarchy for BOURSE."""

from __future__ import annotations

from typing import Any


class BourseError(Exception):
    """Base exception for all BOURSE errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Storage Layer ────────────────────────────────────────────────

class StorageError(BourseError):
    """The backing store failed; the current operation was aborted."""


# ── Lookup ───────────────────────────────────────────────────────

class AccountNotFoundError(BourseError):
    """No account exists with the requested ID."""


class InstrumentNotFoundError(BourseError):
    """No instrument exists with the requested ID or ticker."""


# ── Simulator Layer ──────────────────────────────────────────────

class LedgerIntegrityError(BourseError):
    """Ledger state contradicts an invariant, e.g. selling an unheld position."""
