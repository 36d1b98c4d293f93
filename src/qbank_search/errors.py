"""
Error taxonomy shared by the backfill job, the search engine and the surfaces.
"""

from __future__ import annotations


class QBankError(Exception):
    """Base class for all errors raised by qbank_search."""


class ConfigurationError(QBankError):
    """Required settings are missing or inconsistent. Fatal at start-up."""


class ValidationError(QBankError):
    """A request was rejected before any downstream call was made."""


class TransientProviderError(QBankError):
    """The embedding provider kept failing after the retry budget was spent."""


class GroupFailure(QBankError):
    """One embedding group could not be embedded; its rows stay unembedded."""


class RowWriteFailure(QBankError):
    """A single row's embedding could not be persisted."""


class StoreError(QBankError):
    """The corpus store failed to answer a query or apply a write."""


class CapabilityMissingError(StoreError):
    """A scoring primitive the store was asked for does not exist."""


class SearchFailure(QBankError):
    """A search request failed server-side (embedding or store)."""


_MISSING_MARKERS: tuple[str, ...] = ("does not exist",)


def is_capability_missing(exc: BaseException) -> bool:
    """
    Return True when *exc* signals that a store primitive is unavailable.

    Stores raising ``CapabilityMissingError`` are detected by type; anything
    else is matched on its message, which is what live stores report.
    """
    if isinstance(exc, CapabilityMissingError):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _MISSING_MARKERS)
