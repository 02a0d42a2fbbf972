"""Ledger error taxonomy.

Append failures are never raised (they are logged and alerted on), and a
broken chain is reported as a ``ChainVerificationResult``, so only the
conditions below surface as exceptions.
"""


class ConfigurationError(RuntimeError):
    """The signing key is missing or unusable. Fatal at startup."""


class LedgerQueryError(RuntimeError):
    """A read operation (query, statistics, metrics) failed or timed out."""
