"""Return and ledger engine: customer returns with double-entry postings."""

__version__ = "1.0.0"
