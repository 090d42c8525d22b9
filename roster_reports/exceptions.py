"""
Exceptions raised by the roster pipeline.

Missing attributes and unparseable dates are not errors: they are carried
as sentinel values ("Unknown", "N/A", 1970-01-01) so records still list.
"""


class RosterError(Exception):
    """Base class for roster pipeline errors."""


class SourceDataError(RosterError):
    """A commerce record or table is malformed or missing required columns."""


class DuplicateKeyConflict(RosterError):
    """An insert would duplicate an existing order_item_id or placeholder signature."""

    def __init__(self, key):
        super().__init__(f"Roster row already exists for key {key!r}")
        self.key = key


class LedgerRebuildError(RosterError):
    """A full ledger rebuild failed and was rolled back; the previous ledger is intact."""
