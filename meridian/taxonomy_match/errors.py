"""
Errors raised by the matching engines.

All derive from ValueError so callers that already handle bad input
(the CLI, loaders) handle these too. None of them leave partial writes.
"""


class MatchError(ValueError):
    """Base class for rejected match, unmatch and move commands."""


class TooFewSelected(MatchError):
    """A match was attempted with fewer than two records."""

    def __init__(self, count: int, minimum: int = 2) -> None:
        self.count = count
        self.minimum = minimum
        super().__init__(f"At least {minimum} records are required to match, got {count}")


class SameTarget(MatchError):
    """A move targeted the master the record already points at."""

    def __init__(self, record_id: str, master_id: str) -> None:
        self.record_id = record_id
        self.master_id = master_id
        super().__init__(f"Record {record_id} is already linked to {master_id}")


class UnknownMasterId(MatchError):
    """A master id was referenced that does not exist in the store."""

    def __init__(self, master_id: str) -> None:
        self.master_id = master_id
        super().__init__(f"Unknown master id: {master_id}")


class UnknownRecordId(MatchError):
    """A supplier record id was referenced that does not exist in the store."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Unknown supplier record id: {record_id}")


class RecordNotLinked(MatchError):
    """Unmatch was asked to revert a record that has no master id."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id} has no master id to unmatch from")
