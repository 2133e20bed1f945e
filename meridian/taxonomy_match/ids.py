"""
Master ID Generator - Namespaced sequential ids for new master records.

Ids look like ORG_NAT_00042: a fixed prefix plus a zero-padded counter.
Scanning for the max suffix is only correct with a single writer, so
allocation goes through MasterIdSequence (lock-guarded) or the store's own
atomic sequence.
"""

import threading
from typing import Iterable


def parse_suffix(master_id: str, prefix: str) -> int | None:
    """Numeric suffix of an id in the namespace, or None if it is not one."""
    if not master_id or not master_id.startswith(prefix):
        return None
    suffix = master_id[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def format_master_id(number: int, prefix: str, width: int = 5) -> str:
    return f"{prefix}{number:0{width}d}"


def max_suffix(existing_ids: Iterable[str], prefix: str) -> int:
    numbers = [n for n in (parse_suffix(i, prefix) for i in existing_ids) if n is not None]
    return max(numbers, default=0)


def next_master_id(existing_ids: Iterable[str], prefix: str = "ORG_NAT_", width: int = 5) -> str:
    """
    Next id after the highest one already in the namespace.

    Ids outside the namespace (seeded catalog ids, other taxonomies) are ignored.
    Returns prefix + 00001 when the namespace is empty.
    """
    return format_master_id(max_suffix(existing_ids, prefix) + 1, prefix, width)


class MasterIdSequence:
    """
    Thread-safe id allocator for one namespace.

    Seeded once from the ids already in the store, then increments under a lock
    so concurrent sessions never compute the same max independently.
    """

    def __init__(self, prefix: str, width: int = 5, existing_ids: Iterable[str] = ()):
        self.prefix = prefix
        self.width = width
        self._current = max_suffix(existing_ids, prefix)
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        return self._current

    def observe(self, master_id: str):
        """Account for an id created elsewhere (e.g. imported) in the namespace."""
        number = parse_suffix(master_id, self.prefix)
        if number is None:
            return
        with self._lock:
            if number > self._current:
                self._current = number

    def next(self) -> str:
        with self._lock:
            self._current += 1
            return format_master_id(self._current, self.prefix, self.width)
