"""Error taxonomy for heap snapshot decoding and analysis.

Only :class:`MalformedSnapshot` is ever raised to callers.  Unresolvable
references are recovered locally by the decoder and kept on the decoded
snapshot as diagnostics.
"""

from __future__ import annotations

from typing import Dict


class HeapLeakError(Exception):
    """Base class for all heapleak errors."""


class MalformedSnapshot(HeapLeakError):
    """The raw snapshot is structurally invalid and cannot be decoded."""

    def __init__(self, message: str, label: str = "") -> None:
        self.label = label
        prefix = f"{label}: " if label else ""
        super().__init__(f"{prefix}{message}")


class UnresolvableReference(HeapLeakError):
    """A name, type code or edge endpoint points outside its lookup table.

    Instances are collected as non-fatal diagnostics; the decoder substitutes
    an empty name (or drops the dangling edge) and carries on.
    """

    def __init__(self, table: str, position: int, value: int) -> None:
        self.table = table
        self.position = position
        self.value = value
        super().__init__(
            f"{table} reference {value} at position {position} is out of range"
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "table": self.table,
            "position": self.position,
            "value": self.value,
        }
