"""BatchGrouper: partitions records into ordered batches.

Two modes:

  FixedSize(n)  consecutive slices of at most n records, in input order.
  ByKey(fn)     one batch per distinct key, in first-seen key order. Used
                when a business document must be posted as one atomic unit,
                e.g. a material document header with all its line items.

Batches only live for one submission run.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

Record = Mapping[str, Any]
KeyFunction = Callable[[Record], Hashable]


@dataclass(frozen=True)
class Batch:
    """An ordered, non-empty run of records submitted as one unit."""

    index: int
    records: tuple[Record, ...]
    positions: tuple[int, ...] = ()  # input offsets of each record
    key: Hashable | None = None

    def __len__(self) -> int:
        return len(self.records)

    def entries(self) -> list[tuple[int | None, Record]]:
        """(input position, record) pairs in batch order."""
        positions: tuple[int | None, ...] = self.positions or (None,) * len(self.records)
        return list(zip(positions, self.records, strict=True))


@dataclass(frozen=True)
class FixedSize:
    size: int

    def __post_init__(self) -> None:
        if self.size < 1:
            raise ValueError(f"Batch size must be at least 1, got {self.size}")


@dataclass(frozen=True)
class ByKey:
    key_fn: KeyFunction


PartitionMode = FixedSize | ByKey


def composite_key(*fields: str) -> KeyFunction:
    """Build a key function from one or more record fields.

    Missing fields count as empty strings, so records lacking e.g. a posting
    date still group together with each other.
    """
    if not fields:
        raise ValueError("composite_key needs at least one field name")

    def key_fn(record: Record) -> Hashable:
        return tuple(str(record.get(name, "") or "") for name in fields)

    return key_fn


class BatchGrouper:
    """Turns an ordered record list into an ordered batch list."""

    def partition(self, records: Sequence[Record], mode: PartitionMode) -> list[Batch]:
        if not records:
            return []
        if isinstance(mode, FixedSize):
            return self._by_size(records, mode.size)
        if isinstance(mode, ByKey):
            return self._by_key(records, mode.key_fn)
        raise TypeError(f"Unsupported partition mode: {mode!r}")

    @staticmethod
    def _by_size(records: Sequence[Record], size: int) -> list[Batch]:
        batches = []
        for i, start in enumerate(range(0, len(records), size)):
            stop = min(start + size, len(records))
            batches.append(
                Batch(
                    index=i,
                    records=tuple(records[start:stop]),
                    positions=tuple(range(start, stop)),
                )
            )
        return batches

    @staticmethod
    def _by_key(records: Sequence[Record], key_fn: KeyFunction) -> list[Batch]:
        # dicts keep insertion order, which gives first-seen key order
        groups: dict[Hashable, list[int]] = {}
        for position, record in enumerate(records):
            groups.setdefault(key_fn(record), []).append(position)
        return [
            Batch(
                index=i,
                records=tuple(records[p] for p in positions),
                positions=tuple(positions),
                key=key,
            )
            for i, (key, positions) in enumerate(groups.items())
        ]
