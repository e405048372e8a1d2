"""
groupify/features/analytics/pipeline.py

Small typed aggregation stages over an in-memory share snapshot:
match -> unwind -> group_by (explicit accumulators) -> sort.

Stages are pure and never mutate their input. group_by keeps keys in
first-seen order so downstream stable sorts are reproducible.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class Accumulator(ABC):
    """Reducer applied to every record of one group."""

    @abstractmethod
    def start(self) -> Any:
        """Initial value for an empty group."""

    @abstractmethod
    def add(self, acc: Any, record: Any) -> Any:
        """Fold one record into acc and return the new value."""

    def finish(self, acc: Any) -> Any:
        return acc


class Count(Accumulator):
    def start(self) -> int:
        return 0

    def add(self, acc: int, record: Any) -> int:
        return acc + 1


class Sum(Accumulator):
    def __init__(self, value: Callable[[Any], float]):
        self.value = value

    def start(self):
        return 0

    def add(self, acc, record):
        return acc + self.value(record)


class AddToSet(Accumulator):
    """Distinct values; finish() returns them in first-seen order."""

    def __init__(self, value: Callable[[Any], Hashable]):
        self.value = value

    def start(self) -> Dict[Hashable, None]:
        return {}

    def add(self, acc: Dict[Hashable, None], record: Any) -> Dict[Hashable, None]:
        acc.setdefault(self.value(record), None)
        return acc

    def finish(self, acc: Dict[Hashable, None]) -> List[Hashable]:
        return list(acc)


class Max(Accumulator):
    def __init__(self, value: Callable[[Any], Any]):
        self.value = value

    def start(self):
        return None

    def add(self, acc, record):
        candidate = self.value(record)
        if acc is None or candidate > acc:
            return candidate
        return acc


@dataclass(frozen=True)
class GroupRow:
    """Output row of group_by: the grouping key plus one value per accumulator."""

    key: Any
    values: Dict[str, Any]

    def __getitem__(self, name: str) -> Any:
        return self.values[name]


def match(records: Iterable[T], predicate: Callable[[T], bool]) -> List[T]:
    return [r for r in records if predicate(r)]


def unwind(records: Iterable[T], items: Callable[[T], Iterable[U]]) -> List[Tuple[T, U]]:
    """One (parent, item) pair per element of the selected sub-list; empty lists drop the parent."""
    return [(r, item) for r in records for item in items(r)]


def group_by(
    records: Iterable[T],
    key: Callable[[T], Any],
    accumulators: Dict[str, Accumulator],
) -> List[GroupRow]:
    state: Dict[Any, Dict[str, Any]] = {}
    for record in records:
        k = key(record)
        if k not in state:
            state[k] = {name: acc.start() for name, acc in accumulators.items()}
        bucket = state[k]
        for name, acc in accumulators.items():
            bucket[name] = acc.add(bucket[name], record)

    return [
        GroupRow(key=k, values={name: accumulators[name].finish(v) for name, v in bucket.items()})
        for k, bucket in state.items()
    ]


def sort_rows(rows: Iterable[GroupRow], key: Callable[[GroupRow], Any], reverse: bool = False) -> List[GroupRow]:
    return sorted(rows, key=key, reverse=reverse)


def first(rows: List[GroupRow]) -> Optional[GroupRow]:
    return rows[0] if rows else None
