"""
Relational record store.

Each entity collection is a `Table`: rows keyed by a monotonically assigned
integer id, plus named secondary indexes mapping a key (owner, parent id,
composite tuple) to row ids in insertion order. Rows are never deleted;
engines mark them inactive or terminal instead.
"""

from typing import Any, Callable, Dict, Generic, Hashable, Iterator, List, Optional, TypeVar

from .exceptions import InvalidInputError

T = TypeVar("T")


class Table(Generic[T]):
    """Entity table with secondary indexes."""

    def __init__(self, name: str):
        self.name = name
        self._rows: Dict[int, T] = {}
        self._next_id = 1
        self._indexes: Dict[str, Dict[Hashable, List[int]]] = {}

    def insert(self, make: Callable[[int], T]) -> T:
        """Assign the next id, build the row with *make(id)* and store it."""
        row_id = self._next_id
        row = make(row_id)
        self._rows[row_id] = row
        self._next_id += 1
        return row

    def get(self, row_id: int) -> Optional[T]:
        return self._rows.get(row_id)

    def get_or_raise(self, row_id: int) -> T:
        row = self._rows.get(row_id)
        if row is None:
            raise InvalidInputError(f"Unknown {self.name} #{row_id}")
        return row

    # ── Indexes ───────────────────────────────────────────────────────

    def index(self, index_name: str, key: Hashable, row_id: int):
        bucket = self._indexes.setdefault(index_name, {}).setdefault(key, [])
        if row_id not in bucket:
            bucket.append(row_id)

    def unindex(self, index_name: str, key: Hashable, row_id: int):
        bucket = self._indexes.get(index_name, {}).get(key)
        if bucket and row_id in bucket:
            bucket.remove(row_id)

    def lookup(self, index_name: str, key: Hashable) -> List[T]:
        ids = self._indexes.get(index_name, {}).get(key, [])
        return [self._rows[i] for i in ids]

    def lookup_one(self, index_name: str, key: Hashable) -> Optional[T]:
        ids = self._indexes.get(index_name, {}).get(key)
        return self._rows[ids[0]] if ids else None

    def keys(self, index_name: str) -> List[Hashable]:
        return [k for k, ids in self._indexes.get(index_name, {}).items() if ids]

    # ── Iteration ─────────────────────────────────────────────────────

    def rows(self) -> List[T]:
        return list(self._rows.values())

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._rows.values()))

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, row_id: Any) -> bool:
        return row_id in self._rows

    @property
    def next_id(self) -> int:
        return self._next_id

    def __repr__(self) -> str:
        return f"<Table {self.name} rows={len(self._rows)}>"
