"""Probe state model.

A ProbeState is the record produced by a single probe firing. It is an
immutable, ordered mapping: every operation that changes it returns a new
ProbeState, so chains can share and reorder stages without aliasing.
"""

import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Optional

# Reserved keys present on every firing
TS = "ts"
NS = "ns"
LINE = "line"
THREAD_ID = "thread-id"
TAGS = "tags"

# Reserved keys present on function probes
FNAME = "fname"
FN = "fn"
ARGS = "args"
KWARGS = "kwargs"
RETURN = "return"
EXCEPTION = "exception"


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def normalize_tags(tags: Any) -> FrozenSet[str]:
    """Turn a single tag or an iterable of tags into a frozenset.

    Args:
        tags: A tag string or an iterable of tag strings.

    Returns:
        Frozenset of tags.

    Raises:
        TypeError: If tags is neither a string nor an iterable of strings.
    """
    if isinstance(tags, str):
        return frozenset((tags,))
    if isinstance(tags, frozenset):
        return tags
    if tags is None:
        raise TypeError("tags must be a string or an iterable of strings, not None")
    result = frozenset(tags)
    for tag in result:
        if not isinstance(tag, str):
            raise TypeError(f"tag {tag!r} is not a string")
    return result


class ProbeState(Mapping):
    """Immutable ordered mapping of key to value.

    Keys are unique and keep insertion order. Use assoc, dissoc, select
    and merge to derive new states.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Mapping] = None, /, **values: Any) -> None:
        merged: Dict[str, Any] = dict(data) if data else {}
        if values:
            merged.update(values)
        self._data = merged

    @classmethod
    def build(
        cls,
        ns: str,
        tags: FrozenSet[str],
        values: Optional[Mapping] = None,
        line: Optional[int] = None,
        ts: Optional[datetime] = None,
    ) -> "ProbeState":
        """Build the state for a firing: reserved keys first, then user values."""
        data: Dict[str, Any] = {
            TS: ts or utc_now(),
            NS: ns,
            LINE: line,
            THREAD_ID: threading.get_ident(),
            TAGS: tags,
        }
        if values:
            data.update(values)
        state = cls.__new__(cls)
        state._data = data
        return state

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ProbeState):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ProbeState({self._data!r})"

    def assoc(self, **values: Any) -> "ProbeState":
        """Return a new state with the given keys set."""
        return ProbeState(self._data, **values)

    def merge(self, values: Mapping) -> "ProbeState":
        """Return a new state with every key of values set.

        Unlike assoc, keys do not need to be valid Python identifiers.
        """
        data = dict(self._data)
        data.update(values)
        return ProbeState(data)

    def dissoc(self, *keys: str) -> "ProbeState":
        """Return a new state without the given keys."""
        drop = set(keys)
        return ProbeState({k: v for k, v in self._data.items() if k not in drop})

    def select(self, keys: Iterable[str]) -> "ProbeState":
        """Return a new state holding only the given keys that are present.

        Order follows the original state, not the order of keys.
        """
        keep = set(keys)
        return ProbeState({k: v for k, v in self._data.items() if k in keep})

    def to_dict(self) -> Dict[str, Any]:
        """Get a plain mutable copy of the state."""
        return dict(self._data)

    @property
    def tags(self) -> FrozenSet[str]:
        """Tags the probe fired with, empty if dropped by a projection."""
        return self._data.get(TAGS, frozenset())
