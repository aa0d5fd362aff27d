"""Built-in sinks.

Sinks are terminal stages: they perform a side effect and end the chain.
Sinks with internal state (memory buffers, counters) guard it with their
own lock so many threads can fire into them at once.

Importing this module registers the sinks in the StageRegistry.
"""

import sys
import threading
from collections import Counter as _Tally
from collections import deque
from typing import Any, Dict, Iterator, List, Optional, TextIO

from probes.exceptions import ConfigurationError
from probes.settings import ProbeSettings, get_settings
from probes.stages import Sink, Stage, stage
from probes.state import NS, ProbeState
from probes.utils.serialization import format_state_line, format_state_raw

# Serializes console writes so lines from different threads never interleave
_console_lock = threading.Lock()


def _standard_stream(name: str) -> TextIO:
    # Looked up on every write so redirected streams are honored
    return sys.stdout if name == "stdout" else sys.stderr


class ConsoleSink(Sink):
    """Write each state as one formatted line with a timestamp prefix."""

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        stream: Optional[TextIO] = None,
        name: str = "console",
    ) -> None:
        super().__init__(name=name)
        self._settings = settings
        self._stream = stream

    @property
    def settings(self) -> ProbeSettings:
        return self._settings or get_settings()

    def render(self, state: ProbeState) -> str:
        settings = self.settings
        return format_state_line(
            state,
            timestamp_format=settings.timestamp_format,
            max_length=settings.max_value_length,
        )

    def emit(self, state: ProbeState) -> None:
        line = self.render(state)
        stream = self._stream or _standard_stream(self.settings.console_stream)
        with _console_lock:
            stream.write(line + "\n")
            stream.flush()


class RawConsoleSink(ConsoleSink):
    """Write each state as a structured literal, without formatting."""

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        stream: Optional[TextIO] = None,
        name: str = "console-raw",
    ) -> None:
        super().__init__(settings=settings, stream=stream, name=name)

    def render(self, state: ProbeState) -> str:
        return format_state_raw(state)


class MemoryStore:
    """Thread-safe buffer of probe states, most recent first.

    A store is a handle: memory and fixed-memory sinks write into it and
    the owner reads it back with contents() or by iterating.
    """

    def __init__(self) -> None:
        self._items: deque = deque()
        self._lock = threading.Lock()

    def push(self, state: ProbeState, capacity: Optional[int] = None) -> None:
        """Insert a state at the front, evicting the oldest beyond capacity."""
        with self._lock:
            self._items.appendleft(state)
            if capacity is not None:
                while len(self._items) > capacity:
                    self._items.pop()

    def contents(self) -> List[ProbeState]:
        """Get a snapshot of the stored states, most recent first."""
        with self._lock:
            return list(self._items)

    def values(self, key: str) -> List[Any]:
        """Get one key of every stored state, most recent first."""
        return [state.get(key) for state in self.contents()]

    def clear(self) -> None:
        """Drop all stored states."""
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ProbeState]:
        return iter(self.contents())

    def __repr__(self) -> str:
        return f"MemoryStore(size={len(self)})"


class MemorySink(Sink):
    """Append states to a MemoryStore, optionally keeping only the last N."""

    def __init__(self, store: MemoryStore, capacity: Optional[int] = None) -> None:
        if not isinstance(store, MemoryStore):
            raise ConfigurationError(f"memory sink needs a MemoryStore, got {store!r}")
        if capacity is not None and (
            isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1
        ):
            raise ConfigurationError(f"fixed-memory capacity must be a positive int, got {capacity!r}")
        super().__init__(name="memory" if capacity is None else "fixed-memory")
        self.store = store
        self.capacity = capacity

    def emit(self, state: ProbeState) -> None:
        self.store.push(state, self.capacity)


class Counter:
    """Thread-safe tallies of firings by namespace and by tag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0
        self._by_ns: _Tally = _Tally()
        self._by_tag: _Tally = _Tally()

    def record(self, state: ProbeState) -> None:
        """Count one firing."""
        with self._lock:
            self._total += 1
            self._by_ns[state.get(NS)] += 1
            self._by_tag.update(state.tags)

    @property
    def total(self) -> int:
        return self._total

    def by_namespace(self) -> Dict[Any, int]:
        """Get a copy of the per-namespace counts."""
        with self._lock:
            return dict(self._by_ns)

    def by_tag(self) -> Dict[str, int]:
        """Get a copy of the per-tag counts."""
        with self._lock:
            return dict(self._by_tag)

    def reset(self) -> None:
        """Set every count back to zero."""
        with self._lock:
            self._total = 0
            self._by_ns.clear()
            self._by_tag.clear()


class CounterSink(Sink):
    """Count states into a Counter."""

    def __init__(self, counter: Counter) -> None:
        if not isinstance(counter, Counter):
            raise ConfigurationError(f"counter sink needs a Counter, got {counter!r}")
        super().__init__(name="counter")
        self.counter = counter

    def emit(self, state: ProbeState) -> None:
        self.counter.record(state)


def make_memory() -> MemoryStore:
    """Create a new, empty memory store handle."""
    return MemoryStore()


def make_counter() -> Counter:
    """Create a new counter handle."""
    return Counter()


@stage("console-log")
@stage("console")
def console() -> Stage:
    """Formatted one-line console output."""
    return ConsoleSink()


@stage("console-raw")
def console_raw() -> Stage:
    """Raw structured console output."""
    return RawConsoleSink()


@stage("memory")
def memory(store: MemoryStore) -> Stage:
    """Unbounded memory sink writing into store."""
    return MemorySink(store)


@stage("fixed-memory")
def fixed_memory(store: MemoryStore, capacity: int) -> Stage:
    """Memory sink keeping the last capacity states in store."""
    return MemorySink(store, capacity)


@stage("counter")
def counter(tally: Counter) -> Stage:
    """Sink counting states into tally."""
    return CounterSink(tally)
