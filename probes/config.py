"""Config registry: which policy handles a firing.

Entries map (namespace, tag-set) to a policy name or an inline chain. A
firing with tags T under namespace N matches entry (N, S) when T and S
share at least one tag. Among the entries of N, the first inserted match
wins. Namespaces are matched exactly; there is no fallback to a parent
namespace.

Like the Catalog, the registry is a copy-on-write snapshot swapped under
a writer lock, so firings read it without locking.
"""

import logging
import threading
import types
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from probes.exceptions import ConfigurationError
from probes.stages import PolicyChain, build_chain
from probes.state import normalize_tags

logger = logging.getLogger(__name__)


def namespace_name(namespace: Any) -> str:
    """Get the namespace string of a module or a string."""
    if isinstance(namespace, types.ModuleType):
        return namespace.__name__
    return namespace


class ConfigEntry(BaseModel):
    """Route firings under a namespace with any of tags to a policy."""

    namespace: str = Field(..., min_length=1, description="Exact namespace matched")
    tags: FrozenSet[str] = Field(..., description="Tags of interest")
    policy: Union[str, PolicyChain] = Field(
        ..., description="Catalog policy name, or an inline chain"
    )

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("namespace", mode="before")
    @classmethod
    def _module_to_name(cls, value: Any) -> Any:
        return namespace_name(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> FrozenSet[str]:
        tags = normalize_tags(value)
        if not tags:
            raise ValueError("at least one tag is required")
        return tags

    @field_validator("policy")
    @classmethod
    def _policy_name_not_empty(cls, value: Union[str, PolicyChain]) -> Union[str, PolicyChain]:
        if isinstance(value, str) and not value:
            raise ValueError("policy name must not be empty")
        return value

    @property
    def key(self) -> Tuple[str, FrozenSet[str]]:
        return (self.namespace, self.tags)

    def matches(self, tags: Union[str, FrozenSet[str]]) -> bool:
        """True if tags intersect this entry's tags."""
        if isinstance(tags, str):
            return tags in self.tags
        return not self.tags.isdisjoint(tags)


class ConfigSnapshot:
    """Immutable view of every config entry, indexed by namespace."""

    __slots__ = ("entries", "interest")

    def __init__(self, entries: Mapping[str, Tuple[ConfigEntry, ...]]) -> None:
        self.entries = types.MappingProxyType(dict(entries))
        # Union of tags per namespace, for the disabled-probe fast path
        self.interest = types.MappingProxyType(
            {
                ns: frozenset().union(*(entry.tags for entry in ns_entries))
                for ns, ns_entries in entries.items()
            }
        )

    def is_enabled(self, namespace: str, tags: Union[str, Iterable[str]]) -> bool:
        """True if any entry of namespace could match tags."""
        interest = self.interest.get(namespace)
        if not interest:
            return False
        if isinstance(tags, str):
            return tags in interest
        return not interest.isdisjoint(tags)

    def match(self, namespace: str, tags: Union[str, FrozenSet[str]]) -> Optional[ConfigEntry]:
        """Get the first inserted entry of namespace matching tags."""
        for entry in self.entries.get(namespace, ()):
            if entry.matches(tags):
                return entry
        return None

    def all(self) -> List[ConfigEntry]:
        return [entry for ns_entries in self.entries.values() for entry in ns_entries]


class ConfigRegistry:
    """Process-wide routing table from (namespace, tags) to policy."""

    def __init__(self) -> None:
        self._snapshot = ConfigSnapshot({})
        # Insertion-ordered by (namespace, tags); only touched under the lock
        self._entries: Dict[Tuple[str, FrozenSet[str]], ConfigEntry] = {}
        self._write_lock = threading.Lock()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """The current read-only config snapshot."""
        return self._snapshot

    def _publish(self) -> None:
        by_namespace: Dict[str, List[ConfigEntry]] = {}
        for entry in self._entries.values():
            by_namespace.setdefault(entry.namespace, []).append(entry)
        self._snapshot = ConfigSnapshot(
            {ns: tuple(entries) for ns, entries in by_namespace.items()}
        )

    def set_config(self, namespace: Any, tags: Any, policy: Any) -> ConfigEntry:
        """Add or replace the entry for (namespace, tags).

        Replacing an existing (namespace, tags) entry keeps its position in
        the resolution order.

        Args:
            namespace: Namespace string or module object.
            tags: A tag or an iterable of tags.
            policy: Catalog policy name, or an inline chain descriptor.

        Returns:
            The stored ConfigEntry.

        Raises:
            ConfigurationError: If any argument is malformed or an inline
                chain references an unknown stage.
        """
        if not isinstance(policy, (str, PolicyChain)):
            try:
                label = ",".join(sorted(normalize_tags(tags)))
            except TypeError as e:
                raise ConfigurationError(f"Invalid config tags {tags!r}: {e}")
            policy = build_chain(f"{namespace_name(namespace)}[{label}]", policy)
        try:
            entry = ConfigEntry(namespace=namespace, tags=tags, policy=policy)
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid config entry: {e}")

        with self._write_lock:
            self._entries[entry.key] = entry
            self._publish()
        logger.debug(
            f"Config set: {entry.namespace} {sorted(entry.tags)} -> "
            f"{entry.policy if isinstance(entry.policy, str) else entry.policy.stage_names()}"
        )
        return entry

    def remove_config(self, namespace: Any, tags: Any) -> bool:
        """Remove the entry for exactly (namespace, tags).

        Returns:
            False if no such entry existed.
        """
        try:
            key = (namespace_name(namespace), normalize_tags(tags))
        except TypeError as e:
            raise ConfigurationError(f"Invalid config tags {tags!r}: {e}")
        with self._write_lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            self._publish()
        logger.debug(f"Config removed: {key[0]} {sorted(key[1])}")
        return True

    def entries(self, namespace: Any = None) -> List[ConfigEntry]:
        """Get entries in resolution order, optionally for one namespace."""
        snapshot = self._snapshot
        if namespace is None:
            return snapshot.all()
        return list(snapshot.entries.get(namespace_name(namespace), ()))

    def clear(self) -> None:
        """Remove every entry."""
        with self._write_lock:
            self._entries = {}
            self._publish()
