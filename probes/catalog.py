"""Catalog of named policy chains.

Readers take the current snapshot with a single attribute read and never
lock. Writers serialize on a lock, copy the snapshot, change the copy and
swap the reference, so a reader sees either the old or the new catalog.
"""

import logging
import threading
from types import MappingProxyType
from typing import Any, List, Mapping, Optional

from probes.exceptions import ConfigurationError
from probes.stages import PolicyChain, build_chain

logger = logging.getLogger(__name__)


class Catalog:
    """Registry of policy name to PolicyChain."""

    def __init__(self) -> None:
        self._snapshot: Mapping[str, PolicyChain] = MappingProxyType({})
        self._write_lock = threading.Lock()

    @property
    def snapshot(self) -> Mapping[str, PolicyChain]:
        """The current read-only policy mapping."""
        return self._snapshot

    def get(self, name: str) -> Optional[PolicyChain]:
        """Get a policy chain by name, None if undefined."""
        return self._snapshot.get(name)

    def set_policy(self, name: str, chain: Any) -> PolicyChain:
        """Define or redefine a named policy.

        Args:
            name: Policy name.
            chain: Chain descriptor (list of stage names, (name, *args)
                tuples, Stage instances or callables) or a PolicyChain.

        Returns:
            The resolved PolicyChain.

        Raises:
            ConfigurationError: If the name is invalid or any stage cannot
                be resolved.
        """
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"Policy name must be a non-empty string, got {name!r}")
        resolved = build_chain(name, chain)
        if resolved.name != name:
            resolved = resolved.model_copy(update={"name": name})
        with self._write_lock:
            updated = dict(self._snapshot)
            updated[name] = resolved
            self._snapshot = MappingProxyType(updated)
        logger.debug(f"Policy '{name}' set: {resolved.stage_names()}")
        return resolved

    def remove_policy(self, name: str) -> bool:
        """Remove a policy. Returns False if it was not defined."""
        with self._write_lock:
            if name not in self._snapshot:
                return False
            updated = dict(self._snapshot)
            del updated[name]
            self._snapshot = MappingProxyType(updated)
        logger.debug(f"Policy '{name}' removed")
        return True

    def names(self) -> List[str]:
        """Get all policy names in definition order."""
        return list(self._snapshot.keys())

    def clear(self) -> None:
        """Remove every policy."""
        with self._write_lock:
            self._snapshot = MappingProxyType({})
