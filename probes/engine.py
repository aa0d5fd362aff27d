"""Instrumentation engine.

The engine owns the two copy-on-write registries (Catalog and Config), the
policy executor and the fallback channel stage failures are reported to.
A firing reads the config snapshot once, returns immediately when no entry
of the namespace is interested in its tags, and otherwise builds the state
and runs the matching chain on the calling thread.
"""

import logging
import sys
import types
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from probes.catalog import Catalog
from probes.config import ConfigEntry, ConfigRegistry, ConfigSnapshot
from probes.decorator import (
    FN_TAG,
    FunctionWrapper,
    WrapperRegistry,
    disable_module,
    disable_probe,
    enable_module,
    enable_probe,
    redefine_function,
)
from probes.exceptions import StageExecutionFailure
from probes.executor import FallbackChannel, PolicyExecutor
from probes.settings import ProbeSettings, get_settings
from probes.stages import PolicyChain
from probes.state import ProbeState, normalize_tags

logger = logging.getLogger(__name__)

# Last-resort channel for stage failures
error_logger = logging.getLogger("probes.errors")


class InstrumentationEngine:
    """Routes probe firings through configured policy chains.

    Usage:
        engine = InstrumentationEngine()
        engine.set_policy("console", ["drop-thread-id", "console"])
        engine.set_config("myapp.orders", {"debug"}, "console")
        engine.fire("myapp.orders", {"debug"}, {"value": 10})
    """

    def __init__(
        self,
        settings: Optional[ProbeSettings] = None,
        fallback: Optional[FallbackChannel] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = Catalog()
        self.config = ConfigRegistry()
        self.executor = PolicyExecutor(fallback or self.report_failure)

    def report_failure(self, failure: StageExecutionFailure) -> None:
        """Default fallback channel: log the failure with its traceback."""
        if not self.settings.report_stage_errors:
            return
        error = failure.error
        error_logger.error(
            f"Probe stage failed: {failure}",
            exc_info=(type(error), error, error.__traceback__),
        )

    # ==================== Catalog ====================

    def set_policy(self, name: str, chain: Any) -> PolicyChain:
        """Define or redefine a named policy chain."""
        return self.catalog.set_policy(name, chain)

    def remove_policy(self, name: str) -> bool:
        """Remove a named policy chain."""
        return self.catalog.remove_policy(name)

    def get_policy(self, name: str) -> Optional[PolicyChain]:
        """Get a policy chain by name."""
        return self.catalog.get(name)

    def list_policies(self) -> List[str]:
        """Get every policy name."""
        return self.catalog.names()

    # ==================== Config ====================

    def set_config(self, namespace: Any, tags: Any, policy: Any) -> ConfigEntry:
        """Route firings under namespace with any of tags to policy."""
        return self.config.set_config(namespace, tags, policy)

    def remove_config(self, namespace: Any, tags: Any) -> bool:
        """Remove the routing entry for (namespace, tags)."""
        return self.config.remove_config(namespace, tags)

    def list_config(self, namespace: Any = None) -> List[ConfigEntry]:
        """Get routing entries in resolution order."""
        return self.config.entries(namespace)

    def reset(self) -> None:
        """Clear every policy and routing entry."""
        self.config.clear()
        self.catalog.clear()

    # ==================== Firing ====================

    def is_enabled(self, namespace: str, tags: Any) -> bool:
        """True if a firing under namespace with tags would be routed."""
        return self.config.snapshot.is_enabled(namespace, tags)

    def resolve(self, namespace: str, tags: Any) -> Optional[PolicyChain]:
        """Get the chain a firing under namespace with tags would run."""
        entry = self.config.snapshot.match(namespace, tags)
        if entry is None:
            return None
        return self._chain_for(entry)

    def _chain_for(self, entry: ConfigEntry) -> Optional[PolicyChain]:
        policy = entry.policy
        if isinstance(policy, PolicyChain):
            return policy
        return self.catalog.get(policy)

    def fire(
        self,
        namespace: Any,
        tags: Any,
        values: Optional[Mapping[str, Any]] = None,
        line: Optional[int] = None,
    ) -> Optional[ProbeState]:
        """Fire a probe under an explicit namespace.

        Args:
            namespace: Namespace string or module.
            tags: A tag or an iterable of tags.
            values: User keys merged into the state.
            line: Source line of the firing, if known.

        Returns:
            The final state when the chain ends without a sink, otherwise
            None (including when nothing is routed).
        """
        if isinstance(namespace, types.ModuleType):
            namespace = namespace.__name__
        snapshot = self.config.snapshot
        tagset = self._routed_tags(snapshot, namespace, tags)
        if tagset is None:
            return None
        entry = snapshot.match(namespace, tagset)
        if entry is None:
            return None
        chain = self._chain_for(entry)
        if chain is None:
            logger.debug(f"Policy '{entry.policy}' routed from {namespace} is not defined")
            return None
        return self.executor.execute(chain, ProbeState.build(namespace, tagset, values, line))

    @staticmethod
    def _routed_tags(snapshot: ConfigSnapshot, namespace: str, tags: Any) -> Optional[FrozenSet[str]]:
        """Normalized tags if namespace is interested in any of them, else None.

        Malformed tags are reported on the error logger and yield None.
        """
        if namespace not in snapshot.interest:
            return None
        try:
            tagset = normalize_tags(tags)
        except TypeError as e:
            error_logger.error(f"Probe fired from {namespace} with invalid tags {tags!r}: {e}")
            return None
        if not snapshot.is_enabled(namespace, tagset):
            return None
        return tagset

    def fire_from_frame(self, frame: Any, tags: Any, values: Dict[str, Any]) -> None:
        """Fire a probe attributed to the code running in frame."""
        namespace = frame.f_globals.get("__name__", "__main__")
        if namespace not in self.config.snapshot.interest:
            return None
        line = frame.f_lineno if self.settings.capture_line else None
        self.fire(namespace, tags, values, line=line)
        return None

    def probe(self, tags: Any, **values: Any) -> None:
        """Fire a probe under the caller's namespace."""
        self.fire_from_frame(sys._getframe(1), tags, values)

    # ==================== Function instrumentation ====================

    def probe_fn(self, target: Any, tags: Any = FN_TAG) -> FunctionWrapper:
        """Instrument a function; its probes fire through this engine."""
        return enable_probe(target, tags, engine=self)

    def unprobe_fn(self, target: Any) -> bool:
        """Remove instrumentation from a function."""
        return disable_probe(target)

    def redefine_fn(self, target: Any, implementation: Any) -> None:
        """Redefine a function, keeping its instrumentation."""
        redefine_function(target, implementation)

    def probe_module(self, module: Any, tags: Any = FN_TAG) -> List[str]:
        """Instrument every public function of a module."""
        return enable_module(module, tags, engine=self)

    def unprobe_module(self, module: Any) -> List[str]:
        """Remove instrumentation from every function of a module."""
        return disable_module(module)

    @staticmethod
    def probed_functions() -> List[str]:
        """Get the identifiers of instrumented functions."""
        return WrapperRegistry.identifiers()

    def __repr__(self) -> str:
        return (
            f"InstrumentationEngine(policies={len(self.catalog.snapshot)}, "
            f"config_entries={len(self.config.snapshot.all())})"
        )


# Process-wide default engine
_engine: Optional[InstrumentationEngine] = None


def get_engine() -> InstrumentationEngine:
    """Get the default engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = InstrumentationEngine()
    return _engine


def set_engine(engine: Optional[InstrumentationEngine]) -> None:
    """Replace the default engine. None creates a fresh one lazily."""
    global _engine
    _engine = engine

