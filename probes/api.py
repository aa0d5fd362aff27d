"""Module-level API bound to the default engine.

These functions are what instrumented code and operators use:

    from probes import probe, set_policy, set_config

    set_policy("console", ["drop-thread-id", "console"])
    set_config("myapp.orders", "debug", "console")

    def place(order):
        probe("debug", order_id=order.id)
"""

import sys
from typing import Any, List, Optional

from probes import decorator
from probes.config import ConfigEntry
from probes.decorator import FN_TAG, FunctionWrapper, WrapperRegistry
from probes.engine import get_engine
from probes.exceptions import ConfigurationError
from probes.stages import PolicyChain, Stage, StageRegistry


def probe(tags: Any, **values: Any) -> None:
    """Fire a probe under the caller's namespace.

    Does nothing, and allocates no state, unless a config entry of the
    caller's module is interested in one of tags.

    Args:
        tags: A tag or an iterable of tags.
        **values: Keys merged into the probe state.
    """
    get_engine().fire_from_frame(sys._getframe(1), tags, values)


def set_policy(name: str, chain: Any) -> PolicyChain:
    """Define or redefine a named policy chain.

    Raises:
        ConfigurationError: If the chain references an unknown stage.
    """
    return get_engine().set_policy(name, chain)


def remove_policy(name: str) -> bool:
    """Remove a named policy chain."""
    return get_engine().remove_policy(name)


def get_policy(name: str) -> Optional[PolicyChain]:
    """Get a named policy chain."""
    return get_engine().get_policy(name)


def list_policies() -> List[str]:
    """Get every policy name."""
    return get_engine().list_policies()


def set_config(namespace: Any, tags: Any, policy: Any) -> ConfigEntry:
    """Route firings under namespace with any of tags to a policy.

    Args:
        namespace: Module or module name.
        tags: A tag or an iterable of tags.
        policy: Policy name, or an inline chain descriptor.

    Raises:
        ConfigurationError: If any argument is malformed.
    """
    return get_engine().set_config(namespace, tags, policy)


def remove_config(namespace: Any, tags: Any) -> bool:
    """Remove the routing entry for (namespace, tags)."""
    return get_engine().remove_config(namespace, tags)


def list_config(namespace: Any = None) -> List[ConfigEntry]:
    """Get routing entries in resolution order."""
    return get_engine().list_config(namespace)


def probe_fn(target: Any, tags: Any = FN_TAG) -> FunctionWrapper:
    """Instrument a function so its calls fire function probes.

    Raises:
        InstrumentationTargetMissing: If target cannot be resolved.
    """
    return decorator.enable_probe(target, tags)


def unprobe_fn(target: Any) -> bool:
    """Remove instrumentation from a function.

    Raises:
        InstrumentationTargetMissing: If target cannot be resolved.
    """
    return decorator.disable_probe(target)


def redefine_fn(target: Any, implementation: Any) -> None:
    """Redefine a function, keeping its instrumentation."""
    decorator.redefine_function(target, implementation)


def probe_module(module: Any, tags: Any = FN_TAG) -> List[str]:
    """Instrument every public function defined in a module."""
    return decorator.enable_module(module, tags)


def unprobe_module(module: Any) -> List[str]:
    """Remove instrumentation from every function of a module."""
    return decorator.disable_module(module)


def probed_functions() -> List[str]:
    """Get the identifiers of instrumented functions."""
    return WrapperRegistry.identifiers()


def register_sink(name: str, sink: Stage) -> None:
    """Make a stage instance available to chains under name.

    Raises:
        ConfigurationError: If name is already taken.
    """
    if not isinstance(sink, Stage):
        raise ConfigurationError(f"register_sink needs a Stage, got {sink!r}")
    StageRegistry.register(name, lambda: sink)


def remove_sink(name: str) -> bool:
    """Remove a stage name registered with register_sink."""
    return StageRegistry.unregister(name)


def reset() -> None:
    """Clear the default engine's policies and routing, and unwrap every function."""
    WrapperRegistry.clear()
    get_engine().reset()
