"""Probes: route runtime state through live-configurable policy chains.

Code declares probes; operators decide, at runtime, which of them go
where. A probe firing captures the timestamp, call site, thread and user
data into a ProbeState. The engine looks up the firing's namespace and tags
in the config registry, finds the policy chain in the catalog and runs it:
transforms reshape or filter the state, a sink consumes it.

Example:
    from probes import probe, probe_fn, set_config, set_policy, make_memory, fixed_memory

    recent = make_memory()
    set_policy("recent", ["drop-thread-id", fixed_memory(recent, 100)])
    set_config("myapp.billing", {"debug", "fn"}, "recent")

    probe("debug", invoice=42)           # inside myapp.billing
    probe_fn("myapp.billing.charge")     # enter/exit probes on every call
"""

from probes.api import (
    get_policy,
    list_config,
    list_policies,
    probe,
    probe_fn,
    probe_module,
    probed_functions,
    redefine_fn,
    register_sink,
    remove_config,
    remove_policy,
    remove_sink,
    reset,
    set_config,
    set_policy,
    unprobe_fn,
    unprobe_module,
)
from probes.config import ConfigEntry, ConfigRegistry
from probes.catalog import Catalog
from probes.decorator import FunctionWrapper, WrapperState, instrument
from probes.engine import InstrumentationEngine, get_engine, set_engine
from probes.exceptions import (
    ConfigurationError,
    InstrumentationTargetMissing,
    ProbeError,
    StageExecutionFailure,
)
from probes.executor import PolicyExecutor
from probes.settings import ProbeSettings, get_settings, set_settings
from probes.stages import PolicyChain, Sink, Stage, StageRegistry, Transform, stage
from probes.state import ProbeState

# Import stage modules to trigger registration
from probes import transforms  # noqa: F401
from probes.sinks import (
    Counter,
    MemoryStore,
    counter,
    fixed_memory,
    make_counter,
    make_memory,
    memory,
)

__all__ = [
    # Firing
    "probe",
    "ProbeState",
    # Policies and routing
    "set_policy",
    "remove_policy",
    "get_policy",
    "list_policies",
    "set_config",
    "remove_config",
    "list_config",
    # Function instrumentation
    "probe_fn",
    "unprobe_fn",
    "redefine_fn",
    "probe_module",
    "unprobe_module",
    "probed_functions",
    "instrument",
    "FunctionWrapper",
    "WrapperState",
    # Sinks
    "make_memory",
    "memory",
    "fixed_memory",
    "make_counter",
    "counter",
    "MemoryStore",
    "Counter",
    "register_sink",
    "remove_sink",
    # Stages
    "Stage",
    "Transform",
    "Sink",
    "stage",
    "StageRegistry",
    "PolicyChain",
    # Engine
    "InstrumentationEngine",
    "Catalog",
    "ConfigRegistry",
    "ConfigEntry",
    "PolicyExecutor",
    "get_engine",
    "set_engine",
    "reset",
    # Settings
    "ProbeSettings",
    "get_settings",
    "set_settings",
    # Errors
    "ProbeError",
    "ConfigurationError",
    "InstrumentationTargetMissing",
    "StageExecutionFailure",
]
