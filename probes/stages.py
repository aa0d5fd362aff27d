"""Pipeline stages and the stage registry.

A stage is anything with apply(state) -> Optional[ProbeState]. Two
variants exist: a Transform returns a new state (or None to drop the
event), a Sink performs a side effect and always ends the chain.

Stages are referenced from chain descriptors by name. The StageRegistry
maps those names to factories and resolves descriptors to concrete stages
when a policy is defined, so an unknown name fails at definition time.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from probes.exceptions import ConfigurationError
from probes.state import ProbeState

logger = logging.getLogger(__name__)


class Stage(ABC):
    """A single step of a policy chain."""

    #: Execution stops after a terminal stage
    terminal: ClassVar[bool] = False

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def apply(self, state: ProbeState) -> Optional[ProbeState]:
        """Process a state. None ends the chain."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class Transform(Stage):
    """A stage computing a new state from the current one.

    fn is called as fn(state, *args). Returning None drops the event,
    which is how filters such as sampling work.
    """

    def __init__(self, fn: Callable[..., Any], *args: Any, name: Optional[str] = None):
        super().__init__(name or getattr(fn, "__name__", type(fn).__name__))
        self.fn = fn
        self.args = args

    def apply(self, state: ProbeState) -> Optional[ProbeState]:
        result = self.fn(state, *self.args)
        if result is None or isinstance(result, ProbeState):
            return result
        if isinstance(result, Mapping):
            return ProbeState(result)
        raise TypeError(
            f"Transform '{self.name}' returned {type(result).__name__}, "
            "expected a mapping or None"
        )


class Sink(Stage):
    """A terminal stage with a side effect. Always yields None."""

    terminal = True

    def __init__(self, fn: Optional[Callable[[ProbeState], Any]] = None, name: Optional[str] = None):
        super().__init__(name or getattr(fn, "__name__", type(self).__name__.lower()))
        self.fn = fn

    def apply(self, state: ProbeState) -> None:
        self.emit(state)
        return None

    def emit(self, state: ProbeState) -> None:
        """Perform the side effect. Subclasses override this."""
        if self.fn is None:
            raise NotImplementedError(f"Sink '{self.name}' has no function")
        self.fn(state)


class PolicyChain(BaseModel):
    """An immutable, named sequence of resolved stages."""

    name: str = Field(..., min_length=1, description="Policy name")
    stages: Tuple[Stage, ...] = Field(..., description="Stages in execution order")

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("stages")
    @classmethod
    def _not_empty(cls, stages: Tuple[Stage, ...]) -> Tuple[Stage, ...]:
        if not stages:
            raise ValueError("a policy chain needs at least one stage")
        return stages

    def stage_names(self) -> List[str]:
        """Get the stage names in order."""
        return [stage.name for stage in self.stages]


class StageRegistry:
    """Global registry of stage factories by name.

    A factory is called with the arguments of the chain descriptor and
    returns a Stage. Built-in stages register themselves when
    probes.transforms and probes.sinks are imported.
    """

    _factories: ClassVar[Dict[str, Callable[..., Stage]]] = {}

    @classmethod
    def register(cls, name: str, factory: Callable[..., Stage], replace: bool = False) -> None:
        """Register a stage factory.

        Args:
            name: Name chains use to reference the stage.
            factory: Callable returning a Stage.
            replace: Allow overwriting an existing name.

        Raises:
            ConfigurationError: If the name is taken and replace is False.
        """
        if not name or not isinstance(name, str):
            raise ConfigurationError(f"Stage name must be a non-empty string, got {name!r}")
        if name in cls._factories and not replace:
            raise ConfigurationError(f"Stage '{name}' already registered.")
        cls._factories[name] = factory
        logger.debug(f"Registered stage: {name}")

    @classmethod
    def unregister(cls, name: str) -> bool:
        """Remove a stage name. Returns False if it was not registered."""
        return cls._factories.pop(name, None) is not None

    @classmethod
    def get(cls, name: str) -> Optional[Callable[..., Stage]]:
        """Get a stage factory by name."""
        return cls._factories.get(name)

    @classmethod
    def names(cls) -> List[str]:
        """Get all registered stage names."""
        return list(cls._factories.keys())

    @classmethod
    def clear(cls) -> None:
        """Clear the registry. Useful for testing."""
        cls._factories = {}

    @classmethod
    def build(cls, name: str, *args: Any) -> Stage:
        """Build a stage from its registered name and arguments.

        Raises:
            ConfigurationError: If the name is unknown or the arguments do
                not fit the factory.
        """
        factory = cls._factories.get(name)
        if factory is None:
            raise ConfigurationError(
                f"Unknown stage '{name}'. Registered stages: {', '.join(sorted(cls._factories))}"
            )
        try:
            inspect.signature(factory).bind(*args)
        except TypeError as e:
            raise ConfigurationError(f"Bad arguments for stage '{name}': {e}")
        except ValueError:
            # No introspectable signature; let the factory validate
            pass
        stage = factory(*args)
        if not isinstance(stage, Stage):
            raise ConfigurationError(
                f"Factory for stage '{name}' returned {type(stage).__name__}, not a Stage"
            )
        return stage


def stage(name: str):
    """Decorator registering a stage factory under name.

    Example:
        @stage("drop-thread-id")
        def drop_thread_id() -> Stage:
            return Transform(lambda s: s.dissoc("thread-id"), name="drop-thread-id")
    """

    def decorator(factory: Callable[..., Stage]) -> Callable[..., Stage]:
        StageRegistry.register(name, factory, replace=True)
        return factory

    return decorator


def resolve_stage(descriptor: Any) -> Stage:
    """Resolve one chain descriptor item to a Stage.

    Accepted forms: a Stage instance, a registered name, a tuple of
    (name, *args), or a plain callable used as a Transform.

    Raises:
        ConfigurationError: If the descriptor cannot be resolved.
    """
    if isinstance(descriptor, Stage):
        return descriptor
    if isinstance(descriptor, str):
        return StageRegistry.build(descriptor)
    if isinstance(descriptor, tuple):
        if not descriptor or not isinstance(descriptor[0], str):
            raise ConfigurationError(
                f"Parameterized stage must be (name, *args), got {descriptor!r}"
            )
        return StageRegistry.build(descriptor[0], *descriptor[1:])
    if callable(descriptor):
        return Transform(descriptor)
    raise ConfigurationError(f"Cannot resolve stage descriptor {descriptor!r}")


def build_chain(name: str, descriptors: Any) -> PolicyChain:
    """Resolve a chain descriptor into a PolicyChain.

    Args:
        name: Name of the policy.
        descriptors: A single descriptor or a sequence of descriptors.

    Raises:
        ConfigurationError: If any stage is unknown or the chain is malformed.
    """
    if isinstance(descriptors, PolicyChain):
        return descriptors
    if isinstance(descriptors, (str, tuple, Stage)) or callable(descriptors):
        items: Sequence[Any] = [descriptors]
    elif isinstance(descriptors, (list, Sequence)):
        items = descriptors
    else:
        raise ConfigurationError(
            f"Policy '{name}' must be a stage or a list of stages, got {type(descriptors).__name__}"
        )
    stages = tuple(resolve_stage(item) for item in items)
    try:
        return PolicyChain(name=name, stages=stages)
    except ValueError as e:
        raise ConfigurationError(f"Invalid policy '{name}': {e}")
