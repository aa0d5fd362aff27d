"""Function instrumentation.

probe_fn replaces the binding of a function (a module attribute or a
class attribute) with a proxy that fires enter, exit and exception probes
around each call. The proxy never closes over the implementation it
replaced: it reads its FunctionWrapper's implementation slot on every
call, so redefining the function while it is wrapped takes effect without
re-enabling.

Redefinition is followed when it goes through:
- assignment to the module attribute (module.f = g), intercepted on
  watched modules
- redefine_fn(target, impl), for any owner
- probe_fn on a binding that was replaced behind the wrapper's back (for
  example by importlib.reload), which adopts the new binding
"""

import functools
import inspect
import logging
import sys
import threading
import types
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, FrozenSet, List, Optional

from probes.exceptions import ConfigurationError, InstrumentationTargetMissing
from probes.introspection import (
    WRAPPER_ATTR,
    Target,
    extract_signature,
    raw_attribute,
    resolve_target,
    split_arguments,
    unwrap_descriptor,
)
from probes.state import ARGS, EXCEPTION, FN, FNAME, KWARGS, RETURN, normalize_tags

logger = logging.getLogger(__name__)

# Function probe tags
FN_TAG = "fn"
ENTER_FN = "enter-fn"
EXIT_FN = "exit-fn"
EXCEPT_FN = "except-fn"
PHASE_TAGS = frozenset({FN_TAG, ENTER_FN, EXIT_FN, EXCEPT_FN})

# Guards enable/disable/redefine; calls through proxies never take it
_lock = threading.RLock()


class WrapperState(str, Enum):
    """Lifecycle of a FunctionWrapper."""

    UNWRAPPED = "unwrapped"
    WRAPPED = "wrapped"


def _phase_tags(tags: FrozenSet[str], *phase: str) -> Optional[FrozenSet[str]]:
    """Tags to fire a phase with, None if the phase is not active."""
    active = tags.intersection(phase)
    if not active:
        return None
    return (tags - PHASE_TAGS) | active


class FunctionWrapper:
    """Instrumentation record of one function binding.

    Attributes:
        identifier: Dotted identifier reported as fname.
        owner: Module or class holding the binding.
        attribute: Attribute name on owner.
        module: Namespace function probes fire under.
        implementation: The current implementation, read on every call.
        tags: Active tags.
        state: WRAPPED while the proxy is bound.
    """

    def __init__(
        self,
        target: Target,
        binding: Any,
        tags: FrozenSet[str],
        engine: Optional[Any] = None,
    ) -> None:
        self.identifier = target.identifier
        self.owner = target.owner
        self.attribute = target.attribute
        self.module = target.module
        self.engine = engine
        self.state = WrapperState.UNWRAPPED
        self.proxy: Optional[Callable[..., Any]] = None
        # Class attributes inherited from a base are deleted, not restored
        self._owned = not isinstance(self.owner, type) or self.attribute in vars(self.owner)
        self._set_binding(binding)
        self.set_tags(tags)

    # ==================== State ====================

    @property
    def is_wrapped(self) -> bool:
        return self.state is WrapperState.WRAPPED

    @property
    def tags(self) -> FrozenSet[str]:
        """Active tags."""
        return self._phases[0]

    def set_tags(self, tags: FrozenSet[str]) -> None:
        """Replace the active tags."""
        # Published as one tuple so a call never mixes old and new phases
        self._phases = (
            tags,
            _phase_tags(tags, FN_TAG, ENTER_FN),
            _phase_tags(tags, FN_TAG, EXIT_FN),
            _phase_tags(tags, EXCEPT_FN),
        )

    def _set_binding(self, binding: Any) -> None:
        self.descriptor = type(binding) if isinstance(binding, (staticmethod, classmethod)) else None
        implementation = unwrap_descriptor(binding)
        if not callable(implementation):
            raise InstrumentationTargetMissing(self.identifier, "not callable")
        self.implementation = implementation
        self._signature = extract_signature(implementation)

    def _binding_for(self, fn: Callable[..., Any]) -> Any:
        return self.descriptor(fn) if self.descriptor else fn

    def _bind(self, value: Any) -> None:
        if isinstance(self.owner, types.ModuleType):
            # Bypass the watcher installed on the module
            types.ModuleType.__setattr__(self.owner, self.attribute, value)
        else:
            setattr(self.owner, self.attribute, value)

    def wrap(self) -> None:
        """Bind a proxy in place of the implementation (unwrapped -> wrapped)."""
        self.proxy = self._build_proxy()
        self._bind(self._binding_for(self.proxy))
        self.state = WrapperState.WRAPPED

    def unwrap(self) -> None:
        """Bind the current implementation again (wrapped -> unwrapped)."""
        if not self._owned and isinstance(self.owner, type):
            delattr(self.owner, self.attribute)
        else:
            self._bind(self._binding_for(self.implementation))
        self.state = WrapperState.UNWRAPPED

    def redefine(self, binding: Any) -> None:
        """Point the wrapper at a new implementation (wrapped -> wrapped)."""
        was_async = inspect.iscoroutinefunction(self.implementation)
        self._set_binding(binding)
        if not self.is_wrapped:
            return
        if inspect.iscoroutinefunction(self.implementation) != was_async:
            self.wrap()
        elif self.proxy is not None:
            self.proxy.__wrapped__ = self.implementation  # type: ignore[attr-defined]
        logger.debug(f"Probed function redefined: {self.identifier}")

    def bound_proxy_is_current(self) -> bool:
        """True if the owner still binds this wrapper's proxy."""
        try:
            current = raw_attribute(self.owner, self.attribute)
        except AttributeError:
            return False
        return getattr(unwrap_descriptor(current), WRAPPER_ATTR, None) is self

    # ==================== Calls ====================

    def _build_proxy(self) -> Callable[..., Any]:
        wrapper = self

        if inspect.iscoroutinefunction(self.implementation):

            @functools.wraps(self.implementation)
            async def proxy(*args: Any, **kwargs: Any) -> Any:
                return await wrapper.acall(args, kwargs)

        else:

            @functools.wraps(self.implementation)
            def proxy(*args: Any, **kwargs: Any) -> Any:
                return wrapper.call(args, kwargs)

        setattr(proxy, WRAPPER_ATTR, self)
        return proxy

    def call(self, args: tuple, kwargs: Dict[str, Any]) -> Any:
        """Invoke the current implementation, firing the active probes."""
        implementation = self.implementation
        _, enter_tags, exit_tags, except_tags = self._phases
        if enter_tags is not None:
            self._fire(enter_tags, implementation, args, kwargs, {FN: "enter"})
        try:
            result = implementation(*args, **kwargs)
        except Exception as e:
            if except_tags is not None:
                self._fire(except_tags, implementation, args, kwargs, {EXCEPTION: e})
            raise
        if exit_tags is not None:
            self._fire(exit_tags, implementation, args, kwargs, {FN: "exit", RETURN: result})
        return result

    async def acall(self, args: tuple, kwargs: Dict[str, Any]) -> Any:
        """Await the current implementation, firing the active probes."""
        implementation = self.implementation
        _, enter_tags, exit_tags, except_tags = self._phases
        if enter_tags is not None:
            self._fire(enter_tags, implementation, args, kwargs, {FN: "enter"})
        try:
            result = await implementation(*args, **kwargs)
        except Exception as e:
            if except_tags is not None:
                self._fire(except_tags, implementation, args, kwargs, {EXCEPTION: e})
            raise
        if exit_tags is not None:
            self._fire(exit_tags, implementation, args, kwargs, {FN: "exit", RETURN: result})
        return result

    def _fire(
        self,
        tags: FrozenSet[str],
        implementation: Callable[..., Any],
        args: tuple,
        kwargs: Dict[str, Any],
        extra: Dict[str, Any],
    ) -> None:
        # Must never raise into the instrumented call
        try:
            engine = self.engine
            if engine is None:
                from probes.engine import get_engine

                engine = get_engine()
            if not engine.is_enabled(self.module, tags):
                return
            signature = self._signature if implementation is self.implementation else None
            positional, keywords = split_arguments(signature, args, kwargs)
            values: Dict[str, Any] = {FNAME: self.identifier}
            if FN in extra:
                values[FN] = extra[FN]
            values[ARGS] = positional
            if keywords:
                values[KWARGS] = keywords
            if RETURN in extra:
                values[RETURN] = extra[RETURN]
            if EXCEPTION in extra:
                values[EXCEPTION] = extra[EXCEPTION]
            line = None
            if engine.settings.capture_line:
                code = getattr(implementation, "__code__", None)
                line = getattr(code, "co_firstlineno", None)
            engine.fire(self.module, tags, values, line=line)
        except Exception as e:
            logger.error(f"Function probe for {self.identifier} failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"FunctionWrapper({self.identifier!r}, state={self.state.value}, tags={sorted(self.tags)})"


class WrapperRegistry:
    """Global registry of wrapped functions by identifier.

    Holds only wrappers in the WRAPPED state; disabling removes them.
    """

    _wrappers: ClassVar[Dict[str, FunctionWrapper]] = {}

    @classmethod
    def register(cls, wrapper: FunctionWrapper) -> None:
        cls._wrappers[wrapper.identifier] = wrapper

    @classmethod
    def unregister(cls, identifier: str) -> Optional[FunctionWrapper]:
        return cls._wrappers.pop(identifier, None)

    @classmethod
    def get(cls, identifier: str) -> Optional[FunctionWrapper]:
        """Get the wrapper of an identifier, None if not wrapped."""
        return cls._wrappers.get(identifier)

    @classmethod
    def all(cls) -> List[FunctionWrapper]:
        return list(cls._wrappers.values())

    @classmethod
    def identifiers(cls) -> List[str]:
        return list(cls._wrappers.keys())

    @classmethod
    def for_owner(cls, owner: Any) -> List[FunctionWrapper]:
        """Get the wrappers bound on a module or class."""
        return [w for w in cls._wrappers.values() if w.owner is owner]

    @classmethod
    def clear(cls) -> None:
        """Unwrap everything and clear the registry. Useful for testing."""
        with _lock:
            for wrapper in list(cls._wrappers.values()):
                _disable(wrapper)
            cls._wrappers = {}


# ==================== Module watching ====================


class _WatchedModule(types.ModuleType):
    """Module class that routes assignments to wrapped names to their wrapper."""

    def __setattr__(self, name: str, value: Any) -> None:
        wrapper = WrapperRegistry.get(f"{self.__name__}.{name}")
        if (
            wrapper is not None
            and wrapper.owner is self
            and wrapper.is_wrapped
            and getattr(unwrap_descriptor(value), WRAPPER_ATTR, None) is not wrapper
        ):
            with _lock:
                if callable(unwrap_descriptor(value)):
                    wrapper.redefine(value)
                    return
                # A non-callable ends instrumentation of the name
                super().__setattr__(name, value)
                _disable(wrapper)
            logger.info(f"Function probe disabled, {wrapper.identifier} rebound to a non-callable")
            return
        super().__setattr__(name, value)


def _watch(owner: Any) -> None:
    if type(owner) is types.ModuleType:
        owner.__class__ = _WatchedModule


def _unwatch(owner: Any) -> None:
    if type(owner) is _WatchedModule and not WrapperRegistry.for_owner(owner):
        owner.__class__ = types.ModuleType


# ==================== Operations ====================


def _tags_for(tags: Any) -> FrozenSet[str]:
    try:
        tagset = normalize_tags(tags)
    except TypeError as e:
        raise ConfigurationError(f"Invalid function probe tags {tags!r}: {e}")
    if not tagset:
        raise ConfigurationError("Function probes need at least one tag")
    return tagset


def _disable(wrapper: FunctionWrapper) -> None:
    if wrapper.bound_proxy_is_current():
        wrapper.unwrap()
    else:
        # Someone rebound the attribute; leave their binding alone
        wrapper.state = WrapperState.UNWRAPPED
    WrapperRegistry.unregister(wrapper.identifier)
    _unwatch(wrapper.owner)


def enable_probe(target: Any, tags: Any = FN_TAG, engine: Optional[Any] = None) -> FunctionWrapper:
    """Instrument a function so calls fire function probes.

    Idempotent: enabling a wrapped target only replaces its tags.

    Args:
        target: A callable or a dotted identifier.
        tags: "fn" (enter and exit), "enter-fn", "exit-fn", "except-fn", or
            a set of these plus any extra routing tags.
        engine: Engine to fire through; None follows the default engine.

    Returns:
        The FunctionWrapper of the target.

    Raises:
        InstrumentationTargetMissing: If the target cannot be resolved.
        ConfigurationError: If tags are malformed.
    """
    tagset = _tags_for(tags)
    target_info = resolve_target(target)
    with _lock:
        current = raw_attribute(target_info.owner, target_info.attribute)
        existing = getattr(unwrap_descriptor(current), WRAPPER_ATTR, None)
        if existing is not None and existing.identifier != target_info.identifier:
            # Alias of a function wrapped under another identifier
            existing.set_tags(tagset)
            existing.engine = engine
            return existing

        wrapper = WrapperRegistry.get(target_info.identifier)
        if wrapper is not None and wrapper.is_wrapped:
            wrapper.set_tags(tagset)
            wrapper.engine = engine
            if existing is not wrapper:
                # Binding replaced behind our back, adopt it
                wrapper.redefine(current)
                wrapper.wrap()
            logger.debug(f"Function probe updated: {wrapper.identifier} {sorted(tagset)}")
            return wrapper

        wrapper = FunctionWrapper(target_info, current, tagset, engine)
        wrapper.wrap()
        WrapperRegistry.register(wrapper)
        _watch(wrapper.owner)
    logger.info(f"Function probe enabled: {wrapper.identifier} {sorted(tagset)}")
    return wrapper


def disable_probe(target: Any) -> bool:
    """Remove instrumentation from a function.

    Binds the current implementation (the latest redefinition, if any) back
    in place of the proxy.

    Returns:
        False if the target was resolvable but not instrumented.

    Raises:
        InstrumentationTargetMissing: If the target cannot be resolved and
            is not the identifier of a wrapped function.
    """
    try:
        identifier = resolve_target(target).identifier
    except InstrumentationTargetMissing:
        # The binding may have been replaced by something unresolvable
        if not isinstance(target, str) or WrapperRegistry.get(target) is None:
            raise
        identifier = target
    with _lock:
        wrapper = WrapperRegistry.get(identifier)
        if wrapper is None:
            logger.debug(f"Function probe not enabled: {identifier}")
            return False
        _disable(wrapper)
    logger.info(f"Function probe disabled: {wrapper.identifier}")
    return True


def redefine_function(target: Any, implementation: Any) -> None:
    """Redefine a function, keeping its instrumentation if any.

    Raises:
        InstrumentationTargetMissing: If the target cannot be resolved or
            the implementation is not callable.
    """
    if not callable(unwrap_descriptor(implementation)):
        raise InstrumentationTargetMissing(target, "new implementation is not callable")
    target_info = resolve_target(target)
    with _lock:
        wrapper = WrapperRegistry.get(target_info.identifier)
        if wrapper is not None and wrapper.is_wrapped:
            wrapper.redefine(implementation)
            return
        if isinstance(target_info.owner, types.ModuleType):
            types.ModuleType.__setattr__(target_info.owner, target_info.attribute, implementation)
        else:
            setattr(target_info.owner, target_info.attribute, implementation)


def _module_of(module: Any) -> types.ModuleType:
    if isinstance(module, types.ModuleType):
        return module
    if isinstance(module, str):
        found = sys.modules.get(module)
        if found is None:
            import importlib

            try:
                found = importlib.import_module(module)
            except ImportError:
                raise InstrumentationTargetMissing(module, "no such module")
        return found
    raise InstrumentationTargetMissing(module, "not a module")


def enable_module(module: Any, tags: Any = FN_TAG, engine: Optional[Any] = None) -> List[str]:
    """Instrument every public function defined in a module.

    Functions imported from other modules are skipped.

    Returns:
        Identifiers of the instrumented functions.
    """
    mod = _module_of(module)
    tagset = _tags_for(tags)
    identifiers = []
    for name, value in list(vars(mod).items()):
        if name.startswith("_") or not inspect.isfunction(value):
            continue
        if value.__module__ != mod.__name__:
            continue
        wrapper = enable_probe(f"{mod.__name__}.{name}", tagset, engine)
        identifiers.append(wrapper.identifier)
    return identifiers


def disable_module(module: Any) -> List[str]:
    """Remove instrumentation from every function bound on a module."""
    mod = _module_of(module)
    identifiers = []
    with _lock:
        for wrapper in WrapperRegistry.for_owner(mod):
            _disable(wrapper)
            identifiers.append(wrapper.identifier)
    return identifiers


def instrument(tags: Any = FN_TAG) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator instrumenting a module-level function at definition time.

    Can be used bare or with tags:

        @instrument
        def handler(request): ...

        @instrument({"except-fn", "audit"})
        def charge(account, amount): ...

    Raises:
        InstrumentationTargetMissing: If the function is not defined at
            module level.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        qualname = getattr(fn, "__qualname__", "")
        module = sys.modules.get(getattr(fn, "__module__", None) or "")
        if module is None or "." in qualname or "<" in qualname:
            raise InstrumentationTargetMissing(
                qualname or fn,
                "only module-level functions can be decorated, use probe_fn for methods",
            )
        target_info = Target(
            identifier=f"{module.__name__}.{fn.__name__}",
            owner=module,
            attribute=fn.__name__,
            module=module.__name__,
        )
        with _lock:
            wrapper = FunctionWrapper(target_info, fn, tagset)
            wrapper.proxy = wrapper._build_proxy()
            wrapper.state = WrapperState.WRAPPED
            WrapperRegistry.register(wrapper)
            _watch(module)
        return wrapper.proxy

    if callable(tags) and not isinstance(tags, (str, frozenset, set, list, tuple)):
        fn, tags = tags, FN_TAG
        tagset = _tags_for(tags)
        return decorator(fn)
    tagset = _tags_for(tags)
    return decorator
