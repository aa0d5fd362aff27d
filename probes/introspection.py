"""
Resolve instrumentation targets and describe calls for function probes.

It needs to:
- name a callable the way function probes report it (fname)
- resolve a dotted identifier or a callable to the object and attribute it is bound to
- split a call's arguments into positional and keyword-only parts
"""

import importlib
import inspect
import sys
import types
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from probes.exceptions import InstrumentationTargetMissing

# Attribute set on proxies installed by the function wrapper
WRAPPER_ATTR = "__probe_wrapper__"


class Target(NamedTuple):
    """Where an instrumentable callable is bound.

    Attributes:
        identifier: Dotted name, e.g. "package.module.Class.method".
        owner: Module or class holding the binding.
        attribute: Name of the binding on owner.
        module: Name of the module the callable belongs to.
    """

    identifier: str
    owner: Any
    attribute: str
    module: str


def function_identifier(fn: Any) -> str:
    """Get the dotted identifier of a callable.

    Args:
        fn: A function, method, proxy or a dotted string.

    Returns:
        "module.qualname" for callables, the string itself for strings.
    """
    if isinstance(fn, str):
        return fn
    wrapper = getattr(fn, WRAPPER_ATTR, None)
    if wrapper is not None:
        return wrapper.identifier
    fn = unwrap_descriptor(fn)
    if isinstance(fn, types.MethodType):
        fn = fn.__func__
    module = getattr(fn, "__module__", None) or "__main__"
    qualname = getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None)
    if qualname is None:
        qualname = type(fn).__qualname__
    return f"{module}.{qualname}"


def unwrap_descriptor(value: Any) -> Any:
    """Get the function inside a staticmethod or classmethod."""
    if isinstance(value, (staticmethod, classmethod)):
        return value.__func__
    return value


def raw_attribute(owner: Any, attribute: str) -> Any:
    """Read a binding without triggering the descriptor protocol on classes."""
    if isinstance(owner, type):
        for klass in owner.__mro__:
            if attribute in vars(klass):
                return vars(klass)[attribute]
        raise AttributeError(attribute)
    return getattr(owner, attribute)


def _import_longest_prefix(parts: list) -> Tuple[Any, int]:
    """Import the longest dotted prefix of parts that is a module."""
    for end in range(len(parts), 0, -1):
        name = ".".join(parts[:end])
        module = sys.modules.get(name)
        if module is None:
            try:
                module = importlib.import_module(name)
            except ImportError:
                continue
        return module, end
    raise InstrumentationTargetMissing(".".join(parts), "no importable module prefix")


def resolve_identifier(identifier: str) -> Target:
    """Resolve a dotted identifier to its binding.

    Args:
        identifier: "package.module.function" or "package.module.Class.method".

    Returns:
        The Target describing where the callable is bound.

    Raises:
        InstrumentationTargetMissing: If any part of the path does not exist
            or the final object is not callable.
    """
    parts = [p for p in identifier.split(".") if p]
    if len(parts) < 2:
        raise InstrumentationTargetMissing(identifier, "expected 'module.name'")

    module, end = _import_longest_prefix(parts)
    if end == len(parts):
        raise InstrumentationTargetMissing(identifier, "refers to a module")

    owner = module
    for part in parts[end:-1]:
        try:
            owner = getattr(owner, part)
        except AttributeError:
            raise InstrumentationTargetMissing(identifier, f"no attribute '{part}'")

    attribute = parts[-1]
    try:
        value = raw_attribute(owner, attribute)
    except AttributeError:
        raise InstrumentationTargetMissing(identifier, f"no attribute '{attribute}'")
    if not callable(unwrap_descriptor(value)):
        raise InstrumentationTargetMissing(identifier, "not callable")

    return Target(
        identifier=".".join([module.__name__] + parts[end:]),
        owner=owner,
        attribute=attribute,
        module=module.__name__,
    )


def resolve_target(target: Any) -> Target:
    """Resolve a callable or dotted identifier to its binding.

    Callables are located through their __module__ and __qualname__, so
    only module-level functions and methods of module-level classes can be
    resolved. Functions defined inside other functions cannot.

    Raises:
        InstrumentationTargetMissing: If the target cannot be located.
    """
    if isinstance(target, str):
        return resolve_identifier(target)
    if not callable(unwrap_descriptor(target)):
        raise InstrumentationTargetMissing(target, "not callable")
    identifier = function_identifier(target)
    if "<locals>" in identifier or "<lambda>" in identifier:
        raise InstrumentationTargetMissing(identifier, "not bound to a module attribute")
    return resolve_identifier(identifier)


def extract_signature(fn: Callable[..., Any]) -> Optional[inspect.Signature]:
    """Extract the signature of a callable, None if it has none (builtins)."""
    try:
        return inspect.signature(fn)
    except (TypeError, ValueError):
        return None


def split_arguments(
    sig: Optional[inspect.Signature],
    args: tuple,
    kwargs: Dict[str, Any],
) -> Tuple[tuple, Dict[str, Any]]:
    """Split a call into the positional tuple and keyword-only dict.

    Arguments passed by keyword to positional parameters are moved into the
    positional tuple, so f(1, b=2) and f(1, 2) report the same args.

    Args:
        sig: Signature of the called function, or None.
        args: Positional arguments of the call.
        kwargs: Keyword arguments of the call.

    Returns:
        Tuple of (positional args, keyword-only args).
    """
    if sig is None or not kwargs:
        return tuple(args), dict(kwargs)
    try:
        bound = sig.bind(*args, **kwargs)
    except TypeError:
        # The call itself is about to fail; report it as made
        return tuple(args), dict(kwargs)
    return bound.args, bound.kwargs
