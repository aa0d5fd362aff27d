"""Built-in transform stages.

Importing this module registers the transforms in the StageRegistry.
"""

import random
from typing import Any, Iterable, Optional

from probes.exceptions import ConfigurationError
from probes.introspection import function_identifier
from probes.stages import Stage, Transform, stage
from probes.state import FNAME, THREAD_ID, ProbeState, normalize_tags


def _key_list(keys: Any, stage_name: str) -> tuple:
    if isinstance(keys, str):
        return (keys,)
    try:
        result = tuple(keys)
    except TypeError:
        raise ConfigurationError(f"'{stage_name}' expects a key or a list of keys, got {keys!r}")
    for key in result:
        if not isinstance(key, str):
            raise ConfigurationError(f"'{stage_name}' keys must be strings, got {key!r}")
    return result


class RandomSample(Transform):
    """Keep each event independently with probability p.

    The state passes through unchanged when kept. A dedicated Random
    instance can be given for reproducible sampling.
    """

    def __init__(self, p: float, rng: Optional[random.Random] = None) -> None:
        if isinstance(p, bool) or not isinstance(p, (int, float)) or not 0.0 <= p <= 1.0:
            raise ConfigurationError(f"random-sample probability must be in [0, 1], got {p!r}")
        self.p = float(p)
        self._random = (rng or random).random
        super().__init__(self._sample, name="random-sample")

    def _sample(self, state: ProbeState) -> Optional[ProbeState]:
        # random() is in [0, 1): p=1.0 keeps everything, p=0.0 nothing
        return state if self._random() < self.p else None


class SelectFn(Transform):
    """Keep only function probes fired by the given function."""

    def __init__(self, target: Any) -> None:
        if not isinstance(target, str) and not callable(target):
            raise ConfigurationError(f"select-fn expects a function or identifier, got {target!r}")
        self.fname = function_identifier(target)
        super().__init__(self._select, name="select-fn")

    def _select(self, state: ProbeState) -> Optional[ProbeState]:
        return state if state.get(FNAME) == self.fname else None


def _select_keys(state: ProbeState, keys: tuple) -> ProbeState:
    return state.select(keys)


def _drop_keys(state: ProbeState, keys: tuple) -> ProbeState:
    return state.dissoc(*keys)


def _select_tags(state: ProbeState, tags: frozenset) -> Optional[ProbeState]:
    return state if not tags.isdisjoint(state.tags) else None


@stage("random-sample")
def random_sample(p: float) -> Stage:
    """Keep each event with probability p."""
    return RandomSample(p)


@stage("select-fn")
def select_fn(target: Any) -> Stage:
    """Keep only states whose fname is target's identifier."""
    return SelectFn(target)


@stage("select-keys")
def select_keys(keys: Iterable[str]) -> Stage:
    """Project states onto exactly the given keys."""
    return Transform(_select_keys, _key_list(keys, "select-keys"), name="select-keys")


@stage("drop-keys")
def drop_keys(keys: Iterable[str]) -> Stage:
    """Remove the given keys from states."""
    return Transform(_drop_keys, _key_list(keys, "drop-keys"), name="drop-keys")


@stage("drop-thread-id")
def drop_thread_id() -> Stage:
    """Remove the thread-id key from states."""
    return Transform(_drop_keys, (THREAD_ID,), name="drop-thread-id")


@stage("select-tags")
def select_tags(tags: Any) -> Stage:
    """Keep only states fired with at least one of the given tags."""
    try:
        wanted = normalize_tags(tags)
    except TypeError as e:
        raise ConfigurationError(f"select-tags: {e}")
    return Transform(_select_tags, wanted, name="select-tags")
