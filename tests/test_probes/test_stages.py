"""Tests for probes.stages module."""

import pytest

from probes.exceptions import ConfigurationError
from probes.sinks import MemorySink, make_memory
from probes.stages import (
    PolicyChain,
    Sink,
    StageRegistry,
    Transform,
    build_chain,
    resolve_stage,
    stage,
)
from probes.state import ProbeState


class TestStageVariants:
    """Test suite for Transform and Sink."""

    def test_transform_passes_bound_args(self):
        """Test that a transform receives its bound arguments."""
        t = Transform(lambda s, key, value: s.merge({key: value}), "extra", 5, name="add-extra")
        assert t.apply(ProbeState(a=1)) == {"a": 1, "extra": 5}
        assert t.name == "add-extra"
        assert t.terminal is False

    def test_transform_coerces_mappings(self):
        """Test that a plain dict result is turned into a ProbeState."""
        t = Transform(lambda s: {"only": s["a"]})
        result = t.apply(ProbeState(a=1))
        assert isinstance(result, ProbeState)
        assert result == {"only": 1}

    def test_transform_rejects_other_results(self):
        """Test that a non-mapping result is an error."""
        t = Transform(lambda s: 42, name="bad")
        with pytest.raises(TypeError, match="bad"):
            t.apply(ProbeState(a=1))

    def test_sink_always_yields_none(self):
        """Test that a sink performs its effect and yields None."""
        seen = []
        sink = Sink(seen.append, name="collect")
        state = ProbeState(a=1)

        assert sink.apply(state) is None
        assert seen == [state]
        assert sink.terminal is True


class TestStageRegistry:
    """Test suite for the StageRegistry."""

    def test_builtin_stages_registered(self):
        """Test that importing probes registers the built-in stages."""
        names = StageRegistry.names()
        for name in (
            "console",
            "console-log",
            "console-raw",
            "memory",
            "fixed-memory",
            "counter",
            "random-sample",
            "select-fn",
            "select-keys",
            "drop-keys",
            "drop-thread-id",
            "select-tags",
        ):
            assert name in names

    def test_register_duplicate_raises(self):
        """Test that a taken name cannot be registered again."""
        StageRegistry.register("custom", lambda: Sink(print, name="custom"))
        with pytest.raises(ConfigurationError, match="already registered"):
            StageRegistry.register("custom", lambda: Sink(print, name="custom"))

    def test_stage_decorator_registers_factory(self):
        """Test the stage decorator."""

        @stage("upper-msg")
        def upper_msg():
            return Transform(lambda s: s.assoc(msg=s["msg"].upper()), name="upper-msg")

        built = StageRegistry.build("upper-msg")
        assert built.apply(ProbeState(msg="hi")) == {"msg": "HI"}

    def test_build_unknown_stage(self):
        """Test that unknown names fail with a configuration error."""
        with pytest.raises(ConfigurationError, match="Unknown stage 'nope'"):
            StageRegistry.build("nope")

    def test_build_wrong_arguments(self):
        """Test that arguments are checked against the factory."""
        with pytest.raises(ConfigurationError, match="Bad arguments"):
            StageRegistry.build("drop-thread-id", "unexpected")
        with pytest.raises(ConfigurationError, match="Bad arguments"):
            StageRegistry.build("select-keys")

    def test_unregister(self):
        """Test removing a name."""
        StageRegistry.register("temp", lambda: Sink(print, name="temp"))
        assert StageRegistry.unregister("temp") is True
        assert StageRegistry.unregister("temp") is False
        assert StageRegistry.get("temp") is None


class TestChainResolution:
    """Test suite for resolve_stage and build_chain."""

    def test_resolve_forms(self):
        """Test every accepted descriptor form."""
        sink = MemorySink(make_memory())

        assert resolve_stage(sink) is sink
        assert resolve_stage("drop-thread-id").name == "drop-thread-id"
        assert resolve_stage(("select-keys", ["a"])).name == "select-keys"
        assert isinstance(resolve_stage(lambda s: s), Transform)

    def test_resolve_rejects_garbage(self):
        """Test that non-descriptors are rejected."""
        with pytest.raises(ConfigurationError):
            resolve_stage(42)
        with pytest.raises(ConfigurationError):
            resolve_stage(())
        with pytest.raises(ConfigurationError):
            resolve_stage((1, 2))

    def test_build_chain(self):
        """Test resolving a full chain."""
        chain = build_chain("p", ["drop-thread-id", ("select-keys", ["value"]), "console"])

        assert isinstance(chain, PolicyChain)
        assert chain.name == "p"
        assert chain.stage_names() == ["drop-thread-id", "select-keys", "console"]

    def test_build_chain_single_descriptor(self):
        """Test that a lone descriptor is a one-stage chain."""
        assert build_chain("p", "console").stage_names() == ["console"]

    def test_build_chain_empty(self):
        """Test that an empty chain is rejected."""
        with pytest.raises(ConfigurationError, match="at least one stage"):
            build_chain("p", [])

    def test_build_chain_unknown_stage(self):
        """Test that any unknown stage fails the whole chain."""
        with pytest.raises(ConfigurationError, match="Unknown stage"):
            build_chain("p", ["drop-thread-id", "no-such-stage"])

    def test_chain_is_frozen(self):
        """Test that a chain cannot be modified."""
        chain = build_chain("p", ["console"])
        with pytest.raises(Exception):
            chain.name = "q"  # type: ignore[misc]
