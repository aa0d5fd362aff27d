"""Tests for probes.config module."""

import types

import pytest

from probes.config import ConfigEntry, ConfigRegistry
from probes.exceptions import ConfigurationError
from probes.stages import PolicyChain


class TestConfigEntry:
    """Test suite for ConfigEntry validation and matching."""

    def test_single_tag_is_normalized(self):
        entry = ConfigEntry(namespace="app", tags="debug", policy="console")
        assert entry.tags == frozenset({"debug"})
        assert entry.key == ("app", frozenset({"debug"}))

    def test_module_namespace(self):
        """Test that a module is stored by its name."""
        module = types.ModuleType("app.orders")
        entry = ConfigEntry(namespace=module, tags=["debug"], policy="console")
        assert entry.namespace == "app.orders"

    def test_matches_on_intersection(self):
        entry = ConfigEntry(namespace="app", tags=["debug", "warn"], policy="p")
        assert entry.matches(frozenset({"warn", "db"}))
        assert entry.matches("debug")
        assert not entry.matches(frozenset({"info"}))


class TestConfigRegistry:
    """Test suite for the ConfigRegistry."""

    def setup_method(self):
        """Create a fresh registry for each test."""
        self.registry = ConfigRegistry()

    def test_match_by_intersection(self):
        """Test that any shared tag selects the entry."""
        self.registry.set_config("user", {"debug"}, "console")
        snapshot = self.registry.snapshot

        assert snapshot.match("user", frozenset({"debug", "db"})).policy == "console"
        assert snapshot.match("user", frozenset({"warn"})) is None

    def test_first_inserted_match_wins(self):
        """Test resolution order among overlapping entries."""
        self.registry.set_config("user", {"debug", "warn"}, "first")
        self.registry.set_config("user", {"debug"}, "second")

        assert self.registry.snapshot.match("user", frozenset({"debug"})).policy == "first"

    def test_replace_keeps_position(self):
        """Test that re-setting a (namespace, tags) key keeps its place."""
        self.registry.set_config("user", {"debug"}, "a")
        self.registry.set_config("user", {"debug", "warn"}, "b")
        self.registry.set_config("user", {"debug"}, "c")

        entries = self.registry.entries("user")
        assert [e.policy for e in entries] == ["c", "b"]
        assert self.registry.snapshot.match("user", frozenset({"debug"})).policy == "c"

    def test_exact_namespace_only(self):
        """Test that there is no fallback to a parent namespace."""
        self.registry.set_config("app", {"debug"}, "console")

        assert self.registry.snapshot.match("app.orders", frozenset({"debug"})) is None
        assert not self.registry.snapshot.is_enabled("app.orders", {"debug"})

    def test_is_enabled_uses_tag_union(self):
        self.registry.set_config("user", {"debug"}, "a")
        self.registry.set_config("user", {"audit"}, "b")
        snapshot = self.registry.snapshot

        assert snapshot.is_enabled("user", "audit")
        assert snapshot.is_enabled("user", ["warn", "debug"])
        assert not snapshot.is_enabled("user", "warn")
        assert not snapshot.is_enabled("other", "debug")

    def test_copy_on_write(self):
        """Test that writers publish a new snapshot and leave the old one intact."""
        self.registry.set_config("user", {"debug"}, "a")
        before = self.registry.snapshot

        self.registry.set_config("user", {"warn"}, "b")

        assert before.match("user", frozenset({"warn"})) is None
        assert self.registry.snapshot.match("user", frozenset({"warn"})).policy == "b"

    def test_inline_chain(self):
        """Test that a chain descriptor is resolved into an inline PolicyChain."""
        entry = self.registry.set_config("user", ["warn", "error"], ["drop-thread-id", "console"])

        assert isinstance(entry.policy, PolicyChain)
        assert entry.policy.name == "user[error,warn]"
        assert entry.policy.stage_names() == ["drop-thread-id", "console"]

    def test_inline_chain_unknown_stage(self):
        with pytest.raises(ConfigurationError, match="Unknown stage"):
            self.registry.set_config("user", {"debug"}, ["nope"])
        assert self.registry.entries() == []

    @pytest.mark.parametrize(
        "namespace,tags,policy",
        [
            ("", {"debug"}, "p"),
            (42, {"debug"}, "p"),
            ("user", set(), "p"),
            ("user", None, "p"),
            ("user", [1, 2], "p"),
            ("user", {"debug"}, ""),
        ],
    )
    def test_malformed_input(self, namespace, tags, policy):
        """Test that malformed entries raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            self.registry.set_config(namespace, tags, policy)

    def test_remove_config(self):
        self.registry.set_config("user", {"debug"}, "a")

        assert self.registry.remove_config("user", "debug") is True
        assert self.registry.remove_config("user", "debug") is False
        assert not self.registry.snapshot.is_enabled("user", "debug")

    def test_remove_config_requires_exact_tags(self):
        self.registry.set_config("user", {"debug", "warn"}, "a")
        assert self.registry.remove_config("user", {"debug"}) is False
        assert len(self.registry.entries()) == 1

    def test_entries_across_namespaces(self):
        self.registry.set_config("a", "x", "p")
        self.registry.set_config("b", "x", "q")
        assert [e.namespace for e in self.registry.entries()] == ["a", "b"]
        assert [e.policy for e in self.registry.entries("b")] == ["q"]

    def test_clear(self):
        self.registry.set_config("a", "x", "p")
        self.registry.clear()
        assert self.registry.entries() == []
        assert not self.registry.snapshot.is_enabled("a", "x")
