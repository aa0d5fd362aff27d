"""Tests for probes.catalog module."""

import pytest

from probes.catalog import Catalog
from probes.exceptions import ConfigurationError
from probes.stages import build_chain


class TestCatalog:
    """Test suite for the policy Catalog."""

    def setup_method(self):
        """Create a fresh catalog for each test."""
        self.catalog = Catalog()

    def test_set_and_get_policy(self):
        """Test defining a policy from a descriptor list."""
        chain = self.catalog.set_policy("console", ["drop-thread-id", "console"])

        assert self.catalog.get("console") is chain
        assert chain.name == "console"
        assert chain.stage_names() == ["drop-thread-id", "console"]

    def test_get_undefined_policy(self):
        assert self.catalog.get("missing") is None

    def test_redefine_replaces_atomically(self):
        """Test that redefinition swaps the snapshot instead of mutating it."""
        self.catalog.set_policy("p", ["console"])
        before = self.catalog.snapshot

        self.catalog.set_policy("p", ["console-raw"])

        assert before["p"].stage_names() == ["console"]
        assert self.catalog.get("p").stage_names() == ["console-raw"]
        assert self.catalog.snapshot is not before

    def test_snapshot_is_read_only(self):
        self.catalog.set_policy("p", ["console"])
        with pytest.raises(TypeError):
            self.catalog.snapshot["q"] = None  # type: ignore[index]

    def test_prebuilt_chain_is_renamed(self):
        """Test that a PolicyChain stored under another name takes that name."""
        chain = build_chain("original", ["console"])
        stored = self.catalog.set_policy("renamed", chain)

        assert stored.name == "renamed"
        assert chain.name == "original"

    def test_failed_definition_keeps_previous(self):
        """Test that an unknown stage leaves the existing policy in place."""
        self.catalog.set_policy("p", ["console"])
        with pytest.raises(ConfigurationError):
            self.catalog.set_policy("p", ["console", "no-such-stage"])
        assert self.catalog.get("p").stage_names() == ["console"]

    @pytest.mark.parametrize("name", ["", None, 5])
    def test_invalid_name(self, name):
        with pytest.raises(ConfigurationError):
            self.catalog.set_policy(name, ["console"])

    @pytest.mark.parametrize("chain", [[], 42, {"console": 1}])
    def test_malformed_chain(self, chain):
        with pytest.raises(ConfigurationError):
            self.catalog.set_policy("p", chain)

    def test_remove_policy(self):
        self.catalog.set_policy("p", ["console"])
        assert self.catalog.remove_policy("p") is True
        assert self.catalog.remove_policy("p") is False
        assert self.catalog.get("p") is None

    def test_names_and_clear(self):
        """Test listing in definition order and clearing."""
        self.catalog.set_policy("b", ["console"])
        self.catalog.set_policy("a", ["console"])
        assert self.catalog.names() == ["b", "a"]

        self.catalog.clear()
        assert self.catalog.names() == []
