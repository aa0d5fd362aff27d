"""Tests for probes.introspection module."""

import inspect

import pytest

from probes.exceptions import InstrumentationTargetMissing
from probes.introspection import (
    extract_signature,
    function_identifier,
    raw_attribute,
    resolve_identifier,
    resolve_target,
    split_arguments,
    unwrap_descriptor,
)


def sample(a, b=2, *rest, flag=False, **extra):
    return a


class TestIdentifiers:
    """Test suite for function identifiers."""

    def test_module_function(self):
        assert function_identifier(sample) == f"{__name__}.sample"

    def test_method(self, target_module):
        assert function_identifier(target_module.Account.deposit) == "probes_target.Account.deposit"

    def test_bound_classmethod(self, target_module):
        assert function_identifier(target_module.Account.scaled) == "probes_target.Account.scaled"

    def test_string_passthrough(self):
        assert function_identifier("pkg.mod.fn") == "pkg.mod.fn"

    def test_descriptors_unwrapped(self):
        fn = staticmethod(sample)
        assert unwrap_descriptor(fn) is sample
        assert unwrap_descriptor(sample) is sample


class TestResolution:
    """Test suite for resolving targets to bindings."""

    def test_resolve_module_function(self, target_module):
        target = resolve_identifier("probes_target.add")

        assert target.owner is target_module
        assert target.attribute == "add"
        assert target.module == "probes_target"
        assert target.identifier == "probes_target.add"

    def test_resolve_class_attribute(self, target_module):
        target = resolve_target(target_module.Account.deposit)

        assert target.owner is target_module.Account
        assert target.attribute == "deposit"
        assert target.module == "probes_target"

    def test_resolve_from_package_module(self):
        """Test that submodules are imported and the longest prefix wins."""
        target = resolve_identifier("probes.state.normalize_tags")
        assert target.module == "probes.state"
        assert target.attribute == "normalize_tags"

    def test_identifier_cannot_name_a_module(self):
        with pytest.raises(InstrumentationTargetMissing, match="refers to a module"):
            resolve_identifier("probes.state")

    def test_raw_attribute_keeps_descriptors(self, target_module):
        assert isinstance(raw_attribute(target_module.Account, "describe"), staticmethod)
        assert isinstance(raw_attribute(target_module.SavingsAccount, "scaled"), classmethod)
        with pytest.raises(AttributeError):
            raw_attribute(target_module.Account, "missing")

    def test_non_callable_target(self):
        with pytest.raises(InstrumentationTargetMissing, match="not callable"):
            resolve_target(42)

    def test_error_message_names_target(self, target_module):
        with pytest.raises(InstrumentationTargetMissing) as exc_info:
            resolve_identifier("probes_target.nothing")
        assert exc_info.value.target == "probes_target.nothing"
        assert "Cannot instrument 'probes_target.nothing'" in str(exc_info.value)


class TestSplitArguments:
    """Test suite for split_arguments."""

    def setup_method(self):
        self.sig = extract_signature(sample)

    def test_positional_only(self):
        assert split_arguments(self.sig, (1, 2), {}) == ((1, 2), {})

    def test_keyword_to_positional_parameter(self):
        assert split_arguments(self.sig, (1,), {"b": 5}) == ((1, 5), {})

    def test_keyword_only_and_extra(self):
        args, kwargs = split_arguments(self.sig, (1, 2, 3), {"flag": True, "other": 4})
        assert args == (1, 2, 3)
        assert kwargs == {"flag": True, "other": 4}

    def test_unbindable_call_reported_as_made(self):
        assert split_arguments(self.sig, (), {"zzz": 1, "b": 2}) == ((), {"zzz": 1, "b": 2})

    def test_no_signature(self):
        assert split_arguments(None, (1,), {"x": 2}) == ((1,), {"x": 2})

    def test_extract_signature(self):
        assert isinstance(extract_signature(sample), inspect.Signature)
        assert extract_signature(42) is None
