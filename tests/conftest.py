"""Pytest configuration and fixtures."""

import sys
import types
from pathlib import Path

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

TARGET_SOURCE = '''
import asyncio


def add(a, b):
    """Add two numbers, refusing a == 2."""
    if a == 2:
        raise ValueError("a must not be 2")
    return a + b


def greet(name, *, punctuation="!"):
    return f"hello {name}{punctuation}"


def _private():
    return "private"


async def fetch(value):
    await asyncio.sleep(0)
    return value * 10


class Account:
    rate = 2

    def __init__(self, balance):
        self.balance = balance

    def deposit(self, amount):
        self.balance += amount
        return self.balance

    @staticmethod
    def describe(kind):
        return f"account:{kind}"

    @classmethod
    def scaled(cls, amount):
        return amount * cls.rate


class SavingsAccount(Account):
    pass
'''


@pytest.fixture(autouse=True)
def reset_probes():
    """Give each test a fresh default engine and settings, and undo instrumentation."""
    from probes.decorator import WrapperRegistry
    from probes.engine import InstrumentationEngine, set_engine
    from probes.settings import ProbeSettings, set_settings
    from probes.stages import StageRegistry

    # Store original state
    original_stages = StageRegistry._factories.copy()

    set_settings(ProbeSettings())
    set_engine(InstrumentationEngine())

    yield

    # Restore original state
    WrapperRegistry.clear()
    StageRegistry._factories = original_stages
    set_engine(None)
    set_settings(None)


@pytest.fixture
def target_module():
    """A throwaway module with functions and a class to instrument."""
    module = types.ModuleType("probes_target")
    sys.modules[module.__name__] = module
    exec(compile(TARGET_SOURCE, "<probes_target>", "exec"), module.__dict__)

    yield module

    sys.modules.pop(module.__name__, None)
