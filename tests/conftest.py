"""
Shared fixtures for the guild test suites.
"""

import pytest
from algopy import Account
from algopy_testing import AlgopyTestContext, algopy_testing_context

from helpers import GuildHarness


@pytest.fixture
def context() -> AlgopyTestContext:
    """Create a fresh testing context for each test."""
    with algopy_testing_context() as ctx:
        yield ctx


@pytest.fixture
def voters(context: AlgopyTestContext) -> list[Account]:
    return [context.any.account() for _ in range(6)]


@pytest.fixture
def guild(context: AlgopyTestContext, voters: list[Account]) -> GuildHarness:
    """Guild where voters 1-4 lock 50000, 50000, 100000 and 100000 tokens."""
    harness = GuildHarness(context)
    for voter, amount in zip(voters[1:5], [50000, 50000, 100000, 100000]):
        harness.lock(voter, amount)
    return harness
