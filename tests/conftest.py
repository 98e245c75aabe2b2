"""
Shared fixtures.

Wires a Migrator to in-memory fake PDSes and resolver so workflow tests can
run without the network.
"""

from typing import List

import pytest

from fakes import NEW_PDS, OLD_PDS, Call, FakeAgentFactory, FakePds, FakeResolver
from pdsmover.config import MoverConfig
from pdsmover.core.status import RecordingStatusSink


@pytest.fixture
def calls() -> List[Call]:
    return []


@pytest.fixture
def config() -> MoverConfig:
    return MoverConfig(retry_delay=0.0, max_retries=2)


@pytest.fixture
def factory(calls) -> FakeAgentFactory:
    return FakeAgentFactory(calls)


@pytest.fixture
def old_pds(factory) -> FakePds:
    return factory.register(OLD_PDS, "old")


@pytest.fixture
def new_pds(factory) -> FakePds:
    return factory.register(NEW_PDS, "new")


@pytest.fixture
def resolver(calls) -> FakeResolver:
    return FakeResolver(calls)


@pytest.fixture
def sink() -> RecordingStatusSink:
    return RecordingStatusSink()
