# tests/conftest.py

from __future__ import annotations

import pytest

from conductor_worker.config import ConfigResolver, EnvSource
from conductor_worker.tasks.worker import clear_worker_registry

from .fakes import FakeTaskClient


@pytest.fixture(autouse=True)
def _empty_worker_registry():
    """@worker_task registers globally; every test starts with an empty registry."""
    clear_worker_registry()
    yield
    clear_worker_registry()


@pytest.fixture()
def env() -> EnvSource:
    """
    Empty environment.

    Tests never read os.environ; anything env-driven is passed explicitly.
    """
    return EnvSource.empty()


@pytest.fixture()
def resolver(env: EnvSource) -> ConfigResolver:
    return ConfigResolver(env)


@pytest.fixture()
def client() -> FakeTaskClient:
    return FakeTaskClient()
