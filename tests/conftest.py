"""
Shared pytest fixtures for the load-harness test suite.

Fixtures give every test a fresh metrics registry and check engine so
no samples leak between tests, plus a small credential dataset that
mirrors ``data/users.json``.

Key Concepts Demonstrated:
- Function-scoped fixtures for run-scoped state
- Factory fixtures for fake transports
- Testing configuration selected through ``HARNESS_ENV``
"""

import os
from pathlib import Path

import pytest

# Select the testing configuration before load_harness reads the environment.
os.environ["HARNESS_ENV"] = "testing"

from load_harness.checks import CheckEngine
from load_harness.config import get_config
from load_harness.dataset import Dataset
from load_harness.metrics import MetricsRegistry
from tests.fakes import FakeTransport

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USERS = [
    {"username": "coordenador", "password": "1234"},
    {"username": "coordenadorIngles", "password": "ingles1234"},
    {"username": "diretor", "password": "1234"},
]


@pytest.fixture
def settings():
    """The ``TestingConfig`` class."""
    return get_config("testing")


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def check_engine():
    return CheckEngine()


@pytest.fixture
def users_dataset():
    return Dataset(USERS, name="users")


@pytest.fixture
def transport_factory():
    """
    Factory fixture for fake transports.

    Every transport created is kept in ``factory.created`` so tests can
    assert on the requests each VU sent.

    Example:
        def test_something(transport_factory):
            make = transport_factory(handler)
            transport = make()
    """

    def _factory(handler=None):
        def _make():
            transport = FakeTransport(handler)
            _make.created.append(transport)
            return transport

        _make.created = []
        return _make

    return _factory


@pytest.fixture
def write_file(tmp_path):
    """Write ``content`` to ``tmp_path / name`` and return the path."""

    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
