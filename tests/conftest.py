"""Shared test fixtures."""

import pytest

from tests.fakes import FakeTransport


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
