"""Unit test fixtures."""
import pytest

from fakes import FakeCluster


@pytest.fixture
def cluster():
    return FakeCluster()
