"""Shared pytest fixtures and configuration."""
import io
import os

import pytest
from rich.console import Console

from kubeauto.text import Printer

# Pytest markers are defined in pytest.ini


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep KUBEAUTO_* variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("KUBEAUTO_"):
            monkeypatch.delenv(key)


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def printer(output):
    """Printer writing plain (uncolored) lines into `output`."""
    console = Console(file=output, color_system=None, highlight=False, soft_wrap=True, width=200)
    return Printer(console)
