"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # everything that can run here
    python -m pytest -m "not display"   # skip tests that open a window

Tests marked ``display`` need pygame itself; they are
skipped automatically when pygame is missing.  SDL is pointed at its dummy
drivers so nothing appears on screen and no sound device is needed.
"""

import importlib.util
import os

import pytest

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

HAVE_PYGAME = importlib.util.find_spec("pygame") is not None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests that drive pygame (window or mixer) on SDL dummy drivers")


def pytest_collection_modifyitems(config, items):
    if HAVE_PYGAME:
        return
    skip = pytest.mark.skip(reason="pygame not installed")
    for item in items:
        if "display" in item.keywords:
            item.add_marker(skip)
