"""
Pytest configuration and fixtures for pf2e-sheet-engine tests.

The ``repository`` fixture holds a small synthetic content set (see
``factories.py``): two classes, two ancestries, backgrounds, deities,
conditions and a handful of feats covering every rule kind.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path to allow importing pf2e_engine
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from factories import make_fighter, make_repository  # noqa: E402


@pytest.fixture
def repository():
    return make_repository()


@pytest.fixture
def fighter():
    return make_fighter()
