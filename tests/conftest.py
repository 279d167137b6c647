"""
Pytest configuration and fixtures for spell-book tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path to allow importing spell_book
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from spell_book.core import Core  # noqa: E402
from spell_book.store.memory import MemoryDocumentStore  # noqa: E402

from .helpers import FakeClock, make_store  # noqa: E402


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store() -> MemoryDocumentStore:
    """Fresh seeded world with the GM as current user."""
    return make_store()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def core(store: MemoryDocumentStore, clock: FakeClock) -> Core:
    return Core(store, clock=clock)
