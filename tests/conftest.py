import os
import sys


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))

for path in (SRC_DIR, TESTS_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

import pytest  # noqa: E402

from factories import FakeSourcePool  # noqa: E402


@pytest.fixture
def fake_pool() -> FakeSourcePool:
    return FakeSourcePool()
