from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.pack_builder import PackBuilder


@pytest.fixture
def pack_builder(tmp_path: Path) -> PackBuilder:
    """Provide a knowledge-pack repository rooted at the pytest tmp_path."""
    return PackBuilder(tmp_path)
