"""Pytest configuration for test discovery and shared fixtures.

This file ensures that `src/` is importable and that tests never pick up
model-server URLs from the developer's environment.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture(autouse=True)
def _isolate_model_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Config files resolve these with defaults; keep tests on the defaults."""
    for name in ("OLLAMA_API_URL", "OLLAMA_MODEL", "QDRANT_URL", "QDRANT_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def conf_dir() -> Path:
    return repo_root / "conf" / "content_index"
