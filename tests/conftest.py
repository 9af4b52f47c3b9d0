# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src to sys.path so `import paperinbox` works without an install.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

# Keep audit log files out of the working tree
os.environ.setdefault("PAPERINBOX_LOG_DIR", tempfile.mkdtemp(prefix="paperinbox-test-logs-"))
# No network searches unless a test wires a source explicitly
os.environ.setdefault("PAPERINBOX_SOURCE", "none")

from paperinbox.domain.candidate import CandidateResult  # noqa: E402


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'inbox.db'}"


def make_result(n: int = 1, **overrides) -> CandidateResult:
    """Candidate result with distinct identifiers derived from ``n``."""
    fields = {
        "id": f"2024arXiv{n:04d}",
        "source_id": "ads",
        "title": f"Paper {n}",
        "authors": [f"Author {n}"],
        "year": 2024,
        "doi": f"10.1000/paper.{n}",
    }
    fields.update(overrides)
    return CandidateResult(**fields)


@pytest.fixture
def result_factory():
    return make_result
