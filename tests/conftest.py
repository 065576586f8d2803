"""Pytest configuration and fixtures."""

import json
import shlex
import sys
from pathlib import Path

import pytest

# combine_libs lives in scripts/, next to the other build scripts
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root / "scripts"))

from combine_libs import ArchiverConfig  # noqa: E402

FAKE_AR = Path(__file__).parent / "fake_ar.py"


@pytest.fixture
def fake_config():
    """ArchiverConfig that runs tests/fake_ar.py for every archiver step."""
    ar = shlex.join([sys.executable, str(FAKE_AR)])
    return ArchiverConfig(
        archiver_path=ar,
        archiver_create_flags="cr",
        index_tool_path=f"{ar} s",
    )


@pytest.fixture
def make_archive(tmp_path):
    """Write a fake archive holding the given (name, text) members.

    Returns the archive path.
    """

    def _make(name, members, directory=None):
        directory = tmp_path if directory is None else directory
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        if isinstance(members, dict):
            members = list(members.items())
        path.write_text(json.dumps({"members": [list(m) for m in members], "indexed": True}))
        return path

    return _make


@pytest.fixture
def read_archive():
    """Load a fake archive written by fake_ar.py."""

    def _read(path):
        return json.loads(Path(path).read_text())

    return _read


@pytest.fixture
def work_root(tmp_path):
    """Directory the combiner creates its scratch directory in.

    Tests assert it is empty afterwards.
    """
    root = tmp_path / "work"
    root.mkdir()
    return root
