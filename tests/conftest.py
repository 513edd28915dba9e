"""Pytest configuration and shared fixtures for the convert_heic test suite.

The ``fake_tools`` fixture puts small POSIX shell stand-ins for ``exiftool``
and ``magick`` first on ``PATH``. The stand-ins honour the same command-line
contract as the real programs:

* ``exiftool -overwrite_original -all= <path>`` rewrites ``<path>`` with the
  text ``stripped`` and fails for any path containing ``nostrip``.
* ``magick <source> <dest>`` copies the source to the destination and fails
  for any source containing ``noconvert``.

Every invocation is appended to ``calls.log`` next to the scripts.
"""

import io
import os
import stat
from pathlib import Path

import pytest
from rich.console import Console

from convert_heic import app
from convert_heic.convert import TOOLS, clear_tool_cache

EXIFTOOL_SCRIPT = """#!/bin/sh
echo "exiftool $*" >> "{log}"
{fail}
case "$3" in *nostrip*) exit 1 ;; esac
printf 'stripped' > "$3"
"""

MAGICK_SCRIPT = """#!/bin/sh
echo "magick $*" >> "{log}"
{fail}
case "$1" in *noconvert*) exit 1 ;; esac
cp "$1" "$2"
"""


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests - fast, isolated component tests")
    config.addinivalue_line("markers", "integration: Pipeline tests against stand-in tools")
    config.addinivalue_line("markers", "cli: Tests related to command-line interface")


@pytest.fixture(autouse=True)
def _isolated_tools(monkeypatch):
    """Start every test with an empty tool cache and no environment overrides."""
    for entry in TOOLS.values():
        monkeypatch.delenv(entry["env"], raising=False)
    clear_tool_cache()
    yield
    clear_tool_cache()


@pytest.fixture
def output(monkeypatch) -> io.StringIO:
    """Route the CLI console into a buffer wide enough to avoid wrapping."""
    buffer = io.StringIO()
    monkeypatch.setattr(
        app, "console", Console(file=buffer, width=500, color_system=None, highlight=False)
    )
    return buffer


class FakeTools:
    def __init__(self, bin_dir: Path) -> None:
        self.bin_dir = bin_dir
        self.log = bin_dir / "calls.log"

    def install(self, exiftool: bool = True, magick: bool = True) -> "FakeTools":
        self.write("exiftool", EXIFTOOL_SCRIPT, exiftool)
        self.write("magick", MAGICK_SCRIPT, magick)
        return self

    def write(self, name: str, template: str, succeed: bool) -> None:
        script = self.bin_dir / name
        script.write_text(template.format(log=self.log, fail="" if succeed else "exit 1"))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        clear_tool_cache()

    def calls(self) -> list[str]:
        if not self.log.exists():
            return []
        return self.log.read_text().splitlines()


@pytest.fixture
def fake_tools(tmp_path, monkeypatch) -> FakeTools:
    """Install working stand-in tools at the front of PATH."""
    if os.name == "nt":
        pytest.skip("stand-in tools are POSIX shell scripts")
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return FakeTools(bin_dir).install()


@pytest.fixture
def photos(tmp_path) -> Path:
    """A folder with two HEIC-family images and one unrelated file."""
    folder = tmp_path / "photos"
    folder.mkdir()
    (folder / "a.HEIC").write_text("heic-a with metadata")
    (folder / "b.heif").write_text("heif-b with metadata")
    (folder / "notes.txt").write_text("not an image")
    return folder
