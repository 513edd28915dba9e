from __future__ import annotations

from pathlib import Path
import logging
import os
import shutil
import subprocess
import sys
from threading import Lock
from typing import Iterable

from .models import ConfigurationError, ConvertOptions, FileOutcome, RunSummary

WINDOWS_CREATIONFLAGS = (
    getattr(subprocess, "CREATE_NO_WINDOW", 0) if sys.platform.startswith("win") else 0
)
TOOLS: dict[str, dict[str, str]] = {
    "exiftool": {"env": "CONVERT_HEIC_EXIFTOOL", "default": "exiftool"},
    "magick": {"env": "CONVERT_HEIC_MAGICK", "default": "magick"},
}
STEP_STRIP = "strip"
STEP_CONVERT = "convert"
_TOOL_CACHE: dict[str, str | None] = {}
_TOOL_LOCK = Lock()

logger = logging.getLogger(__name__)


class ConvertListener:
    """Receives pipeline events. Every hook is a no-op here."""

    def file_started(self, index: int, total: int, source: Path) -> None:
        pass

    def step_started(self, step: str, source: Path, output: Path) -> None:
        pass

    def step_finished(self, step: str, success: bool, source: Path, output: Path) -> None:
        pass

    def file_deleted(self, source: Path, success: bool) -> None:
        pass

    def file_finished(self, outcome: FileOutcome) -> None:
        pass


def get_tool_executable(tool: str) -> str | None:
    with _TOOL_LOCK:
        if tool in _TOOL_CACHE:
            return _TOOL_CACHE[tool]
    entry = TOOLS[tool]
    name = os.environ.get(entry["env"]) or entry["default"]
    resolved = shutil.which(name)
    if resolved:
        logger.debug("Using %s at %s", tool, resolved)
    with _TOOL_LOCK:
        _TOOL_CACHE[tool] = resolved
    return resolved


def clear_tool_cache() -> None:
    with _TOOL_LOCK:
        _TOOL_CACHE.clear()


def find_missing_tools() -> list[str]:
    return [tool for tool in TOOLS if get_tool_executable(tool) is None]


def require_tools() -> dict[str, str]:
    missing = find_missing_tools()
    if missing:
        raise ConfigurationError(f"Required tool(s) not found: {', '.join(missing)}")
    return {tool: get_tool_executable(tool) for tool in TOOLS}


def build_output_path(source: Path, output_format: str) -> Path:
    return source.with_suffix(f".{output_format}")


def run_command(
    command: list[str], timeout: float | None = None
) -> subprocess.CompletedProcess[bytes]:
    return subprocess.run(
        command, capture_output=True, timeout=timeout, creationflags=WINDOWS_CREATIONFLAGS
    )


def run_tool(command: list[str], timeout: float | None = None) -> bool:
    try:
        result = run_command(command, timeout)
    except subprocess.TimeoutExpired:
        logger.debug("%s timed out after %ss", Path(command[0]).name, timeout)
        return False
    except OSError as exc:
        logger.debug("Could not run %s: %s", command[0], exc)
        return False
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
        logger.debug(
            "%s exited with %s: %s", Path(command[0]).name, result.returncode, stderr
        )
        return False
    return True


def strip_metadata(exiftool: str, source: Path, timeout: float | None = None) -> bool:
    command = [exiftool, "-overwrite_original", "-all=", str(source)]
    return run_tool(command, timeout)


def convert_image(
    magick: str, source: Path, output: Path, timeout: float | None = None
) -> bool:
    command = [magick, str(source), str(output)]
    return run_tool(command, timeout)


def delete_source(source: Path) -> bool:
    try:
        source.unlink()
    except OSError as exc:
        logger.warning("Could not delete %s: %s", source, exc)
        return False
    return True


def convert_file(
    source: Path,
    options: ConvertOptions,
    tools: dict[str, str],
    listener: ConvertListener | None = None,
) -> FileOutcome:
    listener = listener or ConvertListener()
    output = build_output_path(source, options.output_format)
    listener.step_started(STEP_STRIP, source, output)
    stripped = strip_metadata(tools["exiftool"], source, options.timeout)
    listener.step_finished(STEP_STRIP, stripped, source, output)
    if not stripped:
        return FileOutcome(source, output, False, False, False, "Metadata stripping failed")
    listener.step_started(STEP_CONVERT, source, output)
    converted = convert_image(tools["magick"], source, output, options.timeout)
    listener.step_finished(STEP_CONVERT, converted, source, output)
    if not converted:
        return FileOutcome(source, output, True, False, False, "Conversion failed")
    deleted = False
    message = f"Saved as {output.name}"
    if options.delete_original:
        deleted = delete_source(source)
        listener.file_deleted(source, deleted)
        if not deleted:
            message = f"{message}, original kept"
    return FileOutcome(source, output, True, True, deleted, message)


def convert_files(
    files: Iterable[Path],
    options: ConvertOptions,
    tools: dict[str, str],
    listener: ConvertListener | None = None,
) -> RunSummary:
    listener = listener or ConvertListener()
    files = list(files)
    summary = RunSummary(total=len(files))
    claimed: dict[Path, Path] = {}
    for index, source in enumerate(files, start=1):
        output = build_output_path(source, options.output_format).resolve()
        if output in claimed:
            logger.warning(
                "%s overwrites %s, already written from %s", source, output, claimed[output]
            )
        claimed.setdefault(output, source)
        listener.file_started(index, summary.total, source)
        outcome = convert_file(source, options, tools, listener)
        summary.processed += 1
        summary.outcomes.append(outcome)
        listener.file_finished(outcome)
    return summary
