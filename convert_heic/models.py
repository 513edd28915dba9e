from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import logging
from typing import Iterable

VERSION = "1.0.0"
OUTPUT_FORMATS = ("png", "jpg", "jpeg", "webp", "tiff", "bmp")
DEFAULT_FORMAT = "png"
SOURCE_SUFFIXES = frozenset({".heic", ".heif"})

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised for problems that must stop the run before any file is touched."""


@dataclass(frozen=True)
class ConvertOptions:
    output_format: str = DEFAULT_FORMAT
    delete_original: bool = False
    targets: tuple[Path, ...] = (Path("."),)
    timeout: float | None = None


@dataclass(frozen=True)
class FileOutcome:
    source: Path
    output: Path
    stripped: bool
    converted: bool
    deleted: bool
    message: str

    @property
    def success(self) -> bool:
        return self.stripped and self.converted


@dataclass
class RunSummary:
    total: int
    processed: int = 0
    outcomes: list[FileOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)


def validate_format(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        raise ConfigurationError(
            f"Unsupported format: --format needs a value ({', '.join(OUTPUT_FORMATS)})"
        )
    if normalized not in OUTPUT_FORMATS:
        raise ConfigurationError(
            f"Unsupported format: {value} (choose from {', '.join(OUTPUT_FORMATS)})"
        )
    return normalized


def is_source_file(path: Path) -> bool:
    return path.suffix.lower() in SOURCE_SUFFIXES


def iter_source_files(root: Path) -> list[Path]:
    files = []
    for path in root.rglob("*"):
        if path.is_file() and is_source_file(path):
            files.append(path)
    return files


def resolve_targets(targets: Iterable[Path]) -> list[Path]:
    """Expand file and directory targets into an ordered, duplicate-free list.

    Directories are searched recursively. Explicit files are kept only when
    they carry a HEIC/HEIF suffix. Missing targets are skipped with a warning.
    Duplicates are detected on the resolved path; the first spelling wins.
    """
    found: dict[Path, Path] = {}
    for target in targets:
        if target.is_dir():
            for path in iter_source_files(target):
                found.setdefault(path.resolve(), path)
        elif target.is_file():
            if is_source_file(target):
                found.setdefault(target.resolve(), target)
            else:
                logger.warning("Skipping non-matching file: %s", target)
        else:
            logger.warning("Target not found: %s", target)
    return list(found.values())
