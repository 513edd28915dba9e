from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.status import Status

from .convert import (
    STEP_CONVERT,
    STEP_STRIP,
    ConvertListener,
    convert_files,
    find_missing_tools,
    require_tools,
)
from .models import (
    DEFAULT_FORMAT,
    OUTPUT_FORMATS,
    VERSION,
    ConfigurationError,
    ConvertOptions,
    FileOutcome,
    RunSummary,
    resolve_targets,
    validate_format,
)

CHECKMARK = "✔"
CROSS = "❌"
ARROW = "➜"
FOLDER = "\U0001f4c1"
TRASH = "\U0001f5d1"
INSTALL_HINTS = {
    "exiftool": (
        "ExifTool",
        [
            ("macOS", "brew install exiftool"),
            ("Debian/Ubuntu", "sudo apt install libimage-exiftool-perl"),
            ("Arch", "sudo pacman -S perl-image-exiftool"),
            ("Windows", "https://exiftool.org/"),
        ],
    ),
    "magick": (
        "ImageMagick",
        [
            ("macOS", "brew install imagemagick"),
            ("Debian/Ubuntu", "sudo apt install imagemagick"),
            ("Arch", "sudo pacman -S imagemagick"),
            ("Windows", "https://imagemagick.org/"),
        ],
    ),
}

console = Console(highlight=False)
logger = logging.getLogger(__name__)


class ConsoleReporter(ConvertListener):
    """Renders pipeline events as colored console lines with a spinner."""

    def __init__(self, output: Console) -> None:
        self.console = output
        self.status: Status | None = None

    def announce(self, options: ConvertOptions) -> None:
        targets = ", ".join(str(target) for target in options.targets)
        self.console.print(f"[bold blue]{FOLDER} Processing: {escape(targets)}[/]")
        self.console.print(f"[bold blue]{ARROW} Output format: {options.output_format}[/]")
        if options.delete_original:
            self.console.print(
                f"[bold yellow]{ARROW} Source files will be deleted after conversion.[/]"
            )

    def no_files(self) -> None:
        self.console.print(f"[bold yellow]{CROSS} No HEIC files found.[/]")

    def file_started(self, index: int, total: int, source: Path) -> None:
        self.console.print()
        self.console.print(f"[bold blue]{ARROW} [{index}/{total}] {escape(source.name)}[/]")

    def step_started(self, step: str, source: Path, output: Path) -> None:
        if step == STEP_STRIP:
            text = "Stripping metadata..."
        else:
            text = f"Converting to {output.suffix.lstrip('.')}..."
        self.status = self.console.status(text)
        self.status.start()

    def step_finished(self, step: str, success: bool, source: Path, output: Path) -> None:
        self.close()
        if step == STEP_STRIP:
            if success:
                self.console.print(f"  Stripping metadata... [green]{CHECKMARK} Done[/]")
            else:
                self.console.print(f"  Stripping metadata... [red]{CROSS} Failed[/]")
        elif step == STEP_CONVERT:
            if success:
                self.console.print(
                    f"  Converting... [green]{CHECKMARK} Saved as {escape(output.name)}[/]"
                )
            else:
                self.console.print(f"  Converting... [red]{CROSS} Conversion failed[/]")

    def file_deleted(self, source: Path, success: bool) -> None:
        if success:
            self.console.print(f"  {TRASH}  Deleted original {escape(source.name)}")
        else:
            self.console.print(
                f"  [yellow]{CROSS} Could not delete original {escape(source.name)}[/]"
            )

    def file_finished(self, outcome: FileOutcome) -> None:
        if not outcome.success:
            logger.debug("%s: %s", outcome.source, outcome.message)

    def summary(self, summary: RunSummary) -> None:
        self.console.print()
        line = f"All done! Processed {summary.processed} of {summary.total} file(s)"
        if summary.failed:
            self.console.print(f"[bold yellow]{CHECKMARK} {line}, {summary.failed} failed.[/]")
        else:
            self.console.print(f"[bold green]{CHECKMARK} {line}.[/]")

    def close(self) -> None:
        if self.status is not None:
            self.status.stop()
            self.status = None


FLAG_OPTIONS = frozenset({"--delete", "--verbose", "-v", "--help", "-h", "--version"})
VALUE_OPTIONS = frozenset({"--format", "--timeout"})


def parse_timeout(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        raise ConfigurationError(f"Invalid timeout: {value!r} is not a number") from None
    if number <= 0:
        raise ConfigurationError(f"Invalid timeout: {value} must be greater than zero")
    return number


def split_arguments(args: list[str]) -> tuple[list[str], list[str], list[str]]:
    """Sort raw tokens into well-formed options, targets and unknown options.

    Only ``--`` tokens and the short ``-h``/``-v`` switches are options, so a
    path such as ``-img.heic`` stays a target. Value options are always handed
    on as ``--name=value``; a missing value becomes an empty one. Everything
    after a bare ``--`` is a target.
    """
    options: list[str] = []
    targets: list[str] = []
    unknown: list[str] = []
    index = 0
    while index < len(args):
        token = args[index]
        index += 1
        if token == "--":
            targets.extend(args[index:])
            break
        if token in ("-h", "-v"):
            options.append(token)
            continue
        if not token.startswith("--"):
            targets.append(token)
            continue
        name, sep, value = token.partition("=")
        if name in VALUE_OPTIONS:
            if not sep and index < len(args) and not args[index].startswith("--"):
                value = args[index]
                index += 1
            options.append(f"{name}={value}")
        elif name in FLAG_OPTIONS and not sep:
            options.append(token)
        else:
            unknown.append(token)
    return options, targets, unknown


def parse_args(args: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="convert-heic",
        description="Strip metadata from HEIC/HEIF images and convert them to another format.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Requires exiftool and ImageMagick (magick) on PATH. Override their location
with CONVERT_HEIC_EXIFTOOL and CONVERT_HEIC_MAGICK.

Examples:
  %(prog)s                        # convert every HEIC file under the current directory
  %(prog)s ~/Photos --format=jpg  # convert a folder to JPEG
  %(prog)s a.heic b.heic --delete # convert two files and remove the originals
""",
    )
    parser.add_argument(
        "targets",
        nargs="*",
        help="Files or directories to convert (default: current directory)",
    )
    parser.add_argument(
        "--format",
        default=DEFAULT_FORMAT,
        metavar="EXT",
        help=f"Output image format: {'|'.join(OUTPUT_FORMATS)} (default: {DEFAULT_FORMAT})",
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete original HEIC files after successful conversion",
    )
    parser.add_argument(
        "--timeout",
        default=None,
        metavar="SECONDS",
        help="Give up on an exiftool/magick call after this many seconds",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show debug output from the external tools"
    )
    parser.add_argument("--version", action="version", version=f"convert_heic v{VERSION}")
    options, targets, unknown = split_arguments(args)
    namespace = parser.parse_args(options)
    namespace.targets = targets
    namespace.unknown = unknown
    return namespace


def build_options(namespace: argparse.Namespace) -> ConvertOptions:
    targets = tuple(Path(target) for target in namespace.targets) or (Path("."),)
    return ConvertOptions(
        output_format=validate_format(namespace.format),
        delete_original=namespace.delete,
        targets=targets,
        timeout=parse_timeout(namespace.timeout),
    )


def configure_logging(verbose: bool, output: Console) -> None:
    package_logger = logging.getLogger(__package__)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    handler = RichHandler(console=output, show_time=False, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def report_missing_tools(output: Console, missing: list[str]) -> None:
    for tool in missing:
        label, hints = INSTALL_HINTS[tool]
        output.print(f"[red]{CROSS} '{tool}' ({label}) not found.[/]")
        output.print(f"[yellow]  {ARROW} Install with:[/]")
        for platform_name, hint in hints:
            output.print(f"    {platform_name}: {hint}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose, console)
    for option in args.unknown:
        logger.warning("Unknown option ignored: %s", option)
    try:
        options = build_options(args)
    except ConfigurationError as exc:
        console.print(f"[red]{CROSS} {escape(str(exc))}[/]")
        console.print("Use --help to see the supported options.")
        return 1
    try:
        tools = require_tools()
    except ConfigurationError:
        report_missing_tools(console, find_missing_tools())
        return 1
    reporter = ConsoleReporter(console)
    reporter.announce(options)
    files = resolve_targets(options.targets)
    if not files:
        reporter.no_files()
        return 0
    try:
        summary = convert_files(files, options, tools, reporter)
    except KeyboardInterrupt:
        reporter.close()
        console.print(f"\n[red]{CROSS} Interrupted.[/]")
        return 130
    reporter.summary(summary)
    return 0
