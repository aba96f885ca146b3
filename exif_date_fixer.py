"""Add missing EXIF capture dates to photos based on their filenames.

The script walks through a chosen directory and looks for JPEG and HEIC
images.  Images that already carry one of the EXIF ``DateTime``,
``DateTimeOriginal`` or ``DateTimeDigitized`` fields are left alone.  For the
rest, the capture date is inferred from the naming conventions used by common
phone camera apps and written into all three fields::

    IMG-20230115-WA0001.jpg        WhatsApp       2023-01-15 00:00:00
    20230115_123045.jpg            Samsung        2023-01-15 12:30:45
    WP_20230115_12_30_45_Pro.jpg   Windows Phone  2023-01-15 12:30:45

Example usage::

    python exif_date_fixer.py /path/to/folder --recursive

Use ``--dry-run`` to inspect the changes without modifying the files.
"""

from __future__ import annotations

import argparse
import datetime as _dt
import enum
import json
import logging
import os
import re
import shutil
import subprocess
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable, Iterator, NamedTuple, Protocol, Sequence

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".heic", ".heif")

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
DISPLAY_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# exiftool names for the EXIF DateTime, DateTimeOriginal and DateTimeDigitized tags.
DATE_TAGS = ("ModifyDate", "DateTimeOriginal", "CreateDate")

EXIFTOOL_ENV_VAR = "EXIFTOOL"


class ParseMatch(NamedTuple):
    timestamp: _dt.datetime
    parser_name: str


class FilenameDateParser(NamedTuple):
    """A filename naming convention that encodes a capture date.

    ``pattern`` must define ``year``, ``month`` and ``day`` groups and may
    define ``hour``, ``minute`` and ``second``; absent time fields default to
    midnight.  Calendar validity is left to :class:`datetime.datetime`.
    """

    name: str
    pattern: re.Pattern[str]

    def parse(self, filename: str) -> ParseMatch | None:
        match = self.pattern.search(filename)
        if match is None:
            return None

        fields = match.groupdict()
        try:
            timestamp = _dt.datetime(
                int(fields["year"]),
                int(fields["month"]),
                int(fields["day"]),
                int(fields.get("hour") or 0),
                int(fields.get("minute") or 0),
                int(fields.get("second") or 0),
            )
        except ValueError:
            return None
        return ParseMatch(timestamp, self.name)


WHATSAPP_PARSER = FilenameDateParser(
    "WhatsApp",
    re.compile(
        r"(?:IMG|VID)-(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})-WA\d+",
        re.IGNORECASE | re.ASCII,
    ),
)
SAMSUNG_PARSER = FilenameDateParser(
    "Samsung",
    re.compile(
        r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})"
        r"_(?P<hour>\d{2})(?P<minute>\d{2})(?P<second>\d{2})(?!\d)",
        re.ASCII,
    ),
)
WINDOWS_PHONE_PARSER = FilenameDateParser(
    "Windows Phone",
    re.compile(
        r"WP_(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})"
        r"_(?P<hour>\d{2})_(?P<minute>\d{2})_(?P<second>\d{2})(?!\d)",
        re.IGNORECASE | re.ASCII,
    ),
)

# Order matters: the first parser that matches wins.
DEFAULT_PARSERS: tuple[FilenameDateParser, ...] = (
    WHATSAPP_PARSER,
    SAMSUNG_PARSER,
    WINDOWS_PHONE_PARSER,
)


def parse_filename_date(
    filename: str, parsers: Iterable[FilenameDateParser] = DEFAULT_PARSERS
) -> ParseMatch | None:
    """Return the first match produced by ``parsers`` for ``filename``."""

    for parser in parsers:
        parsed = parser.parse(filename)
        if parsed is not None:
            return parsed
    return None


class ProcessingStatus(enum.Enum):
    UPDATED = "updated"
    WOULD_UPDATE = "would_update"
    SKIPPED_HAS_DATE = "skipped_has_date"
    SKIPPED_NO_DATE_IN_FILENAME = "skipped_no_date_in_filename"
    ERROR = "error"


class FileResult(NamedTuple):
    path: Path
    status: ProcessingStatus
    message: str
    timestamp: _dt.datetime | None = None
    parser_name: str | None = None


class ProgressEvent(NamedTuple):
    path: Path
    name: str
    index: int
    total: int
    result: FileResult


class MetadataGateway(Protocol):
    def has_capture_date(self, path: Path) -> bool: ...

    def write_capture_date(self, path: Path, timestamp: _dt.datetime) -> bool: ...


def _is_capture_date(value: object) -> bool:
    """Return ``True`` when ``value`` holds a real EXIF date.

    Cameras without a clock write ``0000:00:00 00:00:00``; that sentinel and
    anything else that does not parse as a date counts as absent.
    """

    text = "" if value is None else str(value).strip()
    if not text:
        return False
    try:
        parsed = _dt.datetime.strptime(text[:19], EXIF_DATETIME_FORMAT)
    except ValueError:
        return False
    return parsed != _dt.datetime.min


def _exiftool_path(path: Path) -> str:
    # exiftool reads a leading "-" as an option.
    return str(Path(path).absolute())


def find_exiftool() -> str | None:
    """Locate the exiftool executable, preferring ``$EXIFTOOL``."""

    override = os.environ.get(EXIFTOOL_ENV_VAR)
    if override:
        return shutil.which(override)
    return shutil.which("exiftool")


class ExifToolMetadata:
    """Read and write EXIF capture dates through the exiftool executable."""

    def __init__(self, executable: str = "exiftool", timeout: float = 30.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def _read_date_tags(self, path: Path) -> dict[str, object]:
        cmd = (
            [self.executable, "-j"]
            + [f"-EXIF:{tag}" for tag in DATE_TAGS]
            + [_exiftool_path(path)]
        )
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("Could not run exiftool on '%s': %s", path, exc)
            return {}
        if result.returncode != 0 or not result.stdout.strip():
            logger.debug(
                "exiftool could not read '%s': %s", path, result.stderr.strip() or "no output"
            )
            return {}
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return {}
        if not data:
            return {}
        entry = data[0]
        if not isinstance(entry, dict):
            return {}
        return entry

    def has_capture_date(self, path: Path) -> bool:
        tags = self._read_date_tags(path)
        return any(_is_capture_date(tags.get(tag)) for tag in DATE_TAGS)

    def write_capture_date(self, path: Path, timestamp: _dt.datetime) -> bool:
        value = timestamp.strftime(EXIF_DATETIME_FORMAT)
        cmd = (
            [self.executable, "-overwrite_original", "-P", "-q"]
            + [f"-EXIF:{tag}={value}" for tag in DATE_TAGS]
            + [_exiftool_path(path)]
        )
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Failed to update metadata for '%s': %s", path, exc)
            return False
        if result.returncode != 0:
            error = result.stderr.strip() or "unknown error"
            logger.warning("Failed to update metadata for '%s': %s", path, error)
            return False
        return True


def decide_file(
    path: Path,
    gateway: MetadataGateway,
    dry_run: bool = False,
    parsers: Iterable[FilenameDateParser] = DEFAULT_PARSERS,
) -> FileResult:
    """Classify ``path`` and, unless ``dry_run``, write the inferred date.

    Never raises: unexpected failures are reported as
    :attr:`ProcessingStatus.ERROR` carrying the exception message.
    """

    try:
        if gateway.has_capture_date(path):
            return FileResult(path, ProcessingStatus.SKIPPED_HAS_DATE, "EXIF date already exists")

        parsed = parse_filename_date(path.name, parsers)
        if parsed is None:
            return FileResult(
                path,
                ProcessingStatus.SKIPPED_NO_DATE_IN_FILENAME,
                "Could not parse date from filename",
            )

        display = parsed.timestamp.strftime(DISPLAY_DATETIME_FORMAT)
        if dry_run:
            return FileResult(
                path,
                ProcessingStatus.WOULD_UPDATE,
                f"Would add EXIF date {display}",
                parsed.timestamp,
                parsed.parser_name,
            )

        if not gateway.write_capture_date(path, parsed.timestamp):
            return FileResult(path, ProcessingStatus.ERROR, "Failed to write EXIF data")
        return FileResult(
            path,
            ProcessingStatus.UPDATED,
            f"Added EXIF date {display}",
            parsed.timestamp,
            parsed.parser_name,
        )
    except Exception as exc:  # noqa: BLE001 - reported as a per-file error
        return FileResult(path, ProcessingStatus.ERROR, str(exc) or type(exc).__name__)


def iter_process_files(
    paths: Sequence[Path],
    gateway: MetadataGateway,
    dry_run: bool = False,
    parsers: Iterable[FilenameDateParser] = DEFAULT_PARSERS,
) -> Iterator[ProgressEvent]:
    """Yield one :class:`ProgressEvent` per path, processing lazily in order.

    Stopping the iteration stops the batch before the next file is touched.
    """

    parsers = tuple(parsers)
    total = len(paths)
    for index, path in enumerate(paths, start=1):
        path = Path(path)
        result = decide_file(path, gateway, dry_run=dry_run, parsers=parsers)
        yield ProgressEvent(path, path.name, index, total, result)


def process_files(
    paths: Sequence[Path],
    gateway: MetadataGateway,
    dry_run: bool = False,
    parsers: Iterable[FilenameDateParser] = DEFAULT_PARSERS,
    on_progress: Callable[[ProgressEvent], None] | None = None,
) -> list[FileResult]:
    results: list[FileResult] = []
    for event in iter_process_files(paths, gateway, dry_run=dry_run, parsers=parsers):
        if on_progress is not None:
            on_progress(event)
        results.append(event.result)
    return results


class BatchSummary(NamedTuple):
    total: int
    updated: int
    would_update: int
    skipped_has_date: int
    skipped_no_date: int
    errors: int
    dry_run: bool = False

    @classmethod
    def from_results(cls, results: Iterable[FileResult], dry_run: bool = False) -> BatchSummary:
        counts = Counter(result.status for result in results)
        return cls(
            total=sum(counts.values()),
            updated=counts[ProcessingStatus.UPDATED],
            would_update=counts[ProcessingStatus.WOULD_UPDATE],
            skipped_has_date=counts[ProcessingStatus.SKIPPED_HAS_DATE],
            skipped_no_date=counts[ProcessingStatus.SKIPPED_NO_DATE_IN_FILENAME],
            errors=counts[ProcessingStatus.ERROR],
            dry_run=dry_run,
        )

    @property
    def changes(self) -> int:
        return self.would_update if self.dry_run else self.updated


def _is_supported(filename: str) -> bool:
    return Path(filename).suffix.lower() in SUPPORTED_EXTENSIONS


def iter_image_files(root: Path, recursive: bool = False) -> Iterator[Path]:
    """Yield supported image files from ``root``.

    Directories that cannot be listed are skipped, and a missing ``root``
    yields nothing.
    """

    if recursive:
        # os.walk ignores listing errors unless given an onerror callback.
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            base = Path(dirpath)
            for filename in sorted(filenames):
                if _is_supported(filename) and (base / filename).is_file():
                    yield base / filename
    else:
        try:
            entries = sorted(root.iterdir())
        except OSError as exc:
            logger.debug("Cannot list '%s': %s", root, exc)
            return
        for path in entries:
            if _is_supported(path.name) and path.is_file():
                yield path


def discover_image_files(root: Path, recursive: bool = False) -> list[Path]:
    return list(iter_image_files(root, recursive=recursive))


STATUS_LABELS = {
    ProcessingStatus.UPDATED: "✓ Updated",
    ProcessingStatus.WOULD_UPDATE: "→ Would update",
    ProcessingStatus.SKIPPED_HAS_DATE: "- Skipped",
    ProcessingStatus.SKIPPED_NO_DATE_IN_FILENAME: "- Skipped",
    ProcessingStatus.ERROR: "✗ Error",
}


def _print_progress(event: ProgressEvent) -> None:
    result = event.result
    print(f"[{event.index}/{event.total}] {event.name}")
    print(f"  {STATUS_LABELS[result.status]}: {result.message}")
    print()


def print_summary(summary: BatchSummary) -> None:
    print("Summary:")
    print(f"- Total files: {summary.total}")
    if summary.dry_run:
        print(f"- Would update: {summary.would_update}")
    else:
        print(f"- Updated: {summary.updated}")
    print(f"- Skipped (has date): {summary.skipped_has_date}")
    print(f"- Skipped (no date in filename): {summary.skipped_no_date}")
    print(f"- Errors: {summary.errors}")


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="EXIF Date Fixer - adds EXIF date metadata to images based on filename patterns",
    )
    parser.add_argument(
        "directory",
        nargs="?",
        type=Path,
        default=Path("."),
        help="Directory to scan for image files (default: current directory)",
    )
    parser.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Scan directories recursively",
    )
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Preview changes without modifying files",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log exiftool diagnostics",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(
    argv: Iterable[str] | None = None, gateway: MetadataGateway | None = None
) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    directory: Path = args.directory

    if not directory.exists():
        raise SystemExit(f"Error: Path '{directory}' does not exist.")
    if not directory.is_dir():
        raise SystemExit(f"Error: '{directory}' is not a directory.")

    if gateway is None:
        executable = find_exiftool()
        if executable is None:
            raise SystemExit(
                "The 'exiftool' executable is required to run this script. "
                "Install it with 'brew install exiftool', "
                "'sudo apt install libimage-exiftool-perl' or from "
                "https://exiftool.org/, or point the EXIFTOOL environment "
                "variable at it."
            )
        gateway = ExifToolMetadata(executable)

    dry_run_text = " (DRY RUN)" if args.dry_run else ""
    print(f"EXIF Date Fixer v{__version__} - Scanning: {directory.resolve()}{dry_run_text}")
    print(f"Recursive: {'Yes' if args.recursive else 'No'}")
    print(f"Dry Run: {'Yes' if args.dry_run else 'No'}")
    print(f"Supported extensions: {', '.join(SUPPORTED_EXTENSIONS)}")
    print()

    print("Finding files...")
    paths = discover_image_files(directory, recursive=args.recursive)
    if not paths:
        print("No supported files found.")
        return 0

    print(f"Found {len(paths)} files to process...")
    print()

    results = process_files(paths, gateway, dry_run=args.dry_run, on_progress=_print_progress)
    print_summary(BatchSummary.from_results(results, dry_run=args.dry_run))
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry point
    raise SystemExit(main())
