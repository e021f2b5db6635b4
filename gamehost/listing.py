"""Pure helpers for paths, directory listings, timestamps and tar archives."""

from __future__ import annotations

import io
import posixpath
import re
import tarfile
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .engine import DockerError
from .records import FileInfo

SERVER_ROOT = "/data/server"
BACKUPS_ROOT = "/data/backups"

_BACKUP_PREFIX = "backup-"
_BACKUP_SUFFIX = ".tar.gz"
_BACKUP_STAMP = "%Y-%m-%d_%H-%M-%S"
_BACKUP_STAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}")
_MODIFIED_FORMAT = "%Y-%m-%d %H:%M:%S"
_INT_RE = re.compile(r"[+-]?\d+")

_MONTHS = {
    name: number
    for number, name in enumerate(
        ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"), start=1
    )
}


@dataclass(frozen=True)
class PathValidation:
    """Which path prefixes are allowed, and where to fall back to."""

    allowed_prefixes: tuple[str, ...]
    default_path: str = ""


SERVER_ONLY = PathValidation((SERVER_ROOT,), SERVER_ROOT)
SERVER_AND_BACKUPS = PathValidation((SERVER_ROOT, BACKUPS_ROOT), SERVER_ROOT)


def validate_path(path: str, validation: PathValidation) -> str:
    """Return ``path`` if it lies under an allowed prefix, else the default path.

    Raises DockerError when the path is not allowed and there is no default.
    """
    if path in ("", "/"):
        return validation.default_path
    if any(path.startswith(prefix) for prefix in validation.allowed_prefixes):
        return path
    if validation.default_path:
        return validation.default_path
    allowed = "[" + " ".join(validation.allowed_prefixes) + "]"
    raise DockerError("validate_path", f"access denied: path must be within {allowed}")


def _now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now().astimezone()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _atoi(text: str) -> int | None:
    return int(text) if _INT_RE.fullmatch(text) else None


def _make_date(year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    # Out-of-range days, hours and minutes roll over into the following units.
    return datetime(year, month, 1, tzinfo=timezone.utc) + timedelta(days=day - 1, hours=hour, minutes=minute)


def backup_filename(moment: datetime) -> str:
    """The archive name for a backup taken at ``moment``."""
    return f"{_BACKUP_PREFIX}{moment.strftime(_BACKUP_STAMP)}{_BACKUP_SUFFIX}"


def parse_backup_timestamp(filename: str, now: datetime | None = None) -> datetime:
    """Read the UTC timestamp out of a backup file name, or return ``now``."""
    now = _now(now)
    if not (filename.startswith(_BACKUP_PREFIX) and filename.endswith(_BACKUP_SUFFIX)):
        return now
    stamp = filename[len(_BACKUP_PREFIX):len(filename) - len(_BACKUP_SUFFIX)]
    if not _BACKUP_STAMP_RE.fullmatch(stamp):
        return now
    try:
        return datetime.strptime(stamp, _BACKUP_STAMP).replace(tzinfo=timezone.utc)
    except ValueError:
        return now


def parse_file_timestamp(month: str, day: str, time_or_year: str, now: datetime | None = None) -> datetime:
    """Turn the date columns of ``ls -la`` into a UTC time, or return ``now``.

    Recent entries show a time of day and are assumed to be from the last twelve
    months; older ones show a year and are placed at noon.
    """
    now = _now(now)
    month_num = _MONTHS.get(month)
    day_num = _atoi(day)
    if month_num is None or day_num is None:
        return now
    try:
        if ":" in time_or_year:
            parts = time_or_year.split(":")
            if len(parts) != 2:
                return now
            hour, minute = _atoi(parts[0]), _atoi(parts[1])
            if hour is None or minute is None:
                return now
            stamp = _make_date(now.year, month_num, day_num, hour, minute)
            if stamp > now:
                stamp = _make_date(now.year - 1, month_num, day_num, hour, minute)
            return stamp
        year = _atoi(time_or_year)
        if year is None:
            return now
        return _make_date(year, month_num, day_num, 12, 0)
    except (ValueError, OverflowError):
        return now


def clean_filename(filename: str) -> str:
    """Strip whitespace and control characters; ``""`` for names to skip."""
    cleaned = filename.strip()
    if cleaned in ("", ".", ".."):
        return ""
    for char in ("\x00", "\r", "\n"):
        cleaned = cleaned.replace(char, "")
    return cleaned


def parse_ls_output(output: str, base_path: str, now: datetime | None = None) -> list[FileInfo]:
    """Parse ``ls -la`` output for the directory ``base_path``."""
    now = _now(now)
    files: list[FileInfo] = []
    for raw_line in output.strip().split("\n"):
        line = raw_line.strip()
        if not line or line.startswith("total"):
            continue
        fields = line.split()
        if len(fields) < 9:
            continue
        perms, size_text, month, day, time_or_year = fields[0], fields[4], fields[5], fields[6], fields[7]
        name = " ".join(fields[8:])
        if name in (".", ".."):
            continue
        clean_name = clean_filename(name)
        if not clean_name:
            continue
        size = _atoi(size_text) or 0
        if clean_name.startswith(_BACKUP_PREFIX) and clean_name.endswith(_BACKUP_SUFFIX):
            modified = parse_backup_timestamp(clean_name, now)
        else:
            modified = parse_file_timestamp(month, day, time_or_year, now)
        files.append(
            FileInfo(
                name=clean_name,
                path=posixpath.normpath(posixpath.join(base_path, clean_name)),
                is_dir=perms.startswith("d"),
                size=size,
                modified=modified.strftime(_MODIFIED_FORMAT),
            )
        )
    return files


def sort_files(files: list[FileInfo], is_backups_path: bool) -> list[FileInfo]:
    """Directories first by name, then files newest-first (backups) or largest-first."""
    dirs = sorted((f for f in files if f.is_dir), key=lambda f: f.name.lower())
    regular = [f for f in files if not f.is_dir]
    if is_backups_path:
        regular.sort(key=lambda f: f.modified, reverse=True)
    else:
        regular.sort(key=lambda f: f.size, reverse=True)
    return dirs + regular


def create_tar_archive(filename: str, content: bytes) -> bytes:
    """A tar archive holding one regular file."""
    buffer = io.BytesIO()
    info = tarfile.TarInfo(name=filename)
    info.mode = 0o644
    info.size = len(content)
    info.mtime = int(time.time())
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def clean_docker_output(output):
    """Drop a leading stream-multiplexing header from exec output, if present."""
    head = output[:4]
    if len(output) > 8 and head in (b"\x01\0\0\0", b"\x02\0\0\0", "\x01\0\0\0", "\x02\0\0\0"):
        return output[8:]
    return output