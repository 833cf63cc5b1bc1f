"""
Text parsers for host command output.

Each parser raises ParseError on malformed input; callers decide which
default to substitute.
"""
import json
import os
import re
from datetime import datetime
from typing import Dict, List, Optional

from .errors import ParseError
from .models import StorageUsage, BackupRecord
from .config import BACKUP_IMAGE_SUFFIX, BACKUP_HASH_SUFFIX, BACKUP_ARCHIVE_SUFFIXES

# Power of 1024 relative to MB
SIZE_UNIT_RANKS = {
    "K": -1,
    "M": 0,
    "G": 1,
    "T": 2,
}


def parse_property(getprop_output: str, key: str) -> str:
    """Extract ``[key]: [value]`` from getprop output."""
    match = re.search(rf'\[{re.escape(key)}\]:\s*\[(.*?)\]', getprop_output)
    if not match or not match.group(1).strip():
        raise ParseError(f"Property {key} not found")
    return match.group(1).strip()


def parse_meminfo_mb(meminfo: str, field_name: str) -> int:
    """Read a ``<Field>: N kB`` line and convert to whole MB."""
    match = re.search(rf'^{re.escape(field_name)}:\s*(\d+)\s*kB', meminfo, re.MULTILINE)
    if not match:
        raise ParseError(f"{field_name} missing from meminfo")
    return int(match.group(1)) // 1024


def parse_size_to_mb(token: str) -> int:
    """
    Normalize a df size token to MB.

    "1.5G" -> 1536, "512M" -> 512, "2T" -> 2097152, "2048K" -> 2.
    A bare number is taken as 1K blocks, which is what df prints
    without -h.
    """
    text = token.strip().upper()
    match = re.match(r'^(\d+(?:\.\d+)?)([KMGT]?)I?B?$', text)
    if not match:
        raise ParseError(f"Bad size token: {token!r}")
    value = float(match.group(1))
    unit = match.group(2) or "K"
    return int(value * (1024 ** SIZE_UNIT_RANKS[unit]))


def parse_df(df_output: str) -> StorageUsage:
    """
    Parse the data line of ``df -h <mount>``.

    Long filesystem names wrap onto their own line on some toybox
    builds, so fields are taken from the end of the last line.
    """
    lines = [l for l in df_output.strip().split('\n') if l.strip()]
    if not lines:
        raise ParseError("Empty df output")
    parts = lines[-1].split()
    if len(parts) < 5 or not parts[-2].endswith('%'):
        raise ParseError(f"Unexpected df line: {lines[-1]!r}")
    try:
        percentage = int(parts[-2].rstrip('%'))
    except ValueError as e:
        raise ParseError(f"Bad usage percentage: {parts[-2]!r}", e)
    return StorageUsage(
        total_mb=parse_size_to_mb(parts[-5]),
        used_mb=parse_size_to_mb(parts[-4]),
        free_mb=parse_size_to_mb(parts[-3]),
        percentage=percentage,
    )


def parse_int(text: str) -> int:
    value = text.strip()
    if not re.match(r'^-?\d+$', value):
        raise ParseError(f"Not an integer: {value[:40]!r}")
    return int(value)


def parse_thermal(raw: str) -> int:
    """Millidegrees to whole degrees Celsius."""
    value = parse_int(raw)
    if value <= 0:
        raise ParseError(f"Implausible thermal reading: {value}")
    return value // 1000


def parse_uptime(raw: str) -> float:
    try:
        return float(raw.strip().split()[0])
    except (IndexError, ValueError) as e:
        raise ParseError(f"Bad uptime: {raw[:40]!r}", e)


def parse_json(raw: str) -> dict:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ParseError(f"Invalid JSON: {e}", e)
    if not isinstance(data, dict):
        raise ParseError("Expected a JSON object")
    return data


def parse_module_prop(raw: str) -> Dict[str, str]:
    """``key=value`` lines of a module.prop file."""
    info = {}
    for line in raw.split('\n'):
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        info[key.strip()] = value.strip()
    if not info:
        raise ParseError("module.prop has no entries")
    return info


def _backup_type(file_type: str, filename: str) -> Optional[str]:
    if file_type == "directory":
        return "directory"
    if filename.endswith(BACKUP_IMAGE_SUFFIX):
        return "image"
    if filename.endswith(BACKUP_ARCHIVE_SUFFIXES):
        return "archive"
    return None


def _strip_backup_suffix(filename: str) -> str:
    for suffix in (BACKUP_IMAGE_SUFFIX,) + BACKUP_ARCHIVE_SUFFIXES:
        if filename.endswith(suffix):
            return filename[:-len(suffix)]
    return filename


def parse_backup_listing(stat_output: str) -> List[BackupRecord]:
    """
    Build backup records from ``stat -c '%F|%s|%Y|%n'`` lines.

    Sidecar ``<name>.sha256`` files mark integrity hashes and are not
    listed as backups themselves. Lines that do not split into four
    fields are skipped.
    """
    entries = []
    hashes = set()
    for line in stat_output.split('\n'):
        parts = line.strip().split('|', 3)
        if len(parts) != 4:
            continue
        file_type, size, mtime, path = parts
        filename = os.path.basename(path.rstrip('/'))
        if filename.endswith(BACKUP_HASH_SUFFIX):
            hashes.add(filename[:-len(BACKUP_HASH_SUFFIX)])
            continue
        kind = _backup_type(file_type, filename)
        if kind is None:
            continue
        try:
            created = datetime.fromtimestamp(int(mtime)).strftime('%Y-%m-%d %H:%M:%S')
            size_bytes = int(size)
        except ValueError:
            continue
        entries.append((_strip_backup_suffix(filename), size_bytes, created, kind, path))

    records = [
        BackupRecord(
            name=name,
            size_bytes=size_bytes,
            created_at=created,
            has_integrity_hash=name in hashes,
            type=kind,
            path=path,
        )
        for name, size_bytes, created, kind, path in entries
    ]
    records.sort(key=lambda r: r.created_at, reverse=True)
    return records


def parse_name_list(raw: str) -> List[str]:
    """One name per line, blank lines and comments ignored."""
    return [l.strip() for l in raw.split('\n') if l.strip() and not l.strip().startswith('#')]
