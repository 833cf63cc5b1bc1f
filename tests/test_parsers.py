"""
Parsers for getprop, meminfo, df, thermal and backup listings.
"""
from datetime import datetime

import pytest

from core import parsers
from core.errors import ParseError
from core.models import StorageUsage


GETPROP = """[ro.product.model]: [Pixel 6]
[ro.product.device]: [oriole]
[ro.build.version.release]: [14]
[ro.empty]: []
"""


def test_parse_property():
    assert parsers.parse_property(GETPROP, "ro.product.model") == "Pixel 6"
    assert parsers.parse_property(GETPROP, "ro.build.version.release") == "14"


@pytest.mark.parametrize("key", ["ro.missing", "ro.empty"])
def test_parse_property_missing(key):
    with pytest.raises(ParseError):
        parsers.parse_property(GETPROP, key)


def test_parse_meminfo_whole_megabytes():
    meminfo = "MemTotal:        7869428 kB\nMemAvailable:    3864540 kB\n"
    assert parsers.parse_meminfo_mb(meminfo, "MemAvailable") == 3773
    assert parsers.parse_meminfo_mb("MemAvailable: 3865000 kB\n", "MemAvailable") == 3774
    assert parsers.parse_meminfo_mb(meminfo, "MemTotal") == 7684


def test_parse_meminfo_missing_field():
    with pytest.raises(ParseError):
        parsers.parse_meminfo_mb("MemTotal: 100 kB\n", "MemAvailable")


@pytest.mark.parametrize("token,expected", [
    ("1.5G", 1536),
    ("512M", 512),
    ("2T", 2097152),
    ("2048K", 2),
    ("1024", 1),
    ("110G", 112640),
])
def test_parse_size_to_mb(token, expected):
    assert parsers.parse_size_to_mb(token) == expected


def test_parse_size_rejects_garbage():
    with pytest.raises(ParseError):
        parsers.parse_size_to_mb("lots")


def test_parse_df():
    output = ("Filesystem       Size  Used Avail Use% Mounted on\n"
              "/dev/block/dm-40 110G   38G   72G  35% /data\n")
    assert parsers.parse_df(output) == StorageUsage(
        total_mb=112640, used_mb=38912, free_mb=73728, percentage=35)


def test_parse_df_wrapped_filesystem_name():
    output = ("Filesystem            Size  Used Avail Use% Mounted on\n"
              "/dev/block/bootdevice/by-name/userdata\n"
              "                      1.5G  512M    1G  33% /data\n")
    usage = parsers.parse_df(output)
    assert usage.total_mb == 1536
    assert usage.used_mb == 512
    assert usage.percentage == 33


@pytest.mark.parametrize("output", ["", "Filesystem Size Used\n", "/dev/x 1G 1G 0G full /data\n"])
def test_parse_df_malformed(output):
    with pytest.raises(ParseError):
        parsers.parse_df(output)


def test_parse_thermal():
    assert parsers.parse_thermal("42500\n") == 42
    with pytest.raises(ParseError):
        parsers.parse_thermal("0")
    with pytest.raises(ParseError):
        parsers.parse_thermal("")


def test_parse_uptime():
    assert parsers.parse_uptime("3600.25 1000.00\n") == 3600.25
    with pytest.raises(ParseError):
        parsers.parse_uptime("")


def test_parse_json_requires_object():
    assert parsers.parse_json('{"maxBootAttempts": 5}') == {"maxBootAttempts": 5}
    with pytest.raises(ParseError):
        parsers.parse_json("[1, 2]")
    with pytest.raises(ParseError):
        parsers.parse_json("{broken")


def test_parse_module_prop():
    info = parsers.parse_module_prop("# comment\nid=abl\nversion=v1.0.0\nname=A = B\n")
    assert info == {"id": "abl", "version": "v1.0.0", "name": "A = B"}
    with pytest.raises(ParseError):
        parsers.parse_module_prop("\n# nothing\n")


def test_parse_backup_listing():
    listing = "\n".join([
        "regular file|67108864|1735000000|/data/local/tmp/antibootloop/kernels/boot_stock.img",
        "regular file|65|1735000000|/data/local/tmp/antibootloop/kernels/boot_stock.sha256",
        "regular file|1024|1736000000|/data/local/tmp/antibootloop/kernels/boot_new.img",
        "regular file|10|1736000000|/data/local/tmp/antibootloop/kernels/notes.txt",
        "garbage line",
    ])
    backups = parsers.parse_backup_listing(listing)

    assert [b.name for b in backups] == ["boot_new", "boot_stock"]
    newest, oldest = backups
    assert newest.has_integrity_hash is False
    assert oldest.has_integrity_hash is True
    assert oldest.size_bytes == 67108864
    assert oldest.type == "image"
    assert oldest.created_at == datetime.fromtimestamp(1735000000).strftime('%Y-%m-%d %H:%M:%S')
    assert oldest.to_dict()["has_hash"] is True


def test_parse_backup_listing_empty():
    assert parsers.parse_backup_listing("") == []


def test_parse_name_list():
    assert parsers.parse_name_list("a\n\n# c\n b \n") == ["a", "b"]
