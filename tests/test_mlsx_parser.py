from datetime import datetime, timezone

import pytest

from ftpsclient.core.errors import ItemParsingError
from ftpsclient.listing.item import ItemType, MlsxPerm
from ftpsclient.listing.mlsx_parser import MlsxItemParser, parse_datetime, parse_perm

parser = MlsxItemParser()


def _local(*args):
    return datetime(*args, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)


def test_file_entry():
    item = parser.parse_line("type=file;size=1024;modify=20240115103000;perm=adfr; file name.txt")
    assert item.name == "file name.txt"
    assert item.size == 1024
    assert item.is_file
    assert item.modified == _local(2024, 1, 15, 10, 30, 0)
    assert item.mlsx.perm == MlsxPerm.APPEND | MlsxPerm.DELETE | MlsxPerm.RENAME | MlsxPerm.RETRIEVE


def test_directory_entry():
    item = parser.parse_line("Type=dir;Modify=20230101000000;Perm=el; pub")
    assert item.is_directory
    assert item.mlsx.perm == MlsxPerm.CHANGE_DIRECTORY | MlsxPerm.LIST


@pytest.mark.parametrize("line, expected", [
    ("type=cdir;perm=el; .", ItemType.CURRENT_DIRECTORY),
    ("type=pdir;perm=el; ..", ItemType.PARENT_DIRECTORY),
    ("type=cdir;perm=el; /home/user", ItemType.CURRENT_DIRECTORY),
])
def test_directory_markers(line, expected):
    assert parser.parse_line(line).item_type is expected


def test_all_facts_are_applied():
    item = parser.parse_line(
        "type=file;unique=801U5;lang=en;media-type=text/plain;charset=UTF-8;"
        "unix.owner=alice;unix.group=staff;create=20200101000000;size=3; notes.txt")
    facts = item.mlsx
    assert facts.unique_id == "801U5"
    assert facts.lang == "en"
    assert facts.media_type == "text/plain"
    assert facts.charset == "UTF-8"
    assert facts.owner == "alice"
    assert facts.group == "staff"
    assert facts.created == _local(2020, 1, 1, 0, 0, 0)
    # the last fact before the name still counts
    assert item.size == 3


def test_unix_mode_is_octal():
    item = parser.parse_line("type=file;unix.mode=0744; run.sh")
    assert item.mode == 0o744
    assert item.attributes == "-rwxr--r--"


def test_unix_mode_on_directory():
    item = parser.parse_line("type=dir;unix.mode=755; bin")
    assert item.attributes == "drwxr-xr-x"


def test_os_symbolic_link():
    item = parser.parse_line("type=OS.unix=slink:/var/www;size=8; www")
    assert item.item_type is ItemType.SYMBOLIC_LINK
    assert item.symbolic_link == "/var/www"


def test_other_os_type_is_unknown():
    assert parser.parse_line("type=OS.unix=chr-13/29; tty").item_type is ItemType.UNKNOWN


def test_unknown_facts_are_ignored():
    item = parser.parse_line("type=file;x.custom=1;unix.uid=1000; data.bin")
    assert item.name == "data.bin"


@pytest.mark.parametrize("line", [
    "",
    "type=file;size=1;name-without-space",
    "type=file;size=1;  two-spaces",
    "type=socket; s",
    "type=file;size=abc; f",
    "type=file;perm=rz; f",
    "type=file;unix.mode=9x; f",
    "type=file;sizeonly; f",
])
def test_malformed_lines(line):
    with pytest.raises(ItemParsingError):
        parser.parse_line(line)


def test_parse_perm_posix_string_uses_owner_read_write():
    assert parse_perm("-rw-r--r--") == MlsxPerm.RETRIEVE | MlsxPerm.STORE
    assert parse_perm("-r--r--r--") == MlsxPerm.RETRIEVE


def test_parse_perm_letters():
    assert parse_perm("cmelp") == (MlsxPerm.CREATE | MlsxPerm.MAKE_DIRECTORY | MlsxPerm.CHANGE_DIRECTORY
                                   | MlsxPerm.LIST | MlsxPerm.DELETE_DIRECTORY)
    assert parse_perm("") == MlsxPerm.NONE


def test_parse_datetime_with_fraction():
    assert parse_datetime("20240115103000.123") == _local(2024, 1, 15, 10, 30, 0, 123000)


@pytest.mark.parametrize("value", ["2024011510", "20240115103000.12345", "2024011510300x"])
def test_parse_datetime_invalid(value):
    with pytest.raises(ItemParsingError):
        parse_datetime(value)
