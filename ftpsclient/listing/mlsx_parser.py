"""
Parser de lineas MLSD/MLST (RFC 3659).

Formato: ``hecho=valor;hecho=valor;...; nombre``. El espacio antes del nombre
es el separador; el nombre puede contener espacios y ``;``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..core.errors import ItemParsingError
from .item import Item, ItemType, MlsxFacts, MlsxPerm
from .mode import mode_to_attribute

logger = logging.getLogger(__name__)

DATE_TIME_MIN_LEN = 14
DATE_TIME_MAX_LEN = 18

_TYPES = {
    "file": ItemType.FILE,
    "dir": ItemType.DIRECTORY,
    "cdir": ItemType.CURRENT_DIRECTORY,
    "pdir": ItemType.PARENT_DIRECTORY,
}

_PERMS = {
    "a": MlsxPerm.APPEND,
    "c": MlsxPerm.CREATE,
    "d": MlsxPerm.DELETE,
    "e": MlsxPerm.CHANGE_DIRECTORY,
    "f": MlsxPerm.RENAME,
    "l": MlsxPerm.LIST,
    "m": MlsxPerm.MAKE_DIRECTORY,
    "p": MlsxPerm.DELETE_DIRECTORY,
    "r": MlsxPerm.RETRIEVE,
    "w": MlsxPerm.STORE,
}

_TYPE_CHARS = {
    ItemType.DIRECTORY: "d",
    ItemType.CURRENT_DIRECTORY: "d",
    ItemType.PARENT_DIRECTORY: "d",
    ItemType.SYMBOLIC_LINK: "l",
}


class MlsxItemParser:
    def parse_line(self, line: str) -> Optional[Item]:
        line = line.rstrip("\r\n")
        if not line:
            raise ItemParsingError("line cannot be empty")

        space = line.find(" ")
        if space == -1:
            raise ItemParsingError(f"no name separator in MLSx line: {line!r}")

        item = Item(name=_parse_name(line[space:]), raw_text=line, mlsx=MlsxFacts())
        for field in line[:space].split(";"):
            if field:
                _apply_fact(item, field)

        if item.name == ".":
            item.item_type = ItemType.CURRENT_DIRECTORY
        elif item.name == "..":
            item.item_type = ItemType.PARENT_DIRECTORY
        if item.mode is not None:
            item.attributes = mode_to_attribute(item.mode, _TYPE_CHARS.get(item.item_type, "-"))
        return item


def _parse_name(segment: str) -> str:
    # the separator is exactly one space followed by the pathname
    if len(segment) < 2 or segment[1] == " ":
        raise ItemParsingError(f"MLSx name is not in proper format: {segment!r}")
    name = segment.strip()
    if not name:
        raise ItemParsingError("MLSx name cannot be empty")
    return name


def _apply_fact(item: Item, field: str) -> None:
    name, sep, value = field.partition("=")
    name = name.strip().lower()
    value = value.strip()
    if not sep:
        raise ItemParsingError(f"MLSx fact must contain '=': {field!r}")
    if not name:
        raise ItemParsingError(f"MLSx fact name cannot be empty: {field!r}")

    facts = item.mlsx
    if name == "size":
        item.size = _parse_size(value)
    elif name == "modify":
        item.modified = parse_datetime(value)
    elif name == "create":
        facts.created = parse_datetime(value)
    elif name == "type":
        item.item_type, link = _parse_type(value)
        if link:
            item.symbolic_link = link
    elif name == "unique":
        facts.unique_id = value
    elif name == "perm":
        facts.perm = parse_perm(value)
    elif name == "lang":
        facts.lang = value
    elif name == "media-type":
        facts.media_type = value
    elif name == "charset":
        facts.charset = value
    elif name == "unix.group":
        facts.group = value
    elif name == "unix.owner":
        facts.owner = value
    elif name == "unix.mode":
        try:
            item.mode = int(value, 8) if value else None
        except ValueError as e:
            raise ItemParsingError(f"MLSx 'unix.mode' is not octal: {value!r}") from e


def _parse_size(value: str) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError as e:
        raise ItemParsingError(f"MLSx 'size' fact is not an integer: {value!r}") from e


def _parse_type(value: str) -> tuple[ItemType, Optional[str]]:
    lowered = value.lower()
    if lowered in _TYPES:
        return _TYPES[lowered], None
    if lowered.startswith("os."):
        # e.g. OS.unix=slink:/target
        kind, _, target = value.partition("=")[2].partition(":")
        if kind.lower() == "slink":
            return ItemType.SYMBOLIC_LINK, target or None
        return ItemType.UNKNOWN, None
    raise ItemParsingError(f"unknown MLSx 'type' value {value!r}")


def parse_perm(value: str) -> MlsxPerm:
    """Letras de permiso RFC 3659; una cadena POSIX de 10 caracteres solo aporta r/w del propietario."""
    value = value.lower()
    if len(value) == 10 and ("-" in value or value == "drwxrwxrwx"):
        letters = value[1:3]
    else:
        letters = value

    perm = MlsxPerm.NONE
    for letter in letters:
        if letter == "-":
            continue
        if letter not in _PERMS:
            raise ItemParsingError(f"unknown MLSx 'perm' value {letter!r}")
        perm |= _PERMS[letter]
    return perm


def parse_datetime(value: str) -> Optional[datetime]:
    """``YYYYMMDDHHMMSS[.sss]`` en UTC -> hora local (sin tzinfo)."""
    if not value:
        return None
    if len(value) < DATE_TIME_MIN_LEN:
        raise ItemParsingError(f"MLSx date/time value too small: {value!r}")
    if len(value) > DATE_TIME_MAX_LEN:
        raise ItemParsingError(f"MLSx date/time value too large: {value!r}")
    try:
        stamp = datetime.strptime(value[:14], "%Y%m%d%H%M%S")
        fraction = value[15:] if len(value) > 15 and value[14] == "." else ""
        microsecond = int(fraction.ljust(6, "0")[:6]) if fraction else 0
    except ValueError as e:
        raise ItemParsingError(f"invalid MLSx date/time value: {value!r}") from e
    utc = stamp.replace(microsecond=microsecond, tzinfo=timezone.utc)
    return utc.astimezone().replace(tzinfo=None)
