"""
Parser de listados LIST clasicos.

Reconoce lineas estilo UNIX (``ls -l``) y, si no encajan, el formato
DOS/IIS. Las lineas que no se pueden interpretar devuelven None.
"""

import logging
import re
from datetime import date, datetime
from typing import Optional

from .item import Item, ItemType
from .mode import attribute_to_mode

logger = logging.getLogger(__name__)

_MONTHS = r"Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec|mrt|mei|okt"

_UNIX_ATTRIBUTES = re.compile(r"(d|l|-|b|c|p|s)(r|w|x|-|t|s|S|T){9}")
_UNIX_ENTRY = re.compile(
    r"(?:(?P<size>\d+)\s+)?\b(?P<month>" + _MONTHS + r")\s+(?P<day>\d+)\s+"
    r"(?:(?P<year>(?:19|20)\d\d)|(?P<time>\d+:\d\d))\s+(?P<name>.+)$",
    re.IGNORECASE)
_UNIX_SYMLINK = re.compile(r"\s+->\s+")

_DOS_ENTRY = re.compile(
    r"^\s*(?P<date>\d\d-\d\d-\d\d(?:\d\d)?)\s+(?P<time>\d\d:\d\d)\s*(?P<ampm>AM|PM)?\s+"
    r"(?:(?P<dir><DIR>)|(?P<size>\d+))\s+(?P<name>.+?)\s*$",
    re.IGNORECASE)

_MONTH_NUMBERS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    "mrt": 3, "mei": 5, "okt": 10,
}

_UNIX_TYPES = {
    "l": ItemType.SYMBOLIC_LINK,
    "d": ItemType.DIRECTORY,
    "-": ItemType.FILE,
    "b": ItemType.BLOCK_SPECIAL,
    "c": ItemType.CHARACTER_SPECIAL,
    "p": ItemType.NAMED_SOCKET,
    "s": ItemType.DOMAIN_SOCKET,
}

# IIS keeps this file in every WWW user's home
_IGNORED_NAMES = {"~ftpsvc~.ckm"}


class ListItemParser:
    def __init__(self, today: Optional[date] = None):
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def parse_line(self, line: str) -> Optional[Item]:
        line = line.rstrip("\r\n")
        if _UNIX_ATTRIBUTES.search(line):
            return self._parse_unix(line)
        return self._parse_dos(line)

    # ---------------- Métodos Internos ----------------
    def _parse_unix(self, line: str) -> Optional[Item]:
        attributes = _UNIX_ATTRIBUTES.search(line)
        entry = _UNIX_ENTRY.search(line, attributes.end())
        if entry is None:
            logger.debug("Unparseable UNIX listing line: %r", line)
            return None

        name = entry.group("name").strip()
        if name in _IGNORED_NAMES:
            return None

        symbolic_link = None
        parts = _UNIX_SYMLINK.split(name, maxsplit=1)
        if len(parts) == 2:
            name, symbolic_link = parts[0].strip(), parts[1].strip()

        item_type = _UNIX_TYPES.get(attributes.group(1), ItemType.UNKNOWN)
        if name == ".":
            item_type = ItemType.CURRENT_DIRECTORY
        elif name == "..":
            item_type = ItemType.PARENT_DIRECTORY
        if item_type is ItemType.UNKNOWN or not name:
            return None

        attribute_text = attributes.group(0)
        return Item(
            name=name,
            size=int(entry.group("size") or 0),
            modified=self._unix_datetime(entry),
            item_type=item_type,
            attributes=attribute_text,
            mode=attribute_to_mode(attribute_text),
            symbolic_link=symbolic_link,
            raw_text=line,
        )

    def _unix_datetime(self, entry) -> Optional[datetime]:
        month = _MONTH_NUMBERS[entry.group("month").lower()]
        day = int(entry.group("day"))
        hour = minute = 0
        if entry.group("year"):
            year = int(entry.group("year"))
        else:
            # recent entries show a time instead of the year
            today = self.today
            year = today.year - 1 if month > today.month else today.year
            hour, minute = (int(v) for v in entry.group("time").split(":"))
        try:
            return datetime(year, month, day, hour, minute)
        except ValueError:
            return None

    def _parse_dos(self, line: str) -> Optional[Item]:
        entry = _DOS_ENTRY.match(line)
        if entry is None:
            logger.debug("Unparseable listing line: %r", line)
            return None

        name = entry.group("name")
        if entry.group("dir"):
            item_type = ItemType.DIRECTORY
        else:
            item_type = ItemType.FILE
        if name == ".":
            item_type = ItemType.CURRENT_DIRECTORY
        elif name == "..":
            item_type = ItemType.PARENT_DIRECTORY

        return Item(
            name=name,
            size=int(entry.group("size") or 0),
            modified=_dos_datetime(entry),
            item_type=item_type,
            raw_text=line,
        )


def _dos_datetime(entry) -> Optional[datetime]:
    date_format = "%m-%d-%Y" if len(entry.group("date")) == 10 else "%m-%d-%y"
    text = f"{entry.group('date')} {entry.group('time')}"
    if entry.group("ampm"):
        text += entry.group("ampm").upper()
        time_format = "%I:%M%p"
    else:
        time_format = "%H:%M"
    try:
        return datetime.strptime(text, f"{date_format} {time_format}")
    except ValueError:
        return None
