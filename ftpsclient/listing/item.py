import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Protocol


class ItemType(enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMBOLIC_LINK = "symbolic-link"
    BLOCK_SPECIAL = "block-special"
    CHARACTER_SPECIAL = "character-special"
    NAMED_SOCKET = "named-socket"
    DOMAIN_SOCKET = "domain-socket"
    CURRENT_DIRECTORY = "current-directory"
    PARENT_DIRECTORY = "parent-directory"
    UNKNOWN = "unknown"


class MlsxPerm(enum.IntFlag):
    NONE = 0
    APPEND = 0x001
    CREATE = 0x002
    DELETE = 0x004
    CHANGE_DIRECTORY = 0x008
    RENAME = 0x010
    LIST = 0x020
    MAKE_DIRECTORY = 0x040
    DELETE_DIRECTORY = 0x080
    RETRIEVE = 0x100
    STORE = 0x200


@dataclass
class MlsxFacts:
    """Datos extra que solo aporta un listado MLSD/MLST."""

    created: Optional[datetime] = None
    unique_id: Optional[str] = None
    perm: MlsxPerm = MlsxPerm.NONE
    lang: Optional[str] = None
    media_type: Optional[str] = None
    charset: Optional[str] = None
    group: Optional[str] = None
    owner: Optional[str] = None


@dataclass
class Item:
    name: str
    parent_path: Optional[str] = None
    size: int = 0
    modified: Optional[datetime] = None
    item_type: ItemType = ItemType.UNKNOWN
    attributes: str = ""
    mode: Optional[int] = None
    symbolic_link: Optional[str] = None
    raw_text: str = ""
    mlsx: Optional[MlsxFacts] = None

    @property
    def full_path(self) -> str:
        if not self.parent_path:
            return self.name
        if self.parent_path in ("/", "//"):
            return "/" + self.name
        return self.parent_path.rstrip("/") + "/" + self.name

    @property
    def is_directory(self) -> bool:
        return self.item_type is ItemType.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.item_type is ItemType.FILE

    def to_dict(self) -> dict:
        record = {
            "name": self.name,
            "parent_path": self.parent_path,
            "full_path": self.full_path,
            "size": self.size,
            "modified": self.modified,
            "type": self.item_type.value,
            "attributes": self.attributes,
            "mode": self.mode,
            "symbolic_link": self.symbolic_link,
        }
        if self.mlsx is not None:
            record.update({
                "created": self.mlsx.created,
                "unique_id": self.mlsx.unique_id,
                "perm": self.mlsx.perm,
                "owner": self.mlsx.owner,
                "group": self.mlsx.group,
            })
        return record


class ItemParser(Protocol):
    def parse_line(self, line: str) -> Optional[Item]:
        ...


class ItemCollection:
    """Lista ordenada de Items con el tamaño total acumulado."""

    def __init__(self, items=None):
        self._items: list[Item] = []
        self.total_size = 0
        for item in items or []:
            self.append(item)

    @classmethod
    def parse(cls, path: Optional[str], text: str, parser: ItemParser) -> "ItemCollection":
        collection = cls()
        for line in text.replace("\r", "\n").split("\n"):
            if not line.strip():
                continue
            item = parser.parse_line(line)
            if item is None:
                continue
            item.parent_path = path
            collection.append(item)
        return collection

    def append(self, item: Item) -> None:
        self._items.append(item)
        self.total_size += item.size

    def merge(self, other: "ItemCollection") -> None:
        for item in other:
            self.append(item)

    def find(self, name: str) -> Optional[Item]:
        for item in self._items:
            if item.name == name:
                return item
        return None

    def contains(self, name: str) -> bool:
        return self.find(name) is not None

    def to_records(self) -> list[dict]:
        skip = (ItemType.CURRENT_DIRECTORY, ItemType.PARENT_DIRECTORY)
        return [item.to_dict() for item in self._items if item.item_type not in skip]

    def __contains__(self, name: str) -> bool:
        return self.contains(name)

    def __getitem__(self, index) -> Item:
        return self._items[index]

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"ItemCollection({len(self._items)} items, total_size={self.total_size})"
