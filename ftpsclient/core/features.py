import logging
from typing import Iterator, Optional

from .errors import FeatureParsingError

logger = logging.getLogger(__name__)


class FeatureArgument:
    def __init__(self, name: str, is_default: bool = False):
        self.name = name
        self.is_default = is_default

    def __repr__(self) -> str:
        return f"{self.name}{'*' if self.is_default else ''}"


class Feature:
    """Una linea de FEAT: nombre y argumentos opcionales (``*`` marca el defecto)."""

    def __init__(self, name: str, arguments: Optional[list[FeatureArgument]] = None):
        self.name = name
        self.arguments = arguments or []

    @classmethod
    def parse(cls, line: str) -> "Feature":
        line = line.strip()
        name, _, rest = line.partition(' ')
        rest = rest.strip()
        if not rest:
            return cls(name)
        separator = ';' if ';' in rest else ' '
        arguments = []
        for token in rest.split(separator):
            token = token.strip()
            if not token:
                continue
            if token.endswith('*'):
                arguments.append(FeatureArgument(token[:-1], True))
            else:
                arguments.append(FeatureArgument(token))
        return cls(name, arguments)

    def find_argument(self, name: str) -> Optional[FeatureArgument]:
        name = name.upper()
        for argument in self.arguments:
            if argument.name.upper() == name:
                return argument
        return None

    def contains_argument(self, name: str) -> bool:
        return self.find_argument(name) is not None

    @property
    def default_argument(self) -> Optional[FeatureArgument]:
        for argument in self.arguments:
            if argument.is_default:
                return argument
        return None

    def __repr__(self) -> str:
        return f"Feature({self.name!r}, {self.arguments!r})"


class FeatureCollection:
    """Conjunto de funcionalidades anunciadas por FEAT (busqueda sin mayusculas)."""

    def __init__(self, features: Optional[list[Feature]] = None):
        self._features: list[Feature] = list(features or [])

    @classmethod
    def parse(cls, text: str) -> "FeatureCollection":
        """
        Formato esperado::

            211-Extensions supported:
             MLST size*;create;modify*;perm;media-type
             SIZE
            211 END

        ``211 <texto>`` sin lineas intermedias significa que no hay ninguna.
        """
        lines = [l for l in text.replace("\r", "").split("\n") if l.strip()]
        if not lines or lines[0].startswith("211 "):
            return cls()
        if not lines[0].startswith("211-"):
            raise FeatureParsingError(f"unexpected FEAT reply: {lines[0]!r}")

        features = []
        for line in lines[1:]:
            if line.startswith(" "):
                features.append(Feature.parse(line))
                continue
            if not line[:7].upper().startswith("211 END"):
                raise FeatureParsingError(f"unexpected line in FEAT reply: {line!r}")
            break
        logger.debug("Parsed %d server features", len(features))
        return cls(features)

    def find(self, name: str) -> Optional[Feature]:
        name = name.upper()
        for feature in self._features:
            if feature.name.upper() == name:
                return feature
        return None

    def contains(self, name: str, argument: Optional[str] = None) -> bool:
        feature = self.find(name)
        if feature is None:
            return False
        if argument is None:
            return True
        return feature.contains_argument(argument)

    def __contains__(self, name: str) -> bool:
        return self.contains(name)

    def __iter__(self) -> Iterator[Feature]:
        return iter(self._features)

    def __len__(self) -> int:
        return len(self._features)

    def __bool__(self) -> bool:
        return bool(self._features)

    def __repr__(self) -> str:
        return f"FeatureCollection({[f.name for f in self._features]!r})"
