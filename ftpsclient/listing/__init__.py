__all__ = ["Item", "ItemCollection", "ItemType", "MlsxPerm", "MlsxFacts",
           "ListItemParser", "MlsxItemParser"]

def __getattr__(name: str):
	if name in ("Item", "ItemCollection", "ItemType", "MlsxPerm", "MlsxFacts"):
		from . import item
		return getattr(item, name)
	if name == "ListItemParser":
		from .list_parser import ListItemParser
		return ListItemParser
	if name == "MlsxItemParser":
		from .mlsx_parser import MlsxItemParser
		return MlsxItemParser
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__():
	return __all__
