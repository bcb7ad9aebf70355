__all__ = [
    "ControlConnectionManager", "ConnectionState", "DataConnectionManager",
    "Parser", "Response", "ResponseList", "Request", "ResponseQueue", "ResponseChannel",
    "FeatureCollection", "TransferEngine", "CancellationToken", "SecurityProtocol",
    "HashingAlgorithm",
]

_LOCATIONS = {
    "ControlConnectionManager": ".connection",
    "ConnectionState": ".connection",
    "DataConnectionManager": ".data_connection",
    "Parser": ".parser",
    "Response": ".parser",
    "ResponseList": ".parser",
    "Request": ".request",
    "ResponseQueue": ".response_channel",
    "ResponseChannel": ".response_channel",
    "FeatureCollection": ".features",
    "TransferEngine": ".transfer",
    "CancellationToken": ".transfer",
    "SecurityProtocol": ".security",
    "HashingAlgorithm": ".hashing",
}


def __getattr__(name: str):
	if name in _LOCATIONS:
		from importlib import import_module
		return getattr(import_module(_LOCATIONS[name], __name__), name)
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
	return __all__
