from .constants import FtpCmd, HAPPY_CODES, FILE_TRANSFER_COMMANDS


class Request:
    """
    Comando FTP inmutable: verbo, argumentos y codigos de terminacion aceptados.

    Un verbo desconocido (o FtpCmd.CUSTOM) se envia como texto libre y no
    espera ningun codigo concreto.
    """

    __slots__ = ("_command", "_arguments", "_encoding", "_happy_codes")

    def __init__(self, command: str, *arguments, encoding: str = "utf-8"):
        self._command = command
        self._arguments = tuple(str(a) for a in arguments if a is not None and str(a) != "")
        self._encoding = encoding
        self._happy_codes = tuple(HAPPY_CODES.get(command, ()))

    @property
    def command(self) -> str:
        return self._command

    @property
    def arguments(self) -> tuple:
        return self._arguments

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def happy_codes(self) -> tuple:
        return self._happy_codes

    @property
    def has_happy_codes(self) -> bool:
        return bool(self._happy_codes)

    @property
    def is_file_transfer(self) -> bool:
        return self._command in FILE_TRANSFER_COMMANDS

    @property
    def text(self) -> str:
        return " ".join(p for p in (self._command, *self._arguments) if p)

    def to_bytes(self) -> bytes:
        return (self.text + "\r\n").encode(self._encoding)

    def __str__(self) -> str:
        if self._command == FtpCmd.PASS:
            return "PASS ********"
        return self.text

    def __repr__(self) -> str:
        return f"Request({str(self)!r})"
