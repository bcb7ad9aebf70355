from enum import IntEnum


class FtpCmd:
    """Clase estática que contiene los verbos FTP que emite el cliente."""

    # =========================
    # Access control
    # =========================
    USER = "USER"
    PASS = "PASS"
    QUIT = "QUIT"
    CLNT = "CLNT"

    # =========================
    # Security (RFC 2228 / 4217)
    # =========================
    AUTH = "AUTH"
    PBSZ = "PBSZ"
    PROT = "PROT"

    # =========================
    # Navigation
    # =========================
    CWD = "CWD"
    CDUP = "CDUP"
    PWD = "PWD"
    MKD = "MKD"
    RMD = "RMD"

    # =========================
    # Transfer parameters
    # =========================
    PORT = "PORT"
    PASV = "PASV"
    EPRT = "EPRT"
    EPSV = "EPSV"
    TYPE = "TYPE"
    MODE = "MODE"
    REST = "REST"
    ALLO = "ALLO"

    # =========================
    # Service commands
    # =========================
    RETR = "RETR"
    STOR = "STOR"
    STOU = "STOU"
    APPE = "APPE"
    RNFR = "RNFR"
    RNTO = "RNTO"
    ABOR = "ABOR"
    DELE = "DELE"
    LIST = "LIST"
    NLST = "NLST"
    SITE = "SITE"
    SYST = "SYST"
    STAT = "STAT"
    HELP = "HELP"
    NOOP = "NOOP"

    # =========================
    # Extensions (RFC 2389 / 3659 / drafts)
    # =========================
    FEAT = "FEAT"
    OPTS = "OPTS"
    MDTM = "MDTM"
    MFMT = "MFMT"
    MFCT = "MFCT"
    SIZE = "SIZE"
    MLSD = "MLSD"
    MLST = "MLST"
    HASH = "HASH"
    RANG = "RANG"
    XCRC = "XCRC"
    XMD5 = "XMD5"
    XSHA1 = "XSHA1"
    XSHA256 = "XSHA256"
    XSHA512 = "XSHA512"

    # free-form text sent through quote()
    CUSTOM = ""


class ResponseCode(IntEnum):
    RESTART_MARKER_REPLY = 110
    SERVICE_READY_IN_MINUTES = 120
    DATA_CONNECTION_ALREADY_OPEN = 125
    FILE_STATUS_OK = 150
    COMMAND_OKAY = 200
    COMMAND_SUPERFLUOUS = 202
    SYSTEM_STATUS = 211
    DIRECTORY_STATUS = 212
    FILE_STATUS = 213
    HELP_MESSAGE = 214
    NAME_SYSTEM_TYPE = 215
    SERVICE_READY = 220
    SERVICE_CLOSING_CONTROL_CONNECTION = 221
    DATA_CONNECTION_OPEN = 225
    CLOSING_DATA = 226
    ENTERING_PASSIVE_MODE = 227
    ENTERING_EXTENDED_PASSIVE_MODE = 229
    USER_LOGGED_IN = 230
    AUTHENTICATION_COMMAND_OKAY = 234
    REQUESTED_FILE_ACTION_OK = 250
    PATHNAME_CREATED = 257
    USER_NAME_OKAY = 331
    AUTHENTICATION_COMMAND_OKAY_SECURITY_DATA = 334
    NEED_LOGIN_ACCOUNT = 332
    REQUESTED_FILE_ACTION_PENDING = 350
    SERVICE_NOT_AVAILABLE = 421
    CANNOT_OPEN_DATA_CONNECTION = 425
    CONNECTION_CLOSED = 426
    REQUESTED_FILE_ACTION_NOT_TAKEN = 450
    REQUESTED_ACTION_ABORTED = 451
    REQUESTED_ACTION_NOT_TAKEN = 452
    SYNTAX_ERROR = 500
    SYNTAX_ERROR_IN_PARAMETERS = 501
    COMMAND_NOT_IMPLEMENTED = 502
    BAD_SEQUENCE_OF_COMMANDS = 503
    COMMAND_NOT_IMPLEMENTED_FOR_PARAMETER = 504
    NOT_LOGGED_IN = 530
    NEED_ACCOUNT_FOR_STORING_FILES = 532
    ACTION_NOT_TAKEN_FILE_UNAVAILABLE = 550
    ACTION_ABORTED_PAGE_TYPE_UNKNOWN = 551
    ACTION_ABORTED_EXCEEDED_STORAGE = 552
    ACTION_NOT_TAKEN_FILENAME_NOT_ALLOWED = 553


# Terminal codes that fail a command no matter what the command accepts.
UNHAPPY_CODES = frozenset({
    ResponseCode.SERVICE_NOT_AVAILABLE,
    ResponseCode.CANNOT_OPEN_DATA_CONNECTION,
    ResponseCode.CONNECTION_CLOSED,
    ResponseCode.REQUESTED_FILE_ACTION_NOT_TAKEN,
    ResponseCode.REQUESTED_ACTION_ABORTED,
    ResponseCode.REQUESTED_ACTION_NOT_TAKEN,
    ResponseCode.SYNTAX_ERROR,
    ResponseCode.SYNTAX_ERROR_IN_PARAMETERS,
    ResponseCode.COMMAND_NOT_IMPLEMENTED,
    ResponseCode.BAD_SEQUENCE_OF_COMMANDS,
    ResponseCode.COMMAND_NOT_IMPLEMENTED_FOR_PARAMETER,
    ResponseCode.NOT_LOGGED_IN,
    ResponseCode.NEED_ACCOUNT_FOR_STORING_FILES,
    ResponseCode.ACTION_NOT_TAKEN_FILE_UNAVAILABLE,
    ResponseCode.ACTION_ABORTED_PAGE_TYPE_UNKNOWN,
    ResponseCode.ACTION_ABORTED_EXCEEDED_STORAGE,
    ResponseCode.ACTION_NOT_TAKEN_FILENAME_NOT_ALLOWED,
})

_TRANSFER_CODES = (
    ResponseCode.DATA_CONNECTION_ALREADY_OPEN,
    ResponseCode.FILE_STATUS_OK,
    ResponseCode.CLOSING_DATA,
    ResponseCode.REQUESTED_FILE_ACTION_OK,
)

# Diccionario de codigos de terminacion aceptados por comando.
# Un comando ausente (o con tupla vacia) se envia sin esperar codigo alguno.
HAPPY_CODES = {
    FtpCmd.USER: (ResponseCode.USER_NAME_OKAY, ResponseCode.SERVICE_READY, ResponseCode.USER_LOGGED_IN),
    FtpCmd.PASS: (ResponseCode.USER_LOGGED_IN, ResponseCode.SERVICE_READY, ResponseCode.COMMAND_SUPERFLUOUS),
    FtpCmd.ALLO: (ResponseCode.COMMAND_OKAY, ResponseCode.COMMAND_SUPERFLUOUS),
    FtpCmd.CWD: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.DELE: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.RMD: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.RNTO: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.PWD: (ResponseCode.PATHNAME_CREATED,),
    FtpCmd.MKD: (ResponseCode.PATHNAME_CREATED,),
    FtpCmd.HELP: (ResponseCode.SYSTEM_STATUS, ResponseCode.HELP_MESSAGE, ResponseCode.FILE_STATUS),
    FtpCmd.MDTM: (ResponseCode.FILE_STATUS, ResponseCode.REQUESTED_FILE_ACTION_OK),
    FtpCmd.STAT: (ResponseCode.SYSTEM_STATUS, ResponseCode.DIRECTORY_STATUS, ResponseCode.FILE_STATUS),
    FtpCmd.CDUP: (ResponseCode.COMMAND_OKAY, ResponseCode.REQUESTED_FILE_ACTION_OK),
    FtpCmd.SIZE: (ResponseCode.FILE_STATUS,),
    FtpCmd.MFMT: (ResponseCode.FILE_STATUS,),
    FtpCmd.MFCT: (ResponseCode.FILE_STATUS,),
    FtpCmd.HASH: (ResponseCode.FILE_STATUS,),
    FtpCmd.FEAT: (ResponseCode.SYSTEM_STATUS,),
    FtpCmd.SYST: (ResponseCode.NAME_SYSTEM_TYPE,),
    FtpCmd.RNFR: (ResponseCode.REQUESTED_FILE_ACTION_PENDING,),
    FtpCmd.REST: (ResponseCode.REQUESTED_FILE_ACTION_PENDING,),
    FtpCmd.RANG: (ResponseCode.REQUESTED_FILE_ACTION_PENDING,),
    FtpCmd.NOOP: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.PORT: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.EPRT: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.TYPE: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.MODE: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.PBSZ: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.PROT: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.CLNT: (ResponseCode.COMMAND_OKAY,),
    FtpCmd.SITE: (ResponseCode.COMMAND_OKAY, ResponseCode.COMMAND_SUPERFLUOUS, ResponseCode.REQUESTED_FILE_ACTION_OK),
    FtpCmd.PASV: (ResponseCode.ENTERING_PASSIVE_MODE,),
    FtpCmd.EPSV: (ResponseCode.ENTERING_EXTENDED_PASSIVE_MODE,),
    FtpCmd.AUTH: (ResponseCode.AUTHENTICATION_COMMAND_OKAY, ResponseCode.AUTHENTICATION_COMMAND_OKAY_SECURITY_DATA),
    FtpCmd.OPTS: (ResponseCode.COMMAND_OKAY, ResponseCode.COMMAND_SUPERFLUOUS),
    FtpCmd.LIST: _TRANSFER_CODES,
    FtpCmd.NLST: _TRANSFER_CODES,
    FtpCmd.MLSD: _TRANSFER_CODES,
    FtpCmd.RETR: _TRANSFER_CODES,
    FtpCmd.STOR: _TRANSFER_CODES,
    FtpCmd.STOU: _TRANSFER_CODES,
    FtpCmd.APPE: _TRANSFER_CODES,
    FtpCmd.MLST: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.XCRC: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.XMD5: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.XSHA1: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.XSHA256: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.XSHA512: (ResponseCode.REQUESTED_FILE_ACTION_OK,),
    FtpCmd.ABOR: (),
    FtpCmd.QUIT: (),
    FtpCmd.CUSTOM: (),
}

# Commands whose replies announce a data transfer.
TRANSFER_COMMANDS = frozenset({
    FtpCmd.LIST, FtpCmd.NLST, FtpCmd.MLSD,
    FtpCmd.RETR, FtpCmd.STOR, FtpCmd.STOU, FtpCmd.APPE,
})

FILE_TRANSFER_COMMANDS = frozenset({
    FtpCmd.RETR, FtpCmd.STOR, FtpCmd.STOU, FtpCmd.APPE,
})

DEFAULT_PORT = 21
DEFAULT_IMPLICIT_PORT = 990
DEFAULT_TCP_BUFFER_SIZE = 8192
DEFAULT_TCP_TIMEOUT = 30.0
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_TRANSFER_TIMEOUT = 30.0
DEFAULT_FXP_TIMEOUT = 600.0
DEFAULT_ACTIVE_PORT_MIN = 50000
DEFAULT_ACTIVE_PORT_MAX = 50080
DEFAULT_SETTLE_INTERVAL = 2.0
RESPONSE_POLL_INTERVAL = 0.01
DEFAULT_CLIENT_NAME = "ftpsclient"
