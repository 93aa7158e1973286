"""POP3 constants and configuration values."""

from enum import Enum

# Wire grammar tokens. Immutable, shared by every connection.
LINE_BREAK = b"\r\n"
TERMINATOR = b"."
RESP_OK = b"+OK"  # `+OK` without additional info
RESP_OK_INFO = b"+OK "  # `+OK <info>`
RESP_ERR = b"-ERR"  # `-ERR` without additional info
RESP_ERR_INFO = b"-ERR "  # `-ERR <info>`

NO_INFO_ERROR = "unknown error (no info specified in response)"


class POP3Verb(str, Enum):
    """POP3 commands issued by the client (RFC 1939)."""

    USER = "USER"
    PASS = "PASS"
    STAT = "STAT"
    LIST = "LIST"
    UIDL = "UIDL"
    RETR = "RETR"
    TOP = "TOP"
    DELE = "DELE"
    RSET = "RSET"
    NOOP = "NOOP"
    QUIT = "QUIT"


class Timeouts:
    """Timeout values for POP3 operations (in seconds)."""

    # Dial and command timeouts come from POP3Config
    CLOSE = 5.0  # Waiting for the transport to shut down
