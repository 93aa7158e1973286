"""POP3 response grammar: status line classification and multi-line bodies."""

from dataclasses import dataclass

from popmail.utils.errors import ProtocolError

from .constants import (
    LINE_BREAK,
    NO_INFO_ERROR,
    RESP_ERR,
    RESP_ERR_INFO,
    RESP_OK,
    RESP_OK_INFO,
    TERMINATOR,
)
from .framing import LineFramer


@dataclass(frozen=True)
class Response:
    """A classified status line.

    ``text`` is the info after ``+OK`` on success, or the error message on
    failure.
    """

    ok: bool
    text: str = ""


def _decode(b: bytes) -> str:
    return b.decode("utf-8", errors="replace")


def parse_status_line(line: bytes) -> Response:
    """Classify a status line as success or failure.

    Raises:
        ProtocolError: If the line starts with neither ``+OK`` nor ``-ERR``
    """
    if line == RESP_OK:
        return Response(ok=True)
    if line.startswith(RESP_OK_INFO):
        return Response(ok=True, text=_decode(line[len(RESP_OK_INFO) :]))
    if line == RESP_ERR:
        return Response(ok=False, text=NO_INFO_ERROR)
    if line.startswith(RESP_ERR_INFO):
        return Response(ok=False, text=_decode(line[len(RESP_ERR_INFO) :]))

    raise ProtocolError(
        f"unknown response: {_decode(line)}. Neither -ERR, nor +OK",
        details={"line": _decode(line[:120])},
    )


async def read_multiline(framer: LineFramer) -> bytes:
    """Read body lines up to the lone ``.`` terminator.

    Each line is dot-unstuffed and re-terminated with CRLF; the terminator
    line itself is consumed and never included.
    """
    chunks = []

    while True:
        line = await framer.read_line()
        if line == TERMINATOR:
            break
        if line.startswith(TERMINATOR):
            line = line[1:]
        chunks.append(line)
        chunks.append(LINE_BREAK)

    return b"".join(chunks)
