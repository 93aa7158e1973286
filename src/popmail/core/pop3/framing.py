"""Line framing over an asyncio stream pair."""

import asyncio

from popmail.utils.errors import TransportError
from popmail.utils.logging import get_logger

from .constants import LINE_BREAK

logger = get_logger(__name__)


class LineFramer:
    """Reads and writes CRLF-terminated protocol lines.

    Buffering is owned by the underlying ``asyncio.StreamReader``; every line
    written is drained immediately so a command is on the wire before its
    response is awaited.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    async def send_line(self, text: str) -> None:
        """Write ``text`` followed by CRLF and flush.

        Raises:
            TransportError: If the transport is closed or broken
        """
        if self.writer.is_closing():
            raise TransportError("Cannot write to a closed transport")

        try:
            self.writer.write(text.encode("utf-8") + LINE_BREAK)
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Failed to write to server: {e}") from e

    async def read_line(self) -> bytes:
        """Read one line and return it without its terminator.

        Raises:
            TransportError: On EOF before a full line, an oversized line, or
                a broken transport
        """
        try:
            line = await self.reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            raise TransportError(
                "Connection closed by server",
                details={"partial": e.partial[:80].decode("utf-8", "replace")},
            ) from e
        except asyncio.LimitOverrunError as e:
            raise TransportError(
                "Server line exceeds the maximum line length",
                details={"consumed": e.consumed},
            ) from e
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Failed to read from server: {e}") from e

        if line.endswith(LINE_BREAK):
            return line[:-2]
        return line[:-1]

    async def close(self) -> None:
        """Close the transport, ignoring errors from an already broken peer."""
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error while closing transport", extra={"error": str(e)})
