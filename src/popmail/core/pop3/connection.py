"""POP3 connection management - transport setup, command channel and cleanup."""

import asyncio
import ssl
import time
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from popmail.utils.config import POP3Config
from popmail.utils.errors import (
    PopMailError,
    ProtocolError,
    ServerError,
    SessionStateError,
    TransportError,
    TransportTimeoutError,
)
from popmail.utils.logging import async_log_call, get_logger

from .command import Command
from .constants import Timeouts
from .framing import LineFramer
from .response import parse_status_line, read_multiline
from .session import LIVE_STATES, SessionState, SessionStateMachine

logger = get_logger(__name__)


@dataclass
class ConnectionStats:
    """Tracks POP3 command metrics for one connection."""

    commands_sent: int = 0
    server_errors: int = 0
    bytes_received: int = 0
    total_command_time: float = 0.0
    last_command_time: Optional[float] = None

    def record_command(self, duration: float) -> None:
        """Record a command round trip.

        Args:
            duration: Time taken for the round trip in seconds
        """
        self.commands_sent += 1
        self.total_command_time += duration
        self.last_command_time = time.time()

    @property
    def avg_command_time(self) -> float:
        if self.commands_sent == 0:
            return 0.0
        return self.total_command_time / self.commands_sent


def build_ssl_context(config: POP3Config) -> Optional[ssl.SSLContext]:
    """Return the TLS context for ``config``, or None for plain text."""
    if not config.tls_enabled:
        return None

    context = ssl.create_default_context()
    if config.tls_skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def _open_transport(
    config: POP3Config,
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Dial the server, wrapping the stream in TLS when enabled.

    Raises:
        TransportTimeoutError: If the dial exceeds ``config.dial_timeout``
        TransportError: If the connection or TLS handshake fails
    """
    ssl_context = build_ssl_context(config)
    details = {"server": config.host, "port": config.port}

    try:
        return await asyncio.wait_for(
            asyncio.open_connection(
                config.host,
                config.port,
                ssl=ssl_context,
                server_hostname=config.host if ssl_context else None,
                limit=config.max_line_length,
            ),
            timeout=config.dial_timeout,
        )

    except asyncio.TimeoutError as e:
        raise TransportTimeoutError(
            f"Connection to {config.host}:{config.port} timed out after {config.dial_timeout}s",
            details=details,
        ) from e

    except ssl.SSLError as e:
        raise TransportError(f"TLS handshake failed: {e}", details=details) from e

    except OSError as e:
        raise TransportError(
            f"Failed to connect to POP3 server: {e}", details=details
        ) from e


class POP3Connection:
    """Owns one transport and runs single request/response round trips on it.

    Not safe for concurrent use: callers must not issue a command while
    another one is awaiting its response.
    """

    def __init__(self, config: POP3Config):
        """Initialise POP3 connection with its configuration.

        Args:
            config: Server connection settings
        """
        self.config = config
        self.session = SessionStateMachine()
        self.greeting: str = ""
        self._framer: Optional[LineFramer] = None
        self._stats = ConnectionStats()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_open(self) -> bool:
        return self._framer is not None and self.state in LIVE_STATES

    def get_stats(self) -> ConnectionStats:
        """Get current connection statistics."""
        return self._stats

    async def open(self) -> str:
        """Dial the server and validate its greeting.

        Returns:
            Greeting text after ``+OK``

        Raises:
            TransportError: If dialing or reading the greeting fails
            ProtocolError: If the greeting is not a status line
            ServerError: If the server greets with ``-ERR``
        """
        self.session.require("connect", SessionState.DISCONNECTED)
        start_time = time.time()

        logger.info(
            "Connecting to POP3 server",
            extra={
                "server": self.config.host,
                "port": self.config.port,
                "tls": self.config.tls_enabled,
            },
        )

        try:
            reader, writer = await _open_transport(self.config)
        except TransportError:
            self.session.transition(SessionState.CLOSED)
            raise

        self._framer = LineFramer(reader, writer)

        try:
            line = await asyncio.wait_for(
                self._framer.read_line(), timeout=self.config.command_timeout
            )
            response = parse_status_line(line)
        except asyncio.TimeoutError as e:
            await self._abort()
            raise TransportTimeoutError(
                "Timed out waiting for server greeting",
                details={"server": self.config.host},
            ) from e
        except PopMailError:
            await self._abort()
            raise

        if not response.ok:
            await self._abort()
            raise ServerError(
                response.text, details={"stage": "greeting", "server": self.config.host}
            )

        self.session.transition(SessionState.CONNECTED)
        self.greeting = response.text

        logger.info(
            "POP3 connection established",
            extra={
                "server": self.config.host,
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )
        return response.text

    async def execute(self, command: Command) -> Union[str, bytes]:
        """Send one command and consume exactly one response.

        Returns:
            The ``+OK`` info text for single-line commands, or the assembled
            body bytes for multi-line commands

        Raises:
            SessionStateError: If the connection is not open
            ServerError: If the server answers ``-ERR``
            ProtocolError: If the status line is malformed (connection closed)
            TransportError: If the transport fails or times out (connection closed)
        """
        if not self.is_open:
            raise SessionStateError(
                f"Cannot send {command.verb.value}: connection is not open",
                details={"state": self.state.value},
            )

        line = command.render()
        logger.debug("Sending POP3 command", extra={"command": line})
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self._round_trip(command, line), timeout=self.config.command_timeout
            )

        except asyncio.TimeoutError as e:
            await self._abort()
            raise TransportTimeoutError(
                f"{command.verb.value} timed out after {self.config.command_timeout}s",
                details={"command": command.verb.value},
            ) from e

        except ServerError as e:
            self._stats.server_errors += 1
            logger.debug(
                "POP3 command failed",
                extra={"command": command.verb.value, "error": e.server_message},
            )
            raise

        except (TransportError, ProtocolError):
            await self._abort()
            raise

        except asyncio.CancelledError:
            await self._abort()
            raise

        finally:
            self._stats.record_command(time.monotonic() - start_time)

        if isinstance(result, bytes):
            self._stats.bytes_received += len(result)
        return result

    async def _round_trip(self, command: Command, line: str) -> Union[str, bytes]:
        await self._framer.send_line(line)
        response = parse_status_line(await self._framer.read_line())

        if not response.ok:
            raise ServerError(response.text, details={"command": command.verb.value})

        if not command.multiline:
            return response.text

        return await read_multiline(self._framer)

    async def _abort(self) -> None:
        """Drop the transport after a fatal error; staged deletions are lost."""
        logger.warning(
            "Closing POP3 connection after fatal error",
            extra={"server": self.config.host, "state": self.state.value},
        )
        await self.close()

    @async_log_call
    async def close(self) -> None:
        """Close the transport locally and mark the session closed."""
        framer, self._framer = self._framer, None
        if not self.session.is_closed:
            self.session.transition(SessionState.CLOSED)
        if framer is None:
            return

        try:
            await asyncio.wait_for(framer.close(), timeout=Timeouts.CLOSE)
        except asyncio.TimeoutError:
            logger.debug("Timed out waiting for transport to close")

        logger.debug(
            "POP3 connection closed",
            extra={
                "commands_sent": self._stats.commands_sent,
                "avg_command_time": round(self._stats.avg_command_time, 3),
            },
        )

    ## Context Manager Helpers

    async def __aenter__(self):
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        await self.close()
