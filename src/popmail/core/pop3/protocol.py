"""POP3 protocol operations - the mailbox verbs on top of one connection."""

from email.message import EmailMessage
from typing import List, Tuple

from popmail.core.mail.mime import read_message
from popmail.core.models.mail import MessageIdentity
from popmail.utils.errors import (
    InvalidArgumentError,
    ParseError,
    PopMailError,
    ServerError,
    UnknownCharsetError,
)
from popmail.utils.logging import async_log_call, get_logger

from .command import Command
from .connection import POP3Connection
from .constants import LINE_BREAK, POP3Verb
from .session import SessionState

logger = get_logger(__name__)

_TRANSACTION = (SessionState.TRANSACTION,)
_ANY_OPEN = (
    SessionState.CONNECTED,
    SessionState.AUTHENTICATING,
    SessionState.TRANSACTION,
)


def _to_int(field: str, what: str) -> int:
    # ASCII digits only; int() would also take signs, "_" and other scripts
    if not (field.isascii() and field.isdigit()):
        raise ParseError(f"Invalid {what}: {field!r}", details={what: field})
    return int(field)


def _check_msg_id(msg_id: int) -> None:
    if isinstance(msg_id, bool) or not isinstance(msg_id, int) or msg_id < 1:
        raise InvalidArgumentError(f"Message id must be a positive integer: {msg_id!r}")


def _listing_lines(payload) -> List[str]:
    """Split a single-line payload or multi-line body into listing lines."""
    if isinstance(payload, bytes):
        return [
            line.decode("utf-8", errors="replace")
            for line in payload.split(LINE_BREAK)
        ]
    return [payload]


def _parse_listing(payload, verb: POP3Verb) -> List[MessageIdentity]:
    """Parse ``<id> <size>`` (LIST) or ``<id> <uid>`` (UIDL) lines.

    Parsing stops at the first empty line.
    """
    out = []

    for line in _listing_lines(payload):
        fields = line.split()
        if not fields:
            break
        if len(fields) < 2:
            raise ParseError(f"Malformed {verb.value} line: {line!r}")

        msg_id = _to_int(fields[0], "id")
        try:
            if verb is POP3Verb.UIDL:
                identity = MessageIdentity(id=msg_id, uid=fields[1])
            else:
                identity = MessageIdentity(id=msg_id, size=_to_int(fields[1], "size"))
        except ValueError as e:
            raise ParseError(f"Invalid {verb.value} entry: {line!r}") from e
        out.append(identity)

    return out


class POP3Protocol:
    """POP3 mailbox operations & session orchestration.

    Every operation is one command round trip through the connection, except
    ``auth`` (three) and ``dele`` (one per id).
    """

    def __init__(self, connection: POP3Connection):
        """Initialise POP3 protocol handler.

        Args:
            connection: An opened POP3Connection
        """
        self.connection = connection

    @property
    def session(self):
        return self.connection.session

    @property
    def state(self) -> SessionState:
        return self.connection.state

    async def _cmd(self, verb: POP3Verb, *args, multiline: bool = False):
        return await self.connection.execute(Command(verb, tuple(args), multiline))

    ## Authorization

    @async_log_call
    async def auth(self, user: str, password: str) -> None:
        """Authenticate with USER/PASS and confirm with NOOP.

        On a server rejection the session returns to the post-greeting state
        and authentication must restart from USER.

        Raises:
            SessionStateError: If not in the post-greeting state
            ServerError: If any of the three steps is rejected
        """
        self.session.require("auth", SessionState.CONNECTED)
        # Validate both arguments before anything reaches the wire.
        user_cmd = Command(POP3Verb.USER, (user,))
        pass_cmd = Command(POP3Verb.PASS, (password,))

        self.session.transition(SessionState.AUTHENTICATING)
        try:
            await self.connection.execute(user_cmd)
            await self.connection.execute(pass_cmd)
            # Some servers only report bad credentials on the next command.
            await self._cmd(POP3Verb.NOOP)
        except ServerError as e:
            self.session.transition(SessionState.CONNECTED)
            logger.warning(
                "POP3 authentication failed",
                extra={"server": self.connection.config.host, "error": e.server_message},
            )
            raise

        self.session.transition(SessionState.TRANSACTION)
        logger.info(
            "POP3 authentication succeeded",
            extra={"server": self.connection.config.host},
        )

    ## Transaction

    async def stat(self) -> Tuple[int, int]:
        """Return the message count and total mailbox size in bytes.

        Raises:
            ParseError: If the payload is not two decimal fields
        """
        self.session.require("stat", *_TRANSACTION)
        payload = await self._cmd(POP3Verb.STAT)

        fields = payload.split()
        if not fields:
            raise ParseError("Empty STAT response")

        count = _to_int(fields[0], "count")
        if count == 0:
            return 0, 0

        if len(fields) < 2:
            raise ParseError(f"STAT response missing size: {payload!r}")
        size = _to_int(fields[1], "size")

        return count, size

    async def list(self, msg_id: int = 0) -> List[MessageIdentity]:
        """Return (id, size) pairs for all messages, or only ``msg_id`` if > 0.

        Raises:
            ParseError: If a listing line is malformed
        """
        self.session.require("list", *_TRANSACTION)

        if msg_id <= 0:
            payload = await self._cmd(POP3Verb.LIST, multiline=True)
        else:
            payload = await self._cmd(POP3Verb.LIST, msg_id)

        return _parse_listing(payload, POP3Verb.LIST)

    async def uidl(self, msg_id: int = 0) -> List[MessageIdentity]:
        """Return (id, unique-id) pairs for all messages, or only ``msg_id`` if > 0.

        Raises:
            ParseError: If a listing line is malformed
        """
        self.session.require("uidl", *_TRANSACTION)

        if msg_id <= 0:
            payload = await self._cmd(POP3Verb.UIDL, multiline=True)
        else:
            payload = await self._cmd(POP3Verb.UIDL, msg_id)

        return _parse_listing(payload, POP3Verb.UIDL)

    async def retr_raw(self, msg_id: int) -> bytes:
        """Download a message and return its undecoded bytes."""
        self.session.require("retr", *_TRANSACTION)
        _check_msg_id(msg_id)
        return await self._cmd(POP3Verb.RETR, msg_id, multiline=True)

    async def retr(self, msg_id: int) -> EmailMessage:
        """Download and decode a message.

        An unknown charset does not fail the call; the partially decoded
        message is returned.

        Raises:
            MessageDecodeError: If the message cannot be decoded
        """
        raw = await self.retr_raw(msg_id)
        return self._decode(raw, msg_id)

    async def top(self, msg_id: int, lines: int) -> EmailMessage:
        """Download headers plus the first ``lines`` body lines and decode them.

        Raises:
            MessageDecodeError: If the message cannot be decoded
        """
        self.session.require("top", *_TRANSACTION)
        _check_msg_id(msg_id)
        if isinstance(lines, bool) or not isinstance(lines, int) or lines < 0:
            raise InvalidArgumentError(f"Line count must be >= 0: {lines!r}")

        raw = await self._cmd(POP3Verb.TOP, msg_id, lines, multiline=True)
        return self._decode(raw, msg_id)

    @staticmethod
    def _decode(raw: bytes, msg_id: int) -> EmailMessage:
        try:
            return read_message(raw)
        except UnknownCharsetError as e:
            logger.warning(
                "Message uses an unknown charset, returning partial decode",
                extra={"msg_id": msg_id, "charsets": e.details.get("charsets")},
            )
            return e.entity

    async def dele(self, *msg_ids: int) -> None:
        """Mark messages for deletion, in order.

        Deletions are applied by the server only after a successful ``quit``.
        The first rejection stops the batch; ids before it stay marked.

        Raises:
            ServerError: With ``details["msg_id"]`` and ``details["deleted"]``
        """
        self.session.require("dele", *_TRANSACTION)
        for msg_id in msg_ids:
            _check_msg_id(msg_id)

        deleted = []
        for msg_id in msg_ids:
            try:
                await self._cmd(POP3Verb.DELE, msg_id)
            except ServerError as e:
                e.details.update({"msg_id": msg_id, "deleted": list(deleted)})
                raise
            deleted.append(msg_id)

        logger.debug("Messages marked for deletion", extra={"msg_ids": deleted})

    async def rset(self) -> None:
        """Unmark all messages marked for deletion in this session."""
        self.session.require("rset", *_TRANSACTION)
        await self._cmd(POP3Verb.RSET)

    async def noop(self) -> None:
        """Send NOOP. Useful to keep an idle connection alive."""
        self.session.require("noop", *_ANY_OPEN)
        await self._cmd(POP3Verb.NOOP)

    ## Update

    @async_log_call
    async def quit(self) -> None:
        """Send QUIT and close the connection.

        Marked deletions are committed by the server only if it acknowledges
        QUIT. The transport is closed either way.

        Raises:
            ServerError: If the server rejected QUIT (after closing)
        """
        self.session.require("quit", *_ANY_OPEN)
        self.session.transition(SessionState.TERMINATING)

        try:
            await self._cmd(POP3Verb.QUIT)
        except PopMailError as e:
            logger.warning(
                "POP3 QUIT was not acknowledged",
                extra={"server": self.connection.config.host, "error": e.message},
            )
            raise
        finally:
            await self.connection.close()

        logger.info(
            "POP3 session ended", extra={"server": self.connection.config.host}
        )
