"""POP3 client for retrieving mail from a POP3 server."""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Union

from popmail.core.mail.decoder import DEFAULT_PROFILE, parse_mail
from popmail.core.mail.profiles import DecodingProfile
from popmail.core.models.mail import MailInfo
from popmail.utils.config import POP3Config
from popmail.utils.errors import ParseError
from popmail.utils.logging import get_logger

from .connection import POP3Connection
from .protocol import POP3Protocol

logger = get_logger(__name__)


class POP3Client:
    """Creates POP3 connections from one configuration.

    The client itself holds no connection; every ``connect`` dials a new,
    independent one.
    """

    def __init__(self, config: POP3Config):
        """Initialize POP3 client with configuration.

        Args:
            config: Server connection settings
        """
        self.config = config
        self._last_connection: Optional[POP3Connection] = None

    async def connect(self) -> POP3Protocol:
        """Dial the server and validate its greeting.

        Returns:
            POP3Protocol in the post-greeting state; call ``auth`` next and
            finish with ``quit``

        Raises:
            TransportError: If the server cannot be reached
            ServerError: If the server greets with -ERR
        """
        connection = POP3Connection(self.config)
        await connection.open()
        self._last_connection = connection
        return POP3Protocol(connection)

    @asynccontextmanager
    async def session(self, user: str, password: str) -> AsyncIterator[POP3Protocol]:
        """Connect, authenticate and yield a protocol in the transaction state.

        A clean exit sends QUIT, which commits marked deletions. If the body
        raises, the connection is closed without QUIT and the server discards
        the deletions.
        """
        protocol = await self.connect()
        try:
            await protocol.auth(user, password)
            yield protocol
        except BaseException:
            await protocol.connection.close()
            raise

        if protocol.connection.is_open:
            await protocol.quit()

    async def fetch_mail_infos(
        self,
        user: str,
        password: str,
        limit: Optional[int] = None,
        profile: Union[str, DecodingProfile] = DEFAULT_PROFILE,
    ) -> List[MailInfo]:
        """Retrieve and decode messages, newest first.

        Messages whose headers do not fit the decoding profile are skipped.

        Args:
            user: Mailbox user name
            password: Mailbox password
            limit: Maximum number of messages to decode
            profile: Decoding profile name or instance

        Returns:
            MailInfo for each decoded message
        """
        start_time = time.time()
        mails = []
        skipped = 0

        async with self.session(user, password) as pop3:
            count, size = await pop3.stat()
            logger.info(
                "Mailbox status", extra={"message_count": count, "mailbox_size": size}
            )

            for msg_id in range(count, 0, -1):
                if limit is not None and len(mails) >= limit:
                    break
                message = await pop3.retr(msg_id)
                try:
                    mails.append(parse_mail(message, profile))
                except ParseError as e:
                    skipped += 1
                    logger.warning(
                        "Skipping message that does not match decoding profile",
                        extra={"msg_id": msg_id, "error": e.message},
                    )

        logger.info(
            "Fetched mail",
            extra={
                "decoded": len(mails),
                "skipped": skipped,
                "duration_seconds": round(time.time() - start_time, 2),
            },
        )
        return mails

    def get_connection_stats(self) -> dict:
        """Get statistics of the most recent connection.

        Returns:
            Dictionary of connection statistics
        """
        if self._last_connection is None:
            return {}

        stats = self._last_connection.get_stats()
        return {
            "commands_sent": stats.commands_sent,
            "server_errors": stats.server_errors,
            "bytes_received": stats.bytes_received,
            "avg_command_time": round(stats.avg_command_time, 3),
        }


## POP3 Client Factory


def get_pop3_client(config: POP3Config) -> POP3Client:
    """Factory function to get a POP3Client instance."""
    return POP3Client(config)
