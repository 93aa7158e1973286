"""POP3 protocol handling.

Layers, bottom up:
- framing: CRLF line I/O over an asyncio stream pair
- response: status line classification & multi-line bodies
- command: validated request lines
- connection: transport, greeting and the command channel
- protocol: the mailbox verbs (auth, stat, list, uidl, retr, top, dele, rset, noop, quit)
- client: connection factory & session context manager

Usage Examples
----------------

    >>> from popmail.core.pop3 import get_pop3_client
    >>> from popmail.core.mail import parse_mail
    >>>
    >>> client = get_pop3_client(config)
    >>> async with client.session("user", "secret") as pop3:
    ...     count, size = await pop3.stat()
    ...     info = parse_mail(await pop3.retr(count))
    ...     await pop3.dele(count)

Notes
-----
- Deletions are only committed when the session exits cleanly (QUIT)
- A transport failure or protocol violation closes the connection
- A server -ERR reply leaves the connection usable
"""

from .client import POP3Client, get_pop3_client
from .command import Command
from .connection import ConnectionStats, POP3Connection
from .constants import POP3Verb
from .protocol import POP3Protocol
from .response import Response, parse_status_line
from .session import SessionState, SessionStateMachine

__all__ = [
    "POP3Client",
    "get_pop3_client",
    "Command",
    "ConnectionStats",
    "POP3Connection",
    "POP3Verb",
    "POP3Protocol",
    "Response",
    "parse_status_line",
    "SessionState",
    "SessionStateMachine",
]
