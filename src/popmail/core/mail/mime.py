"""Adapter over the standard library MIME parser.

Turns raw message bytes into an ``EmailMessage`` tree and reports parts whose
declared charset has no Python codec as ``UnknownCharsetError``, carrying the
parsed message so callers can decide to keep it.
"""

import codecs
from email import policy
from email.errors import MessageError
from email.message import EmailMessage
from email.parser import BytesParser
from typing import List

from popmail.utils.errors import MessageDecodeError, UnknownCharsetError

_parser = BytesParser(policy=policy.default)


def unknown_charsets(message: EmailMessage) -> List[str]:
    """Return declared charsets of text parts that cannot be looked up."""
    unknown = []

    for part in message.walk():
        if part.is_multipart() or part.get_content_maintype() != "text":
            continue
        charset = part.get_content_charset()
        if not charset:
            continue
        try:
            codecs.lookup(charset)
        except LookupError:
            if charset not in unknown:
                unknown.append(charset)

    return unknown


def read_message(raw: bytes) -> EmailMessage:
    """Decode raw message bytes into a header/body tree.

    Raises:
        UnknownCharsetError: If a text part declares an unknown charset; the
            parsed message is available as ``error.entity``
        MessageDecodeError: If the bytes cannot be parsed at all
    """
    if not isinstance(raw, (bytes, bytearray)):
        raise MessageDecodeError(
            f"Expected raw message bytes, got {type(raw).__name__}"
        )

    try:
        message = _parser.parsebytes(bytes(raw))
    except (MessageError, ValueError, LookupError) as e:
        raise MessageDecodeError(f"Failed to parse message: {e}") from e

    charsets = unknown_charsets(message)
    if charsets:
        raise UnknownCharsetError(
            f"Unknown charset(s): {', '.join(charsets)}",
            details={"charsets": charsets},
            entity=message,
        )

    return message
