"""Projection of a decoded message onto ``MailInfo``."""

from email.message import EmailMessage
from typing import Iterator, Optional, Union

from popmail.core.models.mail import MailInfo
from popmail.utils.logging import get_logger, log_call

from .profiles import DecodingProfile, get_profile

logger = get_logger(__name__)

DEFAULT_PROFILE = "netease"


def _body_parts(entity: EmailMessage) -> Iterator[EmailMessage]:
    """Yield inline text leaves in document order.

    Attached messages (``message/*``) and attachments are not descended into.
    """
    maintype = entity.get_content_maintype()

    if maintype == "multipart":
        for part in entity.iter_parts():
            yield from _body_parts(part)
    elif maintype == "text" and entity.get_content_disposition() != "attachment":
        yield entity


def read_part_text(part: EmailMessage) -> Optional[str]:
    """Return the decoded text of ``part``, or None if it cannot be read.

    A part with an unknown charset is decoded as UTF-8 with replacement.
    """
    try:
        return part.get_content()

    except LookupError:
        payload = part.get_payload(decode=True) or b""
        logger.warning(
            "Unknown charset in message part, decoding as UTF-8",
            extra={
                "charset": part.get_content_charset(),
                "content_type": part.get_content_type(),
            },
        )
        return payload.decode("utf-8", errors="replace")

    except (ValueError, TypeError, UnicodeError) as e:
        logger.warning(
            "Skipping unreadable message part",
            extra={"content_type": part.get_content_type(), "error": str(e)},
        )
        return None


@log_call
def parse_mail(
    message: EmailMessage,
    profile: Union[str, DecodingProfile] = DEFAULT_PROFILE,
) -> MailInfo:
    """Extract sender, receipt time, subject and bodies from ``message``.

    Args:
        message: Decoded message as returned by ``POP3Protocol.retr``
        profile: Decoding profile name or instance for the sender and time

    Returns:
        MailInfo for the message

    Raises:
        ParseError: If the profile cannot find the sender or receipt time
        KeyError: If ``profile`` names no registered profile
    """
    profile = get_profile(profile)

    info = MailInfo(
        from_=profile.sender(message),
        time=profile.received_at(message),
        title=str(message.get("Subject", "")),
    )

    for part in _body_parts(message):
        content_type = part.get_content_type()
        if content_type == "text/plain" and not info.content:
            text = read_part_text(part)
            if text is not None:
                info.content = text
        elif content_type == "text/html" and not info.html_content:
            text = read_part_text(part)
            if text is not None:
                info.html_content = text

    return info
