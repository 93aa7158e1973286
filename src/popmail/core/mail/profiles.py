"""Provider-specific header conventions for sender and receipt time.

Mail providers disagree on where the envelope sender and the delivery time
can be read from. Each convention is a ``DecodingProfile`` registered under a
name, so new providers are added by registering a profile rather than by
editing the decoder.
"""

from abc import ABC, abstractmethod
from datetime import timezone
from email.message import EmailMessage
from email.utils import parseaddr, parsedate_to_datetime
from typing import Dict, Union

from popmail.utils.errors import ParseError


class DecodingProfile(ABC):
    """Strategy for extracting sender and receipt time from headers."""

    name: str = ""

    @abstractmethod
    def sender(self, message: EmailMessage) -> str:
        """Return the sender address."""

    @abstractmethod
    def received_at(self, message: EmailMessage) -> int:
        """Return the receipt time as a unix timestamp."""


def _header_text(message: EmailMessage, name: str) -> str:
    value = message.get(name)
    if value is None:
        raise ParseError(f"Missing {name} header", details={"header": name})
    return str(value)


class ReceivedHeaderProfile(DecodingProfile):
    """Reads both fields from the first ``Received`` header.

    Expected layout::

        from <sender with placeholder> <routing...>; <date> (<tz>)

    The provider writes ``$`` where the sender address has ``@``.
    """

    def __init__(
        self,
        name: str = "netease",
        placeholder: str = "$",
        timezone_annotation: str = "(CST)",
    ):
        self.name = name
        self.placeholder = placeholder
        self.timezone_annotation = timezone_annotation

    def _clauses(self, message: EmailMessage) -> list:
        received = _header_text(message, "Received")
        clauses = received.split(";")
        if len(clauses) < 2:
            raise ParseError(
                "Received header has no date clause",
                details={"received": received[:200]},
            )
        return clauses

    def sender(self, message: EmailMessage) -> str:
        routing = self._clauses(message)[0]
        tokens = routing.split()
        if len(tokens) < 2:
            raise ParseError(
                "Received header has no sender token",
                details={"routing": routing[:200]},
            )
        return tokens[1].replace(self.placeholder, "@")

    def received_at(self, message: EmailMessage) -> int:
        date = self._clauses(message)[1]
        if self.timezone_annotation:
            date = date.replace(self.timezone_annotation, "")
        date = date.strip()

        # RFC 5322 date-time with English names whatever LC_TIME says
        try:
            parsed = parsedate_to_datetime(date)
        except (TypeError, ValueError) as e:
            raise ParseError(
                f"Unparseable receipt date: {date!r}", details={"date": date}
            ) from e

        if parsed.tzinfo is None:
            raise ParseError(
                f"Receipt date has no UTC offset: {date!r}", details={"date": date}
            )
        return int(parsed.timestamp())


class StandardHeaderProfile(DecodingProfile):
    """Reads the RFC 5322 ``From`` and ``Date`` headers."""

    name = "standard"

    def sender(self, message: EmailMessage) -> str:
        _, address = parseaddr(_header_text(message, "From"))
        if not address:
            raise ParseError("From header has no address")
        return address

    def received_at(self, message: EmailMessage) -> int:
        date = _header_text(message, "Date")
        try:
            parsed = parsedate_to_datetime(date)
        except (TypeError, ValueError) as e:
            raise ParseError(
                f"Unparseable Date header: {date!r}", details={"date": date}
            ) from e

        # RFC 5322 "-0000" means UTC with unknown origin
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())


_profiles: Dict[str, DecodingProfile] = {}


def register_profile(profile: DecodingProfile) -> None:
    """Make ``profile`` available by its name, replacing any previous one."""
    if not profile.name:
        raise ValueError("Decoding profile must have a name")
    _profiles[profile.name] = profile


def get_profile(profile: Union[str, DecodingProfile]) -> DecodingProfile:
    """Resolve a profile name (or pass a profile instance through).

    Raises:
        KeyError: If no profile is registered under the name
    """
    if isinstance(profile, DecodingProfile):
        return profile
    try:
        return _profiles[profile]
    except KeyError:
        raise KeyError(
            f"Unknown decoding profile {profile!r}; known: {sorted(_profiles)}"
        ) from None


def available_profiles() -> list:
    return sorted(_profiles)


register_profile(ReceivedHeaderProfile())
register_profile(StandardHeaderProfile())
