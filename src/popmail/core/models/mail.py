"""Mailbox domain models"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class MessageIdentity:
    """A message as listed by LIST or UIDL.

    Ids are assigned by the server, contiguous from 1 within a session, and
    not stable across sessions once deletions are committed.
    """

    id: int
    size: int = 0
    # Only present for UIDL responses.
    uid: Optional[str] = None

    def __post_init__(self):
        if self.id < 1:
            raise ValueError(f"Message id must be positive: {self.id}")
        if self.size < 0:
            raise ValueError(f"Message size cannot be negative: {self.size}")


@dataclass
class MailInfo:
    """Semantic projection of one retrieved message."""

    from_: str = ""
    time: int = 0  # unix timestamp of receipt
    title: str = ""
    content: str = ""
    html_content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialise with the public key names (``from`` rather than ``from_``)."""
        data = asdict(self)
        data["from"] = data.pop("from_")
        return data
