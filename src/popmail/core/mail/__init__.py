"""Mail decoding: MIME parsing and projection onto MailInfo."""

from .decoder import parse_mail, read_part_text
from .mime import read_message
from .profiles import (
    DecodingProfile,
    ReceivedHeaderProfile,
    StandardHeaderProfile,
    available_profiles,
    get_profile,
    register_profile,
)

__all__ = [
    "parse_mail",
    "read_part_text",
    "read_message",
    "DecodingProfile",
    "ReceivedHeaderProfile",
    "StandardHeaderProfile",
    "available_profiles",
    "get_profile",
    "register_profile",
]
