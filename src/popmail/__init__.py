"""Asynchronous POP3 client and mail decoder."""

from .core.mail import parse_mail
from .core.models import MailInfo, MessageIdentity
from .core.pop3 import POP3Client, POP3Protocol, get_pop3_client
from .utils.config import AppConfig, POP3Config, load_config

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "MailInfo",
    "MessageIdentity",
    "POP3Client",
    "POP3Config",
    "POP3Protocol",
    "get_pop3_client",
    "load_config",
    "parse_mail",
]
