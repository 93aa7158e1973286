"""Domain models."""

from .mail import MailInfo, MessageIdentity

__all__ = ['MailInfo', 'MessageIdentity']
