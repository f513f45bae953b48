"""Mailbox change-log clients"""

from .base import (
    AuthExpired,
    ChangeLogClient,
    MailboxError,
    MessageNotFound,
    NotificationFilter,
    PositionExpired,
    TransientFetchError,
    TransientProviderError,
)

__all__ = [
    'AuthExpired',
    'ChangeLogClient',
    'MailboxError',
    'MessageNotFound',
    'NotificationFilter',
    'PositionExpired',
    'TransientFetchError',
    'TransientProviderError',
]
