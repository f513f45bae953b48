"""Mailbox change-log client interface, errors and message filtering."""

from abc import ABC, abstractmethod
from email.utils import parseaddr
from typing import List, Optional, Sequence

from ..models.core import MessageListing, RawMessage


class MailboxError(Exception):
    """Base class for change-log client failures"""


class PositionExpired(MailboxError):
    """The saved position is older than the provider's retention window"""

    def __init__(self, position: str, message: Optional[str] = None):
        self.position = position
        super().__init__(message or f"Change-log position {position} is no longer available")


class MessageNotFound(MailboxError):
    """The message was deleted or never existed"""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class TransientProviderError(MailboxError):
    """Network, timeout, quota or server failure; safe to retry next cycle"""


class TransientFetchError(TransientProviderError):
    """A single provider call failed transiently"""


class AuthExpired(TransientProviderError):
    """Access token rejected; refreshing credentials may fix it"""


class ChangeLogClient(ABC):
    """Incremental access to a mailbox's ordered change log"""

    @abstractmethod
    def list_new_message_ids(self, since_position: str) -> MessageListing:
        """List ids of messages added after ``since_position``, oldest first.

        Raises:
            PositionExpired: If ``since_position`` is no longer retained
        """
        pass

    @abstractmethod
    def get_message_detail(self, message_id: str) -> RawMessage:
        """Fetch a full message.

        Raises:
            MessageNotFound: If the message does not exist
            TransientFetchError: If the fetch failed transiently
        """
        pass

    @abstractmethod
    def get_current_position(self) -> str:
        """Return the current head of the change log"""
        pass

    @abstractmethod
    def get_latest_message_id(self) -> Optional[str]:
        """Return the id of the most recent notification message, if any"""
        pass

    def refresh_credentials(self) -> None:
        """Refresh provider credentials after an ``AuthExpired`` failure"""
        raise AuthExpired("Credential refresh is not supported by this client")


class NotificationFilter:
    """Precision filter for notification messages.

    Accepts a message when its sender belongs to one of the configured
    domains and its subject or body mentions at least one keyword.
    """

    def __init__(self, sender_domains: Sequence[str], keywords: Sequence[str]):
        self.sender_domains = [d.lower().lstrip('@') for d in sender_domains]
        self.keywords = [k.lower() for k in keywords]

    def matches_sender(self, sender: str) -> bool:
        if not self.sender_domains:
            return True
        address = parseaddr(sender or '')[1].lower()
        domain = address.rsplit('@', 1)[-1] if '@' in address else ''
        return any(domain == d or domain.endswith('.' + d) for d in self.sender_domains)

    def matches_content(self, message: RawMessage) -> bool:
        if not self.keywords:
            return True
        content = f"{message.subject} {message.body_markup}".lower()
        return any(keyword in content for keyword in self.keywords)

    def accepts(self, message: RawMessage) -> bool:
        return self.matches_sender(message.sender) and self.matches_content(message)

    def build_query(self) -> str:
        """Build a Gmail search query selecting the configured senders"""
        return ' OR '.join(f"from:{domain}" for domain in self.sender_domains)
