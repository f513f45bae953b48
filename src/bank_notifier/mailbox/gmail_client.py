"""
Gmail change-log client.

Reads notification messages through the Gmail API: the History API provides
the incremental change log (``historyId`` positions), ``messages.get`` the
message detail and ``getProfile`` the current log head.
"""

import base64
import logging
import socket
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import Resource, build
from googleapiclient.errors import HttpError

from .base import (
    AuthExpired,
    ChangeLogClient,
    MessageNotFound,
    NotificationFilter,
    PositionExpired,
    TransientFetchError,
)
from ..models.core import MessageListing, NotifierConfig, RawMessage


logger = logging.getLogger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"

NETWORK_ERRORS = (socket.timeout, TimeoutError, ConnectionError, httplib2.HttpLib2Error, TransportError)


class GmailChangeLogClient(ChangeLogClient):
    """Change-log client backed by the Gmail API"""

    def __init__(
        self,
        config: Optional[NotifierConfig] = None,
        service: Optional[Resource] = None,
        credentials: Optional[Credentials] = None,
    ) -> None:
        """
        Initialize the Gmail client.

        Args:
            config: Pipeline configuration (credentials, timeouts, senders)
            service: Prebuilt Gmail API resource; built lazily when omitted
            credentials: OAuth2 credentials; built from config when omitted
        """
        self.config = config or NotifierConfig()
        self.user_id = self.config.gmail_user_id
        self.page_size = self.config.history_page_size
        self.notification_filter = NotificationFilter(
            self.config.sender_domains, self.config.content_keywords
        )

        self._credentials = credentials
        self._service = service

    @property
    def service(self) -> Resource:
        if self._service is None:
            self.connect()
        return self._service

    def connect(self) -> None:
        """Build the Gmail API resource with a timeout-bound transport."""
        if self._credentials is None:
            self._credentials = self._build_credentials()

        http = AuthorizedHttp(
            self._credentials,
            http=httplib2.Http(timeout=self.config.request_timeout_seconds),
        )
        self._service = build("gmail", "v1", http=http, cache_discovery=False)
        logger.info("Connected to Gmail API")

    def _build_credentials(self) -> Credentials:
        missing = [
            name for name in ('gmail_client_id', 'gmail_client_secret', 'gmail_refresh_token')
            if not getattr(self.config, name)
        ]
        if missing:
            raise AuthExpired(f"Missing Gmail credentials: {', '.join(missing)}")

        return Credentials(
            token=None,
            refresh_token=self.config.gmail_refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.config.gmail_client_id,
            client_secret=self.config.gmail_client_secret,
            scopes=GMAIL_SCOPES,
        )

    def refresh_credentials(self) -> None:
        """Refresh the access token and rebuild the API resource."""
        if self._credentials is None:
            self._credentials = self._build_credentials()

        try:
            self._credentials.refresh(Request())
        except RefreshError as e:
            raise AuthExpired(f"Failed to refresh Gmail access token: {e}") from e
        except NETWORK_ERRORS as e:
            raise TransientFetchError(f"Network error refreshing Gmail token: {e}") from e

        logger.info("Gmail access token refreshed")
        self.connect()

    def list_new_message_ids(self, since_position: str) -> MessageListing:
        """List messages added since ``since_position`` across all history pages."""
        message_ids: List[str] = []
        seen = set()
        current_position = None
        page_token = None

        while True:
            request = self.service.users().history().list(
                userId=self.user_id,
                startHistoryId=since_position,
                historyTypes=['messageAdded'],
                maxResults=self.page_size,
                pageToken=page_token,
            )
            response = self._execute(request, on_not_found=lambda: PositionExpired(since_position))

            current_position = response.get('historyId', current_position)
            for history_item in response.get('history', []):
                for added in history_item.get('messagesAdded', []):
                    message_id = added.get('message', {}).get('id')
                    if message_id and message_id not in seen:
                        seen.add(message_id)
                        message_ids.append(message_id)

            page_token = response.get('nextPageToken')
            if not page_token:
                break

        logger.debug(f"History since {since_position}: {len(message_ids)} new messages")
        return MessageListing(
            ids=message_ids,
            current_position=str(current_position) if current_position else None
        )

    def get_message_detail(self, message_id: str) -> RawMessage:
        request = self.service.users().messages().get(
            userId=self.user_id,
            id=message_id,
            format='full',
        )
        message = self._execute(request, on_not_found=lambda: MessageNotFound(message_id))

        payload = message.get('payload', {})
        headers = {h.get('name', '').lower(): h.get('value', '') for h in payload.get('headers', [])}

        received_at = None
        if message.get('internalDate'):
            received_at = datetime.fromtimestamp(int(message['internalDate']) / 1000, tz=timezone.utc)

        return RawMessage(
            id=message_id,
            log_position=str(message.get('historyId', '')),
            subject=headers.get('subject', ''),
            sender=headers.get('from', ''),
            received_at=received_at,
            body_markup=self.extract_html_content(payload),
        )

    def get_current_position(self) -> str:
        request = self.service.users().getProfile(userId=self.user_id)
        profile = self._execute(request)
        return str(profile['historyId'])

    def get_latest_message_id(self) -> Optional[str]:
        request = self.service.users().messages().list(
            userId=self.user_id,
            q=self.notification_filter.build_query(),
            maxResults=1,
        )
        response = self._execute(request)
        messages = response.get('messages') or []
        if not messages:
            logger.info("No notification messages found in mailbox")
            return None
        return messages[0]['id']

    def extract_html_content(self, payload: Dict[str, Any]) -> str:
        """Concatenate every ``text/html`` part of a message payload."""
        html_content = ''

        if payload.get('parts'):
            for part in payload['parts']:
                html_content += self.extract_html_content(part)
        elif payload.get('mimeType') == 'text/html':
            data = payload.get('body', {}).get('data')
            if data:
                html_content = self._decode_body(data)

        return html_content

    def _decode_body(self, data: str) -> str:
        padded = data + '=' * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded.encode('ascii')).decode('utf-8', errors='replace')

    def _execute(self, request, on_not_found: Optional[Callable[[], Exception]] = None) -> Dict[str, Any]:
        """Execute an API request, translating provider failures."""
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            if status == 404 and on_not_found is not None:
                raise on_not_found() from e
            if status == 401:
                raise AuthExpired(f"Gmail rejected credentials: {e}") from e
            raise TransientFetchError(f"Gmail API error {status}: {e}") from e
        except RefreshError as e:
            raise AuthExpired(f"Gmail credentials expired: {e}") from e
        except NETWORK_ERRORS as e:
            raise TransientFetchError(f"Network error calling Gmail API: {e}") from e
