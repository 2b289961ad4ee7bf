"""Microsoft Graph API client for mail operations.

Objective:
    Provide a thin wrapper around the Microsoft Graph Mail endpoints used by
    the triage workflow. This module centralizes HTTP request construction,
    authentication headers, OData paging, and Pydantic validation of
    responses.

Responsibilities:
    - Issue authenticated HTTP requests to Graph (via :class:`requests`).
    - List Inbox and Sent Items messages.
    - Fetch a single message.
    - Page through all messages of a conversation in a folder.
    - Replace a message's category list.

High-level call tree:
    - Public API:
        - :meth:`EmailClient.get_inbox_messages` -> :class:`src.outlook_triage.models.Email`
        - :meth:`EmailClient.get_sent_messages` -> :class:`src.outlook_triage.models.Email`
        - :meth:`EmailClient.get_message`
        - :meth:`EmailClient.iter_conversation_messages`
        - :meth:`EmailClient.set_categories`
    - Internal helpers:
        - :meth:`EmailClient._make_request` (auth + error handling)
        - :meth:`EmailClient._iter_pages` (``@odata.nextLink`` traversal)

Graph endpoints used:
    - ``GET /me/mailFolders/inbox/messages``
    - ``GET /me/mailFolders/sentitems/messages``
    - ``GET /me/mailFolders/{folder}/messages?$filter=conversationId eq '...'``
    - ``GET /me/messages/{email_id}``
    - ``PATCH /me/messages/{email_id}``

Error handling:
    - HTTP errors are logged and raised from :meth:`_make_request`.
    - :meth:`set_categories` catches request errors and returns ``False``
      since a failed label write is a per-message failure.
"""

import logging
from datetime import datetime, timezone
from typing import AbstractSet, Iterator, Optional
from urllib.parse import quote

import requests

from .auth import MsalTokenProvider
from .config import Settings
from .models import Email

logger = logging.getLogger(__name__)

MESSAGE_SELECT = (
    "id,subject,body,bodyPreview,categories,conversationId,internetMessageId,"
    "receivedDateTime,sentDateTime,parentFolderId"
)
REPLY_SEARCH_SELECT = "receivedDateTime,bodyPreview"

INBOX_FOLDER = "inbox"
SENT_FOLDER = "sentitems"


def format_odata_datetime(value: datetime) -> str:
    """Format a datetime as a UTC OData literal (``2025-01-31T08:00:00Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def quote_odata_string(value: str) -> str:
    """Escape a value for use inside a single-quoted OData string literal."""
    return value.replace("'", "''")


class EmailClient:
    """
    Client for interacting with Microsoft Graph API for email operations.

    This class is intentionally state-light: it depends on the Graph
    :class:`src.outlook_triage.auth.MsalTokenProvider` it was given for
    tokens and builds URLs relative to :attr:`GRAPH_BASE_URL`.

    Attributes:
        settings: Application settings.
        auth: Token provider for the Graph audience.
    """

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(self, settings: Settings, auth: MsalTokenProvider) -> None:
        """
        Initialize email client.

        Args:
            settings: Application settings.
            auth: Token provider for Microsoft Graph.
        """
        self.settings = settings
        self.auth = auth

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
        suppress_statuses: Optional[AbstractSet[int]] = None,
    ) -> dict:
        """Make an authenticated request to Microsoft Graph.

        This helper:
        - Adds auth headers (Bearer token).
        - Accepts either a path relative to :attr:`GRAPH_BASE_URL` or an
          absolute URL (as returned in ``@odata.nextLink``).
        - Applies the configured timeout.
        - Raises for non-2xx responses.
        - Returns decoded JSON or ``{}`` for 204 responses.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            endpoint: API endpoint path or absolute URL.
            params: Query parameters.
            json_data: JSON body data.
            suppress_statuses: Statuses logged at DEBUG instead of ERROR.

        Returns:
            dict: Response JSON data.

        Raises:
            requests.HTTPError: If request fails.
        """
        if endpoint.startswith("https://") or endpoint.startswith("http://"):
            url = endpoint
        else:
            url = f"{self.GRAPH_BASE_URL}{endpoint}"
        headers = self.auth.get_auth_headers()

        response = requests.request(
            method=method,
            url=url,
            headers=headers,
            params=params,
            json=json_data,
            timeout=self.settings.http_timeout_seconds,
        )

        if not response.ok:
            suppress = suppress_statuses and response.status_code in suppress_statuses
            if suppress:
                logger.debug(
                    "Graph API expected non-2xx: %s - %s",
                    response.status_code,
                    response.text,
                )
            else:
                logger.error(
                    f"Graph API error: {response.status_code} - {response.text}"
                )
            response.raise_for_status()

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    def _iter_pages(self, endpoint: str, params: Optional[dict] = None) -> Iterator[list[dict]]:
        """Yield each page of a Graph collection, following ``@odata.nextLink``.

        The next link already carries the query string, so ``params`` are only
        sent with the first request. Iteration stops when a page has no next
        link.

        Args:
            endpoint: Collection endpoint.
            params: Query parameters for the first request.

        Yields:
            list[dict]: Raw ``value`` items of one page.

        Raises:
            requests.HTTPError: If a page request fails.
        """
        next_url: Optional[str] = endpoint
        next_params = params
        while next_url:
            data = self._make_request("GET", next_url, params=next_params)
            yield data.get("value", [])
            next_url = data.get("@odata.nextLink") or None
            next_params = None

    def _parse_emails(self, items: list[dict]) -> list[Email]:
        emails = []
        for item in items:
            try:
                emails.append(Email.model_validate(item))
            except Exception as e:
                logger.warning(f"Failed to parse email: {e}")
                continue
        return emails

    def get_inbox_messages(self, limit: int = 50) -> list[Email]:
        """Fetch the most recent Inbox messages.

        Args:
            limit: Maximum number of emails to fetch.

        Returns:
            list[Email]: List of email objects, newest first.
        """
        params = {
            "$top": limit,
            "$select": MESSAGE_SELECT,
            "$orderby": "receivedDateTime desc",
        }

        logger.debug(f"Fetching up to {limit} inbox emails")
        response = self._make_request("GET", f"/me/mailFolders/{INBOX_FOLDER}/messages", params=params)

        emails = self._parse_emails(response.get("value", []))
        logger.debug(f"Fetched {len(emails)} inbox emails")
        return emails

    def get_sent_messages(self, since: datetime, page_size: int = 50) -> list[Email]:
        """Fetch every Sent Items message sent at or after ``since``.

        All pages are followed.

        Args:
            since: Lower bound for ``sentDateTime``.
            page_size: ``$top`` per page.

        Returns:
            list[Email]: List of email objects.
        """
        params = {
            "$top": page_size,
            "$select": MESSAGE_SELECT,
            "$filter": f"sentDateTime ge {format_odata_datetime(since)}",
        }

        emails: list[Email] = []
        for page in self._iter_pages(f"/me/mailFolders/{SENT_FOLDER}/messages", params=params):
            emails.extend(self._parse_emails(page))
            logger.debug(f"Fetched {len(emails)} sent emails so far")

        logger.debug(f"Fetched {len(emails)} sent emails since {since.isoformat()}")
        return emails

    def get_message(self, email_id: str, select: Optional[str] = None) -> Email:
        """Fetch a single message by id.

        Args:
            email_id: Message ID.
            select: Optional ``$select`` projection.

        Returns:
            Email: The message.

        Raises:
            requests.HTTPError: If the request fails.
        """
        safe_email_id = quote(email_id, safe="")
        params = {"$select": select} if select else None
        response = self._make_request("GET", f"/me/messages/{safe_email_id}", params=params)
        return Email.model_validate(response)

    def iter_conversation_messages(
        self,
        folder: str,
        conversation_id: str,
        page_size: int = 50,
    ) -> Iterator[Email]:
        """Yield every message of a conversation stored in ``folder``.

        Pages are fetched lazily; a consumer that stops early avoids fetching
        the remaining pages.

        Args:
            folder: Well-known folder name or folder ID.
            conversation_id: Graph conversation ID.
            page_size: ``$top`` per page.

        Yields:
            Email: Conversation messages (only ``id``, ``receivedDateTime`` and
            ``bodyPreview`` are populated).

        Raises:
            requests.HTTPError: If a page request fails.
        """
        safe_folder = quote(folder, safe="")
        params = {
            "$top": page_size,
            "$filter": f"conversationId eq '{quote_odata_string(conversation_id)}'",
            "$select": REPLY_SEARCH_SELECT,
        }
        for page in self._iter_pages(f"/me/mailFolders/{safe_folder}/messages", params=params):
            yield from self._parse_emails(page)

    def set_categories(self, email_id: str, categories: list[str]) -> bool:
        """Replace the category list of an email.

        Graph treats ``categories`` as a whole-value property: the list sent
        here becomes the message's complete category set.

        Args:
            email_id: ID of email to update.
            categories: Full category list to store.

        Returns:
            bool: True if successful.
        """
        safe_email_id = quote(email_id, safe="")
        endpoint = f"/me/messages/{safe_email_id}"
        json_data = {"categories": list(categories)}

        try:
            self._make_request("PATCH", endpoint, json_data=json_data)
            logger.debug(f"Set categories {categories!r} on email {email_id}")
            return True
        except requests.RequestException as e:
            logger.warning(f"Failed to set categories on email {email_id}: {e}")
            return False
