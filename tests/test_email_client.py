from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import requests

from src.outlook_triage.email_client import (
    EmailClient,
    format_odata_datetime,
    quote_odata_string,
)


def _client() -> EmailClient:
    settings = MagicMock()
    settings.http_timeout_seconds = 30
    auth = MagicMock()
    auth.get_auth_headers.return_value = {"Authorization": "Bearer token"}
    return EmailClient(settings, auth)


def test_get_inbox_messages_uses_inbox_endpoint() -> None:
    """Ensure the newest Inbox messages are requested."""

    client = _client()
    client._make_request = MagicMock(
        return_value={"value": [{"id": "m1", "subject": "Hi", "categories": ["Replied"]}]}
    )

    emails = client.get_inbox_messages(limit=5)

    args, kwargs = client._make_request.call_args
    assert args[0] == "GET"
    assert args[1] == "/me/mailFolders/inbox/messages"
    assert kwargs["params"]["$top"] == 5
    assert kwargs["params"]["$orderby"] == "receivedDateTime desc"
    assert [e.id for e in emails] == ["m1"]
    assert emails[0].categories == ["Replied"]


def test_get_sent_messages_filters_by_date_and_follows_pages() -> None:
    """Sent Items are filtered by sentDateTime and every page is read."""

    client = _client()
    next_link = "https://graph.microsoft.com/v1.0/me/mailFolders/sentitems/messages?$skip=2"
    client._make_request = MagicMock(
        side_effect=[
            {"value": [{"id": "s1"}, {"id": "s2"}], "@odata.nextLink": next_link},
            {"value": [{"id": "s3"}]},
        ]
    )

    emails = client.get_sent_messages(since=datetime(2025, 5, 1, 9, 30, tzinfo=timezone.utc))

    assert [e.id for e in emails] == ["s1", "s2", "s3"]
    first, second = client._make_request.call_args_list
    assert first.args[1] == "/me/mailFolders/sentitems/messages"
    assert first.kwargs["params"]["$filter"] == "sentDateTime ge 2025-05-01T09:30:00Z"
    assert second.args[1] == next_link
    assert second.kwargs["params"] is None


def test_iter_conversation_messages_filters_and_escapes() -> None:
    """Conversation IDs are quoted for OData and pages stop without a next link."""

    client = _client()
    client._make_request = MagicMock(
        return_value={"value": [{"id": "c1", "receivedDateTime": "2025-06-01T10:00:00Z"}]}
    )

    messages = list(client.iter_conversation_messages("sentitems", "AAQk'x", page_size=10))

    assert [m.id for m in messages] == ["c1"]
    client._make_request.assert_called_once()
    args, kwargs = client._make_request.call_args
    assert args[1] == "/me/mailFolders/sentitems/messages"
    assert kwargs["params"]["$filter"] == "conversationId eq 'AAQk''x'"
    assert kwargs["params"]["$top"] == 10


def test_iter_conversation_messages_is_lazy() -> None:
    """Stopping early does not fetch later pages."""

    client = _client()
    client._make_request = MagicMock(
        return_value={"value": [{"id": "c1"}], "@odata.nextLink": "https://graph.microsoft.com/next"}
    )

    iterator = client.iter_conversation_messages("inbox", "conv")
    next(iterator)

    client._make_request.assert_called_once()


def test_get_message_url_encodes_id_and_selects_fields() -> None:
    """Ensure message IDs are URL-encoded before calling Graph."""

    client = _client()
    client._make_request = MagicMock(return_value={"id": "a/b+c="})

    client.get_message("a/b+c=", select="conversationId")

    args, kwargs = client._make_request.call_args
    assert args[1] == "/me/messages/a%2Fb%2Bc%3D"
    assert kwargs["params"] == {"$select": "conversationId"}


def test_set_categories_patches_full_list() -> None:
    """The category list is sent as a whole value."""

    client = _client()
    client._make_request = MagicMock(return_value={})

    assert client.set_categories("a/b", ["Customer", "Replied"]) is True

    client._make_request.assert_called_once_with(
        "PATCH",
        "/me/messages/a%2Fb",
        json_data={"categories": ["Customer", "Replied"]},
    )


def test_set_categories_returns_false_on_http_error() -> None:
    """A rejected PATCH is reported, not raised."""

    client = _client()
    client._make_request = MagicMock(side_effect=requests.HTTPError("403"))

    assert client.set_categories("m1", ["Replied"]) is False


def test_make_request_accepts_absolute_urls_and_applies_timeout() -> None:
    """Next links are requested as-is with the configured timeout."""

    client = _client()
    response = MagicMock()
    response.ok = True
    response.status_code = 200
    response.content = b'{"value": []}'
    response.json.return_value = {"value": []}

    with patch("src.outlook_triage.email_client.requests.request", return_value=response) as request:
        data = client._make_request("GET", "https://graph.microsoft.com/v1.0/me/messages?$skip=10")

    assert data == {"value": []}
    kwargs = request.call_args.kwargs
    assert kwargs["url"] == "https://graph.microsoft.com/v1.0/me/messages?$skip=10"
    assert kwargs["timeout"] == 30
    assert kwargs["headers"] == {"Authorization": "Bearer token"}


def test_make_request_returns_empty_dict_for_no_content() -> None:
    """204 responses decode to an empty dict."""

    client = _client()
    response = MagicMock()
    response.ok = True
    response.status_code = 204
    response.content = b""

    with patch("src.outlook_triage.email_client.requests.request", return_value=response):
        assert client._make_request("PATCH", "/me/messages/m1", json_data={"categories": []}) == {}


def test_odata_helpers() -> None:
    """Datetimes are rendered in UTC and quotes are doubled."""

    assert format_odata_datetime(datetime(2025, 1, 31, 8, 0)) == "2025-01-31T08:00:00Z"
    assert quote_odata_string("O'Brien") == "O''Brien"
