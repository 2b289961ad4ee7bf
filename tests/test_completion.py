"""
Tests for completion backends and stream decoding.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from src.outlook_triage.completion import (
    CompletionError,
    GroqCompletionClient,
    ProxyCompletionClient,
    create_completion_client,
    iter_chat_stream_fragments,
    iter_ndjson_fragments,
    join_fragments,
)


def _settings(**overrides) -> MagicMock:
    settings = MagicMock()
    settings.llm_backend = "proxy"
    settings.completion_endpoint_url = "https://llm.example.com/generate"
    settings.http_timeout_seconds = 30
    settings.groq_api_key = None
    settings.groq_model = "openai/gpt-oss-120b"
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class TestNdjsonFragments:
    """Tests for iter_ndjson_fragments."""

    def test_concatenates_in_order(self):
        """Fragments are joined in arrival order."""
        lines = ['{"response": "Hel"}', '{"response": "lo"}']
        assert join_fragments(iter_ndjson_fragments(lines)) == "Hello"

    def test_skips_malformed_and_blank_lines(self):
        """Malformed lines are dropped without aborting reconstruction."""
        lines = [
            '{"response": "2"}',
            "not json",
            "",
            '{"response": ',
            '{"done": true}',
            '{"response": null}',
            b'{"response": "!"}',
        ]
        assert join_fragments(iter_ndjson_fragments(lines)) == "2!"

    def test_empty_stream(self):
        """An empty stream yields empty text."""
        assert join_fragments(iter_ndjson_fragments([])) == ""


class TestChatStreamFragments:
    """Tests for iter_chat_stream_fragments."""

    def test_reads_delta_content(self):
        """Delta contents are concatenated and empty deltas ignored."""
        chunks = [_chunk("{\"requires"), _chunk(None), SimpleNamespace(choices=[]), _chunk("_response\": false}")]
        assert join_fragments(iter_chat_stream_fragments(chunks)) == '{"requires_response": false}'


class TestProxyCompletionClient:
    """Tests for ProxyCompletionClient."""

    def _response(self, ok=True, status_code=200, lines=()):
        response = MagicMock()
        response.ok = ok
        response.status_code = status_code
        response.text = "error body"
        response.iter_lines.return_value = list(lines)
        return response

    def test_posts_prompt_with_bearer_token(self):
        """The prompt is posted as JSON with the completion token."""
        auth = MagicMock()
        auth.get_auth_headers.return_value = {"Authorization": "Bearer llm-token"}
        response = self._response(lines=[b'{"response": "3"}', b""])

        with patch("src.outlook_triage.completion.requests.post") as post:
            post.return_value.__enter__.return_value = response
            result = ProxyCompletionClient(_settings(), auth).complete("Rate this")

        assert result == "3"
        args, kwargs = post.call_args
        assert args[0] == "https://llm.example.com/generate"
        assert kwargs["json"] == {"prompt": "Rate this"}
        assert kwargs["headers"] == {"Authorization": "Bearer llm-token"}
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == 30

    def test_http_error_raises_completion_error(self):
        """Non-2xx responses raise CompletionError."""
        with patch("src.outlook_triage.completion.requests.post") as post:
            post.return_value.__enter__.return_value = self._response(ok=False, status_code=502)
            with pytest.raises(CompletionError, match="502"):
                ProxyCompletionClient(_settings(), MagicMock()).complete("prompt")

    def test_transport_error_raises_completion_error(self):
        """Connection failures raise CompletionError."""
        with patch(
            "src.outlook_triage.completion.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(CompletionError, match="refused"):
                ProxyCompletionClient(_settings(), MagicMock()).complete("prompt")


class TestGroqCompletionClient:
    """Tests for GroqCompletionClient."""

    def test_streams_chat_completion(self):
        """The prompt is sent as a single user message and the stream is joined."""
        with patch("src.outlook_triage.completion.Groq") as groq_cls:
            groq_cls.return_value.chat.completions.create.return_value = iter([_chunk("1"), _chunk("")])
            client = GroqCompletionClient(_settings(llm_backend="groq", groq_api_key="gsk"))

            assert client.complete("Rate this") == "1"

        groq_cls.assert_called_once_with(api_key="gsk")
        kwargs = groq_cls.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "Rate this"}]
        assert kwargs["stream"] is True
        assert kwargs["temperature"] == 0

    def test_errors_raise_completion_error(self):
        """SDK failures raise CompletionError."""
        with patch("src.outlook_triage.completion.Groq") as groq_cls:
            groq_cls.return_value.chat.completions.create.side_effect = RuntimeError("rate limited")
            client = GroqCompletionClient(_settings(llm_backend="groq", groq_api_key="gsk"))

            with pytest.raises(CompletionError, match="rate limited"):
                client.complete("prompt")


class TestCreateCompletionClient:
    """Tests for create_completion_client."""

    def test_proxy_backend(self):
        """The proxy backend uses the given token provider."""
        auth = MagicMock()
        client = create_completion_client(_settings(), auth=auth)

        assert isinstance(client, ProxyCompletionClient)
        assert client.auth is auth

    def test_proxy_requires_endpoint(self):
        """The proxy backend needs an endpoint URL."""
        with pytest.raises(ValueError, match="COMPLETION_ENDPOINT_URL"):
            create_completion_client(_settings(completion_endpoint_url=""), auth=MagicMock())

    def test_groq_requires_key(self):
        """The Groq backend needs an API key."""
        with pytest.raises(ValueError, match="GROQ_API_KEY"):
            create_completion_client(_settings(llm_backend="groq"))

    def test_groq_backend(self):
        """The Groq backend is selected by settings."""
        with patch("src.outlook_triage.completion.Groq"):
            client = create_completion_client(_settings(llm_backend="groq", groq_api_key="gsk"))

        assert isinstance(client, GroqCompletionClient)
