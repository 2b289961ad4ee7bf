"""LLM completion backends.

Objective:
    Turn a prompt into the model's full answer text. Backends stream the
    answer as a sequence of partial chunks; each backend has a decoder that
    turns its chunk encoding into text fragments, and the fragments are
    concatenated in order.

Backends:
    - ``proxy``: POST ``{"prompt": ...}`` with a Bearer token to the
      completion endpoint; the response is newline-delimited JSON, one
      ``{"response": "..."}`` object per line.
    - ``groq``: streamed Groq chat completion; fragments are
      ``choices[0].delta.content``.

High-level call tree:
    - :func:`create_completion_client`
    - :class:`ProxyCompletionClient`.complete
        - :func:`iter_ndjson_fragments`
        - :func:`join_fragments`
    - :class:`GroqCompletionClient`.complete
        - :func:`iter_chat_stream_fragments`
        - :func:`join_fragments`

Error handling:
    Transport and HTTP failures raise :class:`CompletionError`. Malformed
    stream lines are logged and skipped; they never abort reconstruction.
"""

import json
import logging
from typing import Any, Iterable, Iterator, Optional, Protocol, Union

import requests
from groq import Groq

from .auth import MsalTokenProvider, completion_audience
from .config import Settings

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    """Raised when the completion backend cannot produce an answer."""


class CompletionClient(Protocol):
    def complete(self, prompt: str) -> str: ...


def iter_ndjson_fragments(lines: Iterable[Union[str, bytes]]) -> Iterator[str]:
    """Decode NDJSON lines into response text fragments.

    Args:
        lines: Raw lines (text or bytes), e.g. ``Response.iter_lines()``.

    Yields:
        str: The ``response`` field of every well-formed line.
    """
    for raw in lines:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        line = raw.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse completion line %r: %s", line[:200], e)
            continue
        if isinstance(obj, dict) and isinstance(obj.get("response"), str):
            yield obj["response"]


def iter_chat_stream_fragments(chunks: Iterable[Any]) -> Iterator[str]:
    """Decode streamed chat-completion chunks into text fragments.

    Args:
        chunks: Chunks from ``chat.completions.create(..., stream=True)``.

    Yields:
        str: Non-empty delta contents.
    """
    for chunk in chunks:
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        content = getattr(choices[0].delta, "content", None)
        if content:
            yield content


def join_fragments(fragments: Iterable[str]) -> str:
    """Concatenate text fragments in order."""
    return "".join(fragments)


class ProxyCompletionClient:
    """
    Completion client for the NDJSON completion endpoint.

    Attributes:
        settings: Application settings.
        auth: Token provider for the completion audience.
        endpoint_url: URL the prompt is posted to.
    """

    def __init__(self, settings: Settings, auth: MsalTokenProvider) -> None:
        self.settings = settings
        self.auth = auth
        self.endpoint_url = settings.completion_endpoint_url

    def complete(self, prompt: str) -> str:
        """Post a prompt and reconstruct the streamed answer.

        Args:
            prompt: Prompt text.

        Returns:
            str: Full answer text.

        Raises:
            CompletionError: On transport or HTTP failure.
        """
        headers = self.auth.get_auth_headers()
        try:
            with requests.post(
                self.endpoint_url,
                headers=headers,
                json={"prompt": prompt},
                timeout=self.settings.http_timeout_seconds,
                stream=True,
            ) as response:
                if not response.ok:
                    logger.error(
                        f"Completion endpoint error: {response.status_code} - {response.text}"
                    )
                    raise CompletionError(
                        f"Completion endpoint returned HTTP {response.status_code}"
                    )
                return join_fragments(iter_ndjson_fragments(response.iter_lines()))
        except requests.RequestException as e:
            raise CompletionError(f"Completion request failed: {e}") from e


class GroqCompletionClient:
    """
    Completion client backed by a streamed Groq chat completion.

    Attributes:
        settings: Application settings.
        client: Groq API client.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.client = Groq(api_key=settings.groq_api_key)

    def complete(self, prompt: str) -> str:
        """Stream a chat completion and reconstruct the answer.

        Args:
            prompt: Prompt text, sent as the single user message.

        Returns:
            str: Full answer text.

        Raises:
            CompletionError: If the Groq call fails.
        """
        try:
            stream = self.client.chat.completions.create(
                model=self.settings.groq_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
                stream=True,
            )
            return join_fragments(iter_chat_stream_fragments(stream))
        except Exception as e:
            raise CompletionError(f"Groq completion failed: {e}") from e


def create_completion_client(
    settings: Settings,
    auth: Optional[MsalTokenProvider] = None,
) -> CompletionClient:
    """Build the completion client selected by ``settings.llm_backend``.

    Args:
        settings: Application settings.
        auth: Token provider for the completion audience. Created from
            settings when omitted and the proxy backend is selected.

    Returns:
        CompletionClient: Ready-to-use client.

    Raises:
        ValueError: If the selected backend is not fully configured.
    """
    if settings.llm_backend == "groq":
        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY must be set when LLM_BACKEND=groq")
        return GroqCompletionClient(settings)

    if not settings.completion_endpoint_url:
        raise ValueError("COMPLETION_ENDPOINT_URL must be set when LLM_BACKEND=proxy")
    if auth is None:
        auth = MsalTokenProvider(completion_audience(settings), settings)
    return ProxyCompletionClient(settings, auth)
