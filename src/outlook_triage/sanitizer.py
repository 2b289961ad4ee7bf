"""Email body sanitization for prompts.

Objective:
    Convert raw email content returned by Microsoft Graph (often HTML) into a
    compact plain-text representation suitable for LLM prompting.

Responsibilities:
    - Strip non-content HTML (``<script>``, ``<style>``, comments, document
      metadata) and all remaining tags.
    - Decode HTML entities and normalize whitespace.
    - Convert HTML email chains to markdown-ish text when structure matters
      (reply suggestions read the whole chain).

High-level call tree:
    - :func:`sanitize_email_body`
        - :func:`strip_html` (HTML input)
        - :func:`normalize_whitespace`
    - :func:`email_chain_to_text`
        - :func:`html_to_markdown` (HTML input)
"""

import re

from bs4 import BeautifulSoup, Comment
from markdownify import markdownify as md

NON_CONTENT_TAGS = ["script", "style", "head", "meta", "link", "title"]


def _soup_without_noise(html_content: str) -> BeautifulSoup:
    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(NON_CONTENT_TAGS):
        element.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    return soup


def normalize_whitespace(text: str) -> str:
    """Collapse all runs of whitespace to a single space and trim."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def strip_html(html_content: str) -> str:
    """Extract visible plain text from HTML.

    Scripts, styles and comments are dropped, entities are decoded by the
    parser and whitespace is collapsed.

    Args:
        html_content: Raw HTML string.

    Returns:
        str: Plain text.
    """
    if not html_content:
        return ""

    soup = _soup_without_noise(html_content)
    return normalize_whitespace(soup.get_text(separator=" "))


def html_to_markdown(html_content: str) -> str:
    """Convert HTML to markdown-like text, keeping paragraph structure.

    Args:
        html_content: Raw HTML string.

    Returns:
        str: Markdown formatted text.
    """
    if not html_content:
        return ""

    soup = _soup_without_noise(html_content)
    return md(str(soup), heading_style="ATX").strip()


def sanitize_email_body(
    body_content: str, content_type: str = "html", max_length: int = 20000
) -> str:
    """Sanitize an email body for a triage prompt.

    This is the main entrypoint used by the classifier.

    Args:
        body_content: Raw email body content.
        content_type: Content type ("html" or "text").
        max_length: Truncate the result to this many characters.

    Returns:
        str: Single-line plain text ready for AI processing.
    """
    if not body_content:
        return ""

    if (content_type or "").lower() == "html":
        cleaned = strip_html(body_content)
    else:
        cleaned = normalize_whitespace(body_content)

    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]

    return cleaned


def email_chain_to_text(
    body_content: str, content_type: str = "html", max_length: int = 20000
) -> str:
    """Render an email chain for a reply prompt.

    Unlike :func:`sanitize_email_body`, line breaks are preserved so the model
    can tell the most recent message apart from quoted history.

    Args:
        body_content: Raw email body content.
        content_type: Content type ("html" or "text").
        max_length: Truncate the result to this many characters.

    Returns:
        str: Multi-line text.
    """
    if not body_content:
        return ""

    if (content_type or "").lower() == "html":
        text = html_to_markdown(body_content)
    else:
        text = body_content.strip()

    # Collapse blank-line runs left behind by layout tables.
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text[:max_length]
