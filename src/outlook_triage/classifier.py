"""LLM-backed triage classification.

Objective:
    Turn an :class:`src.outlook_triage.models.Email` into one of two triage
    signals:
    - a priority digit ``"1"``..``"5"`` for inbound mail, or
    - a follow-up urgency for outbound mail.

    Also drafts reply suggestions for the add-in task pane.

Core strategy:
    1. Sanitize the email body to plain text.
    2. Render a prompt embedding the subject and body.
    3. Ask the completion backend for the answer text.
    4. Parse the answer; when it is unusable, fall back to a documented
       default instead of raising.

High-level call tree:
    - :class:`TriageClassifier`
        - :meth:`TriageClassifier.classify_priority`
            - :meth:`TriageClassifier.build_priority_prompt`
            - :meth:`TriageClassifier._complete`
            - :func:`parse_priority`
        - :meth:`TriageClassifier.classify_follow_up`
            - :meth:`TriageClassifier.build_follow_up_prompt`
            - :meth:`TriageClassifier._complete`
            - :func:`parse_follow_up`
                - :func:`_scan_follow_up_text`
        - :meth:`TriageClassifier.suggest_reply`

Fallbacks:
    - Priority: anything other than exactly one digit 1-5 -> ``"Unknown"``.
    - Follow-up: invalid JSON -> lowercase text scan; backend failure ->
      :attr:`FollowUpUrgency.NO_RESPONSE`.
    - Reply suggestion: empty answer or backend failure -> ``None``.
"""

import json
import logging
import re
from typing import Optional

from .auth import DeviceCodeAuthRequired
from .completion import CompletionClient
from .config import PRIORITY_CATEGORIES, UNKNOWN_PRIORITY, FollowUpUrgency, Settings
from .models import Email
from .sanitizer import email_chain_to_text, sanitize_email_body

logger = logging.getLogger(__name__)

PRIORITY_PROMPT = """You are a project manager at an office furniture dealership responsible for evaluating incoming emails to determine how urgently they require a response. You follow a priority scale from 1 to 5:

- 1: Extremely urgent - requires an immediate response, such as crises, blocking issues, or key client needs that impact revenue or deadlines.
- 2: High priority - important or time-sensitive matters that should be addressed soon to keep projects or communications on track.
- 3: Normal priority - routine emails and standard requests that can be responded to when time allows without urgent pressure.
- 4: Low priority - informational messages or updates that may not need a response and can be deferred.
- 5: Very low priority or no response necessary - newsletters, FYIs, CCs, or other communications that generally do not require any reply.

Please read the most recent message in the email chain below and respond ONLY with a single digit number from 1 to 5 that reflects its priority. Do not explain why you made this choice.

Subject: {subject}

Email:
{body}"""

FOLLOW_UP_PROMPT = """You are an AI assistant helping a user manage their email inbox.
Given the subject and content of the email below, determine whether it requires a response.

Your response must be strictly in the following JSON format:
{{
  "requires_response": true | false,
  "urgency": "High" | "Normal" | "Low" | null
}}

Only say true if the message clearly requests something, asks a question, or implies the sender expects a reply. Otherwise, return false.

Subject: {subject}
Body:
{body}"""

REPLY_PROMPT = """Craft a professional, helpful, and friendly email reply to the most recent message in the email chain below. Your response should be clear, concise, and suitable for business communication. Use earlier emails in the chain only as background context.

Do not include a subject line, greeting, closing signature, sign-off, or your name. Respond only with the body of the email.

If the most recent message in the chain does not require a response, reply with a short and polite explanation for why no response is needed. Do not make assumptions or add new information not found in the email.

Email Chain:
Subject: {subject}
Body:
{body}"""

_URGENCY_BY_NAME = {
    "high": FollowUpUrgency.HIGH,
    "normal": FollowUpUrgency.NORMAL,
    "low": FollowUpUrgency.LOW,
}


def _strip_code_fences(text: str) -> str:
    """Remove Markdown code fences from a model response."""

    return re.sub(r"```(?:json)?\s*|```", "", text, flags=re.IGNORECASE)


def parse_priority(response_text: str) -> str:
    """Parse a priority answer.

    Args:
        response_text: Reconstructed model answer.

    Returns:
        str: ``"1"``..``"5"``, or ``"Unknown"``.
    """
    if response_text in PRIORITY_CATEGORIES:
        return response_text
    return UNKNOWN_PRIORITY


def _scan_follow_up_text(response_text: str) -> FollowUpUrgency:
    """Best-effort reading of a follow-up answer that is not valid JSON."""

    lower = (response_text or "").lower()
    if "true" in lower:
        for name, urgency in _URGENCY_BY_NAME.items():
            if name in lower:
                return urgency
        return FollowUpUrgency.NORMAL
    return FollowUpUrgency.NO_RESPONSE


def parse_follow_up(response_text: str) -> Optional[FollowUpUrgency]:
    """Parse a follow-up answer.

    Expected shape: ``{"requires_response": bool, "urgency": "High"|"Normal"|"Low"|null}``.

    Args:
        response_text: Reconstructed model answer.

    Returns:
        Optional[FollowUpUrgency]: Urgency when a response is required
        (Normal when the model omitted or garbled it), None when valid JSON
        does not say a response is required, or the text-scan result when the answer
        is not JSON.
    """
    try:
        data = json.loads(_strip_code_fences(response_text or "").strip())
    except json.JSONDecodeError:
        logger.warning("Failed to parse follow-up response as JSON; using text scan")
        return _scan_follow_up_text(response_text)

    if not isinstance(data, dict) or data.get("requires_response") is not True:
        return None

    urgency = data.get("urgency")
    if isinstance(urgency, str):
        matched = _URGENCY_BY_NAME.get(urgency.strip().lower())
        if matched:
            return matched
        logger.warning("Unrecognised follow-up urgency %r; using Normal", urgency)
    return FollowUpUrgency.NORMAL


class TriageClassifier:
    """
    Prompt construction and answer parsing for the triage workflow.

    The classifier is stateless between calls and safe to reuse for every
    message of a run.

    Attributes:
        settings: Application settings.
        completion: Completion backend.
    """

    def __init__(self, settings: Settings, completion: CompletionClient) -> None:
        """
        Initialize classifier.

        Args:
            settings: Application settings.
            completion: Completion backend used for every prompt.
        """
        self.settings = settings
        self.completion = completion

    def _prompt_fields(self, email: Email) -> tuple[str, str]:
        subject = (email.subject or "").strip() or "(No Subject)"
        body = sanitize_email_body(
            email.body.content if email.body else "",
            email.body.content_type if email.body else "text",
            max_length=self.settings.prompt_body_max_chars,
        )
        return subject, body

    def build_priority_prompt(self, email: Email) -> str:
        """Render the 1-5 priority prompt for an inbound email."""
        subject, body = self._prompt_fields(email)
        return PRIORITY_PROMPT.format(subject=subject, body=body)

    def build_follow_up_prompt(self, email: Email) -> str:
        """Render the requires-response prompt for a sent email."""
        subject, body = self._prompt_fields(email)
        return FOLLOW_UP_PROMPT.format(subject=subject, body=body)

    def _complete(self, prompt: str) -> str:
        response_text = self.completion.complete(prompt)
        logger.debug(f"LLM response: {response_text}")
        return response_text

    def classify_priority(self, email: Email) -> str:
        """
        Score an inbound email from 1 (most urgent) to 5.

        Args:
            email: Email to score.

        Returns:
            str: ``"1"``..``"5"``, or ``"Unknown"`` when the model output is
            unusable or the backend failed.
        """
        try:
            response_text = self._complete(self.build_priority_prompt(email))
        except DeviceCodeAuthRequired:
            raise
        except Exception as e:
            logger.warning(
                "Priority classification failed (email_id=%s, error=%s)",
                email.id,
                str(e),
            )
            return UNKNOWN_PRIORITY

        priority = parse_priority(response_text)
        if priority == UNKNOWN_PRIORITY:
            logger.warning(
                "Unexpected priority response %r (email_id=%s)", response_text, email.id
            )
        else:
            logger.info(f"Scored '{email.subject}' as priority {priority}")
        return priority

    def classify_follow_up(self, email: Email) -> Optional[FollowUpUrgency]:
        """
        Decide whether a sent email needs a reply, and how urgently.

        Args:
            email: Sent email to evaluate.

        Returns:
            Optional[FollowUpUrgency]: See :func:`parse_follow_up`. Backend
            failures yield :attr:`FollowUpUrgency.NO_RESPONSE`.
        """
        try:
            response_text = self._complete(self.build_follow_up_prompt(email))
        except DeviceCodeAuthRequired:
            raise
        except Exception as e:
            logger.warning(
                "Follow-up classification failed (email_id=%s, error=%s)",
                email.id,
                str(e),
            )
            return FollowUpUrgency.NO_RESPONSE

        urgency = parse_follow_up(response_text)
        logger.info(
            f"Follow-up urgency for '{email.subject}': {urgency.value if urgency else None}"
        )
        return urgency

    def suggest_reply(
        self,
        subject: str,
        body: str,
        content_type: str = "text",
    ) -> Optional[str]:
        """
        Draft a reply body for the most recent message of an email chain.

        Args:
            subject: Subject line.
            body: Email chain body.
            content_type: ``text`` or ``html``.

        Returns:
            Optional[str]: Suggested reply, or None when nothing usable came back.
        """
        chain = email_chain_to_text(body, content_type, max_length=self.settings.prompt_body_max_chars)
        prompt = REPLY_PROMPT.format(subject=(subject or "").strip(), body=chain)
        try:
            suggestion = self._complete(prompt).strip()
        except DeviceCodeAuthRequired:
            raise
        except Exception as e:
            logger.warning("Reply suggestion failed: %s", e)
            return None

        if not suggestion:
            logger.warning("Reply suggestion was empty")
            return None
        return suggestion
