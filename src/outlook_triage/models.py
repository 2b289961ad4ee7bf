"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Email messages returned by Microsoft Graph
    - Follow-up buckets read back from existing categories
    - Per-message triage results produced by the orchestrator

Design notes:
    - These models use Pydantic aliases to match Microsoft Graph field names
      (e.g. ``conversationId`` -> :attr:`Email.conversation_id`).
    - ``model_config = ConfigDict(populate_by_name=True)`` is used to allow
      constructing models with either alias names or pythonic field names.

High-level structure:
    - Graph email primitives:
        - :class:`EmailBody`
        - :class:`Email`
    - Triage primitives:
        - :class:`FollowUpBucket`
        - :class:`TriageAction`
        - :class:`TriageResult`

Call tree usage:
    - :class:`src.outlook_triage.email_client.EmailClient`:
        - validates Graph responses into :class:`Email`
    - :mod:`src.outlook_triage.categories`:
        - returns :class:`FollowUpBucket`
    - :class:`src.outlook_triage.orchestrator.TriageOrchestrator`:
        - returns :class:`TriageResult`
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EmailBody(BaseModel):
    """Email body content.

    The body is provided by Graph with both a content type (usually HTML) and
    the raw content string.
    """

    content_type: str = Field(default="text", alias="contentType")
    content: str = ""

    model_config = ConfigDict(populate_by_name=True)


class Email(BaseModel):
    """
    Email message from Microsoft Graph API.

    Only the fields the triage workflow reads are modelled; Graph returns more
    and the extras are ignored.

    Attributes:
        id: Unique message ID.
        subject: Email subject line.
        body: Email body content.
        categories: Existing categories on the email.
        conversation_id: Graph conversation (thread) identifier.
        internet_message_id: RFC 2822 Message-ID.
        received_date_time: When the message arrived in the mailbox.
        sent_date_time: When the message was sent.
        body_preview: First characters of the body as plain text.
        parent_folder_id: Folder holding the message.
    """

    id: str
    subject: Optional[str] = ""
    body: EmailBody = Field(default_factory=EmailBody)
    categories: list[str] = Field(default_factory=list)
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    internet_message_id: Optional[str] = Field(default=None, alias="internetMessageId")
    received_date_time: Optional[datetime] = Field(default=None, alias="receivedDateTime")
    sent_date_time: Optional[datetime] = Field(default=None, alias="sentDateTime")
    body_preview: str = Field(default="", alias="bodyPreview")
    parent_folder_id: Optional[str] = Field(default=None, alias="parentFolderId")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def sent_time(self) -> Optional[datetime]:
        """Timestamp used for follow-up age computation.

        Returns:
            Optional[datetime]: ``sentDateTime`` or, if missing, ``receivedDateTime``.
        """
        return self.sent_date_time or self.received_date_time


class FollowUpBucket(str, Enum):
    """Follow-up state recovered from a sent message's categories."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
    NUDGE = "nudge"
    NO_RESPONSE = "nor"

    @property
    def is_terminal(self) -> bool:
        """Whether the bucket can no longer escalate."""
        return self in (FollowUpBucket.NUDGE, FollowUpBucket.NO_RESPONSE)


class TriageAction(str, Enum):
    """Outcome of evaluating one message."""

    TAGGED = "tagged"
    WOULD_TAG = "would_tag"
    SKIPPED = "skipped"
    FAILED = "failed"


class TriageResult(BaseModel):
    """
    Result of triaging a single email.

    This is the primary output type returned to the CLI and web API.

    Attributes:
        email_id: Original email ID.
        subject: Email subject.
        folder: ``inbox`` or ``sent``.
        action: What the orchestrator did.
        category: Label applied (or that would be applied in dry-run mode).
        previous_categories: Categories on the message before the run.
        reason: Short explanation of the decision.
        success: Whether processing succeeded.
        error: Error message if failed.
    """

    email_id: str
    subject: str = ""
    folder: str
    action: TriageAction
    category: Optional[str] = None
    previous_categories: list[str] = Field(default_factory=list)
    reason: str = ""
    success: bool = True
    error: Optional[str] = None
