"""Triage workflow orchestrator.

Objective:
    Coordinate one triage pass over a mailbox:
    1) List recent Inbox messages and label each with a priority or the
       ``Replied`` marker.
    2) List recent Sent Items and label each with a follow-up bucket, a
       nudge, ``No Response Required`` or ``Replied``.
    3) Return per-message results suitable for CLI/web API.

Decision order (first match wins):
    Inbox:
        replied label -> skip; later message in thread -> ``Replied``;
        priority label -> skip; otherwise classify priority.
    Sent:
        replied label -> skip; later message in thread -> ``Replied``;
        follow-up bucket -> skip if terminal, nudge if overdue, else wait;
        otherwise classify follow-up (nudging immediately when already
        overdue).

    Labels only move forward: a bucket never reverts to blank, and
    ``Replied`` is reachable from any state because it is checked first on
    every run.

High-level call tree:
    - :class:`TriageOrchestrator`
        - :meth:`TriageOrchestrator.run`
            - :meth:`EmailClient.get_inbox_messages`
            - for each email: :meth:`TriageOrchestrator.process_inbox_email`
            - :meth:`EmailClient.get_sent_messages`
            - for each email: :meth:`TriageOrchestrator.process_sent_email`
        - :meth:`TriageOrchestrator.apply_category`
            - :func:`src.outlook_triage.categories.build_category_update`
            - :meth:`EmailClient.set_categories`
    - :func:`run_triage` convenience wrapper

Operational notes:
    - Messages are processed strictly one after another. Running two passes
      concurrently against the same mailbox is not guarded against.
    - The orchestrator does not persist state between runs; all state lives
      in the messages' categories.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests

from .auth import DeviceCodeAuthRequired, MsalTokenProvider, graph_audience
from .categories import (
    build_category_update,
    get_follow_up_category,
    has_priority_category,
    has_replied_category,
)
from .classifier import TriageClassifier
from .completion import CompletionClient, create_completion_client
from .config import (
    FOLLOW_UP_CATEGORIES,
    NO_RESPONSE_CATEGORY,
    NUDGE_CATEGORY,
    PRIORITY_CATEGORIES,
    REPLIED_CATEGORY,
    FollowUpUrgency,
    Settings,
    get_settings,
)
from .email_client import EmailClient
from .models import Email, TriageAction, TriageResult
from .reply_detector import ReplyDetector

logger = logging.getLogger(__name__)

INBOX = "inbox"
SENT = "sent"


def age_in_days(sent_time: datetime, now: datetime) -> int:
    """Whole days elapsed between ``sent_time`` and ``now`` (floored).

    Naive datetimes are treated as UTC.
    """
    if sent_time.tzinfo is None:
        sent_time = sent_time.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - sent_time) // timedelta(days=1)


class TriageOrchestrator:
    """
    Orchestrates the triage workflow.

    Attributes:
        settings: Application settings.
        graph_auth: Token provider for Microsoft Graph.
        email_client: Email client for API operations.
        reply_detector: Conversation reply lookup.
        classifier: LLM classifier.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        completion: Optional[CompletionClient] = None,
    ) -> None:
        """
        Initialize orchestrator with all components.

        Args:
            settings: Application settings (loads from env if None).
            completion: Completion backend (built from settings if None).
        """
        self.settings = settings or get_settings()

        self.graph_auth = MsalTokenProvider(graph_audience(self.settings), self.settings)
        self.email_client = EmailClient(self.settings, self.graph_auth)
        self.reply_detector = ReplyDetector(
            self.email_client,
            page_size=self.settings.conversation_page_size,
        )
        if completion is None:
            completion = create_completion_client(self.settings)
        self.classifier = TriageClassifier(self.settings, completion)

    def _result(
        self,
        email: Email,
        folder: str,
        action: TriageAction,
        reason: str,
        category: Optional[str] = None,
        success: bool = True,
        error: Optional[str] = None,
    ) -> TriageResult:
        return TriageResult(
            email_id=email.id,
            subject=email.subject or "",
            folder=folder,
            action=action,
            category=category,
            previous_categories=list(email.categories),
            reason=reason,
            success=success,
            error=error,
        )

    def apply_category(
        self,
        email: Email,
        folder: str,
        label: str,
        reason: str,
        dry_run: bool = False,
    ) -> TriageResult:
        """
        Write a triage label to a message.

        The category list sent to Graph is built from the message's current
        categories, the new label and ``settings.category_write_mode`` only.

        Args:
            email: Message to label.
            folder: ``inbox`` or ``sent``.
            label: Triage label.
            reason: Decision explanation for the result.
            dry_run: If True, only report the label.

        Returns:
            TriageResult: Outcome of the write.
        """
        if dry_run:
            logger.info(f"DRY RUN - would tag message {email.id} with '{label}'")
            return self._result(email, folder, TriageAction.WOULD_TAG, reason, category=label)

        categories = build_category_update(email.categories, label, self.settings.category_write_mode)
        logger.info(f"Tagging message {email.id} with {categories!r} ({reason})")

        if self.email_client.set_categories(email.id, categories):
            return self._result(email, folder, TriageAction.TAGGED, reason, category=label)

        return self._result(
            email,
            folder,
            TriageAction.FAILED,
            reason,
            category=label,
            success=False,
            error="Failed to update categories",
        )

    def process_inbox_email(self, email: Email, dry_run: bool = False) -> TriageResult:
        """
        Triage one Inbox message.

        Args:
            email: Inbox message.
            dry_run: If True, decide but do not write labels.

        Returns:
            TriageResult: Result of processing.
        """
        if has_replied_category(email.categories):
            logger.info("Message already has a replied category. Skipping.")
            return self._result(email, INBOX, TriageAction.SKIPPED, "already replied")

        if self.reply_detector.has_been_replied_to(email.id):
            return self.apply_category(email, INBOX, REPLIED_CATEGORY, "reply found", dry_run)

        if has_priority_category(email.categories):
            logger.info("Message already has a priority category but has not been replied to. Skipping.")
            return self._result(email, INBOX, TriageAction.SKIPPED, "already prioritised")

        priority = self.classifier.classify_priority(email)
        label = PRIORITY_CATEGORIES.get(priority)
        if label is None:
            return self._result(email, INBOX, TriageAction.SKIPPED, f"unknown priority ({priority})")

        return self.apply_category(email, INBOX, label, f"priority {priority}", dry_run)

    def process_sent_email(
        self,
        email: Email,
        now: datetime,
        dry_run: bool = False,
    ) -> TriageResult:
        """
        Evaluate the follow-up need of one sent message.

        Args:
            email: Sent message.
            now: Reference time for age computation.
            dry_run: If True, decide but do not write labels.

        Returns:
            TriageResult: Result of processing.
        """
        if has_replied_category(email.categories):
            logger.info("Message already has a replied category. Skipping.")
            return self._result(email, SENT, TriageAction.SKIPPED, "already replied")

        if self.reply_detector.has_been_replied_to(email.id):
            return self.apply_category(email, SENT, REPLIED_CATEGORY, "reply found", dry_run)

        thresholds = self.settings.overdue_thresholds
        bucket = get_follow_up_category(email.categories)

        if bucket is not None:
            if bucket.is_terminal:
                return self._result(email, SENT, TriageAction.SKIPPED, f"follow-up final ({bucket.value})")

            age_days = self._age_days(email, now)
            if age_days is None:
                return self._result(email, SENT, TriageAction.SKIPPED, "no sent time")

            logger.info(f"Message already has a follow-up tag. Sent {age_days} days ago.")
            if age_days >= thresholds[bucket.value]:
                logger.info(f"Follow-up overdue! Sent {age_days} days ago and still no reply.")
                return self.apply_category(email, SENT, NUDGE_CATEGORY, f"{bucket.value} overdue ({age_days}d)", dry_run)

            return self._result(email, SENT, TriageAction.SKIPPED, f"waiting ({bucket.value}, {age_days}d)")

        urgency = self.classifier.classify_follow_up(email)
        if not urgency or urgency == FollowUpUrgency.NO_RESPONSE:
            logger.info("No follow-up needed.")
            return self.apply_category(email, SENT, NO_RESPONSE_CATEGORY, "no response required", dry_run)

        age_days = self._age_days(email, now)
        if age_days is not None and age_days >= thresholds[urgency.value.lower()]:
            logger.info(f"Follow-up overdue! Sent {age_days} days ago and still no reply.")
            return self.apply_category(
                email, SENT, NUDGE_CATEGORY, f"{urgency.value} overdue ({age_days}d)", dry_run
            )

        return self.apply_category(
            email, SENT, FOLLOW_UP_CATEGORIES[urgency], f"follow-up {urgency.value}", dry_run
        )

    def _age_days(self, email: Email, now: datetime) -> Optional[int]:
        sent_time = email.sent_time
        if sent_time is None:
            logger.warning("Message %s has no sentDateTime or receivedDateTime", email.id)
            return None
        return age_in_days(sent_time, now)

    def _safe_process(self, email: Email, folder: str, process) -> TriageResult:
        """Run a per-message step, turning unexpected errors into a failed result."""
        try:
            return process()
        except DeviceCodeAuthRequired:
            raise
        except Exception as e:
            logger.exception(f"Error processing {folder} email {email.id}")
            return self._result(
                email,
                folder,
                TriageAction.FAILED,
                "error",
                success=False,
                error=str(e),
            )

    def run(
        self,
        inbox_limit: Optional[int] = None,
        sent_lookback_days: Optional[int] = None,
        process_inbox: bool = True,
        process_sent: bool = True,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> list[TriageResult]:
        """Run one triage pass.

        Args:
            inbox_limit: Inbox messages to evaluate (settings default if None).
            sent_lookback_days: Sent window in days (settings default if None).
            process_inbox: Evaluate Inbox messages.
            process_sent: Evaluate Sent Items.
            dry_run: If True, decide labels but don't write them.
            now: Reference time (current UTC time if None).

        Returns:
            list[TriageResult]: Results for all evaluated emails.
        """
        now = now or datetime.now(timezone.utc)
        results: list[TriageResult] = []

        if process_inbox:
            limit = inbox_limit or self.settings.inbox_batch_size
            logger.info(f"Fetching inbox messages (limit={limit})...")
            try:
                inbox = self.email_client.get_inbox_messages(limit=limit)
            except requests.RequestException as e:
                logger.error(f"Failed to list inbox messages: {e}")
                inbox = []
            logger.info(f"Found {len(inbox)} inbox messages.")

            for i, email in enumerate(inbox, 1):
                logger.info(f"Processing inbox message {i}/{len(inbox)}: {(email.subject or '')[:50]}")
                results.append(
                    self._safe_process(email, INBOX, lambda e=email: self.process_inbox_email(e, dry_run))
                )

        if process_sent:
            days = sent_lookback_days or self.settings.sent_lookback_days
            since = now - timedelta(days=days)
            logger.info(f"Fetching sent messages from the last {days} days...")
            try:
                sent = self.email_client.get_sent_messages(since=since)
            except requests.RequestException as e:
                logger.error(f"Failed to list sent messages: {e}")
                sent = []
            logger.info(f"Found {len(sent)} sent messages.")

            for i, email in enumerate(sent, 1):
                logger.info(f"Evaluating follow-up need {i}/{len(sent)}: {(email.subject or '')[:50]}")
                results.append(
                    self._safe_process(email, SENT, lambda e=email: self.process_sent_email(e, now, dry_run))
                )

        tagged = sum(1 for r in results if r.action in (TriageAction.TAGGED, TriageAction.WOULD_TAG))
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Completed: {len(results)} evaluated, {tagged} tagged, {failed} failed")

        return results


def run_triage(
    inbox_limit: Optional[int] = None,
    sent_lookback_days: Optional[int] = None,
    dry_run: bool = False,
) -> list[TriageResult]:
    """Convenience wrapper to run a triage pass with settings from the environment.

    Args:
        inbox_limit: Inbox messages to evaluate.
        sent_lookback_days: Sent window in days.
        dry_run: If True, decide labels but don't write them.

    Returns:
        list[TriageResult]: Results for all evaluated emails.
    """
    orchestrator = TriageOrchestrator()
    return orchestrator.run(
        inbox_limit=inbox_limit,
        sent_lookback_days=sent_lookback_days,
        dry_run=dry_run,
    )
