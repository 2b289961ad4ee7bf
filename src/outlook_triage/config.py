"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Graph auth, completion backend auth, LLM backend selection,
    triage thresholds and label-write behavior).

Responsibilities:
    - Define the triage label vocabulary for each axis (priority, follow-up,
      replied marker).
    - Define the follow-up urgency values returned by the classifier
      (:class:`FollowUpUrgency`).
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).
    - Expose derived settings such as :attr:`Settings.overdue_thresholds`.

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :attr:`Settings.overdue_thresholds`

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - Most modules accept a ``Settings`` object explicitly to enable testing;
      the orchestrator falls back to :func:`get_settings` when not provided.
"""

from enum import Enum
from typing import Literal, Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Cross-cutting marker applied once a later message exists in the conversation
REPLIED_CATEGORY = "Replied"

# Priority axis, keyed by the digit the model answers with
PRIORITY_CATEGORIES = {
    "1": "1 AI Priority",
    "2": "2 AI Priority",
    "3": "3 AI Priority",
    "4": "4 AI Priority",
    "5": "5 AI Priority",
}

# Sentinel returned by the priority classifier on unusable output
UNKNOWN_PRIORITY = "Unknown"

NUDGE_CATEGORY = "0 - Nudge"
NO_RESPONSE_CATEGORY = "4 - AI FollowUp No Response Required"


class FollowUpUrgency(str, Enum):
    """Follow-up urgency produced by the classifier for sent mail.

    ``NO_RESPONSE`` is the sentinel the fallback text scan emits when the
    model output does not say a response is required.
    """

    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"
    NO_RESPONSE = "No Response Required"


FOLLOW_UP_CATEGORIES = {
    FollowUpUrgency.HIGH: "1 - AI FollowUp High",
    FollowUpUrgency.NORMAL: "2 - AI FollowUp Normal",
    FollowUpUrgency.LOW: "3 - AI FollowUp Low",
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is intentionally flat and human-editable via `.env`.
    Most fields map directly to environment variables.

    Attributes:
        azure_client_id: Entra ID (Azure AD) public client application ID.
        azure_tenant_id: Tenant used to build the MSAL authority.
        completion_api_scope: Scope requested for the completion backend token.
        completion_endpoint_url: NDJSON completion endpoint.
        llm_backend: Which completion backend to use.
        category_write_mode: How a new label is written to a message.
        inbox_batch_size: Number of inbox messages to triage per run.
        sent_lookback_days: Age window for sent messages.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Entra ID Configuration
    azure_client_id: str = Field(..., description="Entra ID application client ID")
    azure_tenant_id: str = Field(
        default="common", description="Tenant for the MSAL authority (common, organizations, consumers or a tenant ID)"
    )

    outlook_account_username: Optional[str] = Field(
        default=None,
        description=(
            "Preferred Outlook account username to select from the MSAL token cache. "
            "If omitted, the first cached account is used."
        ),
    )

    device_code_prompt_mode: str = Field(
        default="console",
        description=(
            "How to surface device-code authentication instructions. "
            "Use 'console' to print to stdout. Use 'web' to raise a structured exception so the web API can return it."
        ),
    )

    token_cache_dir: Optional[str] = Field(
        default=None,
        description="Directory holding the MSAL token cache files (defaults to the user's home directory)",
    )

    # Completion backend
    llm_backend: Literal["proxy", "groq"] = Field(
        default="proxy",
        description=(
            "'proxy' posts the prompt to COMPLETION_ENDPOINT_URL and reads NDJSON. "
            "'groq' streams a Groq chat completion."
        ),
    )
    completion_endpoint_url: str = Field(
        default="", description="Completion endpoint accepting {prompt} and returning NDJSON"
    )
    completion_api_scope: str = Field(
        default="", description="OAuth scope for the completion endpoint (e.g. api://<app-id>/access_as_a_user)"
    )
    groq_api_key: Optional[str] = Field(default=None, description="Groq API key")
    groq_model: str = Field(
        default="openai/gpt-oss-120b", description="Groq model name"
    )

    # Triage Settings
    category_write_mode: Literal["replace", "merge"] = Field(
        default="replace",
        description=(
            "'replace' overwrites the category list with the single new label. "
            "'merge' swaps only triage labels and keeps the user's other categories."
        ),
    )
    follow_up_high_days: int = Field(default=2, ge=0, description="Days before a High follow-up is nudged")
    follow_up_normal_days: int = Field(default=5, ge=0, description="Days before a Normal follow-up is nudged")
    follow_up_low_days: int = Field(default=10, ge=0, description="Days before a Low follow-up is nudged")
    prompt_body_max_chars: int = Field(
        default=20000, ge=100, description="Maximum body characters embedded in a prompt"
    )

    # Processing Settings
    inbox_batch_size: int = Field(
        default=50, ge=1, le=1000, description="Inbox messages per run"
    )
    sent_lookback_days: int = Field(
        default=30, ge=1, description="Only sent messages newer than this many days are evaluated"
    )
    conversation_page_size: int = Field(
        default=50, ge=1, le=1000, description="Page size when searching a conversation for replies"
    )
    http_timeout_seconds: float = Field(default=30, gt=0, description="HTTP request timeout")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def overdue_thresholds(self) -> dict[str, int]:
        """
        Days after which a pending follow-up bucket escalates to a nudge.

        Keys are the bucket names returned by
        :func:`src.outlook_triage.categories.get_follow_up_category`.

        Returns:
            dict[str, int]: Threshold in whole days per bucket.
        """
        return {
            "high": self.follow_up_high_days,
            "normal": self.follow_up_normal_days,
            "low": self.follow_up_low_days,
        }


def get_settings() -> Settings:
    """
    Load and return application settings.

    This helper is a convenience for production code. For tests, you typically
    construct a :class:`Settings` instance directly or pass a mocked settings
    object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If required environment variables are missing.
    """
    return Settings()
