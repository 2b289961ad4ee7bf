"""Microsoft identity platform authentication.

Objective:
    Acquire OAuth2 access tokens for the two APIs the triage workflow talks to:
    - Microsoft Graph (mailbox reads and category updates)
    - the completion backend (an API protected by the same Entra ID tenant)

    Each API is described by its own :class:`TokenAudience` and served by its
    own :class:`MsalTokenProvider`. Providers are passed explicitly to the
    clients that need them; nothing in this module holds global state.

Responsibilities:
    - Manage the MSAL ``PublicClientApplication`` lifecycle per audience.
    - Persist and reload the MSAL token cache to/from disk.
    - Perform silent acquisition for the selected cached account.
    - Fall back to device-code authentication when no cached token is usable.
    - Provide ready-to-use HTTP headers.

High-level call tree:
    - :func:`graph_audience` / :func:`completion_audience`
    - :class:`MsalTokenProvider`
        - :meth:`MsalTokenProvider.get_auth_headers`
            - :meth:`MsalTokenProvider.get_access_token`
                - :meth:`MsalTokenProvider._get_app`
                    - :meth:`MsalTokenProvider._load_token_cache`
                - :meth:`MsalTokenProvider._select_account`
                - :meth:`MsalTokenProvider._acquire_by_device_code`
                - :meth:`MsalTokenProvider._save_token_cache`

Operational notes:
    - Device-code flow requires user interaction (copy/paste code in browser).
      In ``console`` mode the prompt is printed to stdout; in ``web`` mode a
      :class:`DeviceCodeAuthRequired` is raised for the web API to render.
    - Each audience has its own cache file so signing out of one API does not
      invalidate the other.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import msal

from .config import Settings

logger = logging.getLogger(__name__)

GRAPH_SCOPES = (
    "https://graph.microsoft.com/Mail.ReadWrite",
    "https://graph.microsoft.com/Mail.Send",
    "https://graph.microsoft.com/User.Read",
)


class DeviceCodeAuthRequired(RuntimeError):
    """Raised when interactive device-code authentication is required.

    Args:
        flow: MSAL device flow payload returned by ``initiate_device_flow``.
    """

    def __init__(self, flow: dict[str, Any]) -> None:
        super().__init__(flow.get("message") or "Device code authentication required")
        self.flow = flow

    @property
    def user_code(self) -> str:
        """Return the device code shown to the user."""

        return str(self.flow.get("user_code", ""))

    @property
    def verification_uri(self) -> str:
        """Return the verification URL."""

        return str(
            self.flow.get("verification_uri")
            or self.flow.get("verification_uri_complete")
            or "https://www.microsoft.com/link"
        )

    @property
    def message(self) -> str:
        """Return the MSAL-generated instruction message."""

        return str(self.flow.get("message") or "")


@dataclass(frozen=True)
class TokenAudience:
    """Configuration record for one protected API.

    Args:
        name: Short name used in logs and in the cache file name.
        client_id: Public client application ID.
        authority: MSAL authority URL.
        scopes: Scopes requested for this API.
        cache_file: Where the serialized MSAL cache is stored.
    """

    name: str
    client_id: str
    authority: str
    scopes: tuple[str, ...]
    cache_file: Path


def _cache_dir(settings: Settings) -> Path:
    if settings.token_cache_dir:
        return Path(settings.token_cache_dir).expanduser()
    return Path.home()


def _authority(settings: Settings) -> str:
    return f"https://login.microsoftonline.com/{settings.azure_tenant_id}"


def graph_audience(settings: Settings) -> TokenAudience:
    """Token audience for Microsoft Graph mailbox access.

    Args:
        settings: Application settings.

    Returns:
        TokenAudience: Graph configuration record.
    """
    return TokenAudience(
        name="graph",
        client_id=settings.azure_client_id,
        authority=_authority(settings),
        scopes=GRAPH_SCOPES,
        cache_file=_cache_dir(settings) / ".outlook_triage_graph_token_cache.json",
    )


def completion_audience(settings: Settings) -> TokenAudience:
    """Token audience for the completion backend.

    Args:
        settings: Application settings.

    Returns:
        TokenAudience: Completion backend configuration record.

    Raises:
        ValueError: If ``COMPLETION_API_SCOPE`` is not configured.
    """
    scope = (settings.completion_api_scope or "").strip()
    if not scope:
        raise ValueError("COMPLETION_API_SCOPE must be set when LLM_BACKEND=proxy")
    return TokenAudience(
        name="completion",
        client_id=settings.azure_client_id,
        authority=_authority(settings),
        scopes=(scope,),
        cache_file=_cache_dir(settings) / ".outlook_triage_completion_token_cache.json",
    )


class MsalTokenProvider:
    """
    Acquires access tokens for one :class:`TokenAudience` using MSAL.

    Attributes:
        audience: API the tokens are issued for.
        settings: Application settings (account selection, prompt mode).
        _app: MSAL public client application instance.
    """

    def __init__(self, audience: TokenAudience, settings: Settings) -> None:
        """
        Initialize the provider.

        Args:
            audience: API configuration record.
            settings: Application settings.
        """
        self.audience = audience
        self.settings = settings
        self._app: Optional[msal.PublicClientApplication] = None

    def _load_token_cache(self) -> msal.SerializableTokenCache:
        """
        Load the token cache from file.

        If the file cannot be read or is invalid, an empty cache is used.

        Returns:
            msal.SerializableTokenCache: Token cache instance.
        """
        cache = msal.SerializableTokenCache()
        cache_file = self.audience.cache_file

        if cache_file.exists():
            try:
                cache.deserialize(cache_file.read_text())
                logger.debug("Loaded %s token cache from file", self.audience.name)
            except Exception as e:
                logger.warning(f"Failed to load {self.audience.name} token cache: {e}")
        else:
            logger.debug("No %s token cache file found; starting with empty cache", self.audience.name)
        return cache

    def _save_token_cache(self, cache: msal.SerializableTokenCache) -> None:
        """
        Save the token cache to file when MSAL reports a change.

        Args:
            cache: Token cache to save.
        """
        if cache.has_state_changed:
            try:
                self.audience.cache_file.write_text(cache.serialize())
                logger.debug("Saved %s token cache to file", self.audience.name)
            except Exception as e:
                logger.warning(f"Failed to save {self.audience.name} token cache: {e}")

    def _get_app(self) -> msal.PublicClientApplication:
        """
        Get or create the MSAL public client application.

        Returns:
            msal.PublicClientApplication: MSAL app instance.
        """
        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=self.audience.client_id,
                authority=self.audience.authority,
                token_cache=self._load_token_cache(),
            )
            logger.debug("Created MSAL public client application for %s", self.audience.name)
        return self._app

    def _select_account(self, accounts: list[dict]) -> Optional[dict]:
        """Select a cached MSAL account.

        When ``settings.outlook_account_username`` is set, the matching account
        is selected by username (case-insensitive). Otherwise the first cached
        account is used.

        Args:
            accounts: List of cached MSAL accounts.

        Returns:
            Optional[dict]: Selected account or None when no accounts exist.

        Raises:
            ValueError: If a preferred username is configured but not found.
        """
        if not accounts:
            return None

        preferred = (self.settings.outlook_account_username or "").strip()
        if not preferred:
            return accounts[0]

        preferred_lower = preferred.lower()
        for account in accounts:
            username = str(account.get("username", "")).strip().lower()
            if username and username == preferred_lower:
                return account

        available = [a.get("username") for a in accounts if a.get("username")]
        raise ValueError(
            "Configured OUTLOOK_ACCOUNT_USERNAME was not found in token cache. "
            f"preferred={preferred!r} available={available!r}"
        )

    def _acquire_by_device_code(self, app: msal.PublicClientApplication) -> dict[str, Any]:
        """Run the device-code flow and block until the user completes it.

        Returns:
            dict[str, Any]: Raw MSAL result.

        Raises:
            RuntimeError: If the flow cannot be initiated.
            DeviceCodeAuthRequired: In ``web`` prompt mode.
        """
        flow = app.initiate_device_flow(scopes=list(self.audience.scopes))

        if "user_code" not in flow:
            error = flow.get("error_description", "Unknown error")
            raise RuntimeError(f"Failed to initiate device flow: {error}")

        if self.settings.device_code_prompt_mode == "web":
            raise DeviceCodeAuthRequired(flow)

        print("\n" + "=" * 60)
        print(f"AUTHENTICATION REQUIRED ({self.audience.name})")
        print("=" * 60)
        print(f"\n{flow['message']}\n")
        print("=" * 60 + "\n")

        return app.acquire_token_by_device_flow(flow)

    def get_access_token(self) -> str:
        """
        Acquire an access token for this audience.

        Strategy:
            1. Silent acquisition for the selected cached account.
            2. Device-code flow when no cached token is usable.

        Returns:
            str: Valid access token.

        Raises:
            RuntimeError: If token acquisition fails.
        """
        app = self._get_app()

        accounts = app.get_accounts()
        if accounts:
            selected = self._select_account(accounts)
            result = app.acquire_token_silent(
                scopes=list(self.audience.scopes),
                account=selected,
            )
            if result and "access_token" in result:
                logger.debug("Acquired %s token from cache", self.audience.name)
                self._save_token_cache(app.token_cache)
                return result["access_token"]
            logger.debug(
                "Silent acquisition failed for account %s: %s",
                selected.get("username") if selected else None,
                result.get("error") if result else "no result",
            )
        else:
            logger.debug("No cached accounts found for %s", self.audience.name)

        result = self._acquire_by_device_code(app)

        if "access_token" in result:
            logger.debug("Successfully authenticated for %s", self.audience.name)
            self._save_token_cache(app.token_cache)
            return result["access_token"]

        error_description = result.get("error_description", "Unknown error")
        error = result.get("error", "unknown")
        logger.error(f"Failed to acquire {self.audience.name} token: {error} - {error_description}")
        raise RuntimeError(f"Failed to acquire access token: {error_description}")

    def get_auth_headers(self) -> dict[str, str]:
        """
        Get HTTP headers with a Bearer token for this audience.

        Returns:
            dict[str, str]: Headers dictionary.
        """
        token = self.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def logout(self) -> None:
        """
        Remove the persisted token cache and reset the MSAL application.
        """
        if self.audience.cache_file.exists():
            self.audience.cache_file.unlink()
            logger.debug("Cleared %s token cache", self.audience.name)
        self._app = None
