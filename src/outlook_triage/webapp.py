"""FastAPI JSON API for Outlook Email Triage.

Objective:
    Expose the triage pass and the reply-suggestion prompt to the Outlook
    add-in host over HTTP. Business logic stays in the orchestrator and the
    classifier; this module only parses requests and shapes responses.

High-level call tree:
    - :func:`create_app`:
        - defines routes:
            - ``GET /health`` -> :func:`health`
            - ``POST /api/run`` -> :func:`run_api`
            - ``POST /api/suggest-reply`` -> :func:`suggest_reply_api`
    - :func:`get_orchestrator`:
        - returns a new :class:`src.outlook_triage.orchestrator.TriageOrchestrator`.

Operational notes:
    - Served with ``python -m uvicorn src.outlook_triage.webapp:app``.
    - Device-code authentication cannot be completed inside a request, so
      settings are switched to ``web`` prompt mode and a structured 401 is
      returned with the code to enter.
    - For tests, :func:`get_orchestrator` is overridden via
      ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import DeviceCodeAuthRequired
from .config import get_settings
from .orchestrator import TriageOrchestrator


class RunRequest(BaseModel):
    """Options for ``POST /api/run``."""

    inbox_limit: Optional[int] = Field(default=None, ge=1)
    sent_lookback_days: Optional[int] = Field(default=None, ge=1)
    process_inbox: bool = True
    process_sent: bool = True
    dry_run: bool = False


class SuggestReplyRequest(BaseModel):
    """Body for ``POST /api/suggest-reply``."""

    subject: str = ""
    body: str
    content_type: str = "text"


def get_orchestrator() -> TriageOrchestrator:
    """Create a :class:`~src.outlook_triage.orchestrator.TriageOrchestrator`.

    Production code uses the real orchestrator; tests can override this
    dependency with a stub.

    Returns:
        TriageOrchestrator: A new orchestrator instance.
    """

    settings = get_settings()
    settings.device_code_prompt_mode = "web"
    return TriageOrchestrator(settings=settings)


def _auth_required_response(e: DeviceCodeAuthRequired) -> JSONResponse:
    return JSONResponse(
        {
            "error": "authentication_required",
            "verification_uri": e.verification_uri,
            "user_code": e.user_code,
            "message": e.message,
        },
        status_code=401,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: FastAPI app.
    """

    app = FastAPI(title="Outlook Email Triage")

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness check; performs no external calls."""

        return {"status": "ok"}

    @app.post("/api/run")
    def run_api(
        payload: RunRequest,
        orchestrator: TriageOrchestrator = Depends(get_orchestrator),
    ) -> Any:
        """Run a triage pass and return per-message results.

        Args:
            payload: Run options.
            orchestrator: Orchestrator dependency.

        Returns:
            Any: ``{"results": [...], "summary": {...}}`` or a 401 payload.
        """

        try:
            results = orchestrator.run(
                inbox_limit=payload.inbox_limit,
                sent_lookback_days=payload.sent_lookback_days,
                process_inbox=payload.process_inbox,
                process_sent=payload.process_sent,
                dry_run=payload.dry_run,
            )
        except DeviceCodeAuthRequired as e:
            return _auth_required_response(e)

        return {
            "results": [r.model_dump(mode="json") for r in results],
            "summary": {
                "total": len(results),
                "tagged": sum(1 for r in results if r.action in ("tagged", "would_tag")),
                "skipped": sum(1 for r in results if r.action == "skipped"),
                "failed": sum(1 for r in results if not r.success),
            },
        }

    @app.post("/api/suggest-reply")
    def suggest_reply_api(
        payload: SuggestReplyRequest,
        orchestrator: TriageOrchestrator = Depends(get_orchestrator),
    ) -> Any:
        """Draft a reply to the most recent message of an email chain.

        Args:
            payload: Subject and body of the chain.
            orchestrator: Orchestrator dependency (provides the classifier).

        Returns:
            Any: ``{"suggestion": str | None}`` or a 401 payload.
        """

        try:
            suggestion = orchestrator.classifier.suggest_reply(
                payload.subject,
                payload.body,
                content_type=payload.content_type,
            )
        except DeviceCodeAuthRequired as e:
            return _auth_required_response(e)

        return {"suggestion": suggestion}

    return app


app = create_app()
