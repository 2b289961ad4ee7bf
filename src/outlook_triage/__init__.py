"""Outlook Email Triage package.

Objective:
    Provide a Python implementation of an Outlook triage workflow:
    - Fetch Inbox and Sent Items messages using Microsoft Graph.
    - Skip messages whose categories already record a final decision.
    - Detect replies by scanning the conversation for later messages.
    - Score inbound mail 1-5 and classify outbound follow-up urgency with an
      LLM, escalating overdue follow-ups to a nudge.
    - Write the decision back as an Outlook category.

Key modules:
    - :mod:`src.outlook_triage.auth`:
        MSAL token providers for Graph and the completion backend.
    - :mod:`src.outlook_triage.email_client`:
        Graph API wrapper for messages, paging and categories.
    - :mod:`src.outlook_triage.categories`:
        Pure readers over existing categories and the label-write policy.
    - :mod:`src.outlook_triage.reply_detector`:
        Conversation scan for later messages.
    - :mod:`src.outlook_triage.completion`:
        Streamed completion backends (NDJSON proxy, Groq).
    - :mod:`src.outlook_triage.classifier`:
        Prompt construction, response parsing and fallbacks.
    - :mod:`src.outlook_triage.orchestrator`:
        Per-message decision function and run loop.
    - :mod:`src.outlook_triage.cli` / :mod:`src.outlook_triage.webapp`:
        User-facing entrypoints.
"""

__version__ = "0.1.0"
