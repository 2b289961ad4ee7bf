"""Command-line interface (CLI) entrypoint.

Objective:
    Provide a human-friendly CLI wrapper around
    :class:`src.outlook_triage.orchestrator.TriageOrchestrator`.

Responsibilities:
    - Parse arguments (limits, folder switches, write mode, verbosity, dry-run).
    - Configure logging (including suppressing noisy HTTP request logs).
    - Invoke the orchestrator and print a readable summary of results.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_HttpxRequestInfoToDebugFilter`
        - instantiate :class:`TriageOrchestrator`
        - :meth:`TriageOrchestrator.run`
        - :func:`print_results`

Operational notes:
    - This module supports being run both as a package module
      (``python -m src.outlook_triage.cli``) and as a script
      (``python src/outlook_triage/cli.py``). The import fallback handles
      the script case.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

try:
    from .orchestrator import TriageOrchestrator
    from .config import get_settings
except ImportError:  # pragma: no cover
    src_root = Path(__file__).resolve().parents[1]
    if str(src_root) not in sys.path:
        sys.path.insert(0, str(src_root))

    from outlook_triage.orchestrator import TriageOrchestrator
    from outlook_triage.config import get_settings


class _HttpxRequestInfoToDebugFilter(logging.Filter):
    """Filter to suppress noisy httpx "HTTP Request:" INFO logs.

    The Groq SDK logs each HTTP request at INFO level through httpx. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        msg = record.getMessage()
        if record.name.startswith("httpx") and msg.startswith("HTTP Request:"):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    downgrade_filter = _HttpxRequestInfoToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)


def print_results(results: list, verbose: bool = False) -> None:
    """
    Print triage results to console.

    Output format:
        - Group results by folder, then by applied label.
        - Skipped messages are listed only with ``verbose=True``.

    Args:
        results: List of TriageResult objects.
        verbose: If True, print skipped messages and errors.
    """
    if not results:
        print("\nNo emails evaluated.")
        return

    print(f"\n{'='*60}")
    print(f"TRIAGE RESULTS: {len(results)} emails")
    print(f"{'='*60}")

    for folder in ("inbox", "sent"):
        items = [r for r in results if r.folder == folder]
        if not items:
            continue

        print(f"\n[{folder.upper()}] ({len(items)} emails)")
        print("-" * 40)

        by_label: dict[str, list] = {}
        for item in items:
            if item.category is None and not verbose and item.success:
                continue
            key = item.category or f"({item.reason})"
            by_label.setdefault(key, []).append(item)

        for label, group in sorted(by_label.items()):
            print(f"  {label}")
            for item in group:
                status = "OK " if item.success else "ERR"
                subject = item.subject[:50] + "..." if len(item.subject) > 50 else item.subject
                marker = " (dry run)" if item.action == "would_tag" else ""
                print(f"    {status} {subject}{marker}")
                if verbose and item.error:
                    print(f"        Error: {item.error}")

    tagged = sum(1 for r in results if r.action in ("tagged", "would_tag"))
    skipped = sum(1 for r in results if r.action == "skipped")
    failed = sum(1 for r in results if not r.success)

    print(f"\n{'='*60}")
    print(f"SUMMARY: {tagged} tagged, {skipped} unchanged, {failed} failed")
    print(f"{'='*60}\n")


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    Pass an explicit ``args`` list to avoid relying on ``sys.argv``.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parser = argparse.ArgumentParser(
        description="Outlook Email Triage - AI priority and follow-up labels",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                         Triage inbox and sent items
  %(prog)s --skip-sent             Only score inbox messages
  %(prog)s --dry-run --verbose     Show decisions without writing labels
  %(prog)s --category-mode merge   Keep the user's own categories
        """,
    )

    parser.add_argument(
        "--inbox-limit",
        "-l",
        type=int,
        default=None,
        help="Maximum number of inbox emails to evaluate",
    )

    parser.add_argument(
        "--sent-days",
        type=int,
        default=None,
        help="Evaluate sent emails from the last N days",
    )

    parser.add_argument(
        "--skip-inbox",
        action="store_true",
        help="Do not evaluate inbox emails",
    )

    parser.add_argument(
        "--skip-sent",
        action="store_true",
        help="Do not evaluate sent emails",
    )

    parser.add_argument(
        "--category-mode",
        choices=["replace", "merge"],
        default=None,
        help="Overrides CATEGORY_WRITE_MODE for this run",
    )

    parser.add_argument(
        "--account-username",
        type=str,
        default=None,
        help=(
            "Outlook account username to select from the MSAL token cache. "
            "Overrides OUTLOOK_ACCOUNT_USERNAME when provided."
        ),
    )

    parser.add_argument(
        "--dry-run",
        "-d",
        action="store_true",
        help="Decide labels without writing them",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL)",
    )

    parsed_args = parser.parse_args(args)

    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()

        log_level = "DEBUG" if parsed_args.verbose else (parsed_args.log_level or settings.log_level)
        setup_logging(log_level)

        print("\nStarting Outlook Email Triage...\n")

        if parsed_args.dry_run:
            print("DRY RUN MODE - labels will not be written\n")

        if parsed_args.account_username:
            settings.outlook_account_username = parsed_args.account_username
        if parsed_args.category_mode:
            settings.category_write_mode = parsed_args.category_mode

        orchestrator = TriageOrchestrator(settings=settings)
        results = orchestrator.run(
            inbox_limit=parsed_args.inbox_limit,
            sent_lookback_days=parsed_args.sent_days,
            process_inbox=not parsed_args.skip_inbox,
            process_sent=not parsed_args.skip_sent,
            dry_run=parsed_args.dry_run,
        )

        print_results(results, verbose=parsed_args.verbose)

        failed = sum(1 for r in results if not r.success)
        return 1 if failed > 0 else 0

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\nError: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
