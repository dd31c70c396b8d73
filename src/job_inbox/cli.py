"""Command-line entry point for Job Inbox."""

from __future__ import annotations

import argparse
from datetime import timedelta
from pathlib import Path

from job_inbox.core import AppSettings, configure_logging, load_app_settings
from job_inbox.core.datetime_utils import serialize_datetime, utcnow
from job_inbox.core.interfaces import StorageError
from job_inbox.core.models import APPLICATION_STATUSES, OAuthCredential
from job_inbox.ingestion import AccountNotFound, ingestion_session
from job_inbox.storage import SqliteJobRepository

COMMANDS = ("info", "ingest", "add-account", "jobs", "resync", "disconnect")


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Job Inbox application tracker")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=COMMANDS,
        help="Operation to execute.",
    )
    parser.add_argument("--user", dest="user_id", help="Owner of the accounts/jobs.")
    parser.add_argument("--account", dest="account_id", help="Account identifier.")
    parser.add_argument("--email", dest="email_address", help="Mailbox address.")
    parser.add_argument(
        "--refresh-token",
        dest="refresh_token",
        help="Offline refresh token obtained from the consent flow.",
    )
    parser.add_argument(
        "--access-token",
        dest="access_token",
        default=None,
        help="Optional current access token.",
    )
    parser.add_argument(
        "--expires-in",
        dest="expires_in",
        type=int,
        default=None,
        help="Seconds until the supplied access token expires.",
    )
    parser.add_argument(
        "--status",
        choices=APPLICATION_STATUSES,
        default=None,
        help="Status filter for the jobs command.",
    )
    parser.add_argument(
        "--query", "-q", dest="query", default=None, help="Company/role search text."
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum jobs to list (default: 100).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit status."""
    command = args.command
    if command == "info":
        print("Job Inbox is ready. Connect a Gmail account to get started.")
        print(f"Database path: {settings.storage.db_path}")
        print(f"OAuth client configured: {bool(settings.gmail.client_id)}")
        print(f"Messages per run: {settings.sync.max_messages_per_run}")
        return 0

    if not args.user_id:
        print(f"The {command} command requires --user.")
        return 2
    if command in {"resync", "disconnect"} and not args.account_id:
        print(f"The {command} command requires --account.")
        return 2

    try:
        if command == "ingest":
            return _run_ingest(settings, args.user_id, None)
        if command == "resync":
            return _run_ingest(settings, args.user_id, args.account_id)
        if command == "add-account":
            return _add_account(settings, args)
        if command == "jobs":
            return _list_jobs(settings, args)
        return _disconnect(settings, args.user_id, args.account_id)
    except StorageError as exc:
        print(f"Storage failure: {exc}")
        return 1


def main() -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    return execute(args, settings)


def _run_ingest(settings: AppSettings, user_id: str, account_id: str | None) -> int:
    with (
        SqliteJobRepository(settings.storage) as repository,
        ingestion_session(settings, repository) as orchestrator,
    ):
        if account_id is None:
            report = orchestrator.run_for_user(user_id)
        else:
            account = repository.get_account(account_id)
            if account is None or account.user_id != user_id:
                print(f"Account {account_id} not found.")
                return 1
            repository.update_account_metadata(
                account_id, {"resyncRequestedAt": serialize_datetime(utcnow())}
            )
            try:
                report = orchestrator.run_for_account(account_id, user_id=user_id)
            except AccountNotFound:
                print(f"Account {account_id} not found.")
                return 1

    print(
        f"Processed {report.accounts_processed} account(s): "
        f"{report.messages_fetched} listed, {report.messages_parsed} parsed, "
        f"{report.jobs_created} job(s) created, {report.jobs_updated} updated, "
        f"{report.events_created} event(s)."
    )
    if report.accounts_failed or report.messages_failed:
        print(
            f"{report.accounts_failed} account(s) and "
            f"{report.messages_failed} message(s) failed; see logs for details."
        )
    return 0


def _add_account(settings: AppSettings, args: argparse.Namespace) -> int:
    if not args.refresh_token and not args.access_token:
        print("Provide --refresh-token (preferred) or --access-token.")
        return 2
    expires_at = None
    if args.access_token and args.expires_in:
        expires_at = utcnow() + timedelta(seconds=args.expires_in)
    with SqliteJobRepository(settings.storage) as repository:
        account = repository.create_account(
            args.user_id,
            email_address=args.email_address,
            credential=OAuthCredential(
                access_token=args.access_token,
                refresh_token=args.refresh_token,
                expires_at=expires_at,
            ),
            account_id=args.account_id,
        )
    print(f"Connected account {account.id} for user {account.user_id}.")
    return 0


def _list_jobs(settings: AppSettings, args: argparse.Namespace) -> int:
    with SqliteJobRepository(settings.storage) as repository:
        jobs = repository.list_jobs(
            args.user_id, status=args.status, query=args.query, limit=args.limit
        )
    if not jobs:
        print("No job applications found.")
        return 0
    for job in jobs:
        updated = serialize_datetime(job.last_update_at) or "-"
        print(
            f"[{job.id}] {job.company} | {job.role} | {job.status} "
            f"| {job.source or '-'} | {updated} | {job.confidence}"
        )
    return 0


def _disconnect(settings: AppSettings, user_id: str, account_id: str) -> int:
    with SqliteJobRepository(settings.storage) as repository:
        account = repository.get_account(account_id)
        if account is None or account.user_id != user_id:
            print(f"Account {account_id} not found.")
            return 1
        repository.delete_account(account_id)
    print(f"Disconnected account {account_id}.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
