"""Command-line entry point for inspecting and managing stored credentials.

Example usages::

    # Show every stored credential grouped by account.
    authkeeper accounts --verbose

    # Authorize (or reuse) a Gmail credential for the default account.
    authkeeper login gmail --scope https://www.googleapis.com/auth/gmail.readonly

    # Forget a credential so the next use re-authorizes.
    authkeeper logout gmail --account work

    # Import ~/.gmail_token.json and ~/.calendar_token.json from older releases.
    authkeeper migrate
"""

from __future__ import annotations

import argparse
import asyncio
import itertools
import sys
from pathlib import Path
from typing import Callable

from authkeeper.clients.sqlite_store import CredentialStore
from authkeeper.core.config import AppSettings, get_settings
from authkeeper.core.errors import CredentialAcquisitionError
from authkeeper.core.logging import configure_logging
from authkeeper.dependencies import build_credential_manager, build_credential_store
from authkeeper.models.credential import DEFAULT_ACCOUNT
from authkeeper.models.registration import validate_client_registration
from authkeeper.services.legacy_import import migrate_legacy_tokens
from authkeeper.utils.formatting import expiry_status, format_time_remaining, mask_token

EXIT_OK = 0
EXIT_CONFIGURATION_ERROR = 2
EXIT_AUTHORIZATION_ERROR = 3
EXIT_RUNTIME_ERROR = 5

_SETUP_GUIDE = """\
You need OAuth client credentials to use this tool:
  1. Open https://console.cloud.google.com/apis/credentials
  2. Create an OAuth client ID of type "Desktop app".
  3. Download the JSON file and save it as {path}
     It must contain an "installed" (or "web") section with client_id,
     client_secret and redirect_uris pointing at http://localhost.
"""


def _cmd_accounts(args: argparse.Namespace, settings: AppSettings) -> int:
    with build_credential_store(settings) as store:
        records = store.list(args.service)

    if not records:
        print("No configured accounts found.")
        print("Run 'authkeeper login <service> --scope <scope>' to authenticate.")
        return EXIT_OK

    print(f"Found {len(records)} token(s)\n")
    print("Configured Accounts:")
    print("-" * 80)
    by_account = itertools.groupby(sorted(records, key=lambda r: r.account), key=lambda r: r.account)
    for index, (account, account_records) in enumerate(by_account, start=1):
        print(f"\n{index}. {account or '(legacy empty account)'}")
        for record in account_records:
            expiry = record.expiry.astimezone().strftime("%Y-%m-%d %H:%M") if record.expiry else "unknown"
            print(f"   Service: {record.service}")
            print(f"   Status:  {expiry_status(record.expiry)}")
            print(f"   Expires: {expiry} ({format_time_remaining(record.expiry)})")
            if args.verbose:
                print(f"   Access Token: {mask_token(record.access_token)}")
                print(f"   Scopes: {len(record.scopes)} scope(s)")
                for scope in record.scopes:
                    print(f"     - {scope}")
    return EXIT_OK


def _cmd_login(args: argparse.Namespace, settings: AppSettings) -> int:
    credentials_path = args.credentials or settings.credentials_path
    ok, error = validate_client_registration(credentials_path)
    if not ok:
        print(f"Error: {error}", file=sys.stderr)
        print(_SETUP_GUIDE.format(path=credentials_path), file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    with build_credential_store(settings) as store:
        manager = build_credential_manager(store, settings)
        try:
            handle = asyncio.run(
                manager.get_credentials(
                    args.service,
                    args.scopes,
                    account=args.account,
                    client_registration_path=credentials_path,
                )
            )
        except CredentialAcquisitionError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            if exc.kind == "configuration":
                return EXIT_CONFIGURATION_ERROR
            if exc.kind in ("authorization_flow", "authorization_revoked"):
                return EXIT_AUTHORIZATION_ERROR
            return EXIT_RUNTIME_ERROR

    print(f"Authenticated {handle.service} (account: {handle.account}); {format_time_remaining(handle.expiry)}.")
    return EXIT_OK


def _cmd_logout(args: argparse.Namespace, settings: AppSettings) -> int:
    with build_credential_store(settings) as store:
        deleted = store.delete(args.service, args.account)
    if deleted:
        print(f"Removed {args.service} token (account: {args.account}).")
    else:
        print(f"No {args.service} token stored for account {args.account}.")
    return EXIT_OK


def _cmd_migrate(args: argparse.Namespace, settings: AppSettings) -> int:
    with build_credential_store(settings) as store:
        results = migrate_legacy_tokens(store, home=args.home)

    failed = False
    for result in results:
        if result.status == "migrated":
            print(f"Migrated {result.service} token; renamed {result.path.name} to {result.path.name}.old")
        elif result.status == "missing":
            print(f"- No {result.service} token to migrate")
        else:
            failed = True
            print(f"Failed to migrate {result.service} token: {result.error}", file=sys.stderr)
    print(f"\nTokens are stored in {settings.store_path}")
    return EXIT_RUNTIME_ERROR if failed else EXIT_OK


def _cmd_check(args: argparse.Namespace, settings: AppSettings) -> int:
    credentials_path = args.credentials or settings.credentials_path
    ok, error = validate_client_registration(credentials_path)
    if ok:
        print(f"Credentials file {credentials_path} OK.")
        return EXIT_OK
    print(f"Error: {error}", file=sys.stderr)
    print(_SETUP_GUIDE.format(path=credentials_path), file=sys.stderr)
    return EXIT_CONFIGURATION_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authkeeper",
        description="Manage OAuth credentials shared by every process on this machine.",
    )
    parser.add_argument("--store", type=Path, help="Override the SQLite credential store path.")
    parser.add_argument("--log-level", help="Logging level (default: from settings).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    accounts_parser = subparsers.add_parser("accounts", help="List stored credentials.")
    accounts_parser.add_argument("--service", help="Only show one service.")
    accounts_parser.add_argument("-v", "--verbose", action="store_true", help="Show scopes and token prefixes.")
    accounts_parser.set_defaults(handler=_cmd_accounts)

    login_parser = subparsers.add_parser("login", help="Reuse, refresh or obtain a credential.")
    login_parser.add_argument("service")
    login_parser.add_argument(
        "--scope",
        dest="scopes",
        action="append",
        required=True,
        help="Required scope; repeat for several.",
    )
    login_parser.add_argument("--account", default=DEFAULT_ACCOUNT)
    login_parser.add_argument("--credentials", type=Path, help="Client registration JSON file.")
    login_parser.set_defaults(handler=_cmd_login)

    logout_parser = subparsers.add_parser("logout", help="Delete a stored credential.")
    logout_parser.add_argument("service")
    logout_parser.add_argument("--account", default=DEFAULT_ACCOUNT)
    logout_parser.set_defaults(handler=_cmd_logout)

    migrate_parser = subparsers.add_parser("migrate", help="Import legacy per-service token files.")
    migrate_parser.add_argument("--home", type=Path, help="Directory holding the legacy files (default: ~).")
    migrate_parser.set_defaults(handler=_cmd_migrate)

    check_parser = subparsers.add_parser("check", help="Validate the client registration file.")
    check_parser.add_argument("--credentials", type=Path, help="Client registration JSON file.")
    check_parser.set_defaults(handler=_cmd_check)

    return parser


def main(argv: list[str] | None = None, settings: AppSettings | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = settings or get_settings()
    if args.store is not None:
        settings = settings.model_copy(update={"store_path": args.store.expanduser()})
    configure_logging(args.log_level or settings.log_level)

    handler: Callable[[argparse.Namespace, AppSettings], int] = args.handler
    try:
        return handler(args, settings)
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":  # pragma: no cover - manual execution
    sys.exit(main())
