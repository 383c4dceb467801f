#!/usr/bin/env python3
"""
Archive auth -- operator commands for the BukSU thesis archive identity store.

Usage:
  python main.py create-user --name "Dean Cruz" --email dean@buksu.edu.ph --role "admin/dean"
  python main.py invite --name "Ana Reyes" --email ana@buksu.edu.ph --role "faculty adviser"
  python main.py health

create-user prompts for the password so it never lands in shell history.
The first admin/dean account has to be created this way; after that, deans
invite staff through the API.

Environment variables (see core/config.py):
  DATABASE_URL  SQLAlchemy URL of the user store (default: auth/archive_auth.db)
  SECRET_KEY    Required unless DEBUG=true
  FRONTEND_URL  Base URL used in invitation links
"""

import argparse
import getpass
import sys

from auth.accounts import create_account
from auth.errors import AuthError
from auth.invitations import create_invitation
from auth.mailer import LoggingMailer
from auth.store import UserStore
from core.config import get_settings


def _create_user(store: UserStore, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("  Password: ")
    user_id = create_account(store, args.name, args.email, password, args.role, args.student_id)
    print(f"  Created {args.email} ({args.role}) id={user_id}")
    return 0


def _invite(store: UserStore, args: argparse.Namespace) -> int:
    pending, token = create_invitation(store, LoggingMailer(), args.name, args.email, args.role)
    settings = get_settings()
    print(f"  Invitation created for {pending.email} ({pending.role.value})")
    print(f"  Link: {settings.frontend_url.rstrip('/')}/register?token={token}")
    print(f"  Expires in {settings.invitation_ttl_days} days.")
    return 0


def _health(store: UserStore, args: argparse.Namespace) -> int:
    ok = store.ping()
    print(f"  database: {'ok' if ok else 'error'}")
    return 0 if ok else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="archive-auth",
        description="Operator commands for the archive identity store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --name "Dean Cruz" --email dean@buksu.edu.ph --role dean
  python main.py invite --name "Ana Reyes" --email ana@buksu.edu.ph --role "program head"
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an active password account")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--role", required=True, help='e.g. "admin/dean", "faculty adviser"')
    create.add_argument("--student-id", default=None, help="Required for graduate students")
    create.add_argument("--password", default=None, help="Prompted for when omitted")
    create.set_defaults(handler=_create_user)

    invite = sub.add_parser("invite", help="Create a pending staff account and print its activation link")
    invite.add_argument("--name", required=True)
    invite.add_argument("--email", required=True)
    invite.add_argument("--role", required=True)
    invite.set_defaults(handler=_invite)

    health = sub.add_parser("health", help="Check that the user store is reachable")
    health.set_defaults(handler=_health)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    store = UserStore(get_settings().database_url)
    try:
        code = args.handler(store, args)
    except AuthError as e:
        print(f"  [!] {e.message}")
        code = 2
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
