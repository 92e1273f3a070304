#!/usr/bin/env python3
"""
RepoGate admin CLI -- manage users, teams and repository roles directly
against the configured user store (USERS_DB_URL).

Usage:
  python main.py users
  python main.py teams
  python main.py add-user alice --admin
  python main.py add-user bob --password s3cret --repo repo/x.git
  python main.py rename-user alice alicia
  python main.py delete-user bob
  python main.py add-team core --member alicia --repo repo/x.git
  python main.py delete-team core
  python main.py set-role repo/x.git --users alicia bob --teams core
  python main.py rename-role repo/x.git repo/y.git
  python main.py delete-role repo/y.git

Refused operations (unknown names, collisions) exit with status 1;
configuration errors exit with status 2.

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. Signs cookies and tokens.
  USERS_DB_URL   SQLAlchemy URL of the user store.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from auth.exceptions import ConfigurationError
from auth.models import Team, User
from auth.provider import StoreUserService
from auth.service import UserService
from auth.tokens import MAX_PASSWORD_BYTES, hash_password, password_too_long
from core.config import get_settings


def _print_users(service: UserService, args: argparse.Namespace) -> bool:
    users = service.list_users()
    if not users:
        print("  (no users)")
    for user in users:
        flags = " [admin]" if user.can_admin else ""
        print(f"  {user.username}{flags}")
        if user.teams:
            print(f"      teams:        {', '.join(sorted(user.teams, key=str.lower))}")
        if user.repositories:
            print(f"      repositories: {', '.join(sorted(user.repositories))}")
    return True


def _print_teams(service: UserService, args: argparse.Namespace) -> bool:
    teams = service.list_teams()
    if not teams:
        print("  (no teams)")
    for team in teams:
        print(f"  {team.name}")
        print(f"      members:      {', '.join(sorted(team.users, key=str.lower)) or '-'}")
        print(f"      repositories: {', '.join(sorted(team.repositories)) or '-'}")
    return True


def _add_user(service: UserService, args: argparse.Namespace) -> bool:
    if service.get_user(args.username) is not None:
        print(f"  [!] User '{args.username}' already exists.")
        return False
    password = args.password or getpass.getpass(f"Password for {args.username}: ")
    if password_too_long(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return False
    user = User(
        username=args.username,
        password=hash_password(password) if password else None,
        can_admin=args.admin,
        repositories=set(args.repo),
    )
    return service.update_user(user)


def _rename_user(service: UserService, args: argparse.Namespace) -> bool:
    user = service.get_user(args.old)
    if user is None:
        print(f"  [!] User '{args.old}' not found.")
        return False
    user.username = args.new
    return service.update_user(user, args.old)


def _delete_user(service: UserService, args: argparse.Namespace) -> bool:
    return service.delete_user(args.username)


def _add_team(service: UserService, args: argparse.Namespace) -> bool:
    if service.get_team(args.name) is not None:
        print(f"  [!] Team '{args.name}' already exists.")
        return False
    return service.update_team(Team(name=args.name, users=set(args.member), repositories=set(args.repo)))


def _delete_team(service: UserService, args: argparse.Namespace) -> bool:
    return service.delete_team(args.name)


def _set_role(service: UserService, args: argparse.Namespace) -> bool:
    if args.users is None and args.teams is None:
        print("  [!] Pass --users and/or --teams.")
        return False
    ok = True
    if args.users is not None:
        ok = service.set_usernames_for_role(args.role, args.users) and ok
    if args.teams is not None:
        ok = service.set_teamnames_for_role(args.role, args.teams) and ok
    return ok


def _rename_role(service: UserService, args: argparse.Namespace) -> bool:
    return service.rename_role(args.old, args.new)


def _delete_role(service: UserService, args: argparse.Namespace) -> bool:
    return service.delete_role(args.role)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repogate",
        description="Manage RepoGate users, teams and repository roles.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("users", help="List users").set_defaults(handler=_print_users)
    sub.add_parser("teams", help="List teams").set_defaults(handler=_print_teams)

    p = sub.add_parser("add-user", help="Create a user")
    p.add_argument("username")
    p.add_argument("--password", help="Prompted for when omitted")
    p.add_argument("--admin", action="store_true")
    p.add_argument("--repo", action="append", default=[], metavar="ROLE")
    p.set_defaults(handler=_add_user)

    p = sub.add_parser("rename-user", help="Rename a user, keeping memberships")
    p.add_argument("old")
    p.add_argument("new")
    p.set_defaults(handler=_rename_user)

    p = sub.add_parser("delete-user", help="Delete a user and purge it from teams")
    p.add_argument("username")
    p.set_defaults(handler=_delete_user)

    p = sub.add_parser("add-team", help="Create a team")
    p.add_argument("name")
    p.add_argument("--member", action="append", default=[], metavar="USERNAME")
    p.add_argument("--repo", action="append", default=[], metavar="ROLE")
    p.set_defaults(handler=_add_team)

    p = sub.add_parser("delete-team", help="Delete a team")
    p.add_argument("name")
    p.set_defaults(handler=_delete_team)

    p = sub.add_parser("set-role", help="Replace the users and/or teams holding a role")
    p.add_argument("role")
    p.add_argument("--users", nargs="*", metavar="USERNAME")
    p.add_argument("--teams", nargs="*", metavar="TEAMNAME")
    p.set_defaults(handler=_set_role)

    p = sub.add_parser("rename-role", help="Relabel a role on every user and team")
    p.add_argument("old")
    p.add_argument("new")
    p.set_defaults(handler=_rename_role)

    p = sub.add_parser("delete-role", help="Remove a role from every user and team")
    p.add_argument("role")
    p.set_defaults(handler=_delete_role)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="  [%(levelname)s] %(message)s")

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"  [!] Invalid configuration: {exc}", file=sys.stderr)
        return 2

    service = StoreUserService()
    try:
        service.setup(settings)
    except ConfigurationError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 2

    try:
        ok = args.handler(service, args)
    finally:
        service.close()

    if not ok:
        print(f"  [!] '{args.command}' failed. See warnings above.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
