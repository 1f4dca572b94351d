#!/usr/bin/env python3
"""
proxyauth -- HTTP Basic-Auth and IP whitelisting for the global reverse proxy.

Usage:
  proxyauth create example.com --user=admin --pass=s3cret
  proxyauth create global --user=admin
  proxyauth update example.com --user=admin --pass=n3w --admin-tools
  proxyauth delete example.com --user=admin
  proxyauth delete example.com
  proxyauth list global --format=json
  proxyauth whitelist create example.com --ip=10.0.0.1,10.0.0.2
  proxyauth whitelist append global --ip=172.18.0.0/16
  proxyauth whitelist remove example.com --ip=all
  proxyauth whitelist list example.com
  proxyauth repair global
  proxyauth site-cleanup example.com
  proxyauth init-admin-tools

Scopes: `global`, `admin-tools`, or a site name.

Environment variables (all optional, see core/config.py):
  PROXYAUTH_CONF_ROOT       nginx-proxy service root (htpasswd/, vhost.d/)
  PROXYAUTH_DB_URL          SQLAlchemy URL of the store
  PROXYAUTH_HASHER          bcrypt (default) or docker
  PROXYAUTH_RELOAD_COMMAND  reload command; empty disables the reload

Exit codes: 0 success, 1 rejected (nothing changed), 3 saved but proxy files
or reload failed (run `proxyauth repair <scope>`).
"""

import argparse
import csv
import io
import json
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from access.service import AccessControl
from core.config import get_settings
from core.errors import AccessControlError, PartiallyApplied
from core.ip import split_ip_list
from core.models import Credential

logger = logging.getLogger("proxyauth.cli")

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_PARTIAL = 3

_WHITELIST_COMMANDS = ("create", "append", "list", "remove")


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _render_users(credentials: list[Credential], fmt: str) -> str:
    """Render usernames only. Secrets are never listed."""
    rows = [{"username": c.username, "scope": c.scope_key} for c in credentials]
    if fmt == "json":
        return json.dumps(rows, indent=2)
    if fmt == "csv":
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=["username", "scope"], lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)
        return buf.getvalue().rstrip("\n")
    if fmt == "count":
        return str(len(rows))
    if fmt == "text":
        return "\n".join(r["username"] for r in rows)
    width = max([len("username")] + [len(r["username"]) for r in rows])
    lines = [f"{'username':<{width}}  scope", f"{'-' * width}  -----"]
    lines.extend(f"{r['username']:<{width}}  {r['scope']}" for r in rows)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_create(access: AccessControl, args: argparse.Namespace) -> int:
    scope = access.resolve_scope(args.scope)
    credential = access.create_credential(scope, args.user, args.password)
    print(f"Auth successfully updated for `{credential.scope_key}` scope. New values added/updated:")
    print(f"User: {credential.username}")
    print(f"Pass: {credential.secret}")
    return EXIT_OK


def _cmd_update(access: AccessControl, args: argparse.Namespace) -> int:
    scope = access.resolve_scope(args.scope)
    updated = access.update_credential(scope, args.user, args.password, include_admin_tools=args.admin_tools)
    scopes = ", ".join(c.scope_key for c in updated)
    print(f"Auth successfully updated for `{scopes}` scope. New values added/updated:")
    print(f"User: {updated[0].username}")
    print(f"Pass: {updated[0].secret}")
    return EXIT_OK


def _cmd_delete(access: AccessControl, args: argparse.Namespace) -> int:
    scope = access.resolve_scope(args.scope)
    removed = access.delete_credential(scope, args.user)
    if args.user:
        print(f"Auth user `{args.user}` removed from `{scope.key}` scope")
    else:
        print(f"http auth removed for `{scope.key}` scope ({len(removed)} user(s))")
    return EXIT_OK


def _cmd_list(access: AccessControl, args: argparse.Namespace) -> int:
    scope = access.resolve_scope(args.scope)
    credentials = access.list_credentials(scope)
    if not credentials:
        print(f"  [!] http auth not enabled on {scope.key}")
        return EXIT_REJECTED
    print(_render_users(credentials, args.format))
    return EXIT_OK


def _cmd_whitelist(access: AccessControl, args: argparse.Namespace) -> int:
    scope = access.resolve_scope(args.scope)
    ips = split_ip_list(args.ip or "")

    if args.action == "list":
        existing = access.list_whitelist(scope)
        if not existing:
            print(f"  [!] No Whitelisted IP's found for {scope.key} scope")
            return EXIT_REJECTED
        print(f"Whitelisted IP's for {scope.key} scope")
        for ip in existing:
            print(ip)
        return EXIT_OK

    if args.action == "create":
        created = access.create_whitelist(scope, ips)
        print(f"Created whitelist for `{scope.key}` scope with {','.join(e.ip for e in created)} IP's.")
    elif args.action == "append":
        access.append_whitelist(scope, ips)
        print(f"Appended {','.join(ips)} IP's to whitelist of `{scope.key}` scope")
    else:
        removal = access.remove_whitelist(scope, ips)
        if removal.missing:
            print(f"  [!] Could not find {','.join(removal.missing)} IP's from whitelist of `{scope.key}` scope")
        print(f"Removed {','.join(removal.removed)} IP's from whitelist of `{scope.key}` scope")
    return EXIT_OK


def _cmd_repair(access: AccessControl, args: argparse.Namespace) -> int:
    scope = access.resolve_scope(args.scope)
    access.repair(scope)
    print(f"Access files rebuilt for `{scope.key}` scope")
    return EXIT_OK


def _cmd_site_cleanup(access: AccessControl, args: argparse.Namespace) -> int:
    site = args.site.rstrip("/")
    if access.cleanup_site(site):
        print(f"Removed auth and whitelist of `{site}`")
    else:
        logger.debug("Site %s not found, nothing to clean up", site)
    return EXIT_OK


def _cmd_init_admin_tools(access: AccessControl, args: argparse.Namespace) -> int:
    credential = access.ensure_admin_tools_auth()
    if credential is None:
        print("Global auth exists on admin-tools. Use `proxyauth list global` to view credentials.")
    else:
        print("Global admin-tools auth added.")
        print(f"User: {credential.username}")
        print(f"Pass: {credential.secret}")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxyauth",
        description="HTTP auth and IP whitelisting for the global reverse proxy.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  proxyauth create example.com --user=admin --pass=s3cret
  proxyauth whitelist append global --ip=10.0.0.1,10.0.0.2
  proxyauth repair global
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def scoped(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("scope", metavar="SCOPE", help="`global`, `admin-tools`, or a site name")
        return p

    p = scoped("create", "Create http auth for a scope")
    p.add_argument("--user", help="Username (default: configured default username)")
    p.add_argument("--pass", dest="password", help="Password (default: random)")
    p.set_defaults(handler=_cmd_create)

    p = scoped("update", "Change the password of an existing user")
    p.add_argument("--user", help="Username (default: configured default username)")
    p.add_argument("--pass", dest="password", help="New password (default: random)")
    p.add_argument("--admin-tools", action="store_true", help="Also update the user on admin-tools")
    p.set_defaults(handler=_cmd_update)

    p = scoped("delete", "Delete one user, or all http auth of a scope")
    p.add_argument("--user", help="Username to delete (default: every user of the scope)")
    p.set_defaults(handler=_cmd_delete)

    p = scoped("list", "List http auth users of a scope")
    p.add_argument(
        "--format",
        choices=["table", "json", "csv", "count", "text"],
        default="table",
        help="Output format (default: table)",
    )
    p.set_defaults(handler=_cmd_list)

    p = sub.add_parser("whitelist", help="create, append, remove or list whitelisted IPs")
    p.add_argument("action", choices=_WHITELIST_COMMANDS)
    p.add_argument("scope", metavar="SCOPE", help="`global`, `admin-tools`, or a site name")
    p.add_argument("--ip", help="Comma separated IPs (`all` with remove clears the whitelist)")
    p.set_defaults(handler=_cmd_whitelist)

    p = scoped("repair", "Rebuild credential and ACL files of a scope from the store")
    p.set_defaults(handler=_cmd_repair)

    p = sub.add_parser("site-cleanup", help="Remove all auth and whitelist entries of a deleted site")
    p.add_argument("site", metavar="SITE")
    p.set_defaults(handler=_cmd_site_cleanup)

    p = sub.add_parser("init-admin-tools", help="Add admin-tools auth if no global auth exists")
    p.set_defaults(handler=_cmd_init_admin_tools)

    return parser


def _report(exc: AccessControlError) -> None:
    print(f"  [!] {exc}", file=sys.stderr)
    logger.debug("Error detail: %s", json.dumps(exc.to_dict(), default=str))


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "handler", None):
        parser.print_help()
        return EXIT_OK

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"  [!] Invalid PROXYAUTH_* configuration:\n{exc}", file=sys.stderr)
        return EXIT_REJECTED

    logging.basicConfig(
        level=logging.DEBUG if (args.debug or settings.debug) else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        access = AccessControl.from_settings(settings)
    except OSError as exc:
        print(f"  [!] Could not open the store at {settings.db_url}: {exc}", file=sys.stderr)
        return EXIT_REJECTED

    try:
        return args.handler(access, args)
    except PartiallyApplied as exc:
        _report(exc)
        print(f"  [!] Run `proxyauth repair {exc.context.get('scope', '<scope>')}` once the problem is fixed.", file=sys.stderr)
        return EXIT_PARTIAL
    except AccessControlError as exc:
        _report(exc)
        return EXIT_REJECTED
    except OSError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return EXIT_REJECTED
    finally:
        access.close()


if __name__ == "__main__":
    sys.exit(main())
