"""
audible_session CLI
===================
Command-line interface for managing a persisted Audible session.

Usage:
    python -m audible_session login --locale us
    python -m audible_session show
    python -m audible_session refresh
    python -m audible_session get /1.0/library --param num_results=20
    python -m audible_session deregister
"""

import argparse
import getpass
import json
import sys
from typing import List, Optional

from .client import AudibleClient
from .config import Settings
from .exceptions import AudibleError
from .localization import Locale
from .log_config import LogConfig, mask
from .session import SessionStore
from .transport import Transport


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audible_session",
        description="Audible session manager: login, token refresh, signed API calls",
    )
    parser.add_argument("--env", default=".env", help="Path to .env file (default: .env)")
    parser.add_argument("--session-file", default=None, help="Session JSON path (overrides AUDIBLE_SESSION_FILE)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ─── login ─────────────────────────────────────
    p_login = subparsers.add_parser("login", help="Sign in and register a device")
    p_login.add_argument("--email", default=None, help="Amazon account email")
    p_login.add_argument(
        "--locale",
        default=None,
        choices=[loc.value for loc in Locale],
        help="Marketplace (default: AUDIBLE_LOCALE or us)",
    )

    # ─── show / refresh / deregister ───────────────
    subparsers.add_parser("show", help="Print the stored session (tokens masked)")
    subparsers.add_parser("refresh", help="Refresh the access token now")
    subparsers.add_parser("deregister", help="Deregister the device")

    # ─── get ───────────────────────────────────────
    p_get = subparsers.add_parser("get", help="Signed GET against the Audible API")
    p_get.add_argument("path", help="API path, e.g. /1.0/library")
    p_get.add_argument(
        "--param", action="append", default=[], metavar="KEY=VALUE",
        help="Query parameter (repeatable)",
    )

    return parser


def _parse_params(pairs: List[str]) -> dict:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Invalid --param '{pair}', expected KEY=VALUE")
        params[key] = value
    return params


def _open(settings: Settings) -> AudibleClient:
    return AudibleClient.from_file(
        settings.session_file,
        transport=Transport(timeout=settings.timeout),
    )


def cmd_login(args, settings: Settings) -> int:
    email = args.email or settings.email or input("Email: ").strip()
    password = settings.password or getpass.getpass("Password: ")
    client = AudibleClient.login(
        email,
        password,
        locale=args.locale or settings.locale,
        store=SessionStore(settings.session_file),
        transport=Transport(timeout=settings.timeout),
    )
    print(f"Logged in. Session saved to {settings.session_file}")
    client.close()
    return 0


def cmd_show(args, settings: Settings) -> int:
    session = SessionStore(settings.session_file).load()
    summary = session.to_dict()
    for key in ("adp_token", "access_token", "refresh_token"):
        summary[key] = mask(summary[key])
    summary["device_private_key"] = "<set>" if session.device_private_key else "<empty>"
    summary["login_cookies"] = sorted(session.login_cookies)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_refresh(args, settings: Settings) -> int:
    with _open(settings) as client:
        client.refresh()
        print(f"Refreshed. Expires at {client.session.expires}")
    return 0


def cmd_deregister(args, settings: Settings) -> int:
    with _open(settings) as client:
        client.deregister()
        print("Device deregistered.")
    return 0


def cmd_get(args, settings: Settings) -> int:
    params = _parse_params(args.param)
    with _open(settings) as client:
        response = client.get(args.path, params=params)
        print(response.text)
        return 0 if response.status_code < 400 else 1


COMMANDS = {
    "login": cmd_login,
    "show": cmd_show,
    "refresh": cmd_refresh,
    "deregister": cmd_deregister,
    "get": cmd_get,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.debug:
        LogConfig.configure_debug()
    else:
        LogConfig.configure(level="WARNING")

    settings = Settings.from_env(args.env)
    if args.session_file:
        settings.session_file = args.session_file

    try:
        return COMMANDS[args.command](args, settings)
    except (AudibleError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
