#!/usr/bin/env python3
"""
Command-Line Entry Point
========================
Run the session bridge service, or drive one login by hand.

All configuration flows through ``BridgeConfig``: environment (and ``.env``)
first, then the flags below.

Run with: python -m session_bridge <command>
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env (upstream URL, intervals) before anything reads the environment
env_path = Path(__file__).resolve().parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()  # tries CWD

from .run_config import BridgeConfig

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(cfg: BridgeConfig) -> int:
    """Run the HTTP API (schedulers start with the app)."""
    import uvicorn

    from .api import create_app
    from .bridge import SessionBridge

    app = create_app(SessionBridge(cfg))
    uvicorn.run(app, host=cfg.host, port=cfg.port, log_level=cfg.log_level.lower())
    return 0


def cmd_login(cfg: BridgeConfig, username: str, output: str = None) -> int:
    """Open a visible browser, wait for the user to log in, validate cookies."""
    from .bridge import SessionBridge
    from .errors import SessionBridgeError

    bridge = SessionBridge(cfg)

    print("\n" + "=" * 60)
    print("  INTERACTIVE LOGIN")
    print("=" * 60)
    print(f"  Upstream:     {bridge.handler.base_url}")
    print(f"  Login URL:    {bridge.handler.login_entry_url}")
    print(f"  Max wait:     {cfg.login_max_wait_minutes:g} minutes")
    print("=" * 60)
    print("  A browser window will open. Complete the login (including MFA);")
    print("  the window closes by itself once you are back on the upstream.")
    print()

    async def _run():
        try:
            result = await bridge.logins.begin(username)
            await bridge.logins.wait(result["sessionId"])
            status = bridge.logins.status(result["sessionId"])
            return status, result["userId"], bridge.store.get(result["userId"])
        finally:
            await bridge.stop()

    try:
        status, user_id, entry = asyncio.run(_run())
    except SessionBridgeError as e:
        print(f"\n  Login failed: {e.code}: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n  Cancelled by user.")
        return 1

    if status.get("status") != "established" or entry is None:
        print(f"\n  Login failed: {status.get('error') or status.get('status')}")
        return 1

    print(f"\n  Session established for {user_id}")
    print(f"  Cookies:      {', '.join(entry.cookie_jar.names())}")
    if entry.user_info:
        print(f"  User:         {entry.user_info.get('name', '')} (id {entry.user_info.get('id')})")
    if output:
        out_path = Path(output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(
            json.dumps({"userId": user_id, "cookies": entry.cookie_jar.to_dicts()}, indent=2),
            encoding="utf-8",
        )
        print(f"  Saved:        {out_path}")
    print()
    return 0


def cmd_config(cfg: BridgeConfig) -> int:
    """Print the effective configuration and any problems with it."""
    for name, value in cfg.summary().items():
        print(f"  {name:32s} {value}")
    problems = cfg.validate()
    if problems:
        print()
        for problem in problems:
            print(f"  ! {problem}")
        return 1
    return 0


# ---------------------------------------------------------------------------
# Flag-driven entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='session_bridge',
        description='Session Bridge - borrow and keep alive federated upstream sessions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m session_bridge serve --port 3000
  python -m session_bridge login alice --upstream https://lms.example.edu
  python -m session_bridge config
        """
    )
    parser.add_argument('--upstream', dest='upstream_base_url', help='Upstream base URL')
    parser.add_argument('--portal', help='Upstream handler name (default: canvas)')
    parser.add_argument('--log-level', dest='log_level', help='DEBUG, INFO, WARNING ...')

    sub = parser.add_subparsers(dest='command', required=True)

    serve = sub.add_parser('serve', help='Run the HTTP API and background jobs')
    serve.add_argument('--host', help='Bind address (default: 127.0.0.1)')
    serve.add_argument('--port', type=int, help='Port (default: 3000)')
    serve.add_argument('--headed', action='store_true', help='Show login browsers')
    serve.add_argument('--expose-sessions', action='store_true',
                       help='Enable GET /api/auth/sessions')

    login = sub.add_parser('login', help='Interactive login for one user (visible browser)')
    login.add_argument('username', help='Username (3-50 characters)')
    login.add_argument('--output', help='Write the validated cookie jar to this JSON file')

    sub.add_parser('config', help='Print the effective configuration')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = BridgeConfig.from_cli_args(args)
    logging.getLogger().setLevel(cfg.log_level.upper())

    if args.command == 'serve':
        return cmd_serve(cfg)
    if args.command == 'login':
        cfg.headless = False
        return cmd_login(cfg, args.username, args.output)
    return cmd_config(cfg)


if __name__ == '__main__':
    sys.exit(main())
