"""CrystalTides Gacha CLI entry point.

Provides subcommands for running the web server and for the operator tasks
around the reward roller: validating a pool file, inspecting and marking the
dispatch queue, reconciling recorded-but-unqueued rolls, and linking accounts.
Accepts configuration via flags and environment variables, with optional
.env loading.

Run `python run.py --help` for details.
"""

import argparse
import os
import signal
import sys
from textwrap import dedent

from colorama import Fore, Style
from colorama import init as _color_init
from dotenv import load_dotenv

from gacha import __version__

_color_init()
# Disable colors if output is not a real terminal (e.g., during pytest capture)
try:
    _COLOR_ENABLED = sys.stdout.isatty()
except (AttributeError, ValueError):  # pragma: no cover - detached stdout
    _COLOR_ENABLED = False


def parse_args(argv: list[str]) -> argparse.Namespace:
    description = """
    CrystalTides Gacha Server

    Run the Flask/Socket.IO server that serves reward rolls, or run one of the
    operator commands against the same database. Configuration can be provided
    via CLI flags or environment variables. If both are present, CLI flags take
    precedence.
    """

    epilog = dedent(
        """
        Environment variables:
          HOST                  Bind address for the web server (default: 0.0.0.0)
          PORT                  Port for the web server (default: 5000)
          DATABASE_URL          SQLAlchemy database URI (default: sqlite:///instance/gacha.db)
          BRIDGE_TOKEN          Shared secret for the game-server bridge endpoints
          GACHA_POOL_PATH       JSON reward pool (default: bundled pool)
          GACHA_COOLDOWN_HOURS  Hours between rolls per player (default: 24)

        Examples:
          # Run the server on a custom port
          python run.py server --port 8080

          # Validate a pool file before deploying it
          python run.py check-pool --path pools/winter.json

          # Show failed deliveries
          python run.py queue-list --status failed

          # Queue commands for rolls that were recorded but never queued
          python run.py reconcile
        """
    )

    parser = argparse.ArgumentParser(
        prog="CrystalTides Gacha",
        description=dedent(description),
        epilog=epilog,
        formatter_class=argparse.RawTextHelpFormatter,
    )

    parser.add_argument(
        "--env-file",
        dest="env_file",
        help="Path to a .env file to load before processing flags",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"CrystalTides Gacha {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # server subcommand
    server_parser = subparsers.add_parser(
        "server",
        help="Run the Socket.IO web server",
        formatter_class=argparse.RawTextHelpFormatter,
        description="Run the Flask/Socket.IO server",
    )
    server_parser.add_argument("--host", default=None, help="Host interface to bind (default: env HOST or 0.0.0.0)")
    server_parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: env PORT or 5000)")
    server_parser.add_argument(
        "--db",
        dest="db_uri",
        default=None,
        help="Database URI (default: env DATABASE_URL or sqlite:///instance/gacha.db)",
    )
    server_parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode with verbose error pages")
    server_parser.set_defaults(command="server")

    # check-pool
    pool_parser = subparsers.add_parser(
        "check-pool",
        help="Validate a reward pool and print its odds",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    pool_parser.add_argument("--path", default=None, help="Pool JSON file (default: env GACHA_POOL_PATH or bundled)")
    pool_parser.set_defaults(command="check-pool")

    # queue-list
    ql_parser = subparsers.add_parser(
        "queue-list",
        help="List dispatch queue entries",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    ql_parser.add_argument("--status", choices=["pending", "delivered", "failed"], default=None)
    ql_parser.add_argument("--limit", type=int, default=50)
    ql_parser.set_defaults(command="queue-list")

    # queue-mark
    qm_parser = subparsers.add_parser(
        "queue-mark",
        help="Mark a queue entry delivered or failed (manual bridge report)",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    qm_parser.add_argument("entry_id", type=int, help="Queue entry id")
    qm_parser.add_argument("status", choices=["delivered", "failed"])
    qm_parser.add_argument("--reason", default=None, help="Failure reason (with 'failed')")
    qm_parser.set_defaults(command="queue-mark")

    # reconcile
    rec_parser = subparsers.add_parser(
        "reconcile",
        help="Queue commands for recorded rolls that have none",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    rec_parser.add_argument("--limit", type=int, default=100)
    rec_parser.set_defaults(command="reconcile")

    # link-account
    link_parser = subparsers.add_parser(
        "link-account",
        help="Set a user's linked Minecraft name (operator override)",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    link_parser.add_argument("username", help="Site username")
    link_parser.add_argument("minecraft_name", help="In-game name (3-16 chars, A-Z 0-9 _)")
    link_parser.add_argument("--uuid", dest="minecraft_uuid", default=None)
    link_parser.set_defaults(command="link-account")

    # make-admin
    admin_parser = subparsers.add_parser(
        "make-admin",
        help="Grant the admin role (creates the user with password 'changeme' if missing)",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    admin_parser.add_argument("username", help="Site username")
    admin_parser.set_defaults(command="make-admin")

    # No subcommand means "server"
    return parser.parse_args(argv or ["server"])


def _paint(text, color: str = "") -> str:
    return f"{color}{text}{Style.RESET_ALL}" if _COLOR_ENABLED and color else str(text)


def _print_error(msg: str):
    print(f"{_paint('[ERROR]', Fore.RED)} {msg}")


def _banner(app, host: str, port: int, db_banner: str):
    roller = app.extensions["gacha"]
    divider = _paint("=" * 44, Fore.MAGENTA)
    rows = [
        ("Host", host),
        ("Port", port),
        ("Database", db_banner),
        ("Rewards", f"{len(roller.pool)} (total weight {roller.pool.total_weight:g})"),
        ("Cooldown", f"{roller.guard.window.total_seconds() / 3600:g}h"),
        ("Bridge", "enabled" if app.config.get("BRIDGE_TOKEN") else "disabled"),
    ]
    lines = [divider, "  " + _paint("CrystalTides Gacha", Fore.CYAN + Style.BRIGHT), divider]
    lines += [f"  {_paint((label + ':').ljust(10), Fore.YELLOW)} {_paint(val, Fore.GREEN)}" for label, val in rows]
    lines += [divider, ""]
    print("\n".join(lines))


# ----------------------- Operator commands -----------------------


def _cmd_check_pool(args) -> int:
    from gacha.errors import ConfigError
    from gacha.rewards.pool import DEFAULT_POOL, load_pool, load_pool_file

    path = args.path or os.getenv("GACHA_POOL_PATH")
    try:
        pool = load_pool_file(path) if path else load_pool(DEFAULT_POOL)
    except ConfigError as exc:
        _print_error(f"Invalid reward pool: {exc}")
        return 1
    for r in pool:
        print(f"{r.weight:>8.3f}%  {r.rarity.value:<10} {r.id:<20} {r.name}")
    print(f"[OK] {len(pool)} rewards, total weight {pool.total_weight:g}")
    return 0


def _cmd_queue_list(args, app) -> int:
    for e in app.extensions["gacha"].queue.by_status(args.status, args.limit):
        print(f"{e.id:>6}  {e.status:<9} roll={e.roll_record_id:<6} {e.command}")
    return 0


def _cmd_queue_mark(args, app) -> int:
    from gacha.errors import PersistenceError, QueueEntryNotFound, QueueTransitionError

    queue = app.extensions["gacha"].queue
    try:
        if args.status == "delivered":
            entry = queue.mark_delivered(args.entry_id)
        else:
            entry = queue.mark_failed(args.entry_id, args.reason)
    except (QueueEntryNotFound, QueueTransitionError, PersistenceError) as exc:
        _print_error(str(exc))
        return 1
    print(f"[OK] entry {entry.id} is {entry.status}")
    return 0


def _cmd_reconcile(args, app) -> int:
    report = app.extensions["gacha"].reconcile(args.limit)
    print(f"Requeued {len(report.requeued)} rolls; skipped {len(report.skipped)}.")
    for roll_id, reason in report.skipped.items():
        print(f"  roll {roll_id}: {reason}")
    return 2 if report.skipped else 0


def _cmd_link_account(args, app) -> int:
    from gacha import db
    from gacha.models.models import User
    from gacha.services.effects import is_valid_target

    if not is_valid_target(args.minecraft_name):
        _print_error(f"'{args.minecraft_name}' is not a valid Minecraft name")
        return 1
    user = User.query.filter_by(username=args.username).first()
    if not user:
        _print_error(f"User not found: {args.username}")
        return 1
    user.minecraft_name = args.minecraft_name
    if args.minecraft_uuid:
        user.minecraft_uuid = args.minecraft_uuid
    db.session.commit()
    print(f"Linked '{user.username}' to Minecraft name '{user.minecraft_name}'")
    return 0


def _cmd_make_admin(args, app) -> int:
    from gacha import db
    from gacha.models.models import User

    user = User.query.filter_by(username=args.username).first()
    if user is None:
        user = User(username=args.username, role="admin")
        user.set_password("changeme")
        db.session.add(user)
        print(f"Created new admin user '{args.username}' with password 'changeme'")
    else:
        user.role = "admin"
        print(f"Promoted '{args.username}' to admin")
    db.session.commit()
    return 0


_APP_COMMANDS = {
    "queue-list": _cmd_queue_list,
    "queue-mark": _cmd_queue_mark,
    "reconcile": _cmd_reconcile,
    "link-account": _cmd_link_account,
    "make-admin": _cmd_make_admin,
}


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    if args.env_file:
        load_dotenv(args.env_file)
    else:
        # Load default .env if present (no error if missing)
        load_dotenv()

    command = args.command or "server"
    if command == "check-pool":
        return _cmd_check_pool(args)

    db_uri_cli = getattr(args, "db_uri", None)
    if db_uri_cli:
        # Must be in the environment before create_app reads it
        os.environ["DATABASE_URL"] = db_uri_cli

    from gacha import create_app
    from gacha.errors import ConfigError

    try:
        app = create_app()
    except ConfigError as exc:
        _print_error(f"Invalid configuration: {exc}")
        return 1

    if command in _APP_COMMANDS:
        with app.app_context():
            return _APP_COMMANDS[command](args, app)

    host = getattr(args, "host", None) or os.getenv("HOST", "0.0.0.0")
    port = int(getattr(args, "port", None) or os.getenv("PORT", "5000"))
    db_banner = db_uri_cli or os.getenv("DATABASE_URL") or "auto (instance/gacha.db)"
    debug = bool(getattr(args, "debug", False) or os.getenv("FLASK_DEBUG") == "1")

    def handle_sigint(sig, frame):
        print("\n[INFO] Shutting down server...")
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)

    # Import server entrypoint only after environment is ready
    from gacha.server import start_server

    _banner(app, host, port, db_banner)
    start_server(host=host, port=port, debug=debug, app=app)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
