# Portwarden - Main Entry Point
#
#   portwarden --passphrase P --filename F encrypt
#   portwarden --passphrase P --filename F decrypt [--output DIR]
#   portwarden --passphrase P --filename F restore
#   portwarden serve [--host H --port N]
#
# Settings not given on the command line come from the environment
# (PORTWARDEN_*, BW_SESSION), optionally loaded from a .env file.

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .core import EventSeverity, EventType, PortwardenSettings, configure_audit_log, get_audit_logger
from .exceptions import PortwardenError

logger = logging.getLogger("portwarden")


def build_parser() -> argparse.ArgumentParser:
    # Flags are accepted before or after the command name
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--passphrase", default=argparse.SUPPRESS,
                        help="Passphrase used to encrypt or decrypt the backup file")
    common.add_argument("--filename", default=argparse.SUPPRESS,
                        help="Backup file (.portwarden is appended when missing on encrypt)")
    common.add_argument("--sleep-milliseconds", type=int, default=argparse.SUPPRESS,
                        help="Delay between attachment requests (default: 300)")
    common.add_argument("--no-logout", action="store_true", default=argparse.SUPPRESS,
                        help="Stay logged in to the vault afterwards")
    common.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS,
                        help="Show progress messages")

    parser = argparse.ArgumentParser(
        prog="portwarden",
        description="Encrypted backup and restore for Bitwarden vaults (with attachments)",
        parents=[common],
    )
    parser.add_argument("--version", action="version", version=f"portwarden {__version__}")

    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    commands.add_parser("encrypt", aliases=["e"], parents=[common],
                        help="Export the vault into an encrypted backup file")

    decrypt = commands.add_parser("decrypt", aliases=["d"], parents=[common],
                                  help="Decrypt a backup file into plain files")
    decrypt.add_argument("--output", default=None,
                         help="Directory for the decrypted files (default: <filename>_decrypted)")

    restore = commands.add_parser("restore", aliases=["r"], parents=[common],
                                  help="Restore a backup file into a vault account")
    restore.add_argument("--skip-existing", action="store_true", default=None,
                         help="Skip items that already exist in the target vault")

    serve = commands.add_parser("serve", parents=[common], help="Run the web front end")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")

    return parser


_COMMANDS = {"e": "encrypt", "d": "decrypt", "r": "restore"}


def run_encrypt(orch, args) -> None:
    orch.backup(args.filename, args.passphrase, sleep_ms=args.sleep_milliseconds,
                no_logout=args.no_logout)
    print("encrypted export successful")


def run_decrypt(orch, args) -> None:
    snapshot = orch.decrypt_only(args.filename, args.passphrase)
    output = Path(args.output) if args.output else Path(f"{Path(args.filename).stem}_decrypted")
    orch.write_plaintext(snapshot, output)
    print("decryption successful")
    print(f"wrote {len(snapshot.items)} item(s), {len(snapshot.folders)} folder(s) "
          f"and {len(snapshot.attachments)} attachment(s) to {output}")


def run_restore(orch, args) -> None:
    report = orch.restore_from_file(args.filename, args.passphrase,
                                    sleep_ms=args.sleep_milliseconds,
                                    no_logout=args.no_logout,
                                    skip_existing=args.skip_existing)
    counts = report.counts()
    for kind in ("folder", "item", "attachment"):
        c = counts[kind]
        print(f"{kind}s: {c['created']} created, {c['skipped']} skipped, {c['failed']} failed")
    for outcome in report.failed:
        print(f"  failed {outcome.kind} {outcome.name or outcome.source_id}: {outcome.error}")
    if not report.ok:
        sys.exit(1)
    print("restore successful")


def main(argv=None):
    """Main entry point for portwarden."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    command = _COMMANDS.get(args.command, args.command)

    # Absent flags fall back to the configuration
    for name, default in (("passphrase", ""), ("filename", ""), ("sleep_milliseconds", None),
                          ("no_logout", None), ("skip_existing", None), ("verbose", False)):
        if not hasattr(args, name):
            setattr(args, name, default)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = PortwardenSettings.from_env()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)
    configure_audit_log(settings.audit_log_dir)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Portwarden starting",
        details={"version": __version__, "command": command},
    )

    if command == "serve":
        from .api.main import start_api_server

        try:
            start_api_server(host=args.host, port=args.port)
        except KeyboardInterrupt:
            print("\n\nShutting down...")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Portwarden web front end stopped",
        )
        return

    from .backup.orchestrator import BackupOrchestrator

    orch = BackupOrchestrator(settings=settings)
    handlers = {"encrypt": run_encrypt, "decrypt": run_decrypt, "restore": run_restore}
    try:
        handlers[command](orch, args)
    except PortwardenError as e:
        logger.error("%s failed: %s", command, e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
