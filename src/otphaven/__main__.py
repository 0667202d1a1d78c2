# otphaven - Command Line Entry Point
#
# Terminal front end for the vault: create/unlock, list and show codes,
# manage accounts, backups, peer sync, and the rendezvous relay.
#
# Passphrases are read with getpass and never echoed or logged. With
# OTPHAVEN_DISABLE_PIN set, the fixed internal key is used instead.

import argparse
import getpass
import logging
import sys
import threading
from pathlib import Path
from typing import Optional

from . import __version__
from .config import PUBLIC_PIN, AppConfig, load_config
from .core import AuditLogger, EventSeverity, EventType, get_audit_logger, set_audit_logger
from .exceptions import (
    BackupPasswordRequired,
    InvalidMigrationUri,
    OtphavenError,
    PeerIdCollision,
    StorageQuotaExceeded,
    UnknownEnvelopeVersion,
    UnlockThrottled,
    VaultExists,
    WrongPassphraseOrCorrupt,
)
from .models import Vault, group_accounts
from .sync.pairing import ConnectionStatus, PairingSession, validate_code
from .vault import SQLiteKeyValueStore, StorageGateway, VaultManager
from .vault.backup import backup_template

EXIT_OK = 0
EXIT_FAILURE = 1


# ── Helpers ──────────────────────────────────────────────────────────


def _open_manager(config: AppConfig) -> VaultManager:
    store = SQLiteKeyValueStore(config.store_path)
    return VaultManager(StorageGateway(store))


def _read_passphrase(config: AppConfig, prompt: str = "Passphrase: ") -> str:
    if config.disable_pin:
        return PUBLIC_PIN
    return getpass.getpass(prompt)


def _unlock(manager: VaultManager, config: AppConfig) -> bool:
    if not manager.exists():
        print("No vault found. Run 'otphaven init' first.")
        return False
    if config.login_message:
        print(config.login_message)
    try:
        manager.unlock(_read_passphrase(config))
    except WrongPassphraseOrCorrupt:
        print("Incorrect passphrase")
        return False
    except (UnlockThrottled, UnknownEnvelopeVersion) as e:
        print(str(e))
        return False
    return True


def _format_code(code: str) -> str:
    half = len(code) // 2
    return f"{code[:half]} {code[half:]}"


# ── Commands ─────────────────────────────────────────────────────────


def cmd_init(args, config: AppConfig, manager: VaultManager) -> int:
    if manager.exists():
        print("A vault already exists. Use 'otphaven reset' to start over.")
        return EXIT_FAILURE

    if config.disable_pin:
        passphrase = PUBLIC_PIN
    else:
        passphrase = getpass.getpass("New passphrase: ")
        if getpass.getpass("Confirm passphrase: ") != passphrase:
            print("Passphrases do not match")
            return EXIT_FAILURE

    try:
        manager.create(passphrase)
    except (ValueError, VaultExists) as e:
        print(str(e))
        return EXIT_FAILURE
    print(f"Vault created at {config.store_path}")
    return EXIT_OK


def cmd_codes(args, config: AppConfig, manager: VaultManager) -> int:
    if not _unlock(manager, config):
        return EXIT_FAILURE

    offset = 1 if args.next else 0
    codes = {account.id: code for account, code in manager.codes(window_offset=offset)}
    for category, accounts in group_accounts(manager.accounts, args.search).items():
        print(f"[{category}]")
        for account in accounts:
            code = codes.get(account.id)
            if code is None:
                shown = "(no code)" if not account.has_secret else "(invalid secret)"
            else:
                shown = f"{_format_code(code.code)}  {code.seconds_remaining:>2}s"
            print(f"  {account.issuer:<20} {account.label:<28} {shown}")
    return EXIT_OK


def cmd_list(args, config: AppConfig, manager: VaultManager) -> int:
    if not _unlock(manager, config):
        return EXIT_FAILURE

    groups = group_accounts(manager.accounts, args.search)
    if not groups:
        print("No accounts")
        return EXIT_OK
    for category, accounts in groups.items():
        print(f"[{category}]")
        for account in accounts:
            print(f"  {account.id}  {account.issuer} ({account.label})")
    return EXIT_OK


def cmd_add_uri(args, config: AppConfig, manager: VaultManager) -> int:
    if not _unlock(manager, config):
        return EXIT_FAILURE
    try:
        account = manager.import_uri(args.uri)
    except InvalidMigrationUri as e:
        print(f"Invalid URI: {e}")
        return EXIT_FAILURE
    except StorageQuotaExceeded as e:
        print(str(e))
        return EXIT_FAILURE
    print(f"Added {account.issuer} ({account.label}) as {account.id}")
    return EXIT_OK


def cmd_delete(args, config: AppConfig, manager: VaultManager) -> int:
    if not _unlock(manager, config):
        return EXIT_FAILURE
    if not manager.delete_account(args.account_id):
        print(f"No account with id {args.account_id}")
        return EXIT_FAILURE
    print("Account deleted")
    return EXIT_OK


def cmd_export(args, config: AppConfig, manager: VaultManager) -> int:
    target = Path(args.file)
    if args.template:
        target.write_text(backup_template(), encoding="utf-8")
        print(f"Template written to {target}")
        return EXIT_OK

    if not _unlock(manager, config):
        return EXIT_FAILURE

    password = None
    if args.encrypt:
        password = getpass.getpass("Backup password: ")
        if getpass.getpass("Confirm backup password: ") != password:
            print("Passwords do not match")
            return EXIT_FAILURE

    try:
        content = manager.export_backup(password)
    except ValueError as e:
        print(str(e))
        return EXIT_FAILURE
    target.write_text(content, encoding="utf-8")
    print(f"Backup written to {target}")
    return EXIT_OK


def cmd_import(args, config: AppConfig, manager: VaultManager) -> int:
    content = Path(args.file).read_text(encoding="utf-8")
    if not _unlock(manager, config):
        return EXIT_FAILURE

    try:
        try:
            vault = manager.import_backup(content)
        except BackupPasswordRequired:
            vault = manager.import_backup(content, getpass.getpass("Backup password: "))
    except WrongPassphraseOrCorrupt:
        print("Incorrect passphrase")
        return EXIT_FAILURE
    print(f"Imported {len(vault.accounts)} accounts")
    return EXIT_OK


def cmd_usage(args, config: AppConfig, manager: VaultManager) -> int:
    usage = manager.usage()
    print(f"{usage.formatted} ({usage.percent:.1f}%)")
    if usage.is_low:
        print("Storage almost full. Delete unused accounts to free space.")
    return EXIT_OK


def cmd_reset(args, config: AppConfig, manager: VaultManager) -> int:
    if not args.yes:
        answer = input("This permanently erases the vault. Type RESET to confirm: ")
        if answer.strip() != "RESET":
            print("Aborted")
            return EXIT_FAILURE
    manager.reset()
    print("Vault erased")
    return EXIT_OK


def cmd_sync(args, config: AppConfig, manager: VaultManager) -> int:
    from .sync.relay_client import RelayTransport

    code = None
    if args.role == "join":
        try:
            code = validate_code(args.code or "")
        except ValueError:
            print("Invalid code")
            return EXIT_FAILURE

    if not _unlock(manager, config):
        return EXIT_FAILURE

    done = threading.Event()
    state = {"connected": False, "merged": None}

    def on_status(status: ConnectionStatus, message: str) -> None:
        print(f"[{status.value}] {message}")
        if status is ConnectionStatus.CONNECTED:
            state["connected"] = True
            session.send_vault(manager.vault)
        elif status is ConnectionStatus.ERROR:
            done.set()
        elif status is ConnectionStatus.DISCONNECTED and state["connected"]:
            done.set()

    def on_snapshot(vault: Vault) -> None:
        counts = manager.apply_snapshot(vault)
        state["merged"] = counts
        print(f"Merged: {counts.added} added, {counts.updated} updated, {counts.skipped} unchanged")
        done.set()

    transport = RelayTransport(args.relay or config.relay_url)
    session = PairingSession(transport, on_status=on_status, on_snapshot=on_snapshot)
    try:
        if args.role == "host":
            session.host()
            if session.wait_ready(args.timeout) and session.error is None:
                print(f"Pairing code: {session.code}")
        else:
            session.join(code)

        finished = done.wait(args.timeout)
    except KeyboardInterrupt:
        print("\nCancelled")
        return EXIT_FAILURE
    finally:
        session.destroy()

    if isinstance(session.error, PeerIdCollision):
        print("Could not find a free pairing code. Try again.")
        return EXIT_FAILURE
    if session.error is not None:
        print("Invalid code" if args.role == "join" else f"Sync failed: {session.error}")
        return EXIT_FAILURE
    if not finished:
        print("Timed out waiting for peer")
        return EXIT_FAILURE
    return EXIT_OK if state["merged"] is not None else EXIT_FAILURE


def cmd_relay(args, config: AppConfig, manager: Optional[VaultManager]) -> int:
    from .sync.relay_server import run_relay

    run_relay(host=args.host, port=args.port)
    return EXIT_OK


# ── Parser ───────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="otphaven",
        description="otphaven - local-first TOTP vault with device-to-device sync",
    )
    parser.add_argument("--env-file", help="Load settings from this .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"otphaven v{__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create a new vault")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("codes", help="Show current codes")
    p.add_argument("--next", action="store_true", help="Show the next window's codes")
    p.add_argument("--search", default="", help="Filter by issuer, label or category")
    p.set_defaults(func=cmd_codes)

    p = sub.add_parser("list", help="List accounts by category")
    p.add_argument("--search", default="", help="Filter by issuer, label or category")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("add-uri", help="Add an account from an otpauth:// URI")
    p.add_argument("uri")
    p.set_defaults(func=cmd_add_uri)

    p = sub.add_parser("delete", help="Delete an account by id")
    p.add_argument("account_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("export", help="Write a backup file")
    p.add_argument("file")
    p.add_argument("--encrypt", action="store_true", help="Encrypt with a backup password")
    p.add_argument("--template", action="store_true", help="Write an example import file")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Restore a backup file (replaces the vault)")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("usage", help="Show storage usage")
    p.set_defaults(func=cmd_usage)

    p = sub.add_parser("reset", help="Erase the vault")
    p.add_argument("--yes", action="store_true", help="Skip confirmation")
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("sync", help="Pair with another device and merge vaults")
    p.add_argument("role", choices=["host", "join"])
    p.add_argument("code", nargs="?", help="Pairing code (join only)")
    p.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")
    p.add_argument("--relay", default=None, help="Relay URL (default from config)")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("relay", help="Run the rendezvous relay server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=9443)
    p.set_defaults(func=cmd_relay)

    return parser


def main(argv=None) -> int:
    """Main entry point for the otphaven CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.env_file)
    audit = AuditLogger(config.log_dir)
    set_audit_logger(audit)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="otphaven starting",
        details={"version": __version__, "command": args.command}
    )

    try:
        manager = None if args.command == "relay" else _open_manager(config)
        return args.func(args, config, manager)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return EXIT_FAILURE
    except OtphavenError as e:
        print(f"Error: {e}")
        return EXIT_FAILURE
    finally:
        audit.close()
        set_audit_logger(None)


if __name__ == "__main__":
    sys.exit(main())
