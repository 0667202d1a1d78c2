# otphaven Vault - Vault Manager
#
# Owns the decrypted vault for the lifetime of an unlocked session.
# Every mutation re-encodes the whole vault under the session passphrase
# and replaces the stored envelope (which also upgrades legacy envelopes).
#
# Locking drops the decrypted vault and the passphrase. Failed unlocks are
# rate limited with an exponential lockout.

import logging
import threading
import time
import uuid
from typing import Callable, List, Optional, Tuple

from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import (
    StorageQuotaExceeded,
    UnknownEnvelopeVersion,
    UnlockThrottled,
    VaultExists,
    VaultLocked,
    VaultNotFound,
    WrongPassphraseOrCorrupt,
)
from ..models import Account, Settings, Vault
from ..sync.merge import MergeCounts, reconcile
from ..totp import OTPCode, generate, parse_uri
from . import backup
from .codec import LegacyEnvelope, VaultCodec
from .idle import IdleTracker
from .storage import StorageGateway, StorageUsage

logger = logging.getLogger(__name__)

MIN_PASSPHRASE_LENGTH = 4
MAX_LOCKOUT_SECONDS = 16


class VaultManager:
    """
    Unlocked-session owner of the vault.

    Security:
    - The passphrase is held only while unlocked; lock() forgets it
    - Wrong passphrase and corrupted storage are indistinguishable
    - Failed unlocks back off exponentially:
        1st failure: no delay
        2nd: 2s, 3rd: 4s, 4th: 8s, 5th+: 16s
    - Audit events carry ids and counts only, never secrets

    Args:
        gateway: Storage for the envelope
        clock: Seconds since the epoch (injectable for tests)
        idle_clock: Monotonic clock for the auto-lock tracker
    """

    def __init__(
        self,
        gateway: StorageGateway,
        clock: Callable[[], float] = time.time,
        idle_clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self._clock = clock
        self._vault: Optional[Vault] = None
        self._passphrase: Optional[str] = None
        self._lock = threading.RLock()

        # Rate limiting
        self.failed_attempts = 0
        self.lockout_until: Optional[float] = None

        # Armed with the vault's auto_lock_duration while unlocked
        self.idle = IdleTracker(0, self.auto_lock, clock=idle_clock)

        self.logger = get_audit_logger()

    # ── State ────────────────────────────────────────────────────────

    @property
    def is_unlocked(self) -> bool:
        return self._vault is not None

    @property
    def vault(self) -> Vault:
        """The decrypted vault. Raises VaultLocked when locked."""
        if self._vault is None:
            raise VaultLocked()
        return self._vault

    @property
    def settings(self) -> Settings:
        return self.vault.settings

    @property
    def accounts(self) -> List[Account]:
        return list(self.vault.accounts)

    def _require_unlocked(self) -> None:
        if self._vault is None:
            raise VaultLocked()

    def exists(self) -> bool:
        return self.gateway.exists()

    def usage(self) -> StorageUsage:
        return self.gateway.usage()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ── Lifecycle ────────────────────────────────────────────────────

    def create(self, passphrase: str) -> Vault:
        """
        Create and unlock an empty vault with default settings.

        Raises:
            ValueError: Passphrase shorter than 4 characters
            VaultExists: Something is already stored
        """
        if len(passphrase) < MIN_PASSPHRASE_LENGTH:
            raise ValueError(f"Passphrase must be at least {MIN_PASSPHRASE_LENGTH} characters")
        if self.exists():
            raise VaultExists("A vault already exists; reset it first")

        with self._lock:
            self._vault = Vault()
            self._passphrase = passphrase
            self._persist()
            self._arm_idle()

        self.logger.log_event(
            event_type=EventType.VAULT_CREATED,
            severity=EventSeverity.INFO,
            message="Vault created"
        )
        return self._vault

    def unlock(self, passphrase: str) -> Vault:
        """
        Decrypt the stored vault.

        Stored settings are overlaid on the defaults, so vaults written by
        older versions pick up new settings.

        Raises:
            UnlockThrottled: Still inside the lockout after a failure
            VaultNotFound: Nothing stored
            WrongPassphraseOrCorrupt: Wrong passphrase or damaged envelope
            UnknownEnvelopeVersion: Envelope from a newer version
        """
        now = self._clock()
        if self.lockout_until is not None and now < self.lockout_until:
            remaining = max(1, int(self.lockout_until - now))
            self.logger.log_event(
                event_type=EventType.VAULT_UNLOCK_FAILED,
                severity=EventSeverity.ALERT,
                message=f"Unlock attempt during lockout period ({remaining}s remaining)"
            )
            raise UnlockThrottled(remaining)

        text = self.gateway.get()
        if text is None:
            raise VaultNotFound("No vault found. Create one first.")

        try:
            envelope = VaultCodec.parse_envelope(text)
            vault = VaultCodec.decrypt(envelope, passphrase)
        except WrongPassphraseOrCorrupt:
            self._handle_failed_unlock()
            raise
        except UnknownEnvelopeVersion as exc:
            self.logger.log_event(
                event_type=EventType.VAULT_ERROR,
                severity=EventSeverity.ALERT,
                message="Stored vault was written by a newer version",
                details={"version": str(exc.version)}
            )
            raise

        if isinstance(envelope, LegacyEnvelope):
            self.logger.log_event(
                event_type=EventType.VAULT_LEGACY_FORMAT,
                severity=EventSeverity.INVESTIGATE,
                message="Legacy vault format detected; upgrading on next save"
            )

        with self._lock:
            self._vault = vault
            self._passphrase = passphrase
            self.failed_attempts = 0
            self.lockout_until = None
            self._arm_idle()

        self.logger.log_event(
            event_type=EventType.VAULT_UNLOCKED,
            severity=EventSeverity.INFO,
            message="Vault unlocked",
            details={"accounts": len(vault.accounts)}
        )
        return vault

    def _handle_failed_unlock(self) -> None:
        self.failed_attempts += 1
        if self.failed_attempts == 1:
            delay_seconds = 0
        else:
            delay_seconds = min(2 ** (self.failed_attempts - 1), MAX_LOCKOUT_SECONDS)
        self.lockout_until = self._clock() + delay_seconds if delay_seconds else None

        self.logger.log_event(
            event_type=EventType.VAULT_UNLOCK_FAILED,
            severity=EventSeverity.ALERT,
            message=f"Vault unlock failed (attempt {self.failed_attempts}, {delay_seconds}s lockout)"
        )

    def lock(self, auto: bool = False) -> None:
        """Forget the decrypted vault and the passphrase."""
        with self._lock:
            was_unlocked = self._vault is not None
            self._vault = None
            self._passphrase = None
            self.idle.set_timeout(0)

        if was_unlocked:
            self.logger.log_event(
                event_type=EventType.VAULT_AUTO_LOCKED if auto else EventType.VAULT_LOCKED,
                severity=EventSeverity.INFO,
                message="Vault auto-locked after inactivity" if auto else "Vault locked"
            )

    def auto_lock(self) -> None:
        """Idle callback for IdleTracker."""
        self.lock(auto=True)

    def touch(self) -> None:
        """Record user activity, postponing auto-lock."""
        self.idle.touch()

    def _arm_idle(self) -> None:
        self.idle.set_timeout(self._vault.settings.auto_lock_duration)
        self.idle.touch()

    def reset(self) -> None:
        """Erase the stored vault. Irreversible."""
        with self._lock:
            self.gateway.clear()
            self._vault = None
            self._passphrase = None
            self.failed_attempts = 0
            self.lockout_until = None
            self.idle.set_timeout(0)

        self.logger.log_event(
            event_type=EventType.VAULT_RESET,
            severity=EventSeverity.ALERT,
            message="Vault reset: all stored data erased"
        )

    # ── Persistence ──────────────────────────────────────────────────

    def _persist(self) -> None:
        if self._vault is None or self._passphrase is None:
            raise VaultLocked()
        self.gateway.put(VaultCodec.encode(self._vault, self._passphrase))

        usage = self.gateway.usage()
        if usage.is_low:
            self.logger.log_event(
                event_type=EventType.STORAGE_LOW,
                severity=EventSeverity.INVESTIGATE,
                message=f"Storage nearly full ({usage.formatted})",
                details={"used_bytes": usage.used_bytes}
            )

    # ── Accounts ─────────────────────────────────────────────────────

    def save_account(self, account: Account) -> Account:
        """
        Insert or update an account, stamping ``updated_at`` with now.

        Raises:
            VaultLocked: Vault is locked
            StorageQuotaExceeded: New account while less than 1 MiB remains
        """
        with self._lock:
            vault = self.vault
            index = next(
                (i for i, a in enumerate(vault.accounts) if a.id == account.id), None
            )
            if index is None and self.gateway.usage().is_low:
                raise StorageQuotaExceeded(
                    "Storage almost full. Delete unused accounts to free space."
                )

            stamped = account.touched(self._now_ms())
            if index is None:
                vault.accounts.append(stamped)
            else:
                vault.accounts[index] = stamped
            self._persist()

        self.logger.log_vault_event(
            EventType.ACCOUNT_ADDED if index is None else EventType.ACCOUNT_UPDATED,
            "Account added" if index is None else "Account updated",
            details={"account_id": stamped.id}
        )
        return stamped

    def delete_account(self, account_id: str) -> bool:
        """Remove an account. Returns False if no account has that id."""
        with self._lock:
            vault = self.vault
            remaining = [a for a in vault.accounts if a.id != account_id]
            if len(remaining) == len(vault.accounts):
                return False
            vault.accounts = remaining
            self._persist()

        self.logger.log_vault_event(
            EventType.ACCOUNT_DELETED,
            "Account deleted",
            details={"account_id": account_id}
        )
        return True

    def import_uri(self, uri: str) -> Account:
        """Parse an otpauth URI and save it as a new account."""
        return self.save_account(parse_uri(uri, account_id=str(uuid.uuid4())))

    def update_settings(self, settings: Settings) -> Settings:
        with self._lock:
            self.vault.settings = settings
            self._persist()
            self.idle.set_timeout(settings.auto_lock_duration)
        return settings

    def replace_vault(self, vault: Vault) -> Vault:
        """Swap in a whole vault (backup restore) and persist it."""
        with self._lock:
            self._require_unlocked()
            self._vault = vault
            self._persist()
            self.idle.set_timeout(vault.settings.auto_lock_duration)
        return vault

    # ── Sync ─────────────────────────────────────────────────────────

    def apply_snapshot(self, remote: Vault) -> MergeCounts:
        """Merge a peer's snapshot; persist only if something changed."""
        with self._lock:
            vault = self.vault
            result = reconcile(vault.accounts, remote.accounts)
            if result.counts.changed:
                vault.accounts = result.accounts
                self._persist()

        self.logger.log_event(
            event_type=EventType.SYNC_SNAPSHOT_MERGED,
            severity=EventSeverity.INFO,
            message="Peer snapshot merged",
            details=result.counts.to_dict()
        )
        return result.counts

    # ── Backup ───────────────────────────────────────────────────────

    def export_backup(self, password: Optional[str] = None) -> str:
        """Plain JSON backup, or base64 envelope when a password is given."""
        vault = self.vault
        content = (
            backup.export_plain(vault)
            if password is None
            else backup.export_encrypted(vault, password)
        )
        self.logger.log_vault_event(
            EventType.BACKUP_EXPORTED,
            "Backup exported",
            details={"encrypted": password is not None, "accounts": len(vault.accounts)}
        )
        return content

    def import_backup(self, content: str, password: Optional[str] = None) -> Vault:
        """
        Restore a backup, replacing the current vault.

        Raises:
            BackupPasswordRequired: Encrypted backup without password
            WrongPassphraseOrCorrupt: Wrong password or not a backup
        """
        self._require_unlocked()
        imported = backup.import_backup(content, password)
        self.replace_vault(imported)
        self.logger.log_vault_event(
            EventType.BACKUP_IMPORTED,
            "Backup imported",
            details={"accounts": len(imported.accounts)}
        )
        return imported

    # ── Codes ────────────────────────────────────────────────────────

    def codes(
        self, window_offset: int = 0, now: Optional[float] = None
    ) -> List[Tuple[Account, Optional[OTPCode]]]:
        """Current (or, with offset 1, next) code for every account."""
        if now is None:
            now = self._clock()
        return [
            (account, generate(account, window_offset=window_offset, now=now))
            for account in self.accounts
        ]
