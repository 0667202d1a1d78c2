"""Backup export and import.

Backup files come in two shapes:

- plain: the vault as pretty-printed JSON ``{"accounts": [...], "settings": {...}}``
- encrypted: base64 of a v2 envelope JSON, so the file is one ASCII string

Import detects the shape. Encrypted backups written by older versions are a
bare passphrase ciphertext and are still accepted.
"""

import base64
import binascii
import json
import logging
from typing import Optional

from ..exceptions import BackupPasswordRequired, WrongPassphraseOrCorrupt
from ..models import Account, Settings, Vault
from .codec import LegacyEnvelope, VaultCodec

logger = logging.getLogger(__name__)

MIN_BACKUP_PASSWORD_LENGTH = 4


def export_plain(vault: Vault) -> str:
    """Unencrypted backup: indented JSON."""
    return json.dumps(vault.to_dict(), indent=2, ensure_ascii=False)


def export_encrypted(vault: Vault, password: str) -> str:
    """Encrypted backup: base64(v2 envelope JSON).

    Raises:
        ValueError: If the password is shorter than 4 characters.
    """
    if len(password) < MIN_BACKUP_PASSWORD_LENGTH:
        raise ValueError(
            f"Backup password must be at least {MIN_BACKUP_PASSWORD_LENGTH} characters"
        )
    envelope = VaultCodec.encode(vault, password)
    return base64.b64encode(envelope.encode("utf-8")).decode("ascii")


def is_plain_backup(content: str) -> bool:
    """True when content is an unencrypted vault JSON document."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return False
    return isinstance(data, dict) and "accounts" in data


def import_backup(content: str, password: Optional[str] = None) -> Vault:
    """Read a backup file's content into a vault.

    Raises:
        BackupPasswordRequired: Content is encrypted and no password was given
        WrongPassphraseOrCorrupt: Wrong password, or content is not a backup
    """
    if is_plain_backup(content):
        try:
            return Vault.from_dict(json.loads(content))
        except (ValueError, TypeError, OverflowError) as exc:
            raise WrongPassphraseOrCorrupt("Invalid backup file") from exc

    if password is None:
        raise BackupPasswordRequired("Backup is encrypted; a password is required")

    content = content.strip()
    try:
        envelope_text = base64.b64decode(content, validate=True).decode("utf-8")
        envelope = VaultCodec.parse_envelope(envelope_text)
    except (binascii.Error, ValueError):
        envelope = None

    if envelope is None or isinstance(envelope, LegacyEnvelope):
        # Not a wrapped v2 envelope: older raw passphrase ciphertext
        logger.info("Importing backup in legacy encrypted format")
        envelope = LegacyEnvelope(ciphertext=content)
    return VaultCodec.decrypt(envelope, password)


def backup_template(settings: Optional[Settings] = None) -> str:
    """A plain backup with one example account, for hand-written imports."""
    example = Account(
        id="example-id-1",
        issuer="Example Service",
        label="user@example.com",
        secret="JBSWY3DPEHPK3PXP",
        password="OptionalPassword123",
        category="Personal",
    )
    return export_plain(Vault(accounts=[example], settings=settings or Settings()))
