"""Encrypted vault: envelope codec, storage, backups, and the session manager."""

from .backup import backup_template, export_encrypted, export_plain, import_backup
from .codec import CurrentEnvelope, Envelope, LegacyEnvelope, VaultCodec
from .idle import IdleTracker
from .manager import VaultManager
from .storage import (
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    StorageGateway,
    StorageUsage,
)

__all__ = [
    "CurrentEnvelope",
    "Envelope",
    "IdleTracker",
    "LegacyEnvelope",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "StorageGateway",
    "StorageUsage",
    "VaultCodec",
    "VaultManager",
    "backup_template",
    "export_encrypted",
    "export_plain",
    "import_backup",
]
