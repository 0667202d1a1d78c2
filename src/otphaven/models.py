"""Vault data model: accounts, settings, and the vault document.

The serialized form uses the camelCase keys of the vault wire format
(``updatedAt``, ``autoLockDuration`` ...) so that envelopes and backups
stay interchangeable between installations. Optional account fields that
are unset are omitted from the serialized form.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30
DEFAULT_AUTO_LOCK_SECONDS = 60
UNCATEGORIZED = "Uncategorized"


class HashAlgorithm(str, Enum):
    """HMAC hash algorithms accepted for one-time codes."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"

    @property
    def digestmod(self) -> str:
        """hashlib name for this algorithm."""
        return self.value.lower()

    @classmethod
    def parse(cls, value: Optional[str]) -> "HashAlgorithm":
        """Parse a user/URI supplied name. Empty means SHA1.

        Raises:
            ValueError: If the name is not a supported algorithm.
        """
        if not value:
            return cls.SHA1
        return cls(value.strip().upper().replace("-", ""))


class Theme(str, Enum):
    SYSTEM = "system"
    LIGHT = "light"
    DARK = "dark"


class SyncMethod(str, Enum):
    OFFLINE = "offline"
    NOSTR = "nostr"
    S3 = "s3"


# ── Account ──────────────────────────────────────────────────────────


@dataclass
class Account:
    """A single vault entry: a TOTP secret, a companion password, or both.

    ``updated_at`` is milliseconds since the epoch and is the only signal
    used to resolve sync conflicts.
    """

    id: str
    issuer: str = ""
    label: str = ""
    secret: Optional[str] = None
    password: Optional[str] = None
    algorithm: str = HashAlgorithm.SHA1.value
    digits: int = DEFAULT_DIGITS
    period: int = DEFAULT_PERIOD
    category: Optional[str] = None
    icon: Optional[str] = None
    updated_at: Optional[int] = None

    @property
    def has_secret(self) -> bool:
        return bool(self.secret)

    @property
    def is_inert(self) -> bool:
        """True when the entry carries neither a secret nor a password."""
        return not self.secret and not self.password

    def touched(self, now_ms: int) -> "Account":
        """Return a copy stamped with a new modification time."""
        return replace(self, updated_at=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "issuer": self.issuer,
            "label": self.label,
            "algorithm": self.algorithm,
            "digits": self.digits,
            "period": self.period,
        }
        optional = {
            "secret": self.secret,
            "password": self.password,
            "category": self.category,
            "icon": self.icon,
            "updatedAt": self.updated_at,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Account":
        """Build an account from its serialized form.

        Raises:
            ValueError: If the object has no usable id.
        """
        if not isinstance(obj, dict) or not obj.get("id"):
            raise ValueError("Account entry without id")

        updated_at = obj.get("updatedAt")
        return cls(
            id=str(obj["id"]),
            issuer=str(obj.get("issuer") or ""),
            label=str(obj.get("label") or ""),
            secret=obj.get("secret"),
            password=obj.get("password"),
            algorithm=str(obj.get("algorithm") or HashAlgorithm.SHA1.value).upper(),
            digits=int(obj.get("digits") or DEFAULT_DIGITS),
            period=int(obj.get("period") or DEFAULT_PERIOD),
            category=obj.get("category"),
            icon=obj.get("icon"),
            updated_at=int(updated_at) if updated_at is not None else None,
        )


# ── Settings ─────────────────────────────────────────────────────────


@dataclass
class S3Config:
    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    bucket: str = ""
    region: str = "us-east-1"

    def to_dict(self) -> Dict[str, str]:
        return {
            "endpoint": self.endpoint,
            "accessKey": self.access_key,
            "secretKey": self.secret_key,
            "bucket": self.bucket,
            "region": self.region,
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "S3Config":
        defaults = cls()
        return cls(
            endpoint=obj.get("endpoint", defaults.endpoint),
            access_key=obj.get("accessKey", defaults.access_key),
            secret_key=obj.get("secretKey", defaults.secret_key),
            bucket=obj.get("bucket", defaults.bucket),
            region=obj.get("region", defaults.region),
        )


@dataclass
class NostrConfig:
    relays: List[str] = field(default_factory=lambda: ["wss://relay.damus.io"])
    public_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"relays": list(self.relays)}
        if self.public_key is not None:
            data["publicKey"] = self.public_key
        return data

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "NostrConfig":
        relays = obj.get("relays")
        return cls(
            relays=list(relays) if relays is not None else cls().relays,
            public_key=obj.get("publicKey"),
        )


@dataclass
class Settings:
    """Per-vault preferences, stored encrypted alongside the accounts."""

    theme: str = Theme.SYSTEM.value
    sync_method: str = SyncMethod.OFFLINE.value
    auto_reveal: bool = True
    show_next_code: bool = False
    auto_lock_duration: int = DEFAULT_AUTO_LOCK_SECONDS
    s3_config: Optional[S3Config] = field(default_factory=S3Config)
    nostr_config: Optional[NostrConfig] = field(default_factory=NostrConfig)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "theme": self.theme,
            "syncMethod": self.sync_method,
            "autoReveal": self.auto_reveal,
            "showNextCode": self.show_next_code,
            "autoLockDuration": self.auto_lock_duration,
        }
        if self.s3_config is not None:
            data["s3Config"] = self.s3_config.to_dict()
        if self.nostr_config is not None:
            data["nostrConfig"] = self.nostr_config.to_dict()
        return data

    @classmethod
    def from_dict(cls, obj: Optional[Dict[str, Any]]) -> "Settings":
        """Overlay stored settings on the defaults.

        Vaults written before themes existed carry a ``darkMode`` boolean;
        it is migrated into ``theme`` and dropped.
        """
        obj = dict(obj or {})
        defaults = cls()

        theme = obj.get("theme", defaults.theme)
        if "darkMode" in obj:
            theme = Theme.DARK.value if obj.pop("darkMode") else Theme.LIGHT.value

        s3 = obj.get("s3Config")
        nostr = obj.get("nostrConfig")
        auto_lock = obj.get("autoLockDuration")
        return cls(
            theme=theme,
            sync_method=obj.get("syncMethod", defaults.sync_method),
            auto_reveal=bool(obj.get("autoReveal", defaults.auto_reveal)),
            show_next_code=bool(obj.get("showNextCode", defaults.show_next_code)),
            auto_lock_duration=(
                int(auto_lock) if auto_lock is not None else defaults.auto_lock_duration
            ),
            s3_config=S3Config.from_dict(s3) if isinstance(s3, dict) else defaults.s3_config,
            nostr_config=(
                NostrConfig.from_dict(nostr) if isinstance(nostr, dict) else defaults.nostr_config
            ),
        )


# ── Vault ────────────────────────────────────────────────────────────


@dataclass
class Vault:
    """The unit of encryption and of synchronization."""

    accounts: List[Account] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)

    def find(self, account_id: str) -> Optional[Account]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": [a.to_dict() for a in self.accounts],
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, obj: Any) -> "Vault":
        """Build a vault from its serialized form.

        Raises:
            ValueError: If the object is not a vault document.
        """
        if not isinstance(obj, dict) or not isinstance(obj.get("accounts"), list):
            raise ValueError("Not a vault document: missing accounts list")
        settings = obj.get("settings")
        return cls(
            accounts=[Account.from_dict(a) for a in obj["accounts"]],
            settings=Settings.from_dict(settings if isinstance(settings, dict) else None),
        )


# ── Listing ──────────────────────────────────────────────────────────


def group_accounts(accounts: List[Account], search: str = "") -> Dict[str, List[Account]]:
    """Filter accounts by a search term and group them by category.

    Matching is a case-insensitive substring test over issuer, label and
    category. Categories come back alphabetically with ``Uncategorized``
    last; accounts keep their vault order inside each group.
    """
    needle = search.lower()
    groups: Dict[str, List[Account]] = {}
    for account in accounts:
        haystacks = (account.issuer, account.label, account.category or "")
        if needle and not any(needle in h.lower() for h in haystacks):
            continue
        groups.setdefault(account.category or UNCATEGORIZED, []).append(account)

    ordered = sorted(groups, key=lambda c: (c == UNCATEGORIZED, c.lower()))
    return {category: groups[category] for category in ordered}
