"""
otphaven Exception Classes
"""


class OtphavenError(Exception):
    """Base exception for vault, code and sync operations"""
    pass


class WrongPassphraseOrCorrupt(OtphavenError):
    """Raised when an envelope cannot be decrypted or parsed.

    Wrong passphrase and corrupted data are deliberately indistinguishable.
    """

    def __init__(self, message: str = "Incorrect passphrase or corrupted data"):
        super().__init__(message)


class UnknownEnvelopeVersion(OtphavenError):
    """Raised when an envelope declares a version this reader does not know"""

    def __init__(self, version):
        self.version = version
        super().__init__(f"Unknown vault version: {version!r}")


class InvalidMigrationUri(OtphavenError):
    """Raised when an otpauth:// URI is malformed or has no secret"""
    pass


class InvalidSecret(OtphavenError):
    """Raised when a shared secret is not valid base32"""
    pass


class PeerIdCollision(OtphavenError):
    """Raised when no free pairing code was found within the retry budget"""
    pass


class TransportError(OtphavenError):
    """Raised when the peer transport fails; terminal for the session"""
    pass


class StorageQuotaExceeded(OtphavenError):
    """Raised when storage headroom is too low to create a new account"""
    pass


class VaultLocked(OtphavenError):
    """Raised when an operation needs an unlocked vault"""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class UnlockThrottled(OtphavenError):
    """Raised when an unlock is attempted during the failure lockout"""

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Too many failed attempts. Please wait {remaining_seconds} seconds."
        )


class BackupPasswordRequired(OtphavenError):
    """Raised when an encrypted backup is imported without a password"""
    pass


class VaultNotFound(OtphavenError):
    """Raised when unlocking and nothing is stored yet"""
    pass


class VaultExists(OtphavenError):
    """Raised when creating a vault over an existing one"""
    pass
