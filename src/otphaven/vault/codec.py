# otphaven Vault - Envelope Codec
#
# Passphrase → PBKDF2-HMAC-SHA1 (10k iterations) → AES-256-CBC key
# Vault JSON → AES-256-CBC (PKCS#7) → versioned envelope
#
# Envelope versions are a tagged variant:
#   CurrentEnvelope (v2): {"v":2,"s":"<hex salt>","iv":"<hex iv>","ct":"<base64>"}
#   LegacyEnvelope:       bare OpenSSL-format base64 ciphertext, passphrase
#                         used directly as key material (read-only)
#
# decode() accepts both; encode() only ever emits the current version, so
# a legacy vault is upgraded by the next save.

import base64
import binascii
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from typing import Union

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import UnknownEnvelopeVersion, WrongPassphraseOrCorrupt
from ..models import Vault

logger = logging.getLogger(__name__)

CURRENT_VERSION = 2

# Legacy OpenSSL "Salted__" container
_LEGACY_MAGIC = b"Salted__"
_LEGACY_SALT_LENGTH = 8


@dataclass(frozen=True)
class CurrentEnvelope:
    """Version 2 envelope: random salt + IV, PBKDF2-derived key."""

    salt: bytes
    iv: bytes
    ciphertext: bytes
    version: int = CURRENT_VERSION

    def to_json(self) -> str:
        return json.dumps(
            {
                "v": self.version,
                "s": self.salt.hex(),
                "iv": self.iv.hex(),
                "ct": base64.b64encode(self.ciphertext).decode("ascii"),
            },
            separators=(",", ":"),
        )


@dataclass(frozen=True)
class LegacyEnvelope:
    """Deprecated envelope: a bare passphrase-encrypted ciphertext string."""

    ciphertext: str


Envelope = Union[CurrentEnvelope, LegacyEnvelope]


class VaultCodec:
    """
    Encrypts and decrypts vault documents to and from envelopes.

    Flow:
    1. Fresh 128-bit salt and 128-bit IV per encode
    2. PBKDF2-HMAC-SHA1 derives a 256-bit key from passphrase + salt
    3. AES-256-CBC encrypts the compact JSON form of the vault
    4. Decode failures of any kind surface as WrongPassphraseOrCorrupt
    """

    PBKDF2_ITERATIONS = 10_000
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16  # 128-bit salt
    IV_LENGTH = 16  # 128-bit IV (AES block size)

    # ── Key derivation ───────────────────────────────────────────────

    @staticmethod
    def derive_key(passphrase: str, salt: bytes) -> bytes:
        """Derive the 256-bit envelope key from passphrase and salt."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA1(),
            length=VaultCodec.KEY_LENGTH,
            salt=salt,
            iterations=VaultCodec.PBKDF2_ITERATIONS,
            backend=default_backend()
        )
        return kdf.derive(passphrase.encode("utf-8"))

    @staticmethod
    def _legacy_key_iv(passphrase: str, salt: bytes):
        """OpenSSL EVP_BytesToKey (MD5, one round) key + IV derivation."""
        material = b""
        block = b""
        secret = passphrase.encode("utf-8")
        while len(material) < VaultCodec.KEY_LENGTH + VaultCodec.IV_LENGTH:
            block = hashlib.md5(block + secret + salt).digest()
            material += block
        return material[:VaultCodec.KEY_LENGTH], material[VaultCodec.KEY_LENGTH:VaultCodec.KEY_LENGTH + VaultCodec.IV_LENGTH]

    # ── Cipher primitives ────────────────────────────────────────────

    @staticmethod
    def _encrypt_cbc(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    @staticmethod
    def _decrypt_cbc(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
        """Raises ValueError on bad length or padding."""
        if not ciphertext or len(ciphertext) % VaultCodec.IV_LENGTH:
            raise ValueError("Ciphertext is not a whole number of blocks")
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()

    # ── Envelope parsing ─────────────────────────────────────────────

    @staticmethod
    def parse_envelope(text: str) -> Envelope:
        """
        Classify stored text as a current or legacy envelope.

        Raises:
            UnknownEnvelopeVersion: JSON wrapper with an unsupported version
            WrongPassphraseOrCorrupt: v2 wrapper with unusable fields
        """
        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return LegacyEnvelope(ciphertext=text.strip())

        if not isinstance(payload, dict):
            return LegacyEnvelope(ciphertext=text.strip())

        version = payload.get("v")
        if version != CURRENT_VERSION:
            raise UnknownEnvelopeVersion(version)

        try:
            return CurrentEnvelope(
                salt=bytes.fromhex(payload["s"]),
                iv=bytes.fromhex(payload["iv"]),
                ciphertext=base64.b64decode(payload["ct"], validate=True),
            )
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise WrongPassphraseOrCorrupt() from exc

    # ── Public API ───────────────────────────────────────────────────

    @staticmethod
    def serialize(vault: Vault) -> bytes:
        """Canonical text form of a vault (compact JSON, UTF-8)."""
        return json.dumps(vault.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @staticmethod
    def encrypt(vault: Vault, passphrase: str) -> CurrentEnvelope:
        """Encrypt a vault into a fresh v2 envelope (new salt and IV each call)."""
        salt = os.urandom(VaultCodec.SALT_LENGTH)
        iv = os.urandom(VaultCodec.IV_LENGTH)
        key = VaultCodec.derive_key(passphrase, salt)
        ciphertext = VaultCodec._encrypt_cbc(VaultCodec.serialize(vault), key, iv)
        return CurrentEnvelope(salt=salt, iv=iv, ciphertext=ciphertext)

    @staticmethod
    def encode(vault: Vault, passphrase: str) -> str:
        """Encrypt a vault and return the envelope JSON text."""
        return VaultCodec.encrypt(vault, passphrase).to_json()

    @staticmethod
    def decrypt(envelope: Envelope, passphrase: str) -> Vault:
        """
        Decrypt an already-parsed envelope.

        Raises:
            WrongPassphraseOrCorrupt: Wrong passphrase or damaged data
        """
        try:
            if isinstance(envelope, CurrentEnvelope):
                key = VaultCodec.derive_key(passphrase, envelope.salt)
                plaintext = VaultCodec._decrypt_cbc(envelope.ciphertext, key, envelope.iv)
            else:
                plaintext = VaultCodec._decrypt_legacy(envelope.ciphertext, passphrase)
            return Vault.from_dict(json.loads(plaintext.decode("utf-8")))
        except (ValueError, TypeError, OverflowError, binascii.Error) as exc:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors
            raise WrongPassphraseOrCorrupt() from exc

    @staticmethod
    def decode(text: str, passphrase: str) -> Vault:
        """
        Decrypt envelope text produced by encode() or by a legacy writer.

        Raises:
            UnknownEnvelopeVersion: Wrapper with an unsupported version
            WrongPassphraseOrCorrupt: Wrong passphrase or damaged data
        """
        envelope = VaultCodec.parse_envelope(text)
        if isinstance(envelope, LegacyEnvelope):
            logger.warning("Detected legacy vault format; it will be upgraded on next save")
        return VaultCodec.decrypt(envelope, passphrase)

    @staticmethod
    def _decrypt_legacy(ciphertext: str, passphrase: str) -> bytes:
        raw = base64.b64decode(ciphertext, validate=True)
        if not raw.startswith(_LEGACY_MAGIC):
            raise ValueError("Legacy ciphertext lacks salt header")
        salt = raw[len(_LEGACY_MAGIC):len(_LEGACY_MAGIC) + _LEGACY_SALT_LENGTH]
        body = raw[len(_LEGACY_MAGIC) + _LEGACY_SALT_LENGTH:]
        key, iv = VaultCodec._legacy_key_iv(passphrase, salt)
        plaintext = VaultCodec._decrypt_cbc(body, key, iv)
        if not plaintext:
            raise ValueError("Empty legacy plaintext")
        return plaintext
