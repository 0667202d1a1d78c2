# Tests for the vault envelope codec
#
# Coverage:
#   - v2 envelope shape and encode/decode
#   - Fresh salt/IV on every encode
#   - Wrong passphrase and tampering are one opaque failure
#   - Version dispatch: unknown versions, legacy OpenSSL-format ciphertext
#   - Key derivation parameters

import base64
import json
import os

import pytest

from otphaven.exceptions import UnknownEnvelopeVersion, WrongPassphraseOrCorrupt
from otphaven.models import Account, Settings, Vault
from otphaven.vault.codec import CurrentEnvelope, LegacyEnvelope, VaultCodec


def _sample_vault() -> Vault:
    return Vault(
        accounts=[
            Account(id="a1", issuer="GitHub", label="alice", secret="JBSWY3DPEHPK3PXP",
                    updated_at=1700000000000),
            Account(id="a2", issuer="Bank", label="bob", password="hunter2",
                    category="Finance", updated_at=1700000000001),
        ],
        settings=Settings(auto_lock_duration=120),
    )


def _legacy_ciphertext(vault: Vault, passphrase: str) -> str:
    """Build an OpenSSL "Salted__" ciphertext the way older writers did."""
    salt = os.urandom(8)
    key, iv = VaultCodec._legacy_key_iv(passphrase, salt)
    body = VaultCodec._encrypt_cbc(VaultCodec.serialize(vault), key, iv)
    return base64.b64encode(b"Salted__" + salt + body).decode("ascii")


# ── Current envelope ─────────────────────────────────────────────────


class TestCurrentEnvelope:
    def test_envelope_shape(self):
        text = VaultCodec.encode(_sample_vault(), "pass")
        obj = json.loads(text)
        assert set(obj) == {"v", "s", "iv", "ct"}
        assert obj["v"] == 2
        assert len(bytes.fromhex(obj["s"])) == 16
        assert len(bytes.fromhex(obj["iv"])) == 16
        assert len(base64.b64decode(obj["ct"])) % 16 == 0

    def test_compact_json(self):
        text = VaultCodec.encode(_sample_vault(), "pass")
        assert " " not in text

    def test_decode_restores_vault(self):
        vault = _sample_vault()
        assert VaultCodec.decode(VaultCodec.encode(vault, "pass"), "pass") == vault

    def test_fresh_salt_and_iv_each_time(self):
        vault = _sample_vault()
        first = VaultCodec.encrypt(vault, "pass")
        second = VaultCodec.encrypt(vault, "pass")
        assert first.salt != second.salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_empty_vault(self):
        vault = Vault()
        assert VaultCodec.decode(VaultCodec.encode(vault, "pin0"), "pin0") == vault

    def test_unicode_content(self):
        vault = Vault(accounts=[Account(id="u", issuer="Müller & Söhne", label="ユーザー")])
        assert VaultCodec.decode(VaultCodec.encode(vault, "pässword"), "pässword") == vault


# ── Failures ─────────────────────────────────────────────────────────


class TestSealedFailure:
    def test_wrong_passphrase(self):
        text = VaultCodec.encode(_sample_vault(), "right")
        with pytest.raises(WrongPassphraseOrCorrupt, match="Incorrect passphrase"):
            VaultCodec.decode(text, "wrong")

    def test_tampered_ciphertext(self):
        obj = json.loads(VaultCodec.encode(_sample_vault(), "pass"))
        raw = bytearray(base64.b64decode(obj["ct"]))
        raw[-1] ^= 0xFF
        obj["ct"] = base64.b64encode(bytes(raw)).decode()
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(json.dumps(obj), "pass")

    def test_truncated_ciphertext(self):
        obj = json.loads(VaultCodec.encode(_sample_vault(), "pass"))
        obj["ct"] = base64.b64encode(base64.b64decode(obj["ct"])[:-3]).decode()
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(json.dumps(obj), "pass")

    def test_bad_hex_salt(self):
        obj = json.loads(VaultCodec.encode(_sample_vault(), "pass"))
        obj["s"] = "zz"
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(json.dumps(obj), "pass")

    def test_missing_field(self):
        obj = json.loads(VaultCodec.encode(_sample_vault(), "pass"))
        del obj["iv"]
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(json.dumps(obj), "pass")

    def test_plaintext_not_a_vault(self):
        salt, iv = os.urandom(16), os.urandom(16)
        key = VaultCodec.derive_key("pass", salt)
        ct = VaultCodec._encrypt_cbc(b'{"hello": "world"}', key, iv)
        envelope = CurrentEnvelope(salt=salt, iv=iv, ciphertext=ct)
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(envelope.to_json(), "pass")

    def test_plaintext_with_out_of_range_number(self):
        salt, iv = os.urandom(16), os.urandom(16)
        key = VaultCodec.derive_key("pass", salt)
        plaintext = b'{"accounts": [{"id": "a", "period": 1e999}], "settings": {}}'
        ct = VaultCodec._encrypt_cbc(plaintext, key, iv)
        envelope = CurrentEnvelope(salt=salt, iv=iv, ciphertext=ct)
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(envelope.to_json(), "pass")


# ── Version dispatch ─────────────────────────────────────────────────


class TestVersionDispatch:
    def test_parse_current(self):
        text = VaultCodec.encode(_sample_vault(), "pass")
        assert isinstance(VaultCodec.parse_envelope(text), CurrentEnvelope)

    def test_unknown_version(self):
        with pytest.raises(UnknownEnvelopeVersion) as exc_info:
            VaultCodec.parse_envelope(json.dumps({"v": 3, "s": "", "iv": "", "ct": ""}))
        assert exc_info.value.version == 3

    def test_json_object_without_version(self):
        with pytest.raises(UnknownEnvelopeVersion):
            VaultCodec.parse_envelope(json.dumps({"accounts": []}))

    def test_non_json_is_legacy(self):
        envelope = VaultCodec.parse_envelope("U2FsdGVkX1+abc")
        assert isinstance(envelope, LegacyEnvelope)
        assert envelope.ciphertext == "U2FsdGVkX1+abc"

    def test_legacy_decode(self):
        vault = _sample_vault()
        text = _legacy_ciphertext(vault, "oldpass")
        assert VaultCodec.decode(text, "oldpass") == vault

    def test_legacy_wrong_passphrase(self):
        text = _legacy_ciphertext(_sample_vault(), "oldpass")
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(text, "nope")

    def test_legacy_without_salt_header(self):
        text = base64.b64encode(b"x" * 32).decode()
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode(text, "pass")

    def test_garbage_text(self):
        with pytest.raises(WrongPassphraseOrCorrupt):
            VaultCodec.decode("definitely not a vault", "pass")

    def test_encode_after_legacy_is_current(self):
        vault = VaultCodec.decode(_legacy_ciphertext(_sample_vault(), "p"), "p")
        upgraded = VaultCodec.encode(vault, "p")
        assert json.loads(upgraded)["v"] == 2


# ── Key derivation ───────────────────────────────────────────────────


class TestKeyDerivation:
    def test_parameters(self):
        assert VaultCodec.PBKDF2_ITERATIONS == 10_000
        assert VaultCodec.KEY_LENGTH == 32

    def test_deterministic(self):
        salt = b"\x01" * 16
        assert VaultCodec.derive_key("pass", salt) == VaultCodec.derive_key("pass", salt)

    def test_matches_hashlib_pbkdf2(self):
        import hashlib

        salt = b"\x02" * 16
        expected = hashlib.pbkdf2_hmac("sha1", b"pass", salt, 10_000, dklen=32)
        assert VaultCodec.derive_key("pass", salt) == expected

    def test_salt_matters(self):
        assert VaultCodec.derive_key("pass", b"\x00" * 16) != VaultCodec.derive_key("pass", b"\x01" * 16)
