"""Tests for one-time code generation.

RFC 4226 appendix D and RFC 6238 appendix B vectors, window offsets,
countdown, and the "no code" cases.
"""

import pytest

from otphaven.exceptions import InvalidSecret
from otphaven.models import Account, HashAlgorithm
from otphaven.totp import OTPCode, decode_secret, generate, hotp
from otphaven.totp.generator import normalize_secret, seconds_remaining, time_counter

# ASCII "12345678901234567890" and its 32/64-byte extensions, base32 encoded
RFC_SECRET_SHA1 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
RFC_SECRET_SHA256 = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQGEZA"
RFC_SECRET_SHA512 = "GEZDGNBVGY3TQOJQ" * 6 + "GEZDGNA"


def _account(secret=RFC_SECRET_SHA1, **kwargs):
    return Account(id="t", issuer="RFC", label="vector", secret=secret, **kwargs)


# ── HOTP ─────────────────────────────────────────────────────────────


class TestHOTP:
    @pytest.mark.parametrize("counter,expected", [
        (0, "755224"),
        (1, "287082"),
        (2, "359152"),
        (3, "969429"),
        (4, "338314"),
        (5, "254676"),
        (6, "287922"),
        (7, "162583"),
        (8, "399871"),
        (9, "520489"),
    ])
    def test_rfc4226_vectors(self, counter, expected):
        assert hotp(RFC_SECRET_SHA1, counter) == expected

    def test_zero_padding(self):
        code = hotp(RFC_SECRET_SHA1, 1111111109 // 30, digits=8)
        assert code == "07081804"
        assert len(code) == 8


# ── TOTP vectors ─────────────────────────────────────────────────────


class TestRFC6238Vectors:
    @pytest.mark.parametrize("now,expected", [
        (59, "94287082"),
        (1111111109, "07081804"),
        (1111111111, "14050471"),
        (1234567890, "89005924"),
        (2000000000, "69279037"),
        (20000000000, "65353130"),
    ])
    def test_sha1(self, now, expected):
        result = generate(_account(digits=8), now=now)
        assert result.code == expected

    @pytest.mark.parametrize("now,expected", [
        (59, "46119246"),
        (1111111109, "68084774"),
        (1111111111, "67062674"),
        (1234567890, "91819424"),
        (2000000000, "90698825"),
        (20000000000, "77737706"),
    ])
    def test_sha256(self, now, expected):
        result = generate(_account(RFC_SECRET_SHA256, algorithm="SHA256", digits=8), now=now)
        assert result.code == expected

    @pytest.mark.parametrize("now,expected", [
        (59, "90693936"),
        (1111111109, "25091201"),
        (1111111111, "99943326"),
        (1234567890, "93441116"),
        (2000000000, "38618901"),
        (20000000000, "47863826"),
    ])
    def test_sha512(self, now, expected):
        result = generate(_account(RFC_SECRET_SHA512, algorithm="SHA512", digits=8), now=now)
        assert result.code == expected

    def test_six_digit_sha1_at_59(self):
        result = generate(_account(), now=59)
        assert result == OTPCode(code="287082", period=30, seconds_remaining=1)


# ── Windows and countdown ────────────────────────────────────────────


class TestWindows:
    def test_next_window(self):
        # t=59 is counter 1; the next window is counter 2
        assert generate(_account(), window_offset=1, now=59).code == "359152"

    def test_next_window_equals_current_one_period_later(self):
        account = _account()
        assert (
            generate(account, window_offset=1, now=1000).code
            == generate(account, now=1030).code
        )

    def test_remaining_independent_of_offset(self):
        account = _account()
        assert generate(account, window_offset=1, now=59).seconds_remaining == 1

    def test_remaining_at_window_start(self):
        assert seconds_remaining(60, 30) == 30

    def test_remaining_fractional_time(self):
        assert seconds_remaining(59.9, 30) == 1

    def test_custom_period(self):
        result = generate(_account(period=60), now=59)
        assert result.period == 60
        assert result.seconds_remaining == 1
        assert time_counter(59, 60) == 0

    def test_pure(self):
        account = _account()
        assert generate(account, now=1234567890) == generate(account, now=1234567890)


# ── Secrets ──────────────────────────────────────────────────────────


class TestSecrets:
    def test_lowercase_and_spaces(self):
        messy = "gezd gnbv gy3t qojq gezd gnbv gy3t qojq"
        assert generate(_account(messy), now=59).code == "287082"

    def test_missing_padding(self):
        assert decode_secret("GEZA") == b"12"

    def test_normalize(self):
        assert normalize_secret(" jbsw-y3dp ") == "JBSWY3DP"
        assert normalize_secret("geza") == "GEZA===="

    def test_explicit_padding(self):
        assert decode_secret("GEZA====") == b"12"

    def test_invalid_base32(self):
        with pytest.raises(InvalidSecret):
            decode_secret("not-base32!!")

    def test_empty_secret(self):
        with pytest.raises(InvalidSecret):
            decode_secret("   ")


class TestNoCode:
    def test_no_secret(self):
        assert generate(Account(id="p", password="only-a-password"), now=59) is None

    def test_invalid_secret(self):
        assert generate(_account("!!!!"), now=59) is None

    def test_unsupported_algorithm(self):
        assert generate(_account(algorithm="MD5"), now=59) is None

    def test_too_many_digits(self):
        assert generate(_account(digits=12), now=59) is None


class TestHashAlgorithm:
    def test_parse_variants(self):
        assert HashAlgorithm.parse("sha256") is HashAlgorithm.SHA256
        assert HashAlgorithm.parse("SHA-512") is HashAlgorithm.SHA512
        assert HashAlgorithm.parse(None) is HashAlgorithm.SHA1
        assert HashAlgorithm.parse("") is HashAlgorithm.SHA1

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            HashAlgorithm.parse("MD5")
