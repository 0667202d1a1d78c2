"""Tests for otpauth:// URI parsing and rendering."""

import pytest

from otphaven.exceptions import InvalidMigrationUri
from otphaven.models import Account
from otphaven.totp import build_uri, parse_uri


class TestParseUri:
    def test_full_uri(self):
        account = parse_uri(
            "otpauth://totp/ACME%20Co:john@example.com"
            "?secret=HXDMVJECJJWSRB3HWIZR4IFUGFTMXBOZ&issuer=ACME%20Co"
            "&algorithm=SHA256&digits=8&period=60",
            account_id="fixed",
        )
        assert account.id == "fixed"
        assert account.issuer == "ACME Co"
        assert account.label == "john@example.com"
        assert account.secret == "HXDMVJECJJWSRB3HWIZR4IFUGFTMXBOZ"
        assert account.algorithm == "SHA256"
        assert account.digits == 8
        assert account.period == 60
        assert account.updated_at is None

    def test_defaults(self):
        account = parse_uri("otpauth://totp/?secret=JBSWY3DPEHPK3PXP")
        assert account.issuer == "Unknown"
        assert account.label == "Account"
        assert account.algorithm == "SHA1"
        assert account.digits == 6
        assert account.period == 30

    def test_random_id_when_not_given(self):
        first = parse_uri("otpauth://totp/x?secret=JBSWY3DPEHPK3PXP")
        second = parse_uri("otpauth://totp/x?secret=JBSWY3DPEHPK3PXP")
        assert first.id and second.id
        assert first.id != second.id

    def test_label_issuer_wins_over_query(self):
        account = parse_uri("otpauth://totp/GitHub:alice?secret=JBSWY3DPEHPK3PXP&issuer=Other")
        assert account.issuer == "GitHub"
        assert account.label == "alice"

    def test_query_issuer_when_label_has_none(self):
        account = parse_uri("otpauth://totp/alice?secret=JBSWY3DPEHPK3PXP&issuer=GitLab")
        assert account.issuer == "GitLab"
        assert account.label == "alice"

    def test_secret_normalized(self):
        account = parse_uri("otpauth://totp/a?secret=jbsw%20y3dp%20ehpk%203pxp")
        assert account.secret == "JBSWY3DPEHPK3PXP"

    def test_case_insensitive_scheme_and_type(self):
        account = parse_uri("OTPAUTH://TOTP/a?secret=JBSWY3DPEHPK3PXP")
        assert account.secret == "JBSWY3DPEHPK3PXP"


class TestParseUriErrors:
    @pytest.mark.parametrize("uri", [
        "otpauth://totp/alice?issuer=GitHub",
        "otpauth://totp/alice?secret=",
        "https://totp/alice?secret=JBSWY3DPEHPK3PXP",
        "otpauth://hotp/alice?secret=JBSWY3DPEHPK3PXP&counter=1",
        "otpauth://totp/alice?secret=JBSWY3DPEHPK3PXP&algorithm=MD5",
        "otpauth://totp/alice?secret=JBSWY3DPEHPK3PXP&digits=0",
        "otpauth://totp/alice?secret=JBSWY3DPEHPK3PXP&period=abc",
        "not a uri at all",
    ])
    def test_rejected(self, uri):
        with pytest.raises(InvalidMigrationUri):
            parse_uri(uri)

    def test_missing_secret_message(self):
        with pytest.raises(InvalidMigrationUri, match="no secret"):
            parse_uri("otpauth://totp/alice")


class TestBuildUri:
    def test_parse_of_built_uri(self):
        original = Account(
            id="x", issuer="ACME Co", label="john@example.com",
            secret="JBSWY3DPEHPK3PXP", algorithm="SHA512", digits=8, period=60,
        )
        parsed = parse_uri(build_uri(original), account_id="x")
        assert parsed == original

    def test_uri_shape(self):
        uri = build_uri(Account(id="x", issuer="GitHub", label="alice", secret="JBSWY3DPEHPK3PXP"))
        assert uri.startswith("otpauth://totp/GitHub:alice?")
        assert "secret=JBSWY3DPEHPK3PXP" in uri
        assert "issuer=GitHub" in uri

    def test_no_secret(self):
        with pytest.raises(InvalidMigrationUri):
            build_uri(Account(id="x", password="pw"))
