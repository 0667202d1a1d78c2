"""otpauth:// URI parsing and rendering (QR codes and manual entry).

    otpauth://totp/LABEL?secret=BASE32&issuer=NAME&algorithm=SHA1&digits=6&period=30

LABEL may embed ``issuer:username``. An issuer embedded in the label wins
over the ``issuer`` query parameter.
"""

import logging
import uuid
from typing import Optional
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse

from ..exceptions import InvalidMigrationUri
from ..models import Account, DEFAULT_DIGITS, DEFAULT_PERIOD, HashAlgorithm

logger = logging.getLogger(__name__)

SCHEME = "otpauth"
SUPPORTED_TYPES = {"totp"}
DEFAULT_ISSUER = "Unknown"
DEFAULT_LABEL = "Account"


def _param(params: dict, name: str) -> Optional[str]:
    values = params.get(name)
    return values[0].strip() if values else None


def _positive_int(value: Optional[str], default: int, name: str) -> int:
    if not value:
        return default
    try:
        number = int(value)
    except ValueError as exc:
        raise InvalidMigrationUri(f"Invalid {name}: {value!r}") from exc
    if number <= 0:
        raise InvalidMigrationUri(f"Invalid {name}: {value!r}")
    return number


def parse_uri(uri: str, account_id: Optional[str] = None) -> Account:
    """Parse an otpauth URI into a new, unsaved account.

    Args:
        uri: The otpauth:// URI
        account_id: Id for the new account (default: random UUID)

    Returns:
        Account without ``updated_at`` (the vault stamps it on save)

    Raises:
        InvalidMigrationUri: Wrong scheme/type, missing secret, bad params.
    """
    try:
        parsed = urlparse(uri.strip())
    except (AttributeError, ValueError) as exc:
        raise InvalidMigrationUri("Unparseable URI") from exc

    if parsed.scheme.lower() != SCHEME:
        raise InvalidMigrationUri(f"Not an {SCHEME} URI")
    if parsed.netloc.lower() not in SUPPORTED_TYPES:
        raise InvalidMigrationUri(f"Unsupported OTP type: {parsed.netloc!r}")

    params = parse_qs(parsed.query)
    secret = _param(params, "secret")
    if not secret:
        raise InvalidMigrationUri("URI has no secret")

    label = unquote(parsed.path.lstrip("/")).strip()
    issuer = _param(params, "issuer") or ""
    if ":" in label:
        embedded, label = label.split(":", 1)
        issuer = embedded.strip()
        label = label.strip()

    try:
        algorithm = HashAlgorithm.parse(_param(params, "algorithm"))
    except ValueError as exc:
        raise InvalidMigrationUri("Unsupported algorithm") from exc

    return Account(
        id=account_id or str(uuid.uuid4()),
        secret=secret.replace(" ", "").upper(),
        issuer=issuer or DEFAULT_ISSUER,
        label=label or DEFAULT_LABEL,
        algorithm=algorithm.value,
        digits=_positive_int(_param(params, "digits"), DEFAULT_DIGITS, "digits"),
        period=_positive_int(_param(params, "period"), DEFAULT_PERIOD, "period"),
    )


def build_uri(account: Account) -> str:
    """Render an account as an otpauth URI.

    Raises:
        InvalidMigrationUri: If the account has no secret.
    """
    if not account.secret:
        raise InvalidMigrationUri("Account has no secret")

    label = f"{account.issuer}:{account.label}" if account.issuer else account.label
    query = {
        "secret": account.secret,
        "algorithm": account.algorithm,
        "digits": account.digits,
        "period": account.period,
    }
    if account.issuer:
        query["issuer"] = account.issuer
    return f"{SCHEME}://totp/{quote(label, safe=':@')}?{urlencode(query, quote_via=quote)}"
