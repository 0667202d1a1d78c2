"""One-time code generation (RFC 4226 HOTP over an RFC 6238 time counter).

Pure functions: given an account, a window offset and a point in time,
the result is fully determined. Nothing here keeps state, so previewing
the next window (``window_offset=1``) has no side effects.

HMAC and dynamic truncation come from ``pyotp``. The time step is computed
here from a plain Unix timestamp so results never depend on the local
timezone.
"""

import base64
import binascii
import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

import pyotp

from ..exceptions import InvalidSecret
from ..models import Account, DEFAULT_DIGITS, DEFAULT_PERIOD, HashAlgorithm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OTPCode:
    """A generated code and the time left in the current window."""

    code: str
    period: int
    seconds_remaining: int


def normalize_secret(secret: str) -> str:
    """Canonical base32 text: no spacing or dashes, upper case, padded.

    Raises:
        InvalidSecret: If the text is not base32 or decodes to nothing.
    """
    cleaned = "".join(secret.split()).replace("-", "").upper().rstrip("=")
    if not cleaned:
        raise InvalidSecret("Empty secret")
    padded = cleaned + "=" * (-len(cleaned) % 8)
    try:
        key = base64.b32decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSecret("Secret is not valid base32") from exc
    if not key:
        raise InvalidSecret("Secret decodes to zero bytes")
    return padded


def decode_secret(secret: str) -> bytes:
    """Raw key bytes of a base32 secret (see normalize_secret)."""
    return base64.b32decode(normalize_secret(secret))


def hotp(secret: str, counter: int, digits: int = DEFAULT_DIGITS,
         algorithm: HashAlgorithm = HashAlgorithm.SHA1) -> str:
    """RFC 4226 HOTP value for ``counter``, zero-padded to ``digits``.

    Raises:
        InvalidSecret: If ``secret`` is not base32
        ValueError: If pyotp rejects the digit count
    """
    otp = pyotp.HOTP(
        normalize_secret(secret),
        digits=digits,
        digest=getattr(hashlib, algorithm.digestmod),
    )
    return otp.at(counter)


def time_counter(now: float, period: int, window_offset: int = 0) -> int:
    """Time step for ``now``, shifted by ``window_offset`` whole periods."""
    return math.floor((now + window_offset * period) / period)


def seconds_remaining(now: float, period: int) -> int:
    """Seconds left in the window containing ``now``."""
    return period - (math.floor(now) % period)


def generate(account: Account, window_offset: int = 0,
             now: Optional[float] = None) -> Optional[OTPCode]:
    """Generate the code for ``account`` at ``now`` (default: current time).

    Returns None (not an error) when the account has no secret or the
    secret/algorithm cannot be used.

    Args:
        account: Account carrying the secret and code parameters
        window_offset: 0 for the current window, 1 to preview the next
        now: Unix time in seconds

    Returns:
        OTPCode, or None if no code can be produced
    """
    if not account.secret:
        return None

    if now is None:
        now = time.time()
    period = account.period or DEFAULT_PERIOD
    digits = account.digits or DEFAULT_DIGITS

    try:
        algorithm = HashAlgorithm.parse(account.algorithm)
        code = hotp(account.secret, time_counter(now, period, window_offset), digits, algorithm)
    except InvalidSecret:
        logger.debug("Skipping code for account %s: invalid secret", account.id)
        return None
    except ValueError:
        logger.debug("Skipping code for account %s: unsupported algorithm or digits", account.id)
        return None

    return OTPCode(
        code=code,
        period=period,
        seconds_remaining=seconds_remaining(now, period),
    )
