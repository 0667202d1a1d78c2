"""One-time codes: generation and otpauth:// URIs."""

from .generator import OTPCode, decode_secret, generate, hotp, normalize_secret
from .uri import build_uri, parse_uri

__all__ = [
    "OTPCode", "decode_secret", "generate", "hotp", "normalize_secret",
    "build_uri", "parse_uri",
]
