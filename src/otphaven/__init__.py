"""otphaven - local-first TOTP vault with device-to-device sync."""

__version__ = "0.1.0"
