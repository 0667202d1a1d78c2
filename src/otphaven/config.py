# otphaven Configuration
#
# Process-level settings come from the environment, optionally seeded from
# a .env file. Per-vault preferences (theme, auto-lock ...) are NOT here:
# they live inside the encrypted vault (see models.Settings).

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.otphaven"
DEFAULT_RELAY_URL = "ws://127.0.0.1:9443"
STORE_FILENAME = "vault.db"

# Fixed internal key used when passphrase entry is disabled
PUBLIC_PIN = "0000000000"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AppConfig:
    """Resolved process configuration."""

    data_dir: Path
    log_dir: Path
    relay_url: str = DEFAULT_RELAY_URL
    disable_pin: bool = False
    login_message: str = ""

    @property
    def store_path(self) -> Path:
        return self.data_dir / STORE_FILENAME


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """Build the configuration from .env and environment variables.

    Variables already present in the environment win over the .env file.
    """
    load_dotenv(env_file, override=False)

    data_dir = Path(os.environ.get("OTPHAVEN_DATA_DIR", DEFAULT_DATA_DIR)).expanduser()
    log_dir = os.environ.get("OTPHAVEN_LOG_DIR")
    config = AppConfig(
        data_dir=data_dir,
        log_dir=Path(log_dir).expanduser() if log_dir else data_dir / "audit_logs",
        relay_url=os.environ.get("OTPHAVEN_RELAY_URL", DEFAULT_RELAY_URL).rstrip("/"),
        disable_pin=os.environ.get("OTPHAVEN_DISABLE_PIN", "").strip().lower() in _TRUTHY,
        login_message=os.environ.get("OTPHAVEN_LOGIN_MESSAGE", "").replace("\\n", "\n"),
    )
    logger.debug("Loaded config: data_dir=%s relay=%s", config.data_dir, config.relay_url)
    return config
