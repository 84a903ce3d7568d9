import os
from pathlib import Path
import toml
from dotenv import load_dotenv
from typing import Dict, Any, Optional

from reprovision.src.core.errors import ConfigError

DEFAULT_ANISETTE_URL = "http://localhost:6969"
DEFAULT_SETTLE_TIMEOUT = 0.5


def get_config_dir() -> Path:
    """Return the directory holding configuration and the trust anchor."""
    env_dir = os.environ.get("REPROVISION_HOME")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".reprovision"


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.toml"


def load_config() -> Dict[str, Any]:
    """Load configuration from TOML file."""
    # .env values fill in anything not already exported
    load_dotenv()

    config_path = get_config_path()
    if not config_path.exists():
        return {}

    try:
        return toml.load(config_path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigError(f"Failed to load config {config_path}: {e}") from e


def get_apple_credentials() -> Dict[str, Optional[str]]:
    """Get Apple credentials from environment or config."""
    apple_config = load_config().get("apple", {})

    credentials = {
        "apple_id": os.environ.get("APPLE_ID") or apple_config.get("apple_id"),
        "apple_password": os.environ.get("APPLE_PASSWORD")
        or apple_config.get("apple_password"),
    }

    if not credentials["apple_id"]:
        raise ConfigError(
            f"Apple ID not found. Set APPLE_ID or add an [apple] section with apple_id to {get_config_path()}"
        )

    return credentials


def get_trust_anchor_path() -> Path:
    """Get the root certificate PEM used to extend signing identities."""
    env_path = os.environ.get("REPROVISION_TRUST_ANCHOR")
    if env_path:
        return Path(env_path).expanduser()

    signing_config = load_config().get("signing", {})
    if anchor := signing_config.get("trust_anchor"):
        return Path(anchor).expanduser()

    return get_config_dir() / "apple.pem"


def get_settle_timeout() -> float:
    """Seconds to wait for the signing engine to flush its output."""
    value = load_config().get("signing", {}).get("settle_timeout", DEFAULT_SETTLE_TIMEOUT)
    try:
        timeout = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"signing.settle_timeout must be a number, got {value!r}") from e
    if timeout < 0:
        raise ConfigError("signing.settle_timeout must not be negative")
    return timeout


def get_anisette_url() -> str:
    """Get the anisette server URL from environment or config."""
    env_url = os.environ.get("REPROVISION_ANISETTE_URL")
    if env_url:
        return env_url
    return load_config().get("anisette", {}).get("url", DEFAULT_ANISETTE_URL)


def get_tool_path(name: str) -> str:
    """Get the executable configured for an external tool (ldid, ideviceinstaller)."""
    return load_config().get("tools", {}).get(name, name)


def is_non_interactive() -> bool:
    return bool(os.environ.get("NON_INTERACTIVE"))
