"""
Client configuration for the ride booking coordinator.

Two values are required: the store URL and the store's anon key. They come
from the environment (a .env file is loaded first) and fall back to the
settings file written by `save_settings`. Missing values leave the
coordinator in disabled mode instead of failing.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_STORE_URL = "RIDESHARE_STORE_URL"
ENV_ANON_KEY = "RIDESHARE_STORE_ANON_KEY"
ENV_TIMEOUT = "RIDESHARE_TIMEOUT"

DEFAULT_SETTINGS_PATH = Path.home() / ".rideshare" / "settings.json"
DEFAULT_TIMEOUT = 15.0


@dataclass(frozen=True)
class StoreConfig:
    url: Optional[str] = None
    anon_key: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.anon_key)

    def api_url(self, path: str) -> str:
        return f"{self.url.rstrip('/')}/{path.lstrip('/')}"

    @property
    def feed_url(self) -> str:
        base = self.url.rstrip('/')
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/ws/feed/"


def clean_value(value: Optional[str]) -> Optional[str]:
    """Strip a configured value; blanks and template placeholders count as missing."""
    if value is None:
        return None
    value = str(value).strip()
    if not value or "placeholder" in value.lower():
        return None
    return value


def read_settings_file(path: Path = DEFAULT_SETTINGS_PATH) -> Dict[str, str]:
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable settings file %s", path)
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(url: str, anon_key: str, path: Path = DEFAULT_SETTINGS_PATH) -> Path:
    """Persist the store URL and anon key as the local fallback."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump({"store_url": url, "anon_key": anon_key}, fh, indent=2)
    return path


def load_config(
    env_file: Optional[str] = None,
    settings_path: Path = DEFAULT_SETTINGS_PATH,
    environ: Optional[Mapping[str, str]] = None,
) -> StoreConfig:
    """
    Resolve the store configuration.

    Args:
        env_file: .env file to load; None searches upwards from the cwd
        settings_path: local settings JSON used when the environment is incomplete
        environ: mapping to read instead of os.environ (skips .env loading)
    """
    if environ is None:
        load_dotenv(env_file)
        environ = os.environ

    url = clean_value(environ.get(ENV_STORE_URL))
    anon_key = clean_value(environ.get(ENV_ANON_KEY))

    if not (url and anon_key):
        stored = read_settings_file(settings_path)
        url = url or clean_value(stored.get("store_url"))
        anon_key = anon_key or clean_value(stored.get("anon_key"))

    try:
        timeout = float(environ.get(ENV_TIMEOUT) or DEFAULT_TIMEOUT)
    except ValueError:
        timeout = DEFAULT_TIMEOUT

    config = StoreConfig(url=url, anon_key=anon_key, timeout=timeout)
    if not config.enabled:
        logger.warning("Store URL or anon key missing; coordinator runs in disabled mode")
    return config
