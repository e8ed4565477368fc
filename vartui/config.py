"""Config persistence, .env loading and effective credential resolution."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .models import DEFAULT_BASE_URL, Config

logger = logging.getLogger(__name__)

APP_NAME = "vartui"
CONFIG_ENV = "VARTUI_CONFIG"
TOKEN_ENV = "VAR_TOKEN"
BASE_URL_ENV = "VAR_BASE_URL"


class ConfigError(Exception):
    """Raised when the configuration file cannot be written."""


def config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or (Path.home() / ".config")
    return Path(base) / APP_NAME


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(os.path.expanduser(override))
    return config_dir() / "config.yaml"


def load_config(path: Optional[Path] = None) -> Config:
    """Load the YAML config; any problem yields defaults."""
    path = path or config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.info("No config at %s; using defaults", path)
        return Config()
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Error loading config %s: %s. Using defaults.", path, exc)
        return Config()
    if not isinstance(raw, dict):
        logger.warning("Config %s is not a mapping; using defaults", path)
        return Config()
    logger.info("Config loaded from %s", path)
    return Config.from_dict(raw)


def save_config(cfg: Config, path: Optional[Path] = None) -> None:
    path = path or config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(cfg.to_dict(), f, sort_keys=False, allow_unicode=True)
    except OSError as exc:
        logger.error("Saving config to %s failed: %s", path, exc)
        raise ConfigError(str(exc)) from exc
    logger.info("Config saved to %s", path)


def load_dotenv(path: Optional[str] = None) -> int:
    """Copy KEY=VALUE pairs from a .env file into os.environ without overriding.

    Returns the number of variables set.
    """
    path = path or os.path.join(os.getcwd(), ".env")
    if not os.path.isfile(path):
        return 0
    count = 0
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#') or '=' not in line:
                    continue
                if line.startswith("export "):
                    line = line[len("export "):]
                k, v = line.split('=', 1)
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if k and k not in os.environ:
                    os.environ[k] = v
                    count += 1
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
    return count


def _clean_env(value: Optional[str]) -> str:
    return (value or "").replace('"', "").strip()


def effective_token(cfg: Config, environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    if cfg.token:
        return cfg.token
    return _clean_env(environ.get(TOKEN_ENV))


def effective_base_url(cfg: Config, environ: Optional[Mapping[str, str]] = None) -> str:
    # A stored value equal to the default defers to the environment.
    environ = os.environ if environ is None else environ
    if cfg.base_url and cfg.base_url != DEFAULT_BASE_URL:
        url = cfg.base_url
    else:
        url = _clean_env(environ.get(BASE_URL_ENV)) or DEFAULT_BASE_URL
    return url.rstrip("/")
