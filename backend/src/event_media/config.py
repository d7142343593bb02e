"""
Configuration loading for the event media pipeline.

Single source of truth for where data, config, and state files live, and for
every tunable constant (timeouts, retry ceilings, batch sizes, thresholds).

Search order for config.json:
1. $EVENT_MEDIA_DATA_HOME/config.json (if exists)
2. ~/.event-media/config.json (if exists)
3. <repo>/config/config.json (dev mode, if exists)
4. Built-in defaults

Environment variables override individual keys after the file is merged with
the defaults, so secrets never have to live in the file.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _is_dev_mode() -> bool:
    """Detect whether we're running from a repo checkout vs pip install.

    In a pip install, event_media lives in site-packages and the frontend/ dir
    won't be a sibling of the package root.
    """
    # backend/src/event_media/config.py -> backend/src/event_media -> backend/src -> backend -> repo root
    repo_root = Path(__file__).resolve().parent.parent.parent.parent
    return (repo_root / "frontend" / "app.py").is_file()


def get_repo_root() -> Optional[Path]:
    """Return the repo root path in dev mode, None in installed mode."""
    if not _is_dev_mode():
        return None
    return Path(__file__).resolve().parent.parent.parent.parent


def get_data_home() -> Path:
    """Return the base directory for all locally kept state.

    Default: ~/.event-media/
    Override: $EVENT_MEDIA_DATA_HOME
    """
    env = os.environ.get("EVENT_MEDIA_DATA_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".event-media"


def get_config_path() -> Path:
    """Return the path to config.json (may not exist yet)."""
    data_home_config = get_data_home() / "config.json"
    if data_home_config.is_file():
        return data_home_config

    repo_root = get_repo_root()
    if repo_root is not None:
        repo_config = repo_root / "config" / "config.json"
        if repo_config.is_file():
            return repo_config

    return data_home_config


def ensure_data_home() -> Path:
    """Create the data home directory structure if it doesn't exist.

    Returns the data home path.
    """
    data_home = get_data_home()
    data_home.mkdir(parents=True, exist_ok=True)
    (data_home / "storage").mkdir(parents=True, exist_ok=True)
    (data_home / "locks").mkdir(parents=True, exist_ok=True)
    return data_home


def get_default_config() -> Dict[str, Any]:
    """Return the default configuration."""
    data_home = get_data_home()
    return {
        "paths": {
            "storage_root": str(data_home / "storage"),
            "locks_dir": str(data_home / "locks"),
            "watermark_path": "",
        },
        "server": {
            "host": "0.0.0.0",
            "port": 5050,
            "debug": False,
        },
        "storage": {
            "backend": "local",
            "originals_bucket": "event-photos",
            "previews_bucket": "event-previews",
            "region": "us-east-1",
            "endpoint_url": "",
            "list_page_size": 1000,
            "signed_url_expires": 3600,
        },
        "database": {
            "url": f"sqlite:///{data_home / 'metadata.db'}",
        },
        "biometrics": {
            "backend": "rekognition",
            "region": "us-east-1",
            "collection_prefix": "",
        },
        "remote": {
            "timeout": 30.0,
            "max_pool_connections": 16,
        },
        "indexing": {
            "max_faces": 10,
            "quality_filter": "AUTO",
        },
        "thumbnails": {
            "width": 900,
            "quality": 70,
            "format": "webp",
            "attempts": 5,
            "base_delay": 0.25,
            "watermark_text": "PREVIEW",
            "watermark_opacity": 64,
            "cache_control": "31536000",
        },
        "search": {
            "threshold": 90.0,
            "max_workers": 8,
            "strategy": "compare",
        },
        "lifecycle": {
            "batch_size": 20,
            "face_delete_batch": 1000,
            "storage_delete_batch": 100,
        },
        "locks": {
            "timeout": 30.0,
            "poll_interval": 0.1,
        },
        "security": {
            "admin_password": "",
            "cron_secret": "",
        },
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from config.json and merge with defaults.

    Args:
        config_path: Explicit config file (default: search order above)

    Returns:
        Config dictionary with every default section present
    """
    path = Path(config_path) if config_path else get_config_path()

    if path.is_file():
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
        logger.info(f"Loaded config from: {path}")
        return _process_config(config)

    logger.debug("No config file found, using defaults")
    return get_default_config()


def _process_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults for missing values and expand paths."""
    defaults = get_default_config()

    for section, values in defaults.items():
        if section not in config:
            config[section] = copy.deepcopy(values)
        elif isinstance(values, dict):
            for key, default_value in values.items():
                if key not in config[section]:
                    config[section][key] = default_value

    for key, path in config["paths"].items():
        if path and isinstance(path, str):
            config["paths"][key] = os.path.expanduser(os.path.expandvars(path))

    return config


# env var -> (section, key, type)
ENV_MAP = {
    "ADMIN_PASSWORD": ("security", "admin_password", str),
    "CRON_SECRET": ("security", "cron_secret", str),
    "STORAGE_BACKEND": ("storage", "backend", str),
    "ORIGINALS_BUCKET": ("storage", "originals_bucket", str),
    "PREVIEWS_BUCKET": ("storage", "previews_bucket", str),
    "S3_ENDPOINT_URL": ("storage", "endpoint_url", str),
    "AWS_REGION": ("biometrics", "region", str),
    "REKOGNITION_COLLECTION_PREFIX": ("biometrics", "collection_prefix", str),
    "DATABASE_URL": ("database", "url", str),
    "STORAGE_ROOT": ("paths", "storage_root", str),
    "LOCKS_DIR": ("paths", "locks_dir", str),
    "WATERMARK_PATH": ("paths", "watermark_path", str),
    "FACE_MATCH_THRESHOLD": ("search", "threshold", float),
    "SEARCH_WORKERS": ("search", "max_workers", int),
    "SEARCH_STRATEGY": ("search", "strategy", str),
    "THUMB_WIDTH": ("thumbnails", "width", int),
    "THUMB_QUALITY": ("thumbnails", "quality", int),
    "REPAIR_ATTEMPTS": ("thumbnails", "attempts", int),
    "REPAIR_BASE_DELAY": ("thumbnails", "base_delay", float),
    "REMOTE_TIMEOUT": ("remote", "timeout", float),
    "REAP_BATCH_SIZE": ("lifecycle", "batch_size", int),
    "EVENT_MEDIA_HOST": ("server", "host", str),
    "EVENT_MEDIA_PORT": ("server", "port", int),
    "EVENT_MEDIA_DEBUG": ("server", "debug", bool),
}


def get_env_overrides() -> Dict[str, Dict[str, Any]]:
    """Get configuration overrides from environment variables."""
    overrides: Dict[str, Dict[str, Any]] = {}

    for env_var, (section, key, kind) in ENV_MAP.items():
        raw = os.getenv(env_var)
        if raw is None:
            continue

        if kind is bool:
            value: Any = raw.lower() in ("1", "true", "yes")
        else:
            try:
                value = kind(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {env_var}={raw!r} (expected {kind.__name__})")
                continue

        overrides.setdefault(section, {})[key] = value
        if section == "security":
            logger.debug(f"Environment override: {env_var} -> {section}.{key} = ***")
        else:
            logger.debug(f"Environment override: {env_var} -> {section}.{key} = {value}")

    # AWS_REGION applies to both AWS clients
    if "AWS_REGION" in os.environ:
        overrides.setdefault("storage", {})["region"] = os.environ["AWS_REGION"]

    return overrides


def get_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load config and apply environment overrides."""
    config = load_config(config_path)
    overrides = get_env_overrides()

    for section, values in overrides.items():
        if section in config:
            config[section].update(values)
        else:
            config[section] = values

    return config
