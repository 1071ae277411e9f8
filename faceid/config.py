"""
Configuration for the face identity service.

Settings live in config.yaml at the project root. They are read once and
cached: the descriptor algorithm and its block grid must not change while a
gallery built with them is in memory.

Usage:
    from faceid.config import get_config
    pipeline = build_pipeline(get_config())
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Directory holding config.yaml, searched upwards from this package.

    Relative storage paths in the configuration are resolved against it.

    Raises:
        FileNotFoundError: If no parent directory has a config.yaml.
    """
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if (candidate / CONFIG_FILENAME).exists():
            return candidate

    raise FileNotFoundError(
        f"No {CONFIG_FILENAME} found above {here}; run from inside the project checkout"
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse a YAML configuration file.

    Args:
        config_path: File to read. Defaults to config.yaml in the project root.

    Returns:
        The parsed mapping; an empty file gives an empty dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    path = Path(config_path) if config_path is not None else get_project_root() / CONFIG_FILENAME
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """Cached project configuration. Pass reload=True to re-read the file."""
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()
        logger.debug(f"Loaded configuration sections: {sorted(_config_instance)}")

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    One top-level section of the project configuration.

    Raises:
        KeyError: If the section is missing.
    """
    config = get_config()
    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found "
            f"(available: {', '.join(sorted(config))})"
        )
    return config[section_name]


def get_storage_config() -> Dict[str, Any]:
    """Descriptor directory and SQLite path."""
    return get_section("storage")


def get_api_config() -> Dict[str, Any]:
    return get_section("api")


def get_server_config() -> Dict[str, Any]:
    """
    Host and port for uvicorn, taken from api.base_url.

    "localhost" binds every interface. A base_url that cannot be parsed is
    logged and the defaults (0.0.0.0:8000) are used.
    """
    base_url = get_api_config().get("base_url", f"http://localhost:{DEFAULT_PORT}")

    try:
        parts = urlsplit(base_url)
        hostname = parts.hostname
        port = parts.port or DEFAULT_PORT
    except ValueError as e:
        logger.warning(f"Invalid api.base_url {base_url!r} ({e}); serving on {DEFAULT_HOST}:{DEFAULT_PORT}")
        return {"host": DEFAULT_HOST, "port": DEFAULT_PORT}

    host = DEFAULT_HOST if hostname in (None, "localhost") else hostname
    return {"host": host, "port": port}
