"""Client configuration loading with precedence resolution.

:func:`load_client_config` builds a :class:`~restresource.models.ClientConfig`
by layering, from low to high precedence:

1. Model defaults
2. A JSON config file (explicit ``path`` or ``$RESTRESOURCE_CONFIG``)
3. ``RESTRESOURCE_*`` environment variables
4. Keyword overrides passed by the caller

Tokens may be given literally or through a source descriptor
(``env:VAR`` or ``file:/path``) resolved by :func:`resolve_token`.
File writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from restresource.exceptions import ConfigError
from restresource.models import ClientConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "RESTRESOURCE_"

# env var suffix -> (section, field); section None means top level
_ENV_FIELDS: dict[str, tuple[Optional[str], str]] = {
    "BASE_URL": (None, "base_url"),
    "TOKEN": (None, "token"),
    "TIMEOUT": ("request", "timeout"),
    "VERIFY_SSL": ("request", "verify_ssl"),
    "MAX_RETRIES": ("request", "max_retries"),
}


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created next to *path* so that ``os.replace`` is
    an atomic rename on POSIX systems.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- File layer ---


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file into a plain dict."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read client config at {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid client config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Client config at {path} must be a JSON object")
    return data


def save_client_config(config: ClientConfig, path: str | Path) -> None:
    """Persist a client configuration atomically as JSON.

    Args:
        config: The configuration to save.
        path: Destination file path.
    """
    data = config.model_dump(mode="json")
    _atomic_write(Path(path), json.dumps(data, indent=2) + "\n")


# --- Environment layer ---


def _env_layer() -> dict[str, Any]:
    """Collect ``RESTRESOURCE_*`` variables into a nested dict."""
    layer: dict[str, Any] = {}
    for suffix, (section, field_name) in _ENV_FIELDS.items():
        value = os.environ.get(f"{ENV_PREFIX}{suffix}")
        if not value:
            continue
        target = layer if section is None else layer.setdefault(section, {})
        target[field_name] = value
    return layer


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *overlay* onto a copy of *base*."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# --- Precedence resolution ---


def load_client_config(
    path: Optional[str | Path] = None, **overrides: Any
) -> ClientConfig:
    """Resolve a client configuration from file, environment, and overrides.

    Precedence (high to low):
        1. Keyword ``overrides`` (``None`` values are ignored)
        2. Environment variables (``RESTRESOURCE_BASE_URL``,
           ``RESTRESOURCE_TOKEN``, ``RESTRESOURCE_TIMEOUT``,
           ``RESTRESOURCE_VERIFY_SSL``, ``RESTRESOURCE_MAX_RETRIES``)
        3. JSON file at *path*, or at ``$RESTRESOURCE_CONFIG`` when no path
           is given
        4. Defaults

    The ``token`` value is passed through :func:`resolve_token` so it may be
    an ``env:`` or ``file:`` source descriptor.

    Args:
        path: Optional path to a JSON config file. A missing explicit path is
            an error; a missing ``$RESTRESOURCE_CONFIG`` file is ignored.
        **overrides: Top-level :class:`ClientConfig` fields, or a nested
            ``request`` dict.

    Returns:
        The validated :class:`ClientConfig`.

    Raises:
        ConfigError: If the file is unreadable or invalid, or the merged
            values fail validation.
    """
    data: dict[str, Any] = {}

    if path is not None:
        data = _read_config_file(Path(path))
    else:
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path and Path(env_path).is_file():
            data = _read_config_file(Path(env_path))

    data = _merge(data, _env_layer())
    data = _merge(data, {k: v for k, v in overrides.items() if v is not None})

    if data.get("token"):
        data["token"] = resolve_token(data["token"])

    try:
        config = ClientConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid client configuration: {exc}") from exc

    logger.debug("Resolved client config for base_url=%r", config.base_url)
    return config


def resolve_token(source: str) -> str:
    """Resolve a token from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - anything else is returned unchanged as a literal token

    Raises:
        ConfigError: If the variable or file can't be read.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        token_path = Path(source[5:]).expanduser()
        if not token_path.is_file():
            raise ConfigError(f"Token file not found: {token_path} (source: {source})")
        try:
            return token_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read token file {token_path}: {exc}") from exc

    return source
