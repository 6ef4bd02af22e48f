"""acmeflow configuration loader.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    AcmeflowConfig(config_file="/etc/acmeflow/config.yaml")

    # 2. Any module retrieves it afterwards
    from acmeflow.config import get_config
    cfg = get_config()
    cfg.settings.polling.timeout_seconds  # typed access

    # 3. Extension / dynamic access
    cfg.get("challenges.publisher_config.webroot")
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from acmeflow.config.settings import AcmeflowSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_KNOWN_CHALLENGE_TYPES = frozenset({"http-01", "dns-01", "tls-sni-02"})

_CLASS_PATH_RE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$",
)

# Built-in publisher -> (challenge type it serves, required config keys)
_PUBLISHER_REQUIREMENTS: dict[str, tuple[str, tuple[str, ...]]] = {
    "webroot_http": ("http-01", ("webroot",)),
    "callback_http": ("http-01", ("deploy_script", "cleanup_script")),
    "callback_dns": ("dns-01", ("create_script", "delete_script")),
    "file_tls": ("tls-sni-02", ("directory",)),
}

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: AcmeflowConfig | None = None


def get_config() -> AcmeflowConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`AcmeflowConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "AcmeflowConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when schema or cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> Any:  # noqa: ANN401
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value.

    The substituted text is parsed as a YAML scalar so that
    ``${POLL_TIMEOUT:-30}`` yields a number the schema accepts.
    """
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is None:
        resolved = fallback
    if resolved is None:
        raise ConfigValidationError(
            [
                f"Environment variable '${{{var_name}}}' referenced "
                f"at '{path}' is not set and has no default",
            ],
        )
    try:
        parsed = yaml.safe_load(resolved)
    except yaml.YAMLError:
        return resolved
    if isinstance(parsed, (bool, int, float)):
        return parsed
    return resolved


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _read_file(config_file: Path) -> dict[str, Any]:
    try:
        with config_file.open(encoding="utf-8") as f:
            if config_file.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as exc:
        msg = f"Cannot read configuration file {config_file}: {exc}"
        raise ConfigValidationError([msg]) from exc
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"Cannot parse configuration file {config_file}: {exc}"
        raise ConfigValidationError([msg]) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Top level of {config_file} must be a mapping"
        raise ConfigValidationError([msg])
    return data


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class AcmeflowConfig:
    """Central configuration for acmeflow.

    The JSON schema is bundled at ``config/schema.json``; users supply
    only ``config_file``.  After construction the typed settings tree is
    available at :pyattr:`settings` and the raw dict via
    :pyattr:`data` / :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        """Load, resolve, validate and register the configuration singleton.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.

        Raises
        ------
        ConfigValidationError
            If the file cannot be read or fails validation.

        """
        global _instance  # noqa: PLW0603

        self._source = Path(config_file)
        self._data = _read_file(self._source)
        # Env vars are resolved before schema validation so that
        # substituted values are checked against the schema.
        _resolve_env_vars(self._data)
        self._validate_schema()
        self.additional_checks()

        self._settings: AcmeflowSettings = build_settings(self._data)
        _instance = self

    # -- access -------------------------------------------------------------

    @property
    def data(self) -> dict[str, Any]:
        """Raw configuration after env-var resolution."""
        return self._data

    @property
    def settings(self) -> AcmeflowSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    def get(self, path: str, default: Any = None) -> Any:  # noqa: ANN401
        """Look up a dot-separated *path* in the raw data."""
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- validation ---------------------------------------------------------

    def _validate_schema(self) -> None:
        with _SCHEMA_PATH.open(encoding="utf-8") as f:
            schema = json.load(f)
        validator = jsonschema.Draft202012Validator(schema)
        found = sorted(
            validator.iter_errors(self._data),
            key=lambda e: [str(p) for p in e.path],
        )
        errors = [
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in found
        ]
        if errors:
            raise ConfigValidationError(errors)

    def additional_checks(self) -> None:
        """Semantic & cross-field validation, run after schema validation."""
        errors: list[str] = []
        warnings: list[str] = []

        polling = self._data.get("polling") or {}
        order = self._data.get("order") or {}
        challenges = self._data.get("challenges") or {}

        # -- polling --
        interval = polling.get("interval_seconds", 3)
        timeout = polling.get("timeout_seconds", 30)
        if timeout < interval:
            warnings.append(
                f"polling.timeout_seconds ({timeout}) is shorter than "
                f"polling.interval_seconds ({interval}); only one attempt will be made",
            )

        finalize_interval = order.get("finalize_interval_seconds", 3)
        finalize_timeout = order.get("finalize_timeout_seconds", 60)
        if finalize_timeout < finalize_interval:
            warnings.append(
                f"order.finalize_timeout_seconds ({finalize_timeout}) is shorter than "
                f"order.finalize_interval_seconds ({finalize_interval})",
            )

        # -- challenges --
        enabled = challenges.get("enabled", sorted(_KNOWN_CHALLENGE_TYPES))
        for entry in enabled:
            if entry.startswith("ext:"):
                if not _CLASS_PATH_RE.match(entry[4:]):
                    errors.append(
                        f"challenges.enabled entry '{entry}' is not a valid "
                        "'ext:package.module.function' path",
                    )
            elif entry not in _KNOWN_CHALLENGE_TYPES:
                errors.append(
                    f"challenges.enabled contains unknown type '{entry}' "
                    f"(known: {sorted(_KNOWN_CHALLENGE_TYPES)})",
                )

        preferred = challenges.get("preferred_type", "http-01")
        if preferred not in enabled:
            errors.append(
                f"challenges.preferred_type '{preferred}' is not in challenges.enabled",
            )

        publisher = challenges.get("publisher", "webroot_http")
        publisher_config = challenges.get("publisher_config") or {}
        if publisher.startswith("ext:"):
            if not _CLASS_PATH_RE.match(publisher[4:]):
                errors.append(
                    f"challenges.publisher '{publisher}' is not a valid "
                    "'ext:package.module.Class' path",
                )
        elif publisher not in _PUBLISHER_REQUIREMENTS:
            errors.append(
                f"challenges.publisher '{publisher}' is unknown "
                f"(built-in: {sorted(_PUBLISHER_REQUIREMENTS)})",
            )
        else:
            serves, required = _PUBLISHER_REQUIREMENTS[publisher]
            if serves != preferred:
                errors.append(
                    f"challenges.publisher '{publisher}' publishes {serves} proofs "
                    f"but challenges.preferred_type is '{preferred}'",
                )
            errors.extend(
                f"challenges.publisher_config.{key} is required "
                f"when challenges.publisher is '{publisher}'"
                for key in required
                if not publisher_config.get(key)
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> AcmeflowSettings:
        """Re-read the config file and rebuild settings.

        Does not reset the singleton.  Validation runs again, so a broken
        edit raises :class:`ConfigValidationError` and the current
        settings stay in place.
        """
        fresh = AcmeflowConfig.__new__(AcmeflowConfig)
        fresh._source = self._source  # noqa: SLF001
        fresh._data = _read_file(self._source)  # noqa: SLF001
        _resolve_env_vars(fresh._data)  # noqa: SLF001
        fresh._validate_schema()  # noqa: SLF001
        fresh.additional_checks()

        self._data = fresh._data  # noqa: SLF001
        self._settings = build_settings(self._data)
        return self._settings

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        return f"<AcmeflowConfig config_file={self._source}>"
