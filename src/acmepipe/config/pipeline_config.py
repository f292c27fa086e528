"""Load, check and materialise the pipeline configuration.

A configuration file goes through four passes before anything reads it:

1. parse (YAML by suffix, JSON otherwise; an empty file is ``{}``)
2. substitute whole-string ``${VAR}`` / ``${VAR:-default}`` values
3. validate against the bundled ``schema.json`` (Draft 7)
4. :meth:`PipelineConfig.additional_checks` for cross-field rules

Problems from each pass are collected and raised together as one
:class:`ConfigValidationError`.  The last :class:`PipelineConfig` built
is the process-wide instance returned by :func:`get_config`::

    PipelineConfig(config_file="/etc/acmepipe/config.yaml")
    get_config().settings.acme.poll_max_attempts
    get_config().get("secrets.vault_url", default="http://localhost:8200")
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

from acmepipe.config.settings import PipelineAppSettings, build_settings

log = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).with_name("schema.json")

# The whole value must be the reference; "Bearer ${TOKEN}" is kept verbatim.
_ENV_REF = re.compile(r"^\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*))?\}$", re.DOTALL)

_CLASS_PATH_RE = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)+$", re.ASCII)

_BUILTIN_DNS_PROVIDERS = frozenset({"infoblox", "callback"})
_BUILTIN_SECRET_BACKENDS = frozenset({"vault", "env"})
_BUILTIN_DEPLOY_BACKENDS = frozenset({"rest"})

_instance: PipelineConfig | None = None


def get_config() -> PipelineConfig:
    """Return the most recently built :class:`PipelineConfig`.

    Raises :class:`RuntimeError` when no configuration has been loaded
    in this process yet.
    """
    if _instance is None:
        msg = "Configuration not initialised; construct PipelineConfig first"
        raise RuntimeError(msg)
    return _instance


class ConfigValidationError(Exception):
    """One or more configuration problems, listed in :attr:`errors`."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        listing = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{listing}")


def _substitute_env(node: Any, where: str, missing: list[str]) -> Any:  # noqa: ANN401
    """Return a copy of *node* with environment references replaced.

    Unresolvable references are appended to *missing* and left as-is.
    """
    if isinstance(node, dict):
        return {
            key: _substitute_env(value, f"{where}.{key}" if where else str(key), missing)
            for key, value in node.items()
        }
    if isinstance(node, list):
        return [_substitute_env(item, f"{where}[{i}]", missing) for i, item in enumerate(node)]
    if not isinstance(node, str):
        return node
    ref = _ENV_REF.match(node)
    if ref is None:
        return node
    value = os.environ.get(ref["name"], ref["default"])
    if value is None:
        missing.append(
            f"{where}: environment variable {ref['name']} is not set and has no default",
        )
        return node
    return value


def load_file(config_file: str | Path) -> dict[str, Any]:
    """Parse a YAML or JSON configuration file into a dict."""
    path = Path(config_file)
    try:
        with path.open(encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError:
        raise ConfigValidationError([f"Config file not found: {path}"]) from None
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigValidationError([f"Config file {path} is not parseable: {exc}"]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError([f"Config file {path} must contain a mapping at top level"])
    return data


def _load_schema() -> dict[str, Any]:
    with _SCHEMA_PATH.open(encoding="utf-8") as f:
        return json.load(f)


class PipelineConfig:
    """Validated configuration for one acmepipe process.

    Typed values are read from :pyattr:`settings`; the substituted raw
    mapping stays available through :pyattr:`data` and :pymeth:`get`.
    """

    def __init__(
        self,
        *,
        config_file: str | Path | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Build the configuration and make it the process-wide instance.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.  ``None`` together
            with ``data=None`` yields all defaults.
        data:
            Raw configuration mapping (used instead of a file).  Never
            modified.

        """
        global _instance  # noqa: PLW0603

        raw = load_file(config_file) if config_file is not None else (data or {})
        missing: list[str] = []
        resolved = _substitute_env(raw, "", missing)
        if missing:
            raise ConfigValidationError(missing)
        if config_file is not None:
            resolved["_source"] = str(config_file)
        self._data = resolved
        self._validate_schema()
        self.additional_checks()
        self._settings: PipelineAppSettings = build_settings(self._data)
        _instance = self

    # -- access -------------------------------------------------------------

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    @property
    def settings(self) -> PipelineAppSettings:
        """Frozen, typed view of the configuration."""
        return self._settings

    def get(self, path: str, default: Any = None) -> Any:  # noqa: ANN401
        """Dot-path lookup into the raw config data."""
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- validation ---------------------------------------------------------

    def _validate_schema(self) -> None:
        schema = _load_schema()
        validator = jsonschema.Draft7Validator(schema)
        errors = sorted(validator.iter_errors(self._data), key=lambda e: list(e.path))
        if errors:
            raise ConfigValidationError(
                [
                    f"{'.'.join(str(p) for p in e.path) or '<root>'}: {e.message}"
                    for e in errors
                ],
            )

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation run after schema validation."""
        errors: list[str] = []
        warnings: list[str] = []

        acme = self._data.get("acme") or {}
        dns_cfg = self._data.get("dns") or {}
        secrets = self._data.get("secrets") or {}
        deploy = self._data.get("deploy") or {}
        hooks = self._data.get("hooks") or {}

        # -- ACME --
        env = acme.get("environment", "production")
        directories = acme.get("directories") or {}
        if env not in ("production", "staging") and env not in directories:
            errors.append(
                f"acme.environment '{env}' has no directory; add it to acme.directories",
            )
        if bool(acme.get("eab_kid")) != bool(acme.get("eab_hmac_key")):
            errors.append("acme.eab_kid and acme.eab_hmac_key must be set together")
        if acme.get("terms_of_service_agreed") is False:
            warnings.append(
                "acme.terms_of_service_agreed is false; most ACME servers will "
                "reject new account registrations",
            )

        # -- DNS --
        provider = dns_cfg.get("provider", "infoblox")
        if provider not in _BUILTIN_DNS_PROVIDERS:
            if not provider.startswith("ext:"):
                errors.append(
                    f"dns.provider '{provider}' is unknown; use one of "
                    f"{sorted(_BUILTIN_DNS_PROVIDERS)} or 'ext:pkg.module.Class'",
                )
            elif not _CLASS_PATH_RE.match(provider[4:]):
                errors.append(f"dns.provider '{provider}' is not a valid class path")
        provider_config = dns_cfg.get("provider_config") or {}
        if provider == "callback":
            for key in ("create_script", "delete_script"):
                if not provider_config.get(key):
                    errors.append(
                        f"dns.provider_config.{key} is required when dns.provider is 'callback'",
                    )
        interval = dns_cfg.get("propagation_interval_seconds", 10)
        timeout = dns_cfg.get("propagation_timeout_seconds", 120)
        if interval > timeout:
            errors.append(
                f"dns.propagation_interval_seconds ({interval}) must be <= "
                f"dns.propagation_timeout_seconds ({timeout})",
            )
        if dns_cfg.get("proceed_on_propagation_timeout"):
            warnings.append(
                "dns.proceed_on_propagation_timeout is true; challenges may be "
                "answered before the TXT record is visible",
            )

        # -- Secrets --
        backend = secrets.get("backend", "vault")
        if backend not in _BUILTIN_SECRET_BACKENDS:
            errors.append(
                f"secrets.backend '{backend}' is unknown; use one of "
                f"{sorted(_BUILTIN_SECRET_BACKENDS)}",
            )
        if backend == "vault" and not secrets.get("vault_token"):
            warnings.append(
                "secrets.vault_token is not set; falling back to the VAULT_TOKEN "
                "environment variable at run time",
            )

        # -- Deploy --
        deploy_backend = deploy.get("backend", "rest")
        if deploy_backend not in _BUILTIN_DEPLOY_BACKENDS:
            if not deploy_backend.startswith("ext:"):
                errors.append(f"deploy.backend '{deploy_backend}' is unknown")
            elif not _CLASS_PATH_RE.match(deploy_backend[4:]):
                errors.append(f"deploy.backend '{deploy_backend}' is not a valid class path")
        if "{server}" not in deploy.get("base_url", "{server}"):
            errors.append("deploy.base_url must contain the '{server}' placeholder")

        # -- Hooks --
        from acmepipe.hooks.events import KNOWN_EVENTS as known  # noqa: PLC0415, N813

        for idx, entry in enumerate(hooks.get("registered") or []):
            class_path = entry.get("class", "")
            if not _CLASS_PATH_RE.match(class_path):
                errors.append(
                    f"hooks.registered[{idx}].class '{class_path}' is not a valid class path",
                )
            unknown = set(entry.get("events") or []) - known
            if unknown:
                errors.append(
                    f"hooks.registered[{idx}].events has unknown event(s): "
                    f"{', '.join(sorted(unknown))}",
                )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def reset(cls) -> None:
        """Forget the process-wide instance."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        source = self._data.get("_source", "<defaults>")
        return f"<PipelineConfig config_file={source}>"
