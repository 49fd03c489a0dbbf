"""Configuration loader for ec2efs.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``config/ec2efs.yml`` (or an override path).
3. Bare environment variables understood by earlier tooling
   (``ENVIRONMENT_NAME``, ``ACCOUNT_NAME``, ``REGION``, ``AWS_ACCOUNT_ID``).
4. Environment variables prefixed with ``EC2EFS_``.
5. Explicit overrides supplied programmatically (reserved for CLI flags).

Prefixed environment keys use double underscores to express nesting, e.g.::

    export EC2EFS_ENV_NAME=kate
    export EC2EFS_INSTANCE__TYPE=t3.small
    export EC2EFS_TAGS__REPO=https://example.invalid/repo

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``; it is built once at the process boundary and passed down by
value, so nothing below the CLI reads the environment.
"""
from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load ec2efs configuration. Install with "
        "`pip install ec2efs` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import Ec2EfsError

ENV_PREFIX = "EC2EFS_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
# Values kept verbatim; YAML would turn "012345670123" into an octal number.
RAW_STRING_KEYS = {"account_id", "tags"}

# Bare variable names kept for compatibility with existing deployment scripts.
LEGACY_ENV_KEYS = {
    "ENVIRONMENT_NAME": "env_name",
    "ACCOUNT_NAME": "account_name",
    "REGION": "region",
    "AWS_ACCOUNT_ID": "account_id",
}

# Sentinel meaning "resolve the account id from the accounts file".
ACCOUNT_ID_UNSET = "none"

_ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")


class ConfigError(Ec2EfsError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class InstanceConfig:
    """Compute instance sizing and image selection."""

    type: str = "t2.micro"
    name: str = "test instance"
    image_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"type": self.type, "name": self.name, "image_id": self.image_id}


@dataclass(frozen=True)
class AssetConfig:
    """Location of the bootstrap asset bundle in object storage."""

    bucket: str | None = None
    key: str = "ec2efs/assets.zip"

    def bucket_for(self, account_id: str, region: str) -> str:
        """Return the configured bucket, deriving one per account/region when unset."""
        if self.bucket:
            return self.bucket
        return f"ec2efs-assets-{account_id}-{region}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"bucket": self.bucket, "key": self.key}


@dataclass(frozen=True)
class PolicyConfig:
    """Access policy tuning."""

    narrow_filesystem_scope: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"narrow_filesystem_scope": self.narrow_filesystem_scope}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for ec2efs."""

    config_file: Path
    accounts_file: Path
    env_name: str
    account_name: str
    region: str
    account_id: str
    logs_dir: Path
    out_dir: Path
    output_format: str
    instance: InstanceConfig = InstanceConfig()
    asset: AssetConfig = AssetConfig()
    policy: PolicyConfig = PolicyConfig()
    tags: Mapping[str, str] = field(default_factory=dict)

    @property
    def account_id_override(self) -> str | None:
        """Return the explicit account id, or ``None`` when it must be looked up."""
        if self.account_id == ACCOUNT_ID_UNSET:
            return None
        return self.account_id

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "accounts_file": str(self.accounts_file),
            "env_name": self.env_name,
            "account_name": self.account_name,
            "region": self.region,
            "account_id": self.account_id,
            "logs_dir": str(self.logs_dir),
            "out_dir": str(self.out_dir),
            "output_format": self.output_format,
            "instance": self.instance.to_dict(),
            "asset": self.asset.to_dict(),
            "policy": self.policy.to_dict(),
            "tags": dict(self.tags),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "config/ec2efs.yml",
    "accounts_file": "config/aws_account.yaml",
    "env_name": "kate",
    "account_name": "sandpit1",
    "region": "ap-southeast-2",
    "account_id": ACCOUNT_ID_UNSET,
    "logs_dir": ".ec2efs/logs",
    "out_dir": "ec2efs.out",
    "output_format": "json",
    "instance": {
        "type": "t2.micro",
        "name": "test instance",
        "image_id": None,
    },
    "asset": {
        "bucket": None,
        "key": "ec2efs/assets.zip",
    },
    "policy": {
        "narrow_filesystem_scope": False,
    },
    "tags": {},
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_OUTPUT_FORMATS = {"json", "yaml"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    legacy_values = _build_legacy_env_overrides(resolved_env)
    if legacy_values:
        _deep_merge(merged, legacy_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    output_format = raw.get("output_format")
    if output_format is not None and str(output_format) not in ALLOWED_OUTPUT_FORMATS:
        allowed = ", ".join(sorted(ALLOWED_OUTPUT_FORMATS))
        raise ConfigError(f"Unsupported output format '{output_format}'. Allowed: {allowed}.")

    for section, allowed_keys in (
        ("instance", {"type", "name", "image_id"}),
        ("asset", {"bucket", "key"}),
        ("policy", {"narrow_filesystem_scope"}),
    ):
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed_keys
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    tags = raw.get("tags")
    if tags is not None:
        for key, value in _as_dict(tags, "tags").items():
            if isinstance(value, (Mapping, list)):
                raise ConfigError(f"Tag '{key}' must be a scalar value.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    instance_mapping = _as_dict(raw.get("instance"), "instance")
    image_value = instance_mapping.get("image_id")
    image_id = str(image_value).strip() if image_value not in (None, "") else None

    asset_mapping = _as_dict(raw.get("asset"), "asset")
    bucket_value = asset_mapping.get("bucket")
    asset = AssetConfig(
        bucket=str(bucket_value).strip() if bucket_value not in (None, "") else None,
        key=_expect_non_empty(asset_mapping.get("key", "ec2efs/assets.zip"), "asset.key"),
    )

    policy_mapping = _as_dict(raw.get("policy"), "policy")
    policy = PolicyConfig(
        narrow_filesystem_scope=_expect_bool(
            policy_mapping.get("narrow_filesystem_scope"),
            "policy.narrow_filesystem_scope",
            default=False,
        ),
    )

    tags = {
        key: _tag_value(value) for key, value in _as_dict(raw.get("tags"), "tags").items()
    }

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        accounts_file=_to_path(raw.get("accounts_file")),
        env_name=_expect_non_empty(raw.get("env_name"), "env_name"),
        account_name=_expect_non_empty(raw.get("account_name"), "account_name"),
        region=_expect_non_empty(raw.get("region"), "region"),
        account_id=_expect_account_id(raw.get("account_id")),
        logs_dir=_to_path(raw.get("logs_dir")),
        out_dir=_to_path(raw.get("out_dir")),
        output_format=str(raw.get("output_format", "json")),
        instance=InstanceConfig(
            type=_expect_non_empty(instance_mapping.get("type", "t2.micro"), "instance.type"),
            name=_expect_non_empty(
                instance_mapping.get("name", "test instance"), "instance.name"
            ),
            image_id=image_id,
        ),
        asset=asset,
        policy=policy,
        tags=tags,
    )


def _build_legacy_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for env_key, config_key in LEGACY_ENV_KEYS.items():
        value = env.get(env_key)
        if value is None or not value.strip():
            continue
        overrides[config_key] = value.strip()
    return overrides


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if path_segments[0] in RAW_STRING_KEYS:
            _assign_nested(overrides, path_segments, value.strip())
        else:
            _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty(value: object, label: str) -> str:
    if value is None or isinstance(value, (bool, Mapping, list)):
        raise ConfigError(f"Expected {label} to be a non-empty string. Got {value!r}.")
    text = str(value).strip()
    if not text:
        raise ConfigError(f"Expected {label} to be a non-empty string.")
    return text


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_account_id(value: object | None) -> str:
    if value is None:
        return ACCOUNT_ID_UNSET
    if isinstance(value, bool):
        raise ConfigError(f"Expected account_id to be a 12 digit string. Got {value!r}.")
    if isinstance(value, int):
        value = integer_account_id(value, "account_id")
    text = str(value).strip()
    if text.lower() == ACCOUNT_ID_UNSET:
        return ACCOUNT_ID_UNSET
    if not _ACCOUNT_ID_PATTERN.match(text):
        raise ConfigError(f"account_id must be a 12 digit string. Got {text!r}.")
    return text


def integer_account_id(value: int, label: str) -> str:
    """Return an unquoted YAML account id as text.

    YAML 1.1 reads ``012345670123`` as an octal number, so an integer that
    would need zero padding cannot be trusted and is rejected.
    """
    text = str(value)
    if not _ACCOUNT_ID_PATTERN.match(text):
        raise ConfigError(
            f"Account id for {label} was read as the number {value}; "
            "quote it in YAML to keep its leading zeroes."
        )
    return text


def _tag_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ACCOUNT_ID_UNSET",
    "AppConfig",
    "AssetConfig",
    "ConfigError",
    "InstanceConfig",
    "PolicyConfig",
    "integer_account_id",
    "load_config",
]
