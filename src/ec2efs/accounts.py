"""Account id resolution from the accounts lookup table.

The lookup table is a YAML file. Two shapes are accepted::

    # mapping form
    accounts:
      sandpit1: "123456789012"

    # list form
    accounts:
      - name: sandpit1
        id: "123456789012"

A bare top-level mapping of ``name: id`` is accepted as well.
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml

from .config import ConfigError, integer_account_id
from .errors import AccountNotFound

logger = logging.getLogger(__name__)

_ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")


def resolve_account_id(
    account_name: str,
    config_source: str | os.PathLike[str],
    *,
    override: str | None = None,
) -> str:
    """Return the account id for *account_name*.

    An explicit *override* wins and the lookup table is not read at all.
    """
    if override:
        logger.debug("Using explicit account id override for %s", account_name)
        return override

    path = Path(config_source)
    table = load_account_table(path)
    try:
        account_id = table[account_name]
    except KeyError:
        raise AccountNotFound(account_name, str(path)) from None
    logger.debug("Resolved account %s from %s", account_name, path)
    return account_id


def load_account_table(path: Path) -> dict[str, str]:
    """Parse the accounts file into a ``name -> id`` mapping."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse accounts file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Accounts file {path} must contain a mapping at the top level.")

    entries = data.get("accounts", data)
    table: dict[str, str] = {}
    if isinstance(entries, Mapping):
        for name, value in entries.items():
            table[str(name)] = _normalise_account_id(value, f"{path}:{name}")
    elif isinstance(entries, list):
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping) or "name" not in entry or "id" not in entry:
                raise ConfigError(
                    f"Accounts file {path} entry {index} must provide 'name' and 'id'."
                )
            table[str(entry["name"])] = _normalise_account_id(
                entry["id"], f"{path}:{entry['name']}"
            )
    else:
        raise ConfigError(f"Accounts file {path} 'accounts' must be a mapping or a list.")
    return table


def _normalise_account_id(value: object, label: str) -> str:
    if isinstance(value, bool):
        raise ConfigError(f"Account id for {label} must be a 12 digit string.")
    if isinstance(value, int):
        return integer_account_id(value, label)
    text = str(value).strip()
    if not _ACCOUNT_ID_PATTERN.match(text):
        raise ConfigError(f"Account id for {label} must be a 12 digit string. Got {text!r}.")
    return text


__all__ = ["load_account_table", "resolve_account_id"]
