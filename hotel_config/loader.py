"""
Configuration Loader (``hotel_config.loader``).

Responsibility
--------------
Reads the YAML files that ship with the package (the default chart of
accounts) or that a deployment points at (rules overrides), and returns
plain dicts / lists validated for the keys the services need.

Architecture position
---------------------
**Config layer** -- no dependency on kernel services, modules or engines.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``ValueError`` naming the offending entry.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from hotel_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULTS_DIR = Path(__file__).parent / "defaults"
DEFAULT_CHART_PATH = DEFAULTS_DIR / "chart_of_accounts.yaml"

_REQUIRED_ACCOUNT_KEYS = ("code", "name", "kind")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def load_chart_of_accounts(path: Path | str | None = None) -> list[dict[str, Any]]:
    """Account specs in install order (parents before children)."""
    path = Path(path) if path is not None else DEFAULT_CHART_PATH
    data = load_yaml_file(path)
    accounts = data.get("accounts") or []
    seen: set[str] = set()
    result: list[dict[str, Any]] = []
    for index, spec in enumerate(accounts):
        missing = [k for k in _REQUIRED_ACCOUNT_KEYS if not spec.get(k)]
        if missing:
            raise ValueError(f"{path}: account #{index} missing {', '.join(missing)}")
        code = str(spec["code"])
        if code in seen:
            raise ValueError(f"{path}: duplicate account code {code}")
        parent = spec.get("parent")
        if parent is not None and str(parent) not in seen:
            raise ValueError(f"{path}: account {code} listed before its parent {parent}")
        seen.add(code)
        result.append({**spec, "code": code, "parent": str(parent) if parent else None})
    logger.debug(
        "chart_of_accounts_loaded",
        extra={"path": str(path), "account_count": len(result)},
    )
    return result


def load_rules_file(path: Path | str) -> dict[str, Any]:
    """
    Rules overrides from YAML. Accepts either a flat mapping or one nested
    under a top-level ``rules`` key.
    """
    data = load_yaml_file(Path(path))
    rules = data.get("rules", data)
    if not isinstance(rules, dict):
        raise ValueError(f"{path}: 'rules' must be a mapping")
    logger.info(
        "rules_file_loaded",
        extra={"path": str(path), "keys": sorted(rules.keys())},
    )
    return rules


def compute_checksum(data: Any) -> str:
    """SHA-256 of the canonical JSON form; identifies a configuration."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
