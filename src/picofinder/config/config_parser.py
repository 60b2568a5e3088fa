"""Configuration parsing helpers for PicoFinder.

Brief:
  This module contains the configuration-parsing utilities used by the CLI
  entrypoint. It centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - ``${VAR}`` substitution in string values
    - validating the ``discovery`` section into a DiscoveryConfig

Inputs:
  - YAML config dicts and paths

Outputs:
  - Normalized config dicts and DiscoveryConfig instances
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

import yaml

from ..errors import ConfigError
from .config_schema import DiscoveryConfig, load_discovery_config

_VAR_KEY = re.compile(r"[A-Z_][A-Z0-9_]*")
_VAR_REF = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")

TOP_LEVEL_KEYS = ("vars", "logging", "discovery")


def _is_var_key(key: str) -> bool:
    """Brief: True when ``key`` is ALL_UPPERCASE and matches [A-Z_][A-Z0-9_]*."""

    return bool(key) and bool(_VAR_KEY.fullmatch(key))


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML.

    Inputs:
      - text: String containing a YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (the original string when it is not valid YAML).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge config/environment/CLI variables into cfg['vars'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['vars'].

    Precedence:
      - CLI (-v/--var) overrides environment overrides config-file variables.
      - Environment values only override keys already declared in ``vars``
        so unrelated process variables never leak into the config.

    Example:
      >>> cfg = {'vars': {'TIMEOUT': 100}}
      >>> parse_config_variables(cfg, cli_vars=['TIMEOUT=300'], environ={})['TIMEOUT']
      300
    """

    base = cfg.get("vars")
    if base is None:
        merged: Dict[str, Any] = {}
    elif isinstance(base, dict):
        merged = dict(base)
    else:
        raise ConfigError("config.vars must be a mapping when present")

    for k in merged:
        if not _is_var_key(str(k)):
            raise ConfigError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )

    env = os.environ if environ is None else environ
    for k in list(merged):
        if k in env:
            merged[k] = _parse_yaml_value(str(env[k]))

    for assignment in cli_vars or []:
        if "=" not in assignment:
            raise ConfigError(
                "Invalid -v/--var value (expected KEY=YAML), got: %r" % assignment
            )
        k, raw = assignment.split("=", 1)
        k = k.strip()
        if not _is_var_key(k):
            raise ConfigError(
                "Invalid variable name %r (must be ALL_UPPERCASE and match [A-Z_][A-Z0-9_]*)"
                % k
            )
        merged[k] = _parse_yaml_value(raw)

    cfg["vars"] = merged
    return merged


def expand_variables(value: Any, variables: Dict[str, Any]) -> Any:
    """Brief: Substitute ``${KEY}`` references throughout a config value.

    Inputs:
      - value: Any YAML value (dict/list/str/scalar).
      - variables: Mapping of variable name to YAML value.

    Outputs:
      - Any: New value with references expanded. A string that is exactly
        ``${KEY}`` is replaced by the variable's typed value; references
        embedded in longer strings are replaced by ``str(value)``.

    Raises:
      - ConfigError: when a referenced variable is undefined.
    """

    if isinstance(value, dict):
        return {k: expand_variables(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_variables(v, variables) for v in value]
    if not isinstance(value, str):
        return value

    whole = _VAR_REF.fullmatch(value.strip())
    if whole:
        name = whole.group(1)
        if name not in variables:
            raise ConfigError("Undefined variable ${%s}" % name)
        return variables[name]

    def _sub(m: "re.Match[str]") -> str:
        name = m.group(1)
        if name not in variables:
            raise ConfigError("Undefined variable ${%s}" % name)
        return str(variables[name])

    return _VAR_REF.sub(_sub, value)


def normalize_config(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Merge variables, expand them and validate a config mapping.

    Inputs:
      - cfg: Parsed YAML mapping.
      - cli_vars: Optional CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping.

    Outputs:
      - dict: {'logging': dict, 'discovery': DiscoveryConfig}.

    Raises:
      - ConfigError: for unknown top-level keys, bad variables or invalid
        discovery settings.
    """

    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")

    unknown = sorted(str(k) for k in cfg if k not in TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError("Unknown top-level config keys: %s" % ", ".join(unknown))

    variables = parse_config_variables(cfg, cli_vars=cli_vars, environ=environ)
    body = {k: v for k, v in cfg.items() if k != "vars"}
    body = expand_variables(body, variables)

    logging_cfg = body.get("logging") or {}
    if not isinstance(logging_cfg, dict):
        raise ConfigError("config.logging must be a mapping when present")

    discovery: DiscoveryConfig = load_discovery_config(body.get("discovery"))
    return {"logging": logging_cfg, "discovery": discovery}


def parse_config_file(
    config_path: str,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Read and validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments (from -v/--var).
      - environ: Optional environment mapping.

    Outputs:
      - dict: {'logging': dict, 'discovery': DiscoveryConfig}.

    Raises:
      - ConfigError: when the file is unreadable, not YAML, or invalid.
    """

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError("Cannot read config file %s: %s" % (config_path, exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigError("Invalid YAML in %s: %s" % (config_path, exc)) from exc

    return normalize_config(cfg, cli_vars=cli_vars, environ=environ)
