"""
Sandbox configuration.

Configuration is optional: every field has a default, and a YAML file can
override any of them. Example ``optbox.yaml``::

    trace: true
    halt_on_unwrap: false
    output_format: text
    prompt: "optbox> "
    max_history: 100
    bindings:
      answer: 42
      missing: null

Unknown keys are reported with ``warnings.warn`` and otherwise ignored.
"""

import os
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from optbox.parser import RESERVED_WORDS
from optbox.values import Value

# Environment variable consulted when no explicit path is given.
CONFIG_ENV_VAR = "OPTBOX_CONFIG"

OUTPUT_FORMATS = ("text", "json", "yaml")


class ConfigError(Exception):
    """Raised when a configuration file is malformed."""
    pass


@dataclass
class SandboxConfig:
    """
    Settings shared by the CLI, the REPL and ``Session``.

    Properties:
        trace: Show the evaluation trace after each result
        halt_on_unwrap: End the session when a force-unwrap hits nil
        output_format: "text", "json" or "yaml"
        prompt: REPL prompt
        max_history: Number of entries a session keeps (0 keeps none)
        bindings: Names pre-bound in every new session
    """

    trace: bool = False
    halt_on_unwrap: bool = False
    output_format: str = "text"
    prompt: str = "optbox> "
    max_history: int = 100
    bindings: Dict[str, Value] = field(default_factory=dict)


def config_from_dict(d: Optional[Dict[str, Any]]) -> SandboxConfig:
    """Build a SandboxConfig from a plain dict (e.g. parsed YAML)."""
    if d is None:
        return SandboxConfig()
    if not isinstance(d, dict):
        raise ConfigError(f"Configuration must be a mapping, got {type(d).__name__}")

    known = {f.name for f in fields(SandboxConfig)}
    for key in d:
        if key not in known:
            warnings.warn(f"Unknown configuration key ignored: {key}", UserWarning)

    config = SandboxConfig()

    for name in ("trace", "halt_on_unwrap"):
        if name in d:
            if not isinstance(d[name], bool):
                raise ConfigError(f"'{name}' must be true or false, got {d[name]!r}")
            setattr(config, name, d[name])

    if "output_format" in d:
        if d["output_format"] not in OUTPUT_FORMATS:
            raise ConfigError(
                f"'output_format' must be one of {', '.join(OUTPUT_FORMATS)}, got {d['output_format']!r}"
            )
        config.output_format = d["output_format"]

    if "prompt" in d:
        config.prompt = str(d["prompt"])

    if "max_history" in d:
        value = d["max_history"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"'max_history' must be a non-negative integer, got {value!r}")
        config.max_history = value

    if "bindings" in d:
        config.bindings = _bindings_from_dict(d["bindings"] or {})

    return config


def _bindings_from_dict(raw: Any) -> Dict[str, Value]:
    if not isinstance(raw, dict):
        raise ConfigError("'bindings' must be a mapping of names to values")

    bindings: Dict[str, Value] = {}
    for name, native in raw.items():
        if not isinstance(name, str) or not name.isidentifier() or name in RESERVED_WORDS:
            raise ConfigError(f"Invalid binding name: {name!r}")
        try:
            bindings[name] = Value.of(native)
        except TypeError as e:
            raise ConfigError(f"Invalid value for binding '{name}': {e}")
    return bindings


def load_config(path: Optional[Union[str, Path]] = None) -> SandboxConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: File to read. Falls back to $OPTBOX_CONFIG, then to defaults.

    Raises:
        FileNotFoundError: If the given file does not exist
        ConfigError: If the file is not valid YAML or has invalid values
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
        if not path:
            return SandboxConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file '{path}': {e}")

    return config_from_dict(data)
