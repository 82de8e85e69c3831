"""Pipeline configuration loader for DispatchForge.

Loads generation settings from configs/dispatchforge.yaml. The file names the
grammar, the dispatch interface and the parser struct, and describes how to
run the external grammar compiler.

Usage:
    from pipeline_config import load_config

    config = load_config()
    config = load_config("my_project.yaml").with_overrides(interface="Visit")
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from paths import DEFAULT_CONFIG_PATH
from pipeline_errors import ConfigError

DEFAULT_GENERATOR_COMMAND = ["pest-generate", "--grammar", "{grammar}", "--parser", "{parser}"]

_PATH_RE = re.compile(r"^(::)?[A-Za-z_][A-Za-z0-9_]*(::[A-Za-z_][A-Za-z0-9_]*)*$")
_VISIBILITY_RE = re.compile(r"^(pub(\s*\(\s*(crate|self|super|in\s+[\w:]+)\s*\))?)?$")


@dataclass
class GeneratorConfig:
    """How to invoke the external grammar compiler."""
    command: list[str] = field(default_factory=lambda: list(DEFAULT_GENERATOR_COMMAND))
    include_grammar: bool = True
    include_grammar_flag: str = "--include-grammar"
    timeout_s: float = 120.0
    cwd: str | None = None


@dataclass
class PipelineConfig:
    """Complete configuration for one pipeline run."""
    interface: str = ""
    grammar: str | None = None
    parser_name: str | None = None
    visibility: str = "pub"
    declaration_name: str = "Rule"
    marker_prefix: str = "crate::"
    emit_parser_struct: bool = True
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)

    def with_overrides(self, **overrides: Any) -> PipelineConfig:
        """Copy with every non-None override applied (CLI flags win over file)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> None:
        """Check the fields every run needs.

        The interface is only checked to be a plain path; whether it names a
        real trait is for the Rust compiler to decide.
        """
        for name in ("interface", "visibility", "declaration_name", "marker_prefix"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise ConfigError(f"{name} must be a string, got {value!r}")
        if self.parser_name is not None and not isinstance(self.parser_name, str):
            raise ConfigError(f"parser_name must be a string, got {self.parser_name!r}")
        if not self.interface:
            raise ConfigError("no dispatch interface configured (set `interface`)")
        if not _PATH_RE.match(self.interface):
            raise ConfigError(f"interface must be a trait path, got {self.interface!r}")
        if not _PATH_RE.match(self.declaration_name) or "::" in self.declaration_name:
            raise ConfigError(f"declaration_name must be an identifier, got {self.declaration_name!r}")
        if self.parser_name is not None and not _PATH_RE.match(self.parser_name.removeprefix("r#")):
            raise ConfigError(f"parser_name must be an identifier, got {self.parser_name!r}")
        if not _VISIBILITY_RE.match(self.visibility):
            raise ConfigError(f"invalid visibility {self.visibility!r}")
        if self.marker_prefix and not self.marker_prefix.endswith("::"):
            raise ConfigError(f"marker_prefix must end with '::', got {self.marker_prefix!r}")


def load_config(config_path: str | Path | None = None) -> PipelineConfig:
    """Load pipeline configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to configs/dispatchforge.yaml.

    Returns:
        PipelineConfig; keys missing from the file keep their defaults.

    Raises:
        ConfigError: If the file doesn't exist or is malformed.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        raise ConfigError(f"config not found: {path}")

    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"invalid config: top level of {path} must be a mapping")

    gdata = raw.get("generator") or {}
    if not isinstance(gdata, dict):
        raise ConfigError(f"invalid config: 'generator' in {path} must be a mapping")

    command = gdata.get("command", DEFAULT_GENERATOR_COMMAND)
    if isinstance(command, str):
        command = command.split()
    if not isinstance(command, list) or not command:
        raise ConfigError(f"invalid config: generator.command in {path} must be a non-empty list")

    timeout_s = gdata.get("timeout_s", 120)
    if isinstance(timeout_s, bool) or not isinstance(timeout_s, (int, float)) or timeout_s <= 0:
        raise ConfigError(f"invalid config: generator.timeout_s in {path} must be a positive number")

    generator = GeneratorConfig(
        command=[str(c) for c in command],
        include_grammar=bool(gdata.get("include_grammar", True)),
        include_grammar_flag=_optional_str(gdata, "include_grammar_flag", path, "--include-grammar") or "",
        timeout_s=float(timeout_s),
        cwd=_optional_str(gdata, "cwd", path),
    )

    grammar = _optional_str(raw, "grammar", path)
    if grammar is not None:
        grammar_path = Path(grammar)
        if not grammar_path.is_absolute():
            grammar = str(path.resolve().parent / grammar_path)

    emit_parser_struct = raw.get("emit_parser_struct", True)
    if not isinstance(emit_parser_struct, bool):
        raise ConfigError(f"invalid config: emit_parser_struct in {path} must be true or false")

    return PipelineConfig(
        interface=_optional_str(raw, "interface", path) or "",
        grammar=grammar,
        parser_name=_optional_str(raw, "parser_name", path),
        # An empty `visibility:` means private items.
        visibility=_optional_str(raw, "visibility", path, "pub") or "",
        declaration_name=_optional_str(raw, "declaration_name", path) or "Rule",
        marker_prefix=_optional_str(raw, "marker_prefix", path, "crate::") or "",
        emit_parser_struct=emit_parser_struct,
        generator=generator,
    )


def _optional_str(raw: dict, key: str, path: Path, default: str | None = None) -> str | None:
    """String value of key; None when the key is present but empty."""
    value = raw.get(key, default)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"invalid config: {key} in {path} must be a string, got {value!r}")
    return value
