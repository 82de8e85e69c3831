"""
Grammar Compiler Adapter: grammar file → raw generated parser source.

The grammar compiler (a thin command-line wrapper around
pest_generator::derive_parser) is a black box. It is run as a subprocess
with the grammar path and parser name substituted into its command line;
its stdout is the generated Rust source. When it fails, its stderr is
surfaced verbatim in the AdapterError.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from pipeline_config import GeneratorConfig, PipelineConfig
from pipeline_errors import AdapterError, ConfigError
from pipeline_ir import GeneratedDocument

logger = logging.getLogger(__name__)


def build_command(
    generator: GeneratorConfig,
    grammar: str,
    parser_name: str,
    visibility: str = "pub",
) -> list[str]:
    """Substitute {grammar}, {parser} and {visibility} into the command template."""
    values = {"grammar": grammar, "parser": parser_name, "visibility": visibility}
    try:
        cmd = [part.format(**values) for part in generator.command]
    except (KeyError, IndexError) as e:
        raise ConfigError(f"unknown placeholder in generator command: {e}") from e
    if generator.include_grammar and generator.include_grammar_flag:
        cmd.append(generator.include_grammar_flag)
    return cmd


def run_grammar_compiler(config: PipelineConfig) -> GeneratedDocument:
    """Invoke the external grammar compiler and capture its output.

    Raises:
        ConfigError: No grammar or parser name configured.
        AdapterError: Grammar file missing, generator missing, timed out,
            or exited non-zero.
    """
    if not config.grammar:
        raise ConfigError("no grammar configured (set `grammar`)")
    if not config.parser_name:
        raise ConfigError("no parser name configured (set `parser_name`)")

    grammar_path = Path(config.grammar)
    if not grammar_path.exists():
        raise AdapterError(f"grammar file not found: {grammar_path}")

    cmd = build_command(config.generator, str(grammar_path), config.parser_name, config.visibility)
    logger.info("Running grammar compiler: %s", " ".join(cmd))

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=config.generator.timeout_s,
            cwd=config.generator.cwd,
        )
    except FileNotFoundError as e:
        raise AdapterError(f"grammar compiler not found: {cmd[0]}") from e
    except subprocess.TimeoutExpired as e:
        stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
        raise AdapterError(
            f"grammar compiler timed out after {config.generator.timeout_s}s",
            stderr=stderr,
        ) from e

    if result.returncode != 0:
        raise AdapterError(
            f"grammar compiler failed with exit code {result.returncode}",
            stderr=result.stderr,
            returncode=result.returncode,
        )

    if result.stderr.strip():
        logger.warning("Grammar compiler diagnostics:\n%s", result.stderr.rstrip())

    logger.debug("Grammar compiler produced %d characters", len(result.stdout))
    return GeneratedDocument(text=result.stdout, origin=str(grammar_path))


def load_generated(path: str | Path) -> GeneratedDocument:
    """Read previously generated parser source instead of running the compiler."""
    path = Path(path)
    if not path.exists():
        raise AdapterError(f"generated source not found: {path}")
    return GeneratedDocument(text=path.read_text(), origin=str(path))
