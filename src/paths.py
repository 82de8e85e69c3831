"""Centralized path resolution for DispatchForge.

All modules should import paths from here rather than computing them locally.
This module resolves paths relative to the project root (parent of src/).
"""

from __future__ import annotations

from pathlib import Path

# Project root: parent of the src/ directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Core directories
SRC_DIR = PROJECT_ROOT / "src"
CLI_DIR = PROJECT_ROOT / "cli"
TESTS_DIR = PROJECT_ROOT / "tests"

# Data and reference directories
REFERENCES_DIR = PROJECT_ROOT / "references"
CONFIGS_DIR = PROJECT_ROOT / "configs"
FIXTURES_DIR = TESTS_DIR / "fixtures"

# Key reference files
RUST_TOKENS_GRAMMAR_PATH = REFERENCES_DIR / "rust_tokens.lark"
PEST_PARSER_ARGS_GRAMMAR_PATH = REFERENCES_DIR / "pest_parser_args.lark"

# Pipeline configuration
DEFAULT_CONFIG_PATH = CONFIGS_DIR / "dispatchforge.yaml"
