#!/usr/bin/env python3
"""
DispatchForge CLI: pest grammar → enum_dispatch-ready parser source.

Usage:
    python dispatchforge.py --grammar grammar.pest --interface ParserInterface --parser-name LanguageParser
    python dispatchforge.py --attr 'grammar = "grammar.pest", interface = "ParserInterface"' \\
        --item 'pub struct LanguageParser;'
    python dispatchforge.py --generated raw_parser.rs --interface ParserInterface -o parser.rs

Options:
    --config FILE        YAML config (default: configs/dispatchforge.yaml if present)
    --generated FILE     Skip the grammar compiler, rewrite this generated source
    --output / -o FILE   Write the result here (default: stdout)
    --check              Run every stage and report counts, write nothing
    --verbose / -v       Show stage timing and debug logging
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure src/ is importable
_SCRIPT_DIR = Path(__file__).resolve().parent
_SRC_DIR = _SCRIPT_DIR.parent / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

STAGE_ORDER = {
    "generating": 1,
    "extracting": 2,
    "synthesizing": 3,
    "wrapping": 4,
    "rewriting": 5,
    "emitting": 6,
}


def _print_stage(stage_result):
    """Print a stage update to stderr (stdout may carry the generated code)."""
    idx = STAGE_ORDER.get(stage_result.stage, 0)
    total = len(STAGE_ORDER)
    label = stage_result.stage.capitalize()

    if stage_result.status == "skipped":
        print(f"  [{idx}/{total}] {label}... skipped", file=sys.stderr, flush=True)
    elif stage_result.status == "running":
        print(f"  [{idx}/{total}] {label}...", end=" ", file=sys.stderr, flush=True)
    elif stage_result.status == "success":
        duration = ""
        if stage_result.duration_ms:
            duration = f" ({stage_result.duration_ms}ms)"
        print(f"done{duration} {stage_result.message}", file=sys.stderr, flush=True)
    elif stage_result.status == "failed":
        print("FAILED", file=sys.stderr, flush=True)


def _build_config(args):
    from invocation_args import parse_annotated_item, parse_attribute_args
    from paths import DEFAULT_CONFIG_PATH
    from pipeline_config import PipelineConfig, load_config

    if args.config:
        config = load_config(args.config)
    elif DEFAULT_CONFIG_PATH.exists():
        config = load_config(DEFAULT_CONFIG_PATH)
    else:
        config = PipelineConfig()

    grammar = args.grammar
    interface = args.interface
    if args.attr:
        attr = parse_attribute_args(args.attr)
        grammar = grammar or attr.grammar
        interface = interface or attr.interface

    parser_name = args.parser_name
    visibility = args.visibility
    if args.item:
        item = parse_annotated_item(args.item)
        parser_name = parser_name or item.name
        visibility = visibility if visibility is not None else item.visibility

    config = config.with_overrides(
        grammar=grammar,
        interface=interface,
        parser_name=parser_name,
        visibility=visibility,
        declaration_name=args.declaration_name,
    )
    if args.no_parser_struct:
        config.emit_parser_struct = False
    if args.generator:
        config.generator.command = args.generator.split()
    return config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="dispatchforge",
        description="DispatchForge: pest grammar → enum_dispatch-ready parser source",
    )
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    parser.add_argument("--grammar", type=str, default=None, help="Path to the .pest grammar")
    parser.add_argument("--interface", type=str, default=None, help="Trait every rule marker implements")
    parser.add_argument("--parser-name", type=str, default=None, help="Name of the generated parser struct")
    parser.add_argument("--visibility", type=str, default=None, help='Visibility of emitted items (default: "pub")')
    parser.add_argument(
        "--attr",
        type=str,
        default=None,
        help='Attribute arguments, e.g. \'grammar = "g.pest", interface = "I"\'',
    )
    parser.add_argument("--item", type=str, default=None, help="Annotated item, e.g. 'pub struct LanguageParser;'")
    parser.add_argument("--declaration-name", type=str, default=None, help="Rule-set enum name (default: Rule)")
    parser.add_argument("--generator", type=str, default=None, help="Grammar compiler command template")
    parser.add_argument("--generated", type=str, default=None, help="Rewrite this pre-generated source file")
    parser.add_argument("--no-parser-struct", action="store_true", help="Don't emit the parser struct")
    parser.add_argument("-o", "--output", type=str, default=None, help="Output file (default: stdout)")
    parser.add_argument("--check", action="store_true", help="Run all stages, print a summary, write nothing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show stage progress and debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    from grammar_adapter import load_generated
    from pipeline import generate, run_pipeline
    from pipeline_errors import PipelineError

    on_stage = _print_stage if args.verbose or args.check else None

    try:
        config = _build_config(args)
        if args.generated:
            result = run_pipeline(load_generated(args.generated), config, on_stage_update=on_stage)
        else:
            result = generate(config, on_stage_update=on_stage)
    except PipelineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.check:
        print(
            f"\n{len(result.rules)} rules, {len(result.markers)} markers, "
            f"{result.constructions} constructions, {result.deconstructions} deconstructions rewritten",
            file=sys.stderr,
        )
        return 0

    if args.output:
        Path(args.output).write_text(result.output)
        if args.verbose:
            print(f"Wrote {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(result.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
