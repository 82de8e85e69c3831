"""
DispatchForge Pipeline: pest grammar → enum_dispatch-ready parser source.

Single source of truth for the generation pipeline.
Both the CLI and library callers go through this module.

Pipeline:
  grammar → Grammar Compiler (external) → generated Rust text
        → extract → synthesize → wrap container → rewrite references → emit

Stages run strictly in that order over one PipelineContext. Any failure
aborts the run: the error propagates and no output is produced. With the
same generated text and configuration the output is always identical.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from container_rewriter import rewrite_container
from emitter import emit
from grammar_adapter import run_grammar_compiler
from pipeline_config import PipelineConfig
from pipeline_errors import PipelineError
from pipeline_ir import GeneratedDocument, PipelineContext, RuleName, RuleSet, SiteKind
from reference_rewriter import count_bare_sites, find_reference_sites
from rule_extractor import extract_rules
from wrapper_synth import synthesize_markers, validate_rule_names

logger = logging.getLogger(__name__)

STAGES = ("generating", "extracting", "synthesizing", "wrapping", "rewriting", "emitting")


# ── Data Structures ────────────────────────────────────────────────────


@dataclass
class StageResult:
    """Status of a single pipeline stage."""

    stage: str  # one of STAGES
    status: str  # "running", "success", "failed", "skipped"
    message: str = ""
    duration_ms: int | None = None


@dataclass
class PipelineResult:
    """Result of a successful pipeline run."""

    output: str
    rules: list[str] = field(default_factory=list)
    markers: list[str] = field(default_factory=list)
    constructions: int = 0
    deconstructions: int = 0
    already_wrapped: int = 0
    stages: list[StageResult] = field(default_factory=list)
    context: PipelineContext | None = None

    @property
    def sites_rewritten(self) -> int:
        return self.constructions + self.deconstructions


StageCallback = Callable[[StageResult], None]


class _StageRunner:
    """Times stages and reports them to the result and the callback."""

    def __init__(self, on_stage_update: StageCallback | None):
        self.stages: list[StageResult] = []
        self._callback = on_stage_update

    def report(self, stage: str, status: str, message: str = "", duration_ms: int | None = None) -> None:
        sr = StageResult(stage=stage, status=status, message=message, duration_ms=duration_ms)
        self.stages.append(sr)
        if self._callback:
            self._callback(sr)

    def run(self, stage: str, fn: Callable[[], str]) -> None:
        self.report(stage, "running")
        t0 = time.monotonic()
        try:
            message = fn()
        except PipelineError as e:
            self.report(stage, "failed", str(e), _elapsed_ms(t0))
            logger.error("Stage %s failed: %s", stage, e)
            raise
        self.report(stage, "success", message, _elapsed_ms(t0))
        logger.debug("Stage %s: %s", stage, message)


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


# ── Pipeline ───────────────────────────────────────────────────────────


def new_context(document: GeneratedDocument, config: PipelineConfig) -> PipelineContext:
    return PipelineContext(
        document=document,
        interface=config.interface,
        declaration_name=config.declaration_name,
        parser_name=config.parser_name,
        visibility=config.visibility,
        marker_prefix=config.marker_prefix,
        emit_parser_struct=config.emit_parser_struct,
    )


def run_pipeline(
    document: GeneratedDocument,
    config: PipelineConfig,
    *,
    on_stage_update: StageCallback | None = None,
) -> PipelineResult:
    """Transform generated parser source into its enum_dispatch form.

    Args:
        document: Raw output of the grammar compiler.
        config: Interface name, parser name and naming options.
        on_stage_update: Callback for real-time stage status.

    Returns:
        PipelineResult with the emitted source and per-stage counts.

    Raises:
        PipelineError: From the first stage that fails; nothing is emitted.
    """
    config.validate()
    runner = _StageRunner(on_stage_update)
    runner.report("generating", "skipped", f"pre-generated source ({document.origin})")
    return _transform(document, config, runner)


def _transform(document: GeneratedDocument, config: PipelineConfig, runner: _StageRunner) -> PipelineResult:
    """Every stage after generating, reported through runner."""
    ctx = new_context(document, config)

    def extract() -> str:
        ctx.declaration = extract_rules(ctx.document, ctx.declaration_name)
        return f"{len(ctx.rules)} rules: {', '.join(ctx.rules.names())}" if ctx.rules else "0 rules"

    runner.run("extracting", extract)

    if not ctx.rules:
        logger.info("Rule set is empty; emitting generated code unchanged")
        for stage in ("synthesizing", "wrapping", "rewriting"):
            runner.report(stage, "skipped", "empty rule set")
    else:
        def synthesize() -> str:
            reserved = {}
            if ctx.emit_parser_struct and ctx.parser_name:
                reserved[ctx.parser_name.removeprefix("r#")] = f"the parser struct `{ctx.parser_name}`"
            validate_rule_names(ctx.document, ctx.declaration, reserved)
            ctx.markers = synthesize_markers(ctx.rules, ctx.declaration.derives, ctx.visibility)
            return f"{len(ctx.markers)} marker types"

        def wrap() -> str:
            ctx.container_text = rewrite_container(
                ctx.document, ctx.declaration, ctx.interface, ctx.marker_prefix
            )
            return f"enum {ctx.declaration.name} dispatches over {ctx.interface}"

        def rewrite() -> str:
            ctx.sites = find_reference_sites(
                ctx.document,
                ctx.rules,
                ctx.declaration_name,
                exclude=ctx.declaration.span,
                marker_prefix=ctx.marker_prefix,
            )
            return f"{sum(1 for s in ctx.sites if s.needs_rewrite)} reference sites"

        runner.run("synthesizing", synthesize)
        runner.run("wrapping", wrap)
        runner.run("rewriting", rewrite)

    def emit_stage() -> str:
        ctx.output = emit(ctx)
        return f"{len(ctx.output)} characters"

    runner.run("emitting", emit_stage)

    return PipelineResult(
        output=ctx.output,
        rules=ctx.rules.names(),
        markers=[m.name for m in ctx.markers],
        constructions=sum(1 for s in ctx.sites if s.kind is SiteKind.CONSTRUCTION),
        deconstructions=sum(1 for s in ctx.sites if s.kind is SiteKind.DECONSTRUCTION),
        already_wrapped=sum(1 for s in ctx.sites if s.kind is SiteKind.WRAPPED),
        stages=runner.stages,
        context=ctx,
    )


def generate(
    config: PipelineConfig,
    *,
    on_stage_update: StageCallback | None = None,
) -> PipelineResult:
    """Run the grammar compiler on config.grammar, then the full pipeline."""
    config.validate()
    runner = _StageRunner(on_stage_update)
    holder: dict[str, GeneratedDocument] = {}

    def run_compiler() -> str:
        holder["document"] = run_grammar_compiler(config)
        return f"{len(holder['document'].text)} characters from {config.grammar}"

    runner.run("generating", run_compiler)
    return _transform(holder["document"], config, runner)


def transform_text(text: str, config: PipelineConfig) -> str:
    """Convenience wrapper: generated text in, emitted text out."""
    return run_pipeline(GeneratedDocument(text), config).output


def verify_output(output: str, rules: RuleSet | list[str], declaration_name: str = "Rule") -> int:
    """Count references in emitted code still in the bare tag-only shape."""
    if not isinstance(rules, RuleSet):
        rules = RuleSet(tuple(RuleName(r) for r in rules))
    return count_bare_sites(GeneratedDocument(output), rules, declaration_name)
