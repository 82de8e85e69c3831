"""
Emitter: assemble the final source unit.

Order: parser struct, marker structs, rewritten rule-set enum, then the rest
of the generated code (everything before and after the original enum) with
reference sites rewritten. The result is re-lexed and its delimiters checked;
anything beyond that is left to the Rust compiler.
"""

from __future__ import annotations

import logging

from pipeline_errors import PipelineError
from pipeline_ir import PipelineContext
from reference_rewriter import apply_sites
from rust_lexer import check_balanced, lex

logger = logging.getLogger(__name__)


def render_parser_struct(parser_name: str, visibility: str = "pub") -> str:
    vis = f"{visibility} " if visibility else ""
    return f"{vis}struct {parser_name};"


def rewrite_remainder(ctx: PipelineContext) -> tuple[str, str]:
    """Text before and after the rule-set enum, with every site rewritten."""
    text = ctx.document.text
    span = ctx.declaration.span
    prefix = apply_sites(text[: span.start], ctx.sites, offset=0)
    suffix = apply_sites(text[span.end :], ctx.sites, offset=span.end)
    return prefix, suffix


def emit(ctx: PipelineContext) -> str:
    """Concatenate all stage outputs into one source unit.

    With no rules there is nothing to wrap, and the generated text is
    returned exactly as received.
    """
    if ctx.declaration is None:
        raise PipelineError("emit called before extraction")
    if not ctx.rules:
        return ctx.document.text

    if ctx.container_text is None:
        raise PipelineError("emit called before the container was rewritten")

    header: list[str] = []
    if ctx.emit_parser_struct and ctx.parser_name:
        header.append(render_parser_struct(ctx.parser_name, ctx.visibility))
    header.append("\n".join(m.render() for m in ctx.markers))
    header.append(ctx.container_text)

    prefix, suffix = rewrite_remainder(ctx)
    ctx.rewritten_remainder = prefix + suffix

    output = "\n".join(header) + "\n" + prefix + suffix
    if not output.endswith("\n"):
        output += "\n"

    check_balanced(lex(output))
    logger.debug("Emitted %d characters (%d markers, %d sites)", len(output), len(ctx.markers), len(ctx.sites))
    return output
