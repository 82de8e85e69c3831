"""
Wrapper Synthesizer: RuleSet → one MarkerType per rule.

Each marker is a unit struct named after its rule, deriving the same traits
as the rule-set enum (so the wrapped enum keeps its derives) plus `Default`.
Markers are emitted at the crate root next to the enum, so a rule whose name
is already taken there would shadow or clash with the existing item; such
names are rejected here instead of being left to fail obscurely later.
"""

from __future__ import annotations

import logging

from pipeline_errors import SynthesisError
from pipeline_ir import GeneratedDocument, MarkerType, RuleSet, RuleSetDeclaration, RustToken, Span
from rust_lexer import STRICT_KEYWORDS, depth_map, is_valid_ident

logger = logging.getLogger(__name__)

# Item keywords whose next identifier names a crate-root declaration.
# Unit structs live in both the type and value namespaces, so functions,
# constants and statics collide as well as types.
_ITEM_KEYWORDS = frozenset({"struct", "enum", "union", "trait", "type", "fn", "const", "static", "mod"})


def synthesize_markers(
    rules: RuleSet,
    derives: tuple[str, ...] = (),
    visibility: str = "pub",
) -> list[MarkerType]:
    """Build marker types in rule order. Pure: no validation, no I/O."""
    marker_derives = _with_default(derives)
    return [MarkerType(rule=r, derives=marker_derives, visibility=visibility) for r in rules]


def _with_default(derives: tuple[str, ...]) -> tuple[str, ...]:
    if any(d.rsplit("::", 1)[-1] == "Default" for d in derives):
        return derives
    return (*derives, "Default")


# ============================================================
# Validation
# ============================================================


def validate_rule_names(
    document: GeneratedDocument,
    declaration: RuleSetDeclaration,
    reserved: dict[str, str] | None = None,
) -> None:
    """Reject rule names that are not legal identifiers or that collide.

    Args:
        document: The generated source the markers will be added to.
        declaration: The extracted rule-set declaration.
        reserved: Extra names claimed by the emitted unit (e.g. the parser
            struct), mapped to a description used in the error message.

    Raises:
        SynthesisError: On the first offending rule, in rule order.
    """
    existing = collect_top_level_items(document, exclude=declaration.span)
    claimed = {declaration.name: f"the rule-set enum `{declaration.name}`"}
    claimed.update(reserved or {})

    for rule in declaration.rules:
        span = rule.span
        line = span.line if span else None
        column = span.column if span else None

        if not is_valid_ident(rule.spelling):
            reason = "reserved word" if rule.name in STRICT_KEYWORDS or rule.name == "_" else "invalid identifier"
            raise SynthesisError(
                f"rule name cannot be used as a marker type ({reason})",
                line=line,
                column=column,
                identifier=rule.spelling,
            )
        if rule.name in claimed:
            raise SynthesisError(
                f"naming collision with {claimed[rule.name]}",
                line=line,
                column=column,
                identifier=rule.name,
            )
        if rule.name in existing:
            kind, where = existing[rule.name]
            raise SynthesisError(
                f"naming collision with existing `{kind}` declared at line {where.line}",
                line=where.line,
                column=where.column,
                identifier=rule.name,
            )


def collect_top_level_items(
    document: GeneratedDocument,
    exclude: Span | None = None,
) -> dict[str, tuple[str, Span]]:
    """Names declared at the outermost nesting level, with their item keyword."""
    tokens = document.tokens
    depths = depth_map(tokens)
    items: dict[str, tuple[str, Span]] = {}

    for i, tok in enumerate(tokens[:-1]):
        if depths[i] != 0 or tok.kind != "IDENT":
            continue
        if exclude is not None and exclude.contains(tok.start):
            continue
        name_tok = _declared_name(tokens, i)
        if name_tok is not None:
            items.setdefault(name_tok.text.removeprefix("r#"), (tok.text, name_tok.span))

    return items


def _declared_name(tokens: list[RustToken], i: int) -> RustToken | None:
    tok = tokens[i]
    nxt = tokens[i + 1]
    if tok.text == "macro_rules" and nxt.is_punct("!") and i + 2 < len(tokens):
        cand = tokens[i + 2]
        return cand if cand.is_ident else None
    if tok.text not in _ITEM_KEYWORDS or not nxt.is_ident:
        return None
    if nxt.kind == "IDENT" and (nxt.text in STRICT_KEYWORDS or nxt.text == "_"):
        # `const fn`, `unsafe fn`, `const _: () = ...`
        return None
    if tok.text == "union" and not (i + 2 < len(tokens) and tokens[i + 2].is_punct("{", "<")):
        # `union` is only a keyword in item position
        return None
    return nxt
