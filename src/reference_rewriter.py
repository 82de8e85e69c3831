"""
Reference-Site Rewriter: bare `Rule::x` uses → wrapped `Rule::x(...)` uses.

Once every variant carries a marker payload, code generated around the enum
that builds or matches bare tags no longer compiles. pest emits three kinds
of such code:

  state.rule(Rule::r#a, |state| ...)          construction
  &[Rule::r#a, Rule::r#b]                     construction (all_rules)
  match rule { Rule::r#a => rules::r#a(state) deconstruction

A single forward pass over the token stream finds each `Rule :: <rule>`
path, classifies it from the tokens around it, and records one
ReferenceSite. Constructions receive a default-constructed marker,
`Rule::r#a(crate::r#a {})`; patterns receive a wildcard payload,
`Rule::r#a(_)`. The braced unit-struct form is also a valid pattern, so a
pattern inside a macro call such as `matches!` that reads like an argument
still compiles. References already followed by `(` are counted as wrapped
and left alone, which makes re-scanning rewritten output a no-op.
"""

from __future__ import annotations

import logging

from pipeline_errors import RewriteError
from pipeline_ir import (
    GeneratedDocument,
    ReferenceSite,
    RuleName,
    RuleSet,
    RustToken,
    SiteKind,
    Span,
    bare_ident,
)
from rust_lexer import match_delimiter

logger = logging.getLogger(__name__)

# Tokens that may precede / follow a tag used as a value.
_VALUE_PRECEDERS = frozenset({"(", "[", "{", ",", ";", "=", "==", "!=", "=>", "&", "|", "return"})
_VALUE_FOLLOWERS = frozenset({",", ")", "]", "}", ";", ".", "==", "!=", "|"})
_COMPARISON_FOLLOWERS = frozenset({"{", "&&", "||"})
_CONDITION_STARTS = frozenset({"if", "while", "&&", "||"})

_CONTEXT_TOKENS = 4


def find_reference_sites(
    document: GeneratedDocument,
    rules: RuleSet,
    declaration_name: str = "Rule",
    exclude: Span | None = None,
    marker_prefix: str = "crate::",
) -> list[ReferenceSite]:
    """Locate and classify every `<declaration_name>::<rule>` reference.

    Raises:
        RewriteError: A reference is neither a construction nor a pattern.
    """
    if not rules:
        return []

    tokens = document.tokens
    sites: list[ReferenceSite] = []

    for i in range(len(tokens) - 2):
        tok = tokens[i]
        if not tok.is_ident or bare_ident(tok.text) != declaration_name:
            continue
        if exclude is not None and exclude.contains(tok.start):
            continue
        if not tokens[i + 1].is_punct("::") or not tokens[i + 2].is_ident:
            continue
        rule = rules.get(tokens[i + 2].text)
        if rule is None:
            # Associated items such as Rule::all_rules.
            continue

        kind = _classify(tokens, i, declaration_name)
        original = document.text[tok.start : tokens[i + 2].end]
        sites.append(
            ReferenceSite(
                rule=rule,
                kind=kind,
                span=Span(tok.start, tokens[i + 2].end, tok.line, tok.column),
                original=original,
                replacement=_replacement(original, rule, kind, marker_prefix),
            )
        )

    logger.debug(
        "Found %d reference sites (%d construction, %d deconstruction, %d wrapped)",
        len(sites),
        sum(1 for s in sites if s.kind is SiteKind.CONSTRUCTION),
        sum(1 for s in sites if s.kind is SiteKind.DECONSTRUCTION),
        sum(1 for s in sites if s.kind is SiteKind.WRAPPED),
    )
    return sites


def _replacement(original: str, rule: RuleName, kind: SiteKind, marker_prefix: str) -> str:
    if kind is SiteKind.CONSTRUCTION:
        return f"{original}({marker_prefix}{rule.spelling} {{}})"
    if kind is SiteKind.DECONSTRUCTION:
        return f"{original}(_)"
    return original


# ============================================================
# Classification
# ============================================================


def _classify(tokens: list[RustToken], name_idx: int, declaration_name: str) -> SiteKind:
    rule_idx = name_idx + 2
    nxt = tokens[rule_idx + 1] if rule_idx + 1 < len(tokens) else None
    path_start = _path_start(tokens, name_idx)
    prev = tokens[path_start - 1] if path_start > 0 else None

    if nxt is not None and nxt.is_punct("("):
        return SiteKind.WRAPPED

    if prev is not None and prev.text == "let" and nxt is not None and nxt.is_punct("="):
        return SiteKind.DECONSTRUCTION

    if _leads_to_match_arm(tokens, rule_idx + 1):
        return SiteKind.DECONSTRUCTION

    if prev is not None and nxt is not None:
        if prev.text in _VALUE_PRECEDERS and nxt.is_punct(*_VALUE_FOLLOWERS):
            return SiteKind.CONSTRUCTION
        # Either operand of a comparison in an `if` or `while` condition.
        if prev.is_punct("==", "!=") and nxt.is_punct(*_COMPARISON_FOLLOWERS):
            return SiteKind.CONSTRUCTION
        if prev.text in _CONDITION_STARTS and nxt.is_punct("==", "!="):
            return SiteKind.CONSTRUCTION

    _unrecognized(tokens, path_start, rule_idx)
    raise AssertionError("unreachable")


def _path_start(tokens: list[RustToken], name_idx: int) -> int:
    """Step back over leading path segments: crate::Rule, super::super::Rule, ::x::Rule."""
    i = name_idx
    while i >= 2 and tokens[i - 1].is_punct("::") and tokens[i - 2].is_ident:
        i -= 2
    if i >= 1 and tokens[i - 1].is_punct("::"):
        i -= 1
    return i


def _leads_to_match_arm(tokens: list[RustToken], i: int) -> bool:
    """True if the tokens from i are `(| pattern)* =>` or an `if` guard."""
    n = len(tokens)
    while i < n and tokens[i].is_punct("|"):
        i += 1
        i = _skip_simple_pattern(tokens, i)
        if i < 0:
            return False
    if i >= n:
        return False
    return tokens[i].is_punct("=>") or (tokens[i].kind == "IDENT" and tokens[i].text == "if")


def _skip_simple_pattern(tokens: list[RustToken], i: int) -> int:
    """Skip a path pattern with an optional tuple payload; -1 if not one."""
    n = len(tokens)
    if i < n and tokens[i].is_punct("::"):
        i += 1
    if i >= n or not tokens[i].is_ident:
        return -1
    i += 1
    while i + 1 < n and tokens[i].is_punct("::") and tokens[i + 1].is_ident:
        i += 2
    if i < n and tokens[i].is_punct("("):
        i = match_delimiter(tokens, i) + 1
    return i


def _unrecognized(tokens: list[RustToken], start: int, rule_idx: int) -> None:
    lo = max(0, start - _CONTEXT_TOKENS)
    hi = min(len(tokens), rule_idx + 1 + _CONTEXT_TOKENS)
    context = " ".join(t.text for t in tokens[lo:hi])
    tok = tokens[start]
    raise RewriteError(
        f"unrecognized reference shape: `{context}`",
        line=tok.line,
        column=tok.column,
        identifier=bare_ident(tokens[rule_idx].text),
    )


# ============================================================
# Applying Rewrites
# ============================================================


def apply_sites(text: str, sites: list[ReferenceSite], offset: int = 0) -> str:
    """Rewrite every site whose span lies in text (which starts at offset).

    Each site is applied exactly once; overlapping or repeated spans are an
    internal error rather than a silent double rewrite.
    """
    end = offset + len(text)
    pending = sorted(
        (s for s in sites if s.needs_rewrite and offset <= s.span.start and s.span.end <= end),
        key=lambda s: s.span.start,
    )

    pieces: list[str] = []
    cursor = 0
    for site in pending:
        start = site.span.start - offset
        if start < cursor:
            raise RewriteError(
                "reference site rewritten more than once",
                line=site.span.line,
                column=site.span.column,
                identifier=site.rule.name,
            )
        pieces.append(text[cursor:start])
        pieces.append(site.replacement)
        cursor = site.span.end - offset
    pieces.append(text[cursor:])
    return "".join(pieces)


def count_bare_sites(
    document: GeneratedDocument,
    rules: RuleSet,
    declaration_name: str = "Rule",
) -> int:
    """Number of references still in the original tag-only shape."""
    sites = find_reference_sites(document, rules, declaration_name)
    return sum(1 for s in sites if s.needs_rewrite)
