"""
Rule Extractor: generated parser source → RuleSetDeclaration.

Finds the single `enum Rule { ... }` emitted by the grammar compiler and reads
its variants in declaration order. Identification is structural: the enum is
located by its keyword and name in the token stream, its outer attributes are
walked backwards bracket by bracket, and its body is delimited by balanced
brace matching. A variant carrying a payload or discriminant means the
generator output no longer has the tag-only shape this pipeline understands,
and is reported as an extraction failure.
"""

from __future__ import annotations

import logging

from pipeline_errors import ExtractionError
from pipeline_ir import (
    GeneratedDocument,
    RuleName,
    RuleSet,
    RuleSetDeclaration,
    RustToken,
    Span,
    bare_ident,
)
from rust_lexer import match_delimiter

logger = logging.getLogger(__name__)

DEFAULT_DECLARATION_NAME = "Rule"


def extract_rules(
    document: GeneratedDocument,
    declaration_name: str = DEFAULT_DECLARATION_NAME,
) -> RuleSetDeclaration:
    """Locate the rule-set enum and parse its variants.

    Raises:
        ExtractionError: declaration not found, ambiguous, or malformed.
    """
    tokens = document.tokens
    positions = _find_enum_keywords(tokens, declaration_name)

    if not positions:
        raise ExtractionError(
            f"declaration not found: no `enum {declaration_name} {{ ... }}` in generated code "
            "(grammar compiler output may have changed shape)",
            identifier=declaration_name,
        )
    if len(positions) > 1:
        lines = ", ".join(str(tokens[i].line) for i in positions)
        first = tokens[positions[1]]
        raise ExtractionError(
            f"declaration block ambiguous: {len(positions)} declarations found (lines {lines})",
            line=first.line,
            column=first.column,
            identifier=declaration_name,
        )

    enum_idx = positions[0]
    open_idx = enum_idx + 2
    close_idx = match_delimiter(tokens, open_idx)

    start_idx, visibility = _visibility_start(document, tokens, enum_idx)
    attr_ranges = _outer_attributes(tokens, start_idx)
    derives = _derive_list(tokens, attr_ranges)
    if attr_ranges:
        start_idx = attr_ranges[0][0]

    rules = _parse_variants(document, tokens, open_idx, close_idx)

    first = tokens[start_idx]
    decl = RuleSetDeclaration(
        name=declaration_name,
        rules=rules,
        span=Span(first.start, tokens[close_idx].end, first.line, first.column),
        body=Span(tokens[open_idx].start, tokens[close_idx].end, tokens[open_idx].line, tokens[open_idx].column),
        enum_keyword=tokens[enum_idx].span,
        visibility=visibility,
        derives=derives,
    )
    logger.debug(
        "Extracted %d rules from `enum %s` at line %d: %s",
        len(rules),
        declaration_name,
        first.line,
        ", ".join(rules.names()),
    )
    return decl


# ============================================================
# Locating the Declaration
# ============================================================


def _find_enum_keywords(tokens: list[RustToken], declaration_name: str) -> list[int]:
    found = []
    for i in range(len(tokens) - 2):
        tok = tokens[i]
        if tok.kind != "IDENT" or tok.text != "enum":
            continue
        name = tokens[i + 1]
        if not name.is_ident or bare_ident(name.text) != declaration_name:
            continue
        after = tokens[i + 2]
        if after.is_punct("{"):
            found.append(i)
        elif after.text in ("<", "where"):
            raise ExtractionError(
                f"unexpected generic `enum {declaration_name}`",
                line=after.line,
                column=after.column,
                identifier=declaration_name,
            )
    return found


def _visibility_start(document: GeneratedDocument, tokens: list[RustToken], enum_idx: int) -> tuple[int, str]:
    """Step back over `pub` / `pub(crate)` / `pub(in path)` before `enum`."""
    i = enum_idx
    if i >= 1 and tokens[i - 1].kind == "IDENT" and tokens[i - 1].text == "pub":
        i -= 1
    elif i >= 1 and tokens[i - 1].is_punct(")"):
        open_idx = _find_opener(tokens, i - 1)
        if open_idx >= 1 and tokens[open_idx - 1].text == "pub":
            i = open_idx - 1
    if i == enum_idx:
        return i, ""
    vis = document.text[tokens[i].start : tokens[enum_idx - 1].end]
    return i, " ".join(vis.split())


def _find_opener(tokens: list[RustToken], close_idx: int) -> int:
    depth = 0
    for i in range(close_idx, -1, -1):
        tok = tokens[i]
        if tok.kind == "CLOSE":
            depth += 1
        elif tok.kind == "OPEN":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _outer_attributes(tokens: list[RustToken], item_start: int) -> list[tuple[int, int]]:
    """Index ranges [hash, close-bracket] of the attributes directly before an item."""
    ranges: list[tuple[int, int]] = []
    i = item_start
    while i >= 1 and tokens[i - 1].is_punct("]"):
        open_idx = _find_opener(tokens, i - 1)
        if open_idx < 1 or not tokens[open_idx - 1].is_punct("#"):
            break
        ranges.append((open_idx - 1, i - 1))
        i = open_idx - 1
    ranges.reverse()
    return ranges


def _derive_list(tokens: list[RustToken], attr_ranges: list[tuple[int, int]]) -> tuple[str, ...]:
    derives: list[str] = []
    for hash_idx, close_idx in attr_ranges:
        inner = tokens[hash_idx + 2 : close_idx]
        if len(inner) < 3 or inner[0].text != "derive" or not inner[1].is_punct("("):
            continue
        current = ""
        for tok in inner[2:-1]:
            if tok.is_punct(","):
                if current:
                    derives.append(current)
                current = ""
            else:
                current += tok.text
        if current:
            derives.append(current)
    return tuple(derives)


# ============================================================
# Variants
# ============================================================


def _parse_variants(
    document: GeneratedDocument,
    tokens: list[RustToken],
    open_idx: int,
    close_idx: int,
) -> RuleSet:
    rules: list[RuleName] = []
    seen: dict[str, RuleName] = {}
    i = open_idx + 1

    while i < close_idx:
        attrs: list[str] = []
        while tokens[i].is_punct("#"):
            if i + 1 >= close_idx or not tokens[i + 1].is_punct("["):
                _drift(tokens[i], "expected `[` after `#` in variant attribute")
            end = match_delimiter(tokens, i + 1)
            attrs.append(document.text[tokens[i].start : tokens[end].end])
            i = end + 1

        tok = tokens[i]
        if not tok.is_ident:
            _drift(tok, f"expected a variant name, got {tok.text!r}")

        rule = RuleName(spelling=tok.text, span=tok.span, attributes=tuple(attrs))
        if rule.name in seen:
            raise ExtractionError(
                f"duplicate rule name (first declared at line {seen[rule.name].span.line})",
                line=tok.line,
                column=tok.column,
                identifier=rule.name,
            )
        seen[rule.name] = rule
        rules.append(rule)
        i += 1

        if i < close_idx:
            sep = tokens[i]
            if not sep.is_punct(","):
                _drift(sep, f"variant {rule.name} is not a bare tag (found {sep.text!r})")
            i += 1

    return RuleSet(tuple(rules))


def _drift(tok: RustToken, message: str) -> None:
    raise ExtractionError(
        f"malformed rule-set declaration: {message}",
        line=tok.line,
        column=tok.column,
    )
