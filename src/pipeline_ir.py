"""
DispatchForge Intermediate Representation (IR).

Typed dataclass layer shared by the pipeline stages:
  - RustToken / GeneratedDocument: the generated source and its token stream
  - RuleName / RuleSet / RuleSetDeclaration: what the extractor found
  - MarkerType: one synthesized zero-size struct per rule
  - ReferenceSite: one construction or deconstruction of a rule tag
  - PipelineContext: explicit per-run state threaded through every stage
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Iterator

# ============================================================
# Source Text
# ============================================================


@dataclass(frozen=True)
class Span:
    """Half-open character range [start, end) in a document."""

    start: int
    end: int
    line: int = 0
    column: int = 0

    def __len__(self) -> int:
        return self.end - self.start

    def contains(self, pos: int) -> bool:
        return self.start <= pos < self.end


@dataclass(frozen=True)
class RustToken:
    """A single lexed token of Rust source."""

    kind: str  # RAW_IDENT, IDENT, PUNCT, OPEN, CLOSE, STRING, ...
    text: str
    start: int
    end: int
    line: int
    column: int

    @property
    def span(self) -> Span:
        return Span(self.start, self.end, self.line, self.column)

    @property
    def is_ident(self) -> bool:
        return self.kind in ("IDENT", "RAW_IDENT")

    def is_punct(self, *texts: str) -> bool:
        return self.kind in ("PUNCT", "OPEN", "CLOSE") and (not texts or self.text in texts)

    def __repr__(self) -> str:
        return f"RustToken({self.kind}, {self.text!r} @{self.line}:{self.column})"


@dataclass(frozen=True)
class GeneratedDocument:
    """The evolving output source. Tokens are lexed once, on first use."""

    text: str
    origin: str = "<generated>"

    @cached_property
    def tokens(self) -> list[RustToken]:
        from rust_lexer import lex

        return lex(self.text)

    def slice(self, span: Span) -> str:
        return self.text[span.start : span.end]

    def with_text(self, text: str) -> GeneratedDocument:
        return GeneratedDocument(text=text, origin=self.origin)


# ============================================================
# Rules
# ============================================================


def bare_ident(spelling: str) -> str:
    """Strip a raw-identifier prefix: r#match → match."""
    return spelling[2:] if spelling.startswith("r#") else spelling


@dataclass(frozen=True)
class RuleName:
    """One variant of the rule-set enum, as spelled in the generated source."""

    spelling: str  # "r#Statement", "EOI"
    span: Span | None = field(default=None, compare=False)
    attributes: tuple[str, ...] = field(default=(), compare=False)

    @property
    def name(self) -> str:
        return bare_ident(self.spelling)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RuleSet:
    """Ordered, duplicate-free sequence of rule names."""

    rules: tuple[RuleName, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[RuleName]:
        return iter(self.rules)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and bare_ident(name) in self._by_name

    def __bool__(self) -> bool:
        return bool(self.rules)

    @cached_property
    def _by_name(self) -> dict[str, RuleName]:
        return {r.name: r for r in self.rules}

    def get(self, name: str) -> RuleName | None:
        return self._by_name.get(bare_ident(name))

    def names(self) -> list[str]:
        return [r.name for r in self.rules]


@dataclass(frozen=True)
class RuleSetDeclaration:
    """Where and how the rule-set enum was declared."""

    name: str  # "Rule"
    rules: RuleSet
    span: Span  # outer attributes through the closing brace
    body: Span  # the braces, inclusive
    enum_keyword: Span  # the `enum` token (visibility precedes it)
    visibility: str = ""
    derives: tuple[str, ...] = ()


# ============================================================
# Synthesized Code
# ============================================================


@dataclass(frozen=True)
class MarkerType:
    """A zero-size, default-constructible struct bound to one rule."""

    rule: RuleName
    derives: tuple[str, ...] = ()
    visibility: str = "pub"

    @property
    def name(self) -> str:
        return self.rule.name

    def render(self) -> str:
        vis = f"{self.visibility} " if self.visibility else ""
        lines = []
        if self.derives:
            lines.append(f"#[derive({', '.join(self.derives)})]")
        lines.append(f"{vis}struct {self.rule.spelling};")
        return "\n".join(lines)


class SiteKind(Enum):
    """How a reference to a rule tag is used."""

    CONSTRUCTION = "construction"  # Rule::a used as a value
    DECONSTRUCTION = "deconstruction"  # Rule::a used as a pattern
    WRAPPED = "wrapped"  # Rule::a(...) already carries its payload


@dataclass(frozen=True)
class ReferenceSite:
    """A located `Rule::<rule>` reference and the text that replaces it."""

    rule: RuleName
    kind: SiteKind
    span: Span
    original: str
    replacement: str

    @property
    def needs_rewrite(self) -> bool:
        return self.kind is not SiteKind.WRAPPED


# ============================================================
# Pipeline State
# ============================================================


@dataclass
class PipelineContext:
    """Everything one pipeline run knows. Each stage fills in its own fields."""

    document: GeneratedDocument
    interface: str
    declaration_name: str = "Rule"
    parser_name: str | None = None
    visibility: str = "pub"
    marker_prefix: str = "crate::"
    emit_parser_struct: bool = True

    declaration: RuleSetDeclaration | None = None
    markers: list[MarkerType] = field(default_factory=list)
    container_text: str | None = None
    sites: list[ReferenceSite] = field(default_factory=list)
    rewritten_remainder: str | None = None
    output: str | None = None

    @property
    def rules(self) -> RuleSet:
        return self.declaration.rules if self.declaration else RuleSet()

    def marker_path(self, rule: RuleName) -> str:
        return f"{self.marker_prefix}{rule.spelling}"
