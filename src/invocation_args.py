"""
Invocation surface: `#[pest_parser(grammar = "...", interface = "...")]`.

Parses the attribute arguments with Lark according to pest_parser_args.lark
and validates them into a PestParserArgs model. The annotated item
(`pub struct LanguageParser;`) supplies the parser name and visibility.
"""

from __future__ import annotations

import re
from pathlib import Path

from lark import Lark, Transformer, v_args
from lark.exceptions import LarkError, UnexpectedInput
from pydantic import BaseModel, Field, ValidationError

from paths import PEST_PARSER_ARGS_GRAMMAR_PATH
from pipeline_errors import InvocationError, PipelineError
from rust_lexer import lex, match_delimiter

REQUIRED_KEYS = ("grammar", "interface")

_ATTRIBUTE_RE = re.compile(r"^\s*#\s*\[\s*pest_parser\s*\((?P<args>.*)\)\s*\]\s*$", re.DOTALL)
_CALL_RE = re.compile(r"^\s*pest_parser\s*\((?P<args>.*)\)\s*$", re.DOTALL)


# ── Models ─────────────────────────────────────────────────────────────


class PestParserArgs(BaseModel):
    grammar: str = Field(min_length=1)
    interface: str = Field(min_length=1)


class AnnotatedItem(BaseModel):
    name: str
    visibility: str = ""


# ── Argument Parsing ───────────────────────────────────────────────────


def _unquote(s: str) -> str:
    """Remove surrounding quotes and unescape."""
    if s.startswith('"') and s.endswith('"'):
        s = s[1:-1]
    return (
        s.replace('\\"', '"')
        .replace("\\\\", "\\")
        .replace("\\n", "\n")
        .replace("\\t", "\t")
    )


@v_args(inline=True)
class ArgsTransformer(Transformer):
    """Transform Lark parse tree → list of (key, value, is_string)."""

    def start(self, *args):
        return list(args)

    def arg(self, key, value):
        return (key, value[0], value[1])

    def key(self, *names):
        return "::".join(str(n) for n in names)

    def string_value(self, token):
        return (_unquote(str(token)), True)

    def other_value(self, item):
        return (str(item), False)


_parser: Lark | None = None


def get_parser() -> Lark:
    """Get or create the Lark argument parser (cached)."""
    global _parser
    if _parser is None:
        _parser = Lark(
            PEST_PARSER_ARGS_GRAMMAR_PATH.read_text(),
            parser="lalr",
            maybe_placeholders=False,
        )
    return _parser


def parse_attribute_args(text: str) -> PestParserArgs:
    """Parse `grammar = "g.pest", interface = "I"` (keys in either order).

    The full attribute form `#[pest_parser(...)]` is accepted too.

    Raises:
        InvocationError: Wrong argument count, non-identifier key,
            non-string value, unknown key, or a syntax error.
    """
    m = _ATTRIBUTE_RE.match(text) or _CALL_RE.match(text)
    if m:
        text = m.group("args")

    try:
        tree = get_parser().parse(text)
    except UnexpectedInput as e:
        raise InvocationError(
            f"cannot parse attribute arguments: {e.__class__.__name__}",
            line=getattr(e, "line", None),
            column=getattr(e, "column", None),
        ) from e
    except LarkError as e:
        raise InvocationError(f"cannot parse attribute arguments: {e}") from e

    args = ArgsTransformer().transform(tree)

    if len(args) != 2:
        raise InvocationError(f"expected 2 arguments, but got {len(args)}")

    values: dict[str, str] = {}
    for key, value, is_string in args:
        if "::" in key:
            raise InvocationError("key of argument must be an identifier", identifier=key)
        if not is_string:
            raise InvocationError("value of argument must be a string literal", identifier=key)
        values[key] = value

    keys = tuple(k for k, _, _ in args)
    if set(keys) != set(REQUIRED_KEYS):
        raise InvocationError(
            f"expected arguments are `grammar` and `interface`, but got `{keys[0]}` and `{keys[1]}`"
        )

    try:
        return PestParserArgs(**values)
    except ValidationError as e:
        raise InvocationError(f"invalid attribute arguments: {e.errors()[0]['loc'][0]} must not be empty") from e


# ── Annotated Item ─────────────────────────────────────────────────────


def parse_annotated_item(text: str) -> AnnotatedItem:
    """Read `[attrs] [vis] struct Name;` into its name and visibility.

    Raises:
        InvocationError: If the item is not a unit struct.
    """
    try:
        tokens = lex(text)
        i = 0
        # Outer attributes (e.g. a doc comment as #[doc = ...]) are not part of the name.
        while i + 1 < len(tokens) and tokens[i].is_punct("#") and tokens[i + 1].is_punct("["):
            i = match_delimiter(tokens, i + 1) + 1
    except PipelineError as e:
        raise InvocationError(f"cannot read annotated item: {e.message}", line=e.line, column=e.column) from e

    rest = tokens[i:]
    vis_end = 0
    if rest and rest[0].text == "pub":
        vis_end = 1
        if len(rest) > 1 and rest[1].is_punct("("):
            try:
                vis_end = match_delimiter(rest, 1) + 1
            except PipelineError as e:
                raise InvocationError(f"cannot read visibility: {e.message}") from e

    body = rest[vis_end:]
    if (
        len(body) != 3
        or body[0].text != "struct"
        or not body[1].is_ident
        or not body[2].is_punct(";")
    ):
        raise InvocationError(
            "expected a unit struct such as `pub struct LanguageParser;`",
            line=body[0].line if body else None,
        )

    visibility = ""
    if vis_end:
        visibility = " ".join(text[rest[0].start : rest[vis_end - 1].end].split())
    return AnnotatedItem(name=body[1].text, visibility=visibility)


def read_grammar_path(args: PestParserArgs, base_dir: str | Path | None = None) -> Path:
    """Resolve the grammar path like pest does: relative to the crate's src/."""
    path = Path(args.grammar)
    if path.is_absolute() or base_dir is None:
        return path
    return Path(base_dir) / path
