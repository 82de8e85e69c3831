"""
Rust token lexer for generated parser source.

Uses Lark to tokenize Rust text according to rust_tokens.lark, then turns
the flat parse tree into RustToken dataclasses. The rewriting stages work on
this token stream instead of raw characters, so comments, string literals and
formatting differences between generator versions cannot confuse them.
"""

from __future__ import annotations

import logging
import re

from lark import Lark, Token
from lark.exceptions import UnexpectedCharacters, UnexpectedInput

from paths import RUST_TOKENS_GRAMMAR_PATH
from pipeline_errors import LexError
from pipeline_ir import RustToken

logger = logging.getLogger(__name__)

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}

_LONG_RAW_STRING_RE = re.compile(r'(?<![A-Za-z0-9_])(?P<prefix>b?r)(?P<hashes>#{3,})"[\s\S]*?"(?P=hashes)')

# Keywords that cannot be written as raw identifiers.
NON_RAW_KEYWORDS = frozenset({"crate", "self", "super", "Self", "_"})

# Strict and reserved keywords (2018+ editions).
STRICT_KEYWORDS = frozenset(
    {
        "as", "async", "await", "break", "const", "continue", "crate", "dyn",
        "else", "enum", "extern", "false", "fn", "for", "if", "impl", "in",
        "let", "loop", "match", "mod", "move", "mut", "pub", "ref", "return",
        "self", "Self", "static", "struct", "super", "trait", "true", "type",
        "unsafe", "use", "where", "while", "abstract", "become", "box", "do",
        "final", "macro", "override", "priv", "typeof", "unsized", "virtual",
        "yield", "try", "gen",
    }
)


# ============================================================
# Public API
# ============================================================

_parser: Lark | None = None


def get_parser() -> Lark:
    """Get or create the Lark token parser (cached)."""
    global _parser
    if _parser is None:
        grammar_text = RUST_TOKENS_GRAMMAR_PATH.read_text()
        _parser = Lark(
            grammar_text,
            parser="lalr",
            lexer="basic",
            maybe_placeholders=False,
        )
    return _parser


def lex(text: str) -> list[RustToken]:
    """Tokenize Rust source text.

    Raises:
        LexError: If the text contains a character no token can start with.
    """
    masked = _mask_long_raw_strings(text)
    try:
        tree = get_parser().parse(masked)
    except UnexpectedCharacters as e:
        raise LexError(
            f"unexpected character {text[e.pos_in_stream]!r}",
            line=e.line,
            column=e.column,
        ) from e
    except UnexpectedInput as e:
        raise LexError(f"cannot tokenize: {e}", line=getattr(e, "line", None)) from e

    tokens = [_to_rust_token(t, text) for t in tree.children if isinstance(t, Token)]
    logger.debug("Lexed %d tokens from %d characters", len(tokens), len(text))
    return tokens


def _mask_long_raw_strings(text: str) -> str:
    """Rewrite raw strings with three or more `#` as same-length `r"..."` literals.

    RAW_STRING in rust_tokens.lark spells out up to two hashes. Lengths and
    newlines are kept, so token positions still index the original text.
    """
    if "r###" not in text:
        return text

    def mask(m: re.Match) -> str:
        prefix = m.group("prefix")
        inner = m.group(0)[len(prefix) + 1 : -1]
        return prefix + '"' + re.sub(r"[^\n]", "_", inner) + '"'

    return _LONG_RAW_STRING_RE.sub(mask, text)


def _to_rust_token(tok: Token, text: str) -> RustToken:
    return RustToken(
        kind=tok.type,
        text=text[tok.start_pos : tok.end_pos],
        start=tok.start_pos,
        end=tok.end_pos,
        line=tok.line,
        column=tok.column,
    )


# ============================================================
# Delimiters
# ============================================================


def match_delimiter(tokens: list[RustToken], open_index: int) -> int:
    """Return the index of the token closing the delimiter at open_index."""
    opener = tokens[open_index]
    if opener.kind != "OPEN":
        raise LexError(f"expected an opening delimiter, got {opener.text!r}", line=opener.line, column=opener.column)

    stack = [opener]
    for i in range(open_index + 1, len(tokens)):
        tok = tokens[i]
        if tok.kind == "OPEN":
            stack.append(tok)
        elif tok.kind == "CLOSE":
            top = stack.pop()
            if _OPENERS[top.text] != tok.text:
                raise LexError(
                    f"mismatched {tok.text!r}, expected {_OPENERS[top.text]!r} for {top.text!r} at line {top.line}",
                    line=tok.line,
                    column=tok.column,
                )
            if not stack:
                return i
    raise LexError(f"unclosed {opener.text!r}", line=opener.line, column=opener.column)


def check_balanced(tokens: list[RustToken]) -> None:
    """Raise LexError unless every delimiter in the stream is balanced."""
    stack: list[RustToken] = []
    for tok in tokens:
        if tok.kind == "OPEN":
            stack.append(tok)
        elif tok.kind == "CLOSE":
            if not stack:
                raise LexError(f"unmatched {tok.text!r}", line=tok.line, column=tok.column)
            top = stack.pop()
            if _OPENERS[top.text] != tok.text:
                raise LexError(
                    f"mismatched {tok.text!r}, expected {_OPENERS[top.text]!r}",
                    line=tok.line,
                    column=tok.column,
                )
    if stack:
        top = stack[-1]
        raise LexError(f"unclosed {top.text!r}", line=top.line, column=top.column)


def depth_map(tokens: list[RustToken]) -> list[int]:
    """Nesting depth of each token; delimiters get the depth outside them."""
    depths = []
    depth = 0
    for tok in tokens:
        if tok.kind == "CLOSE":
            depth -= 1
        depths.append(depth)
        if tok.kind == "OPEN":
            depth += 1
    return depths


# ============================================================
# Identifiers
# ============================================================


def is_valid_ident(spelling: str) -> bool:
    """True if spelling is usable as a Rust identifier (raw or not)."""
    if spelling.startswith("r#"):
        name = spelling[2:]
        return name.isidentifier() and name.isascii() and name not in NON_RAW_KEYWORDS
    return spelling.isidentifier() and spelling.isascii() and spelling not in STRICT_KEYWORDS and spelling != "_"
