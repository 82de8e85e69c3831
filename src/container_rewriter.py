"""
Container Rewriter: tag-only `enum Rule` → `#[enum_dispatch]` enum of markers.

  #[derive(...)] pub enum Rule { EOI, r#a }
becomes
  #[enum_dispatch(Interface)]
  #[derive(...)] pub enum Rule { EOI(crate::EOI), r#a(crate::r#a) }

Only the payload of each variant changes. Variant attributes, order and the
enum's own attributes are kept, and no catch-all variant is added, so every
match over the enum stays exhaustive.
"""

from __future__ import annotations

import logging

from pipeline_ir import GeneratedDocument, RuleSetDeclaration

logger = logging.getLogger(__name__)

DISPATCH_ATTRIBUTE = "enum_dispatch"


def dispatch_attribute(interface: str) -> str:
    return f"#[{DISPATCH_ATTRIBUTE}({interface})]"


def rewrite_container(
    document: GeneratedDocument,
    declaration: RuleSetDeclaration,
    interface: str,
    marker_prefix: str = "crate::",
) -> str:
    """Return the replacement text for declaration.span.

    The interface name is inserted literally; whether it resolves is for the
    Rust compiler to decide.
    """
    original = document.slice(declaration.span)
    if not declaration.rules:
        return original

    base = declaration.span.start
    text = original
    # Right-to-left so earlier offsets stay valid.
    for rule in reversed(declaration.rules.rules):
        start = rule.span.start - base
        end = rule.span.end - base
        wrapped = f"{rule.spelling}({marker_prefix}{rule.spelling})"
        text = text[:start] + wrapped + text[end:]

    text = dispatch_attribute(interface) + _attribute_separator(document.text, base) + text
    logger.debug("Wrapped %d variants of `enum %s` over %s", len(declaration.rules), declaration.name, interface)
    return text


def _attribute_separator(text: str, pos: int) -> str:
    """Newline plus the declaration's indentation, or a space if it shares a line."""
    line_start = text.rfind("\n", 0, pos) + 1
    leading = text[line_start:pos]
    if leading.strip():
        return " "
    return "\n" + leading
