#!/usr/bin/env python3
"""
Tests for reference_rewriter.py: locating and classifying `Rule::x` sites.

Run: python3 tests/test_reference_rewriter.py
"""

import os
import sys
import unittest
from pathlib import Path

_TESTS_DIR = Path(os.path.abspath(__file__)).parent
sys.path.insert(0, str(_TESTS_DIR.parent / "src"))

from pipeline_errors import RewriteError
from pipeline_ir import GeneratedDocument, ReferenceSite, RuleName, RuleSet, SiteKind, Span
from reference_rewriter import apply_sites, count_bare_sites, find_reference_sites
from rule_extractor import extract_rules

FIXTURES = _TESTS_DIR / "fixtures"

RULES_AB = RuleSet((RuleName("A"), RuleName("B")))


def _sites(src, rules=RULES_AB, **kwargs):
    return find_reference_sites(GeneratedDocument(src), rules, **kwargs)


def _kinds(src, rules=RULES_AB):
    return [s.kind for s in _sites(src, rules)]


def _fixture_sites(name):
    doc = GeneratedDocument((FIXTURES / name).read_text())
    decl = extract_rules(doc)
    return find_reference_sites(doc, decl.rules, exclude=decl.span)


def _count(sites, kind):
    return sum(1 for s in sites if s.kind is kind)


class TestGeneratorOutput(unittest.TestCase):

    def test_pretty_printed_counts(self):
        sites = _fixture_sites("pest_2_7_statement.rs")
        self.assertEqual(_count(sites, SiteKind.CONSTRUCTION), 7)
        self.assertEqual(_count(sites, SiteKind.DECONSTRUCTION), 4)
        self.assertEqual(_count(sites, SiteKind.WRAPPED), 0)

    def test_token_stream_counts(self):
        sites = _fixture_sites("pest_2_5_script.rs")
        self.assertEqual(_count(sites, SiteKind.CONSTRUCTION), 9)
        self.assertEqual(_count(sites, SiteKind.DECONSTRUCTION), 5)

    def test_doc_attribute_text_is_not_a_site(self):
        """The declaration's doc string mentions `Rule::r#Statement =>`; it's a string."""
        sites = _fixture_sites("pest_2_7_statement.rs")
        self.assertTrue(all(s.span.line > 12 for s in sites))

    def test_sites_in_source_order(self):
        sites = _fixture_sites("pest_2_7_statement.rs")
        starts = [s.span.start for s in sites]
        self.assertEqual(starts, sorted(starts))


class TestClassification(unittest.TestCase):

    def test_rule_call_argument(self):
        sites = _sites("state.rule(Rule::A, |state| state)")
        self.assertEqual(sites[0].kind, SiteKind.CONSTRUCTION)
        self.assertEqual(sites[0].replacement, "Rule::A(crate::A {})")

    def test_slice_literal(self):
        self.assertEqual(_kinds("&[Rule::A, Rule::B]"), [SiteKind.CONSTRUCTION] * 2)

    def test_match_arm(self):
        sites = _sites("match rule { Rule::A => a(state), Rule::B => b(state) }")
        self.assertEqual([s.kind for s in sites], [SiteKind.DECONSTRUCTION] * 2)
        self.assertEqual(sites[0].replacement, "Rule::A(_)")

    def test_or_pattern(self):
        self.assertEqual(
            _kinds("match r { Rule::A | Rule::B => 1, _ => 0 }"),
            [SiteKind.DECONSTRUCTION] * 2,
        )

    def test_guard(self):
        self.assertEqual(_kinds("match r { Rule::A if ok => 1, _ => 0 }"), [SiteKind.DECONSTRUCTION])

    def test_if_let(self):
        self.assertEqual(_kinds("if let Rule::A = r { }"), [SiteKind.DECONSTRUCTION])

    def test_comparison(self):
        self.assertEqual(_kinds("if (r == Rule::A) { }"), [SiteKind.CONSTRUCTION])

    def test_comparison_opening_block(self):
        self.assertEqual(_kinds("if r == Rule::A { }"), [SiteKind.CONSTRUCTION])
        self.assertEqual(_kinds("while r != Rule::B { }"), [SiteKind.CONSTRUCTION])

    def test_comparison_in_compound_condition(self):
        self.assertEqual(
            _kinds("if r != Rule::A && ok || r == Rule::B { }"),
            [SiteKind.CONSTRUCTION] * 2,
        )

    def test_tag_as_left_operand(self):
        self.assertEqual(
            _kinds("if Rule::A == r && Rule::B != s { }"),
            [SiteKind.CONSTRUCTION] * 2,
        )

    def test_comparison_rewritten(self):
        src = "while r == Rule::A { }"
        self.assertEqual(apply_sites(src, _sites(src)), "while r == Rule::A(crate::A {}) { }")

    def test_return_value(self):
        self.assertEqual(_kinds("fn f() -> Rule { return Rule::B; }"), [SiteKind.CONSTRUCTION])

    def test_qualified_path(self):
        sites = _sites("vec![crate::Rule::A]")
        self.assertEqual(sites[0].kind, SiteKind.CONSTRUCTION)
        self.assertEqual(sites[0].original, "Rule::A")

    def test_raw_identifier_rule(self):
        rules = RuleSet((RuleName("r#match"),))
        sites = _sites("&[Rule::r#match]", rules)
        self.assertEqual(sites[0].replacement, "Rule::r#match(crate::r#match {})")

    def test_custom_marker_prefix(self):
        sites = _sites("f(Rule::A)", marker_prefix="self::")
        self.assertEqual(sites[0].replacement, "Rule::A(self::A {})")

    def test_custom_declaration_name(self):
        self.assertEqual(_sites("f(Rule::A)", declaration_name="Token"), [])
        self.assertEqual(len(_sites("f(Token::A)", declaration_name="Token")), 1)


class TestIgnoredReferences(unittest.TestCase):

    def test_strings_and_comments(self):
        src = 'let s = "Rule::A"; // Rule::B\n/* Rule::A */ let c = \'R\';'
        self.assertEqual(_sites(src), [])

    def test_associated_items(self):
        self.assertEqual(_sites("let all = Rule::all_rules();"), [])

    def test_non_rule_variant(self):
        self.assertEqual(_sites("f(Rule::C)"), [])

    def test_other_enum(self):
        self.assertEqual(_sites("f(Other::A)"), [])

    def test_already_wrapped(self):
        sites = _sites("f(Rule::A(crate::A {})); match r { Rule::B(_) => 1 }")
        self.assertEqual([s.kind for s in sites], [SiteKind.WRAPPED] * 2)
        self.assertFalse(any(s.needs_rewrite for s in sites))

    def test_excluded_span(self):
        src = "enum Rule { A }\nf(Rule::A)"
        decl = extract_rules(GeneratedDocument(src))
        self.assertEqual(len(_sites(src, exclude=decl.span)), 1)

    def test_empty_rule_set(self):
        self.assertEqual(_sites("f(Rule::A)", RuleSet()), [])


class TestUnrecognizedShapes(unittest.TestCase):

    def test_arithmetic(self):
        with self.assertRaises(RewriteError) as cm:
            _sites("let x = Rule::A + 1;")
        self.assertIn("unrecognized reference shape", str(cm.exception))
        self.assertEqual(cm.exception.identifier, "A")
        self.assertEqual(cm.exception.line, 1)

    def test_struct_literal(self):
        with self.assertRaises(RewriteError):
            _sites("fn f() { Rule::B {} }")


class TestApplySites(unittest.TestCase):

    def test_apply_rewrites_each_site(self):
        src = "state.rule(Rule::A, f); match r { Rule::B => 1 }"
        out = apply_sites(src, _sites(src))
        self.assertEqual(out, "state.rule(Rule::A(crate::A {}), f); match r { Rule::B(_) => 1 }")

    def test_apply_with_offset(self):
        src = "enum Rule { A }\nf(Rule::A)"
        sites = _sites(src, exclude=Span(0, 15))
        self.assertEqual(apply_sites(src[15:], sites, offset=15), "\nf(Rule::A(crate::A {}))")

    def test_apply_skips_wrapped(self):
        src = "f(Rule::A(crate::A {}))"
        self.assertEqual(apply_sites(src, _sites(src)), src)

    def test_duplicate_site_rejected(self):
        src = "f(Rule::A)"
        site = _sites(src)[0]
        with self.assertRaises(RewriteError):
            apply_sites(src, [site, site])

    def test_overlapping_site_rejected(self):
        src = "f(Rule::A)"
        site = _sites(src)[0]
        shifted = ReferenceSite(
            rule=site.rule,
            kind=site.kind,
            span=Span(site.span.start + 2, site.span.end),
            original="le::A",
            replacement="x",
        )
        with self.assertRaises(RewriteError):
            apply_sites(src, [site, shifted])

    def test_rescan_after_rewrite_finds_nothing(self):
        src = "state.rule(Rule::A, f); match r { Rule::A | Rule::B => 1, _ => 0 }"
        out = apply_sites(src, _sites(src))
        self.assertEqual(count_bare_sites(GeneratedDocument(out), RULES_AB), 0)
        self.assertEqual(count_bare_sites(GeneratedDocument(src), RULES_AB), 3)


if __name__ == "__main__":
    unittest.main(verbosity=2)
