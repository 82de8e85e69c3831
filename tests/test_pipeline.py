#!/usr/bin/env python3
"""
End-to-end tests for pipeline.py: generated source in, enum_dispatch form out.

Run: python3 tests/test_pipeline.py
"""

import os
import sys
import unittest
from pathlib import Path

_TESTS_DIR = Path(os.path.abspath(__file__)).parent
sys.path.insert(0, str(_TESTS_DIR.parent / "src"))

from emitter import emit
from pipeline import run_pipeline, transform_text, verify_output
from pipeline_config import PipelineConfig
from pipeline_errors import ConfigError, ExtractionError, PipelineError, RewriteError, SynthesisError
from pipeline_ir import GeneratedDocument, PipelineContext
from rust_lexer import check_balanced, lex

FIXTURES = _TESTS_DIR / "fixtures"

DERIVES = "Clone, Copy, Debug, Eq, Hash, Ord, PartialEq, PartialOrd"

ROUND_TRIP_SRC = f"""#[derive({DERIVES})]
pub enum Rule {{
    r#Statement,
    r#Expression,
}}
impl ::pest::Parser<Rule> for LanguageParser {{
    fn parse(rule: Rule) {{
        match rule {{
            Rule::r#Statement => state.rule(Rule::r#Statement, f),
            Rule::r#Expression => state.rule(Rule::r#Expression, f),
        }}
    }}
}}
"""


def _config(**kwargs):
    kwargs.setdefault("interface", "ParserInterface")
    kwargs.setdefault("parser_name", "LanguageParser")
    return PipelineConfig(**kwargs)


def _run(src, collected=None, **kwargs):
    callback = collected.append if collected is not None else None
    return run_pipeline(GeneratedDocument(src), _config(**kwargs), on_stage_update=callback)


def _final(stages):
    return [(s.stage, s.status) for s in stages if s.status != "running"]


class TestRoundTrip(unittest.TestCase):

    def setUp(self):
        self.result = _run(ROUND_TRIP_SRC)
        self.output = self.result.output

    def test_parser_struct_first(self):
        self.assertTrue(self.output.startswith("pub struct LanguageParser;\n"))

    def test_one_marker_per_rule(self):
        self.assertEqual(self.result.markers, ["Statement", "Expression"])
        self.assertIn(f"#[derive({DERIVES}, Default)]\npub struct r#Statement;", self.output)
        self.assertIn(f"#[derive({DERIVES}, Default)]\npub struct r#Expression;", self.output)

    def test_dispatch_container(self):
        self.assertIn(
            f"#[enum_dispatch(ParserInterface)]\n#[derive({DERIVES})]\npub enum Rule {{\n"
            "    r#Statement(crate::r#Statement),\n"
            "    r#Expression(crate::r#Expression),\n}",
            self.output,
        )

    def test_sites_rewritten(self):
        self.assertIn(
            "Rule::r#Statement(_) => state.rule(Rule::r#Statement(crate::r#Statement {}), f),",
            self.output,
        )
        self.assertEqual(self.result.constructions, 2)
        self.assertEqual(self.result.deconstructions, 2)
        self.assertEqual(self.result.sites_rewritten, 4)

    def test_no_bare_references_remain(self):
        self.assertEqual(verify_output(self.output, self.result.rules), 0)
        self.assertEqual(verify_output(ROUND_TRIP_SRC, self.result.rules), 4)

    def test_section_order(self):
        positions = [
            self.output.index("struct LanguageParser;"),
            self.output.index("struct r#Statement;"),
            self.output.index("struct r#Expression;"),
            self.output.index("#[enum_dispatch"),
            self.output.index("impl ::pest::Parser"),
        ]
        self.assertEqual(positions, sorted(positions))

    def test_output_is_balanced(self):
        check_balanced(lex(self.output))
        self.assertTrue(self.output.endswith("}\n"))

    def test_deterministic(self):
        self.assertEqual(_run(ROUND_TRIP_SRC).output, self.output)

    def test_rerun_on_output_rejected(self):
        with self.assertRaises(ExtractionError):
            _run(self.output)

    def test_stage_sequence(self):
        self.assertEqual(
            _final(self.result.stages),
            [
                ("generating", "skipped"),
                ("extracting", "success"),
                ("synthesizing", "success"),
                ("wrapping", "success"),
                ("rewriting", "success"),
                ("emitting", "success"),
            ],
        )


class TestGeneratorFixtures(unittest.TestCase):

    def test_pretty_printed(self):
        result = _run((FIXTURES / "pest_2_7_statement.rs").read_text())
        out = result.output
        self.assertEqual(result.rules, ["EOI", "Statement", "Expression", "Number"])
        self.assertEqual(len(result.markers), 4)
        self.assertEqual((result.constructions, result.deconstructions), (7, 4))
        self.assertIn("state.rule(Rule::r#Statement(crate::r#Statement {}), |state| {", out)
        self.assertIn("Rule::EOI(_) => rules::EOI(state),", out)
        self.assertIn("&[Rule::r#Statement(crate::r#Statement {}), Rule::r#Expression(crate::r#Expression {}),", out)
        self.assertIn("const _PEST_GRAMMAR_LanguageParser", out)
        self.assertEqual(verify_output(out, result.rules), 0)

    def test_token_stream(self):
        result = _run((FIXTURES / "pest_2_5_script.rs").read_text(), parser_name="ScriptParser")
        out = result.output
        self.assertTrue(out.startswith("pub struct ScriptParser;\n"))
        self.assertEqual((result.constructions, result.deconstructions), (9, 5))
        self.assertIn("Rule :: r#Script(crate::r#Script {})", out)
        self.assertIn("Rule :: EOI(_) =>", out)
        self.assertIn("r#Identifier(crate::r#Identifier)\n}", out)
        self.assertEqual(verify_output(out, result.rules), 0)

    def test_transform_text(self):
        src = (FIXTURES / "pest_2_7_statement.rs").read_text()
        self.assertEqual(transform_text(src, _config()), _run(src).output)


class TestOptions(unittest.TestCase):

    def test_no_parser_struct(self):
        out = _run(ROUND_TRIP_SRC, emit_parser_struct=False).output
        self.assertNotIn("struct LanguageParser", out)
        self.assertTrue(out.startswith(f"#[derive({DERIVES}, Default)]\npub struct r#Statement;"))

    def test_restricted_visibility(self):
        out = _run(ROUND_TRIP_SRC, visibility="pub(crate)").output
        self.assertTrue(out.startswith("pub(crate) struct LanguageParser;"))
        self.assertIn("pub(crate) struct r#Statement;", out)

    def test_marker_prefix(self):
        out = _run(ROUND_TRIP_SRC, marker_prefix="self::").output
        self.assertIn("r#Statement(self::r#Statement),", out)
        self.assertIn("Rule::r#Statement(self::r#Statement {})", out)

    def test_surrounding_text_kept_verbatim(self):
        src = "\n\n// generated\nenum Rule { A }\nfn f() { g(Rule::A) }\n"
        out = _run(src, emit_parser_struct=False).output
        self.assertEqual(
            out,
            "#[derive(Default)]\npub struct A;\n"
            "#[enum_dispatch(ParserInterface)]\nenum Rule { A(crate::A) }\n"
            "\n\n// generated\n"
            "\nfn f() { g(Rule::A(crate::A {})) }\n",
        )

    def test_parser_name_colliding_with_rule(self):
        with self.assertRaises(SynthesisError):
            _run(ROUND_TRIP_SRC, parser_name="Statement")

    def test_parser_name_not_reserved_without_struct(self):
        _run(ROUND_TRIP_SRC, parser_name="Statement", emit_parser_struct=False)


class TestDegenerate(unittest.TestCase):

    def test_empty_rule_set_unchanged(self):
        src = "#[derive(Clone)]\npub enum Rule {}\nimpl Rule {}\n"
        result = _run(src)
        self.assertEqual(result.output, src)
        self.assertEqual(result.markers, [])
        self.assertEqual(
            _final(result.stages),
            [
                ("generating", "skipped"),
                ("extracting", "success"),
                ("synthesizing", "skipped"),
                ("wrapping", "skipped"),
                ("rewriting", "skipped"),
                ("emitting", "success"),
            ],
        )


class TestFailures(unittest.TestCase):

    def test_collision_with_existing_item(self):
        src = "pub struct r#Number;\n" + (FIXTURES / "pest_2_7_statement.rs").read_text()
        stages = []
        with self.assertRaises(SynthesisError) as cm:
            _run(src, stages)
        self.assertEqual(cm.exception.identifier, "Number")
        self.assertEqual(cm.exception.line, 1)
        self.assertEqual(_final(stages)[-1], ("synthesizing", "failed"))
        self.assertNotIn("wrapping", [s.stage for s in stages])

    def test_malformed_declaration_stops_pipeline(self):
        stages = []
        with self.assertRaises(ExtractionError):
            _run("pub enum Rule { A = 1, B }", stages)
        self.assertEqual(_final(stages)[-1], ("extracting", "failed"))
        self.assertNotIn("emitting", [s.stage for s in stages])

    def test_missing_declaration(self):
        with self.assertRaises(ExtractionError) as cm:
            _run("pub struct Nothing;")
        self.assertIn("declaration not found", str(cm.exception))

    def test_unrecognized_site(self):
        with self.assertRaises(RewriteError):
            _run("enum Rule { A }\nfn f() -> u32 { Rule::A as u32 }")

    def test_missing_interface(self):
        with self.assertRaises(ConfigError):
            run_pipeline(GeneratedDocument(ROUND_TRIP_SRC), PipelineConfig())

    def test_emit_requires_extraction(self):
        ctx = PipelineContext(document=GeneratedDocument("enum Rule { A }"), interface="I")
        with self.assertRaises(PipelineError):
            emit(ctx)


if __name__ == "__main__":
    unittest.main(verbosity=2)
