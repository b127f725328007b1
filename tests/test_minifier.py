# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for scriptflow.minifier — jsmin adapter and text helpers."""

from __future__ import annotations

from scriptflow.config import ReplaceRule
from scriptflow.errors import MinifyError
from scriptflow.minifier import (
    JsminMinifier,
    Minifier,
    MinifyFailure,
    MinifySuccess,
    SourceFragment,
    apply_replacements,
    extract_filename,
    run_minifier,
    strip_source_map_refs,
)
from tests._scriptflow_helpers import FailingMinifier


class TestJsminMinifier:
    def test_implements_protocol(self):
        assert isinstance(JsminMinifier(), Minifier)

    def test_minifies_single_fragment(self):
        result = JsminMinifier().minify([SourceFragment("a.js", "var  a = 1;\n\n// comment\nvar b = 2;")])
        assert isinstance(result, MinifySuccess)
        assert "comment" not in result.text
        assert "var a=1" in result.text
        assert result.minifier == "jsmin"

    def test_joins_fragments_in_order(self):
        result = JsminMinifier().minify([SourceFragment("a", "var a = 1;"), SourceFragment("b", "var b = 2;")])
        assert result.text.index("a=1") < result.text.index("b=2")

    def test_template_literals_preserved(self):
        result = JsminMinifier().minify([SourceFragment("t", "var s = `a   b`;")])
        assert "`a   b`" in result.text


class TestRunMinifier:
    def test_success_passthrough(self):
        result = run_minifier(JsminMinifier(), [SourceFragment("a", "var a = 1;")])
        assert isinstance(result, MinifySuccess)

    def test_minify_error_becomes_failure(self, caplog):
        result = run_minifier(FailingMinifier(), [SourceFragment("a", "x")])
        assert isinstance(result, MinifyFailure)
        assert isinstance(result.error, MinifyError)
        assert "broken" in caplog.text

    def test_unexpected_exception_becomes_failure(self):
        class Exploding:
            name = "boom"

            def minify(self, fragments):
                raise RuntimeError("kaput")

        result = run_minifier(Exploding(), [])
        assert isinstance(result, MinifyFailure)
        assert "kaput" in str(result.error)


class TestTextHelpers:
    def test_strip_source_map_line_comment(self):
        text = "var a=1;\n//# sourceMappingURL=a.js.map\n"
        assert "sourceMappingURL" not in strip_source_map_refs(text)
        assert "var a=1;" in strip_source_map_refs(text)

    def test_strip_source_map_block_comment(self):
        text = "var a=1;/*# sourceMappingURL=a.js.map */var b;"
        assert strip_source_map_refs(text) == "var a=1;var b;"

    def test_strip_legacy_at_form(self):
        assert "sourceMappingURL" not in strip_source_map_refs("x\n//@ sourceMappingURL=x.map")

    def test_apply_replacements_plain_then_regex(self):
        rules = [
            ReplaceRule(search=r"debug\(\d+\)", replace="", regex=True),
            ReplaceRule(search="DEBUG", replace="debug(1)"),
        ]
        # plain rule runs first, so the regex sees its output
        assert apply_replacements("DEBUG;go()", rules) == ";go()"

    def test_apply_replacements_no_rules(self):
        assert apply_replacements("abc", []) == "abc"

    def test_extract_filename_drops_query(self):
        assert extract_filename("/js/app.js?ver=1.2") == "/js/app.js"
        assert extract_filename("https://x.test/a.js") == "https://x.test/a.js"
