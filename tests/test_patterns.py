"""Tests for mentorlens.analysis.patterns."""

from __future__ import annotations


from mentorlens.analysis.patterns import RULES, detect_patterns, normalize_language


def _types(findings) -> set[str]:
    return {f.pattern_type for f in findings}


class TestLanguages:
    def test_aliases(self):
        assert normalize_language("PY") == "python"
        assert normalize_language("tsx") == "typescript"
        assert normalize_language("ruby") is None

    def test_unsupported_language_has_no_findings(self):
        assert detect_patterns("x = open('f')", "ruby") == []

    def test_empty_source(self):
        assert detect_patterns("", "python") == []

    def test_every_rule_has_a_check(self):
        for rule in RULES:
            assert rule.checks
            assert 0.0 <= rule.severity <= 1.0


class TestPythonRules:
    def test_open_outside_try(self):
        findings = detect_patterns("data = open('cfg.json').read()\n", "python")
        assert len(findings) == 1
        assert findings[0].pattern_type == "missing-error-handling"
        assert findings[0].line_range == (1, 1)
        assert findings[0].severity == 0.8

    def test_open_inside_try_is_fine(self):
        source = "try:\n    data = open('cfg.json').read()\nexcept OSError:\n    data = ''\n"
        assert "missing-error-handling" not in _types(detect_patterns(source, "python"))

    def test_calls_in_comments_and_docstrings_are_ignored(self):
        source = '"""\nopen(path)\n"""\n# requests.get(url)\nx = 1\n'
        assert detect_patterns(source, "python") == []

    def test_broad_except_pass(self):
        source = "try:\n    run()\nexcept Exception:\n    pass\n"
        findings = detect_patterns(source, "python")
        assert [(f.pattern_type, f.line_range) for f in findings] == [
            ("broad-exception-catch", (3, 3))
        ]

    def test_bare_except(self):
        source = "try:\n    run()\nexcept:\n    log()\n"
        assert "broad-exception-catch" in _types(detect_patterns(source, "python"))

    def test_broad_except_that_handles_is_fine(self):
        source = "try:\n    run()\nexcept Exception as e:\n    log(e)\n    raise\n"
        assert "broad-exception-catch" not in _types(detect_patterns(source, "python"))

    def test_nested_loops(self, py_loops):
        findings = detect_patterns(py_loops, "python")
        assert [(f.pattern_type, f.line_range) for f in findings] == [
            ("nested-linear-scan", (4, 4))
        ]

    def test_linear_scan_in_loop(self):
        source = "for item in items:\n    if seen.count(item):\n        skip()\n"
        assert "nested-linear-scan" in _types(detect_patterns(source, "python"))

    def test_mutable_default(self):
        findings = detect_patterns("def add(item, bucket=[]):\n    bucket.append(item)\n", "python")
        assert _types(findings) == {"mutable-default-argument"}

    def test_deep_closures(self):
        source = (
            "def a():\n"
            "    def b():\n"
            "        def c():\n"
            "            return 1\n"
            "        return c\n"
            "    return b\n"
        )
        findings = detect_patterns(source, "python")
        assert [(f.pattern_type, f.line_range) for f in findings] == [
            ("deep-callback-nesting", (3, 3))
        ]

    def test_hardcoded_url(self):
        findings = detect_patterns('API = "https://api.example.com/v1"\n', "python")
        assert _types(findings) == {"hardcoded-configuration"}

    def test_commented_url_is_ignored(self):
        assert detect_patterns('# see "https://example.com"\n', "python") == []


class TestJavaScriptRules:
    def test_await_fetch_outside_try(self, js_fetch):
        findings = detect_patterns(js_fetch, "javascript")
        assert [(f.pattern_type, f.line_range) for f in findings] == [
            ("missing-error-handling", (2, 2))
        ]

    def test_fetch_inside_try(self):
        source = (
            "async function load(url) {\n"
            "  try {\n"
            "    return await fetch(url);\n"
            "  } catch (err) {\n"
            "    report(err);\n"
            "  }\n"
            "}\n"
        )
        assert detect_patterns(source, "js") == []

    def test_empty_catch(self):
        source = "try {\n  run();\n} catch (e) {}\n"
        assert _types(detect_patterns(source, "javascript")) == {"empty-catch-block"}

    def test_empty_catch_across_lines(self):
        source = "try {\n  run();\n} catch (e) {\n}\n"
        assert _types(detect_patterns(source, "javascript")) == {"empty-catch-block"}

    def test_callback_pyramid(self):
        source = (
            "a(function () {\n"
            "  b(function () {\n"
            "    c(function () {\n"
            "      done();\n"
            "    });\n"
            "  });\n"
            "});\n"
        )
        findings = detect_patterns(source, "javascript")
        assert [(f.pattern_type, f.line_range) for f in findings] == [
            ("deep-callback-nesting", (3, 3))
        ]

    def test_nested_loops(self):
        source = (
            "for (const a of items) {\n"
            "  for (const b of others) {\n"
            "    pairs.push([a, b]);\n"
            "  }\n"
            "}\n"
        )
        findings = detect_patterns(source, "typescript")
        assert [(f.pattern_type, f.line_range) for f in findings] == [
            ("nested-linear-scan", (2, 2))
        ]

    def test_includes_inside_foreach(self):
        source = "items.forEach((item) => {\n  if (seen.includes(item)) return;\n});\n"
        assert "nested-linear-scan" in _types(detect_patterns(source, "javascript"))

    def test_loose_equality(self):
        findings = detect_patterns("if (count == '0') { reset(); }\n", "javascript")
        assert _types(findings) == {"loose-equality"}

    def test_null_comparison_is_exempt(self):
        assert detect_patterns("if (value == null) { reset(); }\n", "javascript") == []

    def test_equality_inside_strings_is_ignored(self):
        assert detect_patterns("const s = 'a == b';\n", "javascript") == []

    def test_then_without_catch(self):
        source = "load()\n  .then((r) => show(r));\n"
        assert _types(detect_patterns(source, "javascript")) == {"unawaited-promise"}

    def test_then_with_catch(self):
        source = "load()\n  .then((r) => show(r))\n  .catch(report);\n"
        assert detect_patterns(source, "javascript") == []

    def test_block_comment_is_ignored(self):
        source = "/*\nfetch(url);\nif (a == b) {}\n*/\nconst x = 1;\n"
        assert detect_patterns(source, "javascript") == []


class TestFindingOrder:
    def test_sorted_by_line_then_type(self):
        source = (
            'const url = "http://localhost:3000";\n'
            "if (x == 1) { fetch(url); }\n"
        )
        findings = detect_patterns(source, "javascript")
        assert [(f.line_range[0], f.pattern_type) for f in findings] == [
            (1, "hardcoded-configuration"),
            (2, "loose-equality"),
            (2, "missing-error-handling"),
        ]

    def test_deterministic(self, js_fetch):
        assert detect_patterns(js_fetch, "javascript") == detect_patterns(js_fetch, "javascript")
