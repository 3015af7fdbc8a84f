"""
Tests for whole-tree standards validation.
"""
import json

from standards_verifier.lint import StandardsLinter


class TestStandardsLinter:
    """StandardsLinter.lint"""

    def test_valid_tree(self, standards):
        standards.write(
            "standards.md",
            "# Standards\n<!-- Root Dispatcher -->\n" + standards.route("testing", "testing/index.md"),
        )
        standards.write(
            "testing/index.md",
            "# Testing\n" + standards.block("verification-testing", standards.test("t", "test -f a")),
        )

        result = StandardsLinter(standards.root).lint()

        assert result.ok, result.errors
        assert result.files == 2

    def test_missing_root_directory(self, tmp_path):
        result = StandardsLinter(tmp_path / "missing").lint()
        assert not result.ok

    def test_collects_multiple_errors(self, standards):
        standards.write(
            "standards.md",
            standards.route("testing", "missing.md") + standards.route("db", "db.md#indexes"),
        )
        standards.write("db.md", "# Database\n")
        standards.write("bad.md", standards.block("ctx", standards.test("t", "rm -rf build")))

        result = StandardsLinter(standards.root).lint()

        joined = "\n".join(result.errors)
        assert "Missing REQUEST target" in joined
        assert "Missing anchor '#indexes'" in joined
        assert "Governance violation (filesystem mutation)" in joined

    def test_duplicate_context_check_ids(self, standards):
        block = standards.block("dup", standards.test("t", "true"))
        standards.write("a.md", block)
        standards.write("b.md", block)

        result = StandardsLinter(standards.root).lint()

        assert any("Duplicate context-check id 'dup'" in e for e in result.errors)

    def test_cycle_detected(self, standards):
        standards.write("standards.md", standards.route("testing", "a.md"))
        standards.write("a.md", standards.route("testing", "b.md"))
        standards.write("b.md", standards.route("testing", "a.md"))

        result = StandardsLinter(standards.root).lint()

        assert any("Routing cycle detected" in e for e in result.errors)

    def test_depth_limit(self, standards):
        standards.write("standards.md", standards.route("testing", "d1.md"))
        standards.write("d1.md", standards.route("testing", "d2.md"))
        standards.write("d2.md", standards.route("testing", "d3.md"))
        standards.write("d3.md", standards.route("testing", "d4.md"))
        standards.write("d4.md", "# Deep\n")

        result = StandardsLinter(standards.root).lint()

        assert any("d4.md (depth=4)" in e for e in result.errors)

    def test_missing_root_dispatcher_is_warning(self, standards):
        standards.write("a.md", "# A\n")

        result = StandardsLinter(standards.root).lint()

        assert result.ok
        assert any("Root dispatcher not found" in w for w in result.warnings)

    def test_parse_errors_reported(self, standards):
        standards.write("standards.md", "# Standards\n")
        standards.write("bad.md", '<conditional-block context-check="x">\nREQUEST: "Get x from x.md"\n</conditional-block>\n')

        result = StandardsLinter(standards.root).lint()

        assert any("task-condition" in e for e in result.errors)

    def test_lexicon_keywords(self, standards):
        standards.write(
            "standards.md",
            "# Standards\n<!-- Root Dispatcher -->\n"
            + standards.route("testing|qa", "testing.md"),
        )
        standards.write("testing.md", "# Testing\n")
        standards.write(
            "_meta/intent-lexicon.json",
            json.dumps({"intents": [{"key": "testing", "synonyms": ["test"]}]}),
        )

        result = StandardsLinter(standards.root).lint()

        assert result.errors == [
            "Unknown task-condition keyword 'qa' in standards.md (not in lexicon)"
        ]

    def test_invalid_lexicon_schema(self, standards):
        standards.write("standards.md", "# Standards\n")
        standards.write(
            "_meta/intent-lexicon.json",
            json.dumps({"intents": [{"synonyms": ["test"]}]}),
        )

        result = StandardsLinter(standards.root).lint()

        assert len(result.errors) == 1
        assert result.errors[0].startswith("Invalid intent lexicon at intents.0:")

    def test_dispatcher_purity_warning(self, standards):
        standards.write(
            "standards.md",
            "# Standards\n<!-- Root Dispatcher -->\n"
            + standards.route("testing", "testing.md")
            + "Always write tests first.\n",
        )
        standards.write("testing.md", "# Testing\n")

        result = StandardsLinter(standards.root).lint()

        assert result.ok
        assert any("Always write tests first." in w for w in result.warnings)

    def test_non_utf8_anchor_target_reported(self, standards):
        standards.write("standards.md", standards.route("binary", "bin.md#section"))
        (standards.root / "bin.md").write_bytes(b"# Section\n\xff\xfe broken\n")

        result = StandardsLinter(standards.root).lint()

        assert not result.ok
        assert any("bin.md" in e for e in result.errors)
        assert not any("Missing anchor" in e for e in result.errors)
