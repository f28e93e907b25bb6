"""Tests for the YAML lexicon loader."""

import pytest

from intent_engine.lexicon_loader import (
    LexiconLoader,
    SignalClass,
    get_lexicon_dir,
    get_operation_table,
    get_rule_table,
)


@pytest.fixture
def loader():
    return LexiconLoader()


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(
        "lang: en\n"
        "rules:\n"
        "  - id: add\n"
        "    pattern: '\\badd\\b'\n"
        "    weight: 3\n"
        "    indicates: EDIT_INTENT\n"
        "  - id: hook\n"
        "    pattern: '\\bhook\\b'\n"
        "    weight: 1\n"
        "    indicates: TARGET_HOOK\n"
        "    label: 'opening'\n"
        "  - id: broken_regex\n"
        "    pattern: '(unclosed'\n"
        "    weight: 1\n"
        "    indicates: EDIT_INTENT\n"
        "  - id: unknown_class\n"
        "    pattern: 'x'\n"
        "    weight: 1\n"
        "    indicates: SOMETHING_ELSE\n"
        "  - id: missing_weight\n"
        "    pattern: 'y'\n"
        "    indicates: EDIT_INTENT\n",
        encoding="utf-8",
    )
    return path


class TestLoadRuleTable:
    """Tests for LexiconLoader.load_rule_table."""

    def test_valid_rules_loaded(self, loader, rules_file):
        table = loader.load_rule_table(rules_file)
        assert table.lang == "en"
        assert [r.id for r in table.rules] == ["add", "hook"]
        assert table.rules[0].label == "add"
        assert table.rules[1].label == "opening"

    def test_invalid_rules_rejected(self, loader, rules_file):
        loader.load_rule_table(rules_file)
        assert loader.stats.files_loaded == 1
        assert loader.stats.rules_loaded == 2
        assert loader.stats.rules_rejected == 3
        assert loader.stats.by_class == {"EDIT_INTENT": 1, "TARGET_HOOK": 1}

    def test_match_is_case_insensitive(self, loader, rules_file):
        table = loader.load_rule_table(rules_file)
        assert [r.id for r in table.match("ADD a better HOOK")] == ["add", "hook"]
        assert table.match("nothing here") == []

    def test_rules_for(self, loader, rules_file):
        table = loader.load_rule_table(rules_file)
        assert [r.id for r in table.rules_for(SignalClass.TARGET_HOOK)] == ["hook"]
        assert SignalClass.TARGET_HOOK.is_target
        assert not SignalClass.EDIT_INTENT.is_target

    def test_missing_file(self, loader, tmp_path):
        table = loader.load_rule_table(tmp_path / "missing.yaml", lang="en")
        assert table.rules == []
        assert table.lang == "en"
        assert loader.stats.files_loaded == 0


class TestLoadOperationTable:
    """Tests for LexiconLoader.load_operation_table."""

    def test_operations(self, loader, tmp_path):
        path = tmp_path / "ops.yaml"
        path.write_text(
            "operations:\n"
            "  - operation: UPPERCASE\n"
            "    label: 'Viết hoa'\n"
            "    patterns:\n"
            "      - '\\bviết\\s*hoa\\b'\n"
            "  - label: 'no name'\n"
            "  - operation: BROKEN\n"
            "    patterns:\n"
            "      - '(oops'\n",
            encoding="utf-8",
        )
        detectors = loader.load_operation_table(path)
        assert list(detectors) == ["UPPERCASE"]
        assert detectors["UPPERCASE"].label == "Viết hoa"
        assert detectors["UPPERCASE"].matches("viết hoa toàn bộ")

    def test_missing_file(self, loader, tmp_path):
        assert loader.load_operation_table(tmp_path / "missing.yaml") == {}


class TestBundledLexicon:
    """Tests for the YAML tables shipped with the package."""

    def test_files_exist(self):
        names = {p.name for p in get_lexicon_dir().glob("*.yaml")}
        assert {"edit_intent_vi.yaml", "edit_intent_en.yaml", "local_operations.yaml"} <= names

    @pytest.mark.parametrize("lang", ["vi", "en"])
    def test_rule_tables_load_cleanly(self, lang):
        loader = LexiconLoader()
        table = loader.load_rule_table(get_lexicon_dir() / f"edit_intent_{lang}.yaml")
        assert table.lang == lang
        assert loader.stats.rules_rejected == 0
        assert table.rules_for(SignalClass.EDIT_INTENT)

    def test_unknown_lang_falls_back_to_vi(self):
        assert get_rule_table("fr").lang == "vi"

    def test_operation_table(self):
        table = get_operation_table()
        assert "ADD_BULLETS" in table
        assert "NUMBER_LINES" in table
        assert table["ADD_BULLETS"].matches("thêm bullet")
