"""
Instruction Pattern Lexicon Loader

Loads weighted pattern rules and local-operation detectors from YAML files
and compiles them for matching. YAML files are the source of truth so that
language packs and weight tuning never touch control flow.

Usage:
    loader = LexiconLoader()
    table = loader.load_rule_table(get_lexicon_dir() / "edit_intent_vi.yaml")
    for rule in table.match("chỉ cần thêm giá"):
        print(rule.label, rule.weight)
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern

import yaml

logger = logging.getLogger(__name__)


class SignalClass(str, Enum):
    """What a matched edit-intent rule indicates."""

    EDIT_INTENT = "EDIT_INTENT"  # Verb that implies modifying existing content
    NOT_CREATE = "NOT_CREATE"  # Explicit clarification: not a new post
    PRESERVE_REST = "PRESERVE_REST"  # Leave the other sections alone
    TARGET_BODY = "TARGET_BODY"
    TARGET_HOOK = "TARGET_HOOK"
    TARGET_CTA = "TARGET_CTA"
    TARGET_TONE = "TARGET_TONE"

    @property
    def is_target(self) -> bool:
        return self.value.startswith("TARGET_")


@dataclass(frozen=True)
class PatternRule:
    """A single weighted rule: (pattern, weight, indicates, label)."""

    id: str
    pattern: Pattern
    weight: int
    indicates: SignalClass
    label: str

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternRule":
        return cls(
            id=data["id"],
            pattern=re.compile(data["pattern"], re.IGNORECASE),
            weight=int(data["weight"]),
            indicates=SignalClass(data["indicates"]),
            label=data.get("label", data["id"]),
        )


@dataclass
class RuleTable:
    """Language-specific rule table."""

    lang: str
    rules: List[PatternRule] = field(default_factory=list)

    def match(self, text: str) -> List[PatternRule]:
        """Return every rule whose pattern occurs in ``text``, in table order."""
        normalized = unicodedata.normalize("NFC", text)
        return [rule for rule in self.rules if rule.matches(normalized)]

    def rules_for(self, signal: SignalClass) -> List[PatternRule]:
        return [rule for rule in self.rules if rule.indicates == signal]


@dataclass
class OperationDetector:
    """Patterns that detect one local operation."""

    operation: str
    label: str
    patterns: List[Pattern] = field(default_factory=list)

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


@dataclass
class LexiconStats:
    """Statistics about loaded lexicon files."""

    files_loaded: int = 0
    rules_loaded: int = 0
    rules_rejected: int = 0
    by_class: Dict[str, int] = field(default_factory=dict)


class LexiconLoader:
    """
    Loads rule tables and operation detectors from YAML.

    Malformed entries are logged and skipped; a missing file yields an empty
    table so the caller falls through to "no match".
    """

    def __init__(self):
        self._stats = LexiconStats()

    @property
    def stats(self) -> LexiconStats:
        """Get loading statistics."""
        return self._stats

    def _read_yaml(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            logger.warning(f"Lexicon file not found: {path}")
            return None

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)

        self._stats.files_loaded += 1
        return data or {}

    def load_rule_table(self, path: Path, lang: Optional[str] = None) -> RuleTable:
        """
        Load a weighted rule table.

        Args:
            path: Path to rule table YAML file
            lang: Language code (defaults to the file's ``lang`` key)

        Returns:
            RuleTable with compiled rules (empty if the file is missing)
        """
        data = self._read_yaml(Path(path))
        if data is None:
            return RuleTable(lang=lang or "vi")

        table = RuleTable(lang=lang or data.get("lang", "vi"))
        for rule_data in data.get("rules", []):
            rule = self._parse_rule(rule_data)
            if rule is None:
                self._stats.rules_rejected += 1
                continue
            table.rules.append(rule)
            self._stats.rules_loaded += 1
            key = rule.indicates.value
            self._stats.by_class[key] = self._stats.by_class.get(key, 0) + 1

        logger.info(f"Loaded {len(table.rules)} rules from {Path(path).name}")
        return table

    def _parse_rule(self, data: Dict[str, Any]) -> Optional[PatternRule]:
        """Parse a single rule from YAML data."""
        if not all(k in data for k in ("id", "pattern", "weight", "indicates")):
            logger.warning(f"Rule missing required fields: {data}")
            return None

        try:
            return PatternRule.from_dict(data)
        except re.error as e:
            logger.error(f"Invalid regex pattern in {data['id']}: {e}")
        except ValueError as e:
            logger.error(f"Invalid rule {data['id']}: {e}")
        return None

    def load_operation_table(self, path: Path) -> Dict[str, OperationDetector]:
        """
        Load local operation detectors keyed by operation name.

        Args:
            path: Path to operations YAML file

        Returns:
            Dict of operation name -> OperationDetector
        """
        data = self._read_yaml(Path(path))
        if data is None:
            return {}

        detectors: Dict[str, OperationDetector] = {}
        for entry in data.get("operations", []):
            name = entry.get("operation")
            if not name:
                logger.warning(f"Operation entry missing name: {entry}")
                continue
            try:
                patterns = [re.compile(p, re.IGNORECASE) for p in entry.get("patterns", [])]
            except re.error as e:
                logger.error(f"Invalid regex pattern for {name}: {e}")
                continue
            detectors[name] = OperationDetector(
                operation=name,
                label=entry.get("label", name),
                patterns=patterns,
            )

        logger.info(f"Loaded {len(detectors)} local operations from {Path(path).name}")
        return detectors


# =============================================================================
# Bundled lexicon
# =============================================================================


def get_lexicon_dir() -> Path:
    """Directory of the YAML tables shipped with the package."""
    return Path(__file__).parent / "lexicon"


_rule_tables: Dict[str, RuleTable] = {}
_operation_table: Dict[str, OperationDetector] = {}


def get_rule_table(lang: str = "vi") -> RuleTable:
    """Get the bundled edit-intent rule table for ``lang`` (vi or en)."""
    lang = "en" if lang == "en" else "vi"
    if lang not in _rule_tables:
        loader = LexiconLoader()
        _rule_tables[lang] = loader.load_rule_table(
            get_lexicon_dir() / f"edit_intent_{lang}.yaml", lang=lang
        )
    return _rule_tables[lang]


def get_operation_table() -> Dict[str, OperationDetector]:
    """Get the bundled local-operation detectors."""
    if not _operation_table:
        loader = LexiconLoader()
        _operation_table.update(
            loader.load_operation_table(get_lexicon_dir() / "local_operations.yaml")
        )
    return _operation_table
