"""
Local Apply - deterministic text transforms.

Handles mechanical requests (whitespace, bullets, casing, hashtags, line
numbering) without any generation call. Every function here is pure: the
original content is never mutated and the result carries the list of
operations that actually changed something.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from intent_engine.lexicon_loader import OperationDetector, get_operation_table

logger = logging.getLogger(__name__)


class LocalOperation(str, Enum):
    """Supported local operations."""

    FIX_WHITESPACE = "FIX_WHITESPACE"
    ADD_BULLETS = "ADD_BULLETS"
    REMOVE_BULLETS = "REMOVE_BULLETS"
    ADD_EMOJI = "ADD_EMOJI"
    REMOVE_EMOJI = "REMOVE_EMOJI"
    UPPERCASE = "UPPERCASE"
    LOWERCASE = "LOWERCASE"
    TITLE_CASE = "TITLE_CASE"
    ADD_HASHTAGS = "ADD_HASHTAGS"
    REMOVE_HASHTAGS = "REMOVE_HASHTAGS"
    TRIM_LINES = "TRIM_LINES"
    NUMBER_LINES = "NUMBER_LINES"


# Execution order for composed operations. Cleanup first, then removals,
# then casing, then structure, then additions.
OPERATION_PRIORITY: List[LocalOperation] = [
    LocalOperation.FIX_WHITESPACE,
    LocalOperation.TRIM_LINES,
    LocalOperation.REMOVE_EMOJI,
    LocalOperation.REMOVE_HASHTAGS,
    LocalOperation.REMOVE_BULLETS,
    LocalOperation.TITLE_CASE,
    LocalOperation.UPPERCASE,
    LocalOperation.LOWERCASE,
    LocalOperation.ADD_BULLETS,
    LocalOperation.NUMBER_LINES,
    LocalOperation.ADD_EMOJI,
    LocalOperation.ADD_HASHTAGS,
]

# Operation -> operations it supersedes when both are detected.
# "viết hoa đầu" also contains "viết hoa"; "remove bullet points" also
# contains "bullet points".
_SUPERSEDES: Dict[LocalOperation, List[LocalOperation]] = {
    LocalOperation.TITLE_CASE: [LocalOperation.UPPERCASE],
    LocalOperation.REMOVE_BULLETS: [LocalOperation.ADD_BULLETS],
    LocalOperation.REMOVE_EMOJI: [LocalOperation.ADD_EMOJI],
    LocalOperation.REMOVE_HASHTAGS: [LocalOperation.ADD_HASHTAGS],
}

REASON_EMPTY_CONTENT = "Nội dung trống"
REASON_EMPTY_INSTRUCTION = "Chưa có hướng dẫn"
REASON_NO_OPERATION = "Không nhận diện được thao tác cục bộ"
REASON_NO_CHANGE = "Không có thay đổi (nội dung đã đúng định dạng)"


@dataclass
class LocalApplyResult:
    """Result of a local apply call."""

    ok: bool
    reason: str
    next_content: Optional[str] = None
    applied_ops: List[LocalOperation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "next_content": self.next_content,
            "reason": self.reason,
            "applied_ops": [op.value for op in self.applied_ops],
        }


# =============================================================================
# Detection
# =============================================================================


def detect_operations(
    instruction: str,
    detectors: Optional[Dict[str, OperationDetector]] = None,
) -> List[LocalOperation]:
    """
    Detect which local operations an instruction asks for.

    Args:
        instruction: Raw user instruction (Vietnamese or English)
        detectors: Optional detector table (defaults to the bundled lexicon)

    Returns:
        Detected operations in OPERATION_PRIORITY order
    """
    if not instruction or not instruction.strip():
        return []

    table = detectors if detectors is not None else get_operation_table()
    normalized = unicodedata.normalize("NFC", instruction.lower())

    detected = set()
    for name, detector in table.items():
        if detector.matches(normalized):
            try:
                detected.add(LocalOperation(name))
            except ValueError:
                logger.warning(f"Unknown local operation in lexicon: {name}")

    for op, superseded in _SUPERSEDES.items():
        if op in detected:
            detected.difference_update(superseded)

    return [op for op in OPERATION_PRIORITY if op in detected]


def can_handle_locally(instruction: str) -> bool:
    """Whether the instruction can be served without generation."""
    return len(detect_operations(instruction)) > 0


def get_operation_label(op: LocalOperation) -> str:
    """Human-readable (Vietnamese) label for an operation."""
    detector = get_operation_table().get(op.value)
    return detector.label if detector else op.value


# =============================================================================
# Transforms
# =============================================================================

_BULLET_PREFIX = re.compile(r"^[-•●○▪▸►]")
_NUMBER_PREFIX = re.compile(r"^\d+[.)]")
_STRIP_BULLET = re.compile(r"^\s*[-•●○▪▸►]\s*")
_STRIP_NUMBER = re.compile(r"^\s*\d+[.)]\s*")
_HASHTAG = re.compile(r"#\w+")
_EMOJI = re.compile(
    "["
    "\U0001F300-\U0001F9FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\U0001F000-\U0001F02F"
    "\U0001F0A0-\U0001F0FF"
    "\U0001F100-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "]\uFE0F?\u200D?"
)

_EMOJI_KEYWORDS = [
    ("mới", "🆕"),
    ("hot", "🔥"),
    ("sale", "🔥"),
    ("giảm", "💰"),
    ("miễn phí", "🎁"),
    ("free", "🎁"),
    ("quan trọng", "⚠️"),
    ("chú ý", "👀"),
    ("hỏi", "❓"),
    ("trả lời", "💬"),
    ("tip", "💡"),
    ("mẹo", "💡"),
    ("cảnh báo", "⚠️"),
    ("thành công", "✅"),
    ("lỗi", "❌"),
    ("yêu", "❤️"),
    ("thích", "👍"),
]

_DEFAULT_HASHTAGS = ["#ContentMarketing", "#DigitalMarketing", "#SocialMedia"]


def _collapse_spaces(line: str) -> str:
    return re.sub(r"[ \t]+", " ", line).strip()


def fix_whitespace(content: str) -> str:
    lines = [re.sub(r"\s+", " ", line.strip()) for line in content.split("\n")]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()


def add_bullets(content: str) -> str:
    result = []
    for line in content.split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue
        if _BULLET_PREFIX.match(trimmed) or _NUMBER_PREFIX.match(trimmed):
            result.append(line)
        else:
            result.append(f"• {trimmed}")
    return "\n".join(result)


def remove_bullets(content: str) -> str:
    return "\n".join(
        _STRIP_NUMBER.sub("", _STRIP_BULLET.sub("", line))
        for line in content.split("\n")
    )


def remove_emoji(content: str) -> str:
    lines = [_collapse_spaces(_EMOJI.sub("", line)) for line in content.split("\n")]
    return "\n".join(lines).strip()


def add_emoji(content: str) -> str:
    result = []
    for index, line in enumerate(content.split("\n")):
        has_emoji = _EMOJI.search(line) is not None
        if index == 0 or not has_emoji:
            lower = line.lower()
            keyword_emoji = next((e for k, e in _EMOJI_KEYWORDS if k in lower), None)
            if keyword_emoji:
                line = line if line.startswith(keyword_emoji) else f"{keyword_emoji} {line}"
            elif index == 0 and not has_emoji:
                line = f"✨ {line}"
        result.append(line)
    return "\n".join(result)


def to_title_case(content: str) -> str:
    def _word(word: str) -> str:
        return word[:1].upper() + word[1:].lower() if word else word

    return "\n".join(
        " ".join(_word(w) for w in line.split(" ")) for line in content.split("\n")
    )


def remove_hashtags(content: str) -> str:
    lines = [_collapse_spaces(_HASHTAG.sub("", line)) for line in content.split("\n")]
    return "\n".join(lines).strip()


def add_hashtags(content: str) -> str:
    existing = _HASHTAG.findall(content)
    if len(existing) >= 3:
        return content
    to_add = [t for t in _DEFAULT_HASHTAGS if t not in existing][: 3 - len(existing)]
    return f"{content.strip()}\n\n{' '.join(to_add)}"


def trim_lines(content: str) -> str:
    return "\n".join(line for line in content.split("\n") if line.strip())


def number_lines(content: str) -> str:
    lines = [line for line in content.split("\n") if line.strip()]
    result = []
    for index, line in enumerate(lines):
        if _NUMBER_PREFIX.match(line.strip()):
            result.append(line)
        else:
            result.append(f"{index + 1}. {line.strip()}")
    return "\n".join(result)


_TRANSFORMS = {
    LocalOperation.FIX_WHITESPACE: fix_whitespace,
    LocalOperation.ADD_BULLETS: add_bullets,
    LocalOperation.REMOVE_BULLETS: remove_bullets,
    LocalOperation.ADD_EMOJI: add_emoji,
    LocalOperation.REMOVE_EMOJI: remove_emoji,
    LocalOperation.UPPERCASE: str.upper,
    LocalOperation.LOWERCASE: str.lower,
    LocalOperation.TITLE_CASE: to_title_case,
    LocalOperation.ADD_HASHTAGS: add_hashtags,
    LocalOperation.REMOVE_HASHTAGS: remove_hashtags,
    LocalOperation.TRIM_LINES: trim_lines,
    LocalOperation.NUMBER_LINES: number_lines,
}


# =============================================================================
# Entry point
# =============================================================================


def local_apply(content: str, instruction: str) -> LocalApplyResult:
    """
    Apply local transforms requested by ``instruction`` to ``content``.

    Args:
        content: Current draft text
        instruction: User instruction

    Returns:
        LocalApplyResult; ``ok`` is False with a reason when the content or
        instruction is empty, nothing was recognised, or nothing changed.
    """
    if not content or not content.strip():
        return LocalApplyResult(ok=False, reason=REASON_EMPTY_CONTENT)

    if not instruction or not instruction.strip():
        return LocalApplyResult(ok=False, reason=REASON_EMPTY_INSTRUCTION)

    operations = detect_operations(instruction)
    if not operations:
        return LocalApplyResult(ok=False, reason=REASON_NO_OPERATION)

    result = content
    applied: List[LocalOperation] = []
    for op in operations:
        before = result
        result = _TRANSFORMS[op](result)
        if result != before:
            applied.append(op)

    if result == content:
        logger.debug(f"Local apply no-op for ops={[op.value for op in operations]}")
        return LocalApplyResult(ok=False, reason=REASON_NO_CHANGE)

    logger.debug(f"Local apply changed content with ops={[op.value for op in applied]}")
    return LocalApplyResult(
        ok=True,
        next_content=result,
        reason=f"Đã áp dụng: {', '.join(op.value for op in applied)}",
        applied_ops=applied,
    )
