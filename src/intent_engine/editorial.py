"""
Editorial operations - the canonical "how much may change" request.

An EditorialOp names the requested operation, the permitted scope and the
constraints handed to the generation layer. Its weight drives the Edit Guard
thresholds.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class EditorialOpType(str, Enum):
    """Requested editorial operation, lightest first."""

    MICRO_POLISH = "MICRO_POLISH"  # Word-level fixes
    FLOW_SMOOTHING = "FLOW_SMOOTHING"  # Sentence transitions
    CLARITY_IMPROVE = "CLARITY_IMPROVE"  # Clarity without structure changes
    TRIM = "TRIM"  # Shorten content
    SECTION_REWRITE = "SECTION_REWRITE"  # Rewrite specific sections
    BODY_REWRITE = "BODY_REWRITE"  # Rewrite body, keep hook and CTA
    FULL_REWRITE = "FULL_REWRITE"  # Everything may change


class EditorialScope(str, Enum):
    WORDING_ONLY = "WORDING_ONLY"
    SENTENCE_LEVEL = "SENTENCE_LEVEL"
    PARAGRAPH_LEVEL = "PARAGRAPH_LEVEL"
    SECTION_LEVEL = "SECTION_LEVEL"
    FULL = "FULL"


OPERATION_WEIGHTS: Dict[EditorialOpType, int] = {
    EditorialOpType.MICRO_POLISH: 1,
    EditorialOpType.FLOW_SMOOTHING: 2,
    EditorialOpType.CLARITY_IMPROVE: 2,
    EditorialOpType.TRIM: 3,
    EditorialOpType.SECTION_REWRITE: 4,
    EditorialOpType.BODY_REWRITE: 5,
    EditorialOpType.FULL_REWRITE: 6,
}

SCOPE_WEIGHTS: Dict[EditorialScope, int] = {
    EditorialScope.WORDING_ONLY: 1,
    EditorialScope.SENTENCE_LEVEL: 2,
    EditorialScope.PARAGRAPH_LEVEL: 3,
    EditorialScope.SECTION_LEVEL: 4,
    EditorialScope.FULL: 5,
}

# Ops whose thresholds are "light" and whose restructuring is always a breach
LIGHT_OPS = (EditorialOpType.MICRO_POLISH, EditorialOpType.FLOW_SMOOTHING)

OP_LABELS: Dict[EditorialOpType, Dict[str, str]] = {
    EditorialOpType.MICRO_POLISH: {"vi": "Chỉnh sửa nhẹ", "en": "Micro Polish"},
    EditorialOpType.FLOW_SMOOTHING: {"vi": "Mượt mà hơn", "en": "Flow Smoothing"},
    EditorialOpType.CLARITY_IMPROVE: {"vi": "Rõ ràng hơn", "en": "Clarity Improvement"},
    EditorialOpType.TRIM: {"vi": "Rút gọn", "en": "Trim"},
    EditorialOpType.SECTION_REWRITE: {"vi": "Viết lại đoạn", "en": "Section Rewrite"},
    EditorialOpType.BODY_REWRITE: {"vi": "Viết lại nội dung", "en": "Body Rewrite"},
    EditorialOpType.FULL_REWRITE: {"vi": "Viết lại hoàn toàn", "en": "Full Rewrite"},
}

SCOPE_LABELS: Dict[EditorialScope, Dict[str, str]] = {
    EditorialScope.WORDING_ONLY: {"vi": "Chỉ từ ngữ", "en": "Wording only"},
    EditorialScope.SENTENCE_LEVEL: {"vi": "Câu văn", "en": "Sentence level"},
    EditorialScope.PARAGRAPH_LEVEL: {"vi": "Đoạn văn", "en": "Paragraph level"},
    EditorialScope.SECTION_LEVEL: {"vi": "Phần", "en": "Section level"},
    EditorialScope.FULL: {"vi": "Toàn bộ", "en": "Full"},
}


@dataclass
class EditorialOp:
    op: EditorialOpType
    scope: EditorialScope
    weight: int = 0
    hard_constraints: List[str] = field(default_factory=list)
    soft_constraints: List[str] = field(default_factory=list)
    reason: str = ""

    def __post_init__(self):
        if not self.weight:
            self.weight = OPERATION_WEIGHTS[self.op]

    @property
    def is_light(self) -> bool:
        return self.op in LIGHT_OPS

    def to_dict(self) -> dict:
        return {
            "op": self.op.value,
            "scope": self.scope.value,
            "weight": self.weight,
            "hard_constraints": list(self.hard_constraints),
            "soft_constraints": list(self.soft_constraints),
            "reason": self.reason,
        }


_OP_TEMPLATES: Dict[EditorialOpType, dict] = {
    EditorialOpType.MICRO_POLISH: {
        "scope": EditorialScope.WORDING_ONLY,
        "hard": [
            "Do NOT rewrite entire sentences",
            "Do NOT change paragraph structure",
            "Do NOT alter meaning",
            "Preserve all key entities (names, numbers, brands)",
        ],
        "soft": [
            "Fix typos and grammatical errors",
            "Improve word choice where awkward",
            "Keep changes minimal and targeted",
        ],
        "reason": "User requested light polish",
    },
    EditorialOpType.FLOW_SMOOTHING: {
        "scope": EditorialScope.SENTENCE_LEVEL,
        "hard": [
            "Do NOT rewrite entire paragraphs",
            "Do NOT change the overall structure",
            "Do NOT alter the core message",
            "Preserve hook and CTA exactly",
        ],
        "soft": [
            "Improve transitions between sentences",
            "Smooth awkward phrasing",
            "Maintain consistent tone",
        ],
        "reason": "User requested flow improvement",
    },
    EditorialOpType.CLARITY_IMPROVE: {
        "scope": EditorialScope.SENTENCE_LEVEL,
        "hard": [
            "Do NOT change paragraph structure",
            "Do NOT alter the core message",
            "Preserve all factual content",
            "Keep hook and CTA intact",
        ],
        "soft": ["Simplify complex sentences", "Remove ambiguity", "Make points more direct"],
        "reason": "User requested clarity improvement",
    },
    EditorialOpType.TRIM: {
        "scope": EditorialScope.PARAGRAPH_LEVEL,
        "hard": [
            "Do NOT remove key information",
            "Do NOT change the core message",
            "Preserve all critical entities",
            "Keep hook and CTA intact",
        ],
        "soft": [
            "Remove redundant words and phrases",
            "Condense verbose sections",
            "Maintain readability",
        ],
        "reason": "User requested shorter content",
    },
    EditorialOpType.SECTION_REWRITE: {
        "scope": EditorialScope.SECTION_LEVEL,
        "hard": ["Preserve the overall topic", "Keep critical entities", "Maintain the same tone"],
        "soft": [
            "Improve specific sections as needed",
            "Enhance clarity and flow",
            "Hook and CTA can be improved but not replaced",
        ],
        "reason": "User requested section improvement",
    },
    EditorialOpType.BODY_REWRITE: {
        "scope": EditorialScope.SECTION_LEVEL,
        "hard": [
            "Preserve the hook (opening)",
            "Preserve the CTA (call-to-action)",
            "Keep the same core topic",
            "Maintain critical entities",
        ],
        "soft": [
            "Body content can be substantially rewritten",
            "Improve structure and flow",
            "Enhance clarity",
        ],
        "reason": "User requested body rewrite",
    },
    EditorialOpType.FULL_REWRITE: {
        "scope": EditorialScope.FULL,
        "hard": [
            "Keep the same core topic",
            "Preserve critical entities (names, brands, numbers)",
        ],
        "soft": [
            "May completely restructure content",
            "May change tone if appropriate",
            "Should still address the same subject matter",
        ],
        "reason": "User requested full rewrite",
    },
}


def make_editorial_op(op: EditorialOpType, scope: Optional[EditorialScope] = None) -> EditorialOp:
    """Build an EditorialOp with the standard constraints for ``op``."""
    template = _OP_TEMPLATES[op]
    return EditorialOp(
        op=op,
        scope=scope or template["scope"],
        hard_constraints=list(template["hard"]),
        soft_constraints=list(template["soft"]),
        reason=template["reason"],
    )


def _compile(*patterns: str) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Checked in order; first family that matches wins
_DETECTION_ORDER = [
    (EditorialOpType.MICRO_POLISH, _compile(
        r"\b(?:sửa\s*lỗi|fix\s*typos?|chính\s*tả)\b",
        r"\b(?:nhẹ|nhẹ\s*thôi|chút\s*thôi)\b",
        r"\b(?:minor|small\s*fix)\b",
    )),
    (EditorialOpType.FLOW_SMOOTHING, _compile(
        r"\b(?:mượt|mượt\s*mà|smooth|flow)\b",
        r"\b(?:liên\s*kết|transitions?)\b",
    )),
    (EditorialOpType.CLARITY_IMPROVE, _compile(
        r"\b(?:rõ\s*ràng|clear|clarity)\b",
        r"\b(?:dễ\s*hiểu|easier\s*to\s*understand)\b",
    )),
    (EditorialOpType.TRIM, _compile(
        r"\b(?:ngắn\s*hơn|ngắn\s*lại|rút\s*gọn|shorter|trim|condense)\b",
        r"\b(?:bớt|giảm|less)\b",
    )),
    (EditorialOpType.FULL_REWRITE, _compile(
        r"\b(?:viết\s*lại\s*hoàn\s*toàn|rewrite\s*completely)\b",
        r"\b(?:làm\s*lại\s*từ\s*đầu|start\s*over)\b",
        r"\b(?:khác\s*hoàn\s*toàn|completely\s*different)\b",
    )),
    (EditorialOpType.BODY_REWRITE, _compile(
        r"\b(?:viết\s*lại\s*nội\s*dung|rewrite\s*body)\b",
        r"\b(?:thay\s*đổi\s*nội\s*dung|change\s*content)\b",
    )),
]

_GENERIC_IMPROVE = _compile(
    r"\b(?:viết\s*lại|rewrite)\b",
    r"\b(?:hay\s*hơn|better)\b",
    r"\b(?:tốt\s*hơn|improve)\b",
    r"\b(?:cải\s*thiện|enhance)\b",
)

VERY_SHORT_INSTRUCTION = 15
SHORT_INSTRUCTION = 40


def detect_editorial_op(instruction: str) -> Optional[EditorialOp]:
    """
    Infer the requested editorial operation from instruction text.

    Generic "rewrite/better" requests are sized by instruction length:
    very short means flow smoothing, short means a section rewrite, anything
    longer a body rewrite. Ambiguous very short instructions default to a
    micro polish.
    """
    normalized = unicodedata.normalize("NFC", (instruction or "").lower()).strip()
    if not normalized:
        return None
    length = len(normalized)

    for op_type, patterns in _DETECTION_ORDER:
        if any(p.search(normalized) for p in patterns):
            return make_editorial_op(op_type)

    if any(p.search(normalized) for p in _GENERIC_IMPROVE):
        if length <= VERY_SHORT_INSTRUCTION:
            return make_editorial_op(EditorialOpType.FLOW_SMOOTHING)
        if length <= SHORT_INSTRUCTION:
            return make_editorial_op(EditorialOpType.SECTION_REWRITE)
        return make_editorial_op(EditorialOpType.BODY_REWRITE)

    if length <= VERY_SHORT_INSTRUCTION:
        return make_editorial_op(EditorialOpType.MICRO_POLISH)

    return None


def get_editorial_op_label(op: EditorialOpType, lang: str = "vi") -> str:
    return OP_LABELS.get(op, {}).get(lang, op.value)


def get_scope_label(scope: EditorialScope, lang: str = "vi") -> str:
    return SCOPE_LABELS.get(scope, {}).get(lang, scope.value)


def format_editorial_op_constraints(editorial_op: Optional[EditorialOp]) -> str:
    """Render an op's constraints as a prompt block for the generation layer."""
    if editorial_op is None:
        return ""

    lines = [
        "# EDITORIAL OPERATION MODE",
        "",
        f"**Operation:** {get_editorial_op_label(editorial_op.op, 'en')} "
        f"({get_scope_label(editorial_op.scope, 'en')})",
        "",
    ]
    if editorial_op.hard_constraints:
        lines.append("## HARD CONSTRAINTS (MUST FOLLOW)")
        lines.extend(f"- {c}" for c in editorial_op.hard_constraints)
        lines.append("")
    if editorial_op.soft_constraints:
        lines.append("## SOFT GUIDANCE (SHOULD FOLLOW)")
        lines.extend(f"- {c}" for c in editorial_op.soft_constraints)
        lines.append("")
    lines.append("## CONFLICT RESOLUTION")
    lines.append("If the request conflicts with HARD CONSTRAINTS, briefly ask for clarification.")
    lines.append("")
    lines.append("---")
    return "\n".join(lines) + "\n"
