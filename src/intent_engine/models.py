"""
Shared data models for the intent engine.

Holds the enums several components exchange (routes, choices, confirmation
gates) and the chat message log. Message metadata is a tagged union: each
entry carries a ``kind`` discriminator so a component only reads the slice it
owns (origin binding, template, quality lock).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class IntentRoute(str, Enum):
    """Route a turn was dispatched on."""

    CREATE = "CREATE"  # Brand new content
    TRANSFORM = "TRANSFORM"  # New version derived from a source message
    LOCAL_APPLY = "LOCAL_APPLY"  # Deterministic local transform, no generation


class RouteChoice(str, Enum):
    """Options offered to the user in the confirmation UI."""

    EDIT_IN_PLACE = "EDIT_IN_PLACE"
    TRANSFORM_NEW_VERSION = "TRANSFORM_NEW_VERSION"
    CREATE_NEW = "CREATE_NEW"


# Base option order when no preference is active
DEFAULT_CHOICE_ORDER: Tuple[RouteChoice, ...] = (
    RouteChoice.TRANSFORM_NEW_VERSION,
    RouteChoice.CREATE_NEW,
    RouteChoice.EDIT_IN_PLACE,
)


def choice_to_route(choice: RouteChoice) -> IntentRoute:
    """Map a user choice to the route it dispatches on."""
    if choice == RouteChoice.CREATE_NEW:
        return IntentRoute.CREATE
    return IntentRoute.TRANSFORM


class ConfirmationGate(str, Enum):
    """Final value handed to the confirmation UI."""

    SKIP = "SKIP"  # Execute without asking
    FORCE = "FORCE"  # Always ask
    DEFAULT = "DEFAULT"  # Defer to the caller's base heuristic


class MessageRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# =============================================================================
# Message metadata (tagged union)
# =============================================================================


@dataclass(frozen=True)
class OriginMeta:
    """Transform chain binding. origin_message_id is always the chain root."""

    origin_message_id: str
    transform_depth: int = 1
    kind: str = field(default="origin", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "origin_message_id": self.origin_message_id,
            "transform_depth": self.transform_depth,
        }


@dataclass(frozen=True)
class TemplateMeta:
    """Template the message was generated from."""

    template_id: str
    kind: str = field(default="template", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "template_id": self.template_id}


@dataclass(frozen=True)
class QualityLockMeta:
    """Quality lock verdict attached after generation."""

    passed: bool
    score: Optional[float] = None
    kind: str = field(default="quality_lock", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "passed": self.passed, "score": self.score}


MessageMeta = Union[OriginMeta, TemplateMeta, QualityLockMeta]

_META_TYPES = {
    "origin": OriginMeta,
    "template": TemplateMeta,
    "quality_lock": QualityLockMeta,
}


def meta_from_dict(data: Dict[str, Any]) -> Optional[MessageMeta]:
    """Build a meta entry from its serialized form. Unknown kinds yield None."""
    kind = data.get("kind")
    meta_cls = _META_TYPES.get(kind)
    if meta_cls is None:
        return None
    kwargs = {k: v for k, v in data.items() if k != "kind"}
    return meta_cls(**kwargs)


@dataclass(frozen=True)
class Message:
    """One entry of the append-only chat log."""

    id: str
    role: MessageRole
    meta: Tuple[MessageMeta, ...] = ()

    @property
    def is_assistant(self) -> bool:
        return self.role == MessageRole.ASSISTANT

    @property
    def origin(self) -> Optional[OriginMeta]:
        return _first_of(self.meta, OriginMeta)

    @property
    def template(self) -> Optional[TemplateMeta]:
        return _first_of(self.meta, TemplateMeta)

    @property
    def quality_lock(self) -> Optional[QualityLockMeta]:
        return _first_of(self.meta, QualityLockMeta)

    def with_meta(self, entry: MessageMeta) -> "Message":
        """Return a copy with ``entry`` replacing any meta of the same kind."""
        kept = tuple(m for m in self.meta if m.kind != entry.kind)
        return Message(id=self.id, role=self.role, meta=kept + (entry,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "meta": [m.to_dict() for m in self.meta],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        entries = [meta_from_dict(m) for m in data.get("meta", [])]
        return cls(
            id=data["id"],
            role=MessageRole(data["role"]),
            meta=tuple(e for e in entries if e is not None),
        )


def _first_of(entries, meta_cls):
    for entry in entries:
        if isinstance(entry, meta_cls):
            return entry
    return None
