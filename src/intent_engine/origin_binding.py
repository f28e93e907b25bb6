"""
Origin/Source binding for transform chains.

Every transform result points at the first message of its chain, never at
an intermediate result. N consecutive transform requests on one thread
therefore all bind to the same original content, which keeps a long
iteration from drifting onto a different topic.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from intent_engine.models import IntentRoute, Message, OriginMeta

logger = logging.getLogger(__name__)


class SourceResolution(str, Enum):
    """How the source of a turn was chosen."""

    UI_SELECTED = "UI_SELECTED"  # User picked a message explicitly
    CHAIN_LOCKED = "CHAIN_LOCKED"  # Previous TRANSFORM turn's source
    LAST_ASSISTANT = "LAST_ASSISTANT"  # Fallback to the latest assistant message
    NONE = "NONE"  # No usable source


@dataclass
class SourceSelection:
    source_id: Optional[str]
    resolution: SourceResolution

    def to_dict(self) -> dict:
        return {"source_id": self.source_id, "resolution": self.resolution.value}


@dataclass
class TransformBinding:
    """Binding written onto the result of a transform."""

    source_id: str
    origin_id: str
    resolution: SourceResolution
    depth: int

    def to_meta(self) -> OriginMeta:
        return OriginMeta(origin_message_id=self.origin_id, transform_depth=self.depth)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "origin_id": self.origin_id,
            "resolution": self.resolution.value,
            "depth": self.depth,
        }


def _index(messages: Sequence[Message]) -> Dict[str, Message]:
    return {m.id: m for m in messages}


def get_origin_to_track(source_id: Optional[str], messages: Sequence[Message]) -> Optional[str]:
    """
    Resolve the chain root for ``source_id``.

    Returns the message's origin when it carries one, otherwise the id itself.
    Legacy logs where an origin points at another transform result are
    followed to the root so resolution stays idempotent along the chain.

    Args:
        source_id: Candidate source message id
        messages: Chat log

    Returns:
        Origin message id, or None when source_id is None
    """
    if not source_id:
        return None

    by_id = _index(messages)
    current = source_id
    seen = {current}
    while True:
        message = by_id.get(current)
        if message is None or message.origin is None:
            return current
        next_id = message.origin.origin_message_id
        if next_id in seen:
            logger.warning(f"Origin cycle detected at {next_id}, stopping at {current}")
            return current
        seen.add(next_id)
        current = next_id


def is_in_same_chain(message_id: str, origin_id: str, messages: Sequence[Message]) -> bool:
    """Whether ``message_id`` belongs to the chain rooted at ``origin_id``."""
    return get_origin_to_track(message_id, messages) == get_origin_to_track(origin_id, messages)


def _assistant(message_id: Optional[str], by_id: Dict[str, Message]) -> Optional[Message]:
    if not message_id:
        return None
    message = by_id.get(message_id)
    if message is None or not message.is_assistant:
        return None
    return message


def select_source(
    ui_selected_id: Optional[str],
    chain_locked_id: Optional[str],
    previous_route: Optional[IntentRoute],
    messages: Sequence[Message],
) -> SourceSelection:
    """
    Choose the source message for a new turn.

    Priority:
    1. explicit UI selection, if it is an assistant message
    2. previous turn's chain-locked source, only if that turn was TRANSFORM
    3. most recent assistant message
    """
    by_id = _index(messages)

    if _assistant(ui_selected_id, by_id):
        return SourceSelection(ui_selected_id, SourceResolution.UI_SELECTED)

    if previous_route == IntentRoute.TRANSFORM and _assistant(chain_locked_id, by_id):
        return SourceSelection(chain_locked_id, SourceResolution.CHAIN_LOCKED)

    for message in reversed(messages):
        if message.is_assistant:
            return SourceSelection(message.id, SourceResolution.LAST_ASSISTANT)

    return SourceSelection(None, SourceResolution.NONE)


def build_transform_meta(source_id: str, messages: Sequence[Message]) -> OriginMeta:
    """Origin meta for a new transform result derived from ``source_id``."""
    source = _index(messages).get(source_id)
    depth = 1
    if source is not None and source.origin is not None:
        depth = source.origin.transform_depth + 1
    return OriginMeta(
        origin_message_id=get_origin_to_track(source_id, messages),
        transform_depth=depth,
    )


def bind_transform(
    ui_selected_id: Optional[str],
    chain_locked_id: Optional[str],
    previous_route: Optional[IntentRoute],
    messages: List[Message],
) -> Optional[TransformBinding]:
    """Select the source for a transform turn and resolve its origin."""
    selection = select_source(ui_selected_id, chain_locked_id, previous_route, messages)
    if selection.source_id is None:
        return None

    meta = build_transform_meta(selection.source_id, messages)
    binding = TransformBinding(
        source_id=selection.source_id,
        origin_id=meta.origin_message_id,
        resolution=selection.resolution,
        depth=meta.transform_depth,
    )
    logger.debug(
        f"Transform bound: source={binding.source_id} origin={binding.origin_id} "
        f"via {binding.resolution.value} depth={binding.depth}"
    )
    return binding
