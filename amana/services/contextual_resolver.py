"""Resolve short follow-on utterances ("send it", "another") against the last artifact or counterparty.

Read-only: the resolver never writes conversation state.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from amana.services.conversation_store import ConversationState
from amana.services.intent_service import Intent
from amana.services.matching import PatternRule, compile_patterns, normalize_for_matching

PREVIEW_PATTERNS = compile_patterns(
    r"^(show|preview|see|view|display)(\s+(invoice|it|that))?$",
    r"^(show|preview|see|view|display)\s+((the|my)\s+)?invoice$",
    r"^invoice(\s+(preview|view))?$",
    r"^(let me see|lemme see|show me)(\s+it)?$",
)
SEND_PATTERNS = compile_patterns(
    r"^(send|email|deliver)(\s+(invoice|it|that))?$",
    r"^(send|email|deliver)\s+((the|my)\s+)?invoice$",
    r"^send\s+to\s+(the\s+)?client$",
)
ANOTHER_PATTERNS = compile_patterns(
    r"^(another|one more|create another)(\s+invoice)?(\s+for\s+them)?$",
    r"^(same client|for them again)$",
    r"^again$",
)


@dataclass
class ContextualResolution:
    intent: Intent
    entities: dict[str, Any] = field(default_factory=dict)
    artifact_id: Optional[str] = None
    counterparty_name: Optional[str] = None


def _preview(state: ConversationState) -> Optional[ContextualResolution]:
    if not state.last_artifact_id:
        return None
    return ContextualResolution(
        intent=Intent.PREVIEW_INVOICE,
        entities={"invoiceNumber": state.last_artifact_id},
        artifact_id=state.last_artifact_id,
    )


def _send(state: ConversationState) -> Optional[ContextualResolution]:
    if not state.last_artifact_id:
        return None
    return ContextualResolution(
        intent=Intent.SEND_INVOICE,
        entities={"invoiceNumber": state.last_artifact_id},
        artifact_id=state.last_artifact_id,
    )


def _create_similar(state: ConversationState) -> Optional[ContextualResolution]:
    if not state.last_counterparty_name:
        return None
    return ContextualResolution(
        intent=Intent.CREATE_INVOICE,
        entities={"clientName": state.last_counterparty_name},
        counterparty_name=state.last_counterparty_name,
    )


Resolver = Callable[[ConversationState], Optional[ContextualResolution]]

CONTEXTUAL_RULES: tuple[PatternRule[Resolver], ...] = (
    PatternRule(_preview, PREVIEW_PATTERNS),
    PatternRule(_send, SEND_PATTERNS),
    PatternRule(_create_similar, ANOTHER_PATTERNS),
)


def resolve_contextual(text: str, state: Optional[ConversationState]) -> Optional[ContextualResolution]:
    """First rule whose utterance matches and whose reference is present wins."""
    if state is None:
        return None
    normalized = normalize_for_matching(text)
    if not normalized:
        return None
    for rule in CONTEXTUAL_RULES:
        if not rule.matches(normalized):
            continue
        resolution = rule.action(state)
        if resolution is not None:
            return resolution
    return None
