"""Short context-free replies: yes/no, numbered menu options, retry requests."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from amana.services.conversation_store import ConversationState
from amana.services.intent_service import Intent
from amana.services.matching import normalize_for_matching

YES_TOKENS = frozenset({"yes", "y", "yeah", "sure", "ok", "okay", "yep", "yup", "oya"})
NO_TOKENS = frozenset({"no", "n", "nope", "nah", "cancel", "stop"})
RETRY_KEYWORDS = ("try again", "retry", "redo", "repeat")
OPTION_PATTERN = re.compile(r"^[1-4]$")


class FollowUpKind(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    OPTION = "option"
    RETRY = "retry"


@dataclass(frozen=True)
class MenuOption:
    name: str
    intent: Intent


# Options offered after the handler for the key intent replied.
OPTION_TABLE: dict[Intent, dict[int, MenuOption]] = {
    Intent.CREATE_INVOICE: {
        1: MenuOption("preview", Intent.PREVIEW_INVOICE),
        2: MenuOption("send", Intent.SEND_INVOICE),
        3: MenuOption("create_another", Intent.CREATE_INVOICE),
        4: MenuOption("view_all", Intent.LIST_INVOICES),
    },
    Intent.ADD_CLIENT: {
        1: MenuOption("create_invoice", Intent.CREATE_INVOICE),
        2: MenuOption("list_clients", Intent.LIST_CLIENTS),
    },
}


@dataclass
class FollowUpResolution:
    kind: FollowUpKind
    intent: Optional[Intent] = None
    option: Optional[str] = None
    entities: dict[str, Any] = field(default_factory=dict)


def _option_entities(option: MenuOption, state: ConversationState) -> dict[str, Any]:
    if option.intent in (Intent.PREVIEW_INVOICE, Intent.SEND_INVOICE) and state.last_artifact_id:
        return {"invoiceNumber": state.last_artifact_id}
    if option.intent == Intent.CREATE_INVOICE and state.last_counterparty_name:
        return {"clientName": state.last_counterparty_name}
    return {}


def resolve_follow_up(text: str, state: Optional[ConversationState]) -> Optional[FollowUpResolution]:
    """Pure lookup; the caller performs the resulting action and state writes."""
    if state is None:
        return None
    normalized = normalize_for_matching(text)
    if not normalized:
        return None

    if state.awaiting_confirmation:
        if normalized in YES_TOKENS:
            return FollowUpResolution(
                kind=FollowUpKind.CONFIRM,
                intent=state.current_intent,
                entities={**state.pending_artifact_data, "confirmed": True},
            )
        if normalized in NO_TOKENS:
            return FollowUpResolution(kind=FollowUpKind.CANCEL)

    if OPTION_PATTERN.match(normalized) and state.last_intent:
        option = OPTION_TABLE.get(state.last_intent, {}).get(int(normalized))
        if option is not None:
            return FollowUpResolution(
                kind=FollowUpKind.OPTION,
                intent=option.intent,
                option=option.name,
                entities=_option_entities(option, state),
            )

    if any(keyword in normalized for keyword in RETRY_KEYWORDS):
        if state.last_error and state.last_intent:
            return FollowUpResolution(kind=FollowUpKind.RETRY, intent=state.last_intent)

    return None
