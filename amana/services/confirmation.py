from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from amana.services.conversation_store import AwaitingInput, ConversationState
from amana.services.matching import PatternRule, compile_patterns, first_match, normalize_for_matching


class ConfirmationState(str, Enum):
    NONE = "none"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    SENDING = "sending"
    EDITING = "editing"
    CANCELLED = "cancelled"


class ConfirmationAction(str, Enum):
    CONFIRM = "confirm"
    SEND = "send"
    CANCEL = "cancel"
    EDIT = "edit"


VALID_TRANSITIONS = {
    ConfirmationState.NONE: [ConfirmationState.AWAITING_CONFIRMATION],
    ConfirmationState.AWAITING_CONFIRMATION: [
        ConfirmationState.CONFIRMED,
        ConfirmationState.SENDING,
        ConfirmationState.EDITING,
        ConfirmationState.CANCELLED,
    ],
    ConfirmationState.EDITING: [ConfirmationState.AWAITING_CONFIRMATION],
    ConfirmationState.CONFIRMED: [ConfirmationState.NONE],
    ConfirmationState.SENDING: [ConfirmationState.NONE],
    ConfirmationState.CANCELLED: [ConfirmationState.NONE],
}

ACTION_TARGETS = {
    ConfirmationAction.CONFIRM: ConfirmationState.CONFIRMED,
    ConfirmationAction.SEND: ConfirmationState.SENDING,
    ConfirmationAction.CANCEL: ConfirmationState.CANCELLED,
    ConfirmationAction.EDIT: ConfirmationState.EDITING,
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConfirmationState, to_state: ConfirmationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConfirmationState, to_state: ConfirmationState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: ConfirmationState, to_state: ConfirmationState) -> ConfirmationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def settle(state: ConfirmationState) -> ConfirmationState:
    """State the conversation rests in once the event has been handled."""
    if state == ConfirmationState.EDITING:
        return transition(state, ConfirmationState.AWAITING_CONFIRMATION)
    if state in (ConfirmationState.CONFIRMED, ConfirmationState.SENDING, ConfirmationState.CANCELLED):
        return transition(state, ConfirmationState.NONE)
    return state


def current_state(conversation: Optional[ConversationState]) -> ConfirmationState:
    if conversation and conversation.awaiting_input == AwaitingInput.AWAITING_CONFIRMATION:
        return ConfirmationState.AWAITING_CONFIRMATION
    return ConfirmationState.NONE


# Checked in order: confirm, send, cancel, edit.
CONFIRMATION_RULES: tuple[PatternRule[ConfirmationAction], ...] = (
    PatternRule(
        ConfirmationAction.CONFIRM,
        compile_patterns(
            r"^(yes|yeah|yep|yup|ok|okay|confirm|correct|good|fine)$",
            r"^looks?\s*(good|great|perfect|fine|ok|okay)$",
            r"^that'?s?\s*(good|great|perfect|fine|correct)$",
            r"^(perfect|excellent|nice|approved?)$",
        ),
    ),
    PatternRule(
        ConfirmationAction.SEND,
        compile_patterns(
            r"^(send|email)(\s+(it|invoice|now))?$",
            r"^(send|email)\s+to\s+client$",
            r"^(deliver|submit)(\s+it)?$",
        ),
    ),
    PatternRule(
        ConfirmationAction.CANCEL,
        compile_patterns(r"^(cancel|delete|discard|nevermind|never\s*mind|no\s*thanks?)$"),
    ),
    PatternRule(
        ConfirmationAction.EDIT,
        compile_patterns(r"^edit", r"^change", r"^update", r"^modify", r"^fix", r"^correct"),
    ),
)

BARE_NO_PATTERN = compile_patterns(r"^no$")[0]
NOT_GOOD_PATTERN = compile_patterns(r"not\s*(good|right|correct)")[0]
BARE_EDIT_PATTERN = compile_patterns(r"^(edit|change|update|modify|fix|correct)(\s+(it|invoice|that))?$")[0]


@dataclass
class ConfirmationDecision:
    action: ConfirmationAction
    # Raw user text for the edit handler; None when the user asked to edit without saying what.
    edit_instructions: Optional[str] = None


def classify_confirmation_reply(text: str, bare_no_action: str = "edit") -> Optional[ConfirmationDecision]:
    normalized = normalize_for_matching(text)
    if not normalized:
        return None

    action = first_match(CONFIRMATION_RULES, normalized)
    if action == ConfirmationAction.EDIT:
        if BARE_EDIT_PATTERN.match(normalized):
            return ConfirmationDecision(action)
        return ConfirmationDecision(action, edit_instructions=text)
    if action is not None:
        return ConfirmationDecision(action)

    if BARE_NO_PATTERN.match(normalized):
        if bare_no_action == "cancel":
            return ConfirmationDecision(ConfirmationAction.CANCEL)
        return ConfirmationDecision(ConfirmationAction.EDIT)
    if NOT_GOOD_PATTERN.search(normalized):
        return ConfirmationDecision(ConfirmationAction.EDIT)
    return None


def enter_confirmation_patch(artifact_id: str, pending_data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Fields written when a handler asks the user to confirm a previewable artifact."""
    transition(ConfirmationState.NONE, ConfirmationState.AWAITING_CONFIRMATION)
    return {
        "awaiting_confirmation": True,
        "awaiting_input": AwaitingInput.AWAITING_CONFIRMATION,
        "pending_artifact_data": {**(pending_data or {}), "artifact_id": artifact_id},
        "last_artifact_id": artifact_id,
    }


def exit_patch(action: ConfirmationAction) -> dict[str, Any]:
    """Fields written after the action has been handled."""
    resting = settle(transition(ConfirmationState.AWAITING_CONFIRMATION, ACTION_TARGETS[action]))
    if resting == ConfirmationState.AWAITING_CONFIRMATION:
        return {}
    fields_: dict[str, Any] = {"awaiting_confirmation": False, "awaiting_input": None}
    if action == ConfirmationAction.CANCEL:
        fields_["pending_artifact_data"] = {}
    return fields_
