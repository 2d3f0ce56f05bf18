from typing import Any, Optional

from pydantic import BaseModel

from amana.schemas.outbound import OutboundPayload


class ActionRequest(BaseModel):
    intent: str
    entities: dict[str, Any] = {}
    context: dict[str, Any] = {}


class ActionReply(BaseModel):
    """What a business handler hands back to the dispatcher."""

    messages: list[OutboundPayload] = []
    artifact_id: Optional[str] = None
    counterparty_name: Optional[str] = None
    # Ask the user to confirm the artifact before it is finalized.
    request_confirmation: bool = False
    pending_data: dict[str, Any] = {}
    # Business-rule failure, shown to the user and kept for "try again".
    error: Optional[str] = None
    history_text: Optional[str] = None

    def summary(self) -> str:
        if self.history_text:
            return self.history_text
        if self.error:
            return self.error
        return "\n".join(message.summary() for message in self.messages)
