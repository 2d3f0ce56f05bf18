from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError

from amana.logging_config import get_logger
from amana.schemas.action import ActionReply, ActionRequest
from amana.services.intent_service import Intent

logger = get_logger("action_handlers")


class ActionHandlerError(Exception):
    """Handler unreachable or returned something the dispatcher cannot use."""

    def __init__(self, message: str, intent: Optional[Intent] = None):
        self.message = message
        self.intent = intent
        super().__init__(message)


@dataclass
class HandlerContext:
    identity: str
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    language: str = "en"
    last_artifact_id: Optional[str] = None
    last_counterparty_name: Optional[str] = None
    pending_artifact_data: dict[str, Any] = field(default_factory=dict)
    retry: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ActionHandler(ABC):
    @abstractmethod
    def handle(self, intent: Intent, entities: dict[str, Any], context: HandlerContext) -> ActionReply:
        """Run one business action. Business-rule failures come back in ActionReply.error."""


class HttpActionHandler(ActionHandler):
    """Forwards actions to the business API at {base_url}/actions/{intent}."""

    def __init__(self, base_url: str, timeout_seconds: float = 20.0, api_key: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def handle(self, intent: Intent, entities: dict[str, Any], context: HandlerContext) -> ActionReply:
        url = f"{self.base_url}/actions/{intent.value}"
        request = ActionRequest(intent=intent.value, entities=entities, context=context.to_dict())
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, headers=self._headers(), json=request.model_dump())
        except httpx.HTTPError as exc:
            logger.error(
                "Action handler request failed",
                extra={"context": {"intent": intent.value, "identity": context.identity, "error": str(exc)}},
            )
            raise ActionHandlerError(f"Action service unreachable: {exc}", intent) from exc

        if response.status_code >= 500:
            logger.error(
                "Action handler server error",
                extra={"context": {"intent": intent.value, "status": response.status_code, "body": response.text[:200]}},
            )
            raise ActionHandlerError(f"Action service error: {response.status_code}", intent)

        try:
            body = response.json()
        except ValueError as exc:
            raise ActionHandlerError("Action service returned non-JSON body", intent) from exc

        if response.status_code >= 400:
            # 4xx carries a business-rule failure for the user.
            error = body.get("error") if isinstance(body, dict) else None
            return ActionReply(error=error or f"Request rejected ({response.status_code})")

        try:
            return ActionReply.model_validate(body)
        except ValidationError as exc:
            raise ActionHandlerError(f"Invalid action reply: {exc.error_count()} errors", intent) from exc


# Intents with a business handler; anything else gets the "not yet supported" reply.
IMPLEMENTED_INTENTS: tuple[Intent, ...] = (
    Intent.CREATE_INVOICE,
    Intent.PREVIEW_INVOICE,
    Intent.SEND_INVOICE,
    Intent.EDIT_INVOICE,
    Intent.LIST_INVOICES,
    Intent.ADD_CLIENT,
    Intent.LIST_CLIENTS,
    Intent.VIEW_BALANCE,
    Intent.LIST_TRANSACTIONS,
    Intent.LIST_ROUTES,
    Intent.LIST_DRIVERS,
    Intent.LIST_VEHICLES,
)


def build_handler_table(
    handler: ActionHandler, intents: Iterable[Intent] = IMPLEMENTED_INTENTS
) -> dict[Intent, ActionHandler]:
    return {intent: handler for intent in intents}
