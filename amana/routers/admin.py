"""Admin endpoints for conversation maintenance."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from amana.config import settings
from amana.dependencies import get_store
from amana.logging_config import get_logger
from amana.services.conversation_store import ConversationNotFoundError, ConversationStore, ConversationStoreError

logger = get_logger("admin")

router = APIRouter(tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.post("/conversations/{identity}/reset")
async def reset_conversation(
    identity: str,
    store: ConversationStore = Depends(get_store),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Clear transient dialogue fields. The record and its history stay."""
    _require_admin_token(x_admin_token)
    try:
        store.reset(identity)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Conversation '{identity}' not found")
    except ConversationStoreError as e:
        logger.error(f"Reset failed: {e}", extra={"context": {"identity": identity}})
        raise HTTPException(status_code=503, detail="Conversation store unavailable")

    logger.info("Conversation reset", extra={"context": {"identity": identity}})
    return {"status": "ok", "identity": identity}
