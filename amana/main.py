from fastapi import FastAPI

from amana.config import settings
from amana.logging_config import setup_logging
from amana.routers import admin, webhook

setup_logging(settings.log_level)

app = FastAPI(
    title="Amana WhatsApp Engine",
    description="Conversational message processing behind the WhatsApp Cloud API webhook",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    return {"status": "ok", "conversation_store": settings.conversation_store}
