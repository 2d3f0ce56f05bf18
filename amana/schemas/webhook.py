from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppMedia(BaseModel):
    id: str
    mime_type: Optional[str] = None
    sha256: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None


class WhatsAppButton(BaseModel):
    text: Optional[str] = None
    payload: Optional[str] = None


class InteractiveReply(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None


class WhatsAppInteractive(BaseModel):
    type: Optional[str] = None  # button_reply, list_reply
    button_reply: Optional[InteractiveReply] = None
    list_reply: Optional[InteractiveReply] = None


class WhatsAppLocation(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class WhatsAppInboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    from_: str = Field(alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str
    text: Optional[WhatsAppText] = None
    audio: Optional[WhatsAppMedia] = None
    image: Optional[WhatsAppMedia] = None
    video: Optional[WhatsAppMedia] = None
    document: Optional[WhatsAppMedia] = None
    button: Optional[WhatsAppButton] = None
    interactive: Optional[WhatsAppInteractive] = None
    location: Optional[WhatsAppLocation] = None


class WhatsAppStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str  # sent, delivered, read, failed
    timestamp: Optional[str] = None
    recipient_id: Optional[str] = None


class WhatsAppMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class WhatsAppValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messaging_product: Optional[str] = None
    metadata: Optional[WhatsAppMetadata] = None
    messages: list[WhatsAppInboundMessage] = []
    statuses: list[WhatsAppStatus] = []


class WhatsAppChange(BaseModel):
    field: str
    value: WhatsAppValue


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhookEvent(BaseModel):
    object: str
    entry: list[WhatsAppEntry] = []


class WebhookResponse(BaseModel):
    success: bool
    message: str
    accepted: int = 0
