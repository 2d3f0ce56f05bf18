from typing import Literal, Optional

from pydantic import BaseModel, model_validator


class ReplyButton(BaseModel):
    id: str
    title: str


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class ListSection(BaseModel):
    title: str
    rows: list[ListRow]


class OutboundPayload(BaseModel):
    """One outbound reply, independent of the transport that delivers it."""

    type: Literal["text", "buttons", "list", "document", "image"]
    text: Optional[str] = None
    buttons: list[ReplyButton] = []
    button_text: Optional[str] = None
    sections: list[ListSection] = []
    url: Optional[str] = None
    filename: Optional[str] = None
    caption: Optional[str] = None

    @model_validator(mode="after")
    def _check_required_fields(self) -> "OutboundPayload":
        if self.type in ("text", "buttons", "list") and not self.text:
            raise ValueError(f"{self.type} payload requires text")
        if self.type == "buttons" and not 1 <= len(self.buttons) <= 3:
            raise ValueError("buttons payload requires 1 to 3 buttons")
        if self.type == "list" and (not self.button_text or not self.sections):
            raise ValueError("list payload requires button_text and sections")
        if self.type in ("document", "image") and not self.url:
            raise ValueError(f"{self.type} payload requires url")
        return self

    @classmethod
    def text_message(cls, text: str) -> "OutboundPayload":
        return cls(type="text", text=text)

    def summary(self) -> str:
        """Short text used for conversation history."""
        if self.text:
            return self.text
        if self.type == "document":
            return f"[document] {self.filename or self.url}"
        return f"[{self.type}] {self.caption or self.url}"
