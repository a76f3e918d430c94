from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

PROCESSABLE_MESSAGE_TYPES = ("text", "button", "interactive")


class TextBody(BaseModel):
    body: str = ""


class ButtonBody(BaseModel):
    text: Optional[str] = None
    payload: Optional[str] = None


class InteractiveReply(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class InteractiveBody(BaseModel):
    type: Optional[str] = None
    button_reply: Optional[InteractiveReply] = None
    list_reply: Optional[InteractiveReply] = None

    @property
    def reply(self) -> Optional[InteractiveReply]:
        return self.button_reply or self.list_reply


class WhatsAppMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    id: str
    timestamp: Optional[str] = None
    type: str = "text"
    text: Optional[TextBody] = None
    button: Optional[ButtonBody] = None
    interactive: Optional[InteractiveBody] = None


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    messages: Optional[list[WhatsAppMessage]] = None
    statuses: Optional[list[dict[str, Any]]] = None


class Change(BaseModel):
    field: str
    value: ChangeValue


class Entry(BaseModel):
    id: Optional[str] = None
    changes: list[Change] = []


class WhatsAppWebhookPayload(BaseModel):
    object: str
    entry: list[Entry] = []


class InboundMessage(BaseModel):
    """Normalized inbound message consumed by the conversation engine."""

    phone: str
    text: str = ""
    selection_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def from_whatsapp(cls, message: WhatsAppMessage) -> "InboundMessage":
        text = ""
        selection_id = None
        reply = message.interactive.reply if message.interactive else None

        if message.text and message.text.body:
            text = message.text.body
        elif message.button and message.button.text:
            text = message.button.text
        elif reply and reply.title:
            text = reply.title
        elif reply and reply.id:
            text = reply.id

        if reply and reply.id:
            selection_id = reply.id
        elif message.button and message.button.payload:
            selection_id = message.button.payload

        timestamp = None
        if message.timestamp and message.timestamp.isdigit():
            timestamp = datetime.fromtimestamp(int(message.timestamp), tz=timezone.utc)

        return cls(
            phone=message.from_,
            text=text,
            selection_id=selection_id,
            message_id=message.id,
            timestamp=timestamp,
        )


class WebhookResponse(BaseModel):
    success: bool
    processed: int = 0
    message: Optional[str] = None
