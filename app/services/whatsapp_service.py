import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from app.logging_config import get_logger

logger = get_logger("whatsapp_service")

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_LIST_BUTTON_LABEL = 20
MAX_LIST_ROW_TITLE = 24
MAX_LIST_ROW_DESCRIPTION = 72


@dataclass(frozen=True)
class ReplyButton:
    id: str
    title: str


@dataclass(frozen=True)
class ListRow:
    id: str
    title: str
    description: Optional[str] = None


@dataclass(frozen=True)
class ListSection:
    title: str
    rows: list[ListRow] = field(default_factory=list)


def format_recipient(phone: str) -> str:
    """Normalize a phone number to the international form the Cloud API expects."""
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("57") and len(cleaned) == 12:
        return cleaned
    if len(cleaned) == 10 and cleaned.startswith("3"):
        return f"57{cleaned}"
    return cleaned


def build_buttons_payload(body: str, buttons: Sequence[ReplyButton]) -> dict:
    return {
        "type": "button",
        "body": {"text": body},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": button.id, "title": button.title[:MAX_BUTTON_TITLE]}}
                for button in buttons[:MAX_BUTTONS]
            ]
        },
    }


def build_list_payload(body: str, button_label: str, sections: Sequence[ListSection]) -> dict:
    serialized_sections = []
    for section in sections:
        rows = []
        for row in section.rows:
            item = {"id": row.id, "title": row.title[:MAX_LIST_ROW_TITLE]}
            if row.description:
                item["description"] = row.description[:MAX_LIST_ROW_DESCRIPTION]
            rows.append(item)
        serialized_sections.append({"title": section.title[:MAX_LIST_ROW_TITLE], "rows": rows})
    return {
        "type": "list",
        "body": {"text": body},
        "action": {"button": button_label[:MAX_LIST_BUTTON_LABEL], "sections": serialized_sections},
    }


class WhatsAppService:
    """Client for the WhatsApp Cloud API messages endpoint.

    Every send reports success as a bool and never raises. When the phone
    number id or access token is missing the service only logs the message.
    """

    def __init__(
        self,
        phone_number_id: Optional[str],
        access_token: Optional[str],
        *,
        api_url: str = "https://graph.facebook.com/v17.0",
        timeout: float = 30.0,
    ):
        self.phone_number_id = phone_number_id or ""
        self.access_token = access_token or ""
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "WhatsAppService":
        return cls(
            settings.whatsapp_phone_number_id,
            settings.whatsapp_access_token,
            api_url=settings.whatsapp_api_url,
            timeout=settings.whatsapp_timeout_seconds,
        )

    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    async def _post_message(self, to: str, payload: dict, kind: str) -> bool:
        url = f"{self.api_url}/{self.phone_number_id}/messages"
        data = {"messaging_product": "whatsapp", "to": format_recipient(to), **payload}
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=data, headers=headers)
        except Exception as e:
            logger.error(f"WhatsApp {kind} send error: {e}", extra={"context": {"to": to}})
            return False

        if response.status_code >= 400:
            logger.error(
                f"WhatsApp {kind} send failed",
                extra={"context": {"to": to, "status": response.status_code, "body": response.text[:200]}},
            )
            return False

        message_id = None
        try:
            messages = response.json().get("messages") or []
            if messages:
                message_id = messages[0].get("id")
        except ValueError:
            message_id = None
        logger.info(f"WhatsApp {kind} sent", extra={"context": {"to": to, "message_id": message_id}})
        return True

    async def send_text(self, to: str, body: str, preview_url: bool = False) -> bool:
        if not self.is_configured():
            logger.info("WhatsApp not configured, simulated text", extra={"context": {"to": to, "text": body[:100]}})
            return False
        payload = {"type": "text", "text": {"body": body, "preview_url": preview_url}}
        return await self._post_message(to, payload, "text")

    async def send_buttons(self, to: str, body: str, buttons: Sequence[ReplyButton]) -> bool:
        if not self.is_configured():
            logger.info(
                "WhatsApp not configured, simulated buttons",
                extra={"context": {"to": to, "buttons": [button.id for button in buttons]}},
            )
            return False
        if len(buttons) > MAX_BUTTONS:
            logger.warning(f"WhatsApp allows at most {MAX_BUTTONS} buttons, truncating {len(buttons)}")
        payload = {"type": "interactive", "interactive": build_buttons_payload(body, buttons)}
        return await self._post_message(to, payload, "buttons")

    async def send_list(self, to: str, body: str, button_label: str, sections: Sequence[ListSection]) -> bool:
        if not self.is_configured():
            logger.info(
                "WhatsApp not configured, simulated list",
                extra={"context": {"to": to, "rows": sum(len(section.rows) for section in sections)}},
            )
            return False
        payload = {"type": "interactive", "interactive": build_list_payload(body, button_label, sections)}
        return await self._post_message(to, payload, "list")
