from app.models.whatsapp_conversation import WhatsAppConversation
from app.models.whatsapp_order import ORDER_STATUSES, WhatsAppOrder

__all__ = [
    "WhatsAppConversation",
    "WhatsAppOrder",
    "ORDER_STATUSES",
]
