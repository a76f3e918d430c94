from app.schemas.bot import ConversationResponse, MetricsResponse, OrderResponse, OrdersResponse
from app.schemas.webhook import InboundMessage, WebhookResponse, WhatsAppWebhookPayload

__all__ = [
    "ConversationResponse",
    "InboundMessage",
    "MetricsResponse",
    "OrderResponse",
    "OrdersResponse",
    "WebhookResponse",
    "WhatsAppWebhookPayload",
]
