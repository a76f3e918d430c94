from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

OrderStatus = Literal["pending", "contacted", "confirmed", "cancelled", "completed"]


class StyleBreakdown(BaseModel):
    urbano: int = 0
    clasico: int = 0


class BotMetrics(BaseModel):
    total: int
    active: int
    escalated: int
    by_style: StyleBreakdown
    catalog_size: int


class ActiveConversationItem(BaseModel):
    phone: str
    name: str
    state: str
    cart_size: int
    style: Optional[str] = None


class MetricsResponse(BaseModel):
    success: bool = True
    metrics: BotMetrics
    active_conversations: list[ActiveConversationItem]


class CartLineOut(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    notes: Optional[str] = None


class ConversationOut(BaseModel):
    phone: str
    name: str
    state: str
    style: Optional[str] = None
    budget: str = ""
    cart: list[CartLineOut]
    cart_total: Decimal
    message_count: int
    pending_selection: Optional[str] = None
    escalated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    order_number: Optional[str] = None


class ConversationResponse(BaseModel):
    success: bool = True
    conversation: ConversationOut


class CatalogItemOut(BaseModel):
    id: str
    name: str
    price: Decimal
    category: Optional[str] = None
    sizes: list[str] = []
    colors: list[str] = []
    description: Optional[str] = None
    image_url: Optional[str] = None


class CatalogResponse(BaseModel):
    success: bool = True
    count: int
    products: list[CatalogItemOut]


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_number: str
    customer_phone: str
    customer_name: Optional[str] = None
    items: list[dict]
    subtotal: Decimal
    commission_percentage: Decimal
    commission_amount: Decimal
    final_total: Decimal
    style: Optional[str] = None
    budget: Optional[str] = None
    status: str
    notified_to_intermediary: bool
    notified_to_owner: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    success: bool = True
    order: OrderOut


class OrdersResponse(BaseModel):
    success: bool = True
    count: int
    orders: list[OrderOut]


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderReceiptOut(BaseModel):
    order_number: str
    subtotal: Decimal
    commission: Decimal
    net: Decimal
    persisted: bool
    notified_intermediary: bool
    notified_owner: bool
    notified_customer: bool


class ConfirmOrderResponse(BaseModel):
    success: bool = True
    receipt: OrderReceiptOut


class SendMessageRequest(BaseModel):
    to: str
    text: str


class SendMessageResponse(BaseModel):
    success: bool
    to: str
    text: str
