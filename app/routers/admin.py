"""Administrative endpoints for the WhatsApp bot: metrics, conversations and orders."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.runtime import BotRuntime
from app.schemas.bot import (
    ActiveConversationItem,
    BotMetrics,
    CartLineOut,
    CatalogItemOut,
    CatalogResponse,
    ConfirmOrderResponse,
    ConversationOut,
    ConversationResponse,
    MetricsResponse,
    OrderOut,
    OrderReceiptOut,
    OrderResponse,
    OrdersResponse,
    OrderStatus,
    OrderStatusUpdate,
    SendMessageRequest,
    SendMessageResponse,
)
from app.services.order_service import get_order, list_orders, update_order_status
from app.services.result import Result

router = APIRouter(prefix="/whatsapp", tags=["whatsapp-admin"])

SERVICE_FEATURES = [
    "Catálogo de productos desde BD",
    "Búsqueda de productos",
    "Carrito de compras",
    "Cálculo automático de comisiones",
    "Notificaciones a intermediario y dueño",
]


def _require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    expected = settings.admin_token
    if not expected:
        return
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _get_runtime(request: Request) -> BotRuntime:
    return request.app.state.runtime


def _raise_for_failure(result: Result) -> None:
    if not result.ok:
        raise HTTPException(status_code=result.http_status, detail=result.error)


@router.get("/metrics", response_model=MetricsResponse, dependencies=[Depends(_require_admin_token)])
async def get_metrics(runtime: BotRuntime = Depends(_get_runtime)):
    metrics = runtime.store.metrics(runtime.catalog.size)
    active = [
        ActiveConversationItem(
            phone=conversation.phone,
            name=conversation.customer_name,
            state=conversation.state.value,
            cart_size=len(conversation.cart),
            style=conversation.style,
        )
        for conversation in runtime.store.list_active()
    ]
    return MetricsResponse(metrics=BotMetrics(**metrics), active_conversations=active)


@router.get("/catalog", response_model=CatalogResponse, dependencies=[Depends(_require_admin_token)])
async def get_catalog(runtime: BotRuntime = Depends(_get_runtime)):
    items = runtime.catalog.all()
    products = [
        CatalogItemOut(
            id=item.id,
            name=item.name,
            price=item.price,
            category=item.category,
            sizes=list(item.sizes),
            colors=list(item.colors),
            description=item.description,
            image_url=item.image_url,
        )
        for item in items
    ]
    return CatalogResponse(count=len(products), products=products)


@router.get(
    "/conversation/{phone}",
    response_model=ConversationResponse,
    dependencies=[Depends(_require_admin_token)],
)
async def get_conversation(phone: str, runtime: BotRuntime = Depends(_get_runtime)):
    conversation = runtime.store.get(phone)
    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation for {phone} not found")

    return ConversationResponse(
        conversation=ConversationOut(
            phone=conversation.phone,
            name=conversation.customer_name,
            state=conversation.state.value,
            style=conversation.style,
            budget=conversation.budget,
            cart=[CartLineOut(**line.to_dict()) for line in conversation.cart],
            cart_total=conversation.subtotal,
            message_count=len(conversation.messages),
            pending_selection=conversation.pending_selection,
            escalated_at=conversation.escalated_at,
            closed_at=conversation.closed_at,
            order_number=conversation.order_number,
        )
    )


@router.post(
    "/conversation/{phone}/confirm",
    response_model=ConfirmOrderResponse,
    dependencies=[Depends(_require_admin_token)],
)
async def confirm_conversation_order(phone: str, runtime: BotRuntime = Depends(_get_runtime)):
    """Confirmation signal for a conversation waiting in order_confirmed."""
    result = await runtime.engine.confirm_order(phone)
    _raise_for_failure(result)

    receipt = result.value
    return ConfirmOrderResponse(
        receipt=OrderReceiptOut(
            order_number=receipt.order_number,
            subtotal=receipt.totals.subtotal,
            commission=receipt.totals.commission,
            net=receipt.totals.net,
            persisted=receipt.persisted,
            notified_intermediary=receipt.notified_intermediary,
            notified_owner=receipt.notified_owner,
            notified_customer=receipt.notified_customer,
        )
    )


@router.post("/conversation/{phone}/escalate", dependencies=[Depends(_require_admin_token)])
async def escalate_conversation(phone: str, runtime: BotRuntime = Depends(_get_runtime)):
    result = await runtime.engine.escalate(phone)
    _raise_for_failure(result)
    conversation = result.value
    return {
        "success": True,
        "phone": conversation.phone,
        "state": conversation.state.value,
        "escalated_at": conversation.escalated_at,
    }


@router.get("/orders", response_model=OrdersResponse, dependencies=[Depends(_require_admin_token)])
def get_orders(status: Optional[OrderStatus] = None, limit: int = 100, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 500))
    orders = list_orders(db, status=status, limit=limit)
    return OrdersResponse(count=len(orders), orders=[OrderOut.model_validate(order) for order in orders])


@router.get(
    "/orders/{order_number}",
    response_model=OrderResponse,
    dependencies=[Depends(_require_admin_token)],
)
def get_order_detail(order_number: str, db: Session = Depends(get_db)):
    result = get_order(db, order_number)
    _raise_for_failure(result)
    return OrderResponse(order=OrderOut.model_validate(result.value))


@router.patch(
    "/orders/{order_number}/status",
    response_model=OrderResponse,
    dependencies=[Depends(_require_admin_token)],
)
def patch_order_status(order_number: str, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    result = update_order_status(db, order_number, payload.status)
    _raise_for_failure(result)
    return OrderResponse(order=OrderOut.model_validate(result.value))


@router.post("/send", response_model=SendMessageResponse, dependencies=[Depends(_require_admin_token)])
async def send_message(payload: SendMessageRequest, runtime: BotRuntime = Depends(_get_runtime)):
    if not payload.to.strip() or not payload.text.strip():
        raise HTTPException(status_code=400, detail="Fields 'to' and 'text' are required")
    sent = await runtime.gateway.send_text(payload.to, payload.text)
    return SendMessageResponse(success=sent, to=payload.to, text=payload.text)


@router.get("/status")
async def get_status(runtime: BotRuntime = Depends(_get_runtime)):
    return {
        "success": True,
        "configured": runtime.gateway.is_configured(),
        "workers_running": runtime.running,
        "catalog_size": runtime.catalog.size,
        "features": SERVICE_FEATURES,
    }
