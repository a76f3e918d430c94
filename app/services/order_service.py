"""Order finalization: commission split, persistence and the three notifications."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import ORDER_STATUSES, WhatsAppOrder
from app.services import bot_messages
from app.services.conversation_store import ROLE_BOT, BotConversation, CartLine, ConversationStore
from app.services.result import EMPTY_CART, INVALID_STATE, INVALID_STATUS, NOT_FOUND, Result
from app.services.state_machine import BotState, close

logger = get_logger("order_service")

ORDER_NUMBER_QUERY = text("SELECT generate_whatsapp_order_number() AS order_number")


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    commission: Decimal
    net: Decimal
    percentage: Decimal


def compute_order_totals(cart: Sequence[CartLine], percentage: Decimal) -> OrderTotals:
    """Split the cart subtotal between the intermediary commission and the store.

    commission + net == subtotal exactly.
    """
    percentage = Decimal(str(percentage))
    subtotal = sum((line.price * line.quantity for line in cart), Decimal("0"))
    commission = subtotal * percentage / Decimal("100")
    return OrderTotals(subtotal=subtotal, commission=commission, net=subtotal - commission, percentage=percentage)


def fallback_order_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"WA-{now.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6].upper()}"


@dataclass
class OrderReceipt:
    order_number: str
    totals: OrderTotals
    persisted: bool = False
    notified_intermediary: bool = False
    notified_owner: bool = False
    notified_customer: bool = False


class OrderFinalizer:
    """Turns a confirmed conversation into a persisted order.

    Every step after the precondition check runs independently: a failed
    insert or a failed send is logged and the remaining steps still run.
    The caller must hold the conversation lock.
    """

    def __init__(
        self,
        gateway,
        store: ConversationStore,
        session_factory: Callable[[], Session],
        *,
        commission_percentage: Decimal,
        intermediary_phone: str,
        owner_phone: Optional[str] = None,
        store_name: str = "Melo Sportt",
    ):
        self.gateway = gateway
        self.store = store
        self._session_factory = session_factory
        self.commission_percentage = Decimal(str(commission_percentage))
        self.intermediary_phone = intermediary_phone
        self.owner_phone = owner_phone
        self.store_name = store_name

    async def finalize(self, conversation: BotConversation) -> Result[OrderReceipt]:
        if conversation.state != BotState.ORDER_CONFIRMED:
            return Result.failure(
                f"Conversation is in state {conversation.state.value}, expected {BotState.ORDER_CONFIRMED.value}",
                INVALID_STATE,
            )
        if not conversation.cart:
            return Result.failure("Cart is empty", EMPTY_CART)

        totals = compute_order_totals(conversation.cart, self.commission_percentage)
        context = {"phone": conversation.phone}

        db = self._session_factory()
        try:
            order_number = self._next_order_number(db)
            receipt = OrderReceipt(order_number=order_number, totals=totals)
            context["order_number"] = order_number

            order = self._persist_order(db, conversation, order_number, totals)
            receipt.persisted = order is not None

            receipt.notified_intermediary = await self.gateway.send_text(
                self.intermediary_phone,
                bot_messages.intermediary_summary(conversation, order_number, totals),
            )
            if receipt.notified_intermediary and order is not None:
                self._mark_notified(db, order, notified_to_intermediary=True)

            if self.owner_phone:
                receipt.notified_owner = await self.gateway.send_text(
                    self.owner_phone,
                    bot_messages.owner_notification(conversation, order_number, totals),
                )
                if receipt.notified_owner and order is not None:
                    self._mark_notified(db, order, notified_to_owner=True)

            confirmation = bot_messages.customer_confirmation(conversation, order_number, totals, self.store_name)
            receipt.notified_customer = await self.gateway.send_text(conversation.phone, confirmation)
            conversation.add_message(ROLE_BOT, confirmation)
        finally:
            db.close()

        conversation.state = close(conversation.state)
        conversation.closed_at = datetime.now(timezone.utc)
        conversation.order_number = order_number
        self.store.upsert(conversation)

        logger.info(
            "Order finalized",
            extra={
                "context": {
                    **context,
                    "subtotal": totals.subtotal,
                    "commission": totals.commission,
                    "persisted": receipt.persisted,
                    "notified_intermediary": receipt.notified_intermediary,
                    "notified_owner": receipt.notified_owner,
                    "notified_customer": receipt.notified_customer,
                }
            },
        )
        return Result.success(receipt)

    def _next_order_number(self, db: Session) -> str:
        try:
            order_number = db.execute(ORDER_NUMBER_QUERY).scalar()
            if order_number:
                return str(order_number)
            logger.warning("Order number function returned nothing, using local number")
        except Exception as e:
            db.rollback()
            logger.error(f"Order number generation failed, using local number: {e}")
        return fallback_order_number()

    def _persist_order(
        self,
        db: Session,
        conversation: BotConversation,
        order_number: str,
        totals: OrderTotals,
    ) -> Optional[WhatsAppOrder]:
        order = WhatsAppOrder(
            order_number=order_number,
            customer_phone=conversation.phone,
            customer_name=conversation.customer_name,
            items=[line.to_dict() for line in conversation.cart],
            subtotal=totals.subtotal,
            commission_percentage=totals.percentage,
            commission_amount=totals.commission,
            final_total=totals.net,
            style=conversation.style,
            budget=conversation.budget or None,
            status="pending",
            notified_to_intermediary=False,
            notified_to_owner=False,
        )
        try:
            db.add(order)
            db.commit()
            return order
        except Exception as e:
            db.rollback()
            logger.error(
                "Order not persisted",
                extra={"context": {"phone": conversation.phone, "order_number": order_number, "error": str(e)}},
            )
            return None

    def _mark_notified(self, db: Session, order: WhatsAppOrder, **flags: bool) -> None:
        try:
            for name, value in flags.items():
                setattr(order, name, value)
            order.updated_at = datetime.now(timezone.utc)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                "Order notification flag not saved",
                extra={"context": {"order_number": order.order_number, "flags": list(flags), "error": str(e)}},
            )


# --- administration ---


def list_orders(db: Session, status: Optional[str] = None, limit: int = 100) -> list[WhatsAppOrder]:
    query = db.query(WhatsAppOrder)
    if status:
        query = query.filter(WhatsAppOrder.status == status)
    return query.order_by(WhatsAppOrder.created_at.desc()).limit(limit).all()


def get_order(db: Session, order_number: str) -> Result[WhatsAppOrder]:
    order = db.query(WhatsAppOrder).filter(WhatsAppOrder.order_number == order_number).first()
    if not order:
        return Result.failure(f"Order {order_number} not found", NOT_FOUND)
    return Result.success(order)


def update_order_status(db: Session, order_number: str, status: str) -> Result[WhatsAppOrder]:
    if status not in ORDER_STATUSES:
        return Result.failure(f"Invalid status '{status}', expected one of {', '.join(ORDER_STATUSES)}", INVALID_STATUS)

    result = get_order(db, order_number)
    if not result.ok:
        return result

    order = result.value
    previous = order.status
    order.status = status
    order.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(order)

    logger.info(
        "Order status updated",
        extra={"context": {"order_number": order_number, "from_status": previous, "to_status": status}},
    )
    return Result.success(order)
