import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import WhatsAppConversation
from app.services import bot_messages
from app.services.matchers import STYLE_CLASSIC, STYLE_URBAN
from app.services.state_machine import TERMINAL_PERSISTED_STATES, BotState, is_active

logger = get_logger("conversation_store")

ROLE_BOT = "bot"
ROLE_CUSTOMER = "customer"


@dataclass
class CartLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    notes: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "size": self.size,
            "color": self.color,
            "notes": self.notes,
        }


@dataclass
class ConversationMessage:
    role: str
    text: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"role": self.role, "text": self.text, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationMessage":
        raw_ts = data.get("timestamp")
        if isinstance(raw_ts, datetime):
            timestamp = raw_ts
        else:
            try:
                timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))
            except ValueError:
                timestamp = datetime.now(timezone.utc)
        return cls(role=data.get("role") or ROLE_CUSTOMER, text=data.get("text") or "", timestamp=_ensure_timezone(timestamp))


@dataclass
class BotConversation:
    """In-memory state of one customer's bot conversation."""

    phone: str
    state: BotState = BotState.GREETING
    customer_name: str = ""
    style: Optional[str] = None
    budget: str = ""
    cart: list[CartLine] = field(default_factory=list)
    messages: list[ConversationMessage] = field(default_factory=list)
    pending_selection: Optional[str] = None
    escalated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    nudged_at: Optional[datetime] = None
    order_number: Optional[str] = None

    def add_message(self, role: str, text: str, timestamp: Optional[datetime] = None) -> ConversationMessage:
        message = ConversationMessage(role=role, text=text, timestamp=timestamp or datetime.now(timezone.utc))
        self.messages.append(message)
        if role == ROLE_CUSTOMER:
            self.last_activity = message.timestamp
        return message

    @property
    def last_message(self) -> Optional[ConversationMessage]:
        return self.messages[-1] if self.messages else None

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.cart), Decimal("0"))


def _ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _state_from_status(status: Optional[str]) -> BotState:
    try:
        return BotState(status)
    except ValueError:
        return BotState.ASK_NAME


class ConversationStore:
    """Registry of bot conversations keyed by phone number.

    Memory is authoritative; every write is mirrored to ``whatsapp_conversations``
    on a best-effort basis. Callers that read and mutate a conversation must
    hold ``lock(phone)`` for the whole handler.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        inactivity_timeout: timedelta = timedelta(minutes=30),
    ):
        self._session_factory = session_factory
        self._inactivity_timeout = inactivity_timeout
        self._conversations: dict[str, BotConversation] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, phone: str) -> asyncio.Lock:
        return self._locks.setdefault(phone, asyncio.Lock())

    def get(self, phone: str) -> Optional[BotConversation]:
        return self._conversations.get(phone)

    def create(self, phone: str) -> BotConversation:
        conversation = BotConversation(phone=phone, last_activity=datetime.now(timezone.utc))
        self._conversations[phone] = conversation
        return conversation

    def upsert(self, conversation: BotConversation) -> bool:
        """Store in memory and checkpoint the snapshot. Returns persistence success."""
        self._conversations[conversation.phone] = conversation
        return self.persist(conversation)

    def list_active(self) -> list[BotConversation]:
        return [c for c in self._conversations.values() if is_active(c.state)]

    def all(self) -> list[BotConversation]:
        return list(self._conversations.values())

    # --- durable storage ---

    def _snapshot_values(self, conversation: BotConversation) -> dict:
        return {
            "customer_name": conversation.customer_name,
            "style": conversation.style,
            "budget": conversation.budget,
            "products": [line.name for line in conversation.cart],
            "messages": [message.to_dict() for message in conversation.messages],
            "status": conversation.state.value,
            "escalated_at": conversation.escalated_at,
            "closed_at": conversation.closed_at,
            "order_number": conversation.order_number,
        }

    def persist(self, conversation: BotConversation) -> bool:
        values = self._snapshot_values(conversation)
        now = datetime.now(timezone.utc)
        stmt = (
            insert(WhatsAppConversation)
            .values(phone=conversation.phone, created_at=now, updated_at=now, **values)
            .on_conflict_do_update(index_elements=["phone"], set_={**values, "updated_at": now})
        )
        db = self._session_factory()
        try:
            db.execute(stmt)
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.error(
                "Conversation snapshot not persisted",
                extra={"context": {"phone": conversation.phone, "state": conversation.state.value, "error": str(e)}},
            )
            return False
        finally:
            db.close()

    def is_blocked(self, phone: str) -> bool:
        """True when the latest snapshot for the phone was escalated or closed."""
        db = self._session_factory()
        try:
            row = (
                db.query(WhatsAppConversation)
                .filter(WhatsAppConversation.phone == phone)
                .order_by(WhatsAppConversation.updated_at.desc())
                .first()
            )
        except Exception as e:
            logger.error(f"Failed to read conversation snapshot for {phone}: {e}")
            return False
        finally:
            db.close()
        return bool(row and row.status in TERMINAL_PERSISTED_STATES)

    def load_active(self) -> int:
        """Reload non-terminal snapshots. Carts and pending selections are not restored."""
        db = self._session_factory()
        try:
            rows = (
                db.query(WhatsAppConversation)
                .filter(WhatsAppConversation.status.notin_(TERMINAL_PERSISTED_STATES))
                .all()
            )
        except Exception as e:
            logger.error(f"Failed to load active conversations: {e}")
            return 0
        finally:
            db.close()

        for row in rows:
            messages = [ConversationMessage.from_dict(item) for item in (row.messages or []) if isinstance(item, dict)]
            last_activity = None
            customer_messages = [m for m in messages if m.role == ROLE_CUSTOMER]
            if customer_messages:
                last_activity = customer_messages[-1].timestamp
            self._conversations[row.phone] = BotConversation(
                phone=row.phone,
                state=_state_from_status(row.status),
                customer_name=row.customer_name or "",
                style=row.style,
                budget=row.budget or "",
                messages=messages,
                escalated_at=row.escalated_at,
                closed_at=row.closed_at,
                last_activity=last_activity,
                order_number=row.order_number,
            )

        logger.info(f"Loaded {len(rows)} active conversations")
        return len(rows)

    # --- inactivity sweep ---

    def _needs_nudge(self, conversation: BotConversation, now: datetime) -> bool:
        last_message = conversation.last_message
        if last_message is None or conversation.state == BotState.CLOSED:
            return False
        if now - _ensure_timezone(last_message.timestamp) <= self._inactivity_timeout:
            return False
        if conversation.nudged_at and (
            conversation.last_activity is None or conversation.nudged_at >= conversation.last_activity
        ):
            return False
        return True

    async def sweep_inactive(self, gateway, *, now: Optional[datetime] = None) -> dict:
        """Send one inactivity nudge to every idle conversation. Never closes anything."""
        now = now or datetime.now(timezone.utc)
        nudged = []

        for conversation in self.list_active():
            if not self._needs_nudge(conversation, now):
                continue
            async with self.lock(conversation.phone):
                if not self._needs_nudge(conversation, now):
                    continue
                sent = await gateway.send_text(
                    conversation.phone,
                    bot_messages.inactivity_nudge(conversation.customer_name),
                )
                conversation.add_message(ROLE_BOT, bot_messages.INACTIVITY_LOG_ENTRY, now)
                conversation.nudged_at = now
            nudged.append({"phone": conversation.phone, "state": conversation.state.value, "sent": sent})

        if nudged:
            logger.info("Inactivity nudges sent", extra={"context": {"count": len(nudged)}})

        return {"nudged": len(nudged), "items": nudged}

    # --- metrics ---

    def metrics(self, catalog_size: int) -> dict:
        conversations = self.all()
        return {
            "total": len(conversations),
            "active": sum(1 for c in conversations if is_active(c.state)),
            "escalated": sum(1 for c in conversations if c.state == BotState.ESCALATE),
            "by_style": {
                STYLE_URBAN: sum(1 for c in conversations if c.style == STYLE_URBAN),
                STYLE_CLASSIC: sum(1 for c in conversations if c.style == STYLE_CLASSIC),
            },
            "catalog_size": catalog_size,
        }
